from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

from sqlalchemy import Float, ForeignKey, Index, Integer, String, Text, create_engine, event, func
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Mapped, Session, declarative_base, mapped_column, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from tagcaption.config import DatabaseSettings


Base = declarative_base()


class UserRecord(Base):
    __tablename__ = "users"

    token: Mapped[str] = mapped_column(String(24), primary_key=True)
    name: Mapped[str] = mapped_column(String(24), nullable=False)
    email: Mapped[str] = mapped_column(String, nullable=False)
    verified: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    runs: Mapped[List["RunRecord"]] = relationship(
        "RunRecord",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class RunRecord(Base):
    __tablename__ = "runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token: Mapped[str] = mapped_column(
        String(24), ForeignKey("users.token", ondelete="CASCADE"), nullable=False
    )
    timestamp: Mapped[int] = mapped_column(Integer, nullable=False)
    state: Mapped[int] = mapped_column(Integer, nullable=False)
    subtask: Mapped[str] = mapped_column(String, nullable=False)
    score1: Mapped[Optional[float]] = mapped_column(Float)
    score2: Mapped[Optional[float]] = mapped_column(Float)
    score3: Mapped[Optional[float]] = mapped_column(Float)
    comment: Mapped[str] = mapped_column(Text, nullable=False, default="")
    lastmodified: Mapped[int] = mapped_column(Integer, nullable=False)

    user: Mapped[UserRecord] = relationship("UserRecord", back_populates="runs")


_users = UserRecord.__table__
_runs = RunRecord.__table__

# names are unique regardless of case
Index("ux_users_name_lower", func.lower(_users.c.name), unique=True)
# at most one pending or errored run per user and subtask
Index(
    "ux_runs_unfinished",
    _runs.c.token,
    _runs.c.subtask,
    unique=True,
    sqlite_where=_runs.c.state <= 0,
    postgresql_where=_runs.c.state <= 0,
)
Index("ix_runs_subtask_state", _runs.c.subtask, _runs.c.state)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def create_store_engine(settings: DatabaseSettings) -> Engine:
    """Build the engine for ``settings.url``.

    SQLite files get their parent directory created, connections shareable
    across worker threads, and foreign key enforcement (needed for the
    cascade from users to runs) switched on for every new connection.
    In-memory SQLite keeps a single connection so that every thread sees
    the same database.
    """

    url = make_url(settings.url)
    is_sqlite = url.get_backend_name() == "sqlite"
    connect_args = {}
    engine_options = {}
    if is_sqlite:
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        else:
            engine_options["poolclass"] = StaticPool

    engine = create_engine(url, echo=settings.echo, connect_args=connect_args, **engine_options)
    if is_sqlite:
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(bind=engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False, class_=Session)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "RunRecord",
    "UserRecord",
    "create_store_engine",
    "init_db",
    "make_session_factory",
    "session_scope",
]

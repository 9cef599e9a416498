"""User registrations, runs and leaderboards backed by one SQLAlchemy engine.

A ``Store`` is the explicit context object the host process builds at startup
and hands to whatever serves requests. Every public method runs inside a
single session transaction and either returns its payload or raises one
``StoreError`` subclass after logging the failure.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Type, TypeVar

import structlog
from pydantic import BaseModel, ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from tagcaption.config import Settings
from tagcaption.database import (
    RunRecord,
    UserRecord,
    create_store_engine,
    init_db,
    make_session_factory,
    session_scope,
)
from tagcaption.database_utils import now_ms, random_token
from tagcaption.exceptions import (
    ConflictError,
    NotFoundError,
    RateLimitError,
    StorageError,
    StoreError,
    ValidationError,
)
from tagcaption.leaderboard import build_leaderboard
from tagcaption.validators import (
    LeaderboardQuery,
    RunSubmission,
    UserRegistration,
    UserUpdate,
    first_error_message,
)


logger = structlog.get_logger(__name__)

MAX_TOKEN_ATTEMPTS = 8
DATABASE_UNAVAILABLE = "Could not access database."
NAME_TAKEN = "Name is already registered."
USER_MISSING = "No user found with specified details."
TOKEN_UNKNOWN = "No user found with specified token."
RUN_MISSING = "No run found with specified details."
RUN_BUSY = "Another run is already being processed."
# runs in these states hold back the next submission to the same subtask
LIVE_STATES = (0, 1)
# bulk statements run in short sessions holding no loaded rows
_NO_SYNC = {"synchronize_session": False}

ModelT = TypeVar("ModelT", bound=BaseModel)
ErrorT = TypeVar("ErrorT", bound=StoreError)


def _failure(error_cls: Type[ErrorT], title: str, message: str, event: str, **context: Any) -> ErrorT:
    logger.info(event, title=title, message=message, **context)
    return error_cls(title, message)


def _validate(model: Type[ModelT], title: str, event: str, **values: Any) -> ModelT:
    try:
        return model(**values)
    except PydanticValidationError as exc:
        raise _failure(ValidationError, title, first_error_message(exc), event, **values) from exc


class Store:
    """Persistence and scoring operations for users and their runs."""

    def __init__(
        self,
        settings: Settings,
        *,
        engine: Optional[Engine] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.engine = engine if engine is not None else create_store_engine(settings.database)
        self._sessions = make_session_factory(self.engine)
        self._clock = clock

    # lifecycle ---------------------------------------------------------------

    def init_db(self) -> None:
        init_db(self.engine)
        logger.info("store.opened", url=self.engine.url.render_as_string(hide_password=True))

    def close(self) -> None:
        self.engine.dispose()
        logger.info("store.closed")

    def now_ms(self) -> int:
        return now_ms(self._clock)

    @contextmanager
    def session(self) -> Iterator[Session]:
        with session_scope(self._sessions) as session:
            yield session

    @contextmanager
    def _transaction(self, title: str, event: str, **context: Any) -> Iterator[Session]:
        try:
            with self.session() as session:
                yield session
        except SQLAlchemyError as exc:
            logger.exception(f"{event}.storage_error", title=title, error=str(exc), **context)
            raise StorageError(title, DATABASE_UNAVAILABLE) from exc

    # users -------------------------------------------------------------------

    def _is_verified(self, email: str) -> int:
        return int(self.settings.operator_email is not None and email == self.settings.operator_email)

    @staticmethod
    def _name_taken(session: Session, name: str, *, exclude_token: Optional[str] = None) -> bool:
        stmt = select(func.count()).select_from(UserRecord).where(func.lower(UserRecord.name) == name.lower())
        if exclude_token is not None:
            stmt = stmt.where(UserRecord.token != exclude_token)
        return bool(session.scalar(stmt))

    @staticmethod
    def _token_exists(session: Session, token: str) -> bool:
        stmt = select(func.count()).select_from(UserRecord).where(UserRecord.token == token)
        return bool(session.scalar(stmt))

    def _unique_token(self, session: Session, title: str) -> str:
        for _ in range(MAX_TOKEN_ATTEMPTS):
            token = random_token()
            if not self._token_exists(session, token):
                return token
            logger.warning("token.collision")
        raise _failure(
            StorageError, title, DATABASE_UNAVAILABLE, "token.exhausted", attempts=MAX_TOKEN_ATTEMPTS
        )

    def generate_token(self) -> str:
        """Return a fresh 24 character token not yet held by any user."""

        title = "Generating token failed"
        with self._transaction(title, "token.generate") as session:
            return self._unique_token(session, title)

    def add_user(self, name: str, email: str) -> str:
        """Register ``name``/``email`` and return the new user's token.

        The token is the user's only credential; delivering it (by email for
        instance) is left to the caller.
        """

        title = "Adding user failed"
        user = _validate(UserRegistration, title, "user.add_invalid", name=name, email=email)
        with self._transaction(title, "user.add", name=name, email=email) as session:
            if self._name_taken(session, user.name):
                raise _failure(ConflictError, title, NAME_TAKEN, "user.name_taken", name=name, email=email)
            token = self._unique_token(session, title)
            verified = self._is_verified(user.email)
            session.add(UserRecord(name=user.name, email=user.email, token=token, verified=verified))
            try:
                session.flush()
            except IntegrityError as exc:
                raise _failure(
                    ConflictError, title, NAME_TAKEN, "user.add_conflict", name=name, email=email
                ) from exc
        logger.info("user.added", name=name, email=email, token=token)
        return token

    def update_user(self, name: str, email: str, token: str) -> None:
        title = "Updating user failed"
        context = {"name": name, "email": email, "token": token}
        user = _validate(UserUpdate, title, "user.update_invalid", name=name, email=email)
        with self._transaction(title, "user.update", **context) as session:
            if self._name_taken(session, user.name, exclude_token=token):
                raise _failure(ConflictError, title, NAME_TAKEN, "user.name_taken", **context)
            stmt = (
                update(UserRecord)
                .where(UserRecord.token == token)
                .values(name=user.name, email=user.email, verified=self._is_verified(user.email))
            )
            try:
                result = session.execute(stmt, execution_options=_NO_SYNC)
            except IntegrityError as exc:
                raise _failure(ConflictError, title, NAME_TAKEN, "user.update_conflict", **context) from exc
            if result.rowcount == 0:
                raise _failure(NotFoundError, title, USER_MISSING, "user.update_missing", **context)
        logger.info("user.updated", **context)

    def remove_user(self, name: str, email: str, token: str) -> None:
        """Delete the user matching all three details, together with their runs."""

        title = "Removing user failed"
        context = {"name": name, "email": email, "token": token}
        with self._transaction(title, "user.remove", **context) as session:
            result = session.execute(
                delete(UserRecord).where(
                    func.lower(UserRecord.name) == name.lower(),
                    func.lower(UserRecord.email) == email.lower(),
                    UserRecord.token == token,
                ),
                execution_options=_NO_SYNC,
            )
            if result.rowcount == 0:
                raise _failure(NotFoundError, title, USER_MISSING, "user.remove_missing", **context)
        logger.info("user.removed", **context)

    def exists_token(self, token: str) -> None:
        title = "Token check failed"
        with self._transaction(title, "token.check", token=token) as session:
            if not self._token_exists(session, token):
                raise _failure(NotFoundError, title, TOKEN_UNKNOWN, "token.missing", token=token)

    def get_user(self, token: str) -> Dict[str, str]:
        title = "Getting user details failed"
        with self._transaction(title, "user.get", token=token) as session:
            stmt = select(UserRecord.name, UserRecord.email).where(UserRecord.token == token)
            row = session.execute(stmt).first()
            if row is None:
                raise _failure(NotFoundError, title, TOKEN_UNKNOWN, "user.get_missing", token=token)
        return {"name": row.name, "email": row.email}

    # runs --------------------------------------------------------------------

    def check_timestamp(self, token: str, timestamp: int, subtask: str) -> None:
        """Reject a submission that follows the previous live run too closely.

        Only pending runs and runs in the first valid state count. Without any
        such run the previous timestamp is taken as 0, which also turns away
        client timestamps close to the epoch.
        """

        title = "Timestamp check failed"
        context = {"token": token, "timestamp": timestamp, "subtask": subtask}
        with self._transaction(title, "timestamp.check", **context) as session:
            last = session.scalar(
                select(func.max(RunRecord.timestamp)).where(
                    RunRecord.token == token,
                    RunRecord.subtask == subtask,
                    RunRecord.state.in_(LIVE_STATES),
                )
            )
        last = last or 0
        wait = self.settings.submissions.upload_delay_ms
        elapsed = abs(timestamp - last)
        if elapsed < wait:
            message = (
                f"You have to wait at least {wait / (1000 * 60):g} minutes between successive submissions."
            )
            logger.info("timestamp.too_recent", title=title, last=last, **context)
            raise RateLimitError(title, message, retry_after_ms=wait - elapsed)
        logger.debug("timestamp.checked", last=last, **context)

    def add_run(self, token: str, timestamp: int, subtask: str, comment: str = "") -> None:
        """Queue a new pending run, replacing any earlier unfinished one."""

        title = "Adding run failed"
        context = {"token": token, "timestamp": timestamp, "subtask": subtask, "comment": comment}
        submission = _validate(RunSubmission, title, "run.add_invalid", subtask=subtask, comment=comment)
        with self._transaction(title, "run.add", **context) as session:
            if not self._token_exists(session, token):
                raise _failure(NotFoundError, title, TOKEN_UNKNOWN, "run.add_unknown_user", **context)
            replaced = session.execute(
                delete(RunRecord).where(
                    RunRecord.token == token,
                    RunRecord.subtask == submission.subtask,
                    RunRecord.state <= 0,
                ),
                execution_options=_NO_SYNC,
            ).rowcount
            session.add(
                RunRecord(
                    token=token,
                    timestamp=timestamp,
                    state=0,
                    subtask=submission.subtask,
                    score1=None,
                    score2=None,
                    score3=None,
                    comment=submission.comment,
                    lastmodified=self.now_ms(),
                )
            )
            try:
                session.flush()
            except IntegrityError as exc:
                raise _failure(ConflictError, title, RUN_BUSY, "run.add_conflict", **context) from exc
        logger.info("run.added", replaced=replaced, **context)

    def update_run(
        self,
        token: str,
        timestamp: int,
        state: int,
        subtask: str,
        score1: Optional[float],
        score2: Optional[float],
        score3: Optional[float],
        comment: str,
    ) -> None:
        title = "Updating run failed"
        context = {
            "token": token,
            "timestamp": timestamp,
            "state": state,
            "subtask": subtask,
            "score1": score1,
            "score2": score2,
            "score3": score3,
            "comment": comment,
        }
        with self._transaction(title, "run.update", **context) as session:
            stmt = (
                update(RunRecord)
                .where(
                    RunRecord.token == token,
                    RunRecord.timestamp == timestamp,
                    RunRecord.subtask == subtask,
                )
                .values(
                    state=state,
                    score1=score1,
                    score2=score2,
                    score3=score3,
                    comment=comment,
                    lastmodified=self.now_ms(),
                )
            )
            try:
                result = session.execute(stmt, execution_options=_NO_SYNC)
            except IntegrityError as exc:
                raise _failure(ConflictError, title, RUN_BUSY, "run.update_conflict", **context) from exc
            if result.rowcount == 0:
                raise _failure(NotFoundError, title, RUN_MISSING, "run.update_missing", **context)
        logger.info("run.updated", **context)

    def remove_run(self, token: str, timestamp: int) -> None:
        title = "Removing run failed"
        context = {"token": token, "timestamp": timestamp}
        with self._transaction(title, "run.remove", **context) as session:
            result = session.execute(
                delete(RunRecord).where(RunRecord.token == token, RunRecord.timestamp == timestamp),
                execution_options=_NO_SYNC,
            )
            removed = result.rowcount
            if removed == 0:
                raise _failure(NotFoundError, title, RUN_MISSING, "run.remove_missing", **context)
        logger.info("run.removed", removed=removed, **context)

    # leaderboard -------------------------------------------------------------

    def get_leaderboard(self, subtask: str, sort: str, limit: int) -> Dict[str, List[Dict[str, Any]]]:
        title = "Getting leaderboard failed"
        query = _validate(
            LeaderboardQuery, title, "leaderboard.invalid", subtask=subtask, sort=sort, limit=limit
        )
        with self._transaction(title, "leaderboard.get", subtask=subtask, sort=sort, limit=limit) as session:
            board = build_leaderboard(session, query.subtask, query.sort, query.limit)
        logger.debug(
            "leaderboard.built",
            subtask=query.subtask,
            valid=len(board["valid"]),
            active=len(board["active"]),
            invalid=len(board["invalid"]),
        )
        return board


__all__ = ["DATABASE_UNAVAILABLE", "LIVE_STATES", "MAX_TOKEN_ATTEMPTS", "Store"]

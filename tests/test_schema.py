"""Schema consistency checks.

The schema is created with ``Base.metadata.create_all`` at startup (there are
no migrations), so these tests build a fresh SQLite file and inspect it.
"""

from pathlib import Path

import pytest
from sqlalchemy import inspect, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import StaticPool

from tagcaption.config import DatabaseSettings
from tagcaption.database import create_store_engine, init_db


@pytest.fixture
def engine(tmp_path: Path):
    engine = create_store_engine(DatabaseSettings(url=f"sqlite:///{tmp_path / 'nested' / 'schema.db'}"))
    init_db(engine)
    yield engine
    engine.dispose()


def test_creates_missing_directory_and_tables(engine, tmp_path: Path) -> None:
    assert (tmp_path / "nested" / "schema.db").exists()
    assert set(inspect(engine).get_table_names()) == {"users", "runs"}


def test_init_db_is_idempotent(engine) -> None:
    init_db(engine)

    assert set(inspect(engine).get_table_names()) == {"users", "runs"}


def test_users_columns(engine) -> None:
    columns = {col["name"]: col for col in inspect(engine).get_columns("users")}

    assert set(columns) == {"name", "email", "token", "verified"}
    assert columns["token"]["primary_key"] == 1
    for name in ("name", "email", "verified"):
        assert columns[name]["nullable"] is False


def test_runs_columns(engine) -> None:
    columns = {col["name"]: col for col in inspect(engine).get_columns("runs")}

    expected = {
        "id",
        "token",
        "timestamp",
        "state",
        "subtask",
        "score1",
        "score2",
        "score3",
        "comment",
        "lastmodified",
    }
    assert set(columns) == expected
    for name in ("token", "timestamp", "state", "subtask", "comment", "lastmodified"):
        assert columns[name]["nullable"] is False
    for name in ("score1", "score2", "score3"):
        assert columns[name]["nullable"] is True


def test_runs_reference_users_with_cascade(engine) -> None:
    (foreign_key,) = inspect(engine).get_foreign_keys("runs")

    assert foreign_key["referred_table"] == "users"
    assert foreign_key["constrained_columns"] == ["token"]
    assert foreign_key["options"].get("ondelete") == "CASCADE"


def test_foreign_keys_enforced(engine) -> None:
    with pytest.raises(IntegrityError):
        with engine.begin() as connection:
            connection.execute(
                text(
                    "INSERT INTO runs (token, timestamp, state, subtask, comment, lastmodified) "
                    "VALUES ('orphan', 1, 0, 'tag', '', 1)"
                )
            )


def test_names_unique_regardless_of_case(engine) -> None:
    insert = text("INSERT INTO users (name, email, token, verified) VALUES (:name, 'a@example.com', :token, 0)")
    with engine.begin() as connection:
        connection.execute(insert, {"name": "Alice", "token": "t1"})

    with pytest.raises(IntegrityError):
        with engine.begin() as connection:
            connection.execute(insert, {"name": "ALICE", "token": "t2"})


def test_one_unfinished_run_per_user_and_subtask(engine) -> None:
    insert = text(
        "INSERT INTO runs (token, timestamp, state, subtask, comment, lastmodified) "
        "VALUES ('t1', :timestamp, :state, 'tag', '', 1)"
    )
    with engine.begin() as connection:
        connection.execute(text("INSERT INTO users (name, email, token, verified) VALUES ('alice', 'a@example.com', 't1', 0)"))
        connection.execute(insert, {"timestamp": 1, "state": 1})
        connection.execute(insert, {"timestamp": 2, "state": 2})
        connection.execute(insert, {"timestamp": 3, "state": 0})

    with pytest.raises(IntegrityError):
        with engine.begin() as connection:
            connection.execute(insert, {"timestamp": 4, "state": -1})


def test_in_memory_engine_shares_one_connection() -> None:
    engine = create_store_engine(DatabaseSettings(url="sqlite://"))
    try:
        assert isinstance(engine.pool, StaticPool)
    finally:
        engine.dispose()

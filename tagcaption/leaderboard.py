"""Per-subtask leaderboard queries.

A leaderboard has three disjoint views, each holding at most one row per user:

* ``valid``: the best validated run (state > 0) ranked by ``score1``
* ``active``: the newest run still being scored (state = 0)
* ``invalid``: the newest run that failed scoring (state < 0)

The best run is picked with ``ROW_NUMBER()`` partitioned by token, so the
scores, comment and timestamp returned always come from the run that holds
the extremal ``score1`` rather than from an arbitrary row of the group.
"""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy import text
from sqlalchemy.orm import Session

from tagcaption.database_utils import format_timestamp


_BEST_RUNS_SQL = """
WITH ranked AS (
    SELECT
        token,
        timestamp,
        state,
        score1,
        score2,
        score3,
        comment,
        ROW_NUMBER() OVER (
            PARTITION BY token
            ORDER BY
                CASE WHEN score1 IS NULL THEN 1 ELSE 0 END,
                score1 {direction},
                timestamp ASC
        ) AS row_rank
    FROM runs
    WHERE subtask = :subtask AND state > 0
)
SELECT
    users.verified,
    users.name,
    ranked.timestamp,
    ranked.state,
    ranked.score1,
    ranked.score2,
    ranked.score3,
    ranked.comment
FROM ranked
JOIN users ON users.token = ranked.token
WHERE ranked.row_rank = 1
ORDER BY
    CASE WHEN ranked.score1 IS NULL THEN 1 ELSE 0 END,
    ranked.score1 {direction},
    ranked.timestamp ASC
LIMIT :limit
"""

_LATEST_RUNS_SQL = """
WITH ranked AS (
    SELECT
        token,
        timestamp,
        state,
        comment,
        ROW_NUMBER() OVER (
            PARTITION BY token
            ORDER BY timestamp DESC
        ) AS row_rank
    FROM runs
    WHERE subtask = :subtask AND {condition}
)
SELECT
    users.verified,
    users.name,
    ranked.timestamp,
    ranked.state,
    ranked.comment
FROM ranked
JOIN users ON users.token = ranked.token
WHERE ranked.row_rank = 1
ORDER BY ranked.timestamp DESC
"""

# only these fragments are ever interpolated into the statements above
_DIRECTIONS = {"ASC": "ASC", "DESC": "DESC"}
_PENDING = "state = 0"
_ERRORED = "state < 0"


def _entry(row: Any, *, with_scores: bool) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "verified": bool(row.verified),
        "name": row.name,
        "timestamp": format_timestamp(row.timestamp),
        "state": row.state,
        "comment": row.comment,
    }
    if with_scores:
        entry["score1"] = row.score1
        entry["score2"] = row.score2
        entry["score3"] = row.score3
    return entry


def best_runs(session: Session, subtask: str, sort: str, limit: int) -> List[Dict[str, Any]]:
    statement = text(_BEST_RUNS_SQL.format(direction=_DIRECTIONS[sort]))
    rows = session.execute(statement, {"subtask": subtask, "limit": limit}).all()
    return [_entry(row, with_scores=True) for row in rows]


def _latest_runs(session: Session, subtask: str, condition: str) -> List[Dict[str, Any]]:
    statement = text(_LATEST_RUNS_SQL.format(condition=condition))
    rows = session.execute(statement, {"subtask": subtask}).all()
    return [_entry(row, with_scores=False) for row in rows]


def pending_runs(session: Session, subtask: str) -> List[Dict[str, Any]]:
    return _latest_runs(session, subtask, _PENDING)


def errored_runs(session: Session, subtask: str) -> List[Dict[str, Any]]:
    return _latest_runs(session, subtask, _ERRORED)


def build_leaderboard(
    session: Session, subtask: str, sort: str, limit: int
) -> Dict[str, List[Dict[str, Any]]]:
    """Collect the three views for an already validated query."""

    return {
        "valid": best_runs(session, subtask, sort, limit),
        "active": pending_runs(session, subtask),
        "invalid": errored_runs(session, subtask),
    }


__all__ = ["best_runs", "build_leaderboard", "errored_runs", "pending_runs"]

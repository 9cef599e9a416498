"""Periodic clean-up of runs that never finished scoring."""

from __future__ import annotations

import asyncio
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from tagcaption.database import RunRecord, UserRecord
from tagcaption.database_utils import format_timestamp
from tagcaption.store import Store


logger = structlog.get_logger(__name__)


def sweep_stale_runs(store: Store) -> int:
    """Delete pending or errored runs untouched for longer than the retention window."""

    cutoff = store.now_ms() - store.settings.maintenance.retention_ms
    with store.session() as session:
        result = session.execute(
            delete(RunRecord).where(RunRecord.lastmodified <= cutoff, RunRecord.state <= 0),
            execution_options={"synchronize_session": False},
        )
        removed = result.rowcount
    return removed


def log_snapshot(store: Store) -> int:
    stmt = (
        select(
            UserRecord.name,
            UserRecord.email,
            UserRecord.token,
            RunRecord.timestamp,
            RunRecord.state,
            RunRecord.subtask,
            RunRecord.score1,
            RunRecord.score2,
            RunRecord.score3,
            RunRecord.comment,
        )
        .outerjoin(RunRecord, RunRecord.token == UserRecord.token)
        .order_by(UserRecord.name.asc(), RunRecord.timestamp.desc())
    )
    with store.session() as session:
        rows = session.execute(stmt).all()
    logger.info("maintenance.snapshot", entries=len(rows))
    for index, row in enumerate(rows):
        logger.debug(
            "maintenance.entry",
            index=index,
            name=row.name,
            email=row.email,
            token=row.token,
            timestamp=format_timestamp(row.timestamp),
            state=row.state,
            subtask=row.subtask,
            score1=row.score1,
            score2=row.score2,
            score3=row.score3,
            comment=row.comment,
        )
    return len(rows)


def run_maintenance(store: Store) -> Optional[int]:
    """One best-effort sweep; returns the number of removed runs, or None on failure.

    Errors are logged and dropped: there is no caller to report them to and
    the next tick tries again.
    """

    try:
        removed = sweep_stale_runs(store)
    except SQLAlchemyError as exc:
        logger.exception("maintenance.sweep_failed", error=str(exc))
        return None
    logger.info("maintenance.stale_runs_removed", removed=removed)
    try:
        log_snapshot(store)
    except SQLAlchemyError as exc:
        logger.exception("maintenance.snapshot_failed", error=str(exc))
    return removed


class MaintenanceScheduler:
    """Runs ``run_maintenance`` every ``interval`` seconds on the event loop.

    Sweeps execute in a worker thread. ``stop`` waits for an in-flight sweep
    to finish, so the store can be closed safely once it returns.
    """

    def __init__(self, store: Store, interval: Optional[float] = None) -> None:
        self._store = store
        self.interval = interval if interval is not None else store.settings.maintenance.interval_ms / 1000
        self._task: Optional[asyncio.Task[None]] = None
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run(self._stopping), name="tagcaption-maintenance")
        logger.info("maintenance.started", interval_seconds=self.interval)

    async def _run(self, stopping: asyncio.Event) -> None:
        while True:
            try:
                await asyncio.wait_for(stopping.wait(), timeout=self.interval)
                return
            except asyncio.TimeoutError:
                pass
            await self.tick()

    async def tick(self) -> None:
        try:
            await asyncio.to_thread(run_maintenance, self._store)
        except Exception as exc:  # pragma: no cover - keep the schedule alive
            logger.exception("maintenance.tick_failed", error=str(exc))

    async def stop(self) -> None:
        task = self._task
        if task is None:
            return
        if self._stopping is not None:
            self._stopping.set()
        try:
            await task
        finally:
            self._task = None
            logger.info("maintenance.stopped")


__all__ = ["MaintenanceScheduler", "log_snapshot", "run_maintenance", "sweep_stale_runs"]

"""Startup and orderly shutdown of the store and its maintenance task."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple

import structlog

from tagcaption.config import Settings, get_settings
from tagcaption.logging import configure_logging
from tagcaption.maintenance import MaintenanceScheduler
from tagcaption.store import Store


logger = structlog.get_logger(__name__)

ShutdownHandler = Callable[[], Awaitable[None]]

DATABASE_SHUTDOWN_NAME = "database"
DATABASE_SHUTDOWN_PRIORITY = 10


class ShutdownRegistry:
    """Cleanup handlers awaited in ascending priority order.

    Handlers sharing a priority run in registration order. A failing handler
    is logged and does not prevent the remaining ones from running.
    """

    def __init__(self) -> None:
        self._handlers: List[Tuple[int, int, str, ShutdownHandler]] = []

    def add_handler(self, name: str, priority: int, handler: ShutdownHandler) -> None:
        self._handlers.append((priority, len(self._handlers), name, handler))

    @property
    def names(self) -> List[str]:
        return [name for _, _, name, _ in sorted(self._handlers, key=lambda item: item[:2])]

    async def run(self) -> None:
        handlers = sorted(self._handlers, key=lambda item: item[:2])
        self._handlers = []
        for priority, _, name, handler in handlers:
            try:
                await handler()
            except Exception as exc:
                logger.exception("shutdown.handler_failed", handler=name, priority=priority, error=str(exc))
            else:
                logger.info("shutdown.handler_done", handler=name, priority=priority)


@dataclass
class StoreRuntime:
    """The store and the scheduler sweeping it, owned by the host process."""

    store: Store
    scheduler: MaintenanceScheduler

    async def close(self) -> None:
        # the engine is disposed only once no sweep can be running
        await self.scheduler.stop()
        self.store.close()


async def start_runtime(
    settings: Optional[Settings] = None,
    shutdown: Optional[ShutdownRegistry] = None,
) -> StoreRuntime:
    """Open storage, create the schema and start the maintenance schedule.

    Must be awaited from the event loop the scheduler should run on. When a
    ``shutdown`` registry is given, the runtime registers its own cleanup with
    it under the ``database`` name.
    """

    settings = settings or get_settings()
    store = Store(settings)
    store.init_db()
    scheduler = MaintenanceScheduler(store)
    scheduler.start()
    runtime = StoreRuntime(store=store, scheduler=scheduler)
    if shutdown is not None:
        shutdown.add_handler(DATABASE_SHUTDOWN_NAME, DATABASE_SHUTDOWN_PRIORITY, runtime.close)
    return runtime


@asynccontextmanager
async def lifespan(
    settings: Optional[Settings] = None,
    *,
    configure_logs: bool = False,
) -> AsyncIterator[StoreRuntime]:
    settings = settings or get_settings()
    if configure_logs:
        configure_logging(level=settings.log_level)
    registry = ShutdownRegistry()
    runtime = await start_runtime(settings, registry)
    try:
        yield runtime
    finally:
        await registry.run()


__all__ = [
    "DATABASE_SHUTDOWN_NAME",
    "DATABASE_SHUTDOWN_PRIORITY",
    "ShutdownRegistry",
    "StoreRuntime",
    "lifespan",
    "start_runtime",
]

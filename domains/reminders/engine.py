"""Wire the reminder engine together from configuration."""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from config import LOCAL_TZ
from logger import logger
from .action_log import ActionLog
from .backends import NotificationBackend, Presenter, create_backend
from .reconcile import ReconciliationLoop
from .scheduler import NotificationScheduler, SchedulerContext, SchedulingWarning
from .service import ReminderService
from .storage import CollectionStorage
from .store import ReminderStore


def local_now() -> datetime:
    return datetime.now(LOCAL_TZ)


@dataclass
class ReminderEngine:
    """Everything a host process needs, built once and passed around."""
    context: SchedulerContext
    scheduler: NotificationScheduler
    reconciliation: ReconciliationLoop
    service: ReminderService
    storage: CollectionStorage
    aps: Optional[AsyncIOScheduler] = None

    async def start(self) -> None:
        """Start the job scheduler, event pump and reconciliation job."""
        if self.aps is not None:
            self.reconciliation.start(self.aps)
            if not self.aps.running:
                self.aps.start()
        self.scheduler.start_event_pump()
        await self.reconciliation.run_once()

    async def stop(self) -> None:
        await self.scheduler.stop_event_pump()
        if self.aps is not None and self.aps.running:
            self.aps.shutdown(wait=False)
        self.storage.close()


def _log_warning(warning: SchedulingWarning) -> None:
    logger.warning(f"Reminder {warning.reminder_id}: {warning.message}")


def build_engine(
    db_path: Optional[str] = None,
    backend: Optional[NotificationBackend] = None,
    backend_kind: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
    aps: Optional[AsyncIOScheduler] = None,
    presenter: Optional[Presenter] = None,
    on_warning: Optional[Callable[[SchedulingWarning], None]] = None,
) -> ReminderEngine:
    """Build store, log, backend, scheduler, reconciliation and service.

    Args:
        db_path: SQLite file (defaults to REMINDER_DB_PATH)
        backend: Ready-made backend (overrides backend_kind)
        backend_kind: "native" or "timer" (defaults to NOTIFICATION_BACKEND)
        clock: Returns the current time (defaults to local wall clock)
        aps: APScheduler instance for jobs (created if omitted)
        presenter: Display layer callback for fired notifications
        on_warning: Called when a slot exhausts its retry budget
    """
    clock = clock or local_now
    aps = aps or AsyncIOScheduler(timezone=LOCAL_TZ)

    storage = CollectionStorage(db_path)
    store = ReminderStore(storage, clock)
    log = ActionLog(storage, store, clock)
    backend = backend or create_backend(backend_kind, clock=clock, scheduler=aps, presenter=presenter)

    context = SchedulerContext(store=store, log=log, backend=backend, clock=clock)
    scheduler = NotificationScheduler(context, on_warning=on_warning or _log_warning)
    reconciliation = ReconciliationLoop(context, scheduler)
    service = ReminderService(context, scheduler)

    logger.info(f"Reminder engine built with {backend.name} backend")
    return ReminderEngine(
        context=context,
        scheduler=scheduler,
        reconciliation=reconciliation,
        service=service,
        storage=storage,
        aps=aps,
    )

"""Sync orchestration: single-flight runs, sync log lifecycle, progress events, timer."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from odin.errors import PartialSyncError, UnknownAdapterError
from odin.ingestion.acled_auth import utcnow
from odin.ingestion.registry import AdapterKind, adapter_names, parse_kind
from odin.jobs import Runner, SyncResult
from odin.storage.settings import Settings, get_settings
from odin.storage.sync_log import (
    SyncStatus,
    get_sync_status,
    log_sync_complete,
    log_sync_error,
    log_sync_start,
)

logger = logging.getLogger(__name__)

RunnerFactory = Callable[[Settings], Mapping[AdapterKind, Runner]]

_JOB_ID = "sync_all"


@dataclass(frozen=True)
class SyncProgress:
    """Progress event pushed to listeners.

    Delivery is at-least-once and unordered relative to the sync log, so
    listeners should re-query status rather than trust event order.
    """

    adapter: str
    status: str  # syncing | idle | error
    record_count: int = 0
    last_sync: str | None = None
    error_message: str | None = None

    def to_dict(self) -> dict:
        data = {
            "adapter": self.adapter,
            "status": self.status,
            "recordCount": self.record_count,
        }
        if self.last_sync is not None:
            data["lastSync"] = self.last_sync
        if self.error_message is not None:
            data["errorMessage"] = self.error_message
        return data


ProgressListener = Callable[[SyncProgress], None]


class SyncScheduler:
    """Runs adapters one at a time, never more than one sync at once.

    sync_all() and sync_one() return False immediately when another run
    holds the in-progress lock. The periodic timer shares the same lock.
    """

    def __init__(
        self,
        database_path: str,
        runner_factory: RunnerFactory,
        *,
        clock: Callable[[], datetime] = utcnow,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self._database_path = database_path
        self._runner_factory = runner_factory
        self._clock = clock
        self._scheduler = scheduler or BackgroundScheduler()
        self._lock = threading.Lock()
        self._listeners: list[ProgressListener] = []

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    @property
    def is_armed(self) -> bool:
        """True while a periodic sync is scheduled."""
        return self._scheduler.get_job(_JOB_ID) is not None

    # --- Listeners ---

    def add_listener(self, listener: ProgressListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ProgressListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: SyncProgress) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Progress listener failed for %s", event.adapter)

    # --- Runs ---

    def sync_all(self) -> bool:
        """Run every adapter in order. Returns False if a sync was already running."""
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress; skipping sync_all")
            return False
        try:
            runners = self._build_runners()
            logger.info("Starting full sync of %d adapters", len(runners))
            for kind in AdapterKind:
                runner = runners.get(kind)
                if runner is None:
                    continue
                try:
                    self._run_adapter(kind, runner)
                except Exception:
                    # A failed sync log write stops only this adapter.
                    logger.exception("Sync bookkeeping failed for adapter %s", kind.value)
            logger.info("Full sync finished")
            return True
        finally:
            self._lock.release()

    def sync_one(self, name: str) -> bool:
        """Run a single adapter by name.

        Raises UnknownAdapterError before doing any work if the name is not
        known. Returns False if a sync was already running.
        """
        kind = parse_kind(name)
        if not self._lock.acquire(blocking=False):
            logger.info("Sync already in progress; skipping %s", name)
            return False
        try:
            runner = self._build_runners().get(kind)
            if runner is None:
                raise UnknownAdapterError(f"No runner is configured for adapter '{name}'")
            self._run_adapter(kind, runner)
            return True
        finally:
            self._lock.release()

    def _build_runners(self) -> Mapping[AdapterKind, Runner]:
        return self._runner_factory(get_settings(self._database_path))

    def _run_adapter(self, kind: AdapterKind, runner: Runner) -> None:
        name = kind.value
        log_id = log_sync_start(self._database_path, name, now=self._clock())
        self._emit(SyncProgress(adapter=name, status="syncing"))
        try:
            result: SyncResult = runner(self._database_path)
        except Exception as exc:
            fetched = exc.fetched if isinstance(exc, PartialSyncError) else 0
            upserted = exc.upserted if isinstance(exc, PartialSyncError) else 0
            message = str(exc) or exc.__class__.__name__
            logger.exception("Sync failed for adapter %s", name)
            log_sync_error(
                self._database_path, log_id, message, fetched, upserted, now=self._clock()
            )
            self._emit(
                SyncProgress(
                    adapter=name, status="error", record_count=upserted, error_message=message
                )
            )
            return

        completed_at = self._clock()
        log_sync_complete(
            self._database_path, log_id, result.fetched, result.upserted, now=completed_at
        )
        logger.info(
            "Sync completed for %s: %d fetched, %d upserted",
            name, result.fetched, result.upserted,
        )
        self._emit(
            SyncProgress(
                adapter=name,
                status="idle",
                record_count=result.upserted,
                last_sync=completed_at.isoformat(),
            )
        )

    def status(self) -> list[SyncStatus]:
        """Latest status of every known adapter."""
        return get_sync_status(self._database_path, adapter_names())

    # --- Timer ---

    def _scheduled_sync(self) -> None:
        try:
            self.sync_all()
        except Exception:
            logger.exception("Scheduled sync failed")

    def start(self, interval_minutes: int | None = None) -> None:
        """Arm (or re-arm) the periodic full sync.

        Without an explicit interval the stored setting is used.
        """
        if interval_minutes is None:
            interval_minutes = get_settings(self._database_path).sync_interval_minutes
        self._scheduler.add_job(
            self._scheduled_sync,
            trigger=IntervalTrigger(minutes=interval_minutes),
            id=_JOB_ID,
            name="Sync all adapters",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("Periodic sync armed every %d minute(s)", interval_minutes)

    def stop(self) -> None:
        """Cancel future scheduled runs. A run in progress is not interrupted."""
        try:
            self._scheduler.remove_job(_JOB_ID)
        except JobLookupError:
            return
        logger.info("Periodic sync stopped")

    def shutdown(self) -> None:
        """Stop the timer thread entirely."""
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

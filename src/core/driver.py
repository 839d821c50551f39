"""Periodic scheduling driver (core domain).

The driver is a two-state machine, IDLE -> RUNNING -> IDLE. A tick that
arrives while a pass is RUNNING is dropped, never queued, so two passes never
overlap regardless of cadence versus pass duration.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from core.config import SchedulerConfig
from core.dispatcher import NotificationDispatcher
from core.errors import SchedulingDriverFault
from core.models import BatchReport, ReminderRecord, coerce_utc
from core.ports import ClockPort, RecordStorePort
from core.resolver import resolve_due

LOGGER = logging.getLogger(__name__)


class DriverState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"


@dataclass
class PassReport:
    """Summary of one scheduling pass."""

    started_at: Optional[datetime] = None
    due: List[ReminderRecord] = field(default_factory=list)
    batch: BatchReport = field(default_factory=BatchReport)
    fault: Optional[SchedulingDriverFault] = None

    @property
    def faulted(self) -> bool:
        return self.fault is not None


class SchedulingDriver:
    """Run due-set resolution and dispatch on a fixed cadence."""

    def __init__(
        self,
        store: RecordStorePort,
        dispatcher: NotificationDispatcher,
        clock: ClockPort,
        config: SchedulerConfig,
    ) -> None:
        self._store = store
        self._dispatcher = dispatcher
        self._clock = clock
        self._config = config
        self._state = DriverState.IDLE
        self._cancel = asyncio.Event()
        self.passes_run = 0
        self.ticks_skipped = 0

    @property
    def state(self) -> DriverState:
        return self._state

    def request_cancel(self) -> None:
        """Stop the current pass at the next record boundary."""

        self._cancel.set()

    async def tick(self) -> Optional[PassReport]:
        """Run one pass, or return None if a pass is already running."""

        # No await between the check and the transition: the pair is atomic
        # on the event loop.
        if self._state is DriverState.RUNNING:
            self.ticks_skipped += 1
            LOGGER.debug("Tick skipped, previous pass still running")
            return None
        self._state = DriverState.RUNNING
        report = PassReport()
        try:
            self._cancel.clear()
            now = coerce_utc(self._clock.now())
            report.started_at = now
            candidates = self._store.load_candidate_records(now)
            report.due = resolve_due(candidates, now)
            if report.due:
                LOGGER.info("%s record(s) due at %s", len(report.due), now.isoformat())
            report.batch = await self._dispatcher.dispatch_batch(report.due, now, self._cancel)
            if report.due:
                LOGGER.info(
                    "Pass complete: delivered=%s, failed=%s, skipped=%s, cancelled=%s",
                    report.batch.delivered,
                    report.batch.failed,
                    report.batch.skipped,
                    report.batch.cancelled,
                )
        except Exception as exc:
            report.fault = SchedulingDriverFault([record.id for record in report.due], exc)
            LOGGER.exception("%s", report.fault)
        finally:
            self.passes_run += 1
            self._state = DriverState.IDLE
        return report

    async def run_forever(self, stop_event: asyncio.Event) -> None:
        """Tick every ``interval_seconds`` until ``stop_event`` is set."""

        interval = self._config.interval_seconds
        LOGGER.info("Scheduling driver started (interval %ss)", interval)
        pending: set[asyncio.Task] = set()
        while not stop_event.is_set():
            # Ticks are spawned so a slow pass cannot delay the cadence; the
            # state check inside tick() drops the overlapping ones.
            task = asyncio.create_task(self.tick())
            pending.add(task)
            task.add_done_callback(pending.discard)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

        self.request_cancel()
        if pending:
            await asyncio.gather(*pending)
        LOGGER.info("Scheduling driver stopped")

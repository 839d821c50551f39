"""Notification dispatch (core domain).

Delivery is at-least-once: ``notified_at`` is written only after the transport
reports success. If that write fails after a successful send, the record is
offered again on the next pass and may be notified twice.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Iterable, Optional

from core.calculator import whole_days_between
from core.config import DispatchConfig
from core.errors import DispatchFailure
from core.models import (
    BatchReport,
    DispatchCause,
    DispatchResult,
    DispatchStatus,
    MarkResult,
    NotificationPayload,
    ReminderRecord,
    coerce_utc,
)
from core.ports import RecordStorePort, TransportPort

LOGGER = logging.getLogger(__name__)


def build_payload(record: ReminderRecord, now: datetime) -> NotificationPayload:
    return NotificationPayload(
        record_id=record.id,
        title=record.title or f"{record.category}/{record.subcategory}",
        category=record.category,
        subcategory=record.subcategory,
        expiry_at=coerce_utc(record.expiry_at),
        days_remaining=max(whole_days_between(now, record.expiry_at), 0),
    )


class NotificationDispatcher:
    """Send one notification per due record and mark it notified."""

    def __init__(
        self,
        store: RecordStorePort,
        transport: TransportPort,
        config: DispatchConfig,
    ) -> None:
        self._store = store
        self._transport = transport
        self._config = config
        self._in_flight: set[int] = set()
        self._reported_empty: set[int] = set()

    async def dispatch(self, record: ReminderRecord, now: datetime) -> DispatchResult:
        """Dispatch a single record; never raises for delivery problems."""

        now = coerce_utc(now)
        if self._already_notified(record):
            return DispatchResult(record.id, DispatchStatus.ALREADY_NOTIFIED)

        if not record.recipients:
            # Configuration error: recipients never change, so it is reported
            # once per process and never sent.
            if record.id is None or record.id not in self._reported_empty:
                LOGGER.warning("Record %s has no recipients, skipping", record.id)
                if record.id is not None:
                    self._reported_empty.add(record.id)
            else:
                LOGGER.debug("Record %s still has no recipients", record.id)
            return DispatchResult(record.id, DispatchStatus.SKIPPED, DispatchCause.EMPTY_RECIPIENTS)

        if record.id is not None:
            if record.id in self._in_flight:
                LOGGER.info("Record %s already being dispatched, skipping", record.id)
                return DispatchResult(record.id, DispatchStatus.SKIPPED, DispatchCause.IN_FLIGHT)
            self._in_flight.add(record.id)
        try:
            try:
                await self._deliver(record, now)
            except DispatchFailure as exc:
                LOGGER.warning("Delivery failed for record %s (%s)", record.id, exc)
                return DispatchResult(record.id, DispatchStatus.FAILED, exc.cause, exc.detail or None)
            return self._mark(record, now)
        finally:
            if record.id is not None:
                self._in_flight.discard(record.id)

    async def dispatch_batch(
        self,
        records: Iterable[ReminderRecord],
        now: datetime,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BatchReport:
        """Dispatch records independently with bounded concurrency.

        ``cancel_event`` is checked before each record starts; a record that
        has started always runs to completion.
        """

        report = BatchReport()
        semaphore = asyncio.Semaphore(max(self._config.max_concurrency, 1))

        async def _run_one(record: ReminderRecord) -> Optional[DispatchResult]:
            async with semaphore:
                if cancel_event is not None and cancel_event.is_set():
                    return None
                try:
                    return await self.dispatch(record, now)
                except Exception as exc:
                    LOGGER.exception("Unexpected error dispatching record %s", record.id)
                    return DispatchResult(record.id, DispatchStatus.FAILED, detail=repr(exc))

        outcomes = await asyncio.gather(*(_run_one(record) for record in records))
        for outcome in outcomes:
            if outcome is None:
                report.cancelled = True
                continue
            report.results.append(outcome)
        return report

    def _already_notified(self, record: ReminderRecord) -> bool:
        if record.notified_at is not None:
            return True
        if record.id is None:
            return False
        # The in-memory copy may be stale; the store is the source of truth.
        stored = self._store.get_record(record.id)
        return stored is not None and stored.notified_at is not None

    async def _deliver(self, record: ReminderRecord, now: datetime) -> None:
        payload = build_payload(record, now)
        try:
            delivery = await asyncio.wait_for(
                self._transport.send(record.recipients, payload),
                timeout=self._config.send_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise DispatchFailure(
                DispatchCause.TIMEOUT, f"no response within {self._config.send_timeout_seconds}s"
            ) from exc
        except Exception as exc:
            raise DispatchFailure(DispatchCause.TRANSPORT_ERROR, str(exc) or type(exc).__name__) from exc
        if not delivery.delivered:
            raise DispatchFailure(DispatchCause.TRANSPORT_ERROR, delivery.error or "not delivered")

    def _mark(self, record: ReminderRecord, now: datetime) -> DispatchResult:
        if record.id is None:
            LOGGER.warning("Delivered unpersisted record, nothing to mark")
            return DispatchResult(record.id, DispatchStatus.DELIVERED)
        try:
            outcome = self._store.mark_notified(record.id, now)
        except Exception:
            LOGGER.exception(
                "Delivered record %s but could not mark it notified; it may be notified again",
                record.id,
            )
            return DispatchResult(record.id, DispatchStatus.DELIVERED, detail="mark_failed")
        if outcome is MarkResult.CONFLICT:
            LOGGER.info("Record %s was already marked notified by another writer", record.id)
        else:
            LOGGER.info("Reminder sent for record %s", record.id)
        return DispatchResult(record.id, DispatchStatus.DELIVERED)

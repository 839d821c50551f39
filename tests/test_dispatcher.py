from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Sequence

from core.config import DispatchConfig
from core.dispatcher import NotificationDispatcher
from core.models import (
    DeliveryReport,
    DispatchCause,
    DispatchStatus,
    MarkResult,
    NotificationPayload,
    ReminderRecord,
)

NOW = datetime(2025, 3, 3, 0, 0, 1, tzinfo=timezone.utc)


class FakeStore:
    def __init__(self, records: Sequence[ReminderRecord] = ()) -> None:
        self.records: dict[int, ReminderRecord] = {r.id: r for r in records}
        self.mark_calls: list[int] = []
        self.fail_marks = False

    def load_candidate_records(self, as_of: datetime) -> list[ReminderRecord]:
        return list(self.records.values())

    def mark_notified(self, record_id: int, at: datetime) -> MarkResult:
        self.mark_calls.append(record_id)
        if self.fail_marks:
            raise RuntimeError("database is locked")
        record = self.records[record_id]
        if record.notified_at is not None:
            return MarkResult.CONFLICT
        self.records[record_id] = replace(record, notified_at=at)
        return MarkResult.SUCCESS

    def append(self, record: ReminderRecord) -> int:
        record_id = len(self.records) + 1
        self.records[record_id] = record.with_id(record_id)
        return record_id

    def get_record(self, record_id: int) -> Optional[ReminderRecord]:
        return self.records.get(record_id)


class FakeTransport:
    def __init__(self) -> None:
        self.sent: list[tuple[tuple[str, ...], NotificationPayload]] = []
        self.fail_ids: set[int] = set()
        self.raise_ids: set[int] = set()
        self.delay = 0.0

    async def send(self, recipients: Sequence[str], payload: NotificationPayload) -> DeliveryReport:
        if self.delay:
            await asyncio.sleep(self.delay)
        if payload.record_id in self.raise_ids:
            raise ConnectionError("socket closed")
        if payload.record_id in self.fail_ids:
            return DeliveryReport(delivered=False, error="chat not found")
        self.sent.append((tuple(recipients), payload))
        return DeliveryReport(delivered=True)


def _record(record_id: int, **overrides) -> ReminderRecord:
    base = ReminderRecord(
        id=record_id,
        category="RETAIL",
        subcategory="APP01",
        expiry_at=datetime(2025, 6, 1, tzinfo=timezone.utc),
        lead_days=90,
        reminder_at=datetime(2025, 3, 3, tzinfo=timezone.utc),
        recipients=("ops@example.com", "sec@example.com"),
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        title=f"cert-{record_id}",
    )
    return replace(base, **overrides)


def _dispatcher(
    store: FakeStore,
    transport: FakeTransport,
    *,
    concurrency: int = 2,
    timeout: float = 1,
) -> NotificationDispatcher:
    return NotificationDispatcher(
        store=store,
        transport=transport,
        config=DispatchConfig(max_concurrency=concurrency, send_timeout_seconds=timeout),
    )


def test_successful_delivery_marks_record() -> None:
    record = _record(1)
    store = FakeStore([record])
    transport = FakeTransport()

    result = asyncio.run(_dispatcher(store, transport).dispatch(record, NOW))

    assert result.status is DispatchStatus.DELIVERED
    assert store.records[1].notified_at == NOW
    recipients, payload = transport.sent[0]
    assert recipients == ("ops@example.com", "sec@example.com")
    assert payload.title == "cert-1"
    assert payload.days_remaining == 89


def test_failed_delivery_leaves_record_unmarked() -> None:
    record = _record(1)
    store = FakeStore([record])
    transport = FakeTransport()
    transport.fail_ids.add(1)

    result = asyncio.run(_dispatcher(store, transport).dispatch(record, NOW))

    assert result.status is DispatchStatus.FAILED
    assert result.cause is DispatchCause.TRANSPORT_ERROR
    assert result.detail == "chat not found"
    assert store.records[1].notified_at is None
    assert store.mark_calls == []


def test_transport_exception_is_a_transport_error() -> None:
    record = _record(1)
    store = FakeStore([record])
    transport = FakeTransport()
    transport.raise_ids.add(1)

    result = asyncio.run(_dispatcher(store, transport).dispatch(record, NOW))

    assert result.cause is DispatchCause.TRANSPORT_ERROR
    assert store.records[1].notified_at is None


def test_slow_transport_times_out() -> None:
    record = _record(1)
    store = FakeStore([record])
    transport = FakeTransport()
    transport.delay = 0.5

    result = asyncio.run(_dispatcher(store, transport, timeout=0.01).dispatch(record, NOW))

    assert result.status is DispatchStatus.FAILED
    assert result.cause is DispatchCause.TIMEOUT
    assert store.records[1].notified_at is None


def test_second_dispatch_does_not_resend() -> None:
    record = _record(1)
    store = FakeStore([record])
    transport = FakeTransport()
    dispatcher = _dispatcher(store, transport)

    asyncio.run(dispatcher.dispatch(record, NOW))
    # Same stale in-memory copy: the store says it is already notified.
    again = asyncio.run(dispatcher.dispatch(record, NOW))

    assert again.status is DispatchStatus.ALREADY_NOTIFIED
    assert len(transport.sent) == 1


def test_conflict_on_mark_is_success() -> None:
    record = _record(1)
    transport = FakeTransport()

    class RacingStore(FakeStore):
        def get_record(self, record_id: int) -> Optional[ReminderRecord]:
            # Another process marks it between our check and our write.
            return record

        def mark_notified(self, record_id: int, at: datetime) -> MarkResult:
            self.mark_calls.append(record_id)
            return MarkResult.CONFLICT

    racing = RacingStore([record])
    result = asyncio.run(_dispatcher(racing, transport).dispatch(record, NOW))

    assert result.status is DispatchStatus.DELIVERED
    assert racing.mark_calls == [1]
    assert len(transport.sent) == 1


def test_mark_failure_after_delivery_is_reported_delivered() -> None:
    record = _record(1)
    store = FakeStore([record])
    store.fail_marks = True
    transport = FakeTransport()

    result = asyncio.run(_dispatcher(store, transport).dispatch(record, NOW))

    assert result.status is DispatchStatus.DELIVERED
    assert result.detail == "mark_failed"
    # Left unmarked: at-least-once means it will be offered again.
    assert store.records[1].notified_at is None


def test_empty_recipients_are_skipped_without_sending() -> None:
    record = _record(1, recipients=())
    store = FakeStore([record])
    transport = FakeTransport()

    result = asyncio.run(_dispatcher(store, transport).dispatch(record, NOW))

    assert result.status is DispatchStatus.SKIPPED
    assert result.cause is DispatchCause.EMPTY_RECIPIENTS
    assert transport.sent == []


def test_concurrent_dispatch_of_same_record_sends_once() -> None:
    record = _record(1)
    store = FakeStore([record])
    transport = FakeTransport()
    transport.delay = 0.05
    dispatcher = _dispatcher(store, transport)

    async def _twice():
        return await asyncio.gather(dispatcher.dispatch(record, NOW), dispatcher.dispatch(record, NOW))

    first, second = asyncio.run(_twice())

    statuses = {first.status, second.status}
    assert statuses == {DispatchStatus.DELIVERED, DispatchStatus.SKIPPED}
    assert len(transport.sent) == 1


def test_batch_isolates_failures() -> None:
    records = [_record(1), _record(2), _record(3)]
    store = FakeStore(records)
    transport = FakeTransport()
    transport.raise_ids.add(2)

    report = asyncio.run(_dispatcher(store, transport).dispatch_batch(records, NOW))

    assert report.delivered == 2
    assert report.failed == 1
    assert store.records[1].notified_at == NOW
    assert store.records[2].notified_at is None
    assert store.records[3].notified_at == NOW


def test_batch_respects_concurrency_limit() -> None:
    records = [_record(i) for i in range(1, 7)]
    store = FakeStore(records)

    class TrackingTransport(FakeTransport):
        def __init__(self) -> None:
            super().__init__()
            self.active = 0
            self.peak = 0

        async def send(self, recipients, payload):
            self.active += 1
            self.peak = max(self.peak, self.active)
            await asyncio.sleep(0.01)
            self.active -= 1
            return await super().send(recipients, payload)

    transport = TrackingTransport()
    report = asyncio.run(_dispatcher(store, transport, concurrency=2).dispatch_batch(records, NOW))

    assert report.delivered == 6
    assert transport.peak <= 2


def test_cancelled_batch_stops_between_records() -> None:
    records = [_record(i) for i in range(1, 4)]
    store = FakeStore(records)
    transport = FakeTransport()
    cancel = asyncio.Event()

    class CancellingTransport(FakeTransport):
        async def send(self, recipients, payload):
            cancel.set()
            return await transport.send(recipients, payload)

    dispatcher = _dispatcher(store, CancellingTransport(), concurrency=1)
    report = asyncio.run(dispatcher.dispatch_batch(records, NOW, cancel))

    # The record in progress completes; the rest are left for the next pass.
    assert report.cancelled
    assert report.delivered == 1
    assert store.records[1].notified_at == NOW
    assert store.records[2].notified_at is None

"""Due-set selection (core domain)."""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, List

from core.models import DueEvent, ReminderRecord, coerce_utc


def is_due(record: ReminderRecord, now: datetime) -> bool:
    return record.notified_at is None and coerce_utc(record.reminder_at) <= now


def _sort_key(record: ReminderRecord):
    # Unpersisted records (id None) sort after persisted ones on a tie.
    return (coerce_utc(record.reminder_at), record.id is None, record.id or 0)


def resolve_due(records: Iterable[ReminderRecord], now: datetime) -> List[ReminderRecord]:
    """Return records due at ``now`` ordered by (reminder_at, id).

    Works on any materialized candidate set, pre-filtered by the store or not.
    Records are only read, never mutated.
    """

    now = coerce_utc(now)
    due = [record for record in records if is_due(record, now)]
    due.sort(key=_sort_key)
    return due


def build_due_events(records: Iterable[ReminderRecord], now: datetime) -> List[DueEvent]:
    now = coerce_utc(now)
    return [DueEvent(record=record, evaluated_at=now) for record in resolve_due(records, now)]

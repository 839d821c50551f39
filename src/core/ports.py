"""Ports (interfaces) used by the core engine.

Ports define the minimal contracts for persistence, mapping lookup, clock and
notification adapters so that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from core.models import (
    DeliveryReport,
    MappingEntry,
    MarkResult,
    NotificationPayload,
    ReminderRecord,
)


class MappingLookupPort(Protocol):
    """Authoritative mapping lookup.

    Returns False for "not found" and raises for "unavailable".
    """

    async def lookup(self, category: str, subcategory: Optional[str] = None) -> bool:
        ...


class MappingStorePort(Protocol):
    """Administrative writes over the mapping table."""

    def add_mapping(self, entry: MappingEntry) -> bool:
        """Insert the entry; return False when the pair already exists."""
        ...

    def remove_mapping(self, category: str, subcategory: str) -> bool:
        ...

    def list_mappings(self) -> list[MappingEntry]:
        ...


class RecordStorePort(Protocol):
    """Persistence operations required by the scheduling engine."""

    def load_candidate_records(self, as_of: datetime) -> Sequence[ReminderRecord]:
        ...

    def mark_notified(self, record_id: int, at: datetime) -> MarkResult:
        ...

    def append(self, record: ReminderRecord) -> int:
        ...

    def get_record(self, record_id: int) -> Optional[ReminderRecord]:
        ...


class TransportPort(Protocol):
    """Notification delivery channel."""

    async def send(self, recipients: Sequence[str], payload: NotificationPayload) -> DeliveryReport:
        ...


class ClockPort(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

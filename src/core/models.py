"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any storage or transport-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence, Tuple


def coerce_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive values are interpreted as UTC, never as local time.
    """

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class MappingEntry:
    """One valid (category, subcategory) pair, e.g. business unit x app code."""

    category: str
    subcategory: str
    description: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.subcategory)


@dataclass(frozen=True)
class ReminderCandidate:
    """Unvalidated submission for a new reminder record."""

    category: Optional[str]
    subcategory: Optional[str]
    expiry_at: Optional[datetime]
    lead_days: Optional[int]
    recipients: Sequence[str] = ()
    title: str = ""


@dataclass(frozen=True)
class ReminderRecord:
    """Persisted expiring artifact tracked by the engine."""

    id: Optional[int]
    category: str
    subcategory: str
    expiry_at: datetime
    lead_days: int
    reminder_at: datetime
    recipients: Tuple[str, ...]
    created_at: datetime
    notified_at: Optional[datetime] = None
    title: str = ""

    def with_id(self, record_id: int) -> "ReminderRecord":
        return replace(self, id=record_id)


@dataclass(frozen=True)
class DueEvent:
    """A record paired with the instant that made it eligible (one pass only)."""

    record: ReminderRecord
    evaluated_at: datetime


@dataclass(frozen=True)
class NotificationPayload:
    """Transport-neutral content of a single reminder notification."""

    record_id: Optional[int]
    title: str
    category: str
    subcategory: str
    expiry_at: datetime
    days_remaining: int


@dataclass(frozen=True)
class DeliveryReport:
    """Outcome reported by a transport for one send call."""

    delivered: bool
    error: Optional[str] = None


class MarkResult(str, Enum):
    """Outcome of the conditional ``notified_at`` write."""

    SUCCESS = "success"
    CONFLICT = "conflict"


class DispatchStatus(str, Enum):
    DELIVERED = "delivered"
    ALREADY_NOTIFIED = "already_notified"
    SKIPPED = "skipped"
    FAILED = "failed"


class DispatchCause(str, Enum):
    TIMEOUT = "timeout"
    TRANSPORT_ERROR = "transport_error"
    EMPTY_RECIPIENTS = "empty_recipients"
    IN_FLIGHT = "in_flight"


@dataclass(frozen=True)
class DispatchResult:
    """Result of dispatching one record."""

    record_id: Optional[int]
    status: DispatchStatus
    cause: Optional[DispatchCause] = None
    detail: Optional[str] = None

    @property
    def delivered(self) -> bool:
        return self.status is DispatchStatus.DELIVERED


@dataclass
class BatchReport:
    """Aggregated results of one dispatch batch."""

    results: list[DispatchResult] = field(default_factory=list)
    cancelled: bool = False

    def count(self, status: DispatchStatus) -> int:
        return sum(1 for result in self.results if result.status is status)

    @property
    def delivered(self) -> int:
        return self.count(DispatchStatus.DELIVERED)

    @property
    def failed(self) -> int:
        return self.count(DispatchStatus.FAILED)

    @property
    def skipped(self) -> int:
        return self.count(DispatchStatus.SKIPPED)

"""Error taxonomy for the expiry reminder engine."""

from __future__ import annotations

from typing import Optional, Sequence

from core.models import DispatchCause


class ExpirywatchError(Exception):
    """Base class for engine errors."""


class LookupUnavailable(ExpirywatchError):
    """The authoritative mapping source could not be consulted.

    Never means "mapping absent"; callers decide the retry policy.
    """

    def __init__(self, category: str, subcategory: Optional[str], reason: str) -> None:
        target = category if subcategory is None else f"{category}/{subcategory}"
        super().__init__(f"Mapping lookup unavailable for {target}: {reason}")
        self.category = category
        self.subcategory = subcategory
        self.reason = reason


class DuplicateMapping(ExpirywatchError):
    def __init__(self, category: str, subcategory: str) -> None:
        super().__init__(f"Mapping already exists: {category}/{subcategory}")
        self.category = category
        self.subcategory = subcategory


class DispatchFailure(ExpirywatchError):
    """Delivery of a single record failed; the record stays eligible."""

    def __init__(self, cause: DispatchCause, detail: str = "") -> None:
        super().__init__(f"{cause.value}: {detail}" if detail else cause.value)
        self.cause = cause
        self.detail = detail


class SchedulingDriverFault(ExpirywatchError):
    """Unexpected error inside a scheduling pass, caught at the pass boundary."""

    def __init__(self, in_flight: Sequence[Optional[int]], original: BaseException) -> None:
        ids = ", ".join(str(record_id) for record_id in in_flight) or "none"
        super().__init__(f"Scheduling pass failed (in flight: {ids}): {original!r}")
        self.in_flight = list(in_flight)
        self.original = original

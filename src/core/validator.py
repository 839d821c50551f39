"""Whole-record validation for reminder submissions (core domain)."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List

from core.calculator import whole_days_between
from core.mapping_cache import ReferenceMappingCache
from core.models import ReminderCandidate, coerce_utc


class FailureCode(str, Enum):
    UNKNOWN_MAPPING = "unknown_mapping"
    EXPIRY_NOT_FUTURE = "expiry_not_future"
    LEAD_TIME_EXCEEDS_WINDOW = "lead_time_exceeds_window"
    EMPTY_RECIPIENTS = "empty_recipients"


@dataclass(frozen=True)
class ValidationFailure:
    """A single reportable reason for rejecting a candidate."""

    code: FailureCode
    message: str


@dataclass(frozen=True)
class ValidationResult:
    """Accepted when ``reasons`` is empty, Rejected otherwise."""

    reasons: List[ValidationFailure] = field(default_factory=list)

    @property
    def accepted(self) -> bool:
        return not self.reasons

    @property
    def codes(self) -> List[FailureCode]:
        return [reason.code for reason in self.reasons]


def _is_blank(value) -> bool:
    return value is None or not str(value).strip()


class RecordValidator:
    """Evaluate every rule against the complete candidate.

    Rules are not short-circuited, so a submitter sees all violations at
    once. A rejection is a normal result; only LookupUnavailable escapes.
    """

    def __init__(self, mapping_cache: ReferenceMappingCache) -> None:
        self._mappings = mapping_cache

    async def validate(self, candidate: ReminderCandidate, now: datetime) -> ValidationResult:
        now = coerce_utc(now)
        reasons: List[ValidationFailure] = []

        # Mapping rules.
        blank = [
            name
            for name, value in (("category", candidate.category), ("subcategory", candidate.subcategory))
            if _is_blank(value)
        ]
        if blank:
            reasons.append(
                ValidationFailure(FailureCode.UNKNOWN_MAPPING, f"{' and '.join(blank)} must not be blank")
            )
        else:
            category = str(candidate.category).strip()
            subcategory = str(candidate.subcategory).strip()
            if not await self._mappings.exists(category, subcategory):
                reasons.append(
                    ValidationFailure(
                        FailureCode.UNKNOWN_MAPPING,
                        f"unknown mapping {category}/{subcategory}",
                    )
                )

        # Expiry must be strictly in the future.
        expiry_future = False
        if candidate.expiry_at is None:
            reasons.append(ValidationFailure(FailureCode.EXPIRY_NOT_FUTURE, "expiry_at is required"))
        elif coerce_utc(candidate.expiry_at) <= now:
            reasons.append(
                ValidationFailure(FailureCode.EXPIRY_NOT_FUTURE, "expiry_at must be in the future")
            )
        else:
            expiry_future = True

        # Lead time must fit in the window so reminder_at is never in the past.
        lead_days = candidate.lead_days
        if lead_days is None or isinstance(lead_days, bool) or lead_days < 1:
            reasons.append(
                ValidationFailure(FailureCode.LEAD_TIME_EXCEEDS_WINDOW, "lead_days must be at least 1")
            )
        elif expiry_future:
            window = whole_days_between(now, candidate.expiry_at)
            if lead_days > window:
                reasons.append(
                    ValidationFailure(
                        FailureCode.LEAD_TIME_EXCEEDS_WINDOW,
                        f"lead_days {lead_days} exceeds the {window} whole day(s) until expiry",
                    )
                )

        if not normalize_recipients(candidate.recipients):
            reasons.append(
                ValidationFailure(FailureCode.EMPTY_RECIPIENTS, "at least one recipient is required")
            )

        return ValidationResult(reasons=reasons)


def normalize_recipients(recipients) -> tuple[str, ...]:
    """Trim, drop blanks and de-duplicate recipients, preserving order."""

    seen: dict[str, None] = {}
    for recipient in recipients or ():
        value = str(recipient).strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)

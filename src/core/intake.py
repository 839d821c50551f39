"""Record intake: validate, derive reminder_at, persist (core domain)."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from core.calculator import compute_reminder_at
from core.models import ReminderCandidate, ReminderRecord, coerce_utc
from core.ports import ClockPort, RecordStorePort
from core.validator import RecordValidator, ValidationResult, normalize_recipients

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionResult:
    validation: ValidationResult
    record: Optional[ReminderRecord] = None

    @property
    def accepted(self) -> bool:
        return self.validation.accepted


class RecordIntake:
    """Create reminder records from validated submissions."""

    def __init__(self, validator: RecordValidator, store: RecordStorePort, clock: ClockPort) -> None:
        self._validator = validator
        self._store = store
        self._clock = clock

    async def submit(self, candidate: ReminderCandidate) -> SubmissionResult:
        now = coerce_utc(self._clock.now())
        validation = await self._validator.validate(candidate, now)
        if not validation.accepted:
            LOGGER.info("Submission rejected: %s", ", ".join(code.value for code in validation.codes))
            return SubmissionResult(validation=validation)

        expiry_at = coerce_utc(candidate.expiry_at)
        record = ReminderRecord(
            id=None,
            category=candidate.category.strip(),
            subcategory=candidate.subcategory.strip(),
            expiry_at=expiry_at,
            lead_days=candidate.lead_days,
            # Derived once here and never recomputed.
            reminder_at=compute_reminder_at(expiry_at, candidate.lead_days),
            recipients=normalize_recipients(candidate.recipients),
            created_at=now,
            title=candidate.title.strip(),
        )
        record = record.with_id(self._store.append(record))
        LOGGER.info("Record %s stored, reminder at %s", record.id, record.reminder_at.isoformat())
        return SubmissionResult(validation=validation, record=record)

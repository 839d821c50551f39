"""Reminder date arithmetic (core domain)."""

from __future__ import annotations

from datetime import datetime, timedelta

from core.models import coerce_utc


def compute_reminder_at(expiry_at: datetime, lead_days: int) -> datetime:
    """Return the instant ``lead_days`` whole days before ``expiry_at``.

    Arithmetic is done in UTC so daylight-saving transitions never shift the
    result. No validation happens here.
    """

    return coerce_utc(expiry_at) - timedelta(days=lead_days)


def whole_days_between(start: datetime, end: datetime) -> int:
    """Return the number of complete days from ``start`` to ``end``."""

    # timedelta.days is floored, also for negative spans.
    return (coerce_utc(end) - coerce_utc(start)).days

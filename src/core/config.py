"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class SchedulerConfig:
    """Cadence of the scheduling driver, in seconds between ticks."""

    interval_seconds: float


@dataclass(frozen=True)
class DispatchConfig:
    """Notification dispatch settings for one scheduling pass."""

    max_concurrency: int
    send_timeout_seconds: float


@dataclass(frozen=True)
class CacheConfig:
    """Reference mapping cache settings."""

    lookup_timeout_seconds: float

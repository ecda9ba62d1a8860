"""
Adaptive polling policy.

Two probabilistic skips thin out polling without a second schedule:

- off-peak: outside the local high-traffic window a tick is skipped with a
  fixed probability. Local time is UTC plus a fixed offset, so the window
  drifts by an hour across daylight-saving changes.
- backoff: when the feed fingerprint is unchanged, the skip probability grows
  by ``backoff_coefficient`` per consecutive unchanged tick, up to
  ``backoff_cap`` ticks.

The constants are operator-tunable defaults, not derived values.
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from flashsync.config.settings import ScheduleSettings
from flashsync.core.types import SchedulerState


@dataclass(frozen=True)
class SchedulePolicy:
    """Off-peak window and unchanged-feed backoff parameters."""

    peak_start_hour: int = 6
    peak_end_hour: int = 23
    utc_offset_hours: int = 1
    offpeak_skip_probability: float = 0.5
    backoff_cap: int = 10
    backoff_coefficient: float = 0.1

    @classmethod
    def from_settings(cls, settings: ScheduleSettings) -> SchedulePolicy:
        return cls(
            peak_start_hour=settings.peak_start_hour,
            peak_end_hour=settings.peak_end_hour,
            utc_offset_hours=settings.utc_offset_hours,
            offpeak_skip_probability=settings.offpeak_skip_probability,
            backoff_cap=settings.backoff_cap,
            backoff_coefficient=settings.backoff_coefficient,
        )

    def local_hour(self, now: datetime) -> int:
        """Hour of day in the target region (UTC + fixed offset)."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=UTC)
        return (now.astimezone(UTC) + timedelta(hours=self.utc_offset_hours)).hour

    def is_peak(self, now: datetime) -> bool:
        """True inside [peak_start_hour, peak_end_hour); a window may wrap midnight."""
        hour = self.local_hour(now)
        start, end = self.peak_start_hour, self.peak_end_hour
        if start == end:
            return True
        if start < end:
            return start <= hour < end
        return hour >= start or hour < end

    def offpeak_skip_chance(self, now: datetime) -> float:
        return 0.0 if self.is_peak(now) else self.offpeak_skip_probability

    def backoff_skip_chance(self, consecutive_unchanged: int) -> float:
        """``min(consecutive, cap) * coefficient``, never above 1."""
        steps = min(max(consecutive_unchanged, 0), self.backoff_cap)
        return min(steps * self.backoff_coefficient, 1.0)


def advance_state(state: SchedulerState, fingerprint: str) -> tuple[SchedulerState, bool]:
    """
    Compute the state after observing ``fingerprint``.

    Returns:
        (next state, changed). An unchanged fingerprint increments the
        counter; any change (including the first observation) resets it to 0.
    """
    if state.last_fingerprint is not None and state.last_fingerprint == fingerprint:
        return SchedulerState(fingerprint, state.consecutive_unchanged_ticks + 1), False
    return SchedulerState(fingerprint, 0), True


def roll(probability: float, rng: random.Random) -> bool:
    """True with the given probability; the generator is only consulted when 0 < p."""
    if probability <= 0:
        return False
    return rng.random() < probability

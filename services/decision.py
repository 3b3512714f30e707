"""Excess power decision based on battery voltage and PV current thresholds."""

from __future__ import annotations

from threading import Lock

from models.records import Reading, ThresholdPolicy, Verdict


def decide(reading: Reading, policy: ThresholdPolicy) -> Verdict:
    """Classify a reading as Yes, Maybe or No.

    Each signal has a low and a high threshold. Values between them land in
    Maybe, so a sensor jittering around one cutoff never flips Yes and No
    directly. Reaching a threshold counts as satisfying it.
    """
    if reading.battery_voltage < policy.battery_low or reading.pv_current < policy.current_low:
        return Verdict.no
    if reading.battery_voltage >= policy.battery_high and reading.pv_current >= policy.current_high:
        return Verdict.yes
    return Verdict.maybe


class PolicyHolder:
    """Holds the active threshold policy and swaps it as a whole."""

    def __init__(self, policy: ThresholdPolicy) -> None:
        self._policy = policy
        self._lock = Lock()

    @property
    def current(self) -> ThresholdPolicy:
        with self._lock:
            return self._policy

    def replace(self, policy: ThresholdPolicy) -> ThresholdPolicy:
        """Install ``policy`` and return the one it replaced."""
        with self._lock:
            previous, self._policy = self._policy, policy
        return previous

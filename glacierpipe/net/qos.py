# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Adaptive upload rate driven by network latency.

The controller treats round trip latency to a reference endpoint as the
congestion signal, the way TCP congestion control treats packet loss. It
first measures the latency of an idle link (the baseline), then raises the
upload rate while latency stays within one standard deviation of the
baseline, and backs off once uploads start to queue up on the link.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from enum import Enum
from threading import Lock
from typing import Callable, Dict, Optional

from glacierpipe.logging import logger
from glacierpipe.net.latency import (
    HttpLatencyProbe,
    LatencyMonitor,
    LatencyProbe,
    LatencyStats,
)
from glacierpipe.net.throttling import ThrottlingStrategy

INITIAL_RATE = 16384.0
RATE_INCREASE_FACTOR = 1.1
CONGESTION_CUT_FACTOR = 0.9
THROTTLE_DOWN_FACTOR = 0.99
REBASELINE_CUT_FACTOR = 0.5
MAX_HOLD_SECONDS = 10 * 60


class QOSState(str, Enum):
    """Controller states."""

    BASELINING = "baselining"
    THROTTLING_UP = "throttling_up"
    HOLDING = "holding"
    THROTTLING_DOWN = "throttling_down"


WINDOW_SIZES: Dict[QOSState, int] = {
    QOSState.BASELINING: 40,
    QOSState.THROTTLING_UP: 5,
    QOSState.HOLDING: 10,
    QOSState.THROTTLING_DOWN: 5,
}

PROBE_INTERVALS: Dict[QOSState, float] = {
    QOSState.BASELINING: 0.8,
    QOSState.THROTTLING_UP: 0.8,
    QOSState.HOLDING: 5.0,
    QOSState.THROTTLING_DOWN: 0.8,
}


@dataclass(frozen=True)
class QOSSnapshot:
    """Controller state and the rate it currently targets."""

    state: QOSState = QOSState.BASELINING
    rate: float = INITIAL_RATE
    baseline: Optional[LatencyStats] = None
    hold_started: Optional[float] = None

    @property
    def threshold(self) -> float:
        """Latency above which the link is considered congested."""
        if self.baseline is None:
            raise ValueError("no baseline measured")
        return self.baseline.mean + self.baseline.stddev


def transition(
    snapshot: QOSSnapshot, stats: Optional[LatencyStats], now: float
) -> QOSSnapshot:
    """Advance the controller given the latest latency window.

    Args:
        snapshot: current controller state.
        stats: statistics published since the last call, if any.
        now: monotonic time in seconds.

    Returns:
        the next controller state.

    """
    state = snapshot.state
    window = WINDOW_SIZES[state]
    full = stats is not None and stats.samples == window

    if state is QOSState.BASELINING:
        if full:
            return replace(snapshot, state=QOSState.THROTTLING_UP, baseline=stats)
        return snapshot

    threshold = snapshot.threshold

    if state is QOSState.THROTTLING_UP:
        if not full:
            return snapshot
        assert stats is not None
        if stats.mean > threshold:
            return replace(
                snapshot,
                state=QOSState.HOLDING,
                rate=snapshot.rate * CONGESTION_CUT_FACTOR,
                hold_started=now,
            )
        return replace(snapshot, rate=snapshot.rate * RATE_INCREASE_FACTOR)

    if state is QOSState.THROTTLING_DOWN:
        if not full:
            return snapshot
        assert stats is not None
        if stats.mean > threshold:
            return replace(snapshot, rate=snapshot.rate * THROTTLE_DOWN_FACTOR)
        return replace(snapshot, state=QOSState.HOLDING, hold_started=now)

    # HOLDING
    if snapshot.hold_started is None:
        snapshot = replace(snapshot, hold_started=now)
    assert snapshot.baseline is not None

    if stats is not None:
        if stats.samples >= window // 2 and stats.mean > threshold:
            return replace(snapshot, state=QOSState.THROTTLING_DOWN, hold_started=None)
        relaxed = snapshot.baseline.mean + snapshot.baseline.stddev / 2
        if full and stats.mean < relaxed:
            return replace(snapshot, state=QOSState.THROTTLING_UP, hold_started=None)

    assert snapshot.hold_started is not None
    if now - snapshot.hold_started > MAX_HOLD_SECONDS:
        # Link conditions drift; measure them again from a lower rate.
        return QOSSnapshot(
            state=QOSState.BASELINING, rate=snapshot.rate * REBASELINE_CUT_FACTOR
        )
    return snapshot


MonitorFactory = Callable[[LatencyProbe, int, float], LatencyMonitor]


class QOSThrottlingStrategy(ThrottlingStrategy):
    """Throttling strategy that adapts the rate to network latency.

    Polling :meth:`get_bytes_per_second` advances the state machine. The
    latency monitor of a state is started on the first poll in that state and
    stopped when the state is left.
    """

    def __init__(
        self,
        probe: LatencyProbe,
        *,
        initial_rate: float = INITIAL_RATE,
        clock: Callable[[], float] = time.monotonic,
        monitor_factory: MonitorFactory = LatencyMonitor,
    ) -> None:
        """Initialize QOSThrottlingStrategy."""
        self._probe = probe
        self._clock = clock
        self._monitor_factory = monitor_factory
        self._snapshot = QOSSnapshot(rate=initial_rate)
        self._monitor: Optional[LatencyMonitor] = None
        self._closed = False
        self._lock = Lock()

    @classmethod
    def from_url(cls, url: str) -> QOSThrottlingStrategy:
        """Create a strategy probing the given URL over HTTP."""
        return cls(HttpLatencyProbe(url))

    @property
    def snapshot(self) -> QOSSnapshot:
        """Current controller state."""
        return self._snapshot

    @property
    def state(self) -> QOSState:
        """Current controller state name."""
        return self._snapshot.state

    def get_bytes_per_second(self) -> float:
        """Return the target rate, advancing the controller."""
        with self._lock:
            if self._closed:
                return self._snapshot.rate

            current = self._snapshot
            if self._monitor is None:
                self._monitor = self._monitor_factory(
                    self._probe,
                    WINDOW_SIZES[current.state],
                    PROBE_INTERVALS[current.state],
                ).start()
                logger.debug("QOS %s at %.0f B/s", current.state.value, current.rate)

            updated = transition(current, self._monitor.take_stats(), self._clock())
            if updated.state is not current.state:
                self._monitor.stop()
                self._monitor = None
                if updated.state is QOSState.THROTTLING_UP and updated.baseline:
                    logger.debug(
                        "QOS baseline mean = %.1f ms; stddev = %.1f ms",
                        updated.baseline.mean,
                        updated.baseline.stddev,
                    )
            elif updated.rate != current.rate:
                logger.debug("QOS %s. rate %.0f B/s", updated.state.value, updated.rate)

            self._snapshot = updated
            return updated.rate

    def close(self) -> None:
        """Stop probing."""
        with self._lock:
            self._closed = True
            if self._monitor is not None:
                self._monitor.stop()
                self._monitor = None

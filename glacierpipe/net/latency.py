# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Network latency probing."""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Deque, Iterable, Optional

import requests

from glacierpipe.logging import logger
from glacierpipe.utils.timer import PeriodicTask

DEFAULT_PROBE_TIMEOUT = 10.0

LatencyProbe = Callable[[], Optional[float]]


@dataclass(frozen=True)
class LatencyStats:
    """Summary of a window of latency samples, in milliseconds."""

    mean: float
    stddev: float
    samples: int

    @classmethod
    def from_samples(cls, samples: Iterable[float]) -> LatencyStats:
        """Compute mean and population standard deviation."""
        values = list(samples)
        if not values:
            raise ValueError("at least one sample is required")

        mean = sum(values) / len(values)
        variance = sum((mean - v) ** 2 for v in values) / len(values)
        return cls(mean=mean, stddev=math.sqrt(variance), samples=len(values))


class HttpLatencyProbe:
    """Measures the time to open a connection and get an HTTP response."""

    def __init__(self, url: str, timeout: float = DEFAULT_PROBE_TIMEOUT) -> None:
        """Initialize HttpLatencyProbe."""
        self._url = url
        self._timeout = timeout

    @property
    def url(self) -> str:
        """URL probed."""
        return self._url

    def __call__(self) -> Optional[float]:
        """Return the round trip time in milliseconds, or None on failure."""
        start = time.perf_counter()
        try:
            response = requests.head(
                self._url, timeout=self._timeout, allow_redirects=False
            )
            response.close()
        except requests.exceptions.RequestException as exc:
            logger.debug("Latency probe to %s failed: %r", self._url, exc)
            return None
        return (time.perf_counter() - start) * 1000


class LatencyMonitor:
    """Probes latency periodically and publishes rolling window statistics.

    Statistics are replaced after every successful probe and consumed with
    :meth:`take_stats`, which clears them; a consumer therefore sees each
    published window at most once.
    """

    def __init__(self, probe: LatencyProbe, window: int, interval: float) -> None:
        """Initialize LatencyMonitor."""
        if window < 1:
            raise ValueError("window must be at least 1")

        self._probe = probe
        self._window = window
        self._interval = interval
        self._history: Deque[float] = deque(maxlen=window)
        self._stats: Optional[LatencyStats] = None
        self._lock = Lock()
        self._task: Optional[PeriodicTask] = None

    @property
    def window(self) -> int:
        """Number of samples in a full window."""
        return self._window

    def start(self) -> LatencyMonitor:
        """Start probing in the background."""
        self._task = PeriodicTask(
            self.sample, self._interval, name="latency-monitor"
        ).start()
        return self

    def stop(self, wait: bool = False) -> None:
        """Stop probing without waiting for a probe in flight, unless asked to."""
        if self._task is not None:
            self._task.cancel(wait=wait)
            self._task = None

    def sample(self) -> None:
        """Take one latency sample and publish updated statistics."""
        latency = self._probe()
        if latency is None:
            return

        self._history.append(latency)
        stats = LatencyStats.from_samples(self._history)
        with self._lock:
            self._stats = stats

    def take_stats(self) -> Optional[LatencyStats]:
        """Return the latest statistics and clear them."""
        with self._lock:
            stats, self._stats = self._stats, None
        return stats

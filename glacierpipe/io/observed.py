# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Streams that report how many bytes pass through them."""

from __future__ import annotations

import io
import time
from threading import Lock
from typing import Callable, Optional

from glacierpipe.utils.timer import PeriodicTask

DEFAULT_MIN_REPORT_INTERVAL = 0.1
DEFAULT_HEARTBEAT_INTERVAL = 0.5


class ProgressReporter:
    """Coalesces byte counts into progress callbacks.

    Counts are accumulated and handed to the callback at most once per
    ``min_interval`` seconds. A heartbeat flushes pending counts while the
    stream is idle, so observers are updated during long blocking reads.
    """

    def __init__(
        self,
        callback: Callable[[int], None],
        *,
        min_interval: float = DEFAULT_MIN_REPORT_INTERVAL,
        heartbeat_interval: Optional[float] = DEFAULT_HEARTBEAT_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize ProgressReporter."""
        self._callback = callback
        self._min_interval = min_interval
        self._clock = clock
        self._lock = Lock()
        self._pending = 0
        self._total = 0
        self._last_report = clock()
        self._heartbeat: Optional[PeriodicTask] = None
        if heartbeat_interval is not None:
            self._heartbeat = PeriodicTask(
                lambda: self.add(0),
                heartbeat_interval,
                initial_delay=heartbeat_interval,
                name="progress-heartbeat",
            ).start()

    @property
    def total(self) -> int:
        """Net number of bytes counted so far."""
        return self._total

    def add(self, count: int) -> None:
        """Count bytes, reporting them if the last report is old enough."""
        now = self._clock()
        with self._lock:
            self._total += count
            self._pending += count
            if now - self._last_report <= self._min_interval:
                return
            report, self._pending = self._pending, 0
            self._last_report = now

        if report:
            self._callback(report)

    def flush(self) -> None:
        """Report pending bytes immediately."""
        with self._lock:
            report, self._pending = self._pending, 0
            self._last_report = self._clock()

        if report:
            self._callback(report)

    def close(self) -> None:
        """Stop the heartbeat and report what is left."""
        if self._heartbeat is not None:
            self._heartbeat.cancel()
            self._heartbeat = None
        self.flush()


class ObservedWriter(io.RawIOBase):
    """Writable stream that counts written bytes."""

    def __init__(self, raw: io.RawIOBase, reporter: ProgressReporter) -> None:
        """Initialize ObservedWriter."""
        super().__init__()
        self._raw = raw
        self._reporter = reporter

    def writable(self) -> bool:
        """Return True."""
        return True

    def write(self, b) -> int:  # type: ignore[override]
        """Write and count the bytes."""
        written = self._raw.write(b)
        if written:
            self._reporter.add(written)
        return written or 0

    def close(self) -> None:
        """Close the wrapped stream and flush the counter."""
        if not self.closed:
            try:
                self._raw.close()
            finally:
                self._reporter.close()
        super().close()


class ObservedReader(io.RawIOBase):
    """Readable, seekable stream that counts consumed bytes.

    Seeking back over bytes that were already read is reported as negative
    progress, so the net count always equals the bytes that still count as
    delivered in the current pass.
    """

    def __init__(self, raw: io.RawIOBase, reporter: ProgressReporter) -> None:
        """Initialize ObservedReader."""
        super().__init__()
        self._raw = raw
        self._reporter = reporter
        self._progress = 0
        self._high_water = 0

    def readable(self) -> bool:
        """Return True."""
        return True

    def seekable(self) -> bool:
        """Return whether the wrapped stream is seekable."""
        return self._raw.seekable()

    def readinto(self, b) -> int:  # type: ignore[override]
        """Read and count the bytes."""
        read = self._raw.readinto(b)
        if read:
            end = self._raw.tell()
            self._high_water = max(self._high_water, end)
            self._move_to(end)
        return read

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Seek the wrapped stream."""
        position = self._raw.seek(offset, whence)
        self._move_to(min(position, self._high_water))
        return position

    def tell(self) -> int:
        """Return the position of the wrapped stream."""
        return self._raw.tell()

    def close(self) -> None:
        """Close the wrapped stream and flush the counter."""
        if not self.closed:
            try:
                self._raw.close()
            finally:
                self._reporter.close()
        super().close()

    def _move_to(self, progress: int) -> None:
        delta = progress - self._progress
        self._progress = progress
        if delta:
            self._reporter.add(delta)

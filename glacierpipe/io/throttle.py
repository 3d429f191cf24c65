# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Rate limited reader."""

from __future__ import annotations

import io
import math
import time
from typing import TYPE_CHECKING, Callable

if TYPE_CHECKING:
    from glacierpipe.net.throttling import ThrottlingStrategy

QUANTA_PER_SECOND = 20


class ThrottledReader(io.RawIOBase):
    """Paces reads from a stream to the rate given by a throttling strategy.

    Every wall-clock second is divided into ``QUANTA_PER_SECOND`` quanta. Each
    quantum allows ``rate / QUANTA_PER_SECOND`` bytes; a read that finds the
    allowance spent sleeps until the next quantum starts. Whole bytes left
    unused expire with their quantum, while the fraction of a byte carries
    over, so rates below one byte per quantum are still honored. The rate is
    fetched from the strategy whenever a new quantum begins.

    With ``pace_after_rewind`` the first pass over the stream is not paced:
    pacing starts once the stream has been read and then sought backwards.
    The transport reads the body once to compute its payload hash before it
    rewinds and sends it, and only the second pass hits the network.

    """

    def __init__(
        self,
        raw: io.RawIOBase,
        strategy: ThrottlingStrategy,
        *,
        pace_after_rewind: bool = False,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """Initialize ThrottledReader."""
        super().__init__()
        self._raw = raw
        self._strategy = strategy
        self._clock = clock
        self._sleep = sleep
        self._pacing = not pace_after_rewind
        self._consumed = 0
        self._rewinds = 0
        self._quantum = -1
        self._woken_quantum = -1
        self._credit = 0.0

    @property
    def rewinds(self) -> int:
        """Number of times the stream was sought backwards after a read."""
        return self._rewinds

    def readable(self) -> bool:
        """Return True."""
        return True

    def seekable(self) -> bool:
        """Return whether the wrapped stream is seekable."""
        return self._raw.seekable()

    def readinto(self, b) -> int:  # type: ignore[override]
        """Read at most the bytes allowed in the current quantum."""
        view = memoryview(b).cast("B")
        if not self._pacing or not view:
            return self._read(view)

        while True:
            now = self._clock()
            allowed = self._allowance(now)
            if allowed > 0:
                read = self._read(view[: min(len(view), allowed)])
                self._credit -= read
                return read
            self._sleep_until_next_quantum(now)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Seek the wrapped stream, tracking rewinds."""
        before = self._raw.tell()
        position = self._raw.seek(offset, whence)
        if position < before and self._consumed > 0:
            self._rewinds += 1
            self._pacing = True
        return position

    def tell(self) -> int:
        """Return the position of the wrapped stream."""
        return self._raw.tell()

    def close(self) -> None:
        """Close the wrapped stream."""
        if not self.closed:
            self._raw.close()
        super().close()

    def _read(self, view: memoryview) -> int:
        read = self._raw.readinto(view) or 0
        self._consumed += read
        return read

    def _allowance(self, now: float) -> float:
        # A sleep up to the boundary may end a rounding error short of it.
        quantum = max(math.floor(now * QUANTA_PER_SECOND), self._woken_quantum)
        if quantum != self._quantum:
            self._quantum = quantum
            carry = 0.0 if math.isinf(self._credit) else self._credit % 1
            self._credit = carry + self._budget_for(
                self._strategy.get_bytes_per_second()
            )
        if math.isinf(self._credit):
            return math.inf
        return int(self._credit)

    @staticmethod
    def _budget_for(bytes_per_second: float) -> float:
        if math.isnan(bytes_per_second) or bytes_per_second <= 0:
            raise ValueError(f"invalid upload rate: {bytes_per_second}")
        if math.isinf(bytes_per_second):
            return math.inf
        return bytes_per_second / QUANTA_PER_SECOND

    def _sleep_until_next_quantum(self, now: float) -> None:
        next_quantum = self._quantum + 1
        self._sleep(max(next_quantum / QUANTA_PER_SECOND - now, 0.0))
        self._woken_quantum = next_quantum

# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Upload rate strategies."""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from threading import Lock
from typing import Optional


class ThrottlingStrategy(ABC):
    """Source of the target upload rate."""

    @abstractmethod
    def get_bytes_per_second(self) -> float:
        """Return the current target rate. ``math.inf`` means unlimited."""

    def close(self) -> None:
        """Release background resources."""

    def __enter__(self) -> ThrottlingStrategy:
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class FixedThrottlingStrategy(ThrottlingStrategy):
    """Constant upload rate set by the operator."""

    def __init__(self, bytes_per_second: float) -> None:
        """Initialize FixedThrottlingStrategy."""
        if math.isnan(bytes_per_second) or bytes_per_second <= 0:
            raise ValueError(f"bytes_per_second must be positive: {bytes_per_second}")
        self._bytes_per_second = bytes_per_second

    def get_bytes_per_second(self) -> float:
        """Return the configured rate."""
        return self._bytes_per_second


class UnlimitedThrottlingStrategy(ThrottlingStrategy):
    """No rate limit."""

    def get_bytes_per_second(self) -> float:
        """Return infinity."""
        return math.inf


class ProxyingThrottlingStrategy(ThrottlingStrategy):
    """Forwards to a strategy that can be swapped while uploading.

    Without a wrapped strategy the rate is unlimited.
    """

    def __init__(self, strategy: Optional[ThrottlingStrategy] = None) -> None:
        """Initialize ProxyingThrottlingStrategy."""
        self._strategy = strategy
        self._lock = Lock()

    @property
    def strategy(self) -> Optional[ThrottlingStrategy]:
        """Strategy currently forwarded to."""
        return self._strategy

    def get_bytes_per_second(self) -> float:
        """Return the rate of the wrapped strategy."""
        with self._lock:
            if self._strategy is None:
                return math.inf
            return self._strategy.get_bytes_per_second()

    def replace(self, strategy: Optional[ThrottlingStrategy]) -> None:
        """Forward to a new strategy and close the previous one."""
        with self._lock:
            previous, self._strategy = self._strategy, strategy
            if previous is not None:
                previous.close()

    def close(self) -> None:
        """Close the wrapped strategy."""
        self.replace(None)

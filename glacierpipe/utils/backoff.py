# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Retry backoff sequences."""

from __future__ import annotations

from itertools import islice
from typing import Iterator

BASE_RETRY_DELAY_MS = 1000
RETRY_DELAY_FACTOR = 1.5
MAX_RETRY_DELAY_MS = 5 * 60 * 1000


def cap_sequence(seq: Iterator[float], *, cap: float) -> Iterator[float]:
    """Bound given sequence."""
    for val in seq:  # pragma: no branch
        yield min(val, cap)


def exponential_sequence(base: float, factor: float = 2.0) -> Iterator[float]:
    """Generates a sequence of exponential values."""
    while True:
        yield base
        base *= factor


def retry_delay_sequence() -> Iterator[float]:
    """Delays in milliseconds before the 0th, 1st, 2nd, ... retry."""
    return cap_sequence(
        exponential_sequence(BASE_RETRY_DELAY_MS, RETRY_DELAY_FACTOR),
        cap=MAX_RETRY_DELAY_MS,
    )


def retry_delay_ms(attempts: int) -> int:
    """Delay in milliseconds after the given number of failed attempts.

    Grows by 1.5x per attempt from one second and is capped at five minutes,
    which is reached after 15 attempts.
    """
    if attempts < 0:
        raise ValueError("attempts must be non-negative")
    if attempts >= 15:
        return MAX_RETRY_DELAY_MS
    delay = next(islice(retry_delay_sequence(), attempts, None))
    return int(delay)

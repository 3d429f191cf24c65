# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Test retry backoff"""

from __future__ import annotations

from itertools import islice

import pytest

from glacierpipe.utils.backoff import (
    MAX_RETRY_DELAY_MS,
    cap_sequence,
    exponential_sequence,
    retry_delay_ms,
)


def test_exponential_sequence():
    assert list(islice(exponential_sequence(1, 3), 4)) == [1, 3, 9, 27]


def test_cap_sequence():
    capped = cap_sequence(exponential_sequence(1.0), cap=5.0)

    assert list(islice(capped, 5)) == [1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.parametrize(
    "attempts, expected",
    [(0, 1000), (1, 1500), (2, 2250), (3, 3375), (14, 291929)],
)
def test_retry_delay_ms(attempts: int, expected: int):
    assert retry_delay_ms(attempts) == expected


@pytest.mark.parametrize("attempts", [15, 16, 999])
def test_retry_delay_ms_capped(attempts: int):
    assert retry_delay_ms(attempts) == MAX_RETRY_DELAY_MS == 300_000


def test_retry_delay_ms_negative():
    with pytest.raises(ValueError):
        retry_delay_ms(-1)

# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Multipart upload part size rules."""

from __future__ import annotations

from glacierpipe.errors import InvalidConfigError
from glacierpipe.utils.humanize import GiByte, MiByte

MIN_PART_SIZE = MiByte
MAX_PART_SIZE = 4 * GiByte


def is_power_of_two(value: int) -> bool:
    """Check whether the value is a positive power of two."""
    return value > 0 and value & (value - 1) == 0


def validate_part_size(part_size: int) -> int:
    """Check that the part size is a power of two between 1 MiB and 4 GiB."""
    if not MIN_PART_SIZE <= part_size <= MAX_PART_SIZE or not is_power_of_two(
        part_size
    ):
        raise InvalidConfigError(
            "part size must be a power of two between 1 MiB and 4 GiB "
            f"(inclusive): {part_size}"
        )
    return part_size

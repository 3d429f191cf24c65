# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Byte sizes from/to human friendly format.

Suffixes are binary: ``1K`` is 1024 bytes, ``1M`` is 1024 ** 2 bytes.
"""

from __future__ import annotations

from math import floor, log2
from re import IGNORECASE, compile
from typing import Dict, List

Byte = 1
KiByte = Byte * 1024
MiByte = KiByte * 1024
GiByte = MiByte * 1024
TiByte = GiByte * 1024
PiByte = TiByte * 1024
EiByte = PiByte * 1024

_SizeRe = compile(r"^(-?(?:[1-9]\d*|0)(?:\.\d+)?)\s*(?:([kmgtpe])i?)?b?$", IGNORECASE)
_SuffixLookup: Dict[str, int] = {
    "k": KiByte,
    "m": MiByte,
    "g": GiByte,
    "t": TiByte,
    "p": PiByte,
    "e": EiByte,
}

_IecUnits: List[str] = ["B", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB"]


def parse_binary_size(_s: str) -> float:
    """Parse a binary-suffixed size string such as ``16M`` or ``512 KiB``.

    Args:
        _s: the string to parse.

    Returns:
        parsed number of bytes.

    Raises:
        ValueError: if the string cannot be parsed.

    """
    s = _s.strip().replace(",", "")
    matches = _SizeRe.fullmatch(s)

    if matches is None:
        msg = f"Cannot parse size '{_s}'"
        raise ValueError(msg)

    value = float(matches[1])
    suffix = matches[2]
    if suffix:
        value *= _SuffixLookup[suffix.lower()]

    return value


def parse_binary_size_int(_s: str) -> int:
    """Parse a binary-suffixed size string that must be a whole number of bytes."""
    value = parse_binary_size(_s)
    if not value.is_integer():
        msg = f"Size '{_s}' is not a whole number of bytes"
        raise ValueError(msg)
    return int(value)


def format_ibytes(v: float) -> str:
    """Format a number to a human readable byte string.

    Args:
        v: the number to be formatted.

    Returns:
        the formatted string.

    """
    if v < 0:
        return "-" + format_ibytes(-v)

    if v < 1024:  # noqa: PLR2004
        return f"{int(v)} B"

    exp = min(floor(log2(v) / 10), len(_IecUnits) - 1)
    val = v / 1024**exp

    if val < 10:  # noqa: PLR2004
        return f"{val:.2f} {_IecUnits[exp]}"

    return f"{val:.1f} {_IecUnits[exp]}"

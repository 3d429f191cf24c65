# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Glacier Pipe: stream standard input into an Amazon Glacier archive."""

from __future__ import annotations

from glacierpipe.pipe import GlacierPipe
from glacierpipe.security.tree_hash import TreeHash, tree_hash

__all__ = [
    "GlacierPipe",
    "TreeHash",
    "tree_hash",
]

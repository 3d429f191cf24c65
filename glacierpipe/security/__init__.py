# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Glacier Pipe integrity primitives."""

from __future__ import annotations

from glacierpipe.security.tree_hash import TreeHash, tree_hash

__all__ = ["TreeHash", "tree_hash"]

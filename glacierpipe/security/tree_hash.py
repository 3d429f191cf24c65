# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""SHA-256 tree hash used by Glacier to check archive and part integrity."""

from __future__ import annotations

import hashlib
from typing import List, Union

from glacierpipe.errors import DigestUnavailableError

KiB = 1024
MiB = KiB * KiB
TREE_HASH_CHUNK_SIZE = MiB

BytesLike = Union[bytes, bytearray, memoryview]


class TreeHash:
    """Incremental tree hash.

    The input is split into 1 MiB chunks. Every chunk is hashed on its own and
    the chunk hashes are combined pairwise, level by level, until a single hash
    remains. A node without a sibling is promoted to the next level as is.

    Unlike ``hashlib`` objects, :meth:`digest` finalizes the computation and
    resets the object, so one instance can be reused for consecutive parts.

    """

    def __init__(self, algorithm: str = "sha256") -> None:
        """Initialize TreeHash."""
        try:
            self._digest = hashlib.new(algorithm)
        except ValueError as exc:
            raise DigestUnavailableError(algorithm) from exc

        self._algorithm = algorithm
        self._leaves: List[bytes] = []
        self._bytes_in_chunk = 0

    @property
    def name(self) -> str:
        """Name of the hash."""
        return f"{self._algorithm}-tree"

    @property
    def digest_size(self) -> int:
        """Size of the resulting hash in bytes."""
        return self._digest.digest_size

    def update(self, data: BytesLike) -> None:
        """Feed bytes into the hash."""
        view = memoryview(data).cast("B")
        offset = 0
        length = len(view)

        while offset < length:
            if self._bytes_in_chunk == TREE_HASH_CHUNK_SIZE:
                self._close_chunk()

            size = min(TREE_HASH_CHUNK_SIZE - self._bytes_in_chunk, length - offset)
            self._digest.update(view[offset : offset + size])
            offset += size
            self._bytes_in_chunk += size

    def digest(self) -> bytes:
        """Finalize the hash and reset the state."""
        if self._bytes_in_chunk > 0 or not self._leaves:
            self._close_chunk()

        level = self._leaves
        while len(level) > 1:
            parents = []
            for i in range(0, len(level) - 1, 2):
                node = self._new_digest()
                node.update(level[i])
                node.update(level[i + 1])
                parents.append(node.digest())
            if len(level) % 2 == 1:
                parents.append(level[-1])
            level = parents

        result = level[0]
        self.reset()
        return result

    def hexdigest(self) -> str:
        """Finalize the hash and return it as a lowercase hex string."""
        return self.digest().hex()

    def reset(self) -> None:
        """Discard any input fed so far."""
        self._digest = self._new_digest()
        self._leaves = []
        self._bytes_in_chunk = 0

    def _close_chunk(self) -> None:
        self._leaves.append(self._digest.digest())
        self._digest = self._new_digest()
        self._bytes_in_chunk = 0

    def _new_digest(self):
        return hashlib.new(self._algorithm)


def tree_hash(data: BytesLike, algorithm: str = "sha256") -> bytes:
    """Compute the tree hash of an in-memory byte sequence."""
    h = TreeHash(algorithm)
    h.update(data)
    return h.digest()

# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

from __future__ import annotations

from collections import Counter
from typing import BinaryIO, Dict, List, Optional, Tuple

import pytest

from glacierpipe.client.storage import ArchiveStorage
from glacierpipe.errors import TransferError
from glacierpipe.events import EventLog
from glacierpipe.security.tree_hash import tree_hash

KiB = 1024
MiB = KiB * KiB


class FakeArchiveStorage(ArchiveStorage):
    """In-memory multipart upload target.

    Args:
        failures: number of attempts to fail, by part start offset.
        wrong_checksums: number of attempts to answer with a bogus checksum,
            by part start offset.
        double_read: read the body twice per attempt, rewinding in between.

    """

    upload_id = "upload-0001"

    def __init__(
        self,
        failures: Optional[Dict[int, int]] = None,
        wrong_checksums: Optional[Dict[int, int]] = None,
        double_read: bool = True,
    ) -> None:
        self.failures = dict(failures or {})
        self.wrong_checksums = dict(wrong_checksums or {})
        self.double_read = double_read
        self.attempts: Counter = Counter()
        self.parts: Dict[int, bytes] = {}
        self.ranges: List[Tuple[int, int]] = []
        self.begun: List[Tuple[str, str, int]] = []
        self.completed: Optional[Tuple[str, str, int, str]] = None

    def begin_multipart_upload(
        self, vault: str, description: str, part_size: int
    ) -> str:
        self.begun.append((vault, description, part_size))
        return self.upload_id

    def upload_part(
        self,
        vault: str,
        upload_id: str,
        start: int,
        end: int,
        checksum: str,
        body: BinaryIO,
    ) -> str:
        assert upload_id == self.upload_id
        self.attempts[start] += 1

        if self.double_read:
            body.read()
            body.seek(0)
        data = body.read()

        if self.failures.get(start, 0) > 0:
            self.failures[start] -= 1
            raise TransferError("connection reset by peer")

        assert len(data) == end - start + 1
        self.parts[start] = data
        self.ranges.append((start, end))

        if self.wrong_checksums.get(start, 0) > 0:
            self.wrong_checksums[start] -= 1
            return "00" * 32
        return tree_hash(data).hex().upper()

    def complete_multipart_upload(
        self, vault: str, upload_id: str, archive_size: int, checksum: str
    ) -> str:
        assert upload_id == self.upload_id
        self.completed = (vault, upload_id, archive_size, checksum)
        return f"/-/vaults/{vault}/archives/archive-0001"

    @property
    def archive(self) -> bytes:
        return b"".join(self.parts[start] for start in sorted(self.parts))


@pytest.fixture
def storage() -> FakeArchiveStorage:
    return FakeArchiveStorage()


@pytest.fixture
def event_log() -> EventLog:
    return EventLog()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps: List[float]):
    return sleeps.append


@pytest.fixture
def make_storage():
    return FakeArchiveStorage

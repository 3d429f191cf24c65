# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Archive storage interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import BinaryIO


class ArchiveStorage(ABC):
    """Multipart upload operations of a cold storage service.

    Implementations raise :class:`glacierpipe.errors.TransferError` when a call
    fails on the transport or the service side.
    """

    @abstractmethod
    def begin_multipart_upload(
        self, vault: str, description: str, part_size: int
    ) -> str:
        """Start a multipart upload and return its upload id."""

    @abstractmethod
    def upload_part(
        self,
        vault: str,
        upload_id: str,
        start: int,
        end: int,
        checksum: str,
        body: BinaryIO,
    ) -> str:
        """Upload the inclusive byte range ``start..end`` of the archive.

        Args:
            vault: name of the vault.
            upload_id: id returned by :meth:`begin_multipart_upload`.
            start: offset of the first byte of the part.
            end: offset of the last byte of the part.
            checksum: hex encoded tree hash of the part.
            body: seekable stream with the part contents.

        Returns:
            hex encoded tree hash of the part as computed by the service.

        """

    @abstractmethod
    def complete_multipart_upload(
        self, vault: str, upload_id: str, archive_size: int, checksum: str
    ) -> str:
        """Assemble the uploaded parts and return the archive location."""

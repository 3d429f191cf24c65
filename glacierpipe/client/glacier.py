# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Amazon Glacier storage client."""

from __future__ import annotations

from typing import Any, BinaryIO, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from glacierpipe.client.storage import ArchiveStorage
from glacierpipe.errors import TransferError
from glacierpipe.logging import logger

# Retries are handled by the pipe so that the staged part can be re-sent.
_CLIENT_CONFIG = Config(retries={"total_max_attempts": 1, "mode": "standard"})


def build_glacier_client(
    region: str,
    access_key: str,
    secret_key: str,
    endpoint_url: Optional[str] = None,
) -> Any:
    """Create a boto3 Glacier client."""
    return boto3.client(
        "glacier",
        region_name=region,
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=_CLIENT_CONFIG,
    )


class GlacierArchiveStorage(ArchiveStorage):
    """Multipart upload operations over a boto3 Glacier client."""

    def __init__(self, client: Any, account_id: str = "-") -> None:
        """Initialize GlacierArchiveStorage."""
        self._client = client
        self._account_id = account_id

    @property
    def client(self) -> Any:
        """Wrapped boto3 client."""
        return self._client

    def begin_multipart_upload(
        self, vault: str, description: str, part_size: int
    ) -> str:
        """Start a multipart upload and return its upload id."""
        try:
            resp = self._client.initiate_multipart_upload(
                accountId=self._account_id,
                vaultName=vault,
                archiveDescription=description,
                partSize=str(part_size),
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"Cannot initiate multipart upload: {exc}") from exc

        return resp["uploadId"]

    def upload_part(
        self,
        vault: str,
        upload_id: str,
        start: int,
        end: int,
        checksum: str,
        body: BinaryIO,
    ) -> str:
        """Upload one part and return the tree hash computed by Glacier."""
        content_range = f"bytes {start}-{end}/*"
        logger.debug("Uploading %s of %s", content_range, upload_id)
        try:
            resp = self._client.upload_multipart_part(
                accountId=self._account_id,
                vaultName=vault,
                uploadId=upload_id,
                checksum=checksum,
                range=content_range,
                body=body,
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"Cannot upload {content_range}: {exc}") from exc

        return resp["checksum"]

    def complete_multipart_upload(
        self, vault: str, upload_id: str, archive_size: int, checksum: str
    ) -> str:
        """Assemble the uploaded parts and return the archive location."""
        try:
            resp = self._client.complete_multipart_upload(
                accountId=self._account_id,
                vaultName=vault,
                uploadId=upload_id,
                archiveSize=str(archive_size),
                checksum=checksum,
            )
        except (ClientError, BotoCoreError) as exc:
            raise TransferError(f"Cannot complete multipart upload: {exc}") from exc

        return resp["location"]

# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Streaming multipart upload to Glacier."""

# pylint: disable=too-many-arguments

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Callable, Optional

from glacierpipe.client.storage import ArchiveStorage
from glacierpipe.errors import (
    ChecksumMismatchError,
    InvalidConfigError,
    MaxRetriesExceededError,
    SessionError,
    SourceReadError,
    TransferError,
    UploadInterruptedError,
)
from glacierpipe.events import (
    BackoffSleeping,
    BufferingEnded,
    BufferingProgress,
    BufferingStarted,
    Observer,
    PartHashComputed,
    PipeEvent,
    SessionAcquired,
    SessionDone,
    SessionFatal,
    UploadEnded,
    UploadError,
    UploadProgress,
    UploadStarted,
    null_observer,
)
from glacierpipe.io.buffer import StagingBuffer
from glacierpipe.io.observed import (
    DEFAULT_HEARTBEAT_INTERVAL,
    ObservedReader,
    ObservedWriter,
    ProgressReporter,
)
from glacierpipe.io.throttle import ThrottledReader
from glacierpipe.logging import logger
from glacierpipe.net.throttling import ThrottlingStrategy
from glacierpipe.security.tree_hash import TreeHash
from glacierpipe.utils.backoff import retry_delay_ms
from glacierpipe.utils.parts import validate_part_size

KiB = 1024
MiB = KiB * KiB
IO_CHUNK_SIZE = 256 * KiB
DEFAULT_PART_SIZE = 16 * MiB
# At five minutes between attempts, 1000 attempts span about three and a half days.
DEFAULT_MAX_RETRIES = 1000


class UploadState(str, Enum):
    """Upload session states."""

    INITIATING = "initiating"
    BUFFERING = "buffering"
    HASHED = "hashed"
    UPLOADING = "uploading"
    COMPLETING = "completing"
    DONE = "done"
    FATAL = "fatal"


@dataclass
class UploadSession:
    """State of one archive upload."""

    vault: str
    description: str
    part_size: int
    upload_id: Optional[str] = None
    state: UploadState = UploadState.INITIATING
    total_bytes: int = 0
    part_index: int = 0
    tree_hash: TreeHash = field(default_factory=TreeHash)


@dataclass
class Part:
    """A staged slice of the archive."""

    index: int
    start: int
    length: int
    digest: bytes
    attempts: int = 0

    @property
    def end(self) -> int:
        """Offset of the last byte of the part."""
        return self.start + self.length - 1

    @property
    def checksum(self) -> str:
        """Hex encoded tree hash."""
        return self.digest.hex()


class GlacierPipe:
    """Uploads a non-seekable stream as a Glacier multipart upload.

    The stream is read one part at a time into a staging buffer whose capacity
    is the part size. Each part is tree hashed while it is staged, then sent
    from the buffer, and re-sent with backoff when the transport fails or the
    service disagrees about the hash. Parts are uploaded strictly in order.

    Args:
        buffer: staging buffer; its capacity is the part size.
        storage: multipart upload operations.
        observer: receives progress and lifecycle events.
        max_retries: attempts per part before the upload is aborted.
        throttling_strategy: source of the upload rate; no limit if None.
        sleep: function used to wait between attempts.
        heartbeat_interval: seconds between idle progress flushes; None
            disables the heartbeat thread.

    """

    def __init__(
        self,
        buffer: StagingBuffer,
        storage: ArchiveStorage,
        observer: Optional[Observer] = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        throttling_strategy: Optional[ThrottlingStrategy] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        heartbeat_interval: Optional[float] = DEFAULT_HEARTBEAT_INTERVAL,
    ) -> None:
        """Initialize GlacierPipe."""
        validate_part_size(buffer.capacity)
        if max_retries < 1:
            raise InvalidConfigError(f"max retries must be at least 1: {max_retries}")

        self._buffer = buffer
        self._storage = storage
        self._observer = observer or null_observer
        self._max_retries = max_retries
        self._throttling_strategy = throttling_strategy
        self._sleep = sleep
        self._heartbeat_interval = heartbeat_interval

    @property
    def part_size(self) -> int:
        """Size of every part but the last."""
        return self._buffer.capacity

    @property
    def max_retries(self) -> int:
        """Attempts per part before the upload is aborted."""
        return self._max_retries

    def upload(self, source: BinaryIO, vault: str, description: str) -> str:
        """Upload everything readable from the source as one archive.

        Returns:
            location of the new archive.

        Raises:
            SessionError: the upload could not be started or completed.
            MaxRetriesExceededError: a part failed too many times.
            SourceReadError: the source could not be read.
            UploadInterruptedError: interrupted while blocked.

        """
        session = UploadSession(
            vault=vault, description=description, part_size=self.part_size
        )
        try:
            return self._run(session, source)
        except KeyboardInterrupt as exc:
            error = UploadInterruptedError(
                f"stopped in state '{session.state.value}' at part {session.part_index}"
            )
            self._fatal(session, error)
            raise error from exc
        except Exception as exc:
            self._fatal(session, exc)
            raise

    def _run(self, session: UploadSession, source: BinaryIO) -> str:
        session.upload_id = self._begin(session)
        self._emit(SessionAcquired(session.upload_id))

        while True:
            part = self._stage_part(session, source)
            if part is None:
                break

            self._upload_part(session, part)
            session.part_index += 1

            if part.length < self.part_size:
                break

        return self._complete(session)

    def _begin(self, session: UploadSession) -> str:
        try:
            return self._storage.begin_multipart_upload(
                session.vault, session.description, session.part_size
            )
        except TransferError as exc:
            raise SessionError(str(exc)) from exc

    def _stage_part(self, session: UploadSession, source: BinaryIO) -> Optional[Part]:
        """Read the next part from the source into the buffer."""
        self._set_state(session, UploadState.BUFFERING)
        index = session.part_index
        part_hash = TreeHash()

        self._emit(BufferingStarted(index))
        writer = self._buffer.open_writer()
        reporter = self._reporter(lambda n: self._emit(BufferingProgress(index, n)))
        with ObservedWriter(writer, reporter) as out:
            while self._buffer.remaining > 0:
                try:
                    chunk = source.read(min(self._buffer.remaining, IO_CHUNK_SIZE))
                except OSError as exc:
                    raise SourceReadError(str(exc)) from exc
                if not chunk:
                    break

                session.tree_hash.update(chunk)
                part_hash.update(chunk)
                out.write(chunk)

        length = self._buffer.length
        self._emit(BufferingEnded(index, length))
        if length == 0:
            return None

        part = Part(
            index=index,
            start=session.total_bytes,
            length=length,
            digest=part_hash.digest(),
        )
        session.total_bytes += length

        self._set_state(session, UploadState.HASHED)
        self._emit(PartHashComputed(index, part.digest))
        return part

    def _upload_part(self, session: UploadSession, part: Part) -> None:
        """Send a staged part, retrying until it is accepted."""
        self._set_state(session, UploadState.UPLOADING)

        while True:
            try:
                self._send(session, part)
                return
            except (TransferError, OSError) as exc:
                part.attempts += 1
                will_retry = part.attempts < self._max_retries
                logger.debug(
                    "Part %d attempt %d / %d failed: %r",
                    part.index,
                    part.attempts,
                    self._max_retries,
                    exc,
                )
                self._emit(UploadError(part.index, exc, part.attempts, will_retry))
                if not will_retry:
                    raise MaxRetriesExceededError(part.attempts, exc) from exc

            delay = retry_delay_ms(part.attempts)
            self._emit(BackoffSleeping(delay))
            self._sleep(delay / 1000)

    def _send(self, session: UploadSession, part: Part) -> None:
        assert session.upload_id is not None

        self._emit(UploadStarted(part.index))
        body = self._buffer.open_reader()
        reporter = self._reporter(lambda n: self._emit(UploadProgress(part.index, n)))
        if self._throttling_strategy is not None:
            body = ThrottledReader(
                body, self._throttling_strategy, pace_after_rewind=True
            )

        observed = ObservedReader(body, reporter)
        try:
            checksum = self._storage.upload_part(
                session.vault,
                session.upload_id,
                part.start,
                part.end,
                part.checksum,
                observed,  # type: ignore[arg-type]
            )
        finally:
            observed.close()
            self._emit(UploadEnded(part.index, reporter.total))

        if checksum is None or checksum.lower() != part.checksum:
            raise ChecksumMismatchError(part.checksum, checksum)

    def _complete(self, session: UploadSession) -> str:
        assert session.upload_id is not None
        self._set_state(session, UploadState.COMPLETING)

        digest = session.tree_hash.digest()
        try:
            location = self._storage.complete_multipart_upload(
                session.vault, session.upload_id, session.total_bytes, digest.hex()
            )
        except TransferError as exc:
            raise SessionError(str(exc)) from exc

        self._set_state(session, UploadState.DONE)
        self._emit(SessionDone(digest, location))
        return location

    def _fatal(self, session: UploadSession, error: BaseException) -> None:
        self._set_state(session, UploadState.FATAL)
        logger.debug("Upload %s aborted: %r", session.upload_id, error)
        self._emit(SessionFatal(error))

    def _reporter(self, callback: Callable[[int], None]) -> ProgressReporter:
        return ProgressReporter(callback, heartbeat_interval=self._heartbeat_interval)

    def _set_state(self, session: UploadSession, state: UploadState) -> None:
        logger.debug(
            "Part %d: %s -> %s", session.part_index, session.state.value, state.value
        )
        session.state = state

    def _emit(self, event: PipeEvent) -> None:
        self._observer(event)

# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""In-memory staging buffer for one multipart upload part."""

from __future__ import annotations

import io
from threading import Lock
from typing import List

from glacierpipe.errors import BufferOverflowError, BufferStateError, InvalidConfigError
from glacierpipe.utils.parts import MAX_PART_SIZE, is_power_of_two

KiB = 1024
MiB = KiB * KiB
DEFAULT_SEGMENT_SIZE = MiB


class StagingBuffer:
    """Fixed capacity byte buffer that is written once and read many times.

    The bytes read from a non-seekable source are staged here so that they
    can be sent again when an upload attempt fails, or when the transport reads
    the body twice within an attempt. Storage is split into equally sized
    segments which are allocated once and reused by every write pass.

    At most one writer may be open at a time, and only while no reader is open.
    Opening a writer discards the previously committed bytes.

    """

    def __init__(self, capacity: int, segment_size: int = DEFAULT_SEGMENT_SIZE) -> None:
        """Initialize StagingBuffer."""
        if segment_size <= 0:
            raise InvalidConfigError(f"segment size must be positive: {segment_size}")
        if (
            not is_power_of_two(capacity)
            or capacity > MAX_PART_SIZE
            or capacity % segment_size != 0
        ):
            raise InvalidConfigError(
                "buffer capacity must be a power of two up to 4 GiB and a multiple "
                f"of {segment_size}: {capacity}"
            )

        self._capacity = capacity
        self._segment_size = segment_size
        self._segments: List[bytearray] = [
            bytearray(segment_size) for _ in range(capacity // segment_size)
        ]
        self._length = 0
        # -1 while a writer is open, otherwise the number of open readers.
        self._stream_count = 0
        self._lock = Lock()

    @property
    def capacity(self) -> int:
        """Maximum number of bytes the buffer can hold."""
        return self._capacity

    @property
    def length(self) -> int:
        """Number of bytes committed by the last write pass."""
        return self._length

    @property
    def remaining(self) -> int:
        """Number of bytes that still fit in the buffer."""
        return self._capacity - self._length

    def open_writer(self) -> BufferWriter:
        """Start a new write pass from offset zero."""
        with self._lock:
            if self._stream_count < 0:
                raise BufferStateError("a writer is already open")
            if self._stream_count > 0:
                raise BufferStateError(f"{self._stream_count} reader(s) still open")
            self._stream_count = -1
            self._length = 0
        return BufferWriter(self)

    def open_reader(self) -> BufferReader:
        """Start a read pass over the committed bytes."""
        with self._lock:
            if self._stream_count < 0:
                raise BufferStateError("a writer is open")
            self._stream_count += 1
        return BufferReader(self)

    def _release_writer(self) -> None:
        with self._lock:
            self._stream_count = 0

    def _release_reader(self) -> None:
        with self._lock:
            self._stream_count -= 1

    def _store(self, position: int, data: memoryview) -> None:
        offset = 0
        while offset < len(data):
            index, inner = divmod(position + offset, self._segment_size)
            size = min(self._segment_size - inner, len(data) - offset)
            self._segments[index][inner : inner + size] = data[offset : offset + size]
            offset += size
        self._length = position + len(data)

    def _load(self, position: int, out: memoryview) -> int:
        size = min(len(out), self._length - position)
        offset = 0
        while offset < size:
            index, inner = divmod(position + offset, self._segment_size)
            chunk = min(self._segment_size - inner, size - offset)
            segment = memoryview(self._segments[index])
            out[offset : offset + chunk] = segment[inner : inner + chunk]
            offset += chunk
        return max(size, 0)


class _BufferStream(io.RawIOBase):
    def _check_closed(self) -> None:
        if self.closed:
            raise ValueError("I/O operation on closed stream")


class BufferWriter(_BufferStream):
    """Write pass of a :class:`StagingBuffer`."""

    def __init__(self, buffer: StagingBuffer) -> None:
        """Initialize BufferWriter."""
        super().__init__()
        self._buffer = buffer
        self._position = 0

    def writable(self) -> bool:
        """Return True."""
        return True

    def write(self, b) -> int:  # type: ignore[override]
        """Append bytes to the buffer."""
        self._check_closed()
        data = memoryview(b).cast("B")
        if self._position + len(data) > self._buffer.capacity:
            raise BufferOverflowError(
                f"write of {len(data)} bytes after {self._position} bytes "
                f"exceeds capacity {self._buffer.capacity}"
            )

        self._buffer._store(self._position, data)  # pylint: disable=protected-access
        self._position += len(data)
        return len(data)

    def tell(self) -> int:
        """Return the number of bytes written so far."""
        return self._position

    def close(self) -> None:
        """Commit the written bytes and release the buffer."""
        if not self.closed:
            self._buffer._release_writer()  # pylint: disable=protected-access
        super().close()


class BufferReader(_BufferStream):
    """Read pass over the committed bytes of a :class:`StagingBuffer`.

    Supports random access, plus ``mark``/``rewind`` to return to a remembered
    position.
    """

    def __init__(self, buffer: StagingBuffer) -> None:
        """Initialize BufferReader."""
        super().__init__()
        self._buffer = buffer
        self._position = 0
        self._mark = 0

    def readable(self) -> bool:
        """Return True."""
        return True

    def seekable(self) -> bool:
        """Return True."""
        return True

    def readinto(self, b) -> int:  # type: ignore[override]
        """Read committed bytes into a pre-allocated buffer."""
        self._check_closed()
        if self._position >= self._buffer.length:
            return 0

        read = self._buffer._load(  # pylint: disable=protected-access
            self._position, memoryview(b).cast("B")
        )
        self._position += read
        return read

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        """Change the stream position."""
        self._check_closed()
        if whence == io.SEEK_SET:
            position = offset
        elif whence == io.SEEK_CUR:
            position = self._position + offset
        elif whence == io.SEEK_END:
            position = self._buffer.length + offset
        else:
            raise ValueError(f"invalid whence ({whence})")

        if position < 0:
            raise ValueError(f"negative seek position {position}")
        self._position = position
        return self._position

    def tell(self) -> int:
        """Return the current stream position."""
        return self._position

    def mark(self) -> None:
        """Remember the current position."""
        self._mark = self._position

    def rewind(self) -> None:
        """Return to the last marked position, or the start if none."""
        self.seek(self._mark)

    def close(self) -> None:
        """Release the buffer."""
        if not self.closed:
            self._buffer._release_reader()  # pylint: disable=protected-access
        super().close()

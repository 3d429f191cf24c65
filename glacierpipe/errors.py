# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Glacier Pipe errors."""

from __future__ import annotations

from typing import Optional


class GlacierPipeError(Exception):
    """Glacier Pipe exception base."""


class InvalidConfigError(GlacierPipeError):
    """Invalid configuration provided."""

    def __init__(self, detail: Optional[str] = None) -> None:
        """Initialize InvalidConfigError."""
        super().__init__(f"Invalid configuration provided: {detail}")


class TransferError(GlacierPipeError):
    """Object transfer failed."""

    def __init__(self, detail: Optional[str] = None) -> None:
        """Initialize TransferError."""
        super().__init__(f"Transfer failed: {detail}")


class ChecksumMismatchError(TransferError):
    """Tree hash echoed by the service does not match the local one."""

    def __init__(self, expected: str, actual: Optional[str]) -> None:
        """Initialize ChecksumMismatchError."""
        super().__init__(f"Checksum mismatch (expected {expected}, got {actual})")
        self.expected = expected
        self.actual = actual


class SessionError(GlacierPipeError):
    """Multipart upload session could not be started or completed."""

    def __init__(self, detail: Optional[str] = None) -> None:
        """Initialize SessionError."""
        super().__init__(f"Upload session failed: {detail}")


class MaxRetriesExceededError(GlacierPipeError):
    """Max retries exceeded."""

    def __init__(self, attempts: int, exc: Optional[Exception] = None) -> None:
        """Initialize MaxRetriesExceededError."""
        super().__init__(f"Failed to upload after {attempts} attempts: {str(exc)}")
        self.attempts = attempts


class UploadInterruptedError(GlacierPipeError):
    """Upload was interrupted while blocked."""

    def __init__(self, detail: Optional[str] = None) -> None:
        """Initialize UploadInterruptedError."""
        super().__init__(f"Upload interrupted: {detail}")


class SourceReadError(GlacierPipeError):
    """Input stream failed."""

    def __init__(self, detail: Optional[str] = None) -> None:
        """Initialize SourceReadError."""
        super().__init__(f"Failed to read from the source: {detail}")


class DigestUnavailableError(GlacierPipeError):
    """Required hash algorithm is not available."""

    def __init__(self, algorithm: str) -> None:
        """Initialize DigestUnavailableError."""
        super().__init__(f"Hash algorithm '{algorithm}' is not available")


class BufferStateError(GlacierPipeError):
    """Staging buffer was opened out of order."""

    def __init__(self, detail: Optional[str] = None) -> None:
        """Initialize BufferStateError."""
        super().__init__(f"Invalid buffer state: {detail}")


class BufferOverflowError(GlacierPipeError):
    """Write would overflow the staging buffer."""

    def __init__(self, detail: Optional[str] = None) -> None:
        """Initialize BufferOverflowError."""
        super().__init__(f"Buffer overflow: {detail}")

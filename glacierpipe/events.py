# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Events reported by the upload pipeline.

Progress and lifecycle of an upload are published as instances of the
dataclasses below through a single callable, the observer. Observers are
called synchronously and must not block; progress events may also arrive from
the idle-flush heartbeat thread.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Type, TypeVar, Union

from glacierpipe.logging import logger as default_logger


@dataclass(frozen=True)
class SessionAcquired:
    """The service assigned an upload id."""

    upload_id: str


@dataclass(frozen=True)
class BufferingStarted:
    """Started reading a part from the source."""

    part_index: int


@dataclass(frozen=True)
class BufferingProgress:
    """Bytes of a part have been staged."""

    part_index: int
    bytes: int


@dataclass(frozen=True)
class BufferingEnded:
    """Finished reading a part from the source."""

    part_index: int
    bytes: int


@dataclass(frozen=True)
class PartHashComputed:
    """Tree hash of a staged part."""

    part_index: int
    digest: bytes


@dataclass(frozen=True)
class UploadStarted:
    """An upload attempt for a part has opened its body."""

    part_index: int


@dataclass(frozen=True)
class UploadProgress:
    """Bytes of a part body have been consumed by the transport.

    ``bytes`` is negative when the transport rewinds the body.
    """

    part_index: int
    bytes: int


@dataclass(frozen=True)
class UploadEnded:
    """An upload attempt for a part has closed its body."""

    part_index: int
    bytes: int


@dataclass(frozen=True)
class UploadError:
    """An upload attempt failed."""

    part_index: int
    error: Exception
    attempt: int
    will_retry: bool


@dataclass(frozen=True)
class BackoffSleeping:
    """Waiting before the next attempt."""

    duration_ms: int


@dataclass(frozen=True)
class SessionDone:
    """The archive was assembled by the service."""

    digest: bytes
    location: str


@dataclass(frozen=True)
class SessionFatal:
    """The upload was aborted."""

    error: BaseException


PipeEvent = Union[
    SessionAcquired,
    BufferingStarted,
    BufferingProgress,
    BufferingEnded,
    PartHashComputed,
    UploadStarted,
    UploadProgress,
    UploadEnded,
    UploadError,
    BackoffSleeping,
    SessionDone,
    SessionFatal,
]
Observer = Callable[[PipeEvent], None]

EventT = TypeVar("EventT")


def null_observer(event: PipeEvent) -> None:  # pylint: disable=unused-argument
    """Discard the event."""


class EventLog:
    """Observer that records every event in order."""

    def __init__(self) -> None:
        """Initialize EventLog."""
        self.events: List[PipeEvent] = []

    def __call__(self, event: PipeEvent) -> None:
        """Record the event."""
        self.events.append(event)

    def of_type(self, *types: Type[EventT]) -> List[EventT]:
        """Recorded events of the given types."""
        return [e for e in self.events if isinstance(e, types)]  # type: ignore[misc]


class CompositeObserver:
    """Observer that forwards every event to several observers."""

    def __init__(self, observers: Iterable[Observer]) -> None:
        """Initialize CompositeObserver."""
        self._observers = list(observers)

    def __call__(self, event: PipeEvent) -> None:
        """Forward the event."""
        for observer in self._observers:
            observer(event)


class LoggingObserver:
    """Observer that writes lifecycle events to a logger.

    Byte progress events are ignored.
    """

    def __init__(self, logger: logging.Logger = default_logger) -> None:
        """Initialize LoggingObserver."""
        self._logger = logger

    def __call__(self, event: PipeEvent) -> None:  # noqa: C901
        """Log the event."""
        log = self._logger
        if isinstance(event, SessionAcquired):
            log.info("Upload ID: %s", event.upload_id)
        elif isinstance(event, BufferingStarted):
            log.debug("Part %d: buffering", event.part_index)
        elif isinstance(event, BufferingEnded):
            log.debug("Part %d: buffered %d bytes", event.part_index, event.bytes)
        elif isinstance(event, PartHashComputed):
            log.info("Part %d: tree hash %s", event.part_index, event.digest.hex())
        elif isinstance(event, UploadStarted):
            log.debug("Part %d: uploading", event.part_index)
        elif isinstance(event, UploadEnded):
            log.debug("Part %d: upload pass ended", event.part_index)
        elif isinstance(event, UploadError):
            log.warning(
                "Part %d: error uploading (attempt %d): %s. %s...",
                event.part_index,
                event.attempt,
                event.error,
                "Retrying" if event.will_retry else "Aborting",
            )
        elif isinstance(event, BackoffSleeping):
            log.info("Sleeping for %.1f seconds...", event.duration_ms / 1000)
        elif isinstance(event, SessionDone):
            log.info(
                "Done. Tree hash %s, location %s", event.digest.hex(), event.location
            )
        elif isinstance(event, SessionFatal):
            log.error("Fatal error: %s. Aborting.", event.error)

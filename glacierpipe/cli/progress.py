# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Progress bars for the upload pipeline."""

from __future__ import annotations

import sys
from threading import Lock
from typing import IO, Optional

from tqdm import tqdm

from glacierpipe.events import (
    BufferingEnded,
    BufferingProgress,
    BufferingStarted,
    PipeEvent,
    UploadEnded,
    UploadProgress,
    UploadStarted,
)

KiB = 1024


class TqdmProgressObserver:
    """Observer that draws a progress bar for every buffering and upload pass.

    Only byte progress is rendered. Lifecycle messages are left to the logger,
    which should be redirected through tqdm while the bars are shown.
    """

    def __init__(
        self, part_size: int, file: Optional[IO[str]] = None, disable: bool = False
    ) -> None:
        """Initialize TqdmProgressObserver."""
        self._part_size = part_size
        self._file = file or sys.stderr
        self._disable = disable
        self._lock = Lock()
        self._pbar: Optional[tqdm] = None
        self._part_length = part_size

    def __call__(self, event: PipeEvent) -> None:
        """Update the progress bars."""
        with self._lock:
            if isinstance(event, BufferingStarted):
                self._open(f"Part {event.part_index} buffering", self._part_size)
            elif isinstance(event, BufferingEnded):
                self._part_length = event.bytes
                self._close()
            elif isinstance(event, UploadStarted):
                self._open(f"Part {event.part_index} uploading", self._part_length)
            elif isinstance(event, UploadEnded):
                self._close()
            elif isinstance(event, (BufferingProgress, UploadProgress)):
                if self._pbar is not None:
                    self._pbar.update(event.bytes)

    def close(self) -> None:
        """Close the bar in progress, if any."""
        with self._lock:
            self._close()

    def _open(self, desc: str, total: int) -> None:
        self._close()
        self._pbar = tqdm(
            desc=desc,
            total=total,
            unit="B",
            unit_scale=True,
            unit_divisor=KiB,
            file=self._file,
            leave=False,
            disable=self._disable,
        )

    def _close(self) -> None:
        if self._pbar is not None:
            self._pbar.close()
            self._pbar = None

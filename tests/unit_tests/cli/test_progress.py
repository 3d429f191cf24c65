# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Test TqdmProgressObserver"""

from __future__ import annotations

import io

from glacierpipe.cli.progress import TqdmProgressObserver
from glacierpipe.events import (
    BufferingEnded,
    BufferingProgress,
    BufferingStarted,
    SessionAcquired,
    UploadEnded,
    UploadProgress,
    UploadStarted,
)

MiB = 1024 * 1024


def test_progress_bars_follow_passes():
    out = io.StringIO()
    observer = TqdmProgressObserver(MiB, file=out)

    observer(SessionAcquired("upload-0001"))
    observer(BufferingStarted(0))
    assert observer._pbar is not None  # pylint: disable=protected-access
    assert observer._pbar.total == MiB  # pylint: disable=protected-access
    observer(BufferingProgress(0, 1000))
    observer(BufferingEnded(0, 1000))
    assert observer._pbar is None  # pylint: disable=protected-access

    observer(UploadStarted(0))
    pbar = observer._pbar  # pylint: disable=protected-access
    assert pbar is not None and pbar.total == 1000
    observer(UploadProgress(0, 1000))
    observer(UploadProgress(0, -1000))
    observer(UploadProgress(0, 1000))
    assert pbar.n == 1000
    observer(UploadEnded(0, 1000))
    assert observer._pbar is None  # pylint: disable=protected-access

    assert "Part 0 buffering" in out.getvalue()
    assert "Part 0 uploading" in out.getvalue()


def test_progress_ignores_stray_events():
    observer = TqdmProgressObserver(MiB, file=io.StringIO(), disable=True)

    observer(UploadProgress(0, 10))
    observer(UploadEnded(0, 10))
    observer.close()

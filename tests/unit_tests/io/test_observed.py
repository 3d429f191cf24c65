# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Test observed streams"""

from __future__ import annotations

import io
import threading
from typing import List

import pytest

from glacierpipe.io.observed import ObservedReader, ObservedWriter, ProgressReporter


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def reports() -> List[int]:
    return []


@pytest.fixture
def reporter(clock: FakeClock, reports: List[int]) -> ProgressReporter:
    return ProgressReporter(reports.append, heartbeat_interval=None, clock=clock)


def test_reporter_coalesces_counts(
    reporter: ProgressReporter, clock: FakeClock, reports: List[int]
):
    reporter.add(10)
    reporter.add(20)
    assert reports == []

    clock.now = 0.2
    reporter.add(5)
    assert reports == [35]

    clock.now = 0.25
    reporter.add(7)
    assert reports == [35]

    reporter.close()
    assert reports == [35, 7]
    assert reporter.total == 42


def test_reporter_flush_skips_empty(reporter: ProgressReporter, reports: List[int]):
    reporter.flush()
    reporter.add(0)
    reporter.close()

    assert reports == []


def test_reporter_heartbeat_flushes_idle_counts():
    flushed = threading.Event()
    reports: List[int] = []

    def _callback(count: int) -> None:
        reports.append(count)
        flushed.set()

    reporter = ProgressReporter(_callback, min_interval=0.05, heartbeat_interval=0.01)
    try:
        reporter.add(3)
        assert flushed.wait(timeout=5)
        assert reports == [3]
    finally:
        reporter.close()

    assert sum(reports) == 3


def test_observed_writer_counts_bytes(reporter: ProgressReporter, reports: List[int]):
    raw = io.BytesIO()
    with ObservedWriter(raw, reporter) as writer:  # type: ignore[arg-type]
        assert writer.writable()
        writer.write(b"hello ")
        writer.write(b"world")
        assert raw.getvalue() == b"hello world"

    assert raw.closed
    assert reporter.total == 11
    assert sum(reports) == 11


def test_observed_reader_reports_net_progress(
    reporter: ProgressReporter, reports: List[int]
):
    data = b"0123456789" * 10
    raw = io.BytesIO(data)
    reader = ObservedReader(raw, reporter)  # type: ignore[arg-type]

    assert reader.read() == data
    assert reporter.total == 100

    # A rewind gives the consumed bytes back.
    reader.seek(40)
    assert reporter.total == 40

    # Seeking forward over bytes read earlier counts them again.
    reader.seek(0)
    reader.read(10)
    reader.seek(90)
    assert reporter.total == 90
    assert reader.read() == data[90:]
    assert reporter.total == 100

    reader.close()
    assert raw.closed
    assert sum(reports) == 100


def test_observed_reader_skip_before_read(reporter: ProgressReporter):
    reader = ObservedReader(io.BytesIO(b"abcdef"), reporter)  # type: ignore[arg-type]

    reader.seek(0, io.SEEK_END)
    assert reader.tell() == 6
    assert reporter.total == 0

    reader.seek(0)
    assert reader.read(2) == b"ab"
    assert reporter.total == 2

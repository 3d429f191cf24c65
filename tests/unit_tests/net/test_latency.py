# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Test latency probing"""

from __future__ import annotations

import threading
from typing import Iterator, List, Optional

import pytest
import requests
import requests_mock

from glacierpipe.net.latency import HttpLatencyProbe, LatencyMonitor, LatencyStats

QOS_URL = "http://glacier.us-east-1.amazonaws.com/"


def test_latency_stats_from_samples():
    stats = LatencyStats.from_samples([10.0, 20.0, 30.0, 40.0])

    assert stats.mean == pytest.approx(25.0)
    assert stats.stddev == pytest.approx(125**0.5)
    assert stats.samples == 4


def test_latency_stats_single_sample():
    assert LatencyStats.from_samples([7.0]) == LatencyStats(7.0, 0.0, 1)


def test_latency_stats_requires_samples():
    with pytest.raises(ValueError):
        LatencyStats.from_samples([])


def test_http_probe_measures_round_trip(requests_mock: requests_mock.Mocker):
    requests_mock.head(QOS_URL, status_code=302, headers={"Location": "/elsewhere"})
    probe = HttpLatencyProbe(QOS_URL)

    latency = probe()

    assert probe.url == QOS_URL
    assert latency is not None and latency >= 0
    assert requests_mock.call_count == 1
    assert requests_mock.last_request.method == "HEAD"


def test_http_probe_failure(requests_mock: requests_mock.Mocker):
    requests_mock.head(QOS_URL, exc=requests.exceptions.ConnectTimeout)

    assert HttpLatencyProbe(QOS_URL)() is None


def _scripted_probe(values: List[Optional[float]]):
    it: Iterator[Optional[float]] = iter(values)
    return lambda: next(it)


def test_monitor_publishes_rolling_window():
    monitor = LatencyMonitor(_scripted_probe([10.0, 20.0, None, 30.0, 40.0]), 3, 1.0)

    assert monitor.take_stats() is None

    monitor.sample()
    assert monitor.take_stats() == LatencyStats(10.0, 0.0, 1)
    assert monitor.take_stats() is None

    monitor.sample()
    monitor.sample()  # failed probes are skipped
    stats = monitor.take_stats()
    assert stats is not None and stats.samples == 2

    monitor.sample()
    monitor.sample()
    stats = monitor.take_stats()
    assert stats is not None
    assert stats.samples == 3
    assert stats.mean == pytest.approx(30.0)


def test_monitor_invalid_window():
    with pytest.raises(ValueError):
        LatencyMonitor(lambda: 1.0, 0, 1.0)


def test_monitor_runs_in_background():
    sampled = threading.Event()

    def _probe() -> float:
        sampled.set()
        return 5.0

    monitor = LatencyMonitor(_probe, window=2, interval=0.01).start()
    try:
        assert sampled.wait(timeout=5)
    finally:
        monitor.stop(wait=True)

    assert monitor.window == 2
    stats = monitor.take_stats()
    assert stats is not None and stats.mean == 5.0

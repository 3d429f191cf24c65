# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Test config reloading"""

from __future__ import annotations

import math
import os
import threading
from pathlib import Path
from typing import List

import pytest

from glacierpipe.net.qos import QOSThrottlingStrategy
from glacierpipe.net.throttling import FixedThrottlingStrategy
from glacierpipe.schema.config import PipeConfig, load_config
from glacierpipe.schema.watch import ConfigWatcher, ReloadingThrottlingStrategy

MiB = 1024 * 1024

BASE_LINES = [
    "endpoint: us-west-2",
    "vault: photos",
    "accessKey: AKIAFROMFILE",
    "secretKey: secret-from-file",
]


def _write(path: Path, *lines: str) -> None:
    previous = path.stat().st_mtime_ns if path.exists() else 0
    path.write_text("\n".join([*BASE_LINES, *lines]), encoding="utf-8")
    # Filesystems with coarse timestamps may not see a quick rewrite.
    bumped = max(path.stat().st_mtime_ns, previous + 1_000_000_000)
    os.utime(path, ns=(bumped, bumped))


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    _write(path, "max-upload-rate: 512K")
    return path


@pytest.fixture
def updates() -> List[PipeConfig]:
    return []


@pytest.fixture
def watcher(config_file: Path, updates: List[PipeConfig]) -> ConfigWatcher:
    return ConfigWatcher(str(config_file), updates.append)


def test_watcher_ignores_unchanged_file(watcher: ConfigWatcher, updates):
    watcher.check()
    watcher.check()

    assert updates == []


def test_watcher_reloads_changed_file(
    watcher: ConfigWatcher, config_file: Path, updates
):
    _write(config_file, "max-upload-rate: 1M")
    watcher.check()
    watcher.check()

    assert len(updates) == 1
    assert updates[0].max_upload_rate == MiB
    assert updates[0].vault == "photos"


def test_watcher_skips_invalid_file(watcher: ConfigWatcher, config_file: Path, updates):
    _write(config_file, "partsize: 3M")
    watcher.check()
    assert updates == []

    _write(config_file, "max-upload-rate: automatic")
    watcher.check()
    assert len(updates) == 1
    assert updates[0].adaptive


def test_watcher_keeps_override_precedence(config_file: Path, updates):
    watcher = ConfigWatcher(
        str(config_file), updates.append, overrides={"vault": "from-cli"}
    )

    _write(config_file, "max-upload-rate: 2M")
    watcher.check()

    assert updates[0].vault == "from-cli"
    assert updates[0].max_upload_rate == 2 * MiB


def test_watcher_tolerates_missing_file(
    watcher: ConfigWatcher, config_file: Path, updates
):
    config_file.unlink()

    watcher.check()

    assert updates == []


def test_watcher_runs_in_background(config_file: Path):
    reloaded = threading.Event()
    watcher = ConfigWatcher(
        str(config_file), lambda _: reloaded.set(), interval=0.01
    )

    with watcher:
        _write(config_file, "max-upload-rate: 1M")
        assert reloaded.wait(timeout=5)


def test_reloading_strategy_switches_on_rate_change(config_file: Path):
    strategy = ReloadingThrottlingStrategy(load_config(str(config_file)))
    watcher = ConfigWatcher(str(config_file), strategy.config_updated)
    assert strategy.get_bytes_per_second() == 512 * 1024

    _write(config_file, "max-upload-rate: 1M")
    watcher.check()
    assert isinstance(strategy.strategy, FixedThrottlingStrategy)
    assert strategy.get_bytes_per_second() == MiB

    _write(config_file, "max-upload-rate: automatic")
    watcher.check()
    assert isinstance(strategy.strategy, QOSThrottlingStrategy)
    assert strategy.config.adaptive

    _write(config_file)
    watcher.check()
    assert strategy.strategy is None
    assert math.isinf(strategy.get_bytes_per_second())

    strategy.close()


def test_reloading_strategy_keeps_strategy_for_same_rate(config_file: Path):
    strategy = ReloadingThrottlingStrategy(load_config(str(config_file)))
    inner = strategy.strategy

    strategy.config_updated(
        load_config(str(config_file), max_retries=3, part_size="2M")
    )

    assert strategy.strategy is inner
    assert strategy.config.max_retries == 3
    strategy.close()

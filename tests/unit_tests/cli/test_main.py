# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Test Glacier Pipe CLI"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from glacierpipe.cli.main import app

MiB = 1024 * 1024

runner = CliRunner()

ENV = {
    "AWS_ACCESS_KEY_ID": "AKIAEXAMPLE",
    "AWS_SECRET_ACCESS_KEY": "wJalrXUtnFEMI/EXAMPLEKEY",
}
NO_ENV = dict.fromkeys(ENV)


@pytest.fixture(autouse=True)
def no_default_config(tmp_path: Path):
    with patch("glacierpipe.cli.main.DEFAULT_CONFIG_PATH", tmp_path / "absent.yaml"):
        yield


@pytest.fixture
def patch_glacier(storage):
    with patch("glacierpipe.cli.main.build_glacier_client") as build_client, patch(
        "glacierpipe.cli.main.GlacierArchiveStorage", return_value=storage
    ):
        yield build_client


def test_upload(patch_glacier, storage):
    data = os.urandom(MiB + 100)

    result = runner.invoke(
        app,
        ["upload", "nightly", "-e", "us-west-2", "-v", "backups", "-p", "1M"],
        input=data,
        env=ENV,
    )

    assert result.exit_code == 0, result.output
    assert "/-/vaults/backups/archives/archive-0001" in result.output
    assert storage.archive == data
    assert storage.begun == [("backups", "nightly", MiB)]
    patch_glacier.assert_called_once_with(
        "us-west-2",
        ENV["AWS_ACCESS_KEY_ID"],
        ENV["AWS_SECRET_ACCESS_KEY"],
        endpoint_url="https://glacier.us-west-2.amazonaws.com/",
    )


def test_upload_with_config_file(patch_glacier, storage, tmp_path: Path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "endpoint: eu-west-1\nvault: photos\npartsize: 1M\nmax-upload-rate: 64M\n"
        "accessKey: AKIAFROMFILE\nsecretKey: secret-from-file\n",
        encoding="utf-8",
    )

    result = runner.invoke(
        app, ["upload", "album", "-c", str(config_file)], input=b"snapshot", env=NO_ENV
    )

    assert result.exit_code == 0, result.output
    assert storage.archive == b"snapshot"
    assert storage.begun == [("photos", "album", MiB)]
    patch_glacier.assert_called_once_with(
        "eu-west-1",
        "AKIAFROMFILE",
        "secret-from-file",
        endpoint_url="https://glacier.eu-west-1.amazonaws.com/",
    )


def test_upload_watches_config_file(patch_glacier, storage, tmp_path: Path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "endpoint: eu-west-1\nvault: photos\npartsize: 1M\n", encoding="utf-8"
    )

    with patch("glacierpipe.cli.main.ConfigWatcher") as watcher_cls:
        result = runner.invoke(
            app, ["upload", "album", "-c", str(config_file)], input=b"abc", env=ENV
        )

    assert result.exit_code == 0, result.output
    assert storage.archive == b"abc"
    assert watcher_cls.call_args.args[0] == str(config_file)
    assert watcher_cls.call_args.kwargs["overrides"]["access_key"] == (
        ENV["AWS_ACCESS_KEY_ID"]
    )
    watcher_cls.return_value.start.return_value.stop.assert_called_once()


def test_upload_uses_default_config_file(patch_glacier, storage, tmp_path: Path):
    config_file = tmp_path / "default.yaml"
    config_file.write_text(
        "endpoint: us-east-1\nvault: default-vault\n", encoding="utf-8"
    )

    with patch("glacierpipe.cli.main.DEFAULT_CONFIG_PATH", config_file):
        result = runner.invoke(
            app, ["upload", "archive", "-p", "1M"], input=b"abc", env=ENV
        )

    assert result.exit_code == 0, result.output
    assert storage.begun[0][0] == "default-vault"


def test_upload_invalid_part_size(patch_glacier):
    result = runner.invoke(
        app,
        ["upload", "nightly", "-e", "us-east-1", "-v", "backups", "-p", "3M"],
        input=b"data",
        env=ENV,
    )

    assert result.exit_code == 1
    assert "Invalid configuration provided" in result.output
    patch_glacier.assert_not_called()


def test_upload_missing_credentials(patch_glacier):
    result = runner.invoke(
        app,
        ["upload", "nightly", "-e", "us-east-1", "-v", "backups"],
        input=b"data",
        env=NO_ENV,
    )

    assert result.exit_code == 1
    assert "access_key" in result.output


def test_upload_fails_after_max_retries(make_storage):
    storage = make_storage(failures={0: 10})
    with patch("glacierpipe.cli.main.build_glacier_client"), patch(
        "glacierpipe.cli.main.GlacierArchiveStorage", return_value=storage
    ):
        result = runner.invoke(
            app,
            ["upload", "x", "-e", "us-east-1", "-v", "backups", "-p", "1M", "-r", "1"],
            input=b"data",
            env=ENV,
        )

    assert result.exit_code == 1
    assert "Failed to upload after 1 attempts" in result.output
    assert storage.completed is None


def test_endpoints():
    result = runner.invoke(app, ["endpoints"])

    assert result.exit_code == 0
    for alias in ("us-east-1", "us-west-1", "eu-west-1", "ap-northeast-1"):
        assert alias in result.output


def test_show_config(tmp_path: Path):
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "endpoint: us-west-1\nvault: photos\nmax-upload-rate: automatic\n",
        encoding="utf-8",
    )

    result = runner.invoke(app, ["config", "-c", str(config_file)], env=ENV)

    assert result.exit_code == 0, result.output
    assert "photos" in result.output
    assert "us-west-1" in result.output
    assert "16.0 MiB" in result.output
    assert "automatic" in result.output
    assert ENV["AWS_SECRET_ACCESS_KEY"] not in result.output


def test_version():
    with patch("glacierpipe.cli.main.get_installed_version", return_value="0.1.0"):
        result = runner.invoke(app, ["version"])

    assert result.exit_code == 0
    assert result.output.strip() == "0.1.0"

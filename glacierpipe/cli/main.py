# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Glacier Pipe CLI."""

# pylint: disable=too-many-arguments

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

import typer
from tqdm.contrib.logging import logging_redirect_tqdm

from glacierpipe.cli.progress import TqdmProgressObserver
from glacierpipe.client.glacier import GlacierArchiveStorage, build_glacier_client
from glacierpipe.errors import GlacierPipeError, InvalidConfigError
from glacierpipe.events import CompositeObserver, LoggingObserver
from glacierpipe.formatter import PanelFormatter, TableFormatter
from glacierpipe.io.buffer import StagingBuffer
from glacierpipe.logging import logger
from glacierpipe.net.throttling import ThrottlingStrategy
from glacierpipe.pipe import GlacierPipe
from glacierpipe.schema.config import (
    GLACIER_ENDPOINTS,
    PipeConfig,
    build_throttling_strategy,
    load_config,
)
from glacierpipe.schema.watch import ConfigWatcher, ReloadingThrottlingStrategy
from glacierpipe.utils.format import mask_secret, secho_error_and_exit
from glacierpipe.utils.humanize import format_ibytes
from glacierpipe.utils.version import get_installed_version

DEFAULT_CONFIG_PATH = Path.home() / ".glacierpipe" / "config.yaml"

app = typer.Typer(
    help="Stream standard input into an Amazon Glacier archive.",
    no_args_is_help=True,
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=True,
    pretty_exceptions_enable=False,
)

endpoint_table_formatter = TableFormatter(
    name="Endpoints",
    fields=["alias", "url"],
    headers=["Alias", "URL"],
)
config_panel_formatter = PanelFormatter(
    name="Configuration",
    fields=[
        "endpoint",
        "region",
        "vault",
        "part_size",
        "max_retries",
        "max_upload_rate",
        "qos_url",
        "access_key",
        "secret_key",
    ],
    headers=[
        "Endpoint",
        "Region",
        "Vault",
        "Part Size",
        "Max Retries",
        "Max Upload Rate",
        "QOS URL",
        "Access Key",
        "Secret Key",
    ],
)


def _config_path(config_file: Optional[Path]) -> Optional[Path]:
    if config_file is None and DEFAULT_CONFIG_PATH.is_file():
        return DEFAULT_CONFIG_PATH
    return config_file


def _load(path: Optional[Path], **overrides) -> PipeConfig:
    try:
        return load_config(str(path) if path is not None else None, **overrides)
    except InvalidConfigError as exc:
        secho_error_and_exit(str(exc))


@app.command()
def upload(
    archive: str = typer.Argument(..., help="Description of the new archive."),
    endpoint: Optional[str] = typer.Option(
        None,
        "--endpoint",
        "-e",
        help="Glacier endpoint URL or region alias (see 'glacierpipe endpoints').",
    ),
    vault: Optional[str] = typer.Option(
        None, "--vault", "-v", help="Name of the vault to upload to."
    ),
    part_size: Optional[str] = typer.Option(
        None,
        "--partsize",
        "-p",
        help="Part size; a power of two between 1M and 4G. Defaults to 16M.",
    ),
    max_retries: Optional[int] = typer.Option(
        None, "--max-retries", "-r", help="Attempts per part. Defaults to 1000."
    ),
    max_upload_rate: Optional[str] = typer.Option(
        None,
        "--max-upload-rate",
        help="Upload rate limit in bytes per second (e.g. 512K), or 'automatic'.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        help=f"YAML config file. Defaults to {DEFAULT_CONFIG_PATH} if present.",
    ),
    access_key: Optional[str] = typer.Option(
        None, "--access-key", envvar="AWS_ACCESS_KEY_ID", help="AWS access key."
    ),
    secret_key: Optional[str] = typer.Option(
        None,
        "--secret-key",
        envvar="AWS_SECRET_ACCESS_KEY",
        show_envvar=False,
        help="AWS secret key.",
    ),
):
    """Upload standard input as a new archive."""
    path = _config_path(config_file)
    overrides = {
        "endpoint": endpoint,
        "vault": vault,
        "part_size": part_size,
        "max_retries": max_retries,
        "max_upload_rate": max_upload_rate,
        "access_key": access_key,
        "secret_key": secret_key,
    }
    config = _load(path, **overrides)
    assert config.region is not None

    storage = GlacierArchiveStorage(
        build_glacier_client(
            config.region,
            config.access_key,
            config.secret_key,
            endpoint_url=config.endpoint,
        )
    )
    progress = TqdmProgressObserver(config.part_size)
    observer = CompositeObserver([progress, LoggingObserver(logger)])
    strategy: Optional[ThrottlingStrategy]
    watcher: Optional[ConfigWatcher] = None
    if path is None:
        strategy = build_throttling_strategy(config)
    else:
        strategy = ReloadingThrottlingStrategy(config)
        watcher = ConfigWatcher(
            str(path), strategy.config_updated, overrides=overrides
        ).start()

    try:
        pipe = GlacierPipe(
            StagingBuffer(config.part_size),
            storage,
            observer,
            config.max_retries,
            strategy,
        )
        with logging_redirect_tqdm(loggers=[logger]):
            location = pipe.upload(sys.stdin.buffer, config.vault, archive)
    except GlacierPipeError as exc:
        secho_error_and_exit(str(exc))
    finally:
        progress.close()
        if watcher is not None:
            watcher.stop()
        if strategy is not None:
            strategy.close()

    typer.echo(location)


@app.command()
def endpoints():
    """List the built-in endpoint aliases."""
    endpoint_table_formatter.render(
        [{"alias": alias, "url": url} for alias, url in GLACIER_ENDPOINTS.items()]
    )


@app.command("config")
def show_config(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        exists=True,
        dir_okay=False,
        help=f"YAML config file. Defaults to {DEFAULT_CONFIG_PATH} if present.",
    ),
    access_key: Optional[str] = typer.Option(
        None, "--access-key", envvar="AWS_ACCESS_KEY_ID", help="AWS access key."
    ),
    secret_key: Optional[str] = typer.Option(
        None,
        "--secret-key",
        envvar="AWS_SECRET_ACCESS_KEY",
        show_envvar=False,
        help="AWS secret key.",
    ),
):
    """Show the effective configuration."""
    config = _load(
        _config_path(config_file), access_key=access_key, secret_key=secret_key
    )
    data = config.model_dump()
    data["part_size"] = format_ibytes(config.part_size)
    if isinstance(config.max_upload_rate, int):
        data["max_upload_rate"] = f"{format_ibytes(config.max_upload_rate)}/s"
    data["access_key"] = mask_secret(config.access_key)
    data["secret_key"] = mask_secret(config.secret_key, visible=0)
    config_panel_formatter.render(data)


@app.command()
def version():
    """Check the installed package version."""
    installed_version = get_installed_version()
    typer.echo(installed_version)

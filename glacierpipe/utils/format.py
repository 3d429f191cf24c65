# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Glacier Pipe CLI Formatting Utilities."""

from __future__ import annotations

from typing import NoReturn

import typer


def secho_error_and_exit(text: str, color: str = typer.colors.RED) -> NoReturn:
    """Print error and exit."""
    typer.secho(text, err=True, fg=color)
    raise typer.Exit(1)


def mask_secret(value: str, visible: int = 4) -> str:
    """Hide all but the first few characters of a secret."""
    if len(value) <= visible:
        return "*" * len(value)
    return value[:visible] + "*" * (len(value) - visible)

# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Version utils."""

from __future__ import annotations

from importlib.metadata import version

GLACIERPIPE_PACKAGE_NAME = "glacierpipe"


def get_installed_version() -> str:
    """Get the currently installed CLI version."""
    return version(GLACIERPIPE_PACKAGE_NAME)

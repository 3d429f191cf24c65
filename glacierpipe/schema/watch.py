# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Config file reloading while an upload runs."""

from __future__ import annotations

import os
from typing import Any, Callable, Dict, Optional

from glacierpipe.errors import InvalidConfigError
from glacierpipe.logging import logger
from glacierpipe.net.throttling import ProxyingThrottlingStrategy
from glacierpipe.schema.config import (
    PipeConfig,
    build_throttling_strategy,
    load_config,
)
from glacierpipe.utils.timer import PeriodicTask

DEFAULT_WATCH_INTERVAL = 1.0


class ConfigWatcher:
    """Reloads a config file whenever its modification time changes.

    The file is loaded with the same overrides as at start, so settings given
    on the command line keep their precedence. A file that cannot be loaded is
    reported and skipped until it changes again.
    """

    def __init__(
        self,
        path: str,
        on_update: Callable[[PipeConfig], None],
        *,
        overrides: Optional[Dict[str, Any]] = None,
        interval: float = DEFAULT_WATCH_INTERVAL,
    ) -> None:
        """Initialize ConfigWatcher."""
        self._path = path
        self._on_update = on_update
        self._overrides: Dict[str, Any] = overrides or {}
        self._mtime = self._stat()
        self._task = PeriodicTask(
            self.check, interval, initial_delay=interval, name="config-watcher"
        )

    @property
    def path(self) -> str:
        """Watched file."""
        return self._path

    def start(self) -> ConfigWatcher:
        """Start watching in the background."""
        self._task.start()
        return self

    def stop(self) -> None:
        """Stop watching."""
        self._task.cancel()

    def __enter__(self) -> ConfigWatcher:
        return self.start()

    def __exit__(self, *exc: Any) -> None:
        self.stop()

    def check(self) -> None:
        """Reload the file if it changed since the last check."""
        mtime = self._stat()
        if mtime is None or mtime == self._mtime:
            return
        self._mtime = mtime

        try:
            config = load_config(self._path, **self._overrides)
        except InvalidConfigError as exc:
            logger.warning("Ignoring changes to '%s': %s", self._path, exc)
            return

        logger.info("Reloaded '%s'", self._path)
        self._on_update(config)

    def _stat(self) -> Optional[int]:
        try:
            return os.stat(self._path).st_mtime_ns
        except OSError as exc:
            logger.warning("Cannot stat '%s': %s", self._path, exc)
            return None


class ReloadingThrottlingStrategy(ProxyingThrottlingStrategy):
    """Throttling strategy rebuilt when the configured upload rate changes."""

    def __init__(self, config: PipeConfig) -> None:
        """Initialize ReloadingThrottlingStrategy."""
        super().__init__(build_throttling_strategy(config))
        self._config = config

    @property
    def config(self) -> PipeConfig:
        """Config the current strategy was built from."""
        return self._config

    def config_updated(self, config: PipeConfig) -> None:
        """Switch strategies if the upload rate or mode changed."""
        previous, self._config = self._config, config
        if config.max_upload_rate == previous.max_upload_rate:
            return

        logger.info(
            "Max upload rate changed from %s to %s",
            _describe_rate(previous),
            _describe_rate(config),
        )
        self.replace(build_throttling_strategy(config))


def _describe_rate(config: PipeConfig) -> str:
    if config.max_upload_rate is None:
        return "unlimited"
    return str(config.max_upload_rate)

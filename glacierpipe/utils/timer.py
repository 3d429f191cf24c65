# Copyright (c) 2022-present, FriendliAI Inc. All rights reserved.

"""Cancellable periodic background task."""

from __future__ import annotations

import threading
from typing import Callable, Optional

from glacierpipe.logging import logger


class PeriodicTask:
    """Runs a function repeatedly on a daemon thread with a fixed delay.

    The delay is measured from the end of one run to the start of the next.
    Exceptions raised by the function are logged and do not stop the task.
    """

    def __init__(
        self,
        func: Callable[[], None],
        interval: float,
        *,
        initial_delay: float = 0.0,
        name: Optional[str] = None,
    ) -> None:
        """Initialize PeriodicTask."""
        if interval <= 0:
            raise ValueError("interval must be positive")

        self._func = func
        self._interval = interval
        self._initial_delay = initial_delay
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def running(self) -> bool:
        """Whether the task is started and not cancelled."""
        return self._thread.is_alive() and not self._stopped.is_set()

    def start(self) -> PeriodicTask:
        """Start the task."""
        self._thread.start()
        return self

    def cancel(self, timeout: Optional[float] = None, *, wait: bool = True) -> None:
        """Stop the task.

        With ``wait`` an in-flight run is waited for; otherwise it finishes in
        the background and no further run starts.
        """
        self._stopped.set()
        if (
            wait
            and self._thread.is_alive()
            and self._thread is not threading.current_thread()
        ):
            self._thread.join(timeout)

    def __enter__(self) -> PeriodicTask:
        return self.start()

    def __exit__(self, *exc) -> None:
        self.cancel()

    def _run(self) -> None:
        if self._stopped.wait(self._initial_delay):
            return

        while True:
            try:
                self._func()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Periodic task '%s' failed", self._thread.name)
            if self._stopped.wait(self._interval):
                return

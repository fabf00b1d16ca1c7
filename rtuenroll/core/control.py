"""Operator signals for an enrollment run: cancel the session, skip one device."""

from __future__ import annotations

import logging
import threading

from rtuenroll.core.errors import OperationCanceled

LOGGER = logging.getLogger(__name__)


class RunControl:
    """Cancellation token plus an edge-triggered skip latch.

    `cancel()` is sticky and aborts the whole session. `request_skip()` arms a
    latch that the current device's wait consumes exactly once.
    """

    def __init__(self) -> None:
        self._cancel = threading.Event()
        self._skip = threading.Event()
        self._skip_lock = threading.Lock()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        if not self._cancel.is_set():
            LOGGER.info("Cancellation requested")
        self._cancel.set()

    def request_skip(self) -> None:
        LOGGER.info("Skip requested")
        self._skip.set()

    def consume_skip(self) -> bool:
        with self._skip_lock:
            if self._skip.is_set():
                self._skip.clear()
                return True
            return False

    def discard_skip(self) -> None:
        with self._skip_lock:
            if self._skip.is_set():
                LOGGER.debug("Discarding stale skip request")
            self._skip.clear()

    def check(self) -> None:
        if self._cancel.is_set():
            raise OperationCanceled("Enrollment canceled by operator")

    def sleep(self, milliseconds: float) -> None:
        """Sleep that wakes up as soon as cancellation is signalled."""
        self.check()
        if milliseconds <= 0:
            return
        if self._cancel.wait(milliseconds / 1000.0):
            raise OperationCanceled("Enrollment canceled by operator")

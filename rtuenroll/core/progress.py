"""Fire-and-forget delivery of progress events to the presentation layer."""

from __future__ import annotations

import logging
import queue
import threading
from collections.abc import Callable

from rtuenroll.core.model import ProgressEvent

ProgressSink = Callable[[ProgressEvent], None]

_STOP = object()
LOGGER = logging.getLogger(__name__)


class ProgressDispatcher:
    """Queues events and hands them to `sink` on a separate thread.

    Workflows call `emit()` between bus transactions; a slow or failing sink
    never delays the next transaction.
    """

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self._sink = sink
        self._queue: queue.Queue[object] = queue.Queue()
        self._thread: threading.Thread | None = None
        if sink is not None:
            self._thread = threading.Thread(
                target=self._deliver,
                name="rtuenroll-progress",
                daemon=True,
            )
            self._thread.start()

    def emit(self, event: ProgressEvent) -> None:
        target = event.target
        target.status = event.status
        if event.serial is not None and hasattr(target, "serial"):
            target.serial = event.serial
        if self._thread is not None:
            self._queue.put(event)

    def close(self, timeout_s: float = 2.0) -> None:
        """Deliver what is queued, then stop the delivery thread."""
        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout_s)
        self._thread = None

    def _deliver(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self._sink(item)  # type: ignore[misc, arg-type]
            except Exception:
                LOGGER.exception("Progress sink raised; event dropped")

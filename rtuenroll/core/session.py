"""Per-run state shared by the sensor and light workflows."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence

from rtuenroll.core.control import RunControl
from rtuenroll.core.model import DeviceTarget, IdentifierRecord, ProgressEvent, SensorTarget, Status
from rtuenroll.core.progress import ProgressDispatcher

IdentifierSink = Callable[[Sequence[IdentifierRecord]], None]

LOGGER = logging.getLogger(__name__)


class EnrollmentSession:
    """Signals, progress channel and the identifier accumulator of one run.

    The accumulator is flushed at most once, and never after cancellation.
    """

    def __init__(self, control: RunControl, dispatcher: ProgressDispatcher | None = None) -> None:
        self.control = control
        self.identifiers: list[IdentifierRecord] = []
        self._dispatcher = dispatcher or ProgressDispatcher()
        self._flushed = False

    @property
    def flushed(self) -> bool:
        return self._flushed

    def emit(
        self,
        target: DeviceTarget,
        status: Status,
        *,
        serial: int | None = None,
        note: str | None = None,
    ) -> None:
        self._dispatcher.emit(ProgressEvent(target=target, status=status, serial=serial, note=note))

    def record_identifier(self, target: SensorTarget, serial: int) -> IdentifierRecord | None:
        if serial <= 0:
            return None
        record = IdentifierRecord(row=target.row, serial=serial)
        self.identifiers.append(record)
        return record

    def flush(self, sink: IdentifierSink) -> bool:
        """Hand the accumulated identifiers to `sink`; True if it was called."""
        if self._flushed:
            LOGGER.debug("Identifier batch already flushed")
            return False
        if self.control.cancelled:
            LOGGER.info("Run canceled; %s collected identifiers not persisted", len(self.identifiers))
            return False
        self._flushed = True
        if not self.identifiers:
            return False
        LOGGER.info("Persisting %s identifiers", len(self.identifiers))
        sink(tuple(self.identifiers))
        return True

    def close(self) -> None:
        self._dispatcher.close()

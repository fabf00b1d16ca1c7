"""Connection lifecycle, bus gate and watchdog for the single RTU bus."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import TypeVar

from rtuenroll.core.control import RunControl
from rtuenroll.core.errors import TransportError, TransportNotConnectedError
from rtuenroll.transports.base import BusTiming, MasterFactory, RegisterMaster
from rtuenroll.transports.rtu import RTUMaster

DEFAULT_TIMING = BusTiming(read_timeout_ms=1000, write_timeout_ms=1000, retries=1)
DEFAULT_WATCHDOG_INTERVAL_S = 5.0
_GATE_POLL_S = 0.02
_WATCHDOG_JOIN_S = 0.3

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class TransportManager:
    """Owns the serial channel and serializes every transaction on it.

    All register traffic goes through one single-slot gate. A background
    watchdog reopens the port when it falls closed while the manager still
    considers itself connected.
    """

    def __init__(
        self,
        *,
        master_factory: MasterFactory | None = None,
        timing: BusTiming = DEFAULT_TIMING,
        watchdog_interval_s: float = DEFAULT_WATCHDOG_INTERVAL_S,
    ) -> None:
        self._master_factory = master_factory or RTUMaster.open
        self._default_timing = timing
        self._watchdog_interval_s = watchdog_interval_s
        self._master: RegisterMaster | None = None
        self._gate = threading.Lock()
        self._state_lock = threading.RLock()
        self._watchdog: threading.Thread | None = None
        self._watchdog_stop: threading.Event | None = None
        self._connected = False
        self.port: str | None = None
        self.last_error: str | None = None

    @property
    def is_connected(self) -> bool:
        return self._connected

    def connect(self, port: str) -> bool:
        if not port or not port.strip():
            self.last_error = "Port name is empty."
            LOGGER.warning("Connect aborted: empty port name")
            return False

        with self._state_lock:
            LOGGER.info("Connect requested: %s", port)
            self._stop_watchdog()
            self._close_master()
            try:
                self._master = self._master_factory(port, self._default_timing)
            except (TransportError, OSError) as exc:
                self.last_error = str(exc)
                self._connected = False
                LOGGER.warning("Connect FAILED on %s: %s: %s", port, type(exc).__name__, exc)
                self._close_master()
                return False

            self.port = port
            self._connected = True
            self.last_error = None
            self._start_watchdog()
            LOGGER.info("Connected to %s", port)
            return True

    def disconnect(self) -> None:
        with self._state_lock:
            if self._master is not None:
                LOGGER.info("Disconnecting from %s", self.port)
            self._stop_watchdog()
            self._close_master()
            self._connected = False

    def __enter__(self) -> TransportManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    @contextmanager
    def bus(self, control: RunControl | None = None) -> Iterator[RegisterMaster]:
        """Hold the exclusive bus gate for one transaction."""
        self._require_connected()
        self._acquire_gate(control)
        try:
            yield self._ensure_open()
        finally:
            self._gate.release()

    @contextmanager
    def scoped_timing(
        self,
        master: RegisterMaster,
        *,
        read_timeout_ms: int,
        write_timeout_ms: int,
        retries: int,
    ) -> Iterator[RegisterMaster]:
        """Temporarily override per-call timing; prior values are always restored."""
        previous = master.get_timing()
        master.set_timing(
            BusTiming(
                read_timeout_ms=read_timeout_ms,
                write_timeout_ms=write_timeout_ms,
                retries=retries,
            )
        )
        try:
            yield master
        finally:
            try:
                master.set_timing(previous)
            except (TransportError, OSError) as exc:
                LOGGER.warning("Restoring bus timing failed: %s", exc)

    def read_holding(
        self,
        unit: int,
        address: int,
        count: int = 1,
        *,
        control: RunControl | None = None,
    ) -> list[int]:
        with self.bus(control) as master:
            LOGGER.debug("ReadHolding u:%s addr:%s cnt:%s", unit, address, count)
            return self._tracked(lambda: master.read_holding_registers(unit, address, count))

    def read_register_fast(
        self,
        unit: int,
        address: int,
        timeout_ms: int,
        *,
        control: RunControl | None = None,
    ) -> int:
        """Single-register read with a tight timeout and no retries."""
        with self.bus(control) as master:
            with self.scoped_timing(
                master,
                read_timeout_ms=timeout_ms,
                write_timeout_ms=timeout_ms,
                retries=0,
            ):
                return master.read_holding_registers(unit, address, 1)[0]

    def write_register(
        self,
        unit: int,
        address: int,
        value: int,
        *,
        control: RunControl | None = None,
    ) -> None:
        with self.bus(control) as master:
            LOGGER.debug("WriteSingle u:%s addr:%s val:%s", unit, address, value)
            self._tracked(lambda: master.write_register(unit, address, value))

    def write_registers(
        self,
        unit: int,
        address: int,
        values: list[int],
        *,
        control: RunControl | None = None,
    ) -> None:
        with self.bus(control) as master:
            LOGGER.debug("WriteMultiple u:%s start:%s values:%s", unit, address, values)
            self._tracked(lambda: master.write_registers(unit, address, values))

    def flush_buffers(self, control: RunControl | None = None) -> None:
        """Drop stale bytes left on the line, e.g. by a rebooting device."""
        if not self._connected:
            return
        try:
            with self.bus(control) as master:
                master.flush()
        except TransportError as exc:
            LOGGER.debug("Buffer flush skipped: %s", exc)

    def _tracked(self, operation: Callable[[], T]) -> T:
        try:
            return operation()
        except Exception as exc:
            self.last_error = str(exc)
            LOGGER.warning("Bus transaction FAILED: %s: %s", type(exc).__name__, exc)
            raise

    def _require_connected(self) -> None:
        if not self._connected or self._master is None:
            raise TransportNotConnectedError("Not connected.")

    def _acquire_gate(self, control: RunControl | None) -> None:
        while not self._gate.acquire(timeout=_GATE_POLL_S):
            if control is not None:
                control.check()
        if control is not None and control.cancelled:
            self._gate.release()
            control.check()

    def _ensure_open(self) -> RegisterMaster:
        master = self._master
        if master is None:
            raise TransportNotConnectedError("Not connected.")
        if not master.is_open():
            LOGGER.info("Port closed, trying to reopen %s", self.port)
            try:
                master.reopen()
            except TransportError as exc:
                self.last_error = str(exc)
                LOGGER.warning("Reopen FAILED: %s", exc)
        if not master.is_open():
            self.last_error = "Port not open."
            raise TransportError("Port not open.")
        return master

    def _start_watchdog(self) -> None:
        stop = threading.Event()
        self._watchdog_stop = stop
        self._watchdog = threading.Thread(
            target=self._watchdog_loop,
            args=(stop,),
            name="rtuenroll-watchdog",
            daemon=True,
        )
        self._watchdog.start()
        LOGGER.debug("Watchdog started")

    def _stop_watchdog(self) -> None:
        if self._watchdog_stop is not None:
            LOGGER.debug("Stopping watchdog")
            self._watchdog_stop.set()
        if self._watchdog is not None and self._watchdog is not threading.current_thread():
            self._watchdog.join(_WATCHDOG_JOIN_S)
        self._watchdog = None
        self._watchdog_stop = None

    def _watchdog_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self._watchdog_interval_s):
            try:
                self._watchdog_tick()
            except Exception as exc:
                LOGGER.warning("Watchdog: unexpected error: %s: %s", type(exc).__name__, exc)
        LOGGER.debug("Watchdog stopped")

    def _watchdog_tick(self) -> None:
        master = self._master
        if not self._connected or master is None or master.is_open():
            return
        # An in-flight transaction owns the port; look again next tick.
        if not self._gate.acquire(blocking=False):
            return
        try:
            if master.is_open():
                return
            LOGGER.info("Watchdog: port closed, trying to reopen %s", self.port)
            try:
                master.reopen()
            except TransportError as exc:
                self.last_error = str(exc)
                LOGGER.warning("Watchdog: reopen FAILED: %s", exc)
            else:
                LOGGER.info("Watchdog: reopen success")
        finally:
            self._gate.release()

    def _close_master(self) -> None:
        master = self._master
        self._master = None
        if master is None:
            return
        try:
            master.close()
        except (TransportError, OSError) as exc:
            LOGGER.debug("Closing master failed: %s", exc)

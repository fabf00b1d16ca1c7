"""Presence probing: is a device answering at a bus address, and is it stable."""

from __future__ import annotations

import logging
import time
from enum import Enum

from rtuenroll.core.control import RunControl
from rtuenroll.core.errors import BusTimeoutError, TransportError
from rtuenroll.core.registers import REG_DEVICE_TYPE, REG_PRESENCE
from rtuenroll.transports.manager import TransportManager

LOGGER = logging.getLogger(__name__)


class WaitOutcome(str, Enum):
    READY = "ready"
    SKIPPED = "skipped"
    TIMED_OUT = "timed_out"


class PresenceProber:
    def __init__(self, transport: TransportManager, *, timeout_ms: int = 140) -> None:
        self._transport = transport
        self.timeout_ms = timeout_ms

    def check_alive(
        self,
        address: int,
        timeout_ms: int | None = None,
        *,
        control: RunControl | None = None,
    ) -> bool:
        """One fast read at `address`. Bus failures mean "not alive"; cancellation propagates."""
        timeout = timeout_ms if timeout_ms is not None else self.timeout_ms
        if control is not None:
            control.check()
        try:
            self._transport.read_register_fast(address, REG_PRESENCE, timeout, control=control)
            return True
        except (BusTimeoutError, TransportError):
            pass

        # Some firmware only answers the device-type register.
        try:
            device_type = self._transport.read_register_fast(
                address, REG_DEVICE_TYPE, timeout, control=control
            )
        except (BusTimeoutError, TransportError):
            return False
        return device_type > 0

    def wait_stable(
        self,
        address: int,
        *,
        stable_window_ms: int,
        poll_interval_ms: int,
        timeout_ms: int | None,
        control: RunControl,
        allow_skip: bool = False,
        flush: bool = False,
    ) -> WaitOutcome:
        """Poll until `address` has answered for `stable_window_ms` without a gap.

        Every alive poll credits one poll interval; any miss resets the credit.
        `timeout_ms=None` waits until success, a consumed skip (when
        `allow_skip`), or cancellation.
        """
        deadline = None if timeout_ms is None else time.monotonic() + timeout_ms / 1000.0
        stable_ms = 0
        while deadline is None or time.monotonic() < deadline:
            control.check()
            if allow_skip and control.consume_skip():
                LOGGER.info("Wait at address %s skipped by operator", address)
                return WaitOutcome.SKIPPED

            if flush:
                self._transport.flush_buffers(control)
            if self.check_alive(address, control=control):
                stable_ms += poll_interval_ms
                if stable_ms >= stable_window_ms:
                    return WaitOutcome.READY
            else:
                stable_ms = 0

            control.sleep(poll_interval_ms)
        LOGGER.debug("Address %s not stable within %s ms", address, timeout_ms)
        return WaitOutcome.TIMED_OUT

    def wait_gone(
        self,
        address: int,
        *,
        timeout_ms: int,
        poll_interval_ms: int,
        control: RunControl,
    ) -> bool:
        """Poll until `address` stops answering; False if it kept answering."""
        deadline = time.monotonic() + timeout_ms / 1000.0
        while time.monotonic() < deadline:
            if not self.check_alive(address, control=control):
                return True
            control.sleep(poll_interval_ms)
        return False

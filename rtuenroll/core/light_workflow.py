"""Light fixture enrollment.

Fixtures take their new address in one FC16 block write that carries the
security key, so the change is atomic. They do not reboot, which makes a
silent new address ambiguous: verification only produces a warning.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from rtuenroll.core.control import RunControl
from rtuenroll.core.errors import (
    AddressCollisionError,
    BusTimeoutError,
    OperationCanceled,
    TransportError,
)
from rtuenroll.core.model import EnrollmentTiming, LightTarget, Status, coerce_timeout_mode
from rtuenroll.core.presence import PresenceProber, WaitOutcome
from rtuenroll.core.registers import (
    FACTORY_DEFAULT_ADDRESS,
    LIGHT_BAUD,
    LIGHT_SECURITY_KEY,
    REG_LIGHT_MODE,
    REG_LIGHT_TIMEOUT,
)
from rtuenroll.core.session import EnrollmentSession
from rtuenroll.transports.manager import TransportManager

LOGGER = logging.getLogger(__name__)


class LightState(str, Enum):
    WAITING_FOR_DEFAULT = "WaitingForDefault"
    CHECKING_COLLISION = "CheckingCollision"
    WRITING_ADDRESS_BLOCK = "WritingAddressBlock"
    SETTING_TIMEOUT = "SettingTimeout"
    SOFT_VERIFY = "SoftVerify"
    DONE = "Done"
    SKIPPED = "Skipped"
    CANCELED = "Canceled"


@dataclass(frozen=True)
class LightOutcome:
    success: bool
    note: str | None


def address_block(address: int) -> list[int]:
    """Registers 4..7: auxiliary mode, new address, baud, security key."""
    return [0, address, LIGHT_BAUD, LIGHT_SECURITY_KEY]


class LightWorkflow:
    def __init__(
        self,
        transport: TransportManager,
        prober: PresenceProber,
        *,
        timing: EnrollmentTiming | None = None,
        default_address: int = FACTORY_DEFAULT_ADDRESS,
    ) -> None:
        self._transport = transport
        self._prober = prober
        self.timing = timing or EnrollmentTiming()
        self.default_address = default_address

    def run(self, lights: Sequence[LightTarget], session: EnrollmentSession) -> None:
        control = session.control

        for light in lights:
            control.check()

            if not light.selected:
                session.emit(light, Status.SKIPPED, note="not selected")
                LOGGER.info("Light row %s skipped (not selected)", light.row)
                continue

            if light.address == self.default_address:
                note = f"Address {light.address} is the factory default address."
                session.emit(light, Status.FAIL, note=note)
                LOGGER.warning("Light row %s Fail: %s", light.row, note)
                continue

            session.emit(light, Status.ACTIVE)
            try:
                outcome = self._run_one(light, control)
            except OperationCanceled:
                self._enter(light, LightState.CANCELED)
                session.emit(light, Status.FAIL, note="canceled")
                raise

            if outcome is None:
                session.emit(light, Status.SKIPPED, note="skipped by operator")
                LOGGER.info("Light row %s skipped by operator", light.row)
                continue

            session.emit(light, Status.OK if outcome.success else Status.FAIL, note=outcome.note)
            if outcome.success:
                LOGGER.info("Light row %s OK (address %s)", light.row, light.address)
            else:
                LOGGER.warning("Light row %s Fail: %s", light.row, outcome.note or "unknown error")

    def _run_one(self, light: LightTarget, control: RunControl) -> LightOutcome | None:
        control.discard_skip()
        self._enter(light, LightState.WAITING_FOR_DEFAULT)
        waited = self._prober.wait_stable(
            self.default_address,
            stable_window_ms=self.timing.stable_window_ms,
            poll_interval_ms=self.timing.poll_interval_ms,
            timeout_ms=None,
            control=control,
            allow_skip=True,
            flush=True,
        )
        if waited is WaitOutcome.SKIPPED:
            self._enter(light, LightState.SKIPPED)
            return None
        outcome = self.enroll(light, control)
        self._enter(light, LightState.DONE)
        return outcome

    def enroll(self, light: LightTarget, control: RunControl) -> LightOutcome:
        timing = self.timing
        target = light.address
        notes: list[str] = []

        self._transport.flush_buffers(control)
        try:
            self._enter(light, LightState.CHECKING_COLLISION)
            if self._prober.check_alive(target, control=control):
                raise AddressCollisionError(f"Address {target} is already occupied.")

            control.sleep(timing.bus_gap_ms)
            self._enter(light, LightState.WRITING_ADDRESS_BLOCK)
            self._transport.write_registers(
                self.default_address, REG_LIGHT_MODE, address_block(target), control=control
            )
            LOGGER.info("Light %s -> address %s, baud %s (FC16)", self.default_address, target, LIGHT_BAUD)
        except AddressCollisionError as exc:
            return LightOutcome(success=False, note=str(exc))
        except (BusTimeoutError, TransportError) as exc:
            return LightOutcome(success=False, note=f"Bus error: {exc}")

        control.sleep(timing.bus_gap_ms)
        self._enter(light, LightState.SETTING_TIMEOUT)
        timeout_mode = coerce_timeout_mode(light.timeout)
        if timeout_mode != light.timeout:
            LOGGER.warning("Light row %s: timeout %s not supported, using 0", light.row, light.timeout)
        try:
            self._transport.write_register(target, REG_LIGHT_TIMEOUT, timeout_mode, control=control)
            LOGGER.info("Light timeout set (reg %s @ %s = %s)", REG_LIGHT_TIMEOUT, target, timeout_mode)
        except (BusTimeoutError, TransportError) as exc:
            LOGGER.warning("Light row %s: timeout not set: %s", light.row, exc)
            notes.append(f"Timeout not set: {exc}")

        self._enter(light, LightState.SOFT_VERIFY)
        verified = self._prober.wait_stable(
            target,
            stable_window_ms=timing.stable_window_ms,
            poll_interval_ms=timing.poll_interval_ms,
            timeout_ms=timing.light_verify_timeout_ms,
            control=control,
        )
        if verified is not WaitOutcome.READY:
            LOGGER.warning("Light row %s: new address %s not confirmed", light.row, target)
            notes.append(f"New address {target} not confirmed.")

        return LightOutcome(success=True, note="; ".join(notes) if notes else None)

    @staticmethod
    def _enter(light: LightTarget, state: LightState) -> None:
        LOGGER.debug("light row %s: %s", light.row, state.value)

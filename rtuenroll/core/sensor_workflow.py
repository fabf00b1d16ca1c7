"""Sensor enrollment: move one sensor at a time off the factory default address.

Per selected sensor the workflow

- waits, without a time limit, for a stable device at the default address,
- reads its factory serial number,
- adjusts the buzzer flag (bit 9 of the status register) when requested,
- refuses to continue if the target address already answers,
- writes the new address, soft-resets the device and waits for the handover,
- verifies that the target address answers stably.

Serial numbers are collected on the session and persisted by the caller in one
batch once all devices are done.
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
    VerificationError,
)
from rtuenroll.core.model import BuzzerMode, EnrollmentTiming, IdentifierRecord, SensorTarget, Status
from rtuenroll.core.presence import PresenceProber, WaitOutcome
from rtuenroll.core.registers import (
    BUZZER_BIT,
    FACTORY_DEFAULT_ADDRESS,
    REBOOT_SENTINEL,
    REG_REBOOT,
    REG_SERIAL,
    REG_SET_ADDRESS,
    REG_STATUS_FLAGS,
)
from rtuenroll.core.session import EnrollmentSession
from rtuenroll.transports.manager import TransportManager

LOGGER = logging.getLogger(__name__)


class SensorState(str, Enum):
    WAITING_FOR_DEFAULT = "WaitingForDefault"
    READING_IDENTITY = "ReadingIdentity"
    ADJUSTING_AUXILIARY = "AdjustingAuxiliary"
    CHECKING_COLLISION = "CheckingCollision"
    WRITING_ADDRESS = "WritingAddress"
    AWAITING_HANDOVER = "AwaitingHandover"
    VERIFYING_NEW_ADDRESS = "VerifyingNewAddress"
    DONE = "Done"
    SKIPPED = "Skipped"
    CANCELED = "Canceled"


@dataclass(frozen=True)
class SensorOutcome:
    success: bool
    serial: int | None
    note: str | None


class SensorWorkflow:
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

    def run(self, sensors: Sequence[SensorTarget], session: EnrollmentSession) -> list[IdentifierRecord]:
        control = session.control
        collected: list[IdentifierRecord] = []

        for sensor in sensors:
            control.check()

            if not sensor.selected:
                session.emit(sensor, Status.SKIPPED, serial=sensor.serial, note="not selected")
                LOGGER.info("Sensor row %s skipped (not selected)", sensor.row)
                continue

            if sensor.address == self.default_address:
                note = f"Address {sensor.address} is the factory default address."
                session.emit(sensor, Status.FAIL, serial=sensor.serial, note=note)
                LOGGER.warning("Sensor row %s Fail: %s", sensor.row, note)
                continue

            session.emit(sensor, Status.ACTIVE, serial=sensor.serial)
            try:
                outcome = self._run_one(sensor, control)
            except OperationCanceled:
                self._enter(sensor, SensorState.CANCELED)
                session.emit(sensor, Status.FAIL, serial=sensor.serial, note="canceled")
                raise

            if outcome is None:
                session.emit(sensor, Status.SKIPPED, serial=sensor.serial, note="skipped by operator")
                LOGGER.info("Sensor row %s skipped by operator", sensor.row)
                continue

            if outcome.success and outcome.serial is not None:
                record = session.record_identifier(sensor, outcome.serial)
                if record is not None:
                    collected.append(record)

            status = Status.OK if outcome.success else Status.FAIL
            session.emit(sensor, status, serial=outcome.serial, note=outcome.note)
            if outcome.success:
                LOGGER.info(
                    "Sensor row %s OK (address %s, serial %s)",
                    sensor.row,
                    sensor.address,
                    outcome.serial if outcome.serial is not None else "-",
                )
            else:
                LOGGER.warning("Sensor row %s Fail: %s", sensor.row, outcome.note or "unknown error")

        return collected

    def _run_one(self, sensor: SensorTarget, control: RunControl) -> SensorOutcome | None:
        # A skip pressed while the previous device was being configured is stale.
        control.discard_skip()
        self._enter(sensor, SensorState.WAITING_FOR_DEFAULT)
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
            self._enter(sensor, SensorState.SKIPPED)
            return None
        outcome = self.enroll(sensor, control)
        self._enter(sensor, SensorState.DONE)
        return outcome

    def enroll(self, sensor: SensorTarget, control: RunControl) -> SensorOutcome:
        """Configure the device currently present at the default address."""
        timing = self.timing
        default = self.default_address
        target = sensor.address
        notes: list[str] = []
        serial: int | None = None

        self._transport.flush_buffers(control)

        self._enter(sensor, SensorState.READING_IDENTITY)
        value = self.read_serial(default, timing.serial_read_attempts, timing.serial_read_timeout_ms, control)
        if value > 0:
            serial = value

        self._enter(sensor, SensorState.ADJUSTING_AUXILIARY)
        buzzer_note = self.ensure_buzzer(sensor.buzzer, control)
        if buzzer_note:
            notes.append(buzzer_note)

        try:
            self._enter(sensor, SensorState.CHECKING_COLLISION)
            if self._prober.check_alive(target, control=control):
                raise AddressCollisionError(f"Address {target} is already occupied.")

            control.sleep(timing.bus_gap_ms)
            self._enter(sensor, SensorState.WRITING_ADDRESS)
            self._transport.write_register(default, REG_SET_ADDRESS, target, control=control)
            LOGGER.info("Address programmed: %s -> %s", default, target)

            control.sleep(timing.bus_gap_ms)
            self._enter(sensor, SensorState.AWAITING_HANDOVER)
            self.soft_reset(default, control)
            control.sleep(timing.reboot_wait_ms)

            gone = self._prober.wait_gone(
                default,
                timeout_ms=timing.wait_gone_timeout_ms,
                poll_interval_ms=timing.poll_interval_ms,
                control=control,
            )
            if not gone:
                notes.append(f"Address {default} still answering after reboot (handover).")
                LOGGER.warning("Sensor row %s: address %s still answering after reboot", sensor.row, default)

            control.sleep(timing.bus_gap_ms)
            self._enter(sensor, SensorState.VERIFYING_NEW_ADDRESS)
            verified = self._prober.wait_stable(
                target,
                stable_window_ms=timing.stable_window_ms,
                poll_interval_ms=timing.poll_interval_ms,
                timeout_ms=timing.wait_alive_timeout_ms,
                control=control,
            )
            if verified is not WaitOutcome.READY:
                raise VerificationError(f"New address {target} not responding stably.")
        except (AddressCollisionError, VerificationError) as exc:
            notes.append(str(exc))
            return SensorOutcome(success=False, serial=serial, note=_join(notes))
        except (BusTimeoutError, TransportError) as exc:
            notes.append(f"Bus error: {exc}")
            return SensorOutcome(success=False, serial=serial, note=_join(notes))

        if serial is None:
            value = self.read_serial(
                target,
                timing.serial_read_attempts_after_move,
                timing.serial_read_timeout_after_move_ms,
                control,
            )
            if value > 0:
                serial = value

        if serial is None:
            notes.append("Serial number not readable.")
            LOGGER.warning("Sensor row %s: serial number not readable", sensor.row)

        return SensorOutcome(success=True, serial=serial, note=_join(notes))

    def read_serial(self, address: int, attempts: int, timeout_ms: int, control: RunControl) -> int:
        """Up to `attempts` fast reads of the serial register; 0 when none returns a value."""
        for attempt in range(attempts):
            control.check()
            try:
                value = self._transport.read_register_fast(address, REG_SERIAL, timeout_ms, control=control)
            except (BusTimeoutError, TransportError) as exc:
                LOGGER.debug("Serial read %s/%s at %s failed: %s", attempt + 1, attempts, address, exc)
            else:
                if value > 0:
                    return value
            if attempt < attempts - 1:
                control.sleep(self.timing.poll_interval_ms)
        return 0

    def ensure_buzzer(self, mode: BuzzerMode | None, control: RunControl) -> str | None:
        """Read-modify-write of the buzzer bit; returns a note when it could not be applied."""
        if mode is None:
            return None
        address = self.default_address
        try:
            current = self._transport.read_register_fast(
                address, REG_STATUS_FLAGS, self.timing.presence_timeout_ms, control=control
            )
            if mode is BuzzerMode.DISABLE:
                desired = current & ~BUZZER_BIT & 0xFFFF
            else:
                desired = current | BUZZER_BIT
            if desired == current:
                LOGGER.info("Buzzer already %sd", mode.value)
                return None
            self._transport.write_register(address, REG_STATUS_FLAGS, desired, control=control)
            LOGGER.info("Buzzer %sd (status flags %#06x -> %#06x)", mode.value, current, desired)
            return None
        except (BusTimeoutError, TransportError) as exc:
            LOGGER.warning("Buzzer not adjusted: %s", exc)
            return f"Buzzer not adjusted: {exc}"

    def soft_reset(self, address: int, control: RunControl) -> None:
        LOGGER.info("Soft restart u:%s", address)
        try:
            self._transport.write_register(address, REG_REBOOT, REBOOT_SENTINEL, control=control)
        except BusTimeoutError as exc:
            # The device may restart before it acknowledges.
            LOGGER.info("Soft restart not acknowledged: %s", exc)

    @staticmethod
    def _enter(sensor: SensorTarget, state: SensorState) -> None:
        LOGGER.debug("sensor row %s: %s", sensor.row, state.value)


def _join(notes: list[str]) -> str | None:
    return "; ".join(notes) if notes else None

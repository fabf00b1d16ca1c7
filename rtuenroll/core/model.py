"""Core data models shared by the transport, workflows, service and CLI."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from rtuenroll.core.registers import LIGHT_TIMEOUT_MODES


class Status(str, Enum):
    PENDING = "Pending"
    ACTIVE = "Active"
    OK = "OK"
    FAIL = "Fail"
    SKIPPED = "Skipped"


class BuzzerMode(str, Enum):
    ENABLE = "enable"
    DISABLE = "disable"


@dataclass
class SensorTarget:
    row: int
    address: int
    selected: bool = True
    buzzer: BuzzerMode | None = None
    model: str = ""
    location: str = ""
    status: Status = Status.PENDING
    serial: int | None = None

    @property
    def kind(self) -> str:
        return "sensor"


@dataclass
class LightTarget:
    row: int
    address: int
    selected: bool = True
    timeout: int = 0
    model: str = ""
    location: str = ""
    status: Status = Status.PENDING

    @property
    def kind(self) -> str:
        return "light"


DeviceTarget = SensorTarget | LightTarget


def coerce_timeout_mode(value: int) -> int:
    """Light fixtures only accept 0 or 180; everything else means 0."""
    return value if value in LIGHT_TIMEOUT_MODES else 0


@dataclass(frozen=True)
class ProgressEvent:
    target: DeviceTarget
    status: Status
    serial: int | None = None
    note: str | None = None


@dataclass(frozen=True)
class IdentifierRecord:
    row: int
    serial: int


@dataclass(frozen=True)
class EnrollmentTiming:
    """Tunable timing constants, milliseconds unless named as attempts."""

    poll_interval_ms: int = 60
    stable_window_ms: int = 180
    presence_timeout_ms: int = 140
    serial_read_timeout_ms: int = 170
    serial_read_attempts: int = 6
    serial_read_attempts_after_move: int = 8
    serial_read_timeout_after_move_ms: int = 260
    bus_gap_ms: int = 110
    reboot_wait_ms: int = 450
    wait_gone_timeout_ms: int = 1800
    wait_alive_timeout_ms: int = 1400
    light_verify_timeout_ms: int = 1500


@dataclass(frozen=True)
class SessionResult:
    identifiers: tuple[IdentifierRecord, ...]
    cancelled: bool
    persisted: bool
    targets: tuple[DeviceTarget, ...] = field(default_factory=tuple)

    def count(self, status: Status) -> int:
        return sum(1 for target in self.targets if target.status is status)

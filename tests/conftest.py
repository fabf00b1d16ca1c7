from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Callable, Sequence

import pytest

from rtuenroll.core.config import EnrollConfig
from rtuenroll.core.errors import BusTimeoutError, TransportConnectError
from rtuenroll.core.model import EnrollmentTiming, IdentifierRecord, LightTarget, SensorTarget
from rtuenroll.core.registers import REG_PRESENCE, REG_REBOOT, REG_SERIAL, REG_SET_ADDRESS
from rtuenroll.core.service import EnrollmentService
from rtuenroll.transports.base import BusTiming
from rtuenroll.transports.manager import TransportManager

FAST_TIMING = EnrollmentTiming(
    poll_interval_ms=1,
    stable_window_ms=3,
    presence_timeout_ms=5,
    serial_read_timeout_ms=5,
    serial_read_attempts=6,
    serial_read_attempts_after_move=8,
    serial_read_timeout_after_move_ms=5,
    bus_gap_ms=0,
    reboot_wait_ms=0,
    wait_gone_timeout_ms=200,
    wait_alive_timeout_ms=300,
    light_verify_timeout_ms=30,
)


class SimulatedBus:
    """In-memory RegisterMaster.

    Presence per address is scripted as a sequence consumed one value per
    liveness-register read; the last value sticks. Other reads and writes
    succeed only while the address currently answers.
    """

    def __init__(self) -> None:
        self._presence: dict[int, deque[bool]] = {}
        self._current: dict[int, bool] = {}
        self._registers: dict[tuple[int, int], deque[int]] = {}
        self.fail_on: set[tuple[int, int]] = set()
        self.reads: list[tuple[int, int]] = []
        self.writes: list[tuple[int, int, object]] = []
        self.read_hooks: list[Callable[[int, int], None]] = []
        self.write_hooks: list[Callable[[int, int, object], None]] = []
        self.timing = BusTiming()
        self.timing_history: list[BusTiming] = []
        self.port_open = True
        self.reopen_calls = 0
        self.reopen_fails = False
        self.flushes = 0
        self.closed = False
        self.delay_s = 0.0
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()

    def script(self, address: int, *states: bool) -> None:
        self._presence[address] = deque(states)
        self._current[address] = states[0]

    def set_register(self, unit: int, register: int, *values: int) -> None:
        self._registers[(unit, register)] = deque(values)

    def register(self, unit: int, register: int) -> int | None:
        values = self._registers.get((unit, register))
        return values[0] if values else None

    def writes_to(self, register: int) -> list[tuple[int, int, object]]:
        return [w for w in self.writes if w[1] == register]

    def count_reads(self, unit: int, register: int) -> int:
        return sum(1 for r in self.reads if r == (unit, register))

    def install_handover(
        self,
        *,
        default: int = 1,
        gone_after: int = 0,
        appear_after: int = 0,
        next_serials: Sequence[int] = (),
    ) -> None:
        """On reboot the device leaves `default` and answers at its programmed address.

        Each entry of `next_serials` is a further device that powers up at the
        default address once the previous one has left it.
        """
        queue = deque(next_serials)

        def _on_write(unit: int, register: int, value: object) -> None:
            if unit != default or register != REG_REBOOT:
                return
            target = self.register(default, REG_SET_ADDRESS)
            assert target is not None, "reboot without address write"
            self.script(target, *([False] * appear_after + [True]))
            self.set_register(target, REG_SERIAL, self.register(default, REG_SERIAL) or 0)
            if queue:
                self.set_register(default, REG_SERIAL, queue.popleft())
                states = [True] * gone_after + [False, True]
            else:
                states = [True] * gone_after + [False]
            self._presence[default] = deque(states)

        self.write_hooks.append(_on_write)

    def _enter(self) -> None:
        with self._lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)
        if self.delay_s:
            time.sleep(self.delay_s)

    def _exit(self) -> None:
        with self._lock:
            self._in_flight -= 1

    @staticmethod
    def _next(values: deque):
        return values.popleft() if len(values) > 1 else values[0]

    def read_holding_registers(self, unit: int, address: int, count: int = 1) -> list[int]:
        self._enter()
        try:
            self.reads.append((unit, address))
            for hook in list(self.read_hooks):
                hook(unit, address)
            if address == REG_PRESENCE and unit in self._presence:
                self._current[unit] = self._next(self._presence[unit])
            if not self._current.get(unit, False) or (unit, address) in self.fail_on:
                raise BusTimeoutError(f"No response from {unit}")
            values = self._registers.get((unit, address))
            value = self._next(values) if values else 1
            return [value] * count
        finally:
            self._exit()

    def _write(self, unit: int, address: int, value: object) -> None:
        self._enter()
        try:
            if not self._current.get(unit, False) or (unit, address) in self.fail_on:
                raise BusTimeoutError(f"No response from {unit}")
            self.writes.append((unit, address, value))
            for hook in list(self.write_hooks):
                hook(unit, address, value)
        finally:
            self._exit()

    def write_register(self, unit: int, address: int, value: int) -> None:
        self._write(unit, address, value)
        self._registers[(unit, address)] = deque([value])

    def write_registers(self, unit: int, address: int, values: list[int]) -> None:
        self._write(unit, address, tuple(values))
        for offset, value in enumerate(values):
            self._registers[(unit, address + offset)] = deque([value])

    def get_timing(self) -> BusTiming:
        return self.timing

    def set_timing(self, timing: BusTiming) -> None:
        self.timing = timing
        self.timing_history.append(timing)

    def is_open(self) -> bool:
        return self.port_open

    def reopen(self) -> None:
        self.reopen_calls += 1
        if self.reopen_fails:
            raise TransportConnectError("device vanished")
        self.port_open = True

    def flush(self) -> None:
        self.flushes += 1

    def close(self) -> None:
        self.closed = True
        self.port_open = False


class MemorySource:
    def __init__(
        self,
        sensors: Sequence[SensorTarget] = (),
        lights: Sequence[LightTarget] = (),
    ) -> None:
        self.sensors = list(sensors)
        self.lights = list(lights)
        self.persisted: list[tuple[IdentifierRecord, ...]] = []

    def load_sensor_targets(self) -> list[SensorTarget]:
        return self.sensors

    def load_light_targets(self) -> list[LightTarget]:
        return self.lights

    def persist_identifiers(self, batch: Sequence[IdentifierRecord]) -> None:
        self.persisted.append(tuple(batch))


@pytest.fixture
def bus() -> SimulatedBus:
    return SimulatedBus()


@pytest.fixture
def transport(bus: SimulatedBus):
    manager = TransportManager(master_factory=lambda port, timing: bus, watchdog_interval_s=60.0)
    assert manager.connect("/dev/ttyFAKE0")
    yield manager
    manager.disconnect()


@pytest.fixture
def service(transport: TransportManager) -> EnrollmentService:
    return EnrollmentService(transport, config=EnrollConfig(timing=FAST_TIMING))

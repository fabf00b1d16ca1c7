"""Transport interfaces."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class BusTiming:
    read_timeout_ms: int = 1000
    write_timeout_ms: int = 1000
    retries: int = 1


class RegisterMaster(Protocol):
    """A Modbus RTU master bound to one open serial channel."""

    def read_holding_registers(self, unit: int, address: int, count: int = 1) -> list[int]:
        """Read holding registers, raising BusTimeoutError on no/bad response."""

    def write_register(self, unit: int, address: int, value: int) -> None:
        """Write one holding register (FC06)."""

    def write_registers(self, unit: int, address: int, values: list[int]) -> None:
        """Write a block of holding registers in one frame (FC16)."""

    def get_timing(self) -> BusTiming:
        """Return the timing currently applied to the channel."""

    def set_timing(self, timing: BusTiming) -> None:
        """Apply per-call timeouts and retry count."""

    def is_open(self) -> bool:
        """Whether the underlying serial port reports itself open."""

    def reopen(self) -> None:
        """Reopen a port that fell closed, raising TransportConnectError on failure."""

    def flush(self) -> None:
        """Discard pending input and output bytes."""

    def close(self) -> None:
        """Close and release the serial port."""


class MasterFactory(Protocol):
    def __call__(self, port: str, timing: BusTiming) -> RegisterMaster:
        """Open `port` and return a master bound to it."""

"""Modbus RTU master implementation using pymodbus over pyserial."""

from __future__ import annotations

import logging

import serial
from pymodbus.client import ModbusSerialClient
from pymodbus.exceptions import ModbusException

from rtuenroll.core.errors import BusTimeoutError, TransportConnectError, TransportError
from rtuenroll.transports.base import BusTiming

BAUDRATE = 9600
BYTESIZE = 8
PARITY = "N"
STOPBITS = 1

LOGGER = logging.getLogger(__name__)


class RTUMaster:
    """RegisterMaster over a pymodbus serial client at fixed 9600 8N1 framing."""

    def __init__(self, port: str, timing: BusTiming | None = None) -> None:
        self.port = port
        self._timing = timing or BusTiming()
        self._client = ModbusSerialClient(
            port=port,
            baudrate=BAUDRATE,
            bytesize=BYTESIZE,
            parity=PARITY,
            stopbits=STOPBITS,
            timeout=self._timing.read_timeout_ms / 1000.0,
            retries=self._timing.retries,
        )

    @classmethod
    def open(cls, port: str, timing: BusTiming) -> RTUMaster:
        master = cls(port, timing)
        try:
            connected = master._client.connect()
        except (OSError, serial.SerialException) as exc:
            raise TransportConnectError(f"Could not open {port}: {exc}") from exc
        if not connected:
            master.close()
            raise TransportConnectError(f"Could not open {port}")
        # RTS/CTS and XON/XOFF stay off; the bus has no hardware handshake.
        port_handle = master._client.socket
        if port_handle is not None:
            port_handle.rtscts = False
            port_handle.xonxoff = False
        master.set_timing(master._timing)
        return master

    def read_holding_registers(self, unit: int, address: int, count: int = 1) -> list[int]:
        try:
            response = self._client.read_holding_registers(address, count=count, device_id=unit)
        except ModbusException as exc:
            raise BusTimeoutError(f"Read u:{unit} reg:{address} failed: {exc}") from exc
        except serial.SerialException as exc:
            raise TransportError(f"Serial port failure on {self.port}: {exc}") from exc
        if response.isError():
            raise BusTimeoutError(f"Read u:{unit} reg:{address} returned {response}")
        registers = list(response.registers)
        if len(registers) != count:
            raise BusTimeoutError(
                f"Read u:{unit} reg:{address} returned {len(registers)} registers, expected {count}"
            )
        return registers

    def write_register(self, unit: int, address: int, value: int) -> None:
        try:
            response = self._client.write_register(address, value, device_id=unit)
        except ModbusException as exc:
            raise BusTimeoutError(f"Write u:{unit} reg:{address} failed: {exc}") from exc
        except serial.SerialException as exc:
            raise TransportError(f"Serial port failure on {self.port}: {exc}") from exc
        if response.isError():
            raise BusTimeoutError(f"Write u:{unit} reg:{address} returned {response}")

    def write_registers(self, unit: int, address: int, values: list[int]) -> None:
        try:
            response = self._client.write_registers(address, list(values), device_id=unit)
        except ModbusException as exc:
            raise BusTimeoutError(f"Block write u:{unit} reg:{address} failed: {exc}") from exc
        except serial.SerialException as exc:
            raise TransportError(f"Serial port failure on {self.port}: {exc}") from exc
        if response.isError():
            raise BusTimeoutError(f"Block write u:{unit} reg:{address} returned {response}")

    def get_timing(self) -> BusTiming:
        return self._timing

    def set_timing(self, timing: BusTiming) -> None:
        self._timing = timing
        self._client.comm_params.timeout_connect = timing.read_timeout_ms / 1000.0
        self._client.retries = timing.retries
        transaction = getattr(self._client, "transaction", None)
        if transaction is not None:
            transaction.retries = timing.retries
        port_handle = self._client.socket
        if port_handle is not None:
            port_handle.timeout = timing.read_timeout_ms / 1000.0
            port_handle.write_timeout = timing.write_timeout_ms / 1000.0

    def is_open(self) -> bool:
        port_handle = self._client.socket
        return port_handle is not None and port_handle.is_open

    def reopen(self) -> None:
        port_handle = self._client.socket
        try:
            if port_handle is not None:
                port_handle.open()
            elif not self._client.connect():
                raise TransportConnectError(f"Could not reopen {self.port}")
        except (OSError, serial.SerialException) as exc:
            raise TransportConnectError(f"Could not reopen {self.port}: {exc}") from exc
        self.set_timing(self._timing)

    def flush(self) -> None:
        port_handle = self._client.socket
        if port_handle is None or not port_handle.is_open:
            return
        try:
            port_handle.reset_input_buffer()
            port_handle.reset_output_buffer()
        except (OSError, serial.SerialException) as exc:
            LOGGER.debug("Buffer flush on %s failed: %s", self.port, exc)

    def close(self) -> None:
        self._client.close()

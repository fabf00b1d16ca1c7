from __future__ import annotations

from types import SimpleNamespace

import pytest
import serial
from pymodbus.exceptions import ModbusIOException

from rtuenroll.core.errors import BusTimeoutError, TransportConnectError, TransportError
from rtuenroll.transports import rtu
from rtuenroll.transports.base import BusTiming


class FakePort:
    def __init__(self) -> None:
        self.is_open = True
        self.rtscts = True
        self.xonxoff = True
        self.timeout = None
        self.write_timeout = None
        self.resets = 0

    def open(self) -> None:
        self.is_open = True

    def reset_input_buffer(self) -> None:
        self.resets += 1

    def reset_output_buffer(self) -> None:
        self.resets += 1


class FakeResponse:
    def __init__(self, registers=(), error: bool = False) -> None:
        self.registers = list(registers)
        self._error = error

    def isError(self) -> bool:
        return self._error


class FakeModbusClient:
    instances: list[FakeModbusClient] = []

    def __init__(self, **kwargs) -> None:
        self.kwargs = kwargs
        self.connect_result = True
        self.socket: FakePort | None = None
        self.comm_params = SimpleNamespace(timeout_connect=None)
        self.retries = kwargs.get("retries")
        self.calls: list[tuple] = []
        self.next_response = FakeResponse([1])
        self.raise_on_call: Exception | None = None
        self.closed = False
        FakeModbusClient.instances.append(self)

    def connect(self) -> bool:
        if self.connect_result:
            self.socket = FakePort()
        return self.connect_result

    def _respond(self, call: tuple) -> FakeResponse:
        self.calls.append(call)
        if self.raise_on_call is not None:
            raise self.raise_on_call
        return self.next_response

    def read_holding_registers(self, address, count=1, device_id=1):
        return self._respond(("read", device_id, address, count))

    def write_register(self, address, value, device_id=1):
        return self._respond(("write", device_id, address, value))

    def write_registers(self, address, values, device_id=1):
        return self._respond(("write_block", device_id, address, tuple(values)))

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch):
    FakeModbusClient.instances.clear()
    monkeypatch.setattr(rtu, "ModbusSerialClient", FakeModbusClient)
    master = rtu.RTUMaster.open("/dev/ttyUSB0", BusTiming(read_timeout_ms=500, write_timeout_ms=800, retries=1))
    return master, FakeModbusClient.instances[-1]


def test_open_uses_9600_8n1_without_flow_control(fake_client) -> None:
    master, client = fake_client
    assert client.kwargs["port"] == "/dev/ttyUSB0"
    assert client.kwargs["baudrate"] == 9600
    assert client.kwargs["bytesize"] == 8
    assert client.kwargs["parity"] == "N"
    assert client.kwargs["stopbits"] == 1
    assert client.socket.rtscts is False
    assert client.socket.xonxoff is False
    assert client.socket.timeout == 0.5
    assert client.socket.write_timeout == 0.8
    assert master.is_open()


def test_open_failure_raises_connect_error(monkeypatch: pytest.MonkeyPatch) -> None:
    class Refusing(FakeModbusClient):
        def connect(self) -> bool:
            return False

    monkeypatch.setattr(rtu, "ModbusSerialClient", Refusing)
    with pytest.raises(TransportConnectError, match="/dev/ttyUSB7"):
        rtu.RTUMaster.open("/dev/ttyUSB7", BusTiming())


def test_read_and_write_address_the_right_unit(fake_client) -> None:
    master, client = fake_client
    client.next_response = FakeResponse([104321 & 0xFFFF])

    assert master.read_holding_registers(1, 3) == [104321 & 0xFFFF]
    master.write_register(1, 4, 5)
    master.write_registers(1, 4, [0, 200, 9600, 0x8F8F])

    assert client.calls == [
        ("read", 1, 3, 1),
        ("write", 1, 4, 5),
        ("write_block", 1, 4, (0, 200, 9600, 0x8F8F)),
    ]


def test_error_response_is_a_bus_timeout(fake_client) -> None:
    master, client = fake_client
    client.next_response = FakeResponse(error=True)
    with pytest.raises(BusTimeoutError):
        master.read_holding_registers(5, 2)
    with pytest.raises(BusTimeoutError):
        master.write_register(5, 4, 1)


def test_short_read_is_a_bus_timeout(fake_client) -> None:
    master, client = fake_client
    client.next_response = FakeResponse([])
    with pytest.raises(BusTimeoutError, match="expected 1"):
        master.read_holding_registers(5, 2)


def test_exception_mapping(fake_client) -> None:
    master, client = fake_client
    client.raise_on_call = ModbusIOException("no response")
    with pytest.raises(BusTimeoutError):
        master.read_holding_registers(5, 2)

    client.raise_on_call = serial.SerialException("device reports readiness to read but returned no data")
    with pytest.raises(TransportError):
        master.write_registers(5, 4, [1])


def test_set_timing_updates_port_and_retries(fake_client) -> None:
    master, client = fake_client
    master.set_timing(BusTiming(read_timeout_ms=140, write_timeout_ms=140, retries=0))

    assert master.get_timing().read_timeout_ms == 140
    assert client.socket.timeout == 0.14
    assert client.socket.write_timeout == 0.14
    assert client.retries == 0
    assert client.comm_params.timeout_connect == 0.14


def test_reopen_flush_and_close(fake_client) -> None:
    master, client = fake_client
    client.socket.is_open = False
    assert master.is_open() is False

    master.reopen()
    assert master.is_open() is True

    master.flush()
    assert client.socket.resets == 2

    master.close()
    assert client.closed is True

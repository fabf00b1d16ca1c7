"""Stable public API for building tooling on top of rtuenroll.

This module is the supported integration surface for third-party callers
(GUI/TUI front ends, production-line scripts). Avoid importing from internal
modules unless intentionally depending on non-stable internals.
"""

from __future__ import annotations

from rtuenroll.core.config import EnrollConfig, load_config
from rtuenroll.core.control import RunControl
from rtuenroll.core.errors import (
    AddressCollisionError,
    BusTimeoutError,
    ConfigError,
    EnrollError,
    OperationCanceled,
    TargetSourceError,
    TargetValidationError,
    TransportConnectError,
    TransportError,
    TransportNotConnectedError,
    VerificationError,
)
from rtuenroll.core.model import (
    BuzzerMode,
    EnrollmentTiming,
    IdentifierRecord,
    LightTarget,
    ProgressEvent,
    SensorTarget,
    SessionResult,
    Status,
)
from rtuenroll.core.progress import ProgressSink
from rtuenroll.core.service import EnrollmentService
from rtuenroll.core.targets import TargetSource, YamlTargetSource
from rtuenroll.transports.base import BusTiming, MasterFactory
from rtuenroll.transports.manager import TransportManager

__all__ = [
    "AddressCollisionError",
    "BusTimeoutError",
    "ConfigError",
    "EnrollError",
    "OperationCanceled",
    "TargetSourceError",
    "TargetValidationError",
    "TransportConnectError",
    "TransportError",
    "TransportNotConnectedError",
    "VerificationError",
    "BusTiming",
    "MasterFactory",
    "ProgressSink",
    "EnrollmentService",
    "TransportManager",
    "BuzzerMode",
    "EnrollConfig",
    "EnrollmentTiming",
    "IdentifierRecord",
    "LightTarget",
    "ProgressEvent",
    "RunControl",
    "SensorTarget",
    "SessionResult",
    "Status",
    "TargetSource",
    "YamlTargetSource",
    "Client",
    "load_config",
]


class Client:
    """Public client for one bus: connect, probe, enroll.

    A `Client` owns its TransportManager. Use it as a context manager to make
    sure the serial port and watchdog are released.
    """

    def __init__(
        self,
        *,
        config: EnrollConfig | None = None,
        master_factory: MasterFactory | None = None,
    ) -> None:
        self.config = config or EnrollConfig()
        self.transport = TransportManager(
            master_factory=master_factory,
            watchdog_interval_s=self.config.watchdog_interval_s,
        )
        self._service = EnrollmentService(self.transport, config=self.config)

    def __enter__(self) -> Client:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.disconnect()

    @property
    def is_connected(self) -> bool:
        return self.transport.is_connected

    def connect(self, port: str | None = None) -> None:
        """Open `port` (or the configured port); raises TransportConnectError on failure."""
        port = port or self.config.port
        if not port:
            raise TransportConnectError("No serial port configured.")
        if not self.transport.connect(port):
            raise TransportConnectError(f"Could not connect to {port}: {self.transport.last_error}")

    def disconnect(self) -> None:
        self.transport.disconnect()

    def probe(self, address: int, *, timeout_ms: int | None = None) -> bool:
        return self._service.probe(address, timeout_ms)

    def enroll(
        self,
        source: TargetSource,
        *,
        control: RunControl | None = None,
        sink: ProgressSink | None = None,
    ) -> SessionResult:
        return self._service.run(source, control or RunControl(), sink=sink)

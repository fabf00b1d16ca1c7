"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from rtuenroll.core.config import EnrollConfig
from rtuenroll.core.control import RunControl
from rtuenroll.core.errors import OperationCanceled, TransportNotConnectedError
from rtuenroll.core.light_workflow import LightWorkflow
from rtuenroll.core.model import LightTarget, SensorTarget, SessionResult
from rtuenroll.core.presence import PresenceProber
from rtuenroll.core.progress import ProgressDispatcher, ProgressSink
from rtuenroll.core.sensor_workflow import SensorWorkflow
from rtuenroll.core.session import EnrollmentSession
from rtuenroll.core.targets import TargetSource
from rtuenroll.transports.manager import TransportManager

LOGGER = logging.getLogger(__name__)


class EnrollmentService:
    """Runs one enrollment session: all sensors, then all lights, then one flush."""

    def __init__(
        self,
        transport: TransportManager,
        *,
        config: EnrollConfig | None = None,
    ) -> None:
        self.config = config or EnrollConfig()
        self.transport = transport
        timing = self.config.timing
        self.prober = PresenceProber(transport, timeout_ms=timing.presence_timeout_ms)
        self.sensor_workflow = SensorWorkflow(
            transport,
            self.prober,
            timing=timing,
            default_address=self.config.default_address,
        )
        self.light_workflow = LightWorkflow(
            transport,
            self.prober,
            timing=timing,
            default_address=self.config.default_address,
        )

    def probe(self, address: int, timeout_ms: int | None = None) -> bool:
        self._require_connection()
        return self.prober.check_alive(address, timeout_ms)

    def run(
        self,
        source: TargetSource,
        control: RunControl,
        *,
        sink: ProgressSink | None = None,
    ) -> SessionResult:
        sensors = source.load_sensor_targets()
        lights = source.load_light_targets()
        return self.run_targets(sensors, lights, source, control, sink=sink)

    def run_targets(
        self,
        sensors: Sequence[SensorTarget],
        lights: Sequence[LightTarget],
        source: TargetSource,
        control: RunControl,
        *,
        sink: ProgressSink | None = None,
    ) -> SessionResult:
        self._require_connection()

        session = EnrollmentSession(control, ProgressDispatcher(sink))
        cancelled = False
        persisted = False
        try:
            LOGGER.info("Enrolling %s sensors", len(sensors))
            self.sensor_workflow.run(sensors, session)
            LOGGER.info("Enrolling %s lights", len(lights))
            self.light_workflow.run(lights, session)
        except OperationCanceled:
            cancelled = True
            LOGGER.warning("Enrollment canceled")
        finally:
            session.close()

        if not cancelled:
            persisted = session.flush(source.persist_identifiers)

        return SessionResult(
            identifiers=tuple(session.identifiers),
            cancelled=cancelled,
            persisted=persisted,
            targets=(*sensors, *lights),
        )

    def _require_connection(self) -> None:
        if not self.transport.is_connected:
            raise TransportNotConnectedError(
                f"Not connected: {self.transport.last_error or 'no port opened'}"
            )

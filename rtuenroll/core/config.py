"""Configuration source: serial port and tunable enrollment timing."""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from rtuenroll.core.errors import ConfigError
from rtuenroll.core.loader import read_yaml, validate
from rtuenroll.core.model import EnrollmentTiming
from rtuenroll.core.registers import FACTORY_DEFAULT_ADDRESS
from rtuenroll.transports.manager import DEFAULT_WATCHDOG_INTERVAL_S

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrollConfig:
    port: str | None = None
    default_address: int = FACTORY_DEFAULT_ADDRESS
    watchdog_interval_s: float = DEFAULT_WATCHDOG_INTERVAL_S
    timing: EnrollmentTiming = field(default_factory=EnrollmentTiming)
    source: Path | None = None


def default_config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "rtuenroll/config.yaml"


def load_config(path: Path | None = None) -> EnrollConfig:
    """Load `path`, or the XDG default when present; defaults otherwise.

    An explicitly given path must exist.
    """
    if path is None:
        path = default_config_path()
        if not path.exists():
            LOGGER.debug("No config file at %s, using defaults", path)
            return EnrollConfig()

    doc = read_yaml(path, read_error=ConfigError, invalid_error=ConfigError)
    validate(doc, "config.schema.json", path, error=ConfigError)

    timing = dataclasses.replace(EnrollmentTiming(), **doc.get("timing", {}))
    # One alive poll credits a whole interval.
    if timing.stable_window_ms <= timing.poll_interval_ms:
        raise ConfigError(
            f"Invalid timing in {path}: stable_window_ms ({timing.stable_window_ms}) "
            f"must exceed poll_interval_ms ({timing.poll_interval_ms})"
        )

    return EnrollConfig(
        port=doc.get("port"),
        default_address=int(doc.get("default_address", FACTORY_DEFAULT_ADDRESS)),
        watchdog_interval_s=float(doc.get("watchdog_interval_s", DEFAULT_WATCHDOG_INTERVAL_S)),
        timing=timing,
        source=path,
    )

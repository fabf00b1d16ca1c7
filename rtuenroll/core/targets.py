"""Target lists: where the ordered device records come from and where serials go."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Any, Protocol

import yaml

from rtuenroll.core.errors import TargetSourceError, TargetValidationError
from rtuenroll.core.loader import read_yaml, validate
from rtuenroll.core.model import BuzzerMode, IdentifierRecord, LightTarget, SensorTarget
from rtuenroll.core.registers import FACTORY_DEFAULT_ADDRESS

LOGGER = logging.getLogger(__name__)


class TargetSource(Protocol):
    def load_sensor_targets(self) -> list[SensorTarget]:
        """Ordered sensor records."""

    def load_light_targets(self) -> list[LightTarget]:
        """Ordered light fixture records."""

    def persist_identifiers(self, batch: Sequence[IdentifierRecord]) -> None:
        """Store discovered serial numbers against their rows."""


class YamlTargetSource:
    """Targets file with `sensors:` and `lights:` lists; rows are 1-based positions.

    No target may use `default_address`: every new device answers there.
    """

    def __init__(self, path: Path, *, default_address: int = FACTORY_DEFAULT_ADDRESS) -> None:
        self.path = Path(path)
        self.default_address = default_address
        self._doc: dict[str, Any] | None = None

    def _load(self) -> dict[str, Any]:
        if self._doc is None:
            doc = read_yaml(
                self.path,
                read_error=TargetSourceError,
                invalid_error=TargetValidationError,
            )
            validate(doc, "targets.schema.json", self.path, error=TargetValidationError)
            _check_addresses(doc, self.path, self.default_address)
            self._doc = doc
        return self._doc

    def load_sensor_targets(self) -> list[SensorTarget]:
        targets: list[SensorTarget] = []
        for row, entry in enumerate(self._load().get("sensors", []), start=1):
            buzzer = entry.get("buzzer")
            targets.append(
                SensorTarget(
                    row=row,
                    address=entry["address"],
                    selected=entry.get("selected", True),
                    buzzer=BuzzerMode(buzzer) if buzzer else None,
                    model=entry.get("model", ""),
                    location=entry.get("location") or "",
                    serial=entry.get("serial") or None,
                )
            )
        return targets

    def load_light_targets(self) -> list[LightTarget]:
        return [
            LightTarget(
                row=row,
                address=entry["address"],
                selected=entry.get("selected", True),
                timeout=entry.get("timeout", 0),
                model=entry.get("model", ""),
                location=entry.get("location") or "",
            )
            for row, entry in enumerate(self._load().get("lights", []), start=1)
        ]

    def persist_identifiers(self, batch: Sequence[IdentifierRecord]) -> None:
        if not batch:
            return
        doc = self._load()
        sensors = doc.get("sensors", [])
        for record in batch:
            if not 1 <= record.row <= len(sensors):
                raise TargetSourceError(f"Sensor row {record.row} does not exist in {self.path}")
            sensors[record.row - 1]["serial"] = record.serial

        try:
            self.path.write_text(
                yaml.safe_dump(doc, sort_keys=False, allow_unicode=True),
                encoding="utf-8",
            )
        except OSError as exc:
            raise TargetSourceError(f"Could not write {self.path}: {exc}") from exc
        LOGGER.info("Wrote %s serial numbers to %s", len(batch), self.path)


def _check_addresses(doc: dict[str, Any], source: Path, default_address: int) -> None:
    seen: dict[int, str] = {}
    for kind in ("sensors", "lights"):
        for row, entry in enumerate(doc.get(kind, []), start=1):
            address = entry["address"]
            where = f"{kind}[{row}]"
            if address == default_address:
                raise TargetValidationError(
                    f"Address {address} in {source} ({where}) is the factory default address"
                )
            if address in seen:
                raise TargetValidationError(
                    f"Address {address} assigned twice in {source}: {seen[address]} and {where}"
                )
            seen[address] = where

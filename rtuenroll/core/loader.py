"""YAML reading and JSON-Schema validation shared by config and target files."""

from __future__ import annotations

import json
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from rtuenroll.core.errors import EnrollError


class DuplicateKeyError(yaml.YAMLError):
    pass


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise DuplicateKeyError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@lru_cache(maxsize=None)
def schema_validator(name: str) -> Any:
    schema_text = resources.files("rtuenroll.schemas").joinpath(name).read_text(encoding="utf-8")
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def read_yaml(
    path: Path,
    *,
    read_error: type[EnrollError],
    invalid_error: type[EnrollError],
) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise read_error(f"Could not read {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise invalid_error(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise invalid_error(f"{path} must contain a mapping at root")
    return loaded


def validate(doc: dict[str, Any], schema_name: str, source: Path, *, error: type[EnrollError]) -> None:
    try:
        schema_validator(schema_name).validate(doc)
    except ValidationError as exc:
        where = ".".join(str(p) for p in exc.path)
        where = f" ({where})" if where else ""
        raise error(f"Schema validation failed for {source}{where}: {exc.message}") from exc

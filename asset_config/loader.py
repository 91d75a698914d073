"""
Settings loader (``asset_config.loader``).

Responsibility
--------------
Reads a YAML settings file and parses it into the frozen
``asset_config.schema`` dataclasses.  Keys missing from the file keep their
schema defaults; unknown sections are rejected so typos surface early.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, bad value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from asset_config.schema import (
    AccessSettings,
    DatabaseSettings,
    IdentifierDef,
    IdentifierSettings,
    InventorySettings,
    KernelSettings,
    StatsSettings,
    WorkflowSettings,
)

_SECTIONS = ("identifiers", "access", "workflow", "inventory", "stats", "database")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file; an empty file yields an empty dict."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Section-wise merge; override values win key by key."""
    merged = {k: dict(v) if isinstance(v, dict) else v for k, v in base.items()}
    for section, values in override.items():
        if isinstance(values, dict) and isinstance(merged.get(section), dict):
            merged[section].update(values)
        else:
            merged[section] = values
    return merged


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Section '{name}' must be a mapping")
    return value


def _build(cls: type, data: dict[str, Any], section: str) -> Any:
    known = {f.name for f in fields(cls)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"Unknown keys in '{section}': {', '.join(unknown)}")
    return cls(**data)


def _tuple(values: Any, key: str) -> tuple[str, ...]:
    if isinstance(values, str) or not isinstance(values, (list, tuple)):
        raise ValueError(f"'{key}' must be a list")
    return tuple(str(v) for v in values)


def parse_identifiers(data: dict[str, Any]) -> IdentifierSettings:
    parsed = {}
    for key, value in data.items():
        if not isinstance(value, dict):
            raise ValueError(f"Identifier '{key}' must be a mapping")
        parsed[key] = IdentifierDef(prefix=str(value["prefix"]), width=int(value["width"]))
    return _build(IdentifierSettings, parsed, "identifiers")


def parse_settings(data: dict[str, Any]) -> KernelSettings:
    """Parse a settings mapping into ``KernelSettings``."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown settings sections: {', '.join(unknown)}")

    access = _section(data, "access")
    workflow = _section(data, "workflow")
    return KernelSettings(
        identifiers=parse_identifiers(_section(data, "identifiers")),
        access=_build(
            AccessSettings,
            {k: _tuple(v, k) for k, v in access.items()},
            "access",
        ),
        workflow=_build(
            WorkflowSettings,
            {k: _tuple(v, k) for k, v in workflow.items()},
            "workflow",
        ),
        inventory=_build(InventorySettings, _section(data, "inventory"), "inventory"),
        stats=_build(StatsSettings, _section(data, "stats"), "stats"),
        database=_build(DatabaseSettings, _section(data, "database"), "database"),
        checksum=compute_checksum(data),
    )

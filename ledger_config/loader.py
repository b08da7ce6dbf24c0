"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads YAML settings files, merges an optional override over the packaged
defaults and parses the result into ``ledger_config.schema`` dataclasses.
Callers go through ``ledger_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, or an invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict, replace
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    DatabaseSettings,
    EngineConfig,
    ReceivableSettings,
    ValuationSettings,
)
from ledger_engines.fifo import ConsumptionMode, ShortfallPolicy

_SECTIONS = ("valuation", "receivables", "database")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(data).__name__}")
    return data


def merge_settings(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge ``override`` over ``base`` one section deep."""
    merged = {name: dict(values or {}) for name, values in base.items()}
    for name, values in override.items():
        if values is None:
            continue
        if not isinstance(values, dict):
            raise ValueError(f"Section {name!r} must be a mapping, got {values!r}")
        merged.setdefault(name, {}).update(values)
    return merged


def _enum_value(enum_cls, raw: Any, key: str):
    try:
        return enum_cls(raw)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{key} must be one of [{allowed}], got {raw!r}") from None


def _check_keys(section: str, data: dict[str, Any], allowed: tuple[str, ...]) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise ValueError(f"Unknown key(s) in {section!r}: {', '.join(unknown)}")


def parse_valuation(data: dict[str, Any]) -> ValuationSettings:
    """Parse the ``valuation`` section."""
    _check_keys("valuation", data, ("consumption_mode", "shortfall_policy", "amount_places"))
    defaults = ValuationSettings()
    return ValuationSettings(
        consumption_mode=_enum_value(
            ConsumptionMode,
            data.get("consumption_mode", defaults.consumption_mode.value),
            "valuation.consumption_mode",
        ),
        shortfall_policy=_enum_value(
            ShortfallPolicy,
            data.get("shortfall_policy", defaults.shortfall_policy.value),
            "valuation.shortfall_policy",
        ),
        amount_places=data.get("amount_places", defaults.amount_places),
    )


def parse_receivables(data: dict[str, Any]) -> ReceivableSettings:
    """Parse the ``receivables`` section."""
    _check_keys("receivables", data, (
        "cascade_on_correction",
        "verify_predecessor_chain",
        "reject_activity_gaps",
        "max_write_retries",
    ))
    defaults = ReceivableSettings()
    return ReceivableSettings(
        cascade_on_correction=data.get(
            "cascade_on_correction", defaults.cascade_on_correction,
        ),
        verify_predecessor_chain=data.get(
            "verify_predecessor_chain", defaults.verify_predecessor_chain,
        ),
        reject_activity_gaps=data.get(
            "reject_activity_gaps", defaults.reject_activity_gaps,
        ),
        max_write_retries=data.get("max_write_retries", defaults.max_write_retries),
    )


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    _check_keys("database", data, ("echo",))
    return DatabaseSettings(echo=data.get("echo", False))


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Parse a merged settings dict into an ``EngineConfig``.

    Missing sections take their defaults.

    Raises:
        ValueError: on unknown sections or keys, or invalid values.
    """
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"Unknown configuration section(s): {', '.join(unknown)}")
    config = EngineConfig(
        valuation=parse_valuation(data.get("valuation") or {}),
        receivables=parse_receivables(data.get("receivables") or {}),
        database=parse_database(data.get("database") or {}),
    )
    return replace(config, checksum=compute_checksum(config))


def compute_checksum(data: EngineConfig | dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    An ``EngineConfig`` is hashed over its effective values, without its
    own ``checksum`` field.  Identical input always produces identical
    checksums.
    """
    if isinstance(data, EngineConfig):
        data = asdict(data)
        data.pop("checksum", None)
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

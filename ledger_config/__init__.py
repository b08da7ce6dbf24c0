"""
ledger_config -- single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain settings.  It
    loads the packaged ``defaults.yaml``, merges an optional override file
    over it and returns a frozen ``EngineConfig``.

Architecture position:
    Configuration -- sits above ``ledger_kernel`` and ``ledger_engines`` and
    below ``ledger_services``.  The kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- the override path does not exist.
    - ``ValueError`` -- unknown keys or invalid values.

Every successful call emits a ``LEDGER_CONFIG_TRACE`` log entry carrying
the settings checksum.
"""

from __future__ import annotations

from pathlib import Path

from ledger_config.loader import (
    compute_checksum,
    load_yaml_file,
    merge_settings,
    parse_engine_config,
)
from ledger_config.schema import (
    DatabaseSettings,
    EngineConfig,
    ReceivableSettings,
    ValuationSettings,
)
from ledger_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(path: Path | str | None = None) -> EngineConfig:
    """Return the active configuration.

    Args:
        path: Optional YAML override merged over the packaged defaults.

    Raises:
        FileNotFoundError: If ``path`` does not exist.
        ValueError: If the merged settings are invalid.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is not None:
        data = merge_settings(data, load_yaml_file(Path(path)))

    config = parse_engine_config(data)

    _logger.info(
        "LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "LEDGER_CONFIG_TRACE",
            "checksum": config.checksum,
            "override_path": str(path) if path is not None else None,
            "consumption_mode": config.valuation.consumption_mode.value,
            "shortfall_policy": config.valuation.shortfall_policy.value,
            "cascade_on_correction": config.receivables.cascade_on_correction,
        },
    )
    return config


__all__ = [
    "DEFAULTS_PATH",
    "DatabaseSettings",
    "EngineConfig",
    "ReceivableSettings",
    "ValuationSettings",
    "compute_checksum",
    "get_active_config",
]

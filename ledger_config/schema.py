"""
Engine configuration schema.

Frozen dataclasses the YAML settings are parsed into.  Validation lives in
``__post_init__`` so an invalid value can never exist as a config object.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from ledger_engines.fifo import ConsumptionMode, ShortfallPolicy

# ---------------------------------------------------------------------------
# Valuation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ValuationSettings:
    """FIFO valuation behaviour."""

    consumption_mode: ConsumptionMode = ConsumptionMode.REFILL_ONLY
    shortfall_policy: ShortfallPolicy = ShortfallPolicy.FLAG
    amount_places: int = 2  # Rounding of reported averages only

    def __post_init__(self) -> None:
        if not isinstance(self.amount_places, int) or isinstance(self.amount_places, bool):
            raise ValueError(f"amount_places must be an integer, got {self.amount_places!r}")
        if not 0 <= self.amount_places <= 9:
            raise ValueError(f"amount_places must be between 0 and 9, got {self.amount_places}")


# ---------------------------------------------------------------------------
# Receivables
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReceivableSettings:
    """Receivable recurrence behaviour."""

    cascade_on_correction: bool = True
    verify_predecessor_chain: bool = True
    reject_activity_gaps: bool = True
    max_write_retries: int = 3

    def __post_init__(self) -> None:
        for name in (
            "cascade_on_correction",
            "verify_predecessor_chain",
            "reject_activity_gaps",
        ):
            if not isinstance(getattr(self, name), bool):
                raise ValueError(f"{name} must be a boolean, got {getattr(self, name)!r}")
        if (
            not isinstance(self.max_write_retries, int)
            or isinstance(self.max_write_retries, bool)
            or self.max_write_retries < 1
        ):
            raise ValueError(
                f"max_write_retries must be an integer >= 1, got {self.max_write_retries!r}"
            )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    echo: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.echo, bool):
            raise ValueError(f"echo must be a boolean, got {self.echo!r}")


@dataclass(frozen=True)
class EngineConfig:
    """Complete runtime configuration of the reconciliation engine."""

    valuation: ValuationSettings = field(default_factory=ValuationSettings)
    receivables: ReceivableSettings = field(default_factory=ReceivableSettings)
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    checksum: str = ""

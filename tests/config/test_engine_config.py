"""
Tests for engine configuration loading.

Covers the packaged defaults, YAML overrides, validation and the settings
checksum.
"""

from dataclasses import replace

import pytest
import yaml

from ledger_config import (
    DEFAULTS_PATH,
    EngineConfig,
    ReceivableSettings,
    ValuationSettings,
    compute_checksum,
    get_active_config,
)
from ledger_config.loader import load_yaml_file, merge_settings, parse_engine_config
from ledger_engines.fifo import ConsumptionMode, ShortfallPolicy


@pytest.fixture
def override_file(tmp_path):
    def _write(data) -> str:
        path = tmp_path / "override.yaml"
        path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


class TestDefaults:

    def test_packaged_defaults_match_schema_defaults(self):
        config = get_active_config()

        assert replace(config, checksum="") == EngineConfig()
        assert config.valuation.consumption_mode == ConsumptionMode.REFILL_ONLY
        assert config.valuation.shortfall_policy == ShortfallPolicy.FLAG
        assert config.receivables.cascade_on_correction is True
        assert config.receivables.max_write_retries == 3

    def test_defaults_file_is_packaged(self):
        assert DEFAULTS_PATH.name == "defaults.yaml"
        assert set(load_yaml_file(DEFAULTS_PATH)) == {"valuation", "receivables", "database"}

    def test_config_trace_is_logged(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_CONFIG_TRACE"]
        assert traces[-1]["checksum"] == config.checksum
        assert traces[-1]["override_path"] is None


class TestOverrides:

    def test_override_merges_over_defaults(self, override_file):
        path = override_file({
            "valuation": {"shortfall_policy": "raise"},
            "receivables": {"cascade_on_correction": False},
        })

        config = get_active_config(path)

        assert config.valuation.shortfall_policy == ShortfallPolicy.RAISE
        assert config.valuation.consumption_mode == ConsumptionMode.REFILL_ONLY
        assert config.receivables.cascade_on_correction is False
        assert config.receivables.verify_predecessor_chain is True

    def test_empty_override_changes_nothing(self, override_file):
        assert get_active_config(override_file({})) == get_active_config()

    def test_missing_override_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")

    def test_merge_is_one_section_deep(self):
        merged = merge_settings(
            {"valuation": {"amount_places": 2, "shortfall_policy": "flag"}},
            {"valuation": {"amount_places": 4}, "database": {"echo": True}},
        )
        assert merged == {
            "valuation": {"amount_places": 4, "shortfall_policy": "flag"},
            "database": {"echo": True},
        }


class TestValidation:

    @pytest.mark.parametrize("data, message", [
        ({"valuation": {"shortfall_policy": "ignore"}}, "shortfall_policy"),
        ({"valuation": {"consumption_mode": "packages"}}, "consumption_mode"),
        ({"valuation": {"amount_places": 12}}, "amount_places"),
        ({"valuation": {"amount_places": "2"}}, "amount_places"),
        ({"receivables": {"max_write_retries": 0}}, "max_write_retries"),
        ({"receivables": {"cascade_on_correction": "yes"}}, "cascade_on_correction"),
        ({"receivables": {"cascade": True}}, "Unknown key"),
        ({"reports": {}}, "Unknown configuration section"),
    ])
    def test_invalid_settings_rejected(self, data, message):
        with pytest.raises(ValueError, match=message):
            parse_engine_config(data)

    def test_non_mapping_file_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- one\n- two\n")

        with pytest.raises(ValueError, match="mapping"):
            get_active_config(path)

    def test_settings_are_frozen(self):
        with pytest.raises(AttributeError):
            ReceivableSettings().max_write_retries = 5


class TestChecksum:

    def test_checksum_is_deterministic(self):
        assert get_active_config().checksum == get_active_config().checksum
        assert len(get_active_config().checksum) == 64

    def test_checksum_tracks_effective_values(self, override_file):
        default = get_active_config()
        changed = get_active_config(override_file({"valuation": {"amount_places": 4}}))
        restated = get_active_config(override_file({"valuation": {"amount_places": 2}}))

        assert changed.checksum != default.checksum
        assert restated.checksum == default.checksum

    def test_checksum_ignores_stored_checksum(self):
        config = EngineConfig(valuation=ValuationSettings(amount_places=3))
        assert compute_checksum(config) == compute_checksum(replace(config, checksum="x"))

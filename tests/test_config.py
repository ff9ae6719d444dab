"""
Tests for SimulationConfig validation and YAML loading.
"""

import pytest

from dropnet.config import (
    SimulationConfig,
    config_from_dict,
    load_config,
    save_config,
    RESISTANCE_MODEL_TEST,
)
from dropnet.core import SimulationEngine
from dropnet.models import ConfigurationError

from conftest import build_reference_chip


class TestSimulationConfigValidation:
    """Test SimulationConfig validation."""

    def test_default_config_is_valid(self):
        cfg = SimulationConfig()
        is_valid, err = cfg.validate()
        assert is_valid
        assert err is None

    def test_defaults(self):
        cfg = SimulationConfig()
        assert cfg.maximal_adaptive_time_step == 0.0
        assert cfg.resistance_model == 0
        assert cfg.slip_factor == pytest.approx(1.28)
        assert cfg.max_time is None
        assert cfg.max_states is None

    def test_negative_time_step(self):
        cfg = SimulationConfig(maximal_adaptive_time_step=-0.1)
        is_valid, err = cfg.validate()
        assert not is_valid
        assert "maximal_adaptive_time_step" in err

    def test_unknown_resistance_model(self):
        cfg = SimulationConfig(resistance_model=7)
        is_valid, err = cfg.validate()
        assert not is_valid
        assert "resistance_model" in err

    def test_zero_slip_factor(self):
        is_valid, err = SimulationConfig(slip_factor=0.0).validate()
        assert not is_valid
        assert "slip_factor" in err

    def test_non_positive_max_time(self):
        is_valid, _ = SimulationConfig(max_time=0.0).validate()
        assert not is_valid

    def test_stall_duration_none_is_valid(self):
        is_valid, _ = SimulationConfig(stall_duration=None).validate()
        assert is_valid

    def test_zero_max_states(self):
        is_valid, err = SimulationConfig(max_states=0).validate()
        assert not is_valid
        assert "max_states" in err

    def test_engine_rejects_invalid_config(self):
        builder = build_reference_chip()
        with pytest.raises(ConfigurationError):
            SimulationEngine(builder, config=SimulationConfig(slip_factor=-1.0))


class TestConfigLoading:
    """Test building configs from mappings and YAML files."""

    def test_empty_mapping_gives_defaults(self):
        assert config_from_dict({}) == SimulationConfig()
        assert config_from_dict(None) == SimulationConfig()

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="unknown keys"):
            config_from_dict({"time_step": 0.1})

    def test_invalid_value(self):
        with pytest.raises(ValueError, match="Invalid configuration"):
            config_from_dict({"slip_factor": -2.0})

    def test_load_yaml(self, tmp_path):
        path = tmp_path / "run.yaml"
        path.write_text(
            "maximal_adaptive_time_step: 0.005\n"
            "resistance_model: 1\n"
            "max_states: 50\n"
        )
        cfg = load_config(path)
        assert cfg.maximal_adaptive_time_step == pytest.approx(0.005)
        assert cfg.resistance_model == RESISTANCE_MODEL_TEST
        assert cfg.max_states == 50
        assert cfg.slip_factor == pytest.approx(1.28)

    def test_load_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == SimulationConfig()

    def test_load_non_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "missing.yaml")

    def test_saved_config_loads_back(self, tmp_path):
        path = tmp_path / "saved.yaml"
        cfg = SimulationConfig(max_time=2.5, stall_duration=None, enable_merging=False)
        save_config(cfg, path)
        assert load_config(path) == cfg

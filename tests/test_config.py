"""Tests for farm_epi.config — configuration loading and validation."""

import math

import pytest
import yaml

from farm_epi.config import (
    DiseaseSection,
    OutputSection,
    PopulationSection,
    ScenarioSection,
    SimulationConfig,
    SpreadSection,
    SurveillanceSection,
    config_from_dict,
    deep_merge,
    default_config,
    load_config,
    save_config,
    validate_config,
)
from farm_epi.errors import ConfigurationError


# ── deep_merge tests ──────────────────────────────────────────────────

class TestDeepMerge:
    def test_simple_override(self):
        assert deep_merge({'a': 1, 'b': 2}, {'b': 3}) == {'a': 1, 'b': 3}

    def test_nested_merge(self):
        base = {'x': {'a': 1, 'b': 2}, 'y': 10}
        result = deep_merge(base, {'x': {'b': 3, 'c': 4}})
        assert result == {'x': {'a': 1, 'b': 3, 'c': 4}, 'y': 10}

    def test_override_dict_with_scalar(self):
        assert deep_merge({'a': {'nested': 1}}, {'a': None}) == {'a': None}

    def test_modifies_base_in_place(self):
        base = {'a': 1}
        deep_merge(base, {'b': 2})
        assert base == {'a': 1, 'b': 2}


# ── default_config tests ─────────────────────────────────────────────

class TestDefaultConfig:
    def test_creates_valid_config(self):
        assert isinstance(default_config(), SimulationConfig)

    def test_default_values(self):
        config = default_config()
        assert config.scenario.seed == 20210426
        assert config.scenario.start_time == 0
        assert config.scenario.max_timesteps == 364
        assert config.disease.infection_rate == 0.03
        assert config.disease.recovery_rate == 0.01
        assert config.spread.contact_rate == 0.001
        assert config.surveillance.culled_animals == "vanish"
        assert config.surveillance.passive_interval == "monthly"
        assert config.population.herd_sizes == [140, 90]

    def test_detection_rate_is_one_percent_per_animal(self):
        rate = default_config().surveillance.detection_rate
        assert 1.0 - math.exp(-rate) == pytest.approx(0.01)


# ── YAML loading tests ───────────────────────────────────────────────

class TestLoadConfig:
    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "base.yaml"
        path.write_text(yaml.safe_dump({
            'scenario': {'seed': 7, 'max_timesteps': 50},
            'spread': {'contact_rate': 0.095},
        }))
        config = load_config(path)
        assert config.scenario.seed == 7
        assert config.scenario.max_timesteps == 50
        assert config.spread.contact_rate == 0.095
        assert config.disease.infection_rate == 0.03  # untouched default

    def test_scenario_override(self, tmp_path):
        base = tmp_path / "base.yaml"
        scen = tmp_path / "scenario.yaml"
        base.write_text(yaml.safe_dump({'disease': {'infection_rate': 0.05,
                                                    'recovery_rate': 0.02}}))
        scen.write_text(yaml.safe_dump({'disease': {'infection_rate': 0.2}}))
        config = load_config(base, scen)
        assert config.disease.infection_rate == 0.2
        assert config.disease.recovery_rate == 0.02

    def test_sweep_overrides_win(self, tmp_path):
        base = tmp_path / "base.yaml"
        base.write_text(yaml.safe_dump({'scenario': {'seed': 1}}))
        config = load_config(base, sweep_overrides={'scenario': {'seed': 99}})
        assert config.scenario.seed == 99

    def test_sweep_overrides_not_mutated(self, tmp_path):
        base = tmp_path / "base.yaml"
        base.write_text("")
        overrides = {'scenario': {'seed': 5}}
        load_config(base, sweep_overrides=overrides)
        assert overrides == {'scenario': {'seed': 5}}

    def test_empty_file_gives_defaults(self, tmp_path):
        base = tmp_path / "base.yaml"
        base.write_text("")
        assert load_config(base) == default_config()

    def test_unknown_keys_ignored(self, tmp_path):
        base = tmp_path / "base.yaml"
        base.write_text(yaml.safe_dump({
            'scenario': {'seed': 3, 'colour': 'blue'},
            'not_a_section': {'x': 1},
        }))
        assert load_config(base).scenario.seed == 3

    def test_file_not_found(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nonexistent.yaml")

    def test_scenario_file_not_found(self, tmp_path):
        base = tmp_path / "base.yaml"
        base.write_text("")
        with pytest.raises(FileNotFoundError):
            load_config(base, tmp_path / "missing.yaml")

    def test_invalid_values_rejected_on_load(self, tmp_path):
        base = tmp_path / "base.yaml"
        base.write_text(yaml.safe_dump({'disease': {'infection_rate': -1}}))
        with pytest.raises(ConfigurationError):
            load_config(base)

    def test_save_round_trip(self, tmp_path):
        config = default_config()
        config.scenario.seed = 123
        config.surveillance.culled_animals = "recovered"
        config.population.herd_sizes = [10, 20, 30]
        path = tmp_path / "out" / "config.yaml"
        save_config(config, path)
        assert load_config(path) == config


# ── Validation tests ─────────────────────────────────────────────────

def _config(**sections) -> SimulationConfig:
    return config_from_dict(sections)


class TestValidation:
    @pytest.mark.parametrize("sections", [
        {'disease': {'infection_rate': -0.1}},
        {'disease': {'recovery_rate': -0.1}},
        {'disease': {'recovery_rate': 1.5}},
        {'disease': {'exogenous_infection_rate': float('inf')}},
        {'spread': {'contact_rate': 1.5}},
        {'spread': {'contact_rate': -0.5}},
        {'surveillance': {'detection_rate': -1.0}},
        {'surveillance': {'remaining_proportion': 2.0}},
        {'surveillance': {'culled_animals': 'buried'}},
        {'surveillance': {'passive_interval': 'hourly'}},
        {'scenario': {'seed': -1}},
        {'scenario': {'max_timesteps': 0}},
        {'scenario': {'min_timesteps': 10, 'max_timesteps': 5}},
        {'scenario': {'seed_mode': 'some'}},
        {'scenario': {'rng_mode': 'threaded'}},
        {'population': {'species': 'goat'}},
        {'population': {'herd_sizes': []}},
        {'population': {'herd_sizes': [10, -1]}},
        {'population': {'repopulation_interval': 'never'}},
        {'output': {'record_interval': 'hourly'}},
        {'output': {'delimiter': ';;'}},
    ])
    def test_rejected(self, sections):
        with pytest.raises(ConfigurationError):
            validate_config(_config(**sections))

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            validate_config(_config(spread={'contact_rate': 3.0}))

    def test_accepts_edge_values(self):
        validate_config(_config(
            disease={'infection_rate': 0.0, 'recovery_rate': 1.0},
            spread={'contact_rate': 1.0},
            surveillance={'remaining_proportion': 0.0, 'detection_rate': 0.0},
            scenario={'min_timesteps': 50, 'max_timesteps': 50},
        ))

    def test_missing_population_file_warns(self, tmp_path):
        config = _config(population={'population_file': str(tmp_path / "farms.yaml")})
        with pytest.warns(UserWarning, match="does not exist"):
            validate_config(config)

    def test_sections_are_dataclasses(self):
        config = default_config()
        assert isinstance(config.scenario, ScenarioSection)
        assert isinstance(config.disease, DiseaseSection)
        assert isinstance(config.spread, SpreadSection)
        assert isinstance(config.surveillance, SurveillanceSection)
        assert isinstance(config.population, PopulationSection)
        assert isinstance(config.output, OutputSection)

"""Tests for farm_epi.model — the scenario driver and its daily loop."""

import numpy as np
import pandas as pd
import pytest

from farm_epi.config import config_from_dict, validate_config
from farm_epi.errors import ConfigurationError, TopologyError
from farm_epi.model import (
    STOP_MAX_TIMESTEPS,
    STOP_NO_ACTIVE_INFECTIONS,
    Scenario,
    ScenarioResult,
    run_scenario,
)
from farm_epi.population import build_population, make_ring_population
from farm_epi.recorder import MemoryRecorder
from farm_epi.types import FarmRecord


def _config(**sections):
    config = config_from_dict(sections)
    validate_config(config)
    return config


def _reference_config(**extra):
    """Two-farm ring, seed 20210426, 50 days, no surveillance."""
    sections = {
        'scenario': {'seed': 20210426, 'max_timesteps': 50},
        'disease': {'infection_rate': 0.03, 'recovery_rate': 0.01},
        'spread': {'contact_rate': 0.095},
        'surveillance': {'active_enabled': False, 'passive_enabled': False},
        'population': {'herd_sizes': [140, 90]},
    }
    for key, values in extra.items():
        sections.setdefault(key, {}).update(values)
    return _config(**sections)


def _population(config):
    return make_ring_population(
        config.population.herd_sizes,
        contact_rate=config.spread.contact_rate,
        infection_rate=config.disease.infection_rate,
        recovery_rate=config.disease.recovery_rate,
    )


class ClosingRecorder(MemoryRecorder):
    def __init__(self):
        super().__init__()
        self.closed = False

    def close(self):
        self.closed = True


# ═══════════════════════════════════════════════════════════════════════
# REFERENCE SCENARIO
# ═══════════════════════════════════════════════════════════════════════

class TestReferenceScenario:
    def test_runs_and_stops_cleanly(self):
        config = _reference_config()
        result = run_scenario(config, keep_batches=True)
        assert result.stop_reason in (STOP_MAX_TIMESTEPS, STOP_NO_ACTIVE_INFECTIONS)
        assert 1 <= result.n_days <= 50
        if result.stop_reason == STOP_MAX_TIMESTEPS:
            assert result.n_days == 50
        else:
            assert result.daily_infected[-1] == 0

    def test_batch_ids_are_consecutive(self):
        result = run_scenario(_reference_config(), keep_batches=True)
        ids = [b.batch_id for b in result.batches]
        assert ids == list(range(1, len(ids) + 1))
        assert result.last_batch_id == result.n_batches
        ticks = [b.scenario_tick for b in result.batches]
        assert ticks == sorted(set(ticks))

    def test_animals_conserved_without_culling(self):
        config = _reference_config()
        pop = _population(config)
        recorder = MemoryRecorder()
        Scenario(config, pop, [recorder]).run()
        for states in recorder.farm_states.values():
            np.testing.assert_array_equal(
                states['susceptible'] + states['infected'] + states['recovered'],
                [140, 90],
            )

    def test_deterministic(self):
        a = run_scenario(_reference_config(), keep_batches=True)
        b = run_scenario(_reference_config(), keep_batches=True)
        assert a.n_days == b.n_days
        np.testing.assert_array_equal(a.daily_infected, b.daily_infected)
        np.testing.assert_array_equal(a.daily_recovered, b.daily_recovered)
        assert [list(x.rows()) for x in a.batches] == [list(x.rows()) for x in b.batches]
        assert a.seeded_farm_id == b.seeded_farm_id

    def test_first_tick_is_one(self):
        result = run_scenario(_reference_config())
        assert result.ticks[0] == 1
        np.testing.assert_array_equal(result.ticks, np.arange(1, result.n_days + 1))


# ═══════════════════════════════════════════════════════════════════════
# TERMINATION
# ═══════════════════════════════════════════════════════════════════════

class TestTermination:
    def _dying_config(self, min_timesteps):
        # Seeded animal recovers on day 1 and nothing else happens
        return _reference_config(
            scenario={'min_timesteps': min_timesteps},
            disease={'infection_rate': 0.0, 'recovery_rate': 1.0},
            spread={'enabled': False},
        )

    def test_stops_on_extinction(self):
        result = run_scenario(self._dying_config(0))
        assert result.stop_reason == STOP_NO_ACTIVE_INFECTIONS
        assert result.n_days == 1

    def test_min_timesteps_delays_extinction_stop(self):
        result = run_scenario(self._dying_config(10))
        assert result.stop_reason == STOP_NO_ACTIVE_INFECTIONS
        assert result.n_days == 10

    def test_max_timesteps(self):
        config = _reference_config(
            scenario={'max_timesteps': 7},
            disease={'recovery_rate': 0.0},
        )
        result = run_scenario(config)
        assert result.stop_reason == STOP_MAX_TIMESTEPS
        assert result.n_days == 7

    def test_start_time_offsets_ticks(self):
        config = _reference_config(scenario={'start_time': 5, 'max_timesteps': 3},
                                   disease={'recovery_rate': 0.0})
        result = run_scenario(config)
        np.testing.assert_array_equal(result.ticks, [6, 7, 8])


# ═══════════════════════════════════════════════════════════════════════
# DAILY STEP
# ═══════════════════════════════════════════════════════════════════════

class TestStep:
    def test_passive_runs_monthly(self):
        config = _reference_config(
            scenario={'max_timesteps': 60},
            disease={'recovery_rate': 0.0},
            surveillance={'passive_enabled': True},
        )
        result = run_scenario(config)
        assert [p.scenario_tick for p in result.prevalence] == [1, 29, 57]
        for p in result.prevalence:
            assert p.true_prevalence >= p.observed_prevalence
        frame = result.prevalence_dataframe()
        assert list(frame['scenario_tick']) == [1, 29, 57]

    def test_active_detections_are_recorded(self):
        config = _reference_config(
            scenario={'seed_mode': 'everywhere', 'max_timesteps': 30},
            surveillance={'active_enabled': True, 'detection_rate': 5.0,
                          'remaining_proportion': 0.0},
        )
        result = run_scenario(config)
        assert len(result.detections) >= 1
        assert result.daily_detections.sum() == len(result.detections)
        assert all(d.infected_after == 0 for d in result.detections)

    def test_exogenous_pressure(self):
        config = _reference_config(
            scenario={'max_timesteps': 1},
            disease={'infection_rate': 0.0, 'recovery_rate': 0.0,
                     'exogenous_infection_rate': 0.1},
            spread={'enabled': False},
        )
        scenario = Scenario(config, _population(config))
        scenario.seed_infection()
        report = scenario.step()
        assert report.exogenous_infections == 14 + 9
        assert scenario.population.farms['infected'].sum() == 24

    def test_repopulation(self):
        config = _reference_config(
            scenario={'seed_mode': 'everywhere', 'max_timesteps': 1},
            disease={'infection_rate': 0.0, 'recovery_rate': 0.0},
            spread={'enabled': False},
            population={'repopulation_interval': 'daily'},
        )
        pop = _population(config)
        pop.farms['susceptible'] = [70, 90]  # farm 0 lost half its animals
        scenario = Scenario(config, pop)
        scenario.seed_infection()
        report = scenario.step()
        assert report.repopulated_farms == 1
        assert pop.farms['susceptible'][0] + pop.farms['infected'][0] == 140

    def test_recorders_receive_batches_and_states(self):
        config = _reference_config(
            scenario={'seed_mode': 'everywhere', 'max_timesteps': 20},
            disease={'recovery_rate': 0.0},
            spread={'contact_rate': 1.0},
        )
        recorder = MemoryRecorder()
        result = Scenario(config, _population(config), [recorder]).run()
        assert sorted(recorder.farm_states) == list(range(1, 21))
        assert [b.batch_id for b in recorder.batches] == list(
            range(1, result.n_batches + 1))

    def test_recorders_closed_on_failure(self):
        config = _reference_config(
            scenario={'seed_mode': 'everywhere'},
            spread={'contact_rate': 1.0},
        )
        pop = build_population([FarmRecord(1, 10, []), FarmRecord(2, 10, [1])],
                               contact_rate=1.0)
        recorder = ClosingRecorder()
        with pytest.raises(TopologyError):
            Scenario(config, pop, [recorder]).run()
        assert recorder.closed

    def test_isolated_farm_warning(self, caplog):
        config = _reference_config()
        pop = build_population([FarmRecord(1, 10, []), FarmRecord(2, 10, [1])])
        with caplog.at_level("WARNING", logger="farm_epi.model"):
            Scenario(config, pop)
        assert "no adjacent farms" in caplog.text

    def test_invalid_config_rejected(self):
        config = config_from_dict({'spread': {'contact_rate': 2.0}})
        with pytest.raises(ConfigurationError):
            Scenario(config, make_ring_population([10, 10]))

    def test_invalid_farm_rates_rejected_before_day_one(self):
        with pytest.raises(ConfigurationError):
            Scenario(_reference_config(), build_population([
                FarmRecord(0, 100, [1], contact_rate=3.0),
                FarmRecord(1, 100, [0], infection_rate=-1.0),
            ]))

    def test_partitioned_mode_runs(self):
        config = _reference_config(scenario={'rng_mode': 'partitioned'})
        a = run_scenario(config)
        b = run_scenario(config)
        np.testing.assert_array_equal(a.daily_infected, b.daily_infected)


# ═══════════════════════════════════════════════════════════════════════
# RESULTS
# ═══════════════════════════════════════════════════════════════════════

class TestResult:
    def test_to_dataframe(self):
        result = run_scenario(_reference_config())
        frame = result.to_dataframe()
        assert isinstance(frame, pd.DataFrame)
        assert len(frame) == result.n_days
        assert frame.index.name == 'scenario_tick'
        assert list(frame.columns) == [
            'susceptible', 'infected', 'recovered', 'infected_farms',
            'between_herd_infections', 'detections',
        ]

    def test_peak(self):
        result = run_scenario(_reference_config())
        assert result.peak_infected == result.daily_infected.max()
        assert result.daily_infected[result.peak_infected_day - 1] == result.peak_infected

    def test_batches_dropped_unless_kept(self):
        result = run_scenario(_reference_config(
            spread={'contact_rate': 1.0},
            scenario={'seed_mode': 'everywhere'},
            population={'herd_sizes': [3, 3]},
        ))
        assert result.batches == []
        assert result.n_batches > 0

    def test_default_run(self):
        assert isinstance(run_scenario(_reference_config(scenario={'max_timesteps': 5})),
                          ScenarioResult)

"""Scenario driver: the daily loop over the farm population.

Daily order (fixed; the shared RNG is consumed in this order):
  1. Clock advances by one day
  2. Within-herd SIR update on every farm
  3. Exogenous infection pressure (only if its rate is > 0; no draws)
  4. Between-herd spread (selection, then target + outcome)
  5. Active surveillance
  6. Passive surveillance (on its run criterion)
  7. Repopulation by rescaling (on its run criterion, if configured)
  8. Recorders consume the day's batch and farm state
  9. Termination check

The clock starts at start_time and is advanced before the first day is
simulated, so with start_time = 0 the first simulated tick is 1.

Stop reasons:
  'max_timesteps'         elapsed days reached max_timesteps
  'no_active_infections'  no farm has I > 0 and min_timesteps have elapsed
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from farm_epi.between_herd import (
    BatchCounter,
    between_herd_step,
    exogenous_infection_step,
)
from farm_epi.config import SimulationConfig, default_config, validate_config
from farm_epi.population import FarmPopulation, population_from_config
from farm_epi.recorder import Recorder
from farm_epi.repopulation import rescale_to_herd_size
from farm_epi.rng import create_scenario_rng
from farm_epi.scenario_time import ScenarioTime, run_criterion
from farm_epi.surveillance import (
    ActiveSurveillance,
    Detection,
    PassiveSurveillance,
    PrevalenceEstimate,
)
from farm_epi.types import InfectionEventBatch
from farm_epi.within_herd import (
    seed_infected_everywhere,
    seed_infection_random,
    within_herd_step,
)

logger = logging.getLogger(__name__)

STOP_MAX_TIMESTEPS = "max_timesteps"
STOP_NO_ACTIVE_INFECTIONS = "no_active_infections"


# ═══════════════════════════════════════════════════════════════════════
# RESULT CONTAINERS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class DayReport:
    """What happened on one simulated day."""
    scenario_tick: int
    within_herd_infections: int = 0
    exogenous_infections: int = 0
    batch: Optional[InfectionEventBatch] = None
    detections: List[Detection] = field(default_factory=list)
    prevalence: Optional[PrevalenceEstimate] = None
    repopulated_farms: int = 0

    @property
    def between_herd_infections(self) -> int:
        return 0 if self.batch is None else self.batch.total_new_infections


@dataclass
class ScenarioResult:
    """Results from one scenario run."""
    n_days: int = 0
    seed: int = 0
    stop_reason: Optional[str] = None

    # Daily timeseries (length = n_days)
    ticks: Optional[np.ndarray] = None
    daily_susceptible: Optional[np.ndarray] = None
    daily_infected: Optional[np.ndarray] = None
    daily_recovered: Optional[np.ndarray] = None
    daily_infected_farms: Optional[np.ndarray] = None
    daily_between_herd_infections: Optional[np.ndarray] = None
    daily_detections: Optional[np.ndarray] = None

    # Event summary
    seeded_farm_id: Optional[int] = None
    n_batches: int = 0
    last_batch_id: int = 0
    total_between_herd_infections: int = 0
    detections: List[Detection] = field(default_factory=list)
    prevalence: List[PrevalenceEstimate] = field(default_factory=list)
    batches: List[InfectionEventBatch] = field(default_factory=list)

    # Summary
    peak_infected: int = 0
    peak_infected_day: int = 0
    final_infected_farms: int = 0

    def to_dataframe(self) -> pd.DataFrame:
        """Daily timeseries as a DataFrame indexed by scenario tick."""
        return pd.DataFrame(
            {
                'susceptible': self.daily_susceptible,
                'infected': self.daily_infected,
                'recovered': self.daily_recovered,
                'infected_farms': self.daily_infected_farms,
                'between_herd_infections': self.daily_between_herd_infections,
                'detections': self.daily_detections,
            },
            index=pd.Index(self.ticks, name='scenario_tick'),
        )

    def prevalence_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame(
            [(p.scenario_tick, p.true_prevalence, p.observed_prevalence)
             for p in self.prevalence],
            columns=['scenario_tick', 'true_prevalence', 'observed_prevalence'],
        )


# ═══════════════════════════════════════════════════════════════════════
# SCENARIO
# ═══════════════════════════════════════════════════════════════════════

class Scenario:
    """One stochastic run over a farm population.

    Args:
        config: Validated SimulationConfig.
        population: Farm population; mutated in place by the run.
        recorders: Consumers of daily farm state and infection batches.
        keep_batches: Keep every InfectionEventBatch on the result.
    """

    def __init__(
        self,
        config: SimulationConfig,
        population: FarmPopulation,
        recorders: Sequence[Recorder] = (),
        keep_batches: bool = False,
    ):
        validate_config(config)
        self.config = config
        self.population = population
        self.recorders = list(recorders)
        self.keep_batches = keep_batches

        sc = config.scenario
        self.seed = sc.seed
        self.rng = create_scenario_rng(sc.seed)
        self.time = ScenarioTime(sc.start_time, sc.start_time + sc.max_timesteps)
        self.batch_counter = BatchCounter()

        sv = config.surveillance
        self.active = (
            ActiveSurveillance(sv.detection_rate, sv.remaining_proportion, sv.culled_animals)
            if sv.active_enabled else None
        )
        self.passive = PassiveSurveillance(sv.detection_rate) if sv.passive_enabled else None
        self.passive_criterion = run_criterion(sv.passive_interval)

        interval = config.population.repopulation_interval
        self.repopulation_criterion = run_criterion(interval) if interval else None

        if config.spread.enabled:
            isolated = np.flatnonzero(np.diff(population.adjacency.indptr) == 0)
            if isolated.size:
                logger.warning(
                    "%d farm(s) have no adjacent farms (first: %d); the run "
                    "halts if one of them sends animals",
                    isolated.size, population.id_map.farm_id(int(isolated[0])),
                )

        self.seeded_farm_id: Optional[int] = None
        self._reports: List[DayReport] = []
        self._daily_totals: List[np.ndarray] = []
        self._daily_infected_farms: List[int] = []

    # ── Setup ────────────────────────────────────────────────────────

    def seed_infection(self) -> Optional[int]:
        """Introduce the initial infection(s) according to scenario.seed_mode.

        Returns:
            Seeded FarmId in 'random' mode, None in 'everywhere' mode.
        """
        farms = self.population.farms
        if self.config.scenario.seed_mode == "everywhere":
            seed_infected_everywhere(farms)
            logger.info("Seeded one infection on each of %d farms", len(farms))
        else:
            self.seeded_farm_id = seed_infection_random(farms, self.rng)
            logger.info("Seeded one infection on farm %d", self.seeded_farm_id)
        return self.seeded_farm_id

    # ── Daily loop ───────────────────────────────────────────────────

    def step(self) -> DayReport:
        """Simulate one day and hand its output to the recorders."""
        cfg = self.config
        farms = self.population.farms

        self.time.advance(1)
        tick = self.time.current_time()
        report = DayReport(scenario_tick=tick)

        new_inf = within_herd_step(
            farms, self.rng, rng_mode=cfg.scenario.rng_mode, seed=self.seed, day=tick,
        )
        report.within_herd_infections = int(new_inf.sum())

        if cfg.disease.exogenous_infection_rate > 0.0:
            report.exogenous_infections = exogenous_infection_step(
                farms, cfg.disease.exogenous_infection_rate,
            )

        if cfg.spread.enabled:
            report.batch = between_herd_step(
                self.population, self.rng, tick, self.batch_counter,
            )

        if self.active is not None:
            report.detections = self.active.step(farms, self.rng, scenario_tick=tick)

        if self.passive is not None and self.passive_criterion(self.time):
            report.prevalence = self.passive.step(self.population, self.time, self.rng)

        if self.repopulation_criterion is not None and self.repopulation_criterion(self.time):
            report.repopulated_farms = rescale_to_herd_size(farms)

        for recorder in self.recorders:
            if report.batch is not None:
                recorder.record_infection_events(report.batch)
            if recorder.run_criterion(self.time):
                recorder.record_farms(self.time, self.population)

        self._reports.append(report)
        self._daily_totals.append(self.population.compartment_totals())
        self._daily_infected_farms.append(self.population.n_infected_farms())
        return report

    def should_stop(self) -> Optional[str]:
        """Stop reason after the current day, or None to keep going."""
        elapsed = self.time.elapsed_duration()
        if elapsed >= self.config.scenario.max_timesteps:
            return STOP_MAX_TIMESTEPS
        if elapsed >= self.config.scenario.min_timesteps and not self.population.any_infected():
            return STOP_NO_ACTIVE_INFECTIONS
        return None

    def run(self) -> ScenarioResult:
        """Seed, then step until a stop condition holds.

        Recorders are closed when the run ends, including on failure.
        """
        logger.info("Starting scenario: %d farms, seed %d, up to %d days",
                    self.population.n_farms, self.seed,
                    self.config.scenario.max_timesteps)
        try:
            self.seed_infection()
            while True:
                self.step()
                stop_reason = self.should_stop()
                if stop_reason is not None:
                    break
        finally:
            for recorder in self.recorders:
                recorder.close()

        result = self.result(stop_reason)
        logger.info("Scenario stopped after %d days (%s): %d batches, "
                    "peak %d infected animals on day %d",
                    result.n_days, stop_reason, result.n_batches,
                    result.peak_infected, result.peak_infected_day)
        return result

    # ── Results ──────────────────────────────────────────────────────

    def result(self, stop_reason: Optional[str] = None) -> ScenarioResult:
        """Collect the days simulated so far into a ScenarioResult."""
        n_days = len(self._reports)
        totals = np.array(self._daily_totals, dtype=np.int64).reshape(n_days, 3)
        batches = [r.batch for r in self._reports if r.batch is not None]

        result = ScenarioResult(
            n_days=n_days,
            seed=self.seed,
            stop_reason=stop_reason,
            ticks=np.array([r.scenario_tick for r in self._reports], dtype=np.int64),
            daily_susceptible=totals[:, 0],
            daily_infected=totals[:, 1],
            daily_recovered=totals[:, 2],
            daily_infected_farms=np.array(self._daily_infected_farms, dtype=np.int64),
            daily_between_herd_infections=np.array(
                [r.between_herd_infections for r in self._reports], dtype=np.int64),
            daily_detections=np.array(
                [len(r.detections) for r in self._reports], dtype=np.int64),
            seeded_farm_id=self.seeded_farm_id,
            n_batches=len(batches),
            last_batch_id=self.batch_counter.value,
            total_between_herd_infections=sum(b.total_new_infections for b in batches),
            detections=[d for r in self._reports for d in r.detections],
            prevalence=[r.prevalence for r in self._reports if r.prevalence is not None],
            batches=batches if self.keep_batches else [],
            final_infected_farms=self.population.n_infected_farms(),
        )
        if n_days:
            peak = int(np.argmax(result.daily_infected))
            result.peak_infected = int(result.daily_infected[peak])
            result.peak_infected_day = int(result.ticks[peak])
        return result


def run_scenario(
    config: Optional[SimulationConfig] = None,
    population: Optional[FarmPopulation] = None,
    recorders: Sequence[Recorder] = (),
    keep_batches: bool = False,
) -> ScenarioResult:
    """Build and run a scenario in one call.

    Args:
        config: SimulationConfig; uses default if None.
        population: Farm population; built from config if None.
        recorders: Recorders to attach.
        keep_batches: Keep every InfectionEventBatch on the result.

    Returns:
        ScenarioResult.
    """
    if config is None:
        config = default_config()
    if population is None:
        population = population_from_config(config)
    return Scenario(config, population, recorders, keep_batches=keep_batches).run()

"""Surveillance regulators: active detection/culling and passive prevalence.

Active surveillance runs every day. A farm with I infected animals is
detected when Poisson(I · detection_rate) > 0. A detected farm is either
cleared (I = 0) or culled down to round_stoch(I · remaining_proportion),
each with probability 1/2. Removed animals vanish from the farm by default
(culled_animals='vanish'); with culled_animals='recovered' they are
credited to R so that S + I + R stays equal to the herd size.

Passive surveillance runs on a periodic run criterion and only estimates:

  true prevalence     = infected farms / total farms
  observed prevalence = infected farms that pass a detection draw / total

A farm is observed with probability 1 − exp(−I · detection_rate), so the
observed count is a subsample of the infected count and never exceeds it.

Random draws (shared generator, store order):
  active:   per infected farm, one Poisson; on detection one uniform
            (coin), and on a partial cull one more uniform (rounding)
  passive:  one uniform per infected farm
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np

from farm_epi.errors import ConfigurationError
from farm_epi.parameters import Rate, round_stoch
from farm_epi.population import FarmPopulation
from farm_epi.scenario_time import ScenarioTime

logger = logging.getLogger(__name__)

CULLED_ANIMALS = ("vanish", "recovered")


# ═══════════════════════════════════════════════════════════════════════
# ACTIVE SURVEILLANCE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Detection:
    """One farm detected by active surveillance on one day."""
    scenario_tick: int
    farm_id: int
    infected_before: int
    infected_after: int

    @property
    def eliminated(self) -> bool:
        return self.infected_after == 0

    @property
    def removed(self) -> int:
        return self.infected_before - self.infected_after


class ActiveSurveillance:
    """Daily detection and culling on infected farms."""

    def __init__(
        self,
        detection_rate: float,
        remaining_proportion: float = 0.1,
        culled_animals: str = "vanish",
    ):
        self.detection_rate = Rate(float(detection_rate))
        if not 0.0 <= remaining_proportion <= 1.0:
            raise ConfigurationError(
                f"remaining_proportion must lie in [0, 1], got {remaining_proportion}"
            )
        if culled_animals not in CULLED_ANIMALS:
            raise ConfigurationError(
                f"culled_animals must be one of {CULLED_ANIMALS}, got {culled_animals!r}"
            )
        self.remaining_proportion = float(remaining_proportion)
        self.culled_animals = culled_animals

    def step(
        self,
        farms: np.ndarray,
        rng: np.random.Generator,
        scenario_tick: int = 0,
    ) -> List[Detection]:
        """Run one day of active surveillance (in place).

        Farms with I = 0 are skipped without drawing.

        Returns:
            Detections in store order.
        """
        detections: List[Detection] = []
        rate = float(self.detection_rate)

        for h in np.flatnonzero(farms['infected'] > 0):
            infected = int(farms['infected'][h])
            if rng.poisson(infected * rate) == 0:
                continue

            if rng.random() < 0.5:
                remaining = 0
            else:
                remaining = round_stoch(infected * self.remaining_proportion, rng)

            farms['infected'][h] = remaining
            if self.culled_animals == "recovered":
                farms['recovered'][h] += infected - remaining
            detections.append(Detection(
                scenario_tick=scenario_tick,
                farm_id=int(farms['farm_id'][h]),
                infected_before=infected,
                infected_after=remaining,
            ))
        return detections


# ═══════════════════════════════════════════════════════════════════════
# PASSIVE SURVEILLANCE
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class PrevalenceEstimate:
    """Farm-level prevalence on one day."""
    scenario_tick: int
    total_farms: int
    infected_farms: int
    observed_farms: int

    @property
    def true_prevalence(self) -> float:
        if self.total_farms == 0:
            return 0.0
        return self.infected_farms / self.total_farms

    @property
    def observed_prevalence(self) -> float:
        if self.total_farms == 0:
            return 0.0
        return self.observed_farms / self.total_farms


class PassiveSurveillance:
    """Periodic prevalence estimate from a detection-weighted sample."""

    def __init__(self, detection_rate: float):
        self.detection_rate = Rate(float(detection_rate))
        self._total_farms: Optional[int] = None

    def total_farms(self, population: FarmPopulation) -> int:
        """Number of farms, counted on first use and cached."""
        if self._total_farms is None:
            self._total_farms = population.total_farms
        return self._total_farms

    def step(
        self,
        population: FarmPopulation,
        scenario_time: ScenarioTime,
        rng: np.random.Generator,
    ) -> PrevalenceEstimate:
        farms = population.farms
        infected = farms['infected'][farms['infected'] > 0].astype(np.float64)
        p_observe = -np.expm1(-infected * float(self.detection_rate))
        observed = rng.random(infected.size) < p_observe

        estimate = PrevalenceEstimate(
            scenario_tick=scenario_time.current_time(),
            total_farms=self.total_farms(population),
            infected_farms=int(infected.size),
            observed_farms=int(np.count_nonzero(observed)),
        )
        logger.info("%5d => True prevalence: %.4f\tObserved prevalence: %.4f",
                    estimate.scenario_tick, estimate.true_prevalence,
                    estimate.observed_prevalence)
        return estimate

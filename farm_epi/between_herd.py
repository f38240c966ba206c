"""Between-herd spread via animal movements.

Runs once per day in two phases:

  1. Selection (read-only): every farm with I > 0 sends a batch of animals
     with probability contact_rate. The sending farms are snapshotted by
     value (farm_id, herd_size, infected) before anything is mutated.
  2. Target + outcome (sequential): each origin picks one adjacent farm
     uniformly, transmits with probability infected / herd_size taken from
     its snapshot, and on success moves one live susceptible on the target
     to infected.

Origins are iterated in store order. Several origins may hit the same
target on one day; each success sees the target's live counts, so a
target with no susceptibles left absorbs the contact as a no-op.

Random draws from the shared generator, in order:
  selection:  one uniform per infected farm (store order)
  outcome:    per origin, one integer (target) then one uniform (transmit)
"""

from __future__ import annotations

import logging
from typing import List, Optional

import numpy as np

from farm_epi.errors import InvariantViolation, TopologyError
from farm_epi.population import FarmPopulation
from farm_epi.types import InfectionEvent, InfectionEventBatch

logger = logging.getLogger(__name__)

# Snapshot of a sending farm, taken before any target is mutated
ORIGIN_DTYPE = np.dtype([
    ('handle',    np.int64),
    ('farm_id',   np.int64),
    ('herd_size', np.int64),
    ('infected',  np.int64),
])


class BatchCounter:
    """Monotone batch id shared by all days of a scenario.

    The first emitted batch has id 1.
    """

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError(f"batch counter cannot start below 0, got {start}")
        self._value = int(start)

    @property
    def value(self) -> int:
        """Id of the most recently emitted batch (0 if none yet)."""
        return self._value

    def next(self) -> int:
        self._value += 1
        return self._value


# ═══════════════════════════════════════════════════════════════════════
# PHASE 1: SELECTION
# ═══════════════════════════════════════════════════════════════════════

def select_origins(farms: np.ndarray, rng: np.random.Generator) -> np.ndarray:
    """Candidate origins for today's movements, copied by value.

    Args:
        farms: Farm store (read only).
        rng: Shared scenario generator.

    Returns:
        ORIGIN_DTYPE array in store order.

    Raises:
        InvariantViolation: An origin has more infected than its herd size.
    """
    infected_handles = np.flatnonzero(farms['infected'] > 0)
    u = rng.random(infected_handles.size)
    chosen = infected_handles[u < farms['contact_rate'][infected_handles]]

    origins = np.empty(chosen.size, dtype=ORIGIN_DTYPE)
    origins['handle'] = chosen
    origins['farm_id'] = farms['farm_id'][chosen]
    origins['herd_size'] = farms['herd_size'][chosen]
    origins['infected'] = farms['infected'][chosen]

    over = np.flatnonzero(origins['infected'] > origins['herd_size'])
    if over.size:
        o = origins[over[0]]
        raise InvariantViolation(
            f"farm {o['farm_id']} has {o['infected']} infected but a herd "
            f"size of {o['herd_size']}"
        )
    return origins


# ═══════════════════════════════════════════════════════════════════════
# PHASE 2: TARGET + OUTCOME
# ═══════════════════════════════════════════════════════════════════════

def infection_pressure(infected: int, herd_size: int) -> float:
    """Probability that one contact from this farm transmits."""
    return infected / herd_size


def transmit(
    population: FarmPopulation,
    origins: np.ndarray,
    rng: np.random.Generator,
) -> List[InfectionEvent]:
    """Apply the day's contacts to live targets, in origin order.

    Raises:
        TopologyError: An origin has no adjacent farms, or a target handle
            lies outside the farm store.
    """
    farms = population.farms
    n = len(farms)
    events: List[InfectionEvent] = []

    for origin in origins:
        adjacent = population.adjacent_handles(int(origin['handle']))
        if adjacent.size == 0:
            raise TopologyError(
                f"farm {origin['farm_id']} sends animals but has no adjacent farms"
            )
        target = int(adjacent[rng.integers(adjacent.size)])
        pressure = infection_pressure(int(origin['infected']), int(origin['herd_size']))
        if not rng.random() < pressure:
            continue

        if not 0 <= target < n:
            raise TopologyError(
                f"target handle {target} of farm {origin['farm_id']} is "
                f"outside the farm store (size {n})"
            )
        if farms['susceptible'][target] >= 1:
            farms['susceptible'][target] -= 1
            farms['infected'][target] += 1
            events.append(InfectionEvent(
                origin_farm_id=int(origin['farm_id']),
                target_farm_id=int(farms['farm_id'][target]),
                new_infections=1,
            ))
    return events


def between_herd_step(
    population: FarmPopulation,
    rng: np.random.Generator,
    scenario_tick: int,
    counter: BatchCounter,
) -> Optional[InfectionEventBatch]:
    """One day of between-herd spread.

    Args:
        population: Farm population; target compartments are mutated.
        rng: Shared scenario generator.
        scenario_tick: Current tick, stamped on the batch.
        counter: Shared batch id counter, advanced only on emission.

    Returns:
        The day's InfectionEventBatch, or None if nothing transmitted.
    """
    origins = select_origins(population.farms, rng)
    events = transmit(population, origins, rng)
    logger.debug("%5d => %d between-herd infections from %d contacts",
                 scenario_tick, len(events), len(origins))
    if not events:
        return None
    return InfectionEventBatch(
        scenario_tick=scenario_tick,
        batch_id=counter.next(),
        events=events,
    )


# ═══════════════════════════════════════════════════════════════════════
# EXOGENOUS PRESSURE
# ═══════════════════════════════════════════════════════════════════════

def exogenous_infection_step(farms: np.ndarray, rate: float) -> int:
    """Infections from outside the network, deterministic.

    Each farm gets round(S × rate) new infections, applied only while that
    leaves at least one susceptible (S > delta). No random numbers are drawn.

    Returns:
        Total new infections across all farms.
    """
    if rate <= 0.0 or len(farms) == 0:
        return 0
    S = farms['susceptible']
    delta = np.floor(S * rate + 0.5).astype(np.int64)
    delta[S <= delta] = 0
    farms['susceptible'] = S - delta
    farms['infected'] = farms['infected'] + delta
    return int(delta.sum())

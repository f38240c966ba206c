"""Within-herd SIR engine.

Advances every farm's (S, I, R) by one day:

  E[new infections]  = β · S · I / N      (density-dependent, per herd size)
  E[new recoveries]  = γ · I

Both expectations are turned into integer counts by stochastic rounding,
one uniform per quantity, infections first. The update is applied with
saturating arithmetic:

  S ← S − new_inf
  I ← max(I − new_rec, 0) + new_inf
  R ← R + new_rec

Farms never read or write each other's state here, so the step is
vectorized over the whole farm store. In the 'partitioned' RNG mode each
farm draws from its own (seed, farm_id, day) stream, which makes the result
independent of farm order and of how farms are chunked.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from farm_epi.errors import EmptyPopulationError, InvariantViolation
from farm_epi.parameters import round_stoch_array
from farm_epi.rng import farm_day_rng

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════
# DAILY UPDATE
# ═══════════════════════════════════════════════════════════════════════

def expected_transitions(farms: np.ndarray):
    """Expected (new_infections, new_recoveries) per farm as float arrays.

    Farms with herd size 0 have no expected infections.
    """
    S = farms['susceptible'].astype(np.float64)
    I = farms['infected'].astype(np.float64)
    N = farms['herd_size'].astype(np.float64)
    with np.errstate(divide='ignore', invalid='ignore'):
        exp_inf = np.where(N > 0, farms['infection_rate'] * S * I / N, 0.0)
    exp_rec = farms['recovery_rate'] * I
    return exp_inf, exp_rec


def _partitioned_uniforms(farms: np.ndarray, seed: int, day: int) -> np.ndarray:
    """(n_farms, 2) uniforms, one independent stream per (farm, day)."""
    u = np.empty((len(farms), 2), dtype=np.float64)
    for k, fid in enumerate(farms['farm_id']):
        u[k] = farm_day_rng(seed, int(fid), day).random(2)
    return u


def within_herd_step(
    farms: np.ndarray,
    rng: Optional[np.random.Generator] = None,
    rng_mode: str = "shared",
    seed: Optional[int] = None,
    day: Optional[int] = None,
) -> np.ndarray:
    """Advance every farm's compartments by one day (in place).

    Args:
        farms: Farm store (FARM_DTYPE), modified in place.
        rng: Shared scenario generator ('shared' mode).
        rng_mode: 'shared' or 'partitioned'.
        seed: Master seed ('partitioned' mode).
        day: Current scenario tick ('partitioned' mode).

    Returns:
        Array of new infections per farm (int64).

    Raises:
        InvariantViolation: If a farm would infect more animals than it has
            susceptibles. Recoveries beyond the infected count saturate.
    """
    n = len(farms)
    if n == 0:
        return np.zeros(0, dtype=np.int64)

    if rng_mode == "shared":
        if rng is None:
            raise ValueError("rng_mode='shared' needs the scenario generator")
        # Row-major (n, 2): farm by farm, infections then recoveries
        u = rng.random((n, 2))
    elif rng_mode == "partitioned":
        if seed is None or day is None:
            raise ValueError("rng_mode='partitioned' needs seed and day")
        u = _partitioned_uniforms(farms, seed, day)
    else:
        raise ValueError(f"Unknown rng_mode '{rng_mode}'")

    exp_inf, exp_rec = expected_transitions(farms)
    new_inf = round_stoch_array(exp_inf, u[:, 0])
    new_rec = round_stoch_array(exp_rec, u[:, 1])

    S = farms['susceptible']
    I = farms['infected']
    bad = np.flatnonzero(new_inf > S)
    if bad.size:
        k = int(bad[0])
        raise InvariantViolation(
            f"farm {farms['farm_id'][k]}: {new_inf[k]} new infections exceed "
            f"{S[k]} susceptibles (infection_rate too high for this herd?)"
        )

    # Recoveries saturate at the infected count
    new_rec = np.minimum(new_rec, I)

    farms['susceptible'] = S - new_inf
    farms['infected'] = np.maximum(I - new_rec, 0) + new_inf
    farms['recovered'] = farms['recovered'] + new_rec
    return new_inf


# ═══════════════════════════════════════════════════════════════════════
# SEEDING
# ═══════════════════════════════════════════════════════════════════════

def _infect_one(farms: np.ndarray, handle: int) -> None:
    if farms['susceptible'][handle] < 1:
        raise EmptyPopulationError(
            f"cannot seed farm {farms['farm_id'][handle]}: no susceptible animals"
        )
    farms['susceptible'][handle] -= 1
    farms['infected'][handle] += 1


def seed_infection_random(farms: np.ndarray, rng: np.random.Generator) -> int:
    """Move one susceptible to infected on a uniformly chosen farm.

    Returns:
        FarmId of the seeded farm.

    Raises:
        EmptyPopulationError: No farms, or the chosen farm has no susceptibles.
    """
    if len(farms) == 0:
        raise EmptyPopulationError("cannot seed an infection: population is empty")
    handle = int(rng.integers(len(farms)))
    _infect_one(farms, handle)
    logger.debug("Seeded one infection on farm %d", farms['farm_id'][handle])
    return int(farms['farm_id'][handle])


def seed_infected_everywhere(farms: np.ndarray) -> None:
    """Move one susceptible to infected on every farm.

    Raises:
        EmptyPopulationError: No farms, or any farm has no susceptibles.
    """
    if len(farms) == 0:
        raise EmptyPopulationError("cannot seed an infection: population is empty")
    empty = np.flatnonzero(farms['susceptible'] < 1)
    if empty.size:
        raise EmptyPopulationError(
            f"cannot seed every farm: farm {farms['farm_id'][empty[0]]} "
            f"has no susceptible animals"
        )
    farms['susceptible'] -= 1
    farms['infected'] += 1

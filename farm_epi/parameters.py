"""Rate and probability parameters, and stochastic rounding.

Parameters used by the disease, spread and surveillance modules are typed
either as a Rate (instantaneous hazard, ≥ 0) or a Probability (∈ [0, 1]).
Conversions follow the exponential-process identities:

  p = 1 − exp(−λ)        λ = −ln(1 − p)

Compounding independent probabilities is done via the Poisson-binomial
"at least one success": 1 − Π(1 − pᵢ). Compounding rates sums the rates
first and converts once, which avoids repeated subtraction error.

Stochastic rounding turns an expected (real) count into an integer whose
expectation equals the input: round up with probability equal to the
fractional part, otherwise round down.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

import numpy as np

from farm_epi.errors import ConversionError


# ═══════════════════════════════════════════════════════════════════════
# RATE / PROBABILITY
# ═══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class Rate:
    """Non-negative instantaneous hazard rate (per day)."""
    value: float

    def __post_init__(self):
        if not self.value >= 0.0:  # also rejects NaN
            raise ConversionError(
                f"negative float is not a valid rate, got {self.value}"
            )

    def __float__(self) -> float:
        return float(self.value)

    def __add__(self, other: 'Rate') -> 'Rate':
        return Rate(self.value + other.value)

    def to_probability(self) -> 'Probability':
        """p = 1 − exp(−λ)."""
        return Probability(-math.expm1(-self.value))

    @classmethod
    def from_probability(cls, probability: 'Probability') -> 'Rate':
        """λ = −ln(1 − p). A certain event (p = 1) has an infinite rate."""
        if probability.value == 1.0:
            return cls(math.inf)
        return cls(-math.log1p(-probability.value))

    @classmethod
    def compound(cls, rates: Iterable['Rate']) -> 'Probability':
        """Probability of at least one event among independent rates."""
        return cls(sum(r.value for r in rates)).to_probability()


@dataclass(frozen=True)
class Probability:
    """Probability in the closed interval [0, 1]."""
    value: float

    def __post_init__(self):
        if not 0.0 <= self.value <= 1.0:
            raise ConversionError(
                f"float is not between 0 and 1, thus not a valid "
                f"probability, got {self.value}"
            )

    def __float__(self) -> float:
        return float(self.value)

    def to_rate(self) -> Rate:
        return Rate.from_probability(self)

    @classmethod
    def from_rate(cls, rate: Rate) -> 'Probability':
        return rate.to_probability()

    @classmethod
    def compound(cls, probabilities: Iterable['Probability']) -> 'Probability':
        """1 − Π(1 − pᵢ) (Poisson-binomial: at least one success)."""
        complement = 1.0
        for p in probabilities:
            complement *= 1.0 - p.value
        return cls(1.0 - complement)


# ═══════════════════════════════════════════════════════════════════════
# VECTORIZED CONVERSIONS
# ═══════════════════════════════════════════════════════════════════════

def rate_to_probability(rates: np.ndarray) -> np.ndarray:
    """Elementwise p = 1 − exp(−λ). Input must be non-negative."""
    rates = np.asarray(rates, dtype=np.float64)
    if np.any(rates < 0.0):
        raise ConversionError("negative float is not a valid rate")
    return -np.expm1(-rates)


def probability_to_rate(probabilities: np.ndarray) -> np.ndarray:
    """Elementwise λ = −ln(1 − p). Input must lie in [0, 1]."""
    probabilities = np.asarray(probabilities, dtype=np.float64)
    if np.any((probabilities < 0.0) | (probabilities > 1.0)):
        raise ConversionError(
            "float is not between 0 and 1, thus not a valid probability"
        )
    return -np.log1p(-probabilities)


# ═══════════════════════════════════════════════════════════════════════
# STOCHASTIC ROUNDING
# ═══════════════════════════════════════════════════════════════════════

def round_stoch(x: float, rng: np.random.Generator) -> int:
    """Round x to a neighbouring integer, up with probability fract(x).

    Always consumes exactly one uniform draw, including for integral x,
    so the draw sequence does not depend on the value being rounded.
    """
    floor = math.floor(x)
    u = rng.random()
    return int(floor) + (1 if u < x - floor else 0)


def round_stoch_array(x: np.ndarray, u: np.ndarray) -> np.ndarray:
    """Vectorized stochastic rounding with pre-drawn uniforms.

    Args:
        x: Non-negative expected counts.
        u: Uniform [0, 1) draws, same shape as x.

    Returns:
        int64 array with E[result] = x.
    """
    x = np.asarray(x, dtype=np.float64)
    floor = np.floor(x)
    return (floor + (u < (x - floor))).astype(np.int64)

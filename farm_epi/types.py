"""Core data types for farm_epi.

This module is the SINGLE SOURCE OF TRUTH for:
  - FARM_DTYPE: NumPy structured array dtype for the farm store
  - Species and Compartment enumerations
  - Inter-module data transfer objects (FarmRecord, InfectionEvent,
    InfectionEventBatch)

Farms are held in one structured array, one row per farm. A farm's row
index is its *handle*; the externally meaningful FarmId lives in the
'farm_id' field and is mapped to handles by population.FarmIdMap.
"""

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Iterator, List, Optional, Tuple

import numpy as np


# ═══════════════════════════════════════════════════════════════════════
# ENUMERATIONS
# ═══════════════════════════════════════════════════════════════════════

class Species(IntEnum):
    """Livestock species carried as a tag on each farm."""
    CATTLE = 0
    PIG    = 1
    SHEEP  = 2

    @classmethod
    def from_name(cls, name: str) -> 'Species':
        try:
            return cls[name.strip().upper()]
        except KeyError:
            raise ValueError(
                f"Unknown species '{name}'. "
                f"Available: {[s.name.lower() for s in cls]}"
            ) from None


class Compartment(IntEnum):
    """Within-herd SIR compartments."""
    S = 0   # Susceptible
    I = 1   # Infected (and infectious)
    R = 2   # Recovered (immune)


# ═══════════════════════════════════════════════════════════════════════
# FARM_DTYPE — Canonical structured array for the farm store
# ═══════════════════════════════════════════════════════════════════════

FARM_DTYPE = np.dtype([
    # --- Identity (loader writes, read-only afterwards) ---
    ('farm_id',        np.int64),     # external FarmId
    ('species',        np.int8),      # Species enum
    ('herd_size',      np.int64),     # fixed herd capacity

    # --- Compartments (engines and regulators write) ---
    ('susceptible',    np.int64),
    ('infected',       np.int64),
    ('recovered',      np.int64),

    # --- Per-farm parameters (initialised from config or record) ---
    ('contact_rate',   np.float64),   # daily probability of sending a batch
    ('infection_rate', np.float64),   # within-herd transmission rate (d⁻¹)
    ('recovery_rate',  np.float64),   # within-herd recovery rate (d⁻¹)
])


def allocate_farms(n: int) -> np.ndarray:
    """Allocate a zeroed farm store of n rows."""
    return np.zeros(n, dtype=FARM_DTYPE)


# ═══════════════════════════════════════════════════════════════════════
# INTER-MODULE DATA TRANSFER OBJECTS
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class FarmRecord:
    """One farm as produced by a population loader.

    Optional rates override the scenario-wide configuration for this farm.
    """
    farm_id: int
    herd_size: int
    adjacent_farms: List[int] = field(default_factory=list)
    species: Species = Species.CATTLE
    contact_rate: Optional[float] = None
    infection_rate: Optional[float] = None
    recovery_rate: Optional[float] = None


@dataclass(frozen=True)
class InfectionEvent:
    """A successful between-herd transmission."""
    origin_farm_id: int
    target_farm_id: int
    new_infections: int = 1


@dataclass
class InfectionEventBatch:
    """All between-herd transmissions of one day.

    Produced by between_herd.between_herd_step only on days with at least
    one successful transmission; consumed by recorders.
    """
    scenario_tick: int
    batch_id: int
    events: List[InfectionEvent] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.events)

    @property
    def total_new_infections(self) -> int:
        return sum(e.new_infections for e in self.events)

    def rows(self) -> Iterator[Tuple[int, int, int, int, int]]:
        """(scenario_tick, batch_id, origin, target, new_infections) rows."""
        for e in self.events:
            yield (self.scenario_tick, self.batch_id,
                   e.origin_farm_id, e.target_farm_id, e.new_infections)

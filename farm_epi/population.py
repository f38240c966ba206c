"""Population topology: farm store, adjacency network and FarmId map.

Defines the farm population that every engine operates on:
  - FarmIdMap: bidirectional FarmId ↔ handle (row index) association,
    written once at seeding time and read-only afterwards
  - FarmPopulation: structured farm store (FARM_DTYPE) + directed
    adjacency in CSR form (scipy.sparse), rows in loader order
  - build_population: validate loader records and assemble the population
  - Loaders: YAML, JSON and CSV population files, and a ring generator

Adjacency is stored as a CSR matrix whose column indices are *handles*.
Row order within the matrix preserves the order of each farm's
AdjacentFarms list; target selection relies on that order.

Topology problems (duplicate ids, unknown or self-referencing adjacency
entries) raise TopologyError at build time: they mean the loader broke
its contract.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import cached_property
from pathlib import Path
from typing import Dict, Iterable, List, Sequence, Union

import numpy as np
import pandas as pd
import yaml
from scipy import sparse

from farm_epi.config import SimulationConfig, validate_farm_rates
from farm_epi.errors import ConfigurationError, InvariantViolation, TopologyError
from farm_epi.types import (
    Compartment,
    FarmRecord,
    Species,
    allocate_farms,
)


# ═══════════════════════════════════════════════════════════════════════
# FARM ID MAP
# ═══════════════════════════════════════════════════════════════════════

class FarmIdMap:
    """Bidirectional FarmId ↔ handle map.

    Handles are row indices into the farm store, assigned in loader order.
    """

    def __init__(self, farm_ids: Sequence[int]):
        ids = np.asarray(farm_ids, dtype=np.int64)
        handles: Dict[int, int] = {}
        for handle, fid in enumerate(ids.tolist()):
            if fid in handles:
                raise TopologyError(f"duplicate farm id {fid} in population")
            handles[fid] = handle
        self._handles = handles
        self._ids = ids
        self._ids.setflags(write=False)

    def __len__(self) -> int:
        return len(self._ids)

    def __contains__(self, farm_id: int) -> bool:
        return int(farm_id) in self._handles

    def handle(self, farm_id: int) -> int:
        """Handle for a FarmId. Raises TopologyError on a miss."""
        try:
            return self._handles[int(farm_id)]
        except KeyError:
            raise TopologyError(
                f"farm id {farm_id} has no handle in the population"
            ) from None

    def farm_id(self, handle: int) -> int:
        """FarmId for a handle. Raises TopologyError on a miss."""
        if not 0 <= handle < len(self._ids):
            raise TopologyError(
                f"handle {handle} is outside the farm store (size {len(self._ids)})"
            )
        return int(self._ids[handle])

    @property
    def farm_ids(self) -> np.ndarray:
        """Read-only array of FarmIds indexed by handle."""
        return self._ids


# ═══════════════════════════════════════════════════════════════════════
# FARM POPULATION
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class FarmPopulation:
    """Farm store + directed adjacency + id map.

    The store is the only mutable part during a run, and only its
    compartment columns change.
    """
    farms: np.ndarray                 # FARM_DTYPE, one row per farm
    adjacency: sparse.csr_matrix      # (N, N) directed, columns are handles
    id_map: FarmIdMap

    @property
    def n_farms(self) -> int:
        return len(self.farms)

    @cached_property
    def total_farms(self) -> int:
        """Number of farms, counted once (no farm is created or destroyed)."""
        return int(np.count_nonzero(self.farms['herd_size'] >= 0))

    def adjacent_handles(self, handle: int) -> np.ndarray:
        """Handles of the farms reachable from `handle`, in list order."""
        start, stop = self.adjacency.indptr[handle], self.adjacency.indptr[handle + 1]
        return self.adjacency.indices[start:stop]

    def adjacent_farm_ids(self, farm_id: int) -> List[int]:
        handle = self.id_map.handle(farm_id)
        return [int(x) for x in self.id_map.farm_ids[self.adjacent_handles(handle)]]

    def farm(self, farm_id: int) -> np.void:
        """Row view of one farm by FarmId."""
        return self.farms[self.id_map.handle(farm_id)]

    def compartment_totals(self) -> np.ndarray:
        """Population-wide (S, I, R), indexed by Compartment."""
        totals = np.zeros(len(Compartment), dtype=np.int64)
        totals[Compartment.S] = self.farms['susceptible'].sum()
        totals[Compartment.I] = self.farms['infected'].sum()
        totals[Compartment.R] = self.farms['recovered'].sum()
        return totals

    def n_infected_farms(self) -> int:
        return int(np.count_nonzero(self.farms['infected'] > 0))

    def any_infected(self) -> bool:
        return bool(np.any(self.farms['infected'] > 0))

    def copy(self) -> 'FarmPopulation':
        """Independent copy of the mutable store (topology is shared)."""
        return FarmPopulation(
            farms=self.farms.copy(), adjacency=self.adjacency, id_map=self.id_map,
        )

    def summary(self) -> str:
        """Human-readable summary of the population."""
        s, i, r = self.compartment_totals()
        lines = [
            f"FarmPopulation: {self.n_farms} farms, "
            f"{self.adjacency.nnz} directed links, S={s} I={i} R={r}"
        ]
        for row in self.farms[:20]:
            lines.append(
                f"  [{row['farm_id']}] {Species(row['species']).name.lower()}: "
                f"herd={row['herd_size']} S={row['susceptible']} "
                f"I={row['infected']} R={row['recovered']}"
            )
        if self.n_farms > 20:
            lines.append(f"  ... ({self.n_farms - 20} more)")
        return "\n".join(lines)


# ═══════════════════════════════════════════════════════════════════════
# POPULATION BUILDER
# ═══════════════════════════════════════════════════════════════════════

def build_population(
    records: Iterable[FarmRecord],
    contact_rate: float = 0.001,
    infection_rate: float = 0.03,
    recovery_rate: float = 0.01,
) -> FarmPopulation:
    """Build a FarmPopulation from loader records.

    Every farm starts fully susceptible (S = herd_size, I = R = 0).
    Rates given on a record override the scenario-wide defaults.

    Args:
        records: Ordered FarmRecords; order defines handles.
        contact_rate: Default daily contact probability.
        infection_rate: Default within-herd infection rate.
        recovery_rate: Default within-herd recovery rate.

    Returns:
        Assembled FarmPopulation.

    Raises:
        TopologyError: Duplicate ids, unknown or self adjacency entries.
        InvariantViolation: Negative herd size.
        ConfigurationError: A farm's effective rate is out of range.
    """
    records = list(records)
    id_map = FarmIdMap([r.farm_id for r in records])

    farms = allocate_farms(len(records))
    indptr = np.zeros(len(records) + 1, dtype=np.int64)
    indices: List[int] = []

    for handle, rec in enumerate(records):
        if rec.herd_size < 0:
            raise InvariantViolation(
                f"farm {rec.farm_id}: herd size must be >= 0, got {rec.herd_size}"
            )
        row = farms[handle]
        row['farm_id'] = rec.farm_id
        row['species'] = int(rec.species)
        row['herd_size'] = rec.herd_size
        row['susceptible'] = rec.herd_size
        row['contact_rate'] = contact_rate if rec.contact_rate is None else rec.contact_rate
        row['infection_rate'] = infection_rate if rec.infection_rate is None else rec.infection_rate
        row['recovery_rate'] = recovery_rate if rec.recovery_rate is None else rec.recovery_rate
        validate_farm_rates(rec.farm_id, float(row['contact_rate']),
                            float(row['infection_rate']), float(row['recovery_rate']))

        for target in rec.adjacent_farms:
            if target not in id_map:
                raise TopologyError(
                    f"farm {rec.farm_id} lists adjacent farm {target}, "
                    f"which is not in the population"
                )
            if int(target) == int(rec.farm_id):
                raise TopologyError(f"farm {rec.farm_id} lists itself as adjacent")
            indices.append(id_map.handle(target))
        indptr[handle + 1] = len(indices)

    n = len(records)
    # Built from (data, indices, indptr) directly so list order is kept
    adjacency = sparse.csr_matrix(
        (np.ones(len(indices), dtype=np.int8),
         np.asarray(indices, dtype=np.int64),
         indptr),
        shape=(n, n),
    )
    return FarmPopulation(farms=farms, adjacency=adjacency, id_map=id_map)


def make_ring_records(
    herd_sizes: Sequence[int],
    species: Species = Species.CATTLE,
    first_id: int = 0,
) -> List[FarmRecord]:
    """Farms on a directed ring: farm k sends animals to farm k+1 (mod n).

    With two farms this is the symmetric pair 0 ↔ 1. A single farm has
    no adjacent farms.
    """
    n = len(herd_sizes)
    records = []
    for k, size in enumerate(herd_sizes):
        adjacent = [first_id + (k + 1) % n] if n > 1 else []
        records.append(FarmRecord(
            farm_id=first_id + k,
            herd_size=int(size),
            adjacent_farms=adjacent,
            species=species,
        ))
    return records


def make_ring_population(herd_sizes: Sequence[int], **rates) -> FarmPopulation:
    """Ring population with default or given rates (see build_population)."""
    return build_population(make_ring_records(herd_sizes), **rates)


# ═══════════════════════════════════════════════════════════════════════
# FILE I/O
# ═══════════════════════════════════════════════════════════════════════

def _record_from_dict(entry: Dict, default_species: Species) -> FarmRecord:
    species = entry.get("species")
    return FarmRecord(
        farm_id=int(entry["farm_id"]),
        herd_size=int(entry["herd_size"]),
        adjacent_farms=[int(x) for x in entry.get("adjacent_farms") or []],
        species=Species.from_name(species) if species else default_species,
        contact_rate=entry.get("contact_rate"),
        infection_rate=entry.get("infection_rate"),
        recovery_rate=entry.get("recovery_rate"),
    )


def _record_to_dict(rec: FarmRecord) -> Dict:
    entry = {
        "farm_id": int(rec.farm_id),
        "herd_size": int(rec.herd_size),
        "adjacent_farms": [int(x) for x in rec.adjacent_farms],
        "species": rec.species.name.lower(),
    }
    for key in ("contact_rate", "infection_rate", "recovery_rate"):
        value = getattr(rec, key)
        if value is not None:
            entry[key] = float(value)
    return entry


def save_population_yaml(records: Sequence[FarmRecord], path: Union[str, Path]) -> None:
    """Save farm records to a YAML file under a top-level `farms:` key."""
    data = {"farms": [_record_to_dict(r) for r in records]}
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, 'w') as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def load_population_yaml(
    path: Union[str, Path],
    default_species: Species = Species.CATTLE,
) -> List[FarmRecord]:
    """Load farm records from a YAML file (`farms:` list)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return [_record_from_dict(e, default_species) for e in data.get("farms", [])]


def load_population_json(
    path: Union[str, Path],
    default_species: Species = Species.CATTLE,
) -> List[FarmRecord]:
    """Load farm records from JSON: a list of records or {"farms": [...]}."""
    with open(path) as f:
        data = json.load(f)
    entries = data.get("farms", []) if isinstance(data, dict) else data
    return [_record_from_dict(e, default_species) for e in entries]


def load_population_csv(
    path: Union[str, Path],
    default_species: Species = Species.CATTLE,
) -> List[FarmRecord]:
    """Load farm records from CSV.

    Required columns: farm_id, herd_size. Optional: adjacent_farms
    (space-separated FarmIds), species, contact_rate, infection_rate,
    recovery_rate. Empty cells mean "not given".
    """
    df = pd.read_csv(path, dtype=str)
    missing = {"farm_id", "herd_size"} - set(df.columns)
    if missing:
        raise ConfigurationError(
            f"population CSV {path} is missing columns {sorted(missing)}"
        )

    records = []
    for row in df.to_dict(orient="records"):
        entry = {k: (None if pd.isna(v) else v.strip()) for k, v in row.items()}
        adjacent = entry.get("adjacent_farms")
        entry["adjacent_farms"] = [int(x) for x in adjacent.split()] if adjacent else []
        for key in ("contact_rate", "infection_rate", "recovery_rate"):
            if entry.get(key) is not None:
                entry[key] = float(entry[key])
        records.append(_record_from_dict(entry, default_species))
    return records


def load_population(
    path: Union[str, Path],
    default_species: Species = Species.CATTLE,
) -> List[FarmRecord]:
    """Dispatch on file suffix (.yaml/.yml, .json, .csv)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Population file not found: {path}")
    suffix = path.suffix.lower()
    if suffix in (".yaml", ".yml"):
        return load_population_yaml(path, default_species)
    if suffix == ".json":
        return load_population_json(path, default_species)
    if suffix == ".csv":
        return load_population_csv(path, default_species)
    raise ConfigurationError(f"Unsupported population file format: {path.suffix}")


def population_from_config(config: SimulationConfig) -> FarmPopulation:
    """Build the configured population with the configured default rates.

    Uses population.population_file when set, otherwise a ring of
    population.herd_sizes.
    """
    pop_cfg = config.population
    species = Species.from_name(pop_cfg.species)
    if pop_cfg.population_file is not None:
        records = load_population(pop_cfg.population_file, default_species=species)
    else:
        records = make_ring_records(pop_cfg.herd_sizes, species=species)
    return build_population(
        records,
        contact_rate=config.spread.contact_rate,
        infection_rate=config.disease.infection_rate,
        recovery_rate=config.disease.recovery_rate,
    )

"""Configuration system for farm_epi.

Hierarchical YAML configuration with deep-merge support:
  base.yaml → scenario override → sweep overrides

Every parameter is validated once, up front, before any simulated day runs.
Invalid values raise ConfigurationError (a ValueError); nothing is
silently defaulted.

Design decisions:
  - detection_rate is a per-animal Rate; the default corresponds to a 1 %
    daily per-animal detection probability (λ = −ln 0.99).
  - Animals removed by active surveillance vanish by default
    (culled_animals="vanish"); "recovered" credits them to R instead.
"""

from __future__ import annotations

import copy
import dataclasses
import math
import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from farm_epi.errors import ConfigurationError
from farm_epi.scenario_time import RUN_CRITERIA
from farm_epi.types import Species


# ═══════════════════════════════════════════════════════════════════════
# CONFIGURATION DATACLASSES
# ═══════════════════════════════════════════════════════════════════════

@dataclass
class ScenarioSection:
    """Scenario timing and control."""
    seed: int = 20210426
    start_time: int = 0           # clock is advanced before day 1 is simulated
    min_timesteps: int = 0        # never stop on extinction before this
    max_timesteps: int = 364      # hard stop
    seed_mode: str = "random"     # 'random' (one farm) or 'everywhere'
    rng_mode: str = "shared"      # 'shared' or 'partitioned' (per farm-day streams)


@dataclass
class DiseaseSection:
    """Within-herd SIR parameters (global defaults, per-farm overridable)."""
    infection_rate: float = 0.03          # d⁻¹, density-dependent β
    recovery_rate: float = 0.01           # d⁻¹, γ
    exogenous_infection_rate: float = 0.0  # d⁻¹ per susceptible; 0 = off


@dataclass
class SpreadSection:
    """Between-herd spread via animal movements."""
    enabled: bool = True
    contact_rate: float = 0.001   # daily probability an infected farm sends a batch


@dataclass
class SurveillanceSection:
    """Active and passive surveillance regulators."""
    active_enabled: bool = True
    passive_enabled: bool = True
    detection_rate: float = 0.01005033585350145   # −ln(0.99): 1 % per animal per day
    remaining_proportion: float = 0.1   # infected kept after a partial cull
    culled_animals: str = "vanish"      # 'vanish' or 'recovered'
    passive_interval: str = "monthly"   # run criterion name


@dataclass
class PopulationSection:
    """Farm population source."""
    population_file: Optional[str] = None       # YAML / JSON / CSV
    herd_sizes: List[int] = field(default_factory=lambda: [140, 90])  # ring fallback
    species: str = "cattle"
    repopulation_interval: Optional[str] = None  # run criterion name; None = never


@dataclass
class OutputSection:
    """Output control."""
    directory: str = "outputs/"
    farm_states: bool = True
    infection_events: bool = True
    record_interval: str = "daily"   # run criterion name
    delimiter: str = ";"


@dataclass
class SimulationConfig:
    """Complete scenario configuration.

    Load from YAML via `load_config()`. Sections map 1:1 to YAML top-level keys.
    """
    scenario: ScenarioSection = field(default_factory=ScenarioSection)
    disease: DiseaseSection = field(default_factory=DiseaseSection)
    spread: SpreadSection = field(default_factory=SpreadSection)
    surveillance: SurveillanceSection = field(default_factory=SurveillanceSection)
    population: PopulationSection = field(default_factory=PopulationSection)
    output: OutputSection = field(default_factory=OutputSection)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


_SECTION_MAP = {
    'scenario': ScenarioSection,
    'disease': DiseaseSection,
    'spread': SpreadSection,
    'surveillance': SurveillanceSection,
    'population': PopulationSection,
    'output': OutputSection,
}


# ═══════════════════════════════════════════════════════════════════════
# YAML LOADING & MERGING
# ═══════════════════════════════════════════════════════════════════════

def deep_merge(base: Dict, override: Dict) -> Dict:
    """Recursively merge override into base. Modifies base in place.

    - Dict values are merged recursively
    - Non-dict values are replaced
    - Keys in override but not base are added

    Returns:
        The merged base dictionary.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def _dict_to_section(section_cls, data: Dict) -> Any:
    """Convert a dict to a dataclass, ignoring unknown keys."""
    valid_fields = {f.name for f in dataclasses.fields(section_cls)}
    filtered = {k: v for k, v in data.items() if k in valid_fields}
    return section_cls(**filtered)


def config_from_dict(data: Dict) -> SimulationConfig:
    """Convert a merged dict to an (unvalidated) SimulationConfig."""
    sections = {}
    for key, cls in _SECTION_MAP.items():
        if key in data and isinstance(data[key], dict):
            sections[key] = _dict_to_section(cls, data[key])
        else:
            sections[key] = cls()
    return SimulationConfig(**sections)


# ═══════════════════════════════════════════════════════════════════════
# VALIDATION
# ═══════════════════════════════════════════════════════════════════════

def _check_rate(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or not value >= 0.0 or math.isinf(value):
        raise ConfigurationError(f"{name} must be a finite rate >= 0, got {value!r}")


def _check_probability(name: str, value: float) -> None:
    if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
        raise ConfigurationError(f"{name} must be a probability in [0, 1], got {value!r}")


def _check_recovery_bound(name: str, value: float) -> None:
    if value > 1.0:
        raise ConfigurationError(
            f"{name} must be <= 1 (cannot recover more animals "
            f"than are infected in one day), got {value}"
        )


def validate_farm_rates(
    farm_id: int,
    contact_rate: float,
    infection_rate: float,
    recovery_rate: float,
) -> None:
    """Check one farm's effective rates against the section rules.

    Raises:
        ConfigurationError: Negative or non-finite rate, contact_rate
            outside [0, 1] or recovery_rate above 1.
    """
    prefix = f"farm {farm_id}:"
    _check_probability(f"{prefix} contact_rate", contact_rate)
    _check_rate(f"{prefix} infection_rate", infection_rate)
    _check_rate(f"{prefix} recovery_rate", recovery_rate)
    _check_recovery_bound(f"{prefix} recovery_rate", recovery_rate)


def _check_choice(name: str, value: Any, choices) -> None:
    if value not in choices:
        raise ConfigurationError(
            f"{name} must be one of {sorted(choices)}, got {value!r}"
        )


def validate_config(config: SimulationConfig) -> None:
    """Validate configuration constraints. Raises ConfigurationError on failure.

    Checks:
      - Rates are non-negative, probabilities lie in [0, 1]
      - Timestep bounds are consistent
      - Enumerated options name known values
      - A population source is available
    """
    sc = config.scenario
    if not isinstance(sc.seed, int) or sc.seed < 0:
        raise ConfigurationError(f"scenario.seed must be a non-negative integer, got {sc.seed!r}")
    if sc.start_time < 0:
        raise ConfigurationError(f"scenario.start_time must be >= 0, got {sc.start_time}")
    if sc.min_timesteps < 0:
        raise ConfigurationError(f"scenario.min_timesteps must be >= 0, got {sc.min_timesteps}")
    if sc.max_timesteps < 1:
        raise ConfigurationError(f"scenario.max_timesteps must be >= 1, got {sc.max_timesteps}")
    if sc.min_timesteps > sc.max_timesteps:
        raise ConfigurationError(
            f"scenario.min_timesteps ({sc.min_timesteps}) must be <= "
            f"max_timesteps ({sc.max_timesteps})"
        )
    _check_choice("scenario.seed_mode", sc.seed_mode, {"random", "everywhere"})
    _check_choice("scenario.rng_mode", sc.rng_mode, {"shared", "partitioned"})

    d = config.disease
    _check_rate("disease.infection_rate", d.infection_rate)
    _check_rate("disease.recovery_rate", d.recovery_rate)
    _check_rate("disease.exogenous_infection_rate", d.exogenous_infection_rate)
    _check_recovery_bound("disease.recovery_rate", d.recovery_rate)

    _check_probability("spread.contact_rate", config.spread.contact_rate)

    sv = config.surveillance
    _check_rate("surveillance.detection_rate", sv.detection_rate)
    _check_probability("surveillance.remaining_proportion", sv.remaining_proportion)
    _check_choice("surveillance.culled_animals", sv.culled_animals, {"vanish", "recovered"})
    _check_choice("surveillance.passive_interval", sv.passive_interval, set(RUN_CRITERIA))

    pop = config.population
    try:
        Species.from_name(pop.species)
    except ValueError as exc:
        raise ConfigurationError(f"population.species: {exc}") from None
    if pop.population_file is not None and not os.path.isfile(pop.population_file):
        warnings.warn(
            f"population.population_file '{pop.population_file}' "
            f"does not exist. Population loading will fail at runtime.",
            UserWarning,
            stacklevel=2,
        )
    if pop.population_file is None:
        if not pop.herd_sizes:
            raise ConfigurationError(
                "population.population_file or population.herd_sizes is required"
            )
        if any(int(h) < 0 for h in pop.herd_sizes):
            raise ConfigurationError(
                f"population.herd_sizes must be non-negative, got {pop.herd_sizes}"
            )
    if pop.repopulation_interval is not None:
        _check_choice("population.repopulation_interval",
                      pop.repopulation_interval, set(RUN_CRITERIA))

    out = config.output
    _check_choice("output.record_interval", out.record_interval, set(RUN_CRITERIA))
    if len(out.delimiter) != 1:
        raise ConfigurationError(
            f"output.delimiter must be a single character, got {out.delimiter!r}"
        )


def load_config(
    base_path: Union[str, Path],
    scenario_path: Optional[Union[str, Path]] = None,
    sweep_overrides: Optional[Dict] = None,
) -> SimulationConfig:
    """Load and merge hierarchical YAML configuration.

    Merge order: base → scenario → sweep overrides.
    Each layer overrides only the fields it specifies.

    Raises:
        FileNotFoundError: If base_path (or a given scenario_path) doesn't exist.
        ConfigurationError: If validation fails.
    """
    base_path = Path(base_path)
    if not base_path.exists():
        raise FileNotFoundError(f"Config file not found: {base_path}")

    with open(base_path) as f:
        config_dict = yaml.safe_load(f) or {}

    if scenario_path is not None:
        scenario_path = Path(scenario_path)
        if not scenario_path.exists():
            raise FileNotFoundError(f"Scenario file not found: {scenario_path}")
        with open(scenario_path) as f:
            scenario = yaml.safe_load(f) or {}
        deep_merge(config_dict, scenario)

    if sweep_overrides is not None:
        deep_merge(config_dict, copy.deepcopy(sweep_overrides))

    config = config_from_dict(config_dict)
    validate_config(config)
    return config


def save_config(config: SimulationConfig, path: Union[str, Path]) -> None:
    """Write a configuration to YAML (round-trips through load_config)."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, 'w') as f:
        yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)


def default_config() -> SimulationConfig:
    """Return a SimulationConfig with all default values."""
    config = SimulationConfig()
    validate_config(config)
    return config

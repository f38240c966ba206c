"""Recorders: consumers of daily farm state and infection event batches.

The scenario driver calls, once per simulated day:
  - record_farms(scenario_time, population)   (gated by the recorder's
    run criterion)
  - record_infection_events(batch)             (only for non-empty batches)

and close() when the run ends, whether it completed or failed. Recorders
only read; they never mutate the population.

CSV recorders write ';'-delimited files with a header row. Column order is
fixed: it is the file format.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple, Union

import numpy as np

from farm_epi.population import FarmPopulation
from farm_epi.scenario_time import RunCriterion, ScenarioTime, run_every_day
from farm_epi.types import InfectionEventBatch

logger = logging.getLogger(__name__)

FARM_STATE_COLUMNS = ("scenario_tick", "farm_id", "susceptible", "infected", "recovered")
INFECTION_EVENT_COLUMNS = (
    "scenario_tick", "batch_id", "origin_farm_id", "target_farm_id", "new_infections",
)


class Recorder:
    """Base recorder; every hook is a no-op."""

    run_criterion: RunCriterion = staticmethod(run_every_day)

    def record_farms(self, scenario_time: ScenarioTime, population: FarmPopulation) -> None:
        pass

    def record_infection_events(self, batch: InfectionEventBatch) -> None:
        pass

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


# ═══════════════════════════════════════════════════════════════════════
# CSV RECORDERS
# ═══════════════════════════════════════════════════════════════════════

class _CSVRecorder(Recorder):
    columns: Tuple[str, ...] = ()

    def __init__(self, path: Union[str, Path], delimiter: str = ";"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, 'w', newline='')
        self._writer = csv.writer(self._file, delimiter=delimiter)
        self._writer.writerow(self.columns)
        self.rows_written = 0

    def close(self) -> None:
        if not self._file.closed:
            self._file.close()
            logger.debug("Wrote %d rows to %s", self.rows_written, self.path)


class FarmStateCSVRecorder(_CSVRecorder):
    """One row per farm per recorded day, in store order."""

    columns = FARM_STATE_COLUMNS

    def __init__(
        self,
        path: Union[str, Path],
        delimiter: str = ";",
        run_criterion: RunCriterion = run_every_day,
    ):
        super().__init__(path, delimiter)
        self.run_criterion = run_criterion

    def record_farms(self, scenario_time: ScenarioTime, population: FarmPopulation) -> None:
        tick = scenario_time.current_time()
        farms = population.farms
        for fid, s, i, r in zip(farms['farm_id'].tolist(), farms['susceptible'].tolist(),
                                farms['infected'].tolist(), farms['recovered'].tolist()):
            self._writer.writerow((tick, fid, s, i, r))
        self.rows_written += len(farms)


class InfectionEventCSVRecorder(_CSVRecorder):
    """One row per between-herd infection event."""

    columns = INFECTION_EVENT_COLUMNS

    def record_infection_events(self, batch: InfectionEventBatch) -> None:
        rows = list(batch.rows())
        self._writer.writerows(rows)
        self.rows_written += len(rows)


# ═══════════════════════════════════════════════════════════════════════
# IN-MEMORY RECORDERS
# ═══════════════════════════════════════════════════════════════════════

class MemoryRecorder(Recorder):
    """Keeps farm-state snapshots and batches in memory (tests, notebooks)."""

    def __init__(self, run_criterion: RunCriterion = run_every_day):
        self.run_criterion = run_criterion
        self.farm_states: Dict[int, np.ndarray] = {}
        self.batches: List[InfectionEventBatch] = []

    def record_farms(self, scenario_time: ScenarioTime, population: FarmPopulation) -> None:
        self.farm_states[scenario_time.current_time()] = population.farms[
            ['farm_id', 'susceptible', 'infected', 'recovered']
        ].copy()

    def record_infection_events(self, batch: InfectionEventBatch) -> None:
        self.batches.append(batch)


class InfectedFarmsTracker(Recorder):
    """Tracks the number of actively infected farms (I > 1).

    Whenever a farm becomes actively infected that was not so on the
    previously recorded day, the new total is logged and stored.
    """

    def __init__(self, threshold: int = 1):
        self.threshold = threshold
        self.totals: Dict[int, int] = {}
        self._previous: Set[int] = set()

    def record_farms(self, scenario_time: ScenarioTime, population: FarmPopulation) -> None:
        farms = population.farms
        active = set(farms['farm_id'][farms['infected'] > self.threshold].tolist())
        if active - self._previous:
            tick = scenario_time.current_time()
            self.totals[tick] = len(active)
            logger.info("%5d => Total infected farms: %d", tick, len(active))
        self._previous = active

    @property
    def last_total(self) -> Optional[int]:
        if not self.totals:
            return None
        return self.totals[max(self.totals)]

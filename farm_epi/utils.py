"""Run provenance helpers: hashing and run metadata."""

from __future__ import annotations

import hashlib
import subprocess
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from farm_epi import __version__
from farm_epi.config import SimulationConfig


def file_sha256(path: Union[str, Path]) -> str:
    """SHA-256 hex digest of a file (e.g. the population file)."""
    h = hashlib.sha256()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(8192), b''):
            h.update(chunk)
    return h.hexdigest()


def config_hash(config: SimulationConfig) -> str:
    """SHA-256 of the canonical YAML dump of a configuration.

    Two configs hash equal iff every section field is equal.
    """
    text = yaml.safe_dump(config.to_dict(), sort_keys=True)
    return hashlib.sha256(text.encode('utf-8')).hexdigest()


def get_git_hash() -> str:
    """Current git commit hash, or 'unknown' outside a repository."""
    try:
        result = subprocess.run(
            ['git', 'rev-parse', 'HEAD'],
            capture_output=True, text=True, timeout=5,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return 'unknown'
    return result.stdout.strip() if result.returncode == 0 else 'unknown'


def run_metadata(
    config: SimulationConfig,
    population_file: Optional[Union[str, Path]] = None,
) -> Dict[str, Any]:
    """Provenance record for one scenario run."""
    meta = {
        'farm_epi_version': __version__,
        'git_hash': get_git_hash(),
        'config_hash': config_hash(config),
        'seed': config.scenario.seed,
        'started_at': datetime.now(timezone.utc).isoformat(timespec='seconds'),
    }
    if population_file is not None:
        meta['population_file'] = str(population_file)
        meta['population_sha256'] = file_sha256(population_file)
    return meta


def write_run_metadata(meta: Dict[str, Any], path: Union[str, Path]) -> None:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, 'w') as f:
        yaml.safe_dump(meta, f, default_flow_style=False, sort_keys=False)

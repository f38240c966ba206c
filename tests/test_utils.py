"""Tests for farm_epi.utils and the error hierarchy."""

import hashlib

import pytest
import yaml

from farm_epi import __version__
from farm_epi.config import default_config
from farm_epi.errors import (
    ConfigurationError,
    ConversionError,
    EmptyPopulationError,
    FarmEpiError,
    InvariantViolation,
    TopologyError,
)
from farm_epi.utils import config_hash, file_sha256, run_metadata, write_run_metadata


# ── Hashing ───────────────────────────────────────────────────────────

class TestHashing:
    def test_file_sha256(self, tmp_path):
        path = tmp_path / "farms.yaml"
        path.write_bytes(b"farms: []\n")
        assert file_sha256(path) == hashlib.sha256(b"farms: []\n").hexdigest()

    def test_config_hash_is_stable(self):
        assert config_hash(default_config()) == config_hash(default_config())

    def test_config_hash_tracks_fields(self):
        a = default_config()
        b = default_config()
        b.scenario.seed = a.scenario.seed + 1
        assert config_hash(a) != config_hash(b)


# ── Run metadata ──────────────────────────────────────────────────────

class TestRunMetadata:
    def test_fields(self):
        config = default_config()
        meta = run_metadata(config)
        assert meta['farm_epi_version'] == __version__
        assert meta['seed'] == config.scenario.seed
        assert meta['config_hash'] == config_hash(config)
        assert 'population_sha256' not in meta

    def test_population_file_hashed(self, tmp_path):
        path = tmp_path / "farms.yaml"
        path.write_text("farms: []\n")
        meta = run_metadata(default_config(), population_file=path)
        assert meta['population_file'] == str(path)
        assert meta['population_sha256'] == file_sha256(path)

    def test_write(self, tmp_path):
        path = tmp_path / "nested" / "run_metadata.yaml"
        write_run_metadata({'seed': 3, 'git_hash': 'unknown'}, path)
        assert yaml.safe_load(path.read_text()) == {'seed': 3, 'git_hash': 'unknown'}


# ── Errors ────────────────────────────────────────────────────────────

class TestErrors:
    @pytest.mark.parametrize("cls, builtin", [
        (ConfigurationError, ValueError),
        (ConversionError, ValueError),
        (TopologyError, LookupError),
        (InvariantViolation, AssertionError),
        (EmptyPopulationError, RuntimeError),
    ])
    def test_hierarchy(self, cls, builtin):
        assert issubclass(cls, FarmEpiError)
        assert issubclass(cls, builtin)

    def test_conversion_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            raise ConversionError("bad rate")

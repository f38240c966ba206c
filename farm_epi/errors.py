"""Exception types for farm_epi.

Every error derives from FarmEpiError and from the builtin exception a
caller would naturally catch (ValueError for bad configuration, LookupError
for a broken topology, AssertionError for a violated numeric invariant).

None of these are retried: the simulation is deterministic per seed, so
the same state reproduces the same failure.
"""


class FarmEpiError(Exception):
    """Base class for all farm_epi errors."""


class ConfigurationError(FarmEpiError, ValueError):
    """Invalid or missing scenario configuration. Raised before day 1."""


class ConversionError(ConfigurationError):
    """A value is not a valid Rate or Probability."""


class TopologyError(FarmEpiError, LookupError):
    """The farm network or the FarmId ↔ handle map is inconsistent."""


class InvariantViolation(FarmEpiError, AssertionError):
    """A compartment count invariant was broken (e.g. new infections > S)."""


class EmptyPopulationError(FarmEpiError, RuntimeError):
    """No farm (or no susceptible animal) is available to seed an infection."""

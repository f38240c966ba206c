"""farm_epi: Stochastic between-farm livestock disease simulation.

A discrete-time (daily) network model coupling:
  - Within-herd SIR dynamics with stochastic rounding of expected counts
  - Between-herd spread through animal movements on a directed farm network
  - Active surveillance (detection + culling) and passive surveillance
    (prevalence estimation) regulators
  - A 364-day scenario calendar with weekly/monthly/yearly run criteria

All randomness is drawn from one seeded generator in a fixed order, so a
run is reproducible from its seed, parameters and population.
"""

__version__ = "0.1.0"

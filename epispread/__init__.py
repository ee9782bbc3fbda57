"""epispread: spatial stochastic SIS/SIR epidemics on fixed host populations.

An exact continuous-time (Gillespie) simulation of disease spread through
geolocated hosts of two classes, with:
  - Power-exponential or flat distance kernels, cached or on demand
  - Incrementally maintained per-host event rates (O(n) per event)
  - Generation-bounded transmission chains
  - Independent, reproducible realizations, optionally on a thread pool
"""

__version__ = "0.1.0"

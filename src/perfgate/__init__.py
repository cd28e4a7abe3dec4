"""perfgate: wall-clock benchmarks gated against per-machine baselines."""

__version__ = "0.1.0"

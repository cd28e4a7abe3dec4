"""Benchmarking subsystem for perfgate.

Provides tools for timing a workload repeatedly, reducing the samples
to summary statistics, and judging the result against a baseline
recorded for the exact machine the benchmark runs on.
"""

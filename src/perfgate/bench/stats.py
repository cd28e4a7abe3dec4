"""Summary statistics for benchmark samples.

A :class:`BenchmarkResult` holds the wall-clock durations of one
benchmark invocation together with the noise thresholds it was run
with. Everything else (average, sample standard deviation, relative
standard deviation, minimum) is computed on demand from the samples.

Degenerate inputs are explicit errors, never NaN:

- an empty sample sequence cannot be turned into a result;
- the sample standard deviation of a single sample is undefined;
- the relative standard deviation of a zero average is undefined.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Sequence

from perfgate.bench.errors import InsufficientSamplesError, ZeroMeasurementError

DEFAULT_MAX_RELATIVE_STANDARD_DEVIATION = 15.0
DEFAULT_STANDARD_DEVIATION_NEGLIGIBILITY_THRESHOLD = 0.1


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def average(samples: Sequence[float]) -> float:
    """Arithmetic mean of *samples*."""
    if not samples:
        raise InsufficientSamplesError("average of an empty sample set is undefined")
    return sum(samples) / len(samples)


def standard_deviation(samples: Sequence[float]) -> float:
    """Sample standard deviation (Bessel-corrected, ``n - 1`` denominator)."""
    n = len(samples)
    if n < 2:
        raise InsufficientSamplesError(
            f"standard deviation needs at least 2 samples (got {n})"
        )
    mean = average(samples)
    variance = sum((x - mean) ** 2 for x in samples) / (n - 1)
    return math.sqrt(variance)


def relative_standard_deviation(samples: Sequence[float]) -> float:
    """Standard deviation as a percentage of the average."""
    mean = average(samples)
    if mean == 0:
        raise ZeroMeasurementError(
            "relative standard deviation is undefined for a zero average"
        )
    return standard_deviation(samples) * 100 / mean


# ---------------------------------------------------------------------------
# BenchmarkResult
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BenchmarkResult:
    """Samples from one benchmark invocation plus its noise thresholds."""

    samples: tuple[float, ...]
    max_relative_standard_deviation: float = DEFAULT_MAX_RELATIVE_STANDARD_DEVIATION
    standard_deviation_negligibility_threshold: float = (
        DEFAULT_STANDARD_DEVIATION_NEGLIGIBILITY_THRESHOLD
    )

    def __post_init__(self) -> None:
        # Accept any sequence but store an immutable tuple.
        object.__setattr__(self, "samples", tuple(float(s) for s in self.samples))
        if not self.samples:
            raise InsufficientSamplesError("a benchmark result needs at least one sample")
        if any(s < 0 for s in self.samples):
            raise ValueError("durations cannot be negative")

    @property
    def count(self) -> int:
        return len(self.samples)

    @property
    def average(self) -> float:
        return average(self.samples)

    @property
    def standard_deviation(self) -> float:
        return standard_deviation(self.samples)

    @property
    def relative_standard_deviation(self) -> float:
        return relative_standard_deviation(self.samples)

    @property
    def minimum(self) -> float:
        return min(self.samples)

    @property
    def is_noisy(self) -> bool:
        """True if the samples are too scattered to be trusted.

        Both the relative and the absolute spread must exceed their
        thresholds: a large relative deviation on a workload that takes
        microseconds is still negligible.
        """
        return (
            self.relative_standard_deviation > self.max_relative_standard_deviation
            and self.standard_deviation > self.standard_deviation_negligibility_threshold
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON/YAML-compatible dict."""
        return {
            "samples": list(self.samples),
            "max_relative_standard_deviation": self.max_relative_standard_deviation,
            "standard_deviation_negligibility_threshold": (
                self.standard_deviation_negligibility_threshold
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BenchmarkResult:
        """Deserialize from a dict, ignoring unknown fields."""
        known = {f.name for f in cls.__dataclass_fields__.values()}
        filtered = {k: v for k, v in data.items() if k in known}
        return cls(**filtered)

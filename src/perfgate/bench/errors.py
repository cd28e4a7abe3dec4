"""Exception hierarchy for the benchmarking subsystem.

Every error raised by perfgate derives from :class:`BenchmarkError`.
Fatal verdicts are raised as :class:`BenchmarkFailure`, which is also an
``AssertionError`` so a host test runner reports them as failures
rather than errors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from perfgate.bench.baselines import PendingUpdate
    from perfgate.bench.evaluate import Verdict


class BenchmarkError(Exception):
    """Base class for all perfgate errors."""


class InsufficientSamplesError(BenchmarkError, ValueError):
    """Too few samples to compute the requested statistic."""


class ZeroMeasurementError(BenchmarkError, ZeroDivisionError):
    """A measurement used as a divisor (or compared against one) is zero."""


class MalformedDocumentError(BenchmarkError, ValueError):
    """A registry or catalog document could not be decoded."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class FingerprintError(BenchmarkError):
    """The hardware/OS fingerprint of this machine could not be captured."""


class WorkloadError(BenchmarkError):
    """The measured workload raised; remaining iterations were abandoned."""

    def __init__(self, iteration: int, cause: BaseException) -> None:
        super().__init__(f"workload failed on iteration {iteration}: {cause!r}")
        self.iteration = iteration


class BenchmarkFailure(BenchmarkError, AssertionError):
    """A verdict that fails the benchmark."""

    def __init__(
        self,
        message: str,
        verdict: Verdict,
        pending: PendingUpdate | None = None,
    ) -> None:
        super().__init__(message)
        self.verdict = verdict
        self.pending = pending


class HighVarianceError(BenchmarkFailure):
    """The samples are too noisy to judge against a baseline."""


class RegressionError(BenchmarkFailure):
    """The workload got slower than its baseline beyond the tolerance."""

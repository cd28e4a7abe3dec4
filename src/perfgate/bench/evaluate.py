"""Regression evaluation of a benchmark result against its baseline.

Sign convention, used for both classification and messages: the
percent difference is measured relative to the baseline,

    percent = (new - baseline) / baseline * 100

so a positive value means the new measurement is slower (worse) and a
negative value means it is faster (better). Only slowdowns are ever
checked against the tolerance.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass

from perfgate.bench.baselines import DEFAULT_TOLERANCE, Baseline, Strategy
from perfgate.bench.errors import ZeroMeasurementError
from perfgate.bench.stats import BenchmarkResult

log = logging.getLogger("perfgate")


def format_number(value: float, precision: int = 3) -> str:
    """Format a number with at most *precision* fraction digits."""
    text = f"{value:.{precision}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return "0" if text == "-0" else text


def format_seconds(value: float) -> str:
    """Format a measurement, keeping significant digits below one second."""
    if value == 0 or abs(value) >= 1:
        return format_number(value)
    return f"{value:.4g}"


# ---------------------------------------------------------------------------
# Verdict
# ---------------------------------------------------------------------------


class VerdictKind(str, enum.Enum):
    IMPROVED = "improved"
    WITHIN_TOLERANCE = "within_tolerance"
    REGRESSED = "regressed"
    INCONCLUSIVE = "inconclusive"
    BASELINE_MISSING = "baseline_missing"


@dataclass(frozen=True)
class Verdict:
    """Classified outcome of comparing a result with its baseline."""

    kind: VerdictKind
    strategy: Strategy
    percent: float | None = None  # positive = slower than the baseline
    reason: str = ""
    detail: str = ""
    baseline_measurement: float | None = None
    new_measurement: float | None = None
    tolerance: float | None = None
    fatal: bool = False
    downgraded: bool = False  # would be fatal, but failures are allowed

    @property
    def compared(self) -> bool:
        """True if the result was actually compared with a baseline."""
        return self.kind in (
            VerdictKind.IMPROVED,
            VerdictKind.WITHIN_TOLERANCE,
            VerdictKind.REGRESSED,
        )

    def describe(self) -> str:
        """Human-readable summary with the numbers that led to the verdict."""
        if self.kind is VerdictKind.INCONCLUSIVE:
            return self.detail or f"Inconclusive: {self.reason}."
        if self.kind is VerdictKind.BASELINE_MISSING:
            return (
                f"Strategy: {self.strategy.value}, no baseline recorded for this "
                f"destination; new measurement: {format_seconds(self.new_measurement or 0.0)} "
                f"seconds."
            )

        percent = self.percent or 0.0
        head = (
            f"Strategy: {self.strategy.value}, "
            f"baseline measurement: {format_seconds(self.baseline_measurement or 0.0)}, "
            f"new measurement: {format_seconds(self.new_measurement or 0.0)}, "
        )
        if self.kind is VerdictKind.IMPROVED:
            return head + f"which is better by {format_number(abs(percent))}%."
        margin = (
            "but within the margin of"
            if self.kind is VerdictKind.WITHIN_TOLERANCE
            else "max allowed deviation is"
        )
        return (
            head
            + f"which is worse by {format_number(percent)}% "
            + f"({margin} {format_number(self.tolerance or 0.0)}%)."
        )


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def percent_difference(new: float, baseline: float) -> float:
    """Percent by which *new* is slower than *baseline* (negative if faster).

    Raises:
        ZeroMeasurementError: If either measurement is zero.
    """
    if baseline == 0:
        raise ZeroMeasurementError("cannot compare against a zero baseline measurement")
    if new == 0:
        raise ZeroMeasurementError("the new measurement is zero; nothing was timed")
    return (new - baseline) / baseline * 100


def select_metric(result: BenchmarkResult, strategy: Strategy) -> float:
    """The statistic of *result* that *strategy* compares."""
    if strategy is Strategy.MINIMUM:
        return result.minimum
    return result.average


def evaluate(
    result: BenchmarkResult,
    strategy: Strategy | str,
    baseline: Baseline | None,
    *,
    allow_failure: bool = False,
    default_tolerance: float = DEFAULT_TOLERANCE,
    user_info: dict[str, str] | None = None,
) -> tuple[Verdict, Baseline | None]:
    """Judge *result* against *baseline*.

    Args:
        result: The fresh measurements.
        strategy: ``minimum`` compares the fastest sample, ``average``
            the mean (and first rejects noisy samples).
        baseline: The stored baseline for this test on this machine,
            or None if there is none yet.
        allow_failure: Downgrade a fatal verdict to a non-fatal one.
        default_tolerance: Tolerance for a newly created baseline.
        user_info: Free-form metadata attached to the candidate.

    Returns:
        ``(verdict, candidate)`` where *candidate* is the baseline that
        would replace (or create) the stored one. It is None only for
        an inconclusive verdict.

    Raises:
        ZeroMeasurementError: If the compared metric (or the average
            of a result with no baseline) is zero.
    """
    strategy = Strategy(strategy)

    if strategy is Strategy.AVERAGE and result.is_noisy:
        detail = (
            f"The relative standard deviation of the measurements is "
            f"{format_number(result.relative_standard_deviation)}% which is higher than "
            f"the max allowed of {format_number(result.max_relative_standard_deviation)}%."
        )
        verdict = Verdict(
            kind=VerdictKind.INCONCLUSIVE,
            strategy=strategy,
            reason="high variance",
            detail=detail,
            new_measurement=result.average,
            fatal=not allow_failure,
            downgraded=allow_failure,
        )
        return verdict, None

    if baseline is None:
        if result.average == 0:
            raise ZeroMeasurementError("cannot record a zero baseline measurement")
        candidate = Baseline(
            strategy=strategy,
            measurement=result.average,
            tolerance=default_tolerance,
            user_info=dict(user_info) if user_info else None,
        )
        verdict = Verdict(
            kind=VerdictKind.BASELINE_MISSING,
            strategy=strategy,
            new_measurement=result.average,
        )
        return verdict, candidate

    if baseline.strategy is not strategy:
        log.warning(
            "Baseline was recorded with the %s strategy; comparing with %s",
            baseline.strategy.value,
            strategy.value,
        )

    metric = select_metric(result, strategy)
    percent = percent_difference(metric, baseline.measurement)
    within = abs(percent) <= baseline.tolerance

    fatal = False
    downgraded = False
    if percent > 0:
        if within:
            kind = VerdictKind.WITHIN_TOLERANCE
        else:
            kind = VerdictKind.REGRESSED
            fatal = not allow_failure
            downgraded = allow_failure
    else:
        kind = VerdictKind.IMPROVED

    verdict = Verdict(
        kind=kind,
        strategy=strategy,
        percent=percent,
        baseline_measurement=baseline.measurement,
        new_measurement=metric,
        tolerance=baseline.tolerance,
        fatal=fatal,
        downgraded=downgraded,
    )
    candidate = Baseline(
        strategy=strategy,
        measurement=result.average,
        tolerance=baseline.tolerance,
        user_info=dict(user_info) if user_info else baseline.user_info,
    )
    return verdict, candidate

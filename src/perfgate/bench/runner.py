"""Benchmark execution engine.

Orchestrates one benchmark invocation:

1. Time the workload ``execution_count`` times, strictly in sequence.
2. Reduce the samples to a :class:`BenchmarkResult`.
3. Find this machine's destination and the stored baseline.
4. Evaluate the result and stage a baseline update.
5. Log the verdict and raise if it is fatal.

Staged updates are never written by the runner itself. They are
returned in the :class:`BenchmarkOutcome` (and handed to a
:class:`SuiteAccumulator` when one is attached) so the caller decides
when, and whether, to apply them.

Usage from a test::

    class ParserPerformance(unittest.TestCase):
        suite = SuiteAccumulator()
        store = BaselineStore(Path(__file__).parent / "PerformanceBaselines")

        @classmethod
        def tearDownClass(cls) -> None:
            cls.suite.drain(cls.store)

        def test_parse_large(self) -> None:
            runner = BenchmarkRunner(self.store, suite=self.suite)
            group, name = key_for_test(self)
            runner.benchmark(group, name, lambda: parse(LARGE_INPUT))
"""

from __future__ import annotations

import logging
import time
import unittest
from dataclasses import dataclass
from typing import Callable, Iterable

from perfgate.bench.baselines import (
    BaselineStore,
    PendingUpdate,
    UpdateReport,
    lookup_baseline,
)
from perfgate.bench.config import BenchmarkOptions, check_options
from perfgate.bench.display import format_result, format_update_report, format_verdict
from perfgate.bench.errors import (
    HighVarianceError,
    RegressionError,
    WorkloadError,
)
from perfgate.bench.evaluate import Verdict, VerdictKind, evaluate
from perfgate.bench.stats import BenchmarkResult
from perfgate.bench.system import Fingerprint, FingerprintProvider, current_fingerprint

log = logging.getLogger("perfgate")

Workload = Callable[[], object]
Clock = Callable[[], float]


# ---------------------------------------------------------------------------
# Outcome
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkOutcome:
    """Everything one benchmark invocation produced."""

    group: str
    name: str
    result: BenchmarkResult
    verdict: Verdict
    pending: PendingUpdate | None = None
    destination_id: str | None = None

    @property
    def key(self) -> str:
        return f"{self.group}.{self.name}"


def key_for_test(test: unittest.TestCase, info: str = "") -> tuple[str, str]:
    """Return the ``(group, name)`` catalog key for a unittest test.

    The group is the test case class name and the name is the test
    method, optionally followed by ``" | info"`` to tell parametrized
    variants apart.
    """
    group = type(test).__name__
    name = test.id().rsplit(".", 1)[-1]
    if info:
        name = f"{name} | {info}"
    return group, name


# ---------------------------------------------------------------------------
# SuiteAccumulator
# ---------------------------------------------------------------------------


class SuiteAccumulator:
    """Collects pending baseline updates across a suite of benchmarks.

    Drain it once at the end of the suite to apply every update in one
    pass and print one aggregated set of documents.
    """

    def __init__(self) -> None:
        self._pending: list[PendingUpdate] = []

    def __len__(self) -> int:
        return len(self._pending)

    @property
    def pending(self) -> tuple[PendingUpdate, ...]:
        return tuple(self._pending)

    def add(self, pending: PendingUpdate) -> None:
        self._pending.append(pending)

    def drain(self, store: BaselineStore, *, overwrite: bool = False) -> UpdateReport:
        """Apply and forget every collected update.

        The accumulator is emptied even if applying fails, so a broken
        document is reported once rather than at every later drain.
        """
        updates, self._pending = self._pending, []
        report = store.apply(updates, overwrite=overwrite)
        if report.documents:
            log.info("%s", format_update_report(report))
        return report


# ---------------------------------------------------------------------------
# BenchmarkRunner
# ---------------------------------------------------------------------------


class BenchmarkRunner:
    """Measures workloads and judges them against stored baselines.

    Usage::

        runner = BenchmarkRunner(BaselineStore("PerformanceBaselines"))
        outcome = runner.benchmark("Parser", "parse_large", workload)
        runner.apply(outcome.pending)
    """

    def __init__(
        self,
        store: BaselineStore,
        options: BenchmarkOptions | None = None,
        *,
        suite: SuiteAccumulator | None = None,
        provider: FingerprintProvider | None = None,
        clock: Clock = time.perf_counter,
    ) -> None:
        self.store = store
        self.options = options or BenchmarkOptions()
        check_options(self.options)
        self.suite = suite
        self.provider = provider
        self.clock = clock
        self._fingerprint: Fingerprint | None = None

    @property
    def fingerprint(self) -> Fingerprint:
        """Fingerprint of this machine, captured on first use."""
        if self._fingerprint is None:
            if self.provider is None:
                self._fingerprint = current_fingerprint()
            else:
                self._fingerprint = self.provider.capture()
        return self._fingerprint

    def measure(
        self, workload: Workload, *, execution_count: int | None = None
    ) -> BenchmarkResult:
        """Time *workload* repeatedly and summarize the durations.

        Raises:
            ValueError: If the execution count is not positive.
            WorkloadError: If the workload raises; no further
                iterations run and no result is produced.
        """
        count = execution_count if execution_count is not None else self.options.execution_count
        if count < 1:
            raise ValueError(f"Execution count must be positive (got {count}).")

        samples: list[float] = []
        for i in range(count):
            start = self.clock()
            try:
                workload()
            except Exception as exc:
                log.debug("Workload raised on iteration %d/%d", i + 1, count)
                raise WorkloadError(i + 1, exc) from exc
            samples.append(self.clock() - start)

        return BenchmarkResult(
            samples=tuple(samples),
            max_relative_standard_deviation=self.options.max_relative_standard_deviation,
            standard_deviation_negligibility_threshold=(
                self.options.standard_deviation_negligibility_threshold
            ),
        )

    def benchmark(
        self,
        group: str,
        name: str,
        workload: Workload,
        *,
        strategy: str | None = None,
        allow_failure: bool | None = None,
        execution_count: int | None = None,
        user_info: dict[str, str] | None = None,
    ) -> BenchmarkOutcome:
        """Measure *workload* and evaluate it against its baseline.

        Per-call arguments override the runner's options.

        Raises:
            WorkloadError: If the workload raised.
            HighVarianceError: If the average strategy found the samples
                too noisy and failures are not allowed.
            RegressionError: If the workload is slower than its baseline
                beyond the tolerance and failures are not allowed.
            ZeroMeasurementError: If a compared measurement is zero.
            MalformedDocumentError: If a baseline document is corrupt.
        """
        options = self.options
        key = f"{group}.{name}"

        result = self.measure(workload, execution_count=execution_count)
        log.info("%s: %s", key, format_result(result))

        fingerprint = self.fingerprint
        destination_id, catalog = self.store.resolve(fingerprint)
        baseline = lookup_baseline(catalog, group, name)

        verdict, candidate = evaluate(
            result,
            strategy or options.strategy,
            baseline,
            allow_failure=options.allow_failure if allow_failure is None else allow_failure,
            default_tolerance=options.default_tolerance,
            user_info={**options.user_info, **(user_info or {})},
        )

        pending: PendingUpdate | None = None
        if candidate is not None:
            pending = PendingUpdate(
                group=group,
                name=name,
                fingerprint=fingerprint,
                baseline=candidate,
                destination_id=destination_id,
            )
            if self.suite is not None:
                self.suite.add(pending)

        message = format_verdict(key, verdict)
        if verdict.fatal:
            log.error("%s", message)
            if verdict.kind is VerdictKind.INCONCLUSIVE:
                raise HighVarianceError(message, verdict, pending)
            raise RegressionError(message, verdict, pending)
        if verdict.downgraded:
            log.warning("%s", message)
        else:
            log.info("%s", message)

        return BenchmarkOutcome(
            group=group,
            name=name,
            result=result,
            verdict=verdict,
            pending=pending,
            destination_id=destination_id,
        )

    def apply(
        self,
        pending: PendingUpdate | Iterable[PendingUpdate] | None,
        *,
        overwrite: bool | None = None,
    ) -> UpdateReport:
        """Apply staged updates to the store.

        Writes only if *overwrite* (default: the runner's option) is
        true; otherwise the rendered documents are logged for manual
        application.
        """
        if pending is None:
            updates: list[PendingUpdate] = []
        elif isinstance(pending, PendingUpdate):
            updates = [pending]
        else:
            updates = list(pending)
        report = self.store.apply(
            updates,
            overwrite=self.options.overwrite if overwrite is None else overwrite,
        )
        if report.documents:
            log.info("%s", format_update_report(report))
        return report

"""Tests for perfgate.bench.evaluate — regression verdicts."""

from __future__ import annotations

import unittest

from bench_test_helpers import make_baseline, make_result

from perfgate.bench.baselines import Strategy
from perfgate.bench.errors import ZeroMeasurementError
from perfgate.bench.evaluate import (
    Verdict,
    VerdictKind,
    evaluate,
    format_number,
    format_seconds,
    percent_difference,
    select_metric,
)


class TestPercentDifference(unittest.TestCase):
    def test_slower_is_positive(self) -> None:
        self.assertAlmostEqual(percent_difference(1.2, 1.0), 20.0)

    def test_faster_is_negative(self) -> None:
        self.assertAlmostEqual(percent_difference(0.9, 1.0), -10.0)

    def test_equal_is_zero(self) -> None:
        self.assertEqual(percent_difference(0.5, 0.5), 0.0)

    def test_zero_baseline_raises(self) -> None:
        with self.assertRaises(ZeroMeasurementError):
            percent_difference(1.0, 0.0)

    def test_zero_new_measurement_raises(self) -> None:
        with self.assertRaises(ZeroDivisionError):
            percent_difference(0.0, 1.0)


class TestSelectMetric(unittest.TestCase):
    def test_minimum(self) -> None:
        self.assertEqual(select_metric(make_result([3.0, 1.0, 2.0]), Strategy.MINIMUM), 1.0)

    def test_average(self) -> None:
        self.assertEqual(select_metric(make_result([3.0, 1.0, 2.0]), Strategy.AVERAGE), 2.0)


# ---------------------------------------------------------------------------
# Classification against a 1.000s / 10% average baseline
# ---------------------------------------------------------------------------


class TestEvaluateAverage(unittest.TestCase):
    def setUp(self) -> None:
        self.baseline = make_baseline(1.0, strategy=Strategy.AVERAGE, tolerance=10.0)

    def test_within_tolerance(self) -> None:
        verdict, candidate = evaluate(make_result([1.05] * 5), Strategy.AVERAGE, self.baseline)
        self.assertIs(verdict.kind, VerdictKind.WITHIN_TOLERANCE)
        self.assertAlmostEqual(verdict.percent or 0.0, 5.0)
        self.assertFalse(verdict.fatal)
        self.assertTrue(verdict.compared)
        self.assertIsNotNone(candidate)

    def test_regressed(self) -> None:
        verdict, _ = evaluate(make_result([1.20] * 5), Strategy.AVERAGE, self.baseline)
        self.assertIs(verdict.kind, VerdictKind.REGRESSED)
        self.assertAlmostEqual(verdict.percent or 0.0, 20.0)
        self.assertTrue(verdict.fatal)
        self.assertFalse(verdict.downgraded)

    def test_regressed_with_allow_failure(self) -> None:
        verdict, candidate = evaluate(
            make_result([1.20] * 5), Strategy.AVERAGE, self.baseline, allow_failure=True
        )
        self.assertIs(verdict.kind, VerdictKind.REGRESSED)
        self.assertFalse(verdict.fatal)
        self.assertTrue(verdict.downgraded)
        self.assertIsNotNone(candidate)

    def test_improved(self) -> None:
        verdict, _ = evaluate(make_result([0.90] * 5), Strategy.AVERAGE, self.baseline)
        self.assertIs(verdict.kind, VerdictKind.IMPROVED)
        self.assertAlmostEqual(verdict.percent or 0.0, -10.0)
        self.assertFalse(verdict.fatal)

    def test_large_improvement_is_never_fatal(self) -> None:
        verdict, _ = evaluate(make_result([0.2] * 5), Strategy.AVERAGE, self.baseline)
        self.assertIs(verdict.kind, VerdictKind.IMPROVED)
        self.assertFalse(verdict.fatal)

    def test_equal_counts_as_improved(self) -> None:
        verdict, _ = evaluate(make_result([1.0] * 3), Strategy.AVERAGE, self.baseline)
        self.assertIs(verdict.kind, VerdictKind.IMPROVED)
        self.assertEqual(verdict.percent, 0.0)

    def test_exactly_at_tolerance_is_within(self) -> None:
        baseline = make_baseline(0.5, tolerance=50.0)
        verdict, _ = evaluate(make_result([0.75] * 3), Strategy.AVERAGE, baseline)
        self.assertEqual(verdict.percent, 50.0)
        self.assertIs(verdict.kind, VerdictKind.WITHIN_TOLERANCE)

    def test_string_strategy_accepted(self) -> None:
        verdict, _ = evaluate(make_result([1.05] * 3), "average", self.baseline)
        self.assertIs(verdict.strategy, Strategy.AVERAGE)


class TestEvaluateMinimum(unittest.TestCase):
    def test_compares_fastest_sample(self) -> None:
        baseline = make_baseline(1.0, strategy=Strategy.MINIMUM)
        verdict, candidate = evaluate(make_result([1.3, 0.95, 1.1]), Strategy.MINIMUM, baseline)
        self.assertIs(verdict.kind, VerdictKind.IMPROVED)
        self.assertEqual(verdict.new_measurement, 0.95)
        # The candidate records the average, not the minimum.
        assert candidate is not None
        self.assertAlmostEqual(candidate.measurement, (1.3 + 0.95 + 1.1) / 3)
        self.assertIs(candidate.strategy, Strategy.MINIMUM)

    def test_noise_is_not_gated(self) -> None:
        baseline = make_baseline(1.0, strategy=Strategy.MINIMUM)
        result = make_result([1.0, 2.0, 3.0])
        self.assertTrue(result.is_noisy)
        verdict, _ = evaluate(result, Strategy.MINIMUM, baseline)
        self.assertIs(verdict.kind, VerdictKind.IMPROVED)

    def test_single_sample_is_fine(self) -> None:
        baseline = make_baseline(1.0, strategy=Strategy.MINIMUM)
        verdict, _ = evaluate(make_result([1.05]), Strategy.MINIMUM, baseline)
        self.assertIs(verdict.kind, VerdictKind.WITHIN_TOLERANCE)

    def test_zero_metric_raises(self) -> None:
        baseline = make_baseline(1.0, strategy=Strategy.MINIMUM)
        with self.assertRaises(ZeroMeasurementError):
            evaluate(make_result([0.0, 1.0]), Strategy.MINIMUM, baseline)

    def test_zero_metric_raises_even_with_allow_failure(self) -> None:
        baseline = make_baseline(1.0, strategy=Strategy.MINIMUM)
        with self.assertRaises(ZeroMeasurementError):
            evaluate(make_result([0.0, 1.0]), Strategy.MINIMUM, baseline, allow_failure=True)


# ---------------------------------------------------------------------------
# High variance gate
# ---------------------------------------------------------------------------


class TestHighVariance(unittest.TestCase):
    def test_inconclusive_without_comparing(self) -> None:
        verdict, candidate = evaluate(
            make_result([1.0, 2.0, 3.0]), Strategy.AVERAGE, make_baseline(2.0)
        )
        self.assertIs(verdict.kind, VerdictKind.INCONCLUSIVE)
        self.assertEqual(verdict.reason, "high variance")
        self.assertIsNone(verdict.percent)
        self.assertFalse(verdict.compared)
        self.assertIsNone(candidate)
        self.assertTrue(verdict.fatal)

    def test_gate_runs_before_baseline_lookup(self) -> None:
        verdict, candidate = evaluate(make_result([1.0, 2.0, 3.0]), Strategy.AVERAGE, None)
        self.assertIs(verdict.kind, VerdictKind.INCONCLUSIVE)
        self.assertIsNone(candidate)

    def test_allow_failure_downgrades(self) -> None:
        verdict, _ = evaluate(
            make_result([1.0, 2.0, 3.0]), Strategy.AVERAGE, None, allow_failure=True
        )
        self.assertIs(verdict.kind, VerdictKind.INCONCLUSIVE)
        self.assertFalse(verdict.fatal)
        self.assertTrue(verdict.downgraded)

    def test_detail_mentions_numbers(self) -> None:
        verdict, _ = evaluate(make_result([1.0, 2.0, 3.0]), Strategy.AVERAGE, None)
        self.assertIn("50%", verdict.describe())
        self.assertIn("15%", verdict.describe())


# ---------------------------------------------------------------------------
# Missing baseline and candidates
# ---------------------------------------------------------------------------


class TestBaselineMissing(unittest.TestCase):
    def test_candidate_from_average(self) -> None:
        verdict, candidate = evaluate(
            make_result([0.4, 0.6]),
            Strategy.MINIMUM,
            None,
            default_tolerance=7.5,
            user_info={"dataset": "small"},
        )
        self.assertIs(verdict.kind, VerdictKind.BASELINE_MISSING)
        self.assertFalse(verdict.fatal)
        assert candidate is not None
        self.assertEqual(candidate.measurement, 0.5)
        self.assertEqual(candidate.tolerance, 7.5)
        self.assertIs(candidate.strategy, Strategy.MINIMUM)
        self.assertEqual(candidate.user_info, {"dataset": "small"})

    def test_empty_user_info_is_none(self) -> None:
        _, candidate = evaluate(make_result([0.5]), Strategy.MINIMUM, None, user_info={})
        assert candidate is not None
        self.assertIsNone(candidate.user_info)

    def test_zero_average_raises(self) -> None:
        with self.assertRaises(ZeroMeasurementError):
            evaluate(make_result([0.0, 0.0]), Strategy.MINIMUM, None)


class TestCandidate(unittest.TestCase):
    def test_keeps_stored_tolerance(self) -> None:
        baseline = make_baseline(1.0, tolerance=3.0)
        _, candidate = evaluate(make_result([1.02] * 3), Strategy.AVERAGE, baseline)
        assert candidate is not None
        self.assertEqual(candidate.tolerance, 3.0)
        self.assertAlmostEqual(candidate.measurement, 1.02)

    def test_keeps_stored_user_info(self) -> None:
        baseline = make_baseline(1.0, user_info={"dataset": "large"})
        _, candidate = evaluate(make_result([1.0] * 3), Strategy.AVERAGE, baseline)
        assert candidate is not None
        self.assertEqual(candidate.user_info, {"dataset": "large"})

    def test_caller_user_info_replaces_stored(self) -> None:
        baseline = make_baseline(1.0, user_info={"dataset": "large"})
        _, candidate = evaluate(
            make_result([1.0] * 3), Strategy.AVERAGE, baseline, user_info={"dataset": "xl"}
        )
        assert candidate is not None
        self.assertEqual(candidate.user_info, {"dataset": "xl"})

    def test_regression_still_stages_candidate(self) -> None:
        _, candidate = evaluate(make_result([2.0] * 3), Strategy.AVERAGE, make_baseline(1.0))
        assert candidate is not None
        self.assertEqual(candidate.measurement, 2.0)


class TestStrategyMismatch(unittest.TestCase):
    def test_logs_warning(self) -> None:
        baseline = make_baseline(1.0, strategy=Strategy.MINIMUM)
        with self.assertLogs("perfgate", level="WARNING") as logs:
            verdict, candidate = evaluate(make_result([1.0] * 3), Strategy.AVERAGE, baseline)
        self.assertIn("minimum", logs.output[0])
        self.assertIs(verdict.strategy, Strategy.AVERAGE)
        assert candidate is not None
        self.assertIs(candidate.strategy, Strategy.AVERAGE)


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class TestDescribe(unittest.TestCase):
    def setUp(self) -> None:
        self.baseline = make_baseline(1.0)

    def test_within_tolerance_message(self) -> None:
        verdict, _ = evaluate(make_result([1.05] * 3), Strategy.AVERAGE, self.baseline)
        self.assertEqual(
            verdict.describe(),
            "Strategy: average, baseline measurement: 1, new measurement: 1.05, "
            "which is worse by 5% (but within the margin of 10%).",
        )

    def test_regressed_message(self) -> None:
        verdict, _ = evaluate(make_result([1.2] * 3), Strategy.AVERAGE, self.baseline)
        self.assertEqual(
            verdict.describe(),
            "Strategy: average, baseline measurement: 1, new measurement: 1.2, "
            "which is worse by 20% (max allowed deviation is 10%).",
        )

    def test_improved_message(self) -> None:
        verdict, _ = evaluate(make_result([0.9] * 3), Strategy.AVERAGE, self.baseline)
        self.assertEqual(
            verdict.describe(),
            "Strategy: average, baseline measurement: 1, new measurement: 0.9, "
            "which is better by 10%.",
        )

    def test_missing_message(self) -> None:
        verdict, _ = evaluate(make_result([0.25]), Strategy.MINIMUM, None)
        self.assertIn("no baseline recorded", verdict.describe())
        self.assertIn("0.25", verdict.describe())

    def test_sub_millisecond_measurements_keep_their_digits(self) -> None:
        verdict, _ = evaluate(
            make_result([0.00014] * 3), Strategy.AVERAGE, make_baseline(0.0001)
        )
        text = verdict.describe()
        self.assertIn("baseline measurement: 0.0001,", text)
        self.assertIn("new measurement: 0.00014,", text)
        self.assertIn("worse by 40%", text)

    def test_missing_percent_reads_as_zero(self) -> None:
        verdict = Verdict(
            kind=VerdictKind.REGRESSED,
            strategy=Strategy.AVERAGE,
            baseline_measurement=1.0,
            new_measurement=1.2,
            tolerance=10.0,
        )
        self.assertIn("worse by 0%", verdict.describe())


class TestFormatNumber(unittest.TestCase):
    def test_strips_trailing_zeros(self) -> None:
        self.assertEqual(format_number(1.5), "1.5")
        self.assertEqual(format_number(2.0), "2")

    def test_rounds(self) -> None:
        self.assertEqual(format_number(19.999999999999996), "20")
        self.assertEqual(format_number(0.12345), "0.123")

    def test_negative_zero(self) -> None:
        self.assertEqual(format_number(-0.0001), "0")

    def test_integer_precision(self) -> None:
        self.assertEqual(format_number(12.6, precision=0), "13")


class TestFormatSeconds(unittest.TestCase):
    def test_small_values_use_significant_digits(self) -> None:
        self.assertEqual(format_seconds(0.000123456), "0.0001235")
        self.assertEqual(format_seconds(0.25), "0.25")

    def test_large_values_match_format_number(self) -> None:
        self.assertEqual(format_seconds(1.05), "1.05")
        self.assertEqual(format_seconds(0.0), "0")


if __name__ == "__main__":
    unittest.main()

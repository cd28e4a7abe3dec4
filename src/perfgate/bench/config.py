"""Benchmark options and profile loading.

Handles:
- The options a benchmark invocation recognizes, with their defaults.
- Loading options from a YAML profile.
- Merging CLI options with profile values.
- Validating the final options before execution.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from perfgate.bench.baselines import DEFAULT_TOLERANCE, Strategy
from perfgate.bench.stats import (
    DEFAULT_MAX_RELATIVE_STANDARD_DEVIATION,
    DEFAULT_STANDARD_DEVIATION_NEGLIGIBILITY_THRESHOLD,
)

log = logging.getLogger("perfgate")


# ---------------------------------------------------------------------------
# BenchmarkOptions
# ---------------------------------------------------------------------------


@dataclass
class BenchmarkOptions:
    """Resolved options for benchmark invocations."""

    # Iteration control
    execution_count: int = 10
    strategy: Strategy = Strategy.MINIMUM

    # Failure policy
    allow_failure: bool = False

    # Noise gate (average strategy only)
    max_relative_standard_deviation: float = DEFAULT_MAX_RELATIVE_STANDARD_DEVIATION
    standard_deviation_negligibility_threshold: float = (
        DEFAULT_STANDARD_DEVIATION_NEGLIGIBILITY_THRESHOLD
    )

    # Baselines
    default_tolerance: float = DEFAULT_TOLERANCE  # for newly created baselines
    overwrite: bool = False  # write staged baselines instead of printing them
    baselines_dir: Path | None = None
    user_info: dict[str, str] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


@dataclass
class ValidationError:
    """A single configuration validation error."""

    field: str
    message: str
    severity: str = "error"  # "error" or "warning"


def validate_options(options: BenchmarkOptions) -> list[ValidationError]:
    """Validate benchmark options.

    Returns a list of validation errors.  Empty list means valid.
    """
    errors: list[ValidationError] = []

    if options.execution_count < 1:
        errors.append(
            ValidationError(
                field="execution_count",
                message=f"Execution count must be positive (got {options.execution_count}).",
            )
        )
    elif options.execution_count == 1 and options.strategy is Strategy.AVERAGE:
        errors.append(
            ValidationError(
                field="execution_count",
                message=(
                    "The average strategy needs at least 2 executions to "
                    "compute a standard deviation."
                ),
            )
        )
    elif options.execution_count < 3:
        errors.append(
            ValidationError(
                field="execution_count",
                message=(
                    f"Only {options.execution_count} executions; results will be "
                    f"sensitive to noise."
                ),
                severity="warning",
            )
        )

    if options.max_relative_standard_deviation < 0:
        errors.append(
            ValidationError(
                field="max_relative_standard_deviation",
                message="Max relative standard deviation cannot be negative.",
            )
        )

    if options.standard_deviation_negligibility_threshold < 0:
        errors.append(
            ValidationError(
                field="standard_deviation_negligibility_threshold",
                message="Standard deviation negligibility threshold cannot be negative.",
            )
        )

    if options.default_tolerance < 0:
        errors.append(
            ValidationError(
                field="default_tolerance",
                message="Default tolerance cannot be negative.",
            )
        )

    if options.baselines_dir is not None and options.baselines_dir.exists():
        if not options.baselines_dir.is_dir():
            errors.append(
                ValidationError(
                    field="baselines_dir",
                    message=f"Baselines path is not a directory: {options.baselines_dir}",
                )
            )
    elif options.baselines_dir is not None and not options.overwrite:
        errors.append(
            ValidationError(
                field="baselines_dir",
                message=(
                    f"Baselines directory does not exist: {options.baselines_dir}. "
                    f"It will be created when baselines are overwritten."
                ),
                severity="warning",
            )
        )

    return errors


def check_options(options: BenchmarkOptions) -> None:
    """Log validation warnings and raise on validation errors.

    Raises:
        ValueError: If any validation error has ``error`` severity.
    """
    errors = validate_options(options)
    for w in errors:
        if w.severity == "warning":
            log.warning("Config warning: %s: %s", w.field, w.message)
    fatal = [e for e in errors if e.severity == "error"]
    if fatal:
        messages = [f"  {e.field}: {e.message}" for e in fatal]
        raise ValueError("Invalid benchmark options:\n" + "\n".join(messages))


# ---------------------------------------------------------------------------
# YAML profile loading
# ---------------------------------------------------------------------------


def load_profile(profile_path: Path) -> dict[str, Any]:
    """Load benchmark options from a YAML file.

    Profile format::

        execution_count: 20
        strategy: average
        allow_failure: false
        max_relative_standard_deviation: 10.0
        standard_deviation_negligibility_threshold: 0.05
        default_tolerance: 5.0
        baselines_dir: "PerformanceBaselines"
        user_info:
          dataset: "large"

    Returns:
        The parsed YAML as a dict.
    """
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Profile must be a YAML mapping, got {type(data).__name__}")

    return data


def parse_strategy(value: str | Strategy) -> Strategy:
    """Parse a strategy name.

    Raises:
        ValueError: For names other than ``minimum`` and ``average``.
    """
    try:
        return Strategy(value)
    except ValueError:
        valid = ", ".join(s.value for s in Strategy)
        raise ValueError(f"Unknown strategy '{value}'. Valid strategies: {valid}") from None


def options_from_profile(
    profile_data: dict[str, Any],
    *,
    cli_overrides: dict[str, Any] | None = None,
) -> BenchmarkOptions:
    """Build BenchmarkOptions from a parsed YAML profile.

    CLI overrides take precedence over profile values. A ``None``
    override means "not given on the command line".

    Args:
        profile_data: Parsed YAML profile dict (may be empty).
        cli_overrides: Dict of CLI option values. Keys match
            BenchmarkOptions field names.
    """
    cli = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    merged = {**profile_data, **cli}

    options = BenchmarkOptions()
    if "execution_count" in merged:
        options.execution_count = int(merged["execution_count"])
    if "strategy" in merged:
        options.strategy = parse_strategy(merged["strategy"])
    if "allow_failure" in merged:
        options.allow_failure = bool(merged["allow_failure"])
    if "max_relative_standard_deviation" in merged:
        options.max_relative_standard_deviation = float(merged["max_relative_standard_deviation"])
    if "standard_deviation_negligibility_threshold" in merged:
        options.standard_deviation_negligibility_threshold = float(
            merged["standard_deviation_negligibility_threshold"]
        )
    if "default_tolerance" in merged:
        options.default_tolerance = float(merged["default_tolerance"])
    if "overwrite" in merged:
        options.overwrite = bool(merged["overwrite"])
    if merged.get("baselines_dir"):
        options.baselines_dir = Path(merged["baselines_dir"])

    user_info = merged.get("user_info") or {}
    if not isinstance(user_info, dict):
        raise ValueError("Profile 'user_info' must be a mapping of strings")
    options.user_info = {str(k): str(v) for k, v in user_info.items()}

    return options

"""Terminal display formatting for benchmark results and baselines.

Produces the one-line result summary, verdict messages, catalog and
registry listings, and the copy-paste instructions for staged baseline
documents. No external dependencies.
"""

from __future__ import annotations

import math

from perfgate.bench.baselines import Catalog, Registry, UpdateReport
from perfgate.bench.errors import InsufficientSamplesError, ZeroMeasurementError
from perfgate.bench.evaluate import Verdict, VerdictKind, format_number, format_seconds
from perfgate.bench.stats import BenchmarkResult
from perfgate.bench.system import Fingerprint


def _format_time(seconds: float, precision: int = 2) -> str:
    """Format a time value with adaptive units."""
    if math.isnan(seconds):
        return "N/A"
    if seconds < 0.001:
        return f"{seconds * 1_000_000:.0f}µs"
    if seconds < 1:
        return f"{seconds * 1000:.{precision}f}ms"
    if seconds < 60:
        return f"{seconds:.{precision}f}s"
    minutes = int(seconds // 60)
    secs = seconds % 60
    return f"{minutes}m{secs:.0f}s"


# ---------------------------------------------------------------------------
# Results and verdicts
# ---------------------------------------------------------------------------


def format_result(result: BenchmarkResult) -> str:
    """One-line summary of a benchmark result."""
    try:
        rsd = f"{format_number(result.relative_standard_deviation)}%"
    except (InsufficientSamplesError, ZeroMeasurementError):
        rsd = "N/A"
    parts = [
        f"Average: {format_seconds(result.average)} seconds",
        f"minimum: {format_seconds(result.minimum)} seconds",
        f"relative standard deviation: {rsd}",
        f"maxPercentRelativeStandardDeviation: "
        f"{format_number(result.max_relative_standard_deviation)}%",
        f"maxStandardDeviation: "
        f"{format_number(result.standard_deviation_negligibility_threshold)}",
    ]
    return ", ".join(parts)


_VERDICT_LABELS = {
    VerdictKind.IMPROVED: "improved",
    VerdictKind.WITHIN_TOLERANCE: "within tolerance",
    VerdictKind.REGRESSED: "REGRESSED",
    VerdictKind.INCONCLUSIVE: "inconclusive",
    VerdictKind.BASELINE_MISSING: "no baseline",
}


def format_verdict(key: str, verdict: Verdict) -> str:
    """Verdict line prefixed with the test key, as logged by the runner."""
    label = _VERDICT_LABELS[verdict.kind]
    if verdict.downgraded:
        label += " (failure allowed)"
    return f"{key}: [{label}] {verdict.describe()}"


# ---------------------------------------------------------------------------
# Registry and catalogs
# ---------------------------------------------------------------------------


def format_registry(registry: Registry, current: Fingerprint | None = None) -> str:
    """List registered destinations, marking the one equal to *current*."""
    if not registry:
        return "No destinations registered."
    lines: list[str] = []
    for dest_id in sorted(registry):
        fp = registry[dest_id]
        marker = "*" if current is not None and fp == current else " "
        lines.append(f"{marker} {dest_id}  {fp.cpu_kind}, {fp.platform}, {fp.arch}")
    return "\n".join(lines)


def format_catalog(catalog: Catalog) -> str:
    """Aligned table of every baseline in a catalog."""
    rows: list[tuple[str, str, str, str]] = []
    for group in sorted(catalog):
        for name in sorted(catalog[group]):
            b = catalog[group][name]
            rows.append(
                (
                    f"{group}.{name}",
                    b.strategy.value,
                    _format_time(b.measurement),
                    f"±{format_number(b.tolerance)}%",
                )
            )
    if not rows:
        return "No baselines recorded."

    headers = ("Test", "Strategy", "Baseline", "Tolerance")
    widths = [max(len(h), *(len(r[i]) for r in rows)) for i, h in enumerate(headers)]
    lines = [
        "  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip(),
        "  ".join("─" * w for w in widths),
    ]
    for row in rows:
        lines.append("  ".join(c.ljust(w) for c, w in zip(row, widths)).rstrip())
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Staged documents
# ---------------------------------------------------------------------------


def format_update_report(report: UpdateReport) -> str:
    """Describe what applying pending updates did (or would do).

    In dry-run mode, new destinations and new baselines are printed in
    full with instructions for applying them by hand; refreshed values
    of existing baselines are only mentioned.
    """
    if not report.documents:
        return "No baseline changes."

    sections: list[str] = []
    for doc in report.documents:
        if report.overwrite:
            sections.append(f"Wrote {doc.path}")
            continue

        if doc.kind == "registry":
            ids = ", ".join(doc.new_entries)
            sections.append(
                f"Destination not found. A new destination {ids} will be created.\n\n"
                f"If running on CI, you can copy the following YAML and replace the "
                f"contents of {doc.path} with it:\n\n{doc.content}"
            )
        elif doc.new_entries:
            tests = ", ".join(doc.new_entries)
            sections.append(
                f"Baseline not found for {tests}. A new baseline will be created.\n\n"
                f"If running on CI, you can copy the following YAML and replace the "
                f"contents of {doc.path} with it:\n\n{doc.content}"
            )
        if doc.updated_entries:
            tests = ", ".join(doc.updated_entries)
            sections.append(
                f"Updated measurements for {tests} are staged for {doc.path}; "
                f"enable overwrite to record them."
            )
    return "\n\n".join(sections)

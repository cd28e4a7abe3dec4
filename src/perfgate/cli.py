"""Command-line interface for perfgate.

Subcommands:
    perfgate system         Print this machine's destination fingerprint
    perfgate destinations   List the destinations registered in a baselines dir
    perfgate show           Display the baselines recorded for a destination
    perfgate run            Benchmark a callable against its baseline
"""

from __future__ import annotations

import importlib
import json
import os
import sys
from pathlib import Path
from typing import Any, Callable

import click

from perfgate import __version__
from perfgate.bench.baselines import BaselineStore
from perfgate.bench.errors import BenchmarkError, BenchmarkFailure, FingerprintError
from perfgate.logging import get_logger, setup_logging

log = get_logger("cli")


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """perfgate: catch performance regressions against per-machine baselines."""


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    raise SystemExit(1)


def _load_target(target: str) -> tuple[str, str, Callable[[], Any]]:
    """Import ``module:callable`` and return (module, attribute, callable)."""
    module_name, sep, attr = target.partition(":")
    if not sep or not module_name or not attr:
        raise click.BadParameter(
            f"expected 'module:callable', got {target!r}", param_hint="TARGET"
        )
    # Resolve modules from the working directory, as `python -m` does.
    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise click.BadParameter(
            f"cannot import module {module_name!r}: {exc}", param_hint="TARGET"
        ) from exc
    obj: Any = module
    for part in attr.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as exc:
            raise click.BadParameter(
                f"module {module_name!r} has no attribute {attr!r}", param_hint="TARGET"
            ) from exc
    if not callable(obj):
        raise click.BadParameter(f"{target!r} is not callable", param_hint="TARGET")
    return module_name, attr, obj


# ---------------------------------------------------------------------------
# system
# ---------------------------------------------------------------------------


@main.command("system")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
def system_cmd(as_json: bool) -> None:
    """Print the fingerprint that identifies this machine's baselines."""
    from perfgate.bench.system import current_fingerprint, format_fingerprint

    try:
        fingerprint = current_fingerprint()
    except FingerprintError as exc:
        _fail(str(exc))
        return

    if as_json:
        click.echo(json.dumps(fingerprint.to_dict(), indent=2, sort_keys=True))
    else:
        click.echo(format_fingerprint(fingerprint))


# ---------------------------------------------------------------------------
# destinations
# ---------------------------------------------------------------------------


@main.command()
@click.argument("baselines_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
def destinations(baselines_dir: Path) -> None:
    """List registered destinations; '*' marks this machine."""
    from perfgate.bench.display import format_registry
    from perfgate.bench.system import current_fingerprint

    store = BaselineStore(baselines_dir)
    try:
        registry = store.load_registry()
    except BenchmarkError as exc:
        _fail(str(exc))
        return

    try:
        current = current_fingerprint()
    except FingerprintError as exc:
        log.warning("Cannot identify this machine: %s", exc)
        current = None
    click.echo(format_registry(registry, current))


# ---------------------------------------------------------------------------
# show
# ---------------------------------------------------------------------------


@main.command()
@click.argument("baselines_dir", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.option(
    "--destination",
    "destination_id",
    type=str,
    default=None,
    help="Destination id (default: this machine's).",
)
def show(baselines_dir: Path, destination_id: str | None) -> None:
    """Display the baselines recorded for a destination."""
    from perfgate.bench.baselines import find_destination
    from perfgate.bench.display import format_catalog
    from perfgate.bench.system import current_fingerprint

    store = BaselineStore(baselines_dir)
    try:
        registry = store.load_registry()
        if destination_id is None:
            destination_id = find_destination(registry, current_fingerprint())
            if destination_id is None:
                click.echo(f"This machine has no destination in {baselines_dir}.")
                return
        elif destination_id not in registry:
            _fail(f"Unknown destination: {destination_id}")
            return
        catalog = store.load_catalog(destination_id)
    except BenchmarkError as exc:
        _fail(str(exc))
        return

    click.echo(f"Destination {destination_id}")
    click.echo()
    click.echo(format_catalog(catalog))


# ---------------------------------------------------------------------------
# run
# ---------------------------------------------------------------------------


@main.command()
@click.argument("target")
@click.option(
    "--baselines-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Baselines directory (required unless set in the profile).",
)
@click.option("--group", type=str, default=None, help="Test group (default: the module).")
@click.option("--name", type=str, default=None, help="Test name (default: the callable).")
@click.option(
    "--profile",
    "profile_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML profile with benchmark options.",
)
@click.option(
    "--execution-count",
    type=int,
    default=None,
    help="Measured executions (default: 10).",
)
@click.option(
    "--strategy",
    type=click.Choice(["minimum", "average"]),
    default=None,
    help="Statistic compared with the baseline (default: minimum).",
)
@click.option(
    "--allow-failure",
    is_flag=True,
    default=None,
    help="Report regressions and noisy results without failing.",
)
@click.option(
    "--overwrite",
    is_flag=True,
    default=None,
    help="Write new baselines instead of printing them.",
)
@click.option("-v", "--verbose", is_flag=True, default=False, help="Enable debug output.")
@click.option("-q", "--quiet", is_flag=True, default=False, help="Only show warnings and errors.")
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write debug logs to this file.",
)
def run(  # noqa: PLR0913
    target: str,
    baselines_dir: Path | None,
    group: str | None,
    name: str | None,
    profile_path: Path | None,
    execution_count: int | None,
    strategy: str | None,
    allow_failure: bool | None,
    overwrite: bool | None,
    verbose: bool,
    quiet: bool,
    log_file: Path | None,
) -> None:
    """Benchmark TARGET ('module:callable') against its recorded baseline.

    Exits with status 1 when the result regressed beyond the baseline's
    tolerance or was too noisy to judge, unless --allow-failure is given.

    \b
    Examples:
        # Dry run: print the baselines that would be recorded
        perfgate run mypkg.benchmarks:parse_large --baselines-dir ./PerformanceBaselines

        # Record them
        perfgate run mypkg.benchmarks:parse_large --baselines-dir ./PerformanceBaselines \\
            --overwrite
    """
    from perfgate.bench.config import load_profile, options_from_profile
    from perfgate.bench.display import format_update_report
    from perfgate.bench.runner import BenchmarkRunner

    setup_logging(verbose=verbose, quiet=quiet, log_file=log_file)

    module_name, attr, workload = _load_target(target)

    cli_overrides: dict[str, Any] = {
        "execution_count": execution_count,
        "strategy": strategy,
        "allow_failure": allow_failure,
        "overwrite": overwrite,
        "baselines_dir": baselines_dir,
    }
    try:
        if profile_path:
            options = options_from_profile(
                load_profile(profile_path), cli_overrides=cli_overrides
            )
        else:
            options = options_from_profile({}, cli_overrides=cli_overrides)
    except ValueError as exc:
        _fail(str(exc))
        return
    if options.baselines_dir is None:
        raise click.UsageError("--baselines-dir is required (or set baselines_dir in the profile)")

    store = BaselineStore(options.baselines_dir)
    try:
        runner = BenchmarkRunner(store, options)
    except ValueError as exc:
        _fail(str(exc))
        return

    failure: BenchmarkFailure | None = None
    try:
        outcome = runner.benchmark(group or module_name, name or attr, workload)
        pending = outcome.pending
    except BenchmarkFailure as exc:
        failure = exc
        pending = exc.pending
    except BenchmarkError as exc:
        _fail(str(exc))
        return

    if pending is not None:
        # A failing result is only ever printed, never recorded.
        write = options.overwrite and failure is None
        try:
            report = store.apply([pending], overwrite=write)
        except (BenchmarkError, OSError) as exc:
            _fail(f"Cannot apply baseline update: {exc}")
            return
        click.echo(format_update_report(report))

    if failure is not None:
        click.echo(f"FAILED: {failure}", err=True)
        raise SystemExit(1)

"""Baseline registry, catalogs and the update protocol.

On disk, a baselines directory holds::

    destinations.yaml      registry: destination id -> Fingerprint
    <destination-id>.yaml  catalog: group -> test name -> Baseline

A destination id is an uppercase UUID generated the first time a
machine is benchmarked. Lookup always goes from fingerprint to id, never
the other way round, and an id is never reassigned to a different
fingerprint.

Updates are staged as pure merges (:func:`merge_baseline`,
:func:`stage_update`) and only reach the disk through
:meth:`BaselineStore.apply` with ``overwrite=True``. Without it the
rendered documents are returned so they can be printed and applied by
hand.
"""

from __future__ import annotations

import enum
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml

from perfgate.bench.errors import MalformedDocumentError
from perfgate.bench.system import Fingerprint

log = logging.getLogger("perfgate")

REGISTRY_FILENAME = "destinations.yaml"
DEFAULT_TOLERANCE = 10.0


# ---------------------------------------------------------------------------
# Baseline
# ---------------------------------------------------------------------------


class Strategy(str, enum.Enum):
    """Which statistic of a benchmark is compared against the baseline."""

    MINIMUM = "minimum"
    AVERAGE = "average"


@dataclass(frozen=True)
class Baseline:
    """Reference measurement and tolerance for one test on one destination."""

    strategy: Strategy
    measurement: float  # seconds
    tolerance: float = DEFAULT_TOLERANCE  # max percent deviation
    user_info: dict[str, str] | None = None

    def __post_init__(self) -> None:
        if not self.measurement > 0:
            raise ValueError(f"baseline measurement must be positive (got {self.measurement})")
        if self.tolerance < 0:
            raise ValueError(f"baseline tolerance cannot be negative (got {self.tolerance})")

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a catalog entry mapping."""
        data: dict[str, Any] = {
            "strategy": self.strategy.value,
            "measurement": self.measurement,
            "maxPercentRelativeStandardDeviation": self.tolerance,
        }
        if self.user_info:
            data["userInfo"] = dict(self.user_info)
        return data

    @classmethod
    def from_dict(cls, data: Any, *, source: str = "baseline") -> Baseline:
        """Deserialize a catalog entry mapping.

        Raises:
            MalformedDocumentError: On missing keys, an unknown strategy,
                a non-numeric or non-positive measurement, or a
                ``userInfo`` that is not a mapping.
        """
        if not isinstance(data, dict):
            raise MalformedDocumentError(
                source, f"expected a mapping, got {type(data).__name__}"
            )
        for key in ("strategy", "measurement", "maxPercentRelativeStandardDeviation"):
            if key not in data:
                raise MalformedDocumentError(source, f"missing required key '{key}'")

        try:
            strategy = Strategy(data["strategy"])
        except (TypeError, ValueError) as exc:
            raise MalformedDocumentError(
                source, f"unknown strategy {data['strategy']!r}"
            ) from exc

        user_info = data.get("userInfo")
        if user_info is not None:
            if not isinstance(user_info, dict):
                raise MalformedDocumentError(source, "'userInfo' must be a mapping")
            user_info = {str(k): str(v) for k, v in user_info.items()}

        try:
            return cls(
                strategy=strategy,
                measurement=float(data["measurement"]),
                tolerance=float(data["maxPercentRelativeStandardDeviation"]),
                user_info=user_info or None,
            )
        except (TypeError, ValueError) as exc:
            raise MalformedDocumentError(source, str(exc)) from exc


Registry = dict[str, Fingerprint]
Catalog = dict[str, dict[str, Baseline]]


# ---------------------------------------------------------------------------
# YAML codec
# ---------------------------------------------------------------------------


def _dump_yaml(data: dict[str, Any]) -> str:
    return yaml.safe_dump(
        data,
        default_flow_style=False,
        sort_keys=True,
        width=90,
        allow_unicode=True,
    )


def _load_yaml_mapping(text: str, source: str) -> dict[Any, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise MalformedDocumentError(source, f"invalid YAML: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedDocumentError(
            source, f"expected a mapping, got {type(data).__name__}"
        )
    return data


def dump_registry(registry: Registry) -> str:
    """Render a registry document."""
    return _dump_yaml({dest_id: fp.to_dict() for dest_id, fp in registry.items()})


def load_registry_text(text: str, *, source: str = REGISTRY_FILENAME) -> Registry:
    """Decode a registry document. Empty text is an empty registry."""
    data = _load_yaml_mapping(text, source)
    return {
        str(dest_id): Fingerprint.from_dict(record, source=f"{source}[{dest_id}]")
        for dest_id, record in data.items()
    }


def dump_catalog(catalog: Catalog) -> str:
    """Render a catalog document."""
    return _dump_yaml(
        {
            group: {name: baseline.to_dict() for name, baseline in entries.items()}
            for group, entries in catalog.items()
        }
    )


def load_catalog_text(text: str, *, source: str = "catalog") -> Catalog:
    """Decode a catalog document. Empty text is an empty catalog."""
    data = _load_yaml_mapping(text, source)
    catalog: Catalog = {}
    for group, entries in data.items():
        if not isinstance(entries, dict):
            raise MalformedDocumentError(source, f"group '{group}' must be a mapping")
        catalog[str(group)] = {
            str(name): Baseline.from_dict(entry, source=f"{source}[{group}][{name}]")
            for name, entry in entries.items()
        }
    return catalog


# ---------------------------------------------------------------------------
# Lookup and merge
# ---------------------------------------------------------------------------


def find_destination(registry: Registry, fingerprint: Fingerprint) -> str | None:
    """Return the id registered for *fingerprint*, or None.

    Matching is exact equality on every attribute. No match is the
    normal state the first time a machine runs a benchmark.
    """
    for dest_id in sorted(registry):
        if registry[dest_id] == fingerprint:
            return dest_id
    return None


def lookup_baseline(catalog: Catalog, group: str, name: str) -> Baseline | None:
    """Return the baseline stored for ``group``/``name``, or None."""
    return catalog.get(group, {}).get(name)


def merge_baseline(catalog: Catalog, group: str, name: str, baseline: Baseline) -> Catalog:
    """Return a copy of *catalog* with one entry inserted or replaced.

    The input catalog is not modified and no other entry changes.
    """
    merged = {g: dict(entries) for g, entries in catalog.items()}
    merged.setdefault(group, {})[name] = baseline
    return merged


def new_destination_id() -> str:
    """Generate a fresh destination id."""
    return str(uuid.uuid4()).upper()


@dataclass
class StagedUpdate:
    """Registry and catalog after merging one baseline."""

    registry: Registry
    catalog: Catalog
    destination_id: str
    is_new_destination: bool
    is_new_entry: bool


def stage_update(
    registry: Registry,
    catalog: Catalog,
    destination_id: str | None,
    fingerprint: Fingerprint,
    group: str,
    name: str,
    baseline: Baseline,
) -> StagedUpdate:
    """Merge *baseline* for ``group``/``name`` into copies of the documents.

    If *destination_id* is None a new id is generated and *fingerprint*
    is registered under it; *catalog* is then the (usually empty) catalog
    for that new destination.

    Raises:
        ValueError: If *destination_id* is already registered to a
            different fingerprint.
    """
    is_new_destination = destination_id is None
    if destination_id is None:
        destination_id = new_destination_id()
        while destination_id in registry:
            destination_id = new_destination_id()
    else:
        registered = registry.get(destination_id)
        if registered is not None and registered != fingerprint:
            raise ValueError(
                f"destination {destination_id} is registered to a different fingerprint"
            )

    merged_registry = dict(registry)
    merged_registry[destination_id] = fingerprint

    return StagedUpdate(
        registry=merged_registry,
        catalog=merge_baseline(catalog, group, name, baseline),
        destination_id=destination_id,
        is_new_destination=is_new_destination,
        is_new_entry=lookup_baseline(catalog, group, name) is None,
    )


# ---------------------------------------------------------------------------
# Pending updates and their application
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PendingUpdate:
    """A baseline candidate waiting for the caller to apply it."""

    group: str
    name: str
    fingerprint: Fingerprint
    baseline: Baseline
    destination_id: str | None = None  # None if the machine was unknown

    @property
    def key(self) -> str:
        return f"{self.group}.{self.name}"


@dataclass
class RenderedDocument:
    """A registry or catalog document produced by applying updates."""

    path: Path
    content: str
    kind: str  # "registry" or "catalog"
    destination_id: str
    new_destination: bool = False
    new_entries: list[str] = field(default_factory=list)
    updated_entries: list[str] = field(default_factory=list)
    written: bool = False


@dataclass
class UpdateReport:
    """Outcome of :meth:`BaselineStore.apply`."""

    overwrite: bool
    documents: list[RenderedDocument] = field(default_factory=list)

    @property
    def written(self) -> bool:
        return bool(self.documents) and all(d.written for d in self.documents)

    @property
    def new_destinations(self) -> list[str]:
        for doc in self.documents:
            if doc.kind == "registry":
                return list(doc.new_entries)
        return []


def _atomic_write(path: Path, content: str) -> None:
    """Write content to a file atomically using a temp file and os.replace."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class BaselineStore:
    """A baselines directory: one registry plus one catalog per destination."""

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    @property
    def registry_path(self) -> Path:
        return self.root / REGISTRY_FILENAME

    def catalog_path(self, destination_id: str) -> Path:
        return self.root / f"{destination_id}.yaml"

    def load_registry(self) -> Registry:
        """Load the registry. A missing file is an empty registry.

        Raises:
            MalformedDocumentError: If the file cannot be decoded.
        """
        path = self.registry_path
        if not path.exists():
            log.debug("No registry at %s", path)
            return {}
        return load_registry_text(path.read_text(encoding="utf-8"), source=str(path))

    def load_catalog(self, destination_id: str) -> Catalog:
        """Load the catalog of one destination. A missing file is empty.

        Raises:
            MalformedDocumentError: If the file cannot be decoded.
        """
        path = self.catalog_path(destination_id)
        if not path.exists():
            log.debug("No catalog at %s", path)
            return {}
        return load_catalog_text(path.read_text(encoding="utf-8"), source=str(path))

    def resolve(self, fingerprint: Fingerprint) -> tuple[str | None, Catalog]:
        """Find the destination for *fingerprint* and load its catalog."""
        destination_id = find_destination(self.load_registry(), fingerprint)
        if destination_id is None:
            return None, {}
        return destination_id, self.load_catalog(destination_id)

    def apply(
        self,
        updates: Iterable[PendingUpdate],
        *,
        overwrite: bool = False,
    ) -> UpdateReport:
        """Merge pending updates in order and render the changed documents.

        Destinations are re-resolved by fingerprint as updates are
        folded in, so several updates from a machine that was not yet
        registered end up under a single new id.

        Documents are written (atomically) only when *overwrite* is
        True; otherwise they are only rendered into the report.
        """
        loaded = self.load_registry()
        registry = loaded
        catalogs: dict[str, Catalog] = {}
        new_destinations: set[str] = set()
        new_entries: dict[str, list[str]] = {}
        updated_entries: dict[str, list[str]] = {}

        for pending in updates:
            destination_id = find_destination(registry, pending.fingerprint)
            if (
                destination_id is None
                and pending.destination_id is not None
                and pending.destination_id not in registry
            ):
                # Registered when measured but missing from the registry now.
                destination_id = pending.destination_id
            if destination_id is None:
                catalog: Catalog = {}
            elif destination_id in catalogs:
                catalog = catalogs[destination_id]
            else:
                catalog = self.load_catalog(destination_id)

            staged = stage_update(
                registry,
                catalog,
                destination_id,
                pending.fingerprint,
                pending.group,
                pending.name,
                pending.baseline,
            )
            registry = staged.registry
            catalogs[staged.destination_id] = staged.catalog
            if staged.is_new_destination or staged.destination_id not in loaded:
                new_destinations.add(staged.destination_id)
            bucket = new_entries if staged.is_new_entry else updated_entries
            bucket.setdefault(staged.destination_id, []).append(pending.key)

        report = UpdateReport(overwrite=overwrite)
        # The registry only changes when a destination is added.
        if new_destinations:
            report.documents.append(
                RenderedDocument(
                    path=self.registry_path,
                    content=dump_registry(registry),
                    kind="registry",
                    destination_id=min(new_destinations),
                    new_destination=True,
                    new_entries=sorted(new_destinations),
                )
            )
        for destination_id, catalog in catalogs.items():
            report.documents.append(
                RenderedDocument(
                    path=self.catalog_path(destination_id),
                    content=dump_catalog(catalog),
                    kind="catalog",
                    destination_id=destination_id,
                    new_destination=destination_id in new_destinations,
                    new_entries=new_entries.get(destination_id, []),
                    updated_entries=updated_entries.get(destination_id, []),
                )
            )

        if overwrite and report.documents:
            self.root.mkdir(parents=True, exist_ok=True)
            for doc in report.documents:
                _atomic_write(doc.path, doc.content)
                doc.written = True
                log.debug("Wrote %s", doc.path)
        return report

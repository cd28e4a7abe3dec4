"""Hardware/OS fingerprinting of the machine running a benchmark.

A :class:`Fingerprint` is the identity of a "run destination": two
benchmarks are only comparable if their fingerprints are equal. Only
attributes that stay the same between runs are captured (the rated CPU
frequency, never the current one) so repeated captures on the same
machine compare equal.

Supports Linux (procfs/sysfs) and macOS (sysctl). Each platform has a
:class:`FingerprintProvider`; :func:`default_provider` picks one, and
nothing else in perfgate branches on the platform.
"""

from __future__ import annotations

import functools
import logging
import os
import re
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from perfgate.bench.errors import FingerprintError, MalformedDocumentError

log = logging.getLogger("perfgate")


# ---------------------------------------------------------------------------
# Fingerprint
# ---------------------------------------------------------------------------

# Dataclass field -> document key.
_DOCUMENT_KEYS = {
    "bus_speed_mhz": "busSpeedInMHz",
    "cpu_count": "cpuCount",
    "cpu_kind": "cpuKind",
    "cpu_speed_mhz": "cpuSpeedInMHz",
    "logical_cores_per_package": "logicalCPUCoresPerPackage",
    "model_code": "modelCode",
    "physical_cores_per_package": "physicalCPUCoresPerPackage",
    "platform": "platform",
    "arch": "arch",
}

_OPTIONAL_FIELDS = frozenset({"bus_speed_mhz", "cpu_speed_mhz", "model_code"})


@dataclass(frozen=True)
class Fingerprint:
    """Stable description of the hardware and OS a benchmark ran on."""

    cpu_kind: str
    cpu_count: int  # physical packages (sockets)
    logical_cores_per_package: int
    physical_cores_per_package: int
    platform: str  # OS name and release, e.g. "Linux 6.8.0"
    arch: str
    cpu_speed_mhz: int | None = None
    bus_speed_mhz: int | None = None
    model_code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a document mapping, omitting unknown optional values."""
        data: dict[str, Any] = {}
        for attr, key in _DOCUMENT_KEYS.items():
            value = getattr(self, attr)
            if value is None and attr in _OPTIONAL_FIELDS:
                continue
            data[key] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], *, source: str = "fingerprint") -> Fingerprint:
        """Deserialize from a document mapping.

        Raises:
            MalformedDocumentError: If a required key is missing or a
                value has the wrong type.
        """
        if not isinstance(data, dict):
            raise MalformedDocumentError(
                source, f"expected a mapping, got {type(data).__name__}"
            )
        kwargs: dict[str, Any] = {}
        for attr, key in _DOCUMENT_KEYS.items():
            if key not in data or data[key] is None:
                if attr in _OPTIONAL_FIELDS:
                    continue
                raise MalformedDocumentError(source, f"missing required key '{key}'")
            kwargs[attr] = data[key]
        try:
            for attr in (
                "cpu_count",
                "logical_cores_per_package",
                "physical_cores_per_package",
                "cpu_speed_mhz",
                "bus_speed_mhz",
            ):
                if attr in kwargs:
                    kwargs[attr] = int(kwargs[attr])
        except (TypeError, ValueError) as exc:
            raise MalformedDocumentError(source, f"invalid numeric value: {exc}") from exc
        for attr in ("cpu_kind", "platform", "arch", "model_code"):
            if attr in kwargs:
                kwargs[attr] = str(kwargs[attr])
        return cls(**kwargs)


class FingerprintProvider(Protocol):
    """Something that can describe the machine we are running on."""

    def capture(self) -> Fingerprint: ...


# ---------------------------------------------------------------------------
# Linux
# ---------------------------------------------------------------------------

_CPUINFO_PATH = Path("/proc/cpuinfo")
_MAX_FREQ_PATH = Path("/sys/devices/system/cpu/cpu0/cpufreq/cpuinfo_max_freq")
_GHZ_SUFFIX = re.compile(r"@\s*([\d.]+)\s*GHz", re.IGNORECASE)


def parse_cpuinfo(text: str) -> list[tuple[str, str]]:
    """Split ``/proc/cpuinfo`` content into ``(key, value)`` pairs.

    Blank lines (processor separators) are skipped.

    Raises:
        FingerprintError: If a non-blank line is not ``key: value``.
    """
    pairs: list[tuple[str, str]] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        if ":" not in line:
            raise FingerprintError(f"unexpected /proc/cpuinfo line: {line!r}")
        key, value = line.split(":", 1)
        pairs.append((key.strip(), value.strip()))
    return pairs


def _first(pairs: list[tuple[str, str]], key: str) -> str | None:
    for k, v in pairs:
        if k == key:
            return v
    return None


def _first_int(pairs: list[tuple[str, str]], key: str) -> int | None:
    value = _first(pairs, key)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


class LinuxFingerprintProvider:
    """Fingerprint from ``/proc/cpuinfo``, sysfs and ``uname``."""

    def __init__(
        self,
        cpuinfo_path: Path = _CPUINFO_PATH,
        max_freq_path: Path = _MAX_FREQ_PATH,
    ) -> None:
        self.cpuinfo_path = cpuinfo_path
        self.max_freq_path = max_freq_path

    def capture(self) -> Fingerprint:
        try:
            text = self.cpuinfo_path.read_text()
        except OSError as exc:
            raise FingerprintError(f"cannot read {self.cpuinfo_path}: {exc}") from exc
        pairs = parse_cpuinfo(text)

        # Some architectures (e.g. aarch64) have no "model name".
        cpu_kind = _first(pairs, "model name") or _first(pairs, "Hardware") or "unknown"

        physical_ids = {v for k, v in pairs if k == "physical id"}
        cpu_count = max(len(physical_ids), 1)

        processors = sum(1 for k, _ in pairs if k == "processor")
        logical = _first_int(pairs, "siblings") or max(processors // cpu_count, 1)
        physical = _first_int(pairs, "cpu cores") or logical

        uname = os.uname()
        return Fingerprint(
            cpu_kind=cpu_kind,
            cpu_count=cpu_count,
            logical_cores_per_package=logical,
            physical_cores_per_package=physical,
            platform=f"{uname.sysname} {uname.release}",
            arch=uname.machine,
            cpu_speed_mhz=self._rated_speed_mhz(cpu_kind),
        )

    def _rated_speed_mhz(self, cpu_kind: str) -> int | None:
        """Rated (maximum) CPU frequency in MHz.

        ``cpu MHz`` in cpuinfo tracks frequency scaling and would make
        every capture different, so it is never used.
        """
        try:
            return int(self.max_freq_path.read_text().strip()) // 1000
        except (OSError, ValueError):
            pass
        match = _GHZ_SUFFIX.search(cpu_kind)
        if match:
            return round(float(match.group(1)) * 1000)
        log.debug("No rated CPU frequency available for %r", cpu_kind)
        return None


# ---------------------------------------------------------------------------
# macOS
# ---------------------------------------------------------------------------


def _sysctl(key: str) -> str | None:
    """Read a sysctl string value. Returns None on failure."""
    try:
        proc = subprocess.run(
            ["sysctl", "-n", key],
            capture_output=True,
            text=True,
            timeout=5,
        )
        if proc.returncode == 0 and proc.stdout.strip():
            return proc.stdout.strip()
    except (OSError, subprocess.TimeoutExpired):
        pass
    return None


def _sysctl_int(key: str) -> int | None:
    """Read a sysctl integer value. Returns None on failure."""
    val = _sysctl(key)
    if val is not None:
        try:
            return int(val)
        except ValueError:
            pass
    return None


def _require(value: Any, key: str) -> Any:
    if value is None:
        raise FingerprintError(f"cannot read {key} using sysctl")
    return value


class DarwinFingerprintProvider:
    """Fingerprint from ``sysctl`` on macOS."""

    def capture(self) -> Fingerprint:
        bus_hz = _sysctl_int("hw.busfrequency")
        cpu_hz = _sysctl_int("hw.cpufrequency")
        os_name = _require(_sysctl("kern.ostype"), "kern.ostype")
        os_release = _require(_sysctl("kern.osrelease"), "kern.osrelease")
        logical = _sysctl_int("machdep.cpu.cores_per_package") or _sysctl_int("hw.logicalcpu")
        return Fingerprint(
            cpu_kind=_require(_sysctl("machdep.cpu.brand_string"), "machdep.cpu.brand_string"),
            cpu_count=_sysctl_int("hw.packages") or 1,
            logical_cores_per_package=_require(logical, "machdep.cpu.cores_per_package"),
            physical_cores_per_package=_require(_sysctl_int("hw.physicalcpu"), "hw.physicalcpu"),
            platform=f"{os_name} {os_release}",
            arch=_require(_sysctl("hw.machine"), "hw.machine"),
            # Apple Silicon exposes no frequency sysctls.
            cpu_speed_mhz=cpu_hz // 1_000_000 if cpu_hz is not None else None,
            bus_speed_mhz=bus_hz // 1_000_000 if bus_hz is not None else None,
            model_code=_sysctl("hw.model"),
        )


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def default_provider() -> FingerprintProvider:
    """Return the fingerprint provider for the current platform.

    Raises:
        FingerprintError: On platforms without a provider.
    """
    if sys.platform == "linux":
        return LinuxFingerprintProvider()
    if sys.platform == "darwin":
        return DarwinFingerprintProvider()
    raise FingerprintError(f"benchmarking is not supported on {sys.platform}")


@functools.lru_cache(maxsize=1)
def current_fingerprint() -> Fingerprint:
    """Capture this machine's fingerprint once per process."""
    fingerprint = default_provider().capture()
    log.debug("Captured fingerprint: %s", fingerprint)
    return fingerprint


# ---------------------------------------------------------------------------
# Display helpers
# ---------------------------------------------------------------------------


def format_fingerprint(fingerprint: Fingerprint) -> str:
    """Format a fingerprint for terminal display."""
    lines = [
        "Destination",
        "─" * 11,
    ]

    cores = f"{fingerprint.physical_cores_per_package} cores"
    if fingerprint.logical_cores_per_package != fingerprint.physical_cores_per_package:
        cores += f" / {fingerprint.logical_cores_per_package} threads"
    if fingerprint.cpu_count > 1:
        cores = f"{fingerprint.cpu_count} x {cores}"
    freq = ""
    if fingerprint.cpu_speed_mhz:
        freq = f", {fingerprint.cpu_speed_mhz} MHz"
        if fingerprint.bus_speed_mhz:
            freq += f" (bus {fingerprint.bus_speed_mhz} MHz)"
    lines.append(f"CPU:      {fingerprint.cpu_kind} ({cores}{freq})")

    lines.append(f"OS:       {fingerprint.platform}")
    lines.append(f"Arch:     {fingerprint.arch}")
    if fingerprint.model_code:
        lines.append(f"Model:    {fingerprint.model_code}")

    return "\n".join(lines)

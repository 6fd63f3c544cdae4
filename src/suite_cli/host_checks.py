"""Host requirement checks run before the suite image is loaded.

Each check turns one host fact into a ``CheckOutcome``. Outcomes carry the
line written to the detail log, the rows of the summary table and whether
the failure is fatal. GPU checks are never fatal.
"""

from __future__ import annotations

import logging
import os
import platform
import re
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import click

from .config import SuiteSettings
from .errors import RequirementsNotMet


LOGGER = logging.getLogger("suite_cli.host_checks")

REQUIRED_RAM_GB = 16
RECOMMENDED_RAM_GB = 32
REQUIRED_ARCH = "x86_64"
REQUIRED_GPU_DRIVER = 525
REQUIRED_CPU_FLAGS: tuple[tuple[str, str], ...] = (("avx", "install TensorFlow"),)

LOG_BOUNDARY = " | "
MARKER_FOUND = "V"
MARKER_MISSING = "X"
MARKER_WARNING = " "
LOG_HEADER = "HAILO System requirements check - log"
TABLE_HEADER = ("Component", "Requirement", "Found", "Level")
TABLE_RULE = ("==========",) * 4
PROBE_ENV_OVERRIDES = {"LC_ALL": "C"}


@dataclass(frozen=True)
class HostFacts:
    ram_gb: int
    cpu_arch: str
    cpu_flags: frozenset[str]
    gpu_driver_version: str | None = None


@dataclass(frozen=True)
class CheckOutcome:
    marker: str
    message: str
    table_rows: tuple[tuple[str, str, str, str], ...] = ()
    fatal: bool = False
    notice: str | None = None

    @property
    def log_line(self) -> str:
        return f"{self.marker}{LOG_BOUNDARY}{self.message}"


@dataclass
class RequirementReport:
    outcomes: list[CheckOutcome] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return any(outcome.fatal for outcome in self.outcomes)

    @property
    def failures(self) -> list[CheckOutcome]:
        return [outcome for outcome in self.outcomes if outcome.fatal]

    @property
    def warnings(self) -> list[CheckOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.fatal and outcome.marker != MARKER_FOUND]

    def log_lines(self) -> list[str]:
        return [LOG_HEADER, ""] + [outcome.log_line for outcome in self.outcomes]

    def table_rows(self) -> list[tuple[str, ...]]:
        rows: list[tuple[str, ...]] = [TABLE_HEADER, TABLE_RULE]
        for outcome in self.outcomes:
            rows.extend(outcome.table_rows)
        return rows

    def table_lines(self) -> list[str]:
        return _align_columns(self.table_rows())


def _align_columns(rows: Iterable[tuple[str, ...]]) -> list[str]:
    materialized = [tuple(str(cell) for cell in row) for row in rows]
    if not materialized:
        return []
    column_count = max(len(row) for row in materialized)
    widths = [0] * column_count
    for row in materialized:
        for index, cell in enumerate(row):
            widths[index] = max(widths[index], len(cell))
    lines = []
    for row in materialized:
        cells = [cell.ljust(widths[index]) for index, cell in enumerate(row)]
        lines.append("  ".join(cells).rstrip())
    return lines


def check_ram(ram_gb: int) -> CheckOutcome:
    rows = (
        ("RAM(GB)", str(REQUIRED_RAM_GB), str(ram_gb), "Required"),
        ("RAM(GB)", str(RECOMMENDED_RAM_GB), str(ram_gb), "Recommended"),
    )
    if ram_gb < REQUIRED_RAM_GB:
        return CheckOutcome(
            marker=MARKER_MISSING,
            message=f"Insufficient RAM: {REQUIRED_RAM_GB} GB of RAM are required, only {ram_gb} GB available.",
            table_rows=rows,
            fatal=True,
            notice=(
                f"ERROR: The Dataflow Compiler requires {REQUIRED_RAM_GB} GB of RAM "
                f"({RECOMMENDED_RAM_GB} GB recommended), while this system has only {ram_gb} GB."
            ),
        )
    if ram_gb < RECOMMENDED_RAM_GB:
        return CheckOutcome(
            marker=MARKER_WARNING,
            message=f"Available RAM ({ram_gb} GB) below recommended amount ({RECOMMENDED_RAM_GB} GB).",
            table_rows=rows,
            notice=(
                f"WARNING: It is recommended to have {RECOMMENDED_RAM_GB} GB of RAM, "
                f"while this system has only {ram_gb} GB."
            ),
        )
    return CheckOutcome(
        marker=MARKER_FOUND,
        message=f"Available RAM ({ram_gb} GB) is sufficient, and within recommendation ({RECOMMENDED_RAM_GB} GB).",
        table_rows=rows,
    )


def check_cpu_arch(cpu_arch: str) -> CheckOutcome:
    rows = (("CPU-Arch", REQUIRED_ARCH, cpu_arch, "Required"),)
    if cpu_arch != REQUIRED_ARCH:
        return CheckOutcome(
            marker=MARKER_MISSING,
            message=f"Unsupported CPU architecture: {cpu_arch}. The supported architecture is {REQUIRED_ARCH}.",
            table_rows=rows,
            fatal=True,
            notice=f"ERROR: CPU architecture required is {REQUIRED_ARCH}, found {cpu_arch}.",
        )
    return CheckOutcome(
        marker=MARKER_FOUND,
        message=f"CPU architecture {cpu_arch} is supported.",
        table_rows=rows,
    )


def check_cpu_flags(
    cpu_flags: Iterable[str],
    required: Iterable[tuple[str, str]] = REQUIRED_CPU_FLAGS,
) -> list[CheckOutcome]:
    available = {flag.lower() for flag in cpu_flags}
    outcomes: list[CheckOutcome] = []
    for flag, reason in required:
        if flag not in available:
            outcomes.append(
                CheckOutcome(
                    marker=MARKER_MISSING,
                    message=f"Required {flag} CPU flag is not supported in this CPU, and is required to {reason}.",
                    table_rows=(("CPU-flag", flag, MARKER_MISSING, "Required"),),
                    fatal=True,
                    notice=f"ERROR: CPU flag {flag} is not supported in this CPU, and is required to {reason}.",
                )
            )
            continue
        outcomes.append(
            CheckOutcome(
                marker=MARKER_FOUND,
                message=f"Required {flag} CPU flag is supported.",
                table_rows=(("CPU-flag", flag, MARKER_FOUND, "Required"),),
            )
        )
    return outcomes


def _driver_major(driver_version: str) -> int | None:
    match = re.match(r"\s*(\d+)", driver_version)
    if not match:
        return None
    return int(match.group(1))


def check_gpu(driver_version: str | None) -> CheckOutcome:
    if driver_version is None:
        return CheckOutcome(
            marker=MARKER_WARNING,
            message="GPU Requirements are not checked- no GPU connected.",
            notice="INFO: No GPU connected.",
        )
    major = _driver_major(driver_version)
    found = str(major) if major is not None else driver_version.strip()
    rows = (("GPU-Driver", str(REQUIRED_GPU_DRIVER), found, "Recommended"),)
    if major is None or major < REQUIRED_GPU_DRIVER:
        return CheckOutcome(
            marker=MARKER_MISSING,
            message=f"GPU driver version should be {REQUIRED_GPU_DRIVER} or higher, found {found}.",
            table_rows=rows,
            notice=f"WARNING: GPU driver version should be {REQUIRED_GPU_DRIVER} or higher, found {found}.",
        )
    return CheckOutcome(
        marker=MARKER_FOUND,
        message=f"GPU driver version is {found}.",
        table_rows=rows,
    )


def evaluate_requirements(facts: HostFacts) -> RequirementReport:
    report = RequirementReport()
    report.outcomes.append(check_ram(facts.ram_gb))
    report.outcomes.append(check_cpu_arch(facts.cpu_arch))
    report.outcomes.extend(check_cpu_flags(facts.cpu_flags))
    report.outcomes.append(check_gpu(facts.gpu_driver_version))
    return report


def _probe_env() -> dict[str, str]:
    env = dict(os.environ)
    env.update(PROBE_ENV_OVERRIDES)
    return env


def _read_ram_gb(meminfo: Path = Path("/proc/meminfo")) -> int:
    try:
        for line in meminfo.read_text(encoding="utf-8").splitlines():
            match = re.match(r"^MemTotal:\s+(\d+)\s*kB", line)
            if match:
                return int(match.group(1)) // (1024 * 1024)
    except OSError as exc:
        LOGGER.debug("Unable to read %s: %s", meminfo, exc)
    total_bytes = os.sysconf("SC_PAGE_SIZE") * os.sysconf("SC_PHYS_PAGES")
    return int(total_bytes) // (1024**3)


def _parse_cpu_flags(text: str) -> frozenset[str]:
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        if sep and key.strip().lower() in {"flags", "features"}:
            return frozenset(value.split())
    return frozenset()


def _read_cpu_flags(cpuinfo: Path = Path("/proc/cpuinfo")) -> frozenset[str]:
    try:
        flags = _parse_cpu_flags(cpuinfo.read_text(encoding="utf-8", errors="replace"))
    except OSError as exc:
        LOGGER.debug("Unable to read %s: %s", cpuinfo, exc)
        flags = frozenset()
    if flags or shutil.which("lscpu") is None:
        return flags
    result = subprocess.run(["lscpu"], check=False, capture_output=True, text=True, env=_probe_env())
    if result.returncode != 0:
        return frozenset()
    return _parse_cpu_flags(result.stdout)


def _read_gpu_driver_version() -> str | None:
    if shutil.which("nvidia-smi") is None:
        return None
    result = subprocess.run(
        ["nvidia-smi", "--query-gpu=driver_version", "--format=csv,noheader"],
        check=False,
        capture_output=True,
        text=True,
        env=_probe_env(),
    )
    if result.returncode != 0:
        LOGGER.debug("nvidia-smi exited with %s: %s", result.returncode, result.stderr.strip())
        return None
    lines = [line.strip() for line in result.stdout.splitlines() if line.strip()]
    return lines[0] if lines else None


def collect_host_facts() -> HostFacts:
    facts = HostFacts(
        ram_gb=_read_ram_gb(),
        cpu_arch=platform.machine(),
        cpu_flags=_read_cpu_flags(),
        gpu_driver_version=_read_gpu_driver_version(),
    )
    LOGGER.debug(
        "Host facts ram_gb=%s cpu_arch=%s cpu_flags=%d gpu_driver=%s",
        facts.ram_gb,
        facts.cpu_arch,
        len(facts.cpu_flags),
        facts.gpu_driver_version,
    )
    return facts


def _write_lines(path: Path, lines: Iterable[str]) -> None:
    path.write_text("".join(f"{line}\n" for line in lines), encoding="utf-8")


def check_system_requirements(settings: SuiteSettings, facts: HostFacts | None = None) -> RequirementReport:
    click.echo("INFO: Checking system requirements...")
    table_path = settings.table_log_path
    detail_path = settings.detail_log_path
    table_path.unlink(missing_ok=True)
    detail_path.unlink(missing_ok=True)

    report = evaluate_requirements(facts if facts is not None else collect_host_facts())
    for outcome in report.outcomes:
        if outcome.notice:
            click.echo(outcome.notice, err=True)

    _write_lines(detail_path, report.log_lines())
    table_lines = report.table_lines()
    _write_lines(table_path, table_lines)
    try:
        if report.failed:
            LOGGER.warning("System requirements check failed: %d fatal outcome(s)", len(report.failures))
            click.echo("ERROR: System requirements check failed.")
            click.echo("\nSYSTEM REQUIREMENTS REPORT\n")
            for line in table_lines:
                click.echo(line)
            click.echo("")
            raise RequirementsNotMet(str(detail_path))
    finally:
        table_path.unlink(missing_ok=True)

    detail_path.unlink(missing_ok=True)
    click.echo("INFO: System requirements check finished successfully.")
    return report

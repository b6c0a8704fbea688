# fedora-setup/fedora_setup/environment.py

import os
import platform
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from fedora_setup.config import FEDORA_RELEASE_FILE, PROC_STAT_PATH
from fedora_setup.logger_utils import RunLog
from fedora_setup.system_utils import Runner, command_exists, run_command

# An update to either of these since boot always requires a reboot.
CRITICAL_PACKAGES = ("glibc", "systemd")


class FatalPreconditionError(Exception):
    """The host cannot be provisioned at all; raised before any step runs."""


class DesktopEnvironment(Enum):
    GNOME = "GNOME"
    KDE = "KDE"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class EnvironmentFacts:
    """Snapshot of host facts taken once per run. Steps read it, never change it."""
    is_target_distribution: bool
    desktop: DesktopEnvironment
    reboot_required: bool
    reboot_reasons: Tuple[str, ...] = ()
    fedora_version: str = ""

    @property
    def is_gnome(self) -> bool:
        return self.desktop is DesktopEnvironment.GNOME

    @property
    def is_kde(self) -> bool:
        return self.desktop is DesktopEnvironment.KDE


# --- Distribution ---

def require_target_distribution(release_file: Path = FEDORA_RELEASE_FILE) -> str:
    """Returns the release string, or raises FatalPreconditionError when the host is not Fedora."""
    if not release_file.is_file():
        raise FatalPreconditionError("This script is designed for Fedora. Exiting.")
    try:
        return release_file.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise FatalPreconditionError(f"Cannot read {release_file}: {e}") from e


def parse_fedora_version(release_text: str) -> str:
    match = re.search(r"release\s+(\d+)", release_text)
    return match.group(1) if match else ""


# --- Desktop environment ---

def is_process_running(name: str, runner: Runner = run_command) -> bool:
    try:
        proc = runner(["pgrep", "-x", name], capture_output=True, check=False)
    except FileNotFoundError:
        return False
    return proc.returncode == 0


def detect_desktop_environment(
    environ: Optional[Mapping[str, str]] = None,
    process_running: Optional[Callable[[str], bool]] = None,
) -> DesktopEnvironment:
    """Session variables first, then running shell processes. UNKNOWN is a valid answer."""
    env = os.environ if environ is None else environ
    probe = process_running or is_process_running

    current_desktop = env.get("XDG_CURRENT_DESKTOP", "")
    session = env.get("DESKTOP_SESSION", "")

    if "KDE" in current_desktop or "plasma" in session:
        return DesktopEnvironment.KDE
    if "GNOME" in current_desktop or "gnome" in session:
        return DesktopEnvironment.GNOME
    if probe("plasmashell"):
        return DesktopEnvironment.KDE
    if probe("gnome-shell"):
        return DesktopEnvironment.GNOME
    return DesktopEnvironment.UNKNOWN


# --- Reboot requirement ---

def latest_installed_kernel(runner: Runner = run_command) -> Optional[str]:
    """Release string of the most recently installed kernel package, e.g. 6.11.4-301.fc41.x86_64."""
    try:
        proc = runner(["rpm", "-q", "--last", "kernel"], capture_output=True, check=False)
    except FileNotFoundError:
        return None
    if proc.returncode != 0 or not (proc.stdout or "").strip():
        return None
    newest = proc.stdout.strip().splitlines()[0].split()[0]
    return newest[len("kernel-"):] if newest.startswith("kernel-") else newest


def read_boot_time(proc_stat: Path = PROC_STAT_PATH) -> Optional[int]:
    try:
        for line in proc_stat.read_text(encoding="utf-8").splitlines():
            if line.startswith("btime "):
                return int(line.split()[1])
    except (OSError, ValueError, IndexError):
        return None
    return None


def package_install_times(packages: Sequence[str], runner: Runner = run_command) -> Dict[str, int]:
    """Newest INSTALLTIME per package name (multilib packages can be installed more than once)."""
    try:
        proc = runner(
            ["rpm", "-q", "--queryformat", "%{NAME} %{INSTALLTIME}\n"] + list(packages),
            capture_output=True, check=False
        )
    except FileNotFoundError:
        return {}
    times: Dict[str, int] = {}
    for line in (proc.stdout or "").splitlines():
        parts = line.split()
        if len(parts) == 2 and parts[1].isdigit():
            times[parts[0]] = max(times.get(parts[0], 0), int(parts[1]))
    return times


def needs_restarting_says_reboot(runner: Runner = run_command, has_command: Callable[[str], bool] = command_exists) -> Optional[bool]:
    """`needs-restarting -r` exits 1 when a reboot is needed. None when the tool is absent."""
    if not has_command("needs-restarting"):
        return None
    try:
        proc = runner(["needs-restarting", "-r"], capture_output=True, check=False)
    except FileNotFoundError:
        return None
    return proc.returncode != 0


def check_reboot_required(
    run_log: RunLog,
    runner: Runner = run_command,
    kernel_release: Optional[str] = None,
    proc_stat: Path = PROC_STAT_PATH,
    has_command: Callable[[str], bool] = command_exists,
) -> Tuple[bool, List[str]]:
    """Evaluates every reboot signal. Returns (required, reasons)."""
    run_log.info("Checking if reboot is required...")
    reasons: List[str] = []

    running = kernel_release or platform.release()
    latest = latest_installed_kernel(runner)
    if latest and latest != running:
        run_log.warning(f"Kernel has been updated (running {running}, installed {latest})")
        reasons.append(f"Kernel updated: {running} -> {latest}")

    verdict = needs_restarting_says_reboot(runner, has_command)
    if verdict is True:
        run_log.warning("Reboot required according to needs-restarting")
        reasons.append("needs-restarting reports a pending reboot")
    elif verdict is False:
        run_log.success("No reboot required by needs-restarting")

    booted_at = read_boot_time(proc_stat)
    if booted_at is not None:
        updated = [
            name for name, installed_at in package_install_times(CRITICAL_PACKAGES, runner).items()
            if installed_at > booted_at
        ]
        if updated:
            run_log.warning(f"Critical system packages ({'/'.join(sorted(updated))}) were updated")
            reasons.append(f"Critical packages updated since boot: {', '.join(sorted(updated))}")
    else:
        run_log.debug(f"Boot time unavailable from {proc_stat}; skipping critical package check.")

    return bool(reasons), reasons


def detect(
    run_log: RunLog,
    runner: Runner = run_command,
    environ: Optional[Mapping[str, str]] = None,
    release_file: Path = FEDORA_RELEASE_FILE,
    proc_stat: Path = PROC_STAT_PATH,
    kernel_release: Optional[str] = None,
    has_command: Callable[[str], bool] = command_exists,
) -> EnvironmentFacts:
    """Captures the run's EnvironmentFacts. Raises FatalPreconditionError off Fedora."""
    release_text = require_target_distribution(release_file)
    reboot_required, reasons = check_reboot_required(
        run_log, runner=runner, kernel_release=kernel_release, proc_stat=proc_stat, has_command=has_command
    )
    desktop = detect_desktop_environment(environ, lambda name: is_process_running(name, runner))
    return EnvironmentFacts(
        is_target_distribution=True,
        desktop=desktop,
        reboot_required=reboot_required,
        reboot_reasons=tuple(reasons),
        fedora_version=parse_fedora_version(release_text),
    )

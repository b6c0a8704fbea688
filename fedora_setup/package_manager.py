# fedora-setup/fedora_setup/package_manager.py

import logging
import re
import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Set

from fedora_setup.system_utils import Runner, default_script_logger, run_command

_RPM_NOT_INSTALLED = re.compile(r"^package (\S+) is not installed$")


class TransactionStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of one package-manager transaction.

    dnf reports failure for the whole transaction, so a non-zero exit is
    PARTIAL: some of the requested packages may still have been installed.
    """
    status: TransactionStatus
    requested: tuple = field(default_factory=tuple)
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is TransactionStatus.SUCCESS

    @classmethod
    def success(cls, requested: Iterable[str] = ()) -> "TransactionResult":
        return cls(TransactionStatus.SUCCESS, tuple(requested))

    @classmethod
    def partial(cls, requested: Iterable[str] = (), detail: str = "") -> "TransactionResult":
        return cls(TransactionStatus.PARTIAL, tuple(requested), detail)


def _failure_detail(e: Exception) -> str:
    if isinstance(e, subprocess.CalledProcessError):
        return f"exit status {e.returncode}"
    if isinstance(e, FileNotFoundError):
        return f"executable not found: {e.filename or e}"
    return str(e)


class _Tool:
    def __init__(self, runner: Runner = run_command, logger: Optional[logging.Logger] = None):
        self.runner = runner
        self.log = logger or default_script_logger

    def _transaction(self, cmd: List[str], requested: Sequence[str], stream: bool = True) -> TransactionResult:
        try:
            if stream:
                self.runner(cmd, check=True, stream_output=True, logger=self.log)
            else:
                self.runner(cmd, capture_output=True, check=True, logger=self.log)
            return TransactionResult.success(requested)
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            return TransactionResult.partial(requested, _failure_detail(e))

    def _query(self, cmd: List[str]) -> Optional[subprocess.CompletedProcess]:
        try:
            return self.runner(cmd, capture_output=True, check=False, logger=self.log)
        except FileNotFoundError:
            return None


class Dnf(_Tool):
    """Package-transaction interface over dnf and rpm."""

    def install(self, packages: Sequence[str], allow_erasing: bool = False, extra_args: Optional[List[str]] = None) -> TransactionResult:
        if not packages:
            return TransactionResult.success()
        cmd = ["sudo", "dnf", "install", "-y"]
        if allow_erasing:
            cmd.append("--allowerasing")
        if extra_args:
            cmd.extend(extra_args)
        cmd.extend(packages)
        return self._transaction(cmd, packages)

    def install_groups(self, groups: Sequence[str], extra_args: Optional[List[str]] = None) -> TransactionResult:
        failed: List[str] = []
        for group in groups:
            cmd = ["sudo", "dnf", "group", "install", "-y"] + list(extra_args or []) + [group]
            if not self._transaction(cmd, [group]).ok:
                failed.append(group)
        if failed:
            return TransactionResult.partial(groups, f"failed groups: {', '.join(failed)}")
        return TransactionResult.success(groups)

    def installed_groups(self) -> Set[str]:
        """Lower-cased ids and names of installed groups (dnf5 table or dnf4 list output)."""
        proc = self._query(["dnf", "group", "list", "--installed"])
        found: Set[str] = set()
        if proc is None or proc.returncode != 0:
            return found
        for line in (proc.stdout or "").splitlines():
            stripped = line.strip()
            if not stripped or stripped.lower().startswith(("id ", "installed groups", "updating", "last metadata")):
                continue
            found.add(stripped.split()[0].lower())
            found.add(re.sub(r"\s+yes$", "", stripped).lower())
        return found

    def swap(self, from_pkg: str, to_pkg: str) -> TransactionResult:
        return self._transaction(["sudo", "dnf", "swap", "-y", from_pkg, to_pkg, "--allowerasing"], [to_pkg])

    def upgrade(self) -> TransactionResult:
        return self._transaction(["sudo", "dnf", "-y", "upgrade", "--refresh"], [])

    def clean_all(self) -> TransactionResult:
        return self._transaction(["sudo", "dnf", "clean", "all"], [], stream=False)

    def makecache(self) -> TransactionResult:
        return self._transaction(["sudo", "dnf", "makecache"], [], stream=False)

    def setopt(self, assignments: Dict[str, str], tool: str = "dnf") -> TransactionResult:
        pairs = [f"{key}={value}" for key, value in assignments.items()]
        if not pairs:
            return TransactionResult.success()
        return self._transaction(["sudo", tool, "config-manager", "setopt"] + pairs, pairs, stream=False)

    def main_config(self, tool: str = "dnf") -> Dict[str, str]:
        """Effective main configuration as reported by `--dump-main-config`."""
        proc = self._query([tool, "--dump-main-config"])
        config: Dict[str, str] = {}
        if proc is None or proc.returncode != 0:
            return config
        for line in (proc.stdout or "").splitlines():
            if "=" in line:
                key, _, value = line.partition("=")
                config[key.strip()] = value.strip()
        return config

    def enabled_repos(self) -> Set[str]:
        proc = self._query(["dnf", "repolist", "--enabled"])
        repos: Set[str] = set()
        if proc is None or proc.returncode != 0:
            return repos
        for line in (proc.stdout or "").splitlines():
            parts = line.split()
            if parts and parts[0].lower() != "repo":
                repos.add(parts[0])
        return repos

    def missing(self, packages: Sequence[str]) -> List[str]:
        """Subset of `packages` not currently installed, in input order."""
        if not packages:
            return []
        proc = self._query(["rpm", "-q"] + list(packages))
        if proc is None:
            self.log.warning("'rpm' command not found. Treating all packages as not installed.")
            return list(packages)
        not_installed = set()
        for line in (proc.stdout or "").splitlines():
            match = _RPM_NOT_INSTALLED.match(line.strip())
            if match:
                not_installed.add(match.group(1))
        return [p for p in packages if p in not_installed]

    def is_installed(self, package: str) -> bool:
        return not self.missing([package])

    def rpm_nevra(self, rpm_file: Path) -> Optional[str]:
        proc = self._query(["rpm", "-qp", "--queryformat", "%{NAME}-%{VERSION}-%{RELEASE}.%{ARCH}", str(rpm_file)])
        if proc is None or proc.returncode != 0:
            return None
        return (proc.stdout or "").strip() or None

    def install_local_rpms(self, rpm_files: Sequence[Path]) -> TransactionResult:
        names = [p.name for p in rpm_files]
        if not rpm_files:
            return TransactionResult.success()
        return self._transaction(["sudo", "rpm", "-Uvh", "--nodeps"] + [str(p) for p in rpm_files], names)

    def import_key(self, key_url: str) -> TransactionResult:
        return self._transaction(["sudo", "rpm", "--import", key_url], [key_url], stream=False)


class Flatpak(_Tool):
    """Containerized-app interface: system-wide installs plus remote registration."""

    def has_remote(self, name: str) -> bool:
        proc = self._query(["flatpak", "remotes", "--system", "--columns=name"])
        if proc is None or proc.returncode != 0:
            return False
        return any(line.strip().lower() == name.lower() for line in (proc.stdout or "").splitlines())

    def remote_add(self, name: str, url: str) -> TransactionResult:
        return self._transaction(
            ["sudo", "flatpak", "remote-add", "--system", "--if-not-exists", name, url], [name], stream=False
        )

    def installed_apps(self) -> Set[str]:
        proc = self._query(["flatpak", "list", "--app", "--columns=application"])
        if proc is None or proc.returncode != 0:
            return set()
        return {line.strip() for line in (proc.stdout or "").splitlines() if line.strip()}

    def missing(self, app_ids: Sequence[str]) -> List[str]:
        installed = self.installed_apps()
        return [app_id for app_id in app_ids if app_id not in installed]

    def install(self, remote: str, app_ids: Sequence[str]) -> TransactionResult:
        if not app_ids:
            return TransactionResult.success()
        cmd = ["sudo", "flatpak", "install", "--system", "-y", "--noninteractive", remote] + list(app_ids)
        return self._transaction(cmd, app_ids)

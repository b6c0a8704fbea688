"""
Shared test fixtures: temporary AppPaths, a RunLog writing into tmp_path,
a scripted command runner and a fake HTTP fetcher.
"""

import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest
import requests

from fedora_setup.config import AppPaths
from fedora_setup.environment import DesktopEnvironment, EnvironmentFacts
from fedora_setup.logger_utils import RunLog
from fedora_setup.provision import build_context


class FakeRunner:
    """Records every command; answers from registered (prefix -> result) rules.

    Unmatched commands succeed with empty output. The last matching rule wins.
    """

    def __init__(self):
        self.calls: List[List[str]] = []
        self.env: List[Optional[Dict[str, str]]] = []
        self._rules: List[Tuple[Tuple[str, ...], int, str, str]] = []

    def on(self, prefix: Sequence[str], stdout: str = "", returncode: int = 0, stderr: str = "") -> "FakeRunner":
        self._rules.append((tuple(prefix), returncode, stdout, stderr))
        return self

    def __call__(self, command, capture_output=True, check=True, shell=False, cwd=None, env_vars=None,
                 input_text=None, stream_output=False, logger=None):
        cmd = [str(c) for c in command] if isinstance(command, list) else command.split()
        self.calls.append(cmd)
        self.env.append(env_vars)
        returncode, stdout, stderr = 0, "", ""
        for prefix, rc, out, err in reversed(self._rules):
            if tuple(cmd[:len(prefix)]) == prefix:
                returncode, stdout, stderr = rc, out, err
                break
        if check and returncode != 0:
            raise subprocess.CalledProcessError(returncode, cmd, stdout, stderr)
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def ran(self, *prefix: str) -> bool:
        return any(tuple(call[:len(prefix)]) == prefix for call in self.calls)

    def commands(self) -> List[str]:
        return [" ".join(call) for call in self.calls]


class FakeFetcher:
    """In-memory stand-in for HttpFetcher. Unknown URLs raise like a 404 would."""

    def __init__(self):
        self.texts: Dict[str, str] = {}
        self.json: Dict[str, object] = {}
        self.redirects: Dict[str, str] = {}
        self.files: Dict[str, bytes] = {}
        self.failing: Set[str] = set()
        self.downloads: List[Tuple[str, Path]] = []

    def _check(self, url: str) -> None:
        if url in self.failing:
            raise requests.ConnectionError(f"connection refused: {url}")

    def get_text(self, url: str) -> str:
        self._check(url)
        if url not in self.texts:
            raise requests.HTTPError(f"404 for {url}")
        return self.texts[url]

    def get_json(self, url: str):
        self._check(url)
        if url not in self.json:
            raise requests.HTTPError(f"404 for {url}")
        return self.json[url]

    def resolve_redirect(self, url: str) -> str:
        self._check(url)
        return self.redirects.get(url, url)

    def download(self, url: str, dest: Path) -> Path:
        self._check(url)
        if url not in self.files:
            raise requests.HTTPError(f"404 for {url}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.files[url])
        self.downloads.append((url, dest))
        return dest


@pytest.fixture
def paths(tmp_path: Path) -> AppPaths:
    home = tmp_path / "home"
    home.mkdir()
    system_autostart = tmp_path / "etc" / "xdg" / "autostart"
    system_autostart.mkdir(parents=True)
    repos = tmp_path / "etc" / "yum.repos.d"
    repos.mkdir(parents=True)
    return AppPaths(
        home=home,
        log_file=tmp_path / "fedora-setup-test.log",
        apps_dir=home / "Applications",
        packages_dir=home / "packages",
        font_dir=home / ".local" / "share" / "fonts",
        system_autostart_dir=system_autostart,
        yum_repos_dir=repos,
    )


@pytest.fixture
def run_log(paths: AppPaths, request):
    log = RunLog(paths.log_file, logger_name=f"FedoraSetupTest.{request.node.name}", echo=False)
    yield log
    log.close()


@pytest.fixture
def runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def make_ctx(paths, run_log, runner, fetcher):
    """Builds a StepContext over the fakes for a given config."""
    def _make(config: Optional[dict] = None, facts: Optional[EnvironmentFacts] = None):
        ctx = build_context(config or {}, paths, run_log, runner=runner, fetcher=fetcher, user="tester")
        return ctx.with_facts(facts)
    return _make


def make_facts(desktop: DesktopEnvironment = DesktopEnvironment.GNOME, reboot_required: bool = False,
               reasons: Tuple[str, ...] = ()) -> EnvironmentFacts:
    return EnvironmentFacts(
        is_target_distribution=True,
        desktop=desktop,
        reboot_required=reboot_required,
        reboot_reasons=reasons,
        fedora_version="41",
    )


@pytest.fixture
def gnome_facts() -> EnvironmentFacts:
    return make_facts(DesktopEnvironment.GNOME)


@pytest.fixture
def kde_facts() -> EnvironmentFacts:
    return make_facts(DesktopEnvironment.KDE)


@pytest.fixture
def unknown_facts() -> EnvironmentFacts:
    return make_facts(DesktopEnvironment.UNKNOWN)


@pytest.fixture
def facts_factory():
    return make_facts

# fedora-setup/fedora_setup/artifacts.py

"""
Fetch-and-install pipeline for applications distributed outside any package
repository.

Each application is described by a glob `pattern` for its cached file and a
version probe that names the latest artifact without downloading it. The
cache directory holds at most one file per application: when the probe
reports a filename that is not cached yet, every file matching the pattern
is removed before the new one is downloaded.
"""

import filecmp
import os
import re
import shlex
import shutil
import stat
import tarfile
import tempfile
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple
from urllib.parse import unquote, urlparse

import requests

from fedora_setup.config import INSTALL_MARKER_NAME
from fedora_setup.fetch import HttpFetcher
from fedora_setup.logger_utils import RunLog
from fedora_setup.package_manager import Dnf, TransactionResult
from fedora_setup.system_utils import Runner, run_command

GITHUB_LATEST_RELEASE = "https://api.github.com/repos/{repo}/releases/latest"

# Substrings that make a fetched script refuse to run. A heuristic, nothing more.
DANGEROUS_SCRIPT_PATTERNS = ("rm -rf", "dd if=")

_EXECUTABLE_BITS = stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH


class FetchStatus(Enum):
    ALREADY_CACHED = "already cached"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


class ArtifactInstallError(Exception):
    """An artifact could not be unpacked or installed."""


class UnsafeScriptError(ArtifactInstallError):
    def __init__(self, url: str, hits: Sequence[str]):
        self.url = url
        self.hits = tuple(hits)
        super().__init__(f"Script from {url} contains dangerous commands: {', '.join(self.hits)}")


@dataclass(frozen=True)
class ResolvedArtifact:
    url: str
    filename: str


@dataclass(frozen=True)
class ArtifactCacheEntry:
    app_id: str
    filename: str
    path: Path


@dataclass(frozen=True)
class InstalledApplication:
    app_id: str
    path: Path
    entry_points: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FetchResult:
    app_id: str
    status: FetchStatus
    entry: Optional[ArtifactCacheEntry] = None
    error: str = ""
    removed: Tuple[Path, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is not FetchStatus.FAILED


VersionProbe = Callable[[], Optional[ResolvedArtifact]]
DownloadFn = Callable[[str, Path], Path]
InstallFn = Callable[[ArtifactCacheEntry], None]


# --- Version probes ---

def filename_from_url(url: str) -> str:
    return unquote(os.path.basename(urlparse(url).path))


def redirect_probe(fetcher: HttpFetcher, url: str) -> VersionProbe:
    """The artifact is wherever a stable "latest" URL redirects to."""
    def probe() -> Optional[ResolvedArtifact]:
        final_url = fetcher.resolve_redirect(url)
        filename = filename_from_url(final_url)
        return ResolvedArtifact(final_url, filename) if filename else None
    return probe


def github_release_probe(fetcher: HttpFetcher, repo: str, asset_regex: str) -> VersionProbe:
    """First asset of the latest GitHub release whose download URL matches `asset_regex`."""
    def probe() -> Optional[ResolvedArtifact]:
        release = fetcher.get_json(GITHUB_LATEST_RELEASE.format(repo=repo))
        for asset in release.get("assets", []):
            url = asset.get("browser_download_url", "")
            if url and re.search(asset_regex, url):
                return ResolvedArtifact(url, asset.get("name") or filename_from_url(url))
        return None
    return probe


def page_link_probe(fetcher: HttpFetcher, page_url: str, link_regex: str,
                    filename_template: Optional[str] = None) -> VersionProbe:
    """
    Scrapes the first download link matching `link_regex` from a web page.

    `filename_template` names the cached file when the link's basename carries
    no version; `{version}` is the URL's second-to-last path segment
    (.../winbox/4.0beta9/WinBox_Linux.zip -> 4.0beta9).
    """
    def probe() -> Optional[ResolvedArtifact]:
        match = re.search(link_regex, fetcher.get_text(page_url))
        if not match:
            return None
        url = match.group(0)
        if not filename_template:
            return ResolvedArtifact(url, filename_from_url(url))
        segments = [s for s in urlparse(url).path.split("/") if s]
        if len(segments) < 2:
            return None
        return ResolvedArtifact(url, filename_template.format(version=unquote(segments[-2])))
    return probe


# --- Cache ---

class ArtifactCache:
    """Download cache with one file per application."""

    def __init__(self, cache_dir: Path, fetcher: HttpFetcher, log: RunLog):
        self.cache_dir = cache_dir
        self.fetcher = fetcher
        self.log = log

    def matching(self, pattern: str) -> List[Path]:
        if not self.cache_dir.is_dir():
            return []
        return sorted(p for p in self.cache_dir.glob(pattern) if p.is_file())

    def purge_stale(self, pattern: str, keep: Optional[Path] = None) -> List[Path]:
        removed = []
        for path in self.matching(pattern):
            if keep is not None and path == keep:
                continue
            self.log.info(f"Removing old version: {path.name}")
            path.unlink()
            removed.append(path)
        return removed

    def ensure_latest(
        self,
        app_id: str,
        pattern: str,
        version_probe: VersionProbe,
        download_fn: Optional[DownloadFn] = None,
        install_fn: Optional[InstallFn] = None,
    ) -> FetchResult:
        """Makes the latest artifact for `app_id` the only cached one, then optionally installs it."""
        try:
            resolved = version_probe()
        except Exception as e:
            self.log.error(f"{app_id}: could not determine the latest version: {e}", exc_info=True)
            return FetchResult(app_id, FetchStatus.FAILED, error=f"version check failed: {e}")
        if resolved is None:
            self.log.error(f"{app_id}: no matching download found")
            return FetchResult(app_id, FetchStatus.FAILED, error="no matching download found")

        filename = resolved.filename
        if not filename or os.path.basename(filename) != filename or filename in (".", ".."):
            self.log.error(f"{app_id}: refusing unsafe artifact filename {filename!r}")
            return FetchResult(app_id, FetchStatus.FAILED, error=f"unsafe filename {filename!r}")

        self.cache_dir.mkdir(parents=True, exist_ok=True)
        dest = self.cache_dir / filename

        if dest.is_file():
            self.log.info(f"{app_id}: latest version already downloaded ({filename})")
            removed = self.purge_stale(pattern, keep=dest)
            status = FetchStatus.ALREADY_CACHED
        else:
            removed = self.purge_stale(pattern)
            partial = dest.with_name(dest.name + ".part")
            download = download_fn or self.fetcher.download
            self.log.info(f"{app_id}: downloading {filename}...")
            try:
                download(resolved.url, partial)
                os.replace(partial, dest)
            except (requests.RequestException, OSError) as e:
                if partial.exists():
                    partial.unlink()
                self.log.error(f"{app_id}: download failed: {e}")
                return FetchResult(app_id, FetchStatus.FAILED, error=f"download failed: {e}", removed=tuple(removed))
            self.log.success(f"{app_id}: downloaded {filename}")
            status = FetchStatus.DOWNLOADED

        entry = ArtifactCacheEntry(app_id, filename, dest)
        if install_fn is not None:
            try:
                install_fn(entry)
            except Exception as e:
                self.log.error(f"{app_id}: installation failed: {e}", exc_info=True)
                return FetchResult(app_id, FetchStatus.FAILED, entry, f"install failed: {e}", tuple(removed))
        return FetchResult(app_id, status, entry, removed=tuple(removed))


# --- Installers ---

def install_rpm_artifacts(dnf: Dnf, rpm_files: Sequence[Path], log: RunLog) -> Tuple[TransactionResult, List[Path]]:
    """Installs cached RPMs whose exact version is not installed yet.

    Returns the transaction result and the RPMs it covered (empty when all were installed).
    """
    pending = []
    for rpm_file in rpm_files:
        nevra = dnf.rpm_nevra(rpm_file)
        if nevra and dnf.is_installed(nevra):
            log.info(f"{rpm_file.name} is already installed")
            continue
        pending.append(rpm_file)
    if not pending:
        return TransactionResult.success(), []
    log.info(f"Installing {len(pending)} RPM package(s): {', '.join(p.name for p in pending)}")
    return dnf.install_local_rpms(pending), pending


def extract_archive(archive: Path, target: Path) -> None:
    """Unpacks a zip or tar.* archive into `target`."""
    target.mkdir(parents=True, exist_ok=True)
    if zipfile.is_zipfile(archive):
        with zipfile.ZipFile(archive) as zf:
            # ZipFile drops the permission bits; restore them from the external attributes.
            for member in zf.infolist():
                extracted = Path(zf.extract(member, target))
                mode = (member.external_attr >> 16) & 0o777
                if mode and not member.is_dir():
                    extracted.chmod(mode)
    elif tarfile.is_tarfile(archive):
        with tarfile.open(archive) as tf:
            tf.extractall(target, filter="data")
    else:
        raise ArtifactInstallError(f"Unsupported archive format: {archive.name}")


def installed_from(dest: Path) -> Optional[str]:
    """Artifact filename recorded in an installed tree, if any."""
    marker = dest / INSTALL_MARKER_NAME
    try:
        return marker.read_text(encoding="utf-8").strip() or None
    except OSError:
        return None


def make_executable(path: Path) -> None:
    path.chmod(path.stat().st_mode | _EXECUTABLE_BITS)


def install_archive(
    app_id: str,
    archive: Path,
    dest: Path,
    strip_top_level: Optional[str] = None,
    entry_points: Sequence[str] = (),
) -> InstalledApplication:
    """
    Replaces `dest` with the contents of `archive`.

    `strip_top_level` names a single top-level directory inside the archive
    whose contents become `dest` when present. Entry points that exist get the executable
    bit. Re-installing the same artifact is a no-op.
    """
    if installed_from(dest) == archive.name:
        present = tuple(name for name in entry_points if (dest / name).is_file())
        return InstalledApplication(app_id, dest, present)

    dest.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(dir=dest.parent, prefix=f".{dest.name}.") as tmp:
        unpacked = Path(tmp) / "unpacked"
        extract_archive(archive, unpacked)
        root = unpacked
        if strip_top_level and (unpacked / strip_top_level).is_dir():
            root = unpacked / strip_top_level
        if dest.exists():
            shutil.rmtree(dest)
        shutil.move(str(root), str(dest))

    made_executable = []
    for name in entry_points:
        candidate = dest / name
        if candidate.is_file():
            make_executable(candidate)
            made_executable.append(name)
    (dest / INSTALL_MARKER_NAME).write_text(archive.name + "\n", encoding="utf-8")
    return InstalledApplication(app_id, dest, tuple(made_executable))


def desktop_file_name(appimage_name: str) -> str:
    """ "lala.AppImage" -> "lala.desktop" """
    if appimage_name.endswith(".AppImage"):
        return appimage_name[:-len(".AppImage")] + ".desktop"
    return appimage_name + ".desktop"


def install_appimage(
    app_id: str,
    appimage: Path,
    dest: Path,
    desktop_entries_dir: Optional[Path] = None,
    desktop_entry: Optional[Dict[str, str]] = None,
) -> InstalledApplication:
    """Copies an AppImage to `dest` with the executable bit and writes its .desktop file."""
    dest.parent.mkdir(parents=True, exist_ok=True)
    if not (dest.is_file() and filecmp.cmp(appimage, dest, shallow=True)):
        tmp_dest = dest.with_name(dest.name + ".part")
        shutil.copy2(appimage, tmp_dest)
        os.replace(tmp_dest, dest)
    make_executable(dest)

    if desktop_entries_dir is not None:
        entry = desktop_entry or {}
        desktop_entries_dir.mkdir(parents=True, exist_ok=True)
        content = f"""[Desktop Entry]
Version=1.0
Name={entry.get('name', app_id)}
Comment={entry.get('comment', '')}
Exec={shlex.quote(str(dest))}
Type=Application
Terminal=false
Categories={entry.get('categories', 'Utility;')}
"""
        desktop_path = desktop_entries_dir / desktop_file_name(dest.name)
        if not desktop_path.is_file() or desktop_path.read_text(encoding="utf-8") != content:
            desktop_path.write_text(content, encoding="utf-8")
    return InstalledApplication(app_id, dest, (dest.name,))


# --- Fetched scripts ---

def scan_script(text: str) -> List[str]:
    """Denylisted substrings present in `text`."""
    return [pattern for pattern in DANGEROUS_SCRIPT_PATTERNS if pattern in text]


def run_fetched_script(
    fetcher: HttpFetcher,
    url: str,
    log: RunLog,
    runner: Runner = run_command,
    privileged: bool = False,
    interpreter: str = "bash",
    env_vars: Optional[Dict[str, str]] = None,
    args: Sequence[str] = (),
    scan: bool = True,
) -> None:
    """
    Downloads a shell script, scans it and runs it.

    Raises UnsafeScriptError (the script is deleted unrun), requests'
    exceptions on fetch failure, and CalledProcessError when it exits non-zero.
    """
    text = fetcher.get_text(url)
    fd, script_name = tempfile.mkstemp(prefix="fedora-setup-", suffix=".sh")
    script = Path(script_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f_out:
            f_out.write(text)
        hits = scan_script(text) if scan else []
        if hits:
            log.error(f"Refusing to run script from {url}: found {', '.join(repr(h) for h in hits)}")
            raise UnsafeScriptError(url, hits)
        cmd = (["sudo"] if privileged else []) + [interpreter, str(script)] + list(args)
        runner(cmd, check=True, stream_output=True, env_vars=env_vars, logger=log.logger)
    finally:
        script.unlink(missing_ok=True)


# fedora-setup/fedora_setup/phases/third_party.py

import filecmp
import subprocess
import tarfile
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import requests

from fedora_setup import artifacts
from fedora_setup.artifacts import ArtifactCache, ArtifactInstallError, FetchStatus, VersionProbe
from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import section
from fedora_setup.system_utils import command_exists


def _apps(ctx: StepContext) -> Dict[str, Dict[str, Any]]:
    return {app_id: app for app_id, app in section(ctx, "third_party_apps").items()
            if isinstance(app, dict) and app.get("pattern")}


def _cache(ctx: StepContext) -> ArtifactCache:
    return ArtifactCache(ctx.paths.packages_dir, ctx.fetcher, ctx.log)


def build_probe(ctx: StepContext, source: Dict[str, str]) -> VersionProbe:
    """Version probe for an app's `source` block: redirect, github or page."""
    kind = source.get("type")
    if kind == "redirect":
        return artifacts.redirect_probe(ctx.fetcher, source["url"])
    if kind == "github":
        return artifacts.github_release_probe(ctx.fetcher, source["repo"], source["asset_regex"])
    if kind == "page":
        return artifacts.page_link_probe(ctx.fetcher, source["url"], source["link_regex"],
                                         source.get("filename_template"))
    raise ValueError(f"Unknown source type: {kind!r}")


# --- Zed ---

def _zed_installed(ctx: StepContext) -> bool:
    return command_exists("zed") or (ctx.paths.home / ".local" / "bin" / "zed").exists()


def _zed_editor(ctx: StepContext) -> StepResult:
    url = section(ctx, "zed").get("installer_url")
    if not url:
        return StepResult.failed("No Zed installer URL configured")
    ctx.log.info("Installing Zed editor...")
    try:
        artifacts.run_fetched_script(ctx.fetcher, url, ctx.log, runner=ctx.runner, interpreter="sh", scan=False)
    except requests.RequestException as e:
        return StepResult.failed(f"Failed to download the Zed installer: {e}")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        return StepResult.failed(f"Failed to install Zed editor: {e}")
    return StepResult.ok("Zed editor installed")


# --- Downloads ---

def _download_third_party_apps(ctx: StepContext) -> StepResult:
    apps = _apps(ctx)
    if not apps:
        return StepResult.unchanged("No third-party applications configured")
    cache = _cache(ctx)
    failed: List[str] = []
    downloaded = 0
    for app_id, app in apps.items():
        ctx.log.sub_step(f"Checking for {app.get('name', app_id)} updates...")
        try:
            probe = build_probe(ctx, app.get("source", {}))
        except (KeyError, ValueError) as e:
            ctx.log.error(f"{app_id}: invalid source configuration: {e}")
            failed.append(f"{app_id}: invalid source configuration")
            continue
        result = cache.ensure_latest(app_id, app["pattern"], probe)
        if not result.ok:
            failed.append(f"{app_id}: {result.error}")
        elif result.status is FetchStatus.DOWNLOADED:
            downloaded += 1

    if failed:
        return StepResult.failed(f"{len(failed)} of {len(apps)} application downloads failed", failed)
    if not downloaded:
        return StepResult.unchanged("All third-party applications already downloaded")
    return StepResult.ok(f"Downloaded {downloaded} third-party application(s)")


# --- Installs ---

def _cached_artifact(cache: ArtifactCache, app: Dict[str, Any]) -> Optional[Path]:
    found = cache.matching(app["pattern"])
    # Newest wins if an interrupted run left more than one.
    return max(found, key=lambda p: p.stat().st_mtime) if found else None


def _install_one(ctx: StepContext, app_id: str, app: Dict[str, Any], artifact: Path) -> bool:
    """Installs a non-RPM artifact. Returns True when something changed."""
    install = app.get("install", {})
    kind = install.get("type")
    if kind == "archive":
        dest = ctx.paths.apps_dir / install.get("dest", app_id)
        if artifacts.installed_from(dest) == artifact.name:
            return False
        ctx.log.info(f"Extracting {app.get('name', app_id)}...")
        installed = artifacts.install_archive(app_id, artifact, dest, install.get("strip_top_level"),
                                              install.get("entry_points", []))
        ctx.log.success(f"{app.get('name', app_id)} installed to {installed.path}")
        return True
    if kind == "appimage":
        dest = ctx.paths.apps_dir / install.get("rename_to", artifact.name)
        up_to_date = dest.is_file() and filecmp.cmp(artifact, dest, shallow=True)
        desktop_entry = {"name": app.get("name", app_id), "comment": install.get("comment", ""),
                         "categories": install.get("categories", "Utility;")}
        artifacts.install_appimage(app_id, artifact, dest, ctx.paths.desktop_entries_dir, desktop_entry)
        if not up_to_date:
            ctx.log.success(f"{app.get('name', app_id)} installed to {dest}")
        return not up_to_date
    raise ArtifactInstallError(f"Unknown install type: {kind!r}")


def _install_third_party_apps(ctx: StepContext) -> StepResult:
    apps = _apps(ctx)
    if not apps:
        return StepResult.unchanged("No third-party applications configured")
    cache = _cache(ctx)
    ctx.paths.apps_dir.mkdir(parents=True, exist_ok=True)
    failed: List[str] = []
    changed = 0
    rpm_files: List[Path] = []

    for app_id, app in apps.items():
        artifact = _cached_artifact(cache, app)
        if artifact is None:
            failed.append(f"{app_id}: not downloaded")
            continue
        if app.get("install", {}).get("type") == "rpm":
            rpm_files.append(artifact)
            continue
        try:
            if _install_one(ctx, app_id, app, artifact):
                changed += 1
        except (ArtifactInstallError, OSError, tarfile.TarError, zipfile.BadZipFile) as e:
            ctx.log.error(f"Failed to install {app.get('name', app_id)}: {e}")
            failed.append(f"{app_id}: {e}")

    if rpm_files:
        result, pending = artifacts.install_rpm_artifacts(ctx.dnf, rpm_files, ctx.log)
        if pending:
            if result.ok:
                changed += len(pending)
            else:
                failed.append(f"RPM packages: {result.detail}")

    if failed:
        return StepResult.failed("Some third-party applications failed to install", failed)
    if not changed:
        return StepResult.unchanged("Third-party applications already installed")
    return StepResult.ok(f"Installed {changed} third-party application(s)")


def steps() -> List[Step]:
    return [
        Step("zed_editor", Phase.THIRD_PARTY, _zed_editor, "Installing Zed editor", is_satisfied=_zed_installed),
        Step("download_third_party_apps", Phase.THIRD_PARTY, _download_third_party_apps,
             "Downloading third-party applications"),
        Step("install_third_party_apps", Phase.THIRD_PARTY, _install_third_party_apps,
             "Installing third-party applications"),
    ]

# fedora-setup/fedora_setup/phases/packages.py

import subprocess
from pathlib import Path
from typing import Dict, List, Tuple

import requests

from fedora_setup.artifacts import UnsafeScriptError, run_fetched_script
from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import from_transaction, install_missing, section, string_list


def _packages(ctx: StepContext) -> Dict:
    return section(ctx, "packages")


# --- System packages ---

def _system_package_list(ctx: StepContext) -> List[str]:
    packages = string_list(_packages(ctx).get("system"))
    if ctx.facts is not None and ctx.facts.is_kde:
        extra = [p for p in string_list(_packages(ctx).get("kde_extra")) if p not in packages]
        if extra:
            ctx.log.debug(f"KDE detected, adding {' '.join(extra)} to the package list")
        packages += extra
    return packages


def _system_packages(ctx: StepContext) -> StepResult:
    return install_missing(ctx, _system_package_list(ctx), "system packages")


def _system_packages_present(ctx: StepContext) -> bool:
    packages = _system_package_list(ctx)
    return bool(packages) and not ctx.dnf.missing(packages)


# --- Multimedia groups ---

def _groups(ctx: StepContext) -> List[Dict]:
    return [g for g in _packages(ctx).get("groups", []) if isinstance(g, dict) and g.get("name")]


def _groups_present(ctx: StepContext) -> bool:
    installed = ctx.dnf.installed_groups()
    groups = _groups(ctx)
    return bool(groups) and all(g["name"].lower() in installed for g in groups)


def _multimedia_groups(ctx: StepContext) -> StepResult:
    installed = ctx.dnf.installed_groups()
    failures = []
    for group in _groups(ctx):
        if group["name"].lower() in installed:
            ctx.log.sub_step(f"Group '{group['name']}' already installed")
            continue
        ctx.log.info(f"Installing group '{group['name']}'...")
        result = ctx.dnf.install_groups([group["name"]], extra_args=string_list(group.get("extra_args")))
        if not result.ok:
            failures.append(f"{group['name']}: {result.detail}")
    if failures:
        return StepResult.failed("Multimedia group install had issues", failures)
    return StepResult.ok("Multimedia support installed")


# --- Package swaps ---

def _swaps(ctx: StepContext) -> List[Tuple[str, str]]:
    swaps = _packages(ctx).get("swaps", {})
    return [(src, dst) for src, dst in swaps.items() if isinstance(dst, str)]


def _pending_swaps(ctx: StepContext) -> List[Tuple[str, str]]:
    swaps = _swaps(ctx)
    missing = set(ctx.dnf.missing([dst for _, dst in swaps]))
    return [(src, dst) for src, dst in swaps if dst in missing]


def _package_swaps(ctx: StepContext) -> StepResult:
    pending = _pending_swaps(ctx)
    if not pending:
        return StepResult.unchanged("Full-featured packages already installed")
    failures = []
    for src, dst in pending:
        ctx.log.info(f"Replacing {src} with {dst}...")
        result = ctx.dnf.swap(src, dst)
        if not result.ok:
            failures.append(f"{src} -> {dst}: {result.detail}")
    if failures:
        return StepResult.failed("Some package swaps had issues", failures)
    return StepResult.ok(f"Replaced {len(pending)} package(s) with full-featured versions")


# --- Flatpak applications ---

def _flatpak_apps(ctx: StepContext) -> List[str]:
    flatpak = section(ctx, "flatpak")
    apps = string_list(flatpak.get("apps"))
    if ctx.facts is not None and ctx.facts.is_gnome:
        apps += [a for a in string_list(flatpak.get("gnome_extra")) if a not in apps]
    return apps


def _flatpak_apps_step(ctx: StepContext) -> StepResult:
    remote = section(ctx, "flatpak").get("remote", "flathub")
    missing = ctx.flatpak.missing(_flatpak_apps(ctx))
    if not missing:
        return StepResult.unchanged("All Flatpak applications already installed")
    ctx.log.info("Installing Flatpak applications (this may take a while)...")
    ctx.log.info(f"Apps to install: {' '.join(missing)}")
    return from_transaction(ctx.flatpak.install(remote, missing), "Flatpak applications installed",
                            "Some Flatpak applications failed to install")


# --- Ledger udev rules ---

def _ledger_rules_installed(ctx: StepContext) -> bool:
    rules_file = section(ctx, "ledger_udev_rules").get("rules_file")
    return bool(rules_file) and Path(rules_file).is_file()


def _ledger_udev_rules(ctx: StepContext) -> StepResult:
    url = section(ctx, "ledger_udev_rules").get("url")
    if not url:
        return StepResult.failed("No Ledger udev rules script configured")
    ctx.log.info("Downloading Ledger udev rules script...")
    try:
        run_fetched_script(ctx.fetcher, url, ctx.log, runner=ctx.runner, privileged=True)
    except UnsafeScriptError as e:
        return StepResult.failed("Script contains potentially dangerous commands, skipping", e.hits)
    except requests.RequestException as e:
        return StepResult.failed(f"Failed to download Ledger udev rules script: {e}")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        return StepResult.failed(f"Failed to install Ledger udev rules: {e}")
    return StepResult.ok("Ledger udev rules installed")


def steps() -> List[Step]:
    return [
        Step("system_packages", Phase.PACKAGES, _system_packages, "Installing system packages",
             is_satisfied=_system_packages_present),
        Step("multimedia_groups", Phase.PACKAGES, _multimedia_groups, "Installing multimedia support",
             is_satisfied=_groups_present),
        Step("package_swaps", Phase.PACKAGES, _package_swaps, "Replacing packages with full-featured versions",
             is_satisfied=lambda ctx: not _pending_swaps(ctx)),
        Step("flatpak_apps", Phase.PACKAGES, _flatpak_apps_step, "Installing Flatpak applications",
             is_satisfied=lambda ctx: not ctx.flatpak.missing(_flatpak_apps(ctx))),
        Step("ledger_udev_rules", Phase.PACKAGES, _ledger_udev_rules, "Setting up Ledger udev rules",
             is_satisfied=_ledger_rules_installed),
    ]

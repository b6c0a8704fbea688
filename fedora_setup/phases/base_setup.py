# fedora-setup/fedora_setup/phases/base_setup.py

import shutil
import subprocess
import tempfile
import zipfile
from pathlib import Path
from typing import List

import requests

from fedora_setup.engine import Outcome, Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import install_missing, section, string_list

FONT_SUFFIXES = (".ttf", ".otf")


def _font_files(directory: Path) -> List[Path]:
    return sorted(p for p in directory.rglob("*") if p.is_file() and p.suffix.lower() in FONT_SUFFIXES)


def _refresh_font_cache(ctx: StepContext, system: bool = False) -> None:
    cmd = (["sudo"] if system else []) + ["fc-cache", "-f"]
    try:
        ctx.runner(cmd, capture_output=True, check=True, logger=ctx.log.logger)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        ctx.log.warning(f"Failed to refresh font cache: {e}. Run 'fc-cache -f' manually.")


# --- Basic packages ---

def _basic_packages(ctx: StepContext) -> StepResult:
    return install_missing(ctx, string_list(ctx.config.get("basic_packages")), "basic packages")


def _basic_packages_present(ctx: StepContext) -> bool:
    packages = string_list(ctx.config.get("basic_packages"))
    return bool(packages) and not ctx.dnf.missing(packages)


# --- Nerd Font ---

def _nerd_font_config(ctx: StepContext) -> dict:
    return section(ctx, "fonts").get("nerd_font", {})


def _nerd_font_present(ctx: StepContext) -> bool:
    family = _nerd_font_config(ctx).get("family")
    if not family:
        return False
    proc = ctx.runner(["fc-list", f":family={family}"], capture_output=True, check=False, logger=ctx.log.logger)
    return proc.returncode == 0 and bool((proc.stdout or "").strip())


def _nerd_font(ctx: StepContext) -> StepResult:
    font = _nerd_font_config(ctx)
    url = font.get("url")
    name = font.get("name", "Nerd Font")
    if not url:
        return StepResult.failed(f"No download URL configured for {name}")

    target_dir = ctx.paths.font_dir / font.get("dir_name", name.replace(" ", ""))
    target_dir.mkdir(parents=True, exist_ok=True)

    with tempfile.TemporaryDirectory(prefix="nerd_font_") as tmp:
        archive = Path(tmp) / "font.zip"
        ctx.log.info(f"Downloading {name}...")
        try:
            ctx.fetcher.download(url, archive)
        except (requests.RequestException, OSError) as e:
            return StepResult.failed(f"Failed to download {name}: {e}")
        try:
            with zipfile.ZipFile(archive) as zf:
                members = [m for m in zf.namelist() if m.lower().endswith(FONT_SUFFIXES)]
                for member in members:
                    # Flatten into the target directory.
                    with zf.open(member) as src, open(target_dir / Path(member).name, "wb") as dst:
                        shutil.copyfileobj(src, dst)
        except zipfile.BadZipFile as e:
            return StepResult.failed(f"Downloaded {name} archive is corrupt: {e}")

    if not members:
        return StepResult.failed(f"No font files found in the {name} archive")
    _refresh_font_cache(ctx)
    return StepResult.ok(f"{name} installed ({len(members)} files)")


# --- System fonts ---

def _system_fonts_list(ctx: StepContext) -> List[str]:
    return string_list(section(ctx, "fonts").get("system_fonts"))


def _system_fonts(ctx: StepContext) -> StepResult:
    result = install_missing(ctx, _system_fonts_list(ctx), "system fonts")
    if result.outcome is Outcome.SUCCEEDED:
        _refresh_font_cache(ctx, system=True)
    return result


def _system_fonts_present(ctx: StepContext) -> bool:
    fonts = _system_fonts_list(ctx)
    return bool(fonts) and not ctx.dnf.missing(fonts)


# --- Apple fonts ---

def _apple_config(ctx: StepContext) -> dict:
    return section(ctx, "fonts").get("apple_fonts", {})


def _apple_fonts_present(ctx: StepContext) -> bool:
    target = Path(_apple_config(ctx).get("target_dir", "/usr/share/fonts/apple"))
    return target.is_dir() and bool(_font_files(target))


def _7z_extract(ctx: StepContext, archive: Path, cwd: Path) -> bool:
    try:
        ctx.runner(["7z", "x", str(archive), "-y"], capture_output=True, check=True, cwd=cwd, logger=ctx.log.logger)
        return True
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        ctx.log.debug(f"7z could not extract {archive.name}: {e}")
        return False


def _apple_fonts(ctx: StepContext) -> StepResult:
    apple = _apple_config(ctx)
    base_url = apple.get("base_url", "")
    files = string_list(apple.get("files"))
    target = Path(apple.get("target_dir", "/usr/share/fonts/apple"))
    if not base_url or not files:
        return StepResult.unchanged("No Apple fonts configured")

    failures: List[str] = []
    with tempfile.TemporaryDirectory(prefix="apple_fonts_") as tmp:
        work = Path(tmp)
        for dmg_name in files:
            dmg_dir = work / Path(dmg_name).stem
            dmg_dir.mkdir(exist_ok=True)
            dmg = dmg_dir / dmg_name
            ctx.log.sub_step(f"Downloading {dmg_name}...")
            try:
                ctx.fetcher.download(base_url + dmg_name, dmg)
            except (requests.RequestException, OSError) as e:
                ctx.log.error(f"Failed to download {dmg_name}, skipping: {e}")
                failures.append(dmg_name)
                continue

            # dmg -> *.pkg -> Payload, each layer unpacked with 7z.
            ctx.log.sub_step(f"Extracting {dmg_name}...")
            if not _7z_extract(ctx, dmg, dmg_dir):
                ctx.log.error(f"Failed to extract {dmg_name}, skipping")
                failures.append(dmg_name)
                continue
            for pkg in sorted(dmg_dir.rglob("*.pkg")):
                if pkg.is_file():
                    _7z_extract(ctx, pkg, dmg_dir)
            for payload in sorted(dmg_dir.rglob("*")):
                if payload.is_file() and payload.name.lower().startswith("payload"):
                    _7z_extract(ctx, payload, dmg_dir)

        fonts = _font_files(work)
        if not fonts:
            return StepResult.failed("No Apple fonts were extracted", failures)

        ctx.log.info(f"Copying {len(fonts)} font files to {target}...")
        try:
            ctx.runner(["sudo", "mkdir", "-p", str(target)], capture_output=True, check=True, logger=ctx.log.logger)
            ctx.runner(["sudo", "cp", "-n"] + [str(f) for f in fonts] + [str(target) + "/"],
                       capture_output=True, check=True, logger=ctx.log.logger)
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            return StepResult.failed(f"Failed to copy Apple fonts to {target}: {e}")

    _refresh_font_cache(ctx, system=True)
    if failures:
        return StepResult.failed(f"Apple fonts partially installed ({len(fonts)} files)", failures)
    return StepResult.ok(f"Apple fonts installed ({len(fonts)} files)")


def steps() -> List[Step]:
    return [
        Step("basic_packages", Phase.SETUP, _basic_packages, "Installing basic packages",
             is_satisfied=_basic_packages_present),
        Step("nerd_font", Phase.SETUP, _nerd_font, "Installing FiraCode Nerd Font",
             is_satisfied=_nerd_font_present),
        Step("system_fonts", Phase.SETUP, _system_fonts, "Installing system fonts",
             is_satisfied=_system_fonts_present),
        Step("apple_fonts", Phase.SETUP, _apple_fonts, "Installing Apple fonts (SF Pro / Compact / Mono / New York)",
             is_satisfied=_apple_fonts_present),
    ]

# fedora-setup/fedora_setup/phases/terminal.py

from pathlib import Path
from typing import Dict, List, Tuple

from fedora_setup.config_edit import Directive, LineEdit, Mode, apply_directives, directives_satisfied
from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import on_gnome, on_kde, section


# --- GNOME: Ptyxis via gsettings ---

def _ptyxis_settings(ctx: StepContext) -> Tuple[str, Dict[str, str]]:
    gnome = section(ctx, "terminal").get("gnome", {})
    return gnome.get("schema", "org.gnome.Ptyxis"), gnome.get("settings", {})


def _ptyxis_configured(ctx: StepContext) -> bool:
    schema, settings = _ptyxis_settings(ctx)
    if not settings or not ctx.gsettings.available():
        return False
    return all(ctx.gsettings.get(schema, key) == value for key, value in settings.items())


def _terminal_font_gnome(ctx: StepContext) -> StepResult:
    schema, settings = _ptyxis_settings(ctx)
    if not settings:
        return StepResult.unchanged("No Ptyxis settings configured")
    if not ctx.gsettings.available():
        ctx.log.warning("gsettings not available, skipping Ptyxis configuration")
        return StepResult.unchanged("Ptyxis configuration skipped")

    failed = [key for key, value in settings.items() if not ctx.gsettings.set(schema, key, value)]
    if failed:
        return StepResult.failed("Could not configure Ptyxis font", [f"{schema} {key}" for key in failed])
    return StepResult.ok("Ptyxis font configured (restart terminal to apply)")


# --- KDE: Konsole profile ---

def _konsole_files(ctx: StepContext) -> List[Tuple[Path, List[Directive]]]:
    kde = section(ctx, "terminal").get("kde", {})
    name = kde.get("profile_name", "Profile")
    profile = ctx.paths.konsole_profile_dir / f"{name}.profile"
    profile_directives = [
        Directive(r"^Font=", f"Font={kde.get('font', '')}", section="Appearance"),
        Directive(r"^ColorScheme=", f"ColorScheme={kde.get('color_scheme', 'Breeze')}",
                  Mode.APPEND_IF_ABSENT, section="Appearance"),
        Directive(r"^Name=", f"Name={name}", Mode.APPEND_IF_ABSENT, section="General"),
        Directive(r"^Parent=", "Parent=FALLBACK/", Mode.APPEND_IF_ABSENT, section="General"),
    ]
    konsolerc_directives = [
        Directive(r"^DefaultProfile=", f"DefaultProfile={profile.name}", section="Desktop Entry"),
    ]
    return [(profile, profile_directives), (ctx.paths.konsolerc, konsolerc_directives)]


def _konsole_configured(ctx: StepContext) -> bool:
    return all(directives_satisfied(path, directives) for path, directives in _konsole_files(ctx))


def _terminal_font_kde(ctx: StepContext) -> StepResult:
    if not section(ctx, "terminal").get("kde", {}).get("font"):
        return StepResult.unchanged("No Konsole font configured")

    changed = 0
    for path, directives in _konsole_files(ctx):
        if not path.exists():
            ctx.log.info(f"Creating {path}")
            path.parent.mkdir(parents=True, exist_ok=True)
            path.touch()
        edits = apply_directives(path, directives)
        changed += sum(1 for edit in edits if edit is not LineEdit.UNCHANGED)

    if not changed:
        return StepResult.unchanged("Konsole font already configured")
    return StepResult.ok("Konsole font configured (restart Konsole to apply)")


def steps() -> List[Step]:
    return [
        Step("terminal_font_gnome", Phase.SETUP, _terminal_font_gnome, "Configuring Ptyxis terminal font",
             is_satisfied=_ptyxis_configured, applies_to=on_gnome),
        Step("terminal_font_kde", Phase.SETUP, _terminal_font_kde, "Configuring Konsole terminal font",
             is_satisfied=_konsole_configured, applies_to=on_kde),
    ]

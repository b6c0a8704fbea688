# fedora-setup/fedora_setup/phases/optimization.py

import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from fedora_setup.config_edit import Directive, LineEdit, apply_directives, directives_satisfied
from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import on_known_desktop, section, string_list
from fedora_setup.system_utils import command_exists, systemd_unit_state

# Config key -> (systemctl arguments, states that already satisfy it)
SERVICE_ACTIONS: Dict[str, Tuple[List[str], Tuple[str, ...]]] = {
    "mask": (["mask"], ("masked",)),
    "enable_now": (["enable", "--now"], ("enabled",)),
    "disable": (["disable"], ("disabled", "masked")),
}

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


# --- Services ---

def _service_plan(ctx: StepContext) -> List[Tuple[str, str]]:
    services = section(ctx, "services")
    return [(key, unit) for key in SERVICE_ACTIONS for unit in string_list(services.get(key))]


def _pending_services(ctx: StepContext) -> List[Tuple[str, str]]:
    pending = []
    for key, unit in _service_plan(ctx):
        state = systemd_unit_state(unit, runner=ctx.runner, logger=ctx.log.logger)
        if state not in SERVICE_ACTIONS[key][1]:
            pending.append((key, unit))
    return pending


def _system_services(ctx: StepContext) -> StepResult:
    pending = _pending_services(ctx)
    if not pending:
        return StepResult.unchanged("System services already configured")
    failures = []
    for key, unit in pending:
        args = SERVICE_ACTIONS[key][0]
        try:
            ctx.runner(["sudo", "systemctl"] + args + [unit], capture_output=True, check=True, logger=ctx.log.logger)
            ctx.log.sub_step(f"{' '.join(args)} {unit}")
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            failures.append(f"systemctl {' '.join(args)} {unit}: {e}")
    if failures:
        return StepResult.failed("Some service changes failed", failures)
    return StepResult.ok(f"Configured {len(pending)} system service(s)")


# --- DNF tuning ---

def _normalize(value: str) -> str:
    lowered = value.strip().lower()
    if lowered in _TRUTHY:
        return "1"
    if lowered in _FALSY:
        return "0"
    return lowered


def _dnf_options(ctx: StepContext) -> Dict[str, str]:
    return {str(k): str(v) for k, v in section(ctx, "dnf_options").items()}


def _dnf_tuned(ctx: StepContext) -> bool:
    wanted = _dnf_options(ctx)
    if not wanted:
        return True
    current = ctx.dnf.main_config(tool="dnf5")
    return all(_normalize(current.get(key, "")) == _normalize(value) for key, value in wanted.items())


def _dnf_tuning(ctx: StepContext) -> StepResult:
    if not command_exists("dnf5"):
        return StepResult.unchanged("dnf5 not available, skipping DNF tuning")
    options = _dnf_options(ctx)
    result = ctx.dnf.setopt(options, tool="dnf5")
    if not result.ok:
        return StepResult.failed("Failed to configure DNF5", [result.detail])
    return StepResult.ok("DNF5 configured: " + ", ".join(f"{k}={v}" for k, v in options.items()))


# --- Software store autostart ---

def _autostart_entry(ctx: StepContext) -> Optional[Tuple[Path, Path]]:
    entry_name = section(ctx, "software_autostart").get(ctx.facts.desktop.value)
    if not entry_name:
        return None
    return ctx.paths.system_autostart_dir / entry_name, ctx.paths.user_autostart_dir / entry_name


HIDDEN = [Directive(r"^Hidden=", "Hidden=true", section="Desktop Entry")]


def _autostart_disabled(ctx: StepContext) -> bool:
    entry = _autostart_entry(ctx)
    if entry is None:
        return True
    system_file, user_file = entry
    return not system_file.is_file() or directives_satisfied(user_file, HIDDEN)


def _software_autostart(ctx: StepContext) -> StepResult:
    entry = _autostart_entry(ctx)
    if entry is None:
        return StepResult.unchanged(f"No software store autostart entry known for {ctx.facts.desktop.value}")
    system_file, user_file = entry
    if not system_file.is_file():
        return StepResult.unchanged(f"{system_file.name} not installed, nothing to disable")

    user_file.parent.mkdir(parents=True, exist_ok=True)
    if not user_file.exists():
        shutil.copyfile(system_file, user_file)
    edit = apply_directives(user_file, HIDDEN)[0]
    if edit is LineEdit.UNCHANGED:
        return StepResult.unchanged("Software store autostart already disabled")
    return StepResult.ok(f"Software store autostart disabled ({user_file.name})")


def steps() -> List[Step]:
    return [
        Step("system_services", Phase.OPTIMIZATION, _system_services, "Applying system service tweaks",
             is_satisfied=lambda ctx: not _pending_services(ctx)),
        Step("dnf_tuning", Phase.OPTIMIZATION, _dnf_tuning, "Configuring DNF for better performance",
             is_satisfied=_dnf_tuned),
        Step("software_autostart", Phase.OPTIMIZATION, _software_autostart, "Disabling software store autostart",
             is_satisfied=_autostart_disabled, applies_to=on_known_desktop),
    ]

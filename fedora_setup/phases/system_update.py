# fedora-setup/fedora_setup/phases/system_update.py

from typing import List

from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.environment import DesktopEnvironment


def _system_update(ctx: StepContext) -> StepResult:
    ctx.log.info("Cleaning DNF cache...")
    failures: List[str] = []
    for label, result in (("dnf clean all", ctx.dnf.clean_all()), ("dnf makecache", ctx.dnf.makecache())):
        if not result.ok:
            failures.append(f"{label}: {result.detail}")

    ctx.log.info("Upgrading installed packages (this may take a while)...")
    upgrade = ctx.dnf.upgrade()
    if not upgrade.ok:
        failures.append(f"dnf upgrade: {upgrade.detail}")

    if failures:
        return StepResult.failed("System update had errors", failures)
    return StepResult.ok("System updated")


def _reboot_gate(ctx: StepContext) -> StepResult:
    # Only reached when no reboot is pending; the Sequencer halts gate steps otherwise.
    return StepResult.ok("No reboot required")


def _desktop_environment(ctx: StepContext) -> StepResult:
    desktop = ctx.facts.desktop
    if desktop is DesktopEnvironment.UNKNOWN:
        ctx.log.warning("Could not detect desktop environment. Desktop-specific steps will be skipped.")
        return StepResult.unchanged("Desktop environment: unknown")
    return StepResult.ok(f"Detected desktop environment: {desktop.value}")


def update_steps() -> List[Step]:
    return [
        Step("system_update", Phase.UPDATE_AND_GATE, _system_update, "Updating system packages"),
    ]


def gate_steps() -> List[Step]:
    return [
        Step("reboot_gate", Phase.UPDATE_AND_GATE, _reboot_gate, "Checking for pending reboot", gate=True),
        Step("desktop_environment", Phase.DETECTION, _desktop_environment, "Detecting desktop environment"),
    ]

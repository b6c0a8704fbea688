# fedora-setup/fedora_setup/phases/common.py

from typing import Any, Dict, List, Sequence

from fedora_setup.config_loader import get_section
from fedora_setup.engine import StepContext, StepResult
from fedora_setup.environment import DesktopEnvironment, EnvironmentFacts
from fedora_setup.package_manager import TransactionResult


def section(ctx: StepContext, name: str) -> Dict[str, Any]:
    return get_section(ctx.config, name)


def string_list(value: Any) -> List[str]:
    """Config lists may contain stray non-strings; keep only the names."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str) and item.strip()]


# --- Applicability ---

def on_gnome(facts: EnvironmentFacts) -> bool:
    return facts.desktop is DesktopEnvironment.GNOME


def on_kde(facts: EnvironmentFacts) -> bool:
    return facts.desktop is DesktopEnvironment.KDE


def on_known_desktop(facts: EnvironmentFacts) -> bool:
    return facts.desktop is not DesktopEnvironment.UNKNOWN


# --- Results ---

def from_transaction(result: TransactionResult, done: str, failed: str) -> StepResult:
    if result.ok:
        return StepResult.ok(done)
    return StepResult.failed(failed, [result.detail] if result.detail else ())


def install_missing(ctx: StepContext, packages: Sequence[str], label: str, **install_args) -> StepResult:
    """Installs whichever of `packages` are missing, reporting under `label`."""
    if not packages:
        return StepResult.unchanged(f"No {label} configured")
    missing = ctx.dnf.missing(packages)
    if not missing:
        return StepResult.unchanged(f"All {label} already installed")
    ctx.log.info(f"Installing {len(missing)} {label}: {' '.join(missing)}")
    return from_transaction(
        ctx.dnf.install(missing, **install_args),
        f"{label.capitalize()} installed",
        f"Some {label} failed to install",
    )

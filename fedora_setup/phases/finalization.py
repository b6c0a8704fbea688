# fedora-setup/fedora_setup/phases/finalization.py

from typing import List, Optional

from fedora_setup.config_edit import Directive, LineEdit, Mode, apply_directives, directives_satisfied
from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import section

P10K_WIZARD = Directive(
    r"^POWERLEVEL10K_DISABLE_CONFIGURATION_WIZARD=",
    "POWERLEVEL10K_DISABLE_CONFIGURATION_WIZARD=true",
    Mode.APPEND_IF_ABSENT,
)


def _alias_directive(ctx: StepContext) -> Optional[Directive]:
    alias = section(ctx, "aliases").get("update", {})
    if not alias.get("pattern") or not alias.get("line"):
        return None
    return Directive(alias["pattern"], alias["line"], Mode.REPLACE, comment=alias.get("comment"))


def _alias_present(ctx: StepContext) -> bool:
    directive = _alias_directive(ctx)
    return directive is not None and directives_satisfied(ctx.paths.zshrc, [directive])


def _update_alias(ctx: StepContext) -> StepResult:
    directive = _alias_directive(ctx)
    if directive is None:
        return StepResult.unchanged("No update alias configured")
    edit = apply_directives(ctx.paths.zshrc, [directive])[0]
    if edit is LineEdit.FILE_MISSING:
        ctx.log.warning(f"{ctx.paths.zshrc} not found, skipping alias creation")
        return StepResult.unchanged(".zshrc not found, alias not created")
    if edit is LineEdit.UNCHANGED:
        return StepResult.unchanged("Update alias already present")
    return StepResult.ok("Update alias added to .zshrc")


def _p10k_wizard_disabled(ctx: StepContext) -> bool:
    return ctx.paths.p10k_config.is_file() and directives_satisfied(ctx.paths.zshrc, [P10K_WIZARD])


def _p10k_wizard(ctx: StepContext) -> StepResult:
    if not ctx.paths.p10k_config.is_file():
        return StepResult.unchanged("No ~/.p10k.zsh yet; the configuration wizard will run on first ZSH start")
    edit = apply_directives(ctx.paths.zshrc, [P10K_WIZARD])[0]
    if edit is LineEdit.FILE_MISSING:
        ctx.log.warning(f"{ctx.paths.zshrc} not found, leaving the Powerlevel10k wizard enabled")
        return StepResult.unchanged(".zshrc not found, wizard setting not written")
    if edit is LineEdit.UNCHANGED:
        return StepResult.unchanged("Powerlevel10k configuration wizard already disabled")
    return StepResult.ok("Powerlevel10k configuration wizard disabled")


def steps() -> List[Step]:
    return [
        Step("update_alias", Phase.FINALIZATION, _update_alias, "Creating update alias",
             is_satisfied=_alias_present),
        Step("p10k_wizard", Phase.FINALIZATION, _p10k_wizard, "Disabling Powerlevel10k configuration wizard",
             is_satisfied=_p10k_wizard_disabled),
    ]

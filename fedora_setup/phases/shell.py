# fedora-setup/fedora_setup/phases/shell.py

import shutil
import subprocess
from pathlib import Path
from typing import List, Optional

import requests

from fedora_setup.artifacts import run_fetched_script
from fedora_setup.config_edit import Directive, LineEdit, Mode, apply_directives, directives_satisfied
from fedora_setup.engine import Phase, Step, StepContext, StepResult
from fedora_setup.phases.common import section
from fedora_setup.system_utils import get_user_shell, git_clone_or_pull, set_default_shell

P10K_SOURCE_PATTERN = r"\[\[.*~/\.p10k\.zsh.*\]\].*source"
P10K_SOURCE_LINE = "[[ ! -f ~/.p10k.zsh ]] || source ~/.p10k.zsh"


def _p10k_theme_dir(ctx: StepContext) -> Path:
    return ctx.paths.oh_my_zsh_dir / "custom" / "themes" / "powerlevel10k"


# --- Oh My Zsh ---

def _oh_my_zsh_present(ctx: StepContext) -> bool:
    return ctx.paths.oh_my_zsh_dir.is_dir()


def _oh_my_zsh(ctx: StepContext) -> StepResult:
    url = section(ctx, "shell").get("oh_my_zsh_installer")
    if not url:
        return StepResult.failed("No Oh My Zsh installer URL configured")
    ctx.log.info("Installing Oh My Zsh...")
    try:
        run_fetched_script(
            ctx.fetcher, url, ctx.log, runner=ctx.runner, interpreter="sh",
            env_vars={"CHSH": "no", "RUNZSH": "no", "KEEP_ZSHRC": "yes"}, scan=False,
        )
    except requests.RequestException as e:
        return StepResult.failed(f"Failed to download the Oh My Zsh installer: {e}")
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        return StepResult.failed(f"Oh My Zsh installer failed: {e}")
    return StepResult.ok("Oh My Zsh installed")


# --- Powerlevel10k ---

def _head_revision(ctx: StepContext, repo_dir: Path) -> Optional[str]:
    if not (repo_dir / ".git").is_dir():
        return None
    proc = ctx.runner(["git", "-C", str(repo_dir), "rev-parse", "HEAD"], capture_output=True, check=False,
                      logger=ctx.log.logger)
    if proc.returncode != 0:
        return None
    return (proc.stdout or "").strip() or None


def _powerlevel10k(ctx: StepContext) -> StepResult:
    repo = section(ctx, "shell").get("powerlevel10k_repo")
    if not repo:
        return StepResult.failed("No Powerlevel10k repository configured")
    theme_dir = _p10k_theme_dir(ctx)
    before = _head_revision(ctx, theme_dir)
    try:
        action = git_clone_or_pull(repo, theme_dir, runner=ctx.runner, logger=ctx.log.logger)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        return StepResult.failed(f"Failed to install Powerlevel10k: {e}")
    if action == "cloned":
        return StepResult.ok("Powerlevel10k installed")
    if before is not None and before == _head_revision(ctx, theme_dir):
        return StepResult.unchanged("Powerlevel10k already up to date")
    return StepResult.ok("Powerlevel10k updated")


# --- .zshrc theme ---

def _theme_directives(ctx: StepContext) -> List[Directive]:
    theme = section(ctx, "shell").get("theme", "powerlevel10k/powerlevel10k")
    return [
        Directive(r"^ZSH_THEME=", f'ZSH_THEME="{theme}"'),
        Directive(P10K_SOURCE_PATTERN, P10K_SOURCE_LINE, Mode.APPEND_IF_ABSENT),
    ]


def _zsh_theme_configured(ctx: StepContext) -> bool:
    return directives_satisfied(ctx.paths.zshrc, _theme_directives(ctx))


def _zsh_theme(ctx: StepContext) -> StepResult:
    edits = apply_directives(ctx.paths.zshrc, _theme_directives(ctx))
    if LineEdit.FILE_MISSING in edits:
        ctx.log.warning(f"{ctx.paths.zshrc} not found, skipping theme configuration")
        return StepResult.unchanged(".zshrc not found, theme not configured")
    if all(edit is LineEdit.UNCHANGED for edit in edits):
        return StepResult.unchanged("ZSH theme already configured")
    return StepResult.ok("ZSH theme configured in .zshrc")


# --- Login shell ---

def _zsh_is_default(ctx: StepContext) -> bool:
    zsh_path = shutil.which("zsh")
    return zsh_path is not None and get_user_shell(ctx.user, logger=ctx.log.logger) == zsh_path


def _default_shell(ctx: StepContext) -> StepResult:
    zsh_path = shutil.which("zsh")
    if not zsh_path:
        return StepResult.failed("ZSH not installed, skipping shell change")
    ctx.log.info("Changing default shell to ZSH...")
    try:
        set_default_shell(ctx.user, zsh_path, runner=ctx.runner, logger=ctx.log.logger)
    except (subprocess.CalledProcessError, FileNotFoundError) as e:
        return StepResult.failed(f"Failed to change default shell: {e}")
    return StepResult.ok("Default shell changed to ZSH (re-login to apply)")


def steps() -> List[Step]:
    return [
        Step("oh_my_zsh", Phase.SETUP, _oh_my_zsh, "Installing Oh My Zsh", is_satisfied=_oh_my_zsh_present),
        Step("powerlevel10k", Phase.SETUP, _powerlevel10k, "Installing Powerlevel10k theme"),
        Step("zsh_theme", Phase.SETUP, _zsh_theme, "Configuring ZSH theme", is_satisfied=_zsh_theme_configured),
        Step("default_shell", Phase.SETUP, _default_shell, "Setting ZSH as default shell",
             is_satisfied=_zsh_is_default),
    ]

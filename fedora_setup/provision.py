# fedora-setup/fedora_setup/provision.py

from pathlib import Path
from typing import Callable, List, Mapping, Optional, Sequence, Tuple

from rich.text import Text

from fedora_setup import console_output as con
from fedora_setup import environment
from fedora_setup.config import CONFIG_FILE_PATH, PROC_STAT_PATH, SCRIPT_VERSION, AppPaths, default_paths
from fedora_setup.config_loader import load_configuration
from fedora_setup.engine import RunSummary, Sequencer, Step, StepContext
from fedora_setup.environment import EnvironmentFacts, FatalPreconditionError
from fedora_setup.fetch import HttpFetcher
from fedora_setup.logger_utils import RunLog
from fedora_setup.package_manager import Dnf, Flatpak
from fedora_setup.phases import build_provisioning_steps, build_update_steps
from fedora_setup.settings_store import GSettings
from fedora_setup.system_utils import Runner, command_exists, get_current_user, run_command

EXIT_INTERRUPTED = 130

NEXT_STEPS = (
    "Restart your terminal or run: source ~/.zshrc",
    "Log out and log back in to use ZSH as default shell",
    "Run 'update' command to check for updates anytime",
)


def build_context(app_config: dict, paths: AppPaths, log: RunLog, runner: Runner = run_command,
                  fetcher: Optional[HttpFetcher] = None, user: Optional[str] = None) -> StepContext:
    """Wires the collaborators every step shares, all logging into `log`."""
    return StepContext(
        config=app_config,
        paths=paths,
        log=log,
        runner=runner,
        dnf=Dnf(runner, log.logger),
        flatpak=Flatpak(runner, log.logger),
        gsettings=GSettings(runner, log.logger),
        fetcher=fetcher or HttpFetcher(logger=log.logger),
        user=user or get_current_user(),
    )


def provision(
    ctx: StepContext,
    release_file: Path = environment.FEDORA_RELEASE_FILE,
    proc_stat: Path = PROC_STAT_PATH,
    environ: Optional[Mapping[str, str]] = None,
    kernel_release: Optional[str] = None,
    has_command: Callable[[str], bool] = command_exists,
    update_steps: Optional[Sequence[Step]] = None,
    main_steps: Optional[Sequence[Step]] = None,
) -> Tuple[RunSummary, Optional[EnvironmentFacts]]:
    """
    One complete run: distribution check, system update, environment
    detection, then every provisioning step behind the reboot gate.

    Raises FatalPreconditionError before any step runs when the host is not
    Fedora.
    """
    environment.require_target_distribution(release_file)

    sequencer = Sequencer(ctx)
    summary = sequencer.run(build_update_steps() if update_steps is None else update_steps, facts=None)
    if summary.stopped:
        return summary, None

    facts = environment.detect(
        ctx.log,
        runner=ctx.runner,
        environ=environ,
        release_file=release_file,
        proc_stat=proc_stat,
        kernel_release=kernel_release,
        has_command=has_command,
    )
    summary.extend(sequencer.run(build_provisioning_steps() if main_steps is None else main_steps, facts))
    return summary, facts


def _bullet_list(body: Text, items: List[str], style: str = "") -> None:
    for item in items:
        body.append(f"  • {item}\n", style=style)


def print_summary(summary: RunSummary, facts: Optional[EnvironmentFacts], log: RunLog) -> None:
    """Human-readable end-of-run report. The reboot banner replaces it when the gate fired."""
    log.info(
        f"Run summary: {len(summary.succeeded)} succeeded, {len(summary.skipped)} already done, "
        f"{len(summary.not_applicable)} not applicable, {len(summary.failed)} failed"
    )
    if summary.halted_for_reboot:
        return

    body = Text()
    desktop = facts.desktop.value if facts else "not detected"
    body.append("Desktop environment: ", style="bold")
    body.append(f"{desktop}\n\n")
    body.append(f"✔ {len(summary.succeeded)} succeeded", style="green")
    body.append(f"   ↺ {len(summary.skipped)} already done", style="cyan")
    body.append(f"   – {len(summary.not_applicable)} not applicable", style="dim")
    body.append(f"   ✘ {len(summary.failed)} failed\n", style="red" if summary.failed else "dim")

    if summary.failed:
        body.append("\nFailed steps (see log for details):\n", style="bold red")
        _bullet_list(body, summary.failed, style="red")

    if not summary.fatal:
        body.append("\nNext steps:\n", style="bold")
        for number, step in enumerate(NEXT_STEPS, start=1):
            body.append(f"  {number}. {step}\n")

    body.append("\nLog file: ", style="bold")
    body.append(str(log.path))

    title = "Setup Finished With Errors" if summary.failed else "Setup Complete!"
    con.print_panel(body, title=title, style="red" if summary.fatal else ("yellow" if summary.failed else "green"))


def main() -> int:
    """Runs the whole provisioning and returns the process exit code."""
    paths = default_paths()
    log = RunLog(paths.log_file)
    try:
        con.print_rule(f"Fedora Workstation Post-Installation Setup v{SCRIPT_VERSION}", style="bold magenta", char="=")
        log.info(f"Log file: {log.path}")

        app_config = load_configuration(CONFIG_FILE_PATH)
        if not app_config:
            log.critical(f"Failed to load or parse '{CONFIG_FILE_PATH}'. Please ensure it exists and is valid.")
            return 1

        ctx = build_context(app_config, paths, log)
        summary, facts = provision(ctx)
        print_summary(summary, facts, log)
        return summary.exit_code

    except FatalPreconditionError as e:
        log.critical(str(e))
        return 1
    except KeyboardInterrupt:
        con.console.line()
        log.warning("Operation cancelled by user. Exiting.")
        return EXIT_INTERRUPTED
    except Exception as e:
        log.logger.critical(f"An unexpected critical error occurred: {e}", exc_info=True)
        con.console.print_exception()
        con.print_error(f"An unexpected critical error occurred: {e}. Check the log file for details.")
        return 1
    finally:
        log.info(f"Log file saved to: {log.path}")
        log.close()

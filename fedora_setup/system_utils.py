# fedora-setup/fedora_setup/system_utils.py

import logging
import os
import pwd
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from fedora_setup import console_output as con
from fedora_setup.logger_utils import LOGGER_NAME

default_script_logger = logging.getLogger(LOGGER_NAME)

Command = Union[str, List[str]]
Runner = Callable[..., subprocess.CompletedProcess]


def _display(command: Command) -> str:
    if isinstance(command, list):
        return subprocess.list2cmdline([str(item) for item in command])
    return command


def run_command(
    command: Command,
    capture_output: bool = True,
    check: bool = True,
    shell: bool = False,
    cwd: Optional[Union[str, Path]] = None,
    env_vars: Optional[Dict[str, str]] = None,
    input_text: Optional[str] = None,
    stream_output: bool = False,
    logger: Optional[logging.Logger] = None
) -> subprocess.CompletedProcess:
    """
    Runs a command and logs it, with its stdout and stderr, to the run log.

    stream_output=True echoes output line by line to the console while it is
    produced (long dnf/flatpak transactions) and still records it in the log.
    Raises CalledProcessError on non-zero exit when check=True, and
    FileNotFoundError when the executable is missing.
    """
    log = logger or default_script_logger
    display_command_str = _display(command)

    current_env = os.environ.copy()
    if env_vars:
        current_env.update(env_vars)

    log.info(f"Executing: {display_command_str}")

    try:
        if stream_output:
            process = _run_streaming(command, shell, cwd, current_env, log)
        else:
            process = subprocess.run(
                command,
                check=False, # We will check manually to provide better error logging
                capture_output=capture_output,
                input=input_text,
                text=True,
                shell=shell,
                cwd=str(cwd) if cwd else None,
                env=current_env
            )
            if process.stdout and process.stdout.strip():
                log.debug(f"CMD STDOUT for '{display_command_str}':\n{process.stdout.strip()}")
            if process.stderr and process.stderr.strip():
                # Some commands use stderr for non-fatal info
                log.debug(f"CMD STDERR for '{display_command_str}':\n{process.stderr.strip()}")
    except FileNotFoundError:
        if isinstance(command, list):
            cmd_part_not_found = str(command[0]) if command else ""
        else:
            cmd_part_not_found = shlex.split(command)[0] if command.strip() else ""
        log.error(f"Command executable not found: '{cmd_part_not_found}' (Full command attempted: '{display_command_str}')")
        raise

    if check and process.returncode != 0:
        log.error(f"Command '{display_command_str}' returned non-zero exit status {process.returncode}.")
        if process.stderr and process.stderr.strip():
            log.error(f"STDERR: {process.stderr.strip()}")
        raise subprocess.CalledProcessError(
            returncode=process.returncode,
            cmd=command,
            output=process.stdout,
            stderr=process.stderr
        )
    return process


def _run_streaming(command: Command, shell: bool, cwd, env, log: logging.Logger) -> subprocess.CompletedProcess:
    collected: List[str] = []
    with subprocess.Popen(
        command,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        shell=shell,
        cwd=str(cwd) if cwd else None,
        env=env
    ) as proc:
        assert proc.stdout is not None
        for line in proc.stdout:
            line = line.rstrip("\n")
            collected.append(line)
            con.print_command_output(line)
            log.debug(line)
        returncode = proc.wait()
    return subprocess.CompletedProcess(command, returncode, stdout="\n".join(collected), stderr="")


def command_exists(name: str) -> bool:
    return shutil.which(name) is not None


def get_current_user() -> str:
    """Name of the invoking user. The tool runs unprivileged and escalates with sudo per command."""
    try:
        return os.getlogin()
    except OSError:
        # Fallback if os.getlogin() fails (e.g., in some non-interactive environments)
        return pwd.getpwuid(os.getuid()).pw_name


def get_user_shell(username: str, logger: Optional[logging.Logger] = None) -> Optional[str]:
    """Login shell from the passwd database, or None if the user is unknown."""
    log = logger or default_script_logger
    try:
        return pwd.getpwnam(username).pw_shell or None
    except KeyError:
        log.warning(f"User '{username}' not found in the passwd database.")
        return None


def set_default_shell(username: str, shell_path: str, runner: Runner = run_command, logger: Optional[logging.Logger] = None) -> None:
    """Changes `username`'s login shell with chsh. Takes effect at next login."""
    runner(["chsh", "-s", shell_path, username], capture_output=True, check=True, logger=logger)


def git_clone_or_pull(
    repo_url: str,
    target_dir: Path,
    runner: Runner = run_command,
    logger: Optional[logging.Logger] = None
) -> str:
    """Shallow-clones `repo_url` into `target_dir`, or fast-forwards an existing checkout.

    Returns "cloned" or "updated".
    """
    if (target_dir / ".git").is_dir():
        runner(["git", "-C", str(target_dir), "pull", "--ff-only"], capture_output=True, check=True, logger=logger)
        return "updated"
    if target_dir.exists():
        # Leftover from an interrupted clone.
        log = logger or default_script_logger
        log.warning(f"{target_dir} exists but is not a git checkout, removing it before cloning.")
        if target_dir.is_dir() and not target_dir.is_symlink():
            shutil.rmtree(target_dir)
        else:
            target_dir.unlink()
    target_dir.parent.mkdir(parents=True, exist_ok=True)
    runner(["git", "clone", "--depth=1", repo_url, str(target_dir)], capture_output=True, check=True, logger=logger)
    return "cloned"


def systemd_unit_state(unit: str, runner: Runner = run_command, logger: Optional[logging.Logger] = None) -> str:
    """Output of `systemctl is-enabled` (enabled, disabled, masked, ...), or "unknown"."""
    try:
        proc = runner(["systemctl", "is-enabled", unit], capture_output=True, check=False, logger=logger)
    except FileNotFoundError:
        return "unknown"
    state = (proc.stdout or "").strip().splitlines()
    return state[0].strip() if state else "unknown"

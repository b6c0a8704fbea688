# fedora-setup/fedora_setup/settings_store.py

import logging
import subprocess
from typing import Optional

from fedora_setup.system_utils import Runner, command_exists, default_script_logger, run_command


class GSettings:
    """Key-value view of the GNOME settings store, via the gsettings CLI.

    Values use GVariant text syntax both ways: strings come back quoted
    ("'FiraCode Nerd Font Mono weight=450 10'"), booleans as true/false.
    """

    def __init__(self, runner: Runner = run_command, logger: Optional[logging.Logger] = None):
        self.runner = runner
        self.log = logger or default_script_logger

    def available(self) -> bool:
        return command_exists("gsettings")

    def get(self, schema: str, key: str) -> Optional[str]:
        try:
            proc = self.runner(["gsettings", "get", schema, key], capture_output=True, check=False, logger=self.log)
        except FileNotFoundError:
            return None
        if proc.returncode != 0:
            return None
        return (proc.stdout or "").strip()

    def set(self, schema: str, key: str, value: str) -> bool:
        try:
            self.runner(["gsettings", "set", schema, key, value], capture_output=True, check=True, logger=self.log)
            return True
        except (subprocess.CalledProcessError, FileNotFoundError) as e:
            self.log.error(f"gsettings set {schema} {key} failed: {e}")
            return False

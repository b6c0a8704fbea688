# fedora-setup/fedora_setup/config.py

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

# --- Constants ---
SCRIPT_VERSION = "1.1.0"
CONFIG_FILE_NAME = "packages.json"
CONFIG_FILE_PATH = Path(__file__).parent / CONFIG_FILE_NAME

LOG_FILE_PREFIX = "fedora-setup"
LOG_TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"

FEDORA_RELEASE_FILE = Path("/etc/fedora-release")
PROC_STAT_PATH = Path("/proc/stat")
SYSTEM_AUTOSTART_DIR = Path("/etc/xdg/autostart")
YUM_REPOS_DIR = Path("/etc/yum.repos.d")

# Written into every extracted application tree; records the artifact it was built from.
INSTALL_MARKER_NAME = ".fedora-setup-artifact"


@dataclass(frozen=True)
class AppPaths:
    """Filesystem locations owned by one provisioning run."""
    home: Path
    log_file: Path
    apps_dir: Path
    packages_dir: Path
    font_dir: Path
    system_autostart_dir: Path = SYSTEM_AUTOSTART_DIR
    yum_repos_dir: Path = YUM_REPOS_DIR

    @property
    def zshrc(self) -> Path:
        return self.home / ".zshrc"

    @property
    def p10k_config(self) -> Path:
        return self.home / ".p10k.zsh"

    @property
    def oh_my_zsh_dir(self) -> Path:
        return self.home / ".oh-my-zsh"

    @property
    def user_autostart_dir(self) -> Path:
        return self.home / ".config" / "autostart"

    @property
    def desktop_entries_dir(self) -> Path:
        return self.home / ".local" / "share" / "applications"

    @property
    def konsole_profile_dir(self) -> Path:
        return self.home / ".local" / "share" / "konsole"

    @property
    def konsolerc(self) -> Path:
        return self.home / ".config" / "konsolerc"


def default_paths(home: Optional[Path] = None, started_at: Optional[datetime] = None) -> AppPaths:
    """Builds the standard layout under the user's home; the log file is named by start time."""
    home = home or Path.home()
    started_at = started_at or datetime.now()
    log_name = f"{LOG_FILE_PREFIX}-{started_at.strftime(LOG_TIMESTAMP_FORMAT)}.log"
    return AppPaths(
        home=home,
        log_file=home / log_name,
        apps_dir=home / "Applications",
        packages_dir=home / "packages",
        font_dir=home / ".local" / "share" / "fonts",
    )

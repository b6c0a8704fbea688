# fedora-setup/fedora_setup/logger_utils.py
import logging
import sys
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional

from rich.markup import escape

from fedora_setup import console_output as con

LOGGER_NAME = "FedoraSetup"

# Between INFO (20) and WARNING (30) so file handlers at INFO keep it.
SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")


class Severity(Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: SUCCESS,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}

_PRINTERS = {
    Severity.INFO: con.print_info,
    Severity.SUCCESS: con.print_success,
    Severity.WARNING: con.print_warning,
    Severity.ERROR: con.print_error,
    Severity.CRITICAL: con.print_critical,
}


@dataclass(frozen=True)
class LogEntry:
    timestamp: datetime
    severity: Severity
    message: str


def setup_logger(
    log_file_path: Path,
    logger_name: str = LOGGER_NAME,
    log_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Configures and returns a logger that appends to `log_file_path`.

    The FileHandler flushes after every record, so a crash or Ctrl-C never
    loses what was already logged. Console output is not handled here;
    RunLog mirrors user-facing lines through console_output.
    """
    logger = logging.getLogger(logger_name)
    logger.setLevel(log_level)
    logger.propagate = False

    # Prevent adding multiple handlers if this function is called multiple times
    # for the same logger name (e.g., in tests).
    if logger.hasHandlers():
        for handler in list(logger.handlers):
            handler.close()
        logger.handlers.clear()

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file_path, mode='a', encoding='utf-8')
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        # This should not use console_output.py: the run log is what reports to it.
        sys.stderr.write(f"ERROR [logger_utils]: Could not open log file {log_file_path}. File logging disabled. Error: {e}\n")

    if not logger.hasHandlers():
        logger.addHandler(logging.NullHandler())

    return logger


class RunLog:
    """
    Append-only record of one provisioning run.

    Every entry is timestamped, written to the log file immediately and
    echoed to the Rich console. Tool output goes to the file only (debug).
    """

    def __init__(self, log_file: Path, logger_name: str = LOGGER_NAME, echo: bool = True):
        self.path = log_file
        self.logger = setup_logger(log_file, logger_name=logger_name)
        self.entries: List[LogEntry] = []
        self._echo = echo
        self._closed = False

    def _record(self, severity: Severity, message: str, exc_info: bool = False) -> None:
        self.entries.append(LogEntry(datetime.now(), severity, message))
        self.logger.log(_LEVELS[severity], message, exc_info=exc_info)
        if self._echo:
            _PRINTERS[severity](escape(message))

    def info(self, message: str) -> None:
        self._record(Severity.INFO, message)

    def success(self, message: str) -> None:
        self._record(Severity.SUCCESS, message)

    def warning(self, message: str) -> None:
        self._record(Severity.WARNING, message)

    def error(self, message: str, exc_info: bool = False) -> None:
        self._record(Severity.ERROR, message, exc_info=exc_info)

    def critical(self, message: str) -> None:
        self._record(Severity.CRITICAL, message)

    def debug(self, message: str) -> None:
        """File-only detail; not part of the user-facing entries."""
        self.logger.debug(message)

    def section(self, title: str) -> None:
        self.logger.info("=" * 40)
        self.logger.info(title)
        self.logger.info("=" * 40)
        if self._echo:
            con.print_step(escape(title))

    def sub_step(self, message: str) -> None:
        self.logger.info(message)
        if self._echo:
            con.print_sub_step(escape(message))

    def messages(self, severity: Optional[Severity] = None) -> List[str]:
        return [e.message for e in self.entries if severity is None or e.severity is severity]

    def close(self) -> None:
        """Flushes and detaches the file handler. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        for handler in list(self.logger.handlers):
            handler.flush()
            handler.close()
            self.logger.removeHandler(handler)

# fedora-setup/fedora_setup/config_edit.py

import os
import re
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple


class Mode(Enum):
    REPLACE = "replace"
    APPEND_IF_ABSENT = "append_if_absent"


class LineEdit(Enum):
    UNCHANGED = "unchanged"
    REPLACED = "replaced"
    APPENDED = "appended"
    FILE_MISSING = "file_missing"


@dataclass(frozen=True)
class Directive:
    """One line-level rule for a text configuration file.

    REPLACE: the first line matching `match_pattern` becomes `desired_line`,
    later matches are dropped, and the line is appended when nothing matches.
    APPEND_IF_ABSENT: `desired_line` is appended only if no line matches.
    `section` limits matching and appending to an INI-style [section].
    `comment` is written above the line, only when appending.
    """
    match_pattern: str
    desired_line: str
    mode: Mode = Mode.REPLACE
    section: Optional[str] = None
    comment: Optional[str] = None

    def __post_init__(self):
        # A desired line the pattern cannot find would be appended on every run.
        if not re.search(self.match_pattern, self.desired_line):
            raise ValueError(
                f"Desired line {self.desired_line!r} does not match its own pattern {self.match_pattern!r}."
            )


def _section_bounds(lines: List[str], section: Optional[str]) -> Optional[Tuple[int, int]]:
    """[start, end) of the lines belonging to `section`; the whole file when section is None."""
    if section is None:
        return 0, len(lines)
    header = f"[{section}]"
    for i, line in enumerate(lines):
        if line.strip() == header:
            end = i + 1
            while end < len(lines) and not lines[end].strip().startswith("["):
                end += 1
            return i + 1, end
    return None


def _append(lines: List[str], directive: Directive) -> List[str]:
    block = ([directive.comment] if directive.comment else []) + [directive.desired_line]
    bounds = _section_bounds(lines, directive.section)

    if directive.section is not None and bounds is None:
        prefix = [""] if lines and lines[-1].strip() else []
        return lines + prefix + [f"[{directive.section}]"] + block

    start, end = bounds if bounds else (0, len(lines))
    # Insert after the last non-blank line of the range, keeping trailing blank lines below.
    insert_at = end
    while insert_at > start and not lines[insert_at - 1].strip():
        insert_at -= 1
    if directive.section is None and directive.comment and insert_at > 0 and lines[insert_at - 1].strip():
        block = [""] + block
    return lines[:insert_at] + block + lines[insert_at:]


def plan_line(lines: Sequence[str], directive: Directive) -> Tuple[List[str], LineEdit]:
    """Pure form of ensure_line: returns the new line list and what would change."""
    current = list(lines)
    regex = re.compile(directive.match_pattern)
    bounds = _section_bounds(current, directive.section)
    matches = []
    if bounds is not None:
        start, end = bounds
        matches = [i for i in range(start, end) if regex.search(current[i])]

    if not matches:
        return _append(current, directive), LineEdit.APPENDED

    if directive.mode is Mode.APPEND_IF_ABSENT:
        return current, LineEdit.UNCHANGED

    first = matches[0]
    if current[first] == directive.desired_line and len(matches) == 1:
        return current, LineEdit.UNCHANGED

    updated = list(current)
    updated[first] = directive.desired_line
    for i in reversed(matches[1:]):
        del updated[i]
    return updated, LineEdit.REPLACED


def _read_lines(path: Path) -> List[str]:
    return path.read_text(encoding="utf-8").splitlines()


def _write_lines(path: Path, lines: List[str]) -> None:
    """Writes through a temp file in the same directory so a crash never leaves half a file."""
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f_out:
            f_out.write("\n".join(lines) + "\n")
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def ensure_line(
    path: Path,
    match_pattern: str,
    desired_line: str,
    mode: Mode = Mode.REPLACE,
    section: Optional[str] = None,
    comment: Optional[str] = None,
) -> LineEdit:
    """Applies a single directive to `path`. A missing file is reported, not created."""
    return apply_directives(path, [Directive(match_pattern, desired_line, mode, section, comment)])[0]


def apply_directives(path: Path, directives: Sequence[Directive]) -> List[LineEdit]:
    """Applies directives in order and writes the file once, only if something changed."""
    if not path.is_file():
        return [LineEdit.FILE_MISSING for _ in directives]

    lines = _read_lines(path)
    edits: List[LineEdit] = []
    for directive in directives:
        lines, edit = plan_line(lines, directive)
        edits.append(edit)

    if any(edit is not LineEdit.UNCHANGED for edit in edits):
        _write_lines(path, lines)
    return edits


def directives_satisfied(path: Path, directives: Sequence[Directive]) -> bool:
    """True when the file exists and applying `directives` would change nothing."""
    if not path.is_file():
        return False
    lines = _read_lines(path)
    for directive in directives:
        lines, edit = plan_line(lines, directive)
        if edit is not LineEdit.UNCHANGED:
            return False
    return True

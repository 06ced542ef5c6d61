"""
Idempotent ``KEY VALUE`` editor for line-oriented configuration files.

The first line whose key matches (optionally indented, optionally
commented out with a single ``#``) is rewritten in place; otherwise the
directive is appended. Every other line is preserved byte-for-byte.

If a key occurs more than once, only the first occurrence is rewritten.
Later duplicates are left exactly as they are.
"""

import logging
import re
from collections import OrderedDict
from typing import Iterable, List, Optional, Pattern, Sequence, Tuple

from ..core.errors import ConfigAccessError
from ..core.models import Directive
from ..system.base import SystemState
from .snapshots import SnapshotHelper


logger = logging.getLogger(__name__)


def _directive_pattern(key: str) -> Pattern[str]:
    """Match ``key`` at the start of a line, commented out or not."""
    return re.compile(r'^[ \t]*#?[ \t]*' + re.escape(key) + r'(?=[ \t]|$)')


def _active_pattern(key: str) -> Pattern[str]:
    """Match an uncommented ``key value`` line and capture the value."""
    return re.compile(r'^[ \t]*' + re.escape(key) + r'(?:[ \t]+(.*?))?[ \t]*$')


def split_lines(content: str) -> List[str]:
    """Split on ``\\n`` only, keeping terminators, so joining restores the input."""
    parts = content.split('\n')
    lines = [part + '\n' for part in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def _split_terminator(line: str) -> Tuple[str, str]:
    body = line.rstrip('\r\n')
    return body, line[len(body):]


def set_directive(lines: Sequence[str], key: str, value: str) -> List[str]:
    """
    Return ``lines`` with ``key value`` set.

    Args:
        lines: File lines including their terminators
        key: Directive keyword
        value: Desired value

    Returns:
        List[str]: New line list; unrelated lines are the same objects
    """
    pattern = _directive_pattern(key)
    desired = f"{key} {value}"
    updated = list(lines)

    for index, line in enumerate(updated):
        body, terminator = _split_terminator(line)
        if pattern.match(body):
            updated[index] = desired + terminator
            return updated

    if updated and not updated[-1].endswith('\n'):
        updated[-1] = updated[-1] + '\n'
    updated.append(desired + '\n')
    return updated


def get_directive(lines: Iterable[str], key: str) -> Optional[str]:
    """Value of the first active line for ``key``, or None."""
    pattern = _active_pattern(key)
    for line in lines:
        body, _ = _split_terminator(line)
        match = pattern.match(body)
        if match:
            return match.group(1) or ""
    return None


class DirectiveEditor:
    """
    Applies directives to files on the system state.

    The file is snapshotted (once per run) immediately before the first
    write that actually changes it.
    """

    def __init__(self, state: SystemState, snapshots: SnapshotHelper):
        self.state = state
        self.snapshots = snapshots

    def apply(self, file_path: str, key: str, value: str) -> bool:
        """
        Ensure ``file_path`` contains the active line ``key value``.

        Returns:
            bool: True if the file content changed

        Raises:
            ConfigAccessError: If the file cannot be read or written
        """
        return self.apply_all(file_path, [(key, value)])

    def apply_all(self, file_path: str, directives: Sequence[Tuple[str, str]]) -> bool:
        """
        Apply several ``(key, value)`` pairs to one file in a single write.

        Returns:
            bool: True if the file content changed
        """
        keys = ", ".join(key for key, _ in directives)
        original = self._read(file_path, keys)

        lines = split_lines(original)
        for key, value in directives:
            lines = set_directive(lines, key, value)
        updated = "".join(lines)

        if updated == original:
            logger.debug("%s already has %s", file_path, keys)
            return False

        self.snapshots.ensure_snapshot(file_path)
        try:
            self.state.write_file(file_path, updated)
        except (OSError, UnicodeError) as e:
            raise ConfigAccessError(f"Cannot write {file_path}: {e}", path=file_path, key=keys)

        logger.info("Updated %s: %s", file_path, keys)
        return True

    def apply_directives(self, directives: Sequence[Directive]) -> List[str]:
        """
        Apply directive models, grouped per file in first-seen order.

        Returns:
            List[str]: Paths whose content changed
        """
        grouped: "OrderedDict[str, List[Tuple[str, str]]]" = OrderedDict()
        for directive in directives:
            logger.debug("%s: %s", directive.path, directive.line)
            grouped.setdefault(directive.path, []).append((directive.key, directive.value))

        return [path for path, pairs in grouped.items() if self.apply_all(path, pairs)]

    def read(self, file_path: str, key: str) -> Optional[str]:
        """Current active value for ``key`` in ``file_path``."""
        return get_directive(split_lines(self._read(file_path, key)), key)

    def _read(self, file_path: str, key: str) -> str:
        try:
            return self.state.read_file(file_path)
        except (OSError, UnicodeError) as e:
            raise ConfigAccessError(f"Cannot read {file_path}: {e}", path=file_path, key=key)

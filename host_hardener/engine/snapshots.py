"""
Timestamped snapshots of files taken before they are mutated.
"""

import logging
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..core.errors import ConfigAccessError
from ..core.models import Snapshot
from ..system.base import SystemState


logger = logging.getLogger(__name__)

# Upper bound on disambiguating suffixes tried for one timestamp
MAX_SUFFIX = 1000


class SnapshotHelper:
    """
    Creates non-overwritable ``<path>.bak.<unix-timestamp>`` copies.

    One helper lives for exactly one run and remembers which files it has
    already snapshotted, so ``ensure_snapshot`` copies each file once.
    """

    def __init__(self, state: SystemState, clock: Callable[[], float] = time.time):
        self.state = state
        self.clock = clock
        self._by_source: Dict[str, Snapshot] = {}
        self._taken: List[Snapshot] = []

    @property
    def snapshots(self) -> List[Snapshot]:
        """All snapshots taken during this run, oldest first."""
        return list(self._taken)

    def snapshot(self, file_path: str) -> Snapshot:
        """
        Copy ``file_path`` to a new, unique snapshot file.

        Raises:
            ConfigAccessError: If the file cannot be read or the copy fails
        """
        base = f"{file_path}.bak.{int(self.clock())}"

        for suffix in range(MAX_SUFFIX):
            candidate = base if suffix == 0 else f"{base}.{suffix}"
            if self.state.file_exists(candidate):
                continue
            try:
                self.state.copy_file_exclusive(file_path, candidate)
            except FileExistsError:
                # Created between the existence check and the copy
                continue
            except OSError as e:
                raise ConfigAccessError(f"Failed to snapshot {file_path}: {e}", path=file_path)

            snapshot = Snapshot(source=file_path, path=candidate, created_at=datetime.utcnow())
            self._taken.append(snapshot)
            logger.info("Snapshot of %s saved to %s", file_path, candidate)
            return snapshot

        raise ConfigAccessError(
            f"Failed to snapshot {file_path}: no free snapshot name for {base}",
            path=file_path
        )

    def ensure_snapshot(self, file_path: str) -> Optional[Snapshot]:
        """
        Snapshot ``file_path`` once per run.

        Returns:
            Optional[Snapshot]: The run's snapshot of the file, or None if
            the file does not exist yet (nothing to preserve)
        """
        if file_path in self._by_source:
            return self._by_source[file_path]
        if not self.state.file_exists(file_path):
            return None

        snapshot = self.snapshot(file_path)
        self._by_source[file_path] = snapshot
        return snapshot

    def snapshot_for(self, file_path: str) -> Optional[Snapshot]:
        """The per-run snapshot of ``file_path`` if one was taken."""
        return self._by_source.get(file_path)

"""
Removal of intermediate artifacts.

Intermediates are only deleted once the final artifact they feed is on
disk and non-empty, so an interrupted run always leaves either the final
artifact or everything needed to rebuild it.
"""

import logging
import shutil
from pathlib import Path
from typing import Iterable

from .config import RunConfig
from .constants import COMBINED_DIRNAME, SERIES_DIRNAME, SLICE_DIRNAME
from .paths import (
    combined_path,
    final_path,
    index_dir,
    is_complete,
    link_file,
    manifest_path,
    member_label,
    run_dir,
)

logger = logging.getLogger(__name__)


def _remove(path: Path) -> int:
    """Delete a file or directory tree; returns the number of files removed."""
    if not path.exists():
        return 0
    if path.is_dir():
        count = sum(1 for p in path.rglob("*") if p.is_file())
        shutil.rmtree(path)
        return count
    path.unlink()
    return 1


def _prune_empty(directory: Path) -> None:
    try:
        directory.rmdir()
    except OSError:
        # Not empty or already gone
        pass


class Cleanup:
    """
    Deletes a member's slices, series and combined artifact after its final
    artifact is verified, and the run's cached indexes once every member is
    final.
    """

    def __init__(self, run: RunConfig):
        self.run = run
        self.root = run_dir(run)

    def cleanup_member(self, member: int) -> int:
        """
        Remove intermediates of one member.

        Returns:
            Number of files deleted (0 when the final artifact is missing)
        """
        if self.run.settings.keep_intermediates:
            return 0
        final = final_path(self.run, member)
        if not is_complete(final):
            logger.debug(f"Keeping intermediates of EN{member:02d}: no final artifact")
            return 0

        label = member_label(member)
        deleted = 0
        for path in (
            self.root / SLICE_DIRNAME / label,
            self.root / SERIES_DIRNAME / label,
            combined_path(self.run, member),
            manifest_path(combined_path(self.run, member)),
        ):
            try:
                deleted += _remove(path)
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")
        logger.debug(f"Cleaned up EN{member:02d}: deleted {deleted} files")
        return deleted

    def cleanup_run(self, members: Iterable[int]) -> int:
        """
        Remove run-wide intermediates once every member in ``members`` is final.

        Returns:
            Number of files deleted
        """
        if self.run.settings.keep_intermediates:
            return 0
        members = list(members)
        pending = [m for m in members if not is_complete(final_path(self.run, m))]
        if pending:
            logger.info(
                f"Keeping cached indexes: {len(pending)} member(s) without final artifact"
            )
            return 0

        deleted = 0
        for path in (index_dir(self.run), link_file(self.run)):
            try:
                deleted += _remove(path)
            except OSError as e:
                logger.warning(f"Failed to delete {path}: {e}")
        for name in (SLICE_DIRNAME, SERIES_DIRNAME, COMBINED_DIRNAME):
            _prune_empty(self.root / name)

        logger.info(f"Cleanup complete: deleted {deleted} run-level files")
        return deleted

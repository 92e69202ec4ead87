"""Per-workspace executable links"""
import os
from typing import List

from worktree_keeper.utils.logging import get_logger

logger = get_logger(__name__)


class CLIExecutableLinks:
    """Workspaces of CLI projects get their executables linked into ``bin_dir``
    as ``<name>-<identifier>``; this removes them again.
    """

    def __init__(self, bin_dir: str):
        self.bin_dir = os.path.expanduser(bin_dir)

    def find(self, identifier: str) -> List[str]:
        if not os.path.isdir(self.bin_dir):
            return []
        suffix = f"-{identifier}"
        return sorted(
            os.path.join(self.bin_dir, entry)
            for entry in os.listdir(self.bin_dir)
            if entry.endswith(suffix)
        )

    def cleanup(self, identifier: str, dry_run: bool = False) -> List[str]:
        """Remove every ``*-<identifier>`` entry.

        Entries that disappear before we get to them count as removed.

        Returns:
            Names of the removed (or, in dry-run, removable) entries
        """
        removed = []
        for path in self.find(identifier):
            name = os.path.basename(path)
            if dry_run:
                removed.append(name)
                continue
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            logger.info(f"Removed {path}")
            removed.append(name)
        return removed

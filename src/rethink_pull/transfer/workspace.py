"""Per-run temporary workspace.

Each run gets ``<root>/<epoch-milliseconds>``; the directory holds staged
credentials, the dump archive and the expanded table files, and is removed
recursively once the run is over.
"""

import logging
import shutil
import time
from pathlib import Path

from rethink_pull.errors import CleanupError

logger = logging.getLogger(__name__)

ARCHIVE_NAME = "rethink_dump.tar.gz"


class Workspace:
    """Uniquely named working directory for one pipeline run.

    Usable as a context manager; the directory is removed on exit.

    Example:
        >>> with Workspace.create(Path("/tmp")) as ws:
        ...     ws.archive_path
        PosixPath('/tmp/1718000000000/rethink_dump.tar.gz')
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._removed = False

    @classmethod
    def create(cls, root: Path) -> "Workspace":
        """Create a fresh workspace directory under ``root``.

        The name is the current time in milliseconds; if that directory
        already exists the key is bumped until ``mkdir`` succeeds.
        """
        root.mkdir(parents=True, exist_ok=True)
        key = time.time_ns() // 1_000_000
        while True:
            path = root / str(key)
            try:
                path.mkdir()
            except FileExistsError:
                key += 1
                continue
            logger.debug("Created workspace %s", path)
            return cls(path)

    @property
    def archive_path(self) -> Path:
        return self.path / ARCHIVE_NAME

    def credential_path(self, database: str, role: str) -> Path:
        """Path of the password file for ``database`` (role: remote/local)."""
        return self.path / f"{database}-{role}.txt"

    @property
    def removed(self) -> bool:
        return self._removed

    def remove(self) -> None:
        """Recursively delete the workspace. Later calls are no-ops.

        Raises:
            CleanupError: If the directory could not be removed.
        """
        if self._removed:
            return
        self._removed = True
        try:
            shutil.rmtree(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CleanupError(f"Could not remove workspace {self.path}: {e}") from e
        logger.info("Removed %s", self.path)

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.remove()

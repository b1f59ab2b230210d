"""Short-lived password files for ``--password-file`` arguments.

Passwords are never passed on a command line or through the environment,
where other users could read them from the process table.
"""

import logging
import os
from pathlib import Path

from rethink_pull.errors import CleanupError

logger = logging.getLogger(__name__)


class CredentialStore:
    """Writes password files (mode ``0600``) and removes them on discard."""

    def __init__(self) -> None:
        self._paths: list[Path] = []

    @property
    def paths(self) -> list[Path]:
        return list(self._paths)

    def stage(self, path: Path, secret: str) -> Path:
        """Write ``secret`` to ``path``, readable by the owner only.

        Args:
            path: Destination file (normally inside the workspace).
            secret: Password; written as-is with no trailing newline.

        Returns:
            ``path``, for use as a ``--password-file`` argument.
        """
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(secret)
        # O_CREAT mode is ignored for a file that already existed
        os.chmod(path, 0o600)
        self._paths.append(path)
        logger.debug("Staged credential file %s", path)
        return path

    def discard(self) -> None:
        """Remove every staged file, attempting all of them.

        Raises:
            CleanupError: If at least one file could not be removed.
        """
        failures: list[str] = []
        while self._paths:
            path = self._paths.pop()
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                failures.append(f"{path}: {e}")
        if failures:
            raise CleanupError("Could not remove credential files: " + "; ".join(failures))

"""Exception hierarchy for rethink-pull.

Every error raised by the package derives from ``RethinkPullError`` so
callers (the CLI in particular) can report any failure uniformly.

Usage:
    from rethink_pull.errors import ProcessError, TunnelError

    try:
        await pipeline.run_pull()
    except TunnelError as e:
        ...
"""


class RethinkPullError(Exception):
    """Base class for all rethink-pull errors."""


class ConfigurationError(RethinkPullError):
    """Raised when required settings are still missing after resolution.

    Attributes:
        missing: Names of every required setting that could not be resolved.
    """

    def __init__(self, missing: list[str], message: str | None = None) -> None:
        self.missing = list(missing)
        if message is None:
            message = "Missing required settings: " + ", ".join(self.missing)
        super().__init__(message)


class TunnelError(RethinkPullError):
    """Raised when the SSH port forward cannot be established."""


class ProcessError(RethinkPullError):
    """Raised when a dump or import subprocess exits non-zero.

    Attributes:
        stage: ``"dump"`` or ``"import"``.
        exit_code: Process exit status (127 when the binary was not found).
        table: Table being imported, for the ``import`` stage.
    """

    def __init__(self, stage: str, exit_code: int, table: str | None = None) -> None:
        self.stage = stage
        self.exit_code = exit_code
        self.table = table
        target = f" for table '{table}'" if table else ""
        super().__init__(f"{stage} failed{target} with exit code {exit_code}")


class ArchiveError(RethinkPullError):
    """Raised when the dump archive is missing or cannot be extracted."""


class SidecarReadError(RethinkPullError):
    """Raised when a table's ``.info`` sidecar cannot be read or parsed."""


class ControlConnectionError(RethinkPullError):
    """Raised when the control connection to the local database fails."""


class TableNotFoundError(ControlConnectionError):
    """Raised by an adapter when a table to drop does not exist."""


class CleanupError(RethinkPullError):
    """Raised (and recorded) when a teardown step fails."""


class AbortedError(RethinkPullError):
    """Raised when the user declines to overwrite the local database."""

"""End-to-end pull and local-sync pipelines.

A run moves through named states::

    IDLE -> TUNNEL_OPENING -> DUMPING -> PROVISIONING -> EXPANDING
         -> IMPORTING -> CLEANING_UP -> SUCCEEDED | FAILED

Local sync skips ``TUNNEL_OPENING`` and dumps from a loopback endpoint.
Fetch-only runs replace provisioning, expansion and import with
``FETCHING`` (archive copy).  Every run, whatever fails, passes through
``CLEANING_UP``, which closes the tunnel, closes the control connection,
discards staged credentials and removes the workspace, in that order.
Teardown failures are recorded on the result but never change its state.

Usage:
    from rethink_pull.pipeline import Pipeline

    result = await Pipeline(config).run_pull()
    if not result.success:
        print(result.error_message)
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Awaitable, Callable
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from rethink_pull.adapters.base import ControlClient
from rethink_pull.adapters.rethink import AsyncRethinkAdapter
from rethink_pull.config.models import RunConfiguration, parse_endpoint
from rethink_pull.errors import (
    AbortedError,
    ArchiveError,
    CleanupError,
    ConfigurationError,
    RethinkPullError,
)
from rethink_pull.restore.expander import expand_archive
from rethink_pull.restore.provisioner import ensure_database
from rethink_pull.restore.selector import select_tables
from rethink_pull.restore.sequencer import import_tables
from rethink_pull.transfer.credentials import CredentialStore
from rethink_pull.transfer.dump import dump_database
from rethink_pull.transfer.process import ProcessRunner
from rethink_pull.transfer.tunnel import TunnelHandle, TunnelManager
from rethink_pull.transfer.workspace import ARCHIVE_NAME, Workspace

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    IDLE = "idle"
    TUNNEL_OPENING = "tunnel_opening"
    DUMPING = "dumping"
    PROVISIONING = "provisioning"
    EXPANDING = "expanding"
    IMPORTING = "importing"
    FETCHING = "fetching"
    CLEANING_UP = "cleaning_up"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class PipelineResult(BaseModel):
    """Outcome of one pipeline run.

    Attributes:
        state: ``SUCCEEDED`` or ``FAILED``.
        states: Every state entered, in order.
        error: The exception that failed the run (not serialized).
        tables: Tables imported, in import order.
        archive: Where the archive was copied, for fetch-only runs.
        cleanup_errors: Teardown failures, logged and otherwise ignored.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: PipelineState
    states: list[PipelineState] = Field(default_factory=list)
    error: Exception | None = Field(default=None, exclude=True)
    tables: list[str] = Field(default_factory=list)
    archive: Path | None = None
    cleanup_errors: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.state is PipelineState.SUCCEEDED

    @property
    def error_message(self) -> str | None:
        return str(self.error) if self.error is not None else None


ConnectFn = Callable[[RunConfiguration], Awaitable[ControlClient]]
ConfirmFn = Callable[[str], bool]


async def connect_local(config: RunConfiguration) -> ControlClient:
    """Open the control connection to ``config.local_endpoint``."""
    host, port = parse_endpoint(config.local_endpoint)
    return await AsyncRethinkAdapter.connect(
        host, port, user=config.admin_user, password=config.local_password
    )


def copy_archive(archive_path: Path, destination: Path) -> Path:
    """Copy the archive to ``destination`` (a file path or existing directory).

    Raises:
        ArchiveError: If the copy fails.
    """
    if destination.is_dir():
        destination = destination / ARCHIVE_NAME
    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(archive_path, destination)
    except OSError as e:
        raise ArchiveError(f"Cannot copy archive to {destination}: {e}") from e
    logger.info("Archive saved to %s", destination)
    return destination


class _Run:
    """Mutable resources and bookkeeping of one run."""

    def __init__(self) -> None:
        self.states: list[PipelineState] = []
        self.workspace: Workspace | None = None
        self.credentials = CredentialStore()
        self.tunnel: TunnelHandle | None = None
        self.client: ControlClient | None = None
        self.tables: list[str] = []
        self.archive: Path | None = None
        self.error: Exception | None = None
        self.cleanup_errors: list[str] = []

    @property
    def state(self) -> PipelineState:
        return self.states[-1]

    def enter(self, state: PipelineState) -> None:
        logger.debug("Pipeline state: %s", state.value)
        self.states.append(state)

    def record_cleanup_failure(self, step: str, error: Exception) -> None:
        cleanup = error if isinstance(error, CleanupError) else CleanupError(f"{step}: {error}")
        logger.warning("Cleanup step '%s' failed: %s", step, cleanup)
        self.cleanup_errors.append(str(cleanup))


class Pipeline:
    """Runs the pull or local-sync workflow for one ``RunConfiguration``.

    Collaborators are injectable so each stage can be replaced in tests.

    Args:
        config: Resolved run configuration.
        runner: Runs the dump/import tools (default: ``ProcessRunner()``).
        tunnel_manager: Opens the SSH forward (default: ``TunnelManager()``).
        connect: Opens the local control connection (default:
            ``connect_local``).
        confirm: Asked before the local database is modified unless
            ``config.force`` is set.  ``None`` means proceed.
    """

    def __init__(
        self,
        config: RunConfiguration,
        *,
        runner: ProcessRunner | None = None,
        tunnel_manager: TunnelManager | None = None,
        connect: ConnectFn = connect_local,
        confirm: ConfirmFn | None = None,
    ) -> None:
        self.config = config
        self.runner = runner or ProcessRunner()
        self.tunnel_manager = tunnel_manager or TunnelManager()
        self.connect = connect
        self.confirm = confirm

    async def run_pull(self) -> PipelineResult:
        """Tunnel to the remote server, dump, and restore locally."""
        return await self._run(use_tunnel=True)

    async def run_local_sync(self) -> PipelineResult:
        """Dump from the loopback source endpoint and restore (or back up)."""
        return await self._run(use_tunnel=False)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _run(self, use_tunnel: bool) -> PipelineResult:
        run = _Run()
        run.enter(PipelineState.IDLE)
        try:
            await self._stages(run, use_tunnel)
        except RethinkPullError as e:
            run.error = e
            logger.error("%s", e)
        except Exception as e:
            run.error = e
            logger.exception("Unexpected failure while %s", run.state.value)
        finally:
            await self._teardown(run)

        run.enter(PipelineState.FAILED if run.error else PipelineState.SUCCEEDED)
        return PipelineResult(
            state=run.state,
            states=run.states,
            error=run.error,
            tables=run.tables,
            archive=run.archive,
            cleanup_errors=run.cleanup_errors,
        )

    async def _stages(self, run: _Run, use_tunnel: bool) -> None:
        config = self.config
        missing = ["fetch_to"] if config.fetch_only and config.fetch_to is None else []
        if not config.fetch_only and not config.local_db:
            missing.append("local_db")
        if missing:
            raise ConfigurationError(missing)
        self._confirm_overwrite()

        run.workspace = workspace = Workspace.create(config.temp_dir)

        if use_tunnel:
            run.enter(PipelineState.TUNNEL_OPENING)
            run.tunnel = await self.tunnel_manager.open(config.tunnel)
            endpoint = run.tunnel.endpoint
        else:
            endpoint = config.source_endpoint

        run.enter(PipelineState.DUMPING)
        remote_pwd = run.credentials.stage(
            workspace.credential_path(config.remote_db, "remote"), config.remote_password
        )
        await dump_database(
            self.runner,
            endpoint,
            config.remote_db,
            workspace.archive_path,
            remote_pwd,
            config.rethinkdb_bin,
        )
        # Not needed past the dump
        await self._close_tunnel(run)

        if config.fetch_only:
            run.enter(PipelineState.FETCHING)
            run.archive = copy_archive(workspace.archive_path, config.fetch_to)
            return

        run.enter(PipelineState.PROVISIONING)
        local_pwd = run.credentials.stage(
            workspace.credential_path(config.local_db, "local"), config.local_password
        )
        run.client = await self.connect(config)
        await ensure_database(run.client, config.local_db)

        run.enter(PipelineState.EXPANDING)
        units = await expand_archive(workspace.archive_path, workspace.path)
        selected = select_tables(units, config.include_tables, config.exclude_tables)
        logger.info("Importing %d of %d table(s)", len(selected), len(units))

        run.enter(PipelineState.IMPORTING)
        run.tables = await import_tables(
            run.client,
            self.runner,
            selected,
            config.local_db,
            local_pwd,
            merge=config.merge,
            endpoint=config.local_endpoint,
            rethinkdb_bin=config.rethinkdb_bin,
        )
        logger.info("Updates complete")

    def _confirm_overwrite(self) -> None:
        config = self.config
        if config.force or config.fetch_only or self.confirm is None:
            return
        action = "merge into" if config.merge else "overwrite tables in"
        if not self.confirm(f"This will {action} local database '{config.local_db}'. Continue?"):
            raise AbortedError("Cancelled by user")

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def _close_tunnel(self, run: _Run) -> None:
        tunnel, run.tunnel = run.tunnel, None
        if tunnel is None:
            return
        try:
            await tunnel.close()
        except Exception as e:
            run.record_cleanup_failure("tunnel", e)

    async def _teardown(self, run: _Run) -> None:
        run.enter(PipelineState.CLEANING_UP)
        await self._close_tunnel(run)

        client, run.client = run.client, None
        if client is not None:
            try:
                await client.close()
            except Exception as e:
                run.record_cleanup_failure("connection", e)

        try:
            run.credentials.discard()
        except Exception as e:
            run.record_cleanup_failure("credentials", e)

        if run.workspace is not None:
            try:
                run.workspace.remove()
            except Exception as e:
                run.record_cleanup_failure("workspace", e)

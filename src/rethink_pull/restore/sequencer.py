"""Sequential per-table import via ``rethinkdb import``.

Tables are imported strictly one at a time: each import may first drop
the table and writes to the shared console.  The first failing import
stops the run; later tables are never attempted.
"""

import logging
from collections.abc import Sequence
from pathlib import Path

from rethink_pull.adapters.base import ControlClient
from rethink_pull.restore.models import TableExportUnit
from rethink_pull.restore.policy import apply_replacement_policy
from rethink_pull.transfer.process import ProcessRunner

logger = logging.getLogger(__name__)


def import_command(
    unit: TableExportUnit,
    database: str,
    password_file: Path,
    endpoint: str,
    rethinkdb_bin: str = "rethinkdb",
) -> list[str]:
    """Build the ``rethinkdb import`` argument list for one table.

    ``--pkey`` is only passed when the sidecar named a primary key.
    """
    args = [
        rethinkdb_bin,
        "import",
        "-c", endpoint,
        "-f", str(unit.data_file),
        "--password-file", str(password_file),
        "--table", f"{database}.{unit.table}",
        "--format", "json",
    ]
    if unit.primary_key:
        args += ["--pkey", unit.primary_key]
    args.append("--force")
    return args


async def import_tables(
    client: ControlClient,
    runner: ProcessRunner,
    units: Sequence[TableExportUnit],
    database: str,
    password_file: Path,
    *,
    merge: bool,
    endpoint: str,
    rethinkdb_bin: str = "rethinkdb",
) -> list[str]:
    """Apply the replacement policy and import each unit, in order.

    Args:
        client: Open control connection to the local server.
        runner: Subprocess runner streaming output to the console.
        units: Tables to import.
        database: Local target database.
        password_file: Staged local admin password file.
        merge: Keep existing tables instead of dropping them first.
        endpoint: ``host:port`` of the local server.
        rethinkdb_bin: Name or path of the ``rethinkdb`` executable.

    Returns:
        Names of the imported tables.

    Raises:
        ProcessError: With ``stage="import"`` and the failing table; tables
            after it are not attempted.
    """
    imported: list[str] = []
    for unit in units:
        await apply_replacement_policy(client, database, unit.table, merge)
        await runner.run(
            import_command(unit, database, password_file, endpoint, rethinkdb_bin),
            stage="import",
            table=unit.table,
        )
        logger.info("Imported %s into %s", unit.table, database)
        imported.append(unit.table)
    return imported

"""Remote database dump via ``rethinkdb dump``."""

import logging
from pathlib import Path

from rethink_pull.transfer.process import ProcessRunner

logger = logging.getLogger(__name__)


def dump_command(
    endpoint: str,
    database: str,
    archive_path: Path,
    password_file: Path,
    rethinkdb_bin: str = "rethinkdb",
) -> list[str]:
    """Build the ``rethinkdb dump`` argument list."""
    return [
        rethinkdb_bin,
        "dump",
        "-c", endpoint,
        "-e", database,
        "-f", str(archive_path),
        "--password-file", str(password_file),
    ]


async def dump_database(
    runner: ProcessRunner,
    endpoint: str,
    database: str,
    archive_path: Path,
    password_file: Path,
    rethinkdb_bin: str = "rethinkdb",
) -> Path:
    """Dump ``database`` from ``endpoint`` into a ``.tar.gz`` archive.

    Does not clean anything up on failure; the pipeline's teardown owns
    the workspace and tunnel.

    Args:
        runner: Subprocess runner streaming output to the console.
        endpoint: ``host:port`` of the server (the tunnel's local forward
            for a pull, a loopback endpoint for a local sync).
        database: Database to export.
        archive_path: Output archive.
        password_file: Staged admin password file.
        rethinkdb_bin: Name or path of the ``rethinkdb`` executable.

    Returns:
        ``archive_path``.

    Raises:
        ProcessError: With ``stage="dump"`` if the tool exits non-zero.
    """
    logger.info("Dumping database '%s' from %s", database, endpoint)
    await runner.run(
        dump_command(endpoint, database, archive_path, password_file, rethinkdb_bin),
        stage="dump",
    )
    logger.info("Dump written to %s", archive_path)
    return archive_path

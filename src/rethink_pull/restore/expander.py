"""Archive expansion and table discovery."""

import asyncio
import logging
import tarfile
import zlib
from pathlib import Path

from pydantic import ValidationError

from rethink_pull.errors import ArchiveError, SidecarReadError
from rethink_pull.restore.models import TableExportUnit, TableInfo

logger = logging.getLogger(__name__)


def read_table_info(info_path: Path) -> TableInfo:
    """Parse a table's ``.info`` sidecar.

    Raises:
        SidecarReadError: If the file is missing, unreadable or not a JSON
            object matching ``TableInfo``.
    """
    try:
        return TableInfo.model_validate_json(info_path.read_bytes())
    except (OSError, ValidationError) as e:
        raise SidecarReadError(f"Cannot read {info_path}: {e}") from e


def discover_tables(root: Path) -> list[TableExportUnit]:
    """Find every ``*.json`` table file under ``root``.

    A sidecar that is missing or cannot be parsed is not an error: the unit
    simply carries no primary-key hint.

    Returns:
        Units in sorted path order.
    """
    units: list[TableExportUnit] = []
    for data_file in sorted(root.rglob("*.json")):
        info_file = data_file.with_suffix(".info")
        primary_key = None
        try:
            primary_key = read_table_info(info_file).primary_key
        except SidecarReadError as e:
            logger.debug("No primary key hint for %s: %s", data_file.name, e)
        units.append(
            TableExportUnit(
                table=data_file.stem,
                database=data_file.parent.name,
                data_file=data_file,
                info_file=info_file if info_file.exists() else None,
                primary_key=primary_key,
            )
        )
    return units


def _extract(archive_path: Path, dest_dir: Path) -> None:
    with tarfile.open(archive_path, "r:gz") as tar:
        tar.extractall(dest_dir, filter="data")


async def expand_archive(archive_path: Path, dest_dir: Path) -> list[TableExportUnit]:
    """Decompress a ``.tar.gz`` dump into ``dest_dir`` and discover its tables.

    Extraction runs in a worker thread so the event loop stays responsive.

    Args:
        archive_path: Archive written by ``rethinkdb dump``.
        dest_dir: Directory to extract into (created if needed).

    Returns:
        Discovered ``TableExportUnit`` list.

    Raises:
        ArchiveError: If the archive is missing or corrupt.
    """
    if not archive_path.is_file():
        raise ArchiveError(f"Archive not found: {archive_path}")

    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        await asyncio.to_thread(_extract, archive_path, dest_dir)
    except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
        raise ArchiveError(f"Cannot extract {archive_path}: {e}") from e

    logger.info("Decompressed %s", archive_path)
    units = discover_tables(dest_dir)
    logger.info("Found %d table export(s)", len(units))
    return units

"""Replace-or-merge decision for an existing local table."""

import logging

from rethink_pull.adapters.base import ControlClient
from rethink_pull.errors import ControlConnectionError, TableNotFoundError
from rethink_pull.restore.models import TableAction

logger = logging.getLogger(__name__)


async def apply_replacement_policy(
    client: ControlClient,
    database: str,
    table: str,
    merge: bool,
) -> TableAction:
    """Prepare ``database.table`` for import.

    In merge mode the table is left alone and the import tool upserts by
    primary key.  Otherwise the table is dropped so the import recreates
    it.  Never raises: a missing table already satisfies "dropped", and any
    other control-connection failure is logged and the import goes ahead.

    Args:
        client: Open control connection.
        database: Local database name.
        table: Table about to be imported.
        merge: Keep existing data instead of dropping the table.

    Returns:
        The ``TableAction`` taken.
    """
    if merge:
        logger.debug("Merge mode: keeping %s.%s", database, table)
        return TableAction.KEPT

    try:
        await client.drop_table(database, table)
    except TableNotFoundError:
        logger.warning("Table %s.%s does not exist; nothing to drop", database, table)
        return TableAction.ABSENT
    except ControlConnectionError as e:
        logger.warning("Could not drop %s.%s: %s", database, table, e)
        return TableAction.FAILED

    logger.info("Dropped %s.%s", database, table)
    return TableAction.DROPPED

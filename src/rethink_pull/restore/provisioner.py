"""Target database provisioning."""

import logging

from rethink_pull.adapters.base import ControlClient

logger = logging.getLogger(__name__)


async def ensure_database(client: ControlClient, name: str) -> ControlClient:
    """Create database ``name`` unless it exists, then make it the default.

    Idempotent: an existing database is the common case, not an error.

    Raises:
        ControlConnectionError: If listing or creating databases fails.
    """
    databases = await client.list_databases()
    if name in databases:
        logger.debug("Database '%s' already exists", name)
    else:
        logger.info("Creating database '%s'", name)
        await client.create_database(name)
    client.use(name)
    return client

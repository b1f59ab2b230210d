"""Control client protocol definition.

Defines the ``ControlClient`` Protocol for the control-plane connection to
the local database: the connection used to provision the target database
and drop tables before import.  Data never flows through it; rows are
loaded by the external import tool.

All methods are ``async def``.

Usage:
    from rethink_pull.adapters.base import ControlClient

    async def reset(client: ControlClient) -> None:
        if "staging" not in await client.list_databases():
            await client.create_database("staging")
        client.use("staging")
        await client.drop_table("staging", "users")
        await client.close()
"""

from typing import Protocol


class ControlClient(Protocol):
    """Control connection interface that adapters must implement."""

    async def list_databases(self) -> list[str]:
        """Return the names of every database on the server.

        Raises:
            ControlConnectionError: If the query fails.
        """
        ...

    async def create_database(self, name: str) -> None:
        """Create database ``name``.

        Raises:
            ControlConnectionError: If creation fails.
        """
        ...

    def use(self, name: str) -> None:
        """Switch the connection's default database to ``name``."""
        ...

    async def drop_table(self, database: str, table: str) -> None:
        """Drop ``database.table``.

        Raises:
            TableNotFoundError: If the table (or its database) does not exist.
            ControlConnectionError: For any other failure.
        """
        ...

    async def close(self) -> None:
        """Close the connection."""
        ...

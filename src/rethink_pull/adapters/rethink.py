"""Async RethinkDB control adapter.

Provides ``AsyncRethinkAdapter``, an implementation of the
``ControlClient`` protocol on top of the official ``rethinkdb`` driver
running on the asyncio loop.

Usage:
    from rethink_pull.adapters.rethink import AsyncRethinkAdapter

    adapter = await AsyncRethinkAdapter.connect(
        "127.0.0.1", 28015, user="admin", password="secret"
    )
    print(await adapter.list_databases())
    await adapter.close()
"""

import logging
from typing import Any

from rethinkdb import RethinkDB
from rethinkdb.errors import ReqlError, ReqlOpFailedError

from rethink_pull.errors import ControlConnectionError, TableNotFoundError

logger = logging.getLogger(__name__)


def _new_driver() -> RethinkDB:
    r = RethinkDB()
    r.set_loop_type("asyncio")
    return r


class AsyncRethinkAdapter:
    """RethinkDB implementation of the ``ControlClient`` protocol.

    Construct with :meth:`connect`; the constructor only wraps an already
    open driver connection.

    Args:
        driver: ``RethinkDB`` instance configured for the asyncio loop.
        connection: Open driver connection.
    """

    def __init__(self, driver: RethinkDB, connection: Any) -> None:
        self._r = driver
        self._conn = connection
        self._closed = False

    @classmethod
    async def connect(
        cls,
        host: str,
        port: int,
        user: str = "admin",
        password: str = "",
        timeout: int = 20,
    ) -> "AsyncRethinkAdapter":
        """Open a control connection.

        Raises:
            ControlConnectionError: If the server is unreachable or rejects
                the credentials.
        """
        r = _new_driver()
        try:
            conn = await r.connect(
                host=host, port=port, user=user, password=password, timeout=timeout
            )
        except (ReqlError, OSError) as e:
            raise ControlConnectionError(
                f"Cannot connect to RethinkDB at {host}:{port}: {e}"
            ) from e
        logger.debug("Control connection open to %s:%s", host, port)
        return cls(r, conn)

    # ------------------------------------------------------------------
    # ControlClient methods
    # ------------------------------------------------------------------

    async def list_databases(self) -> list[str]:
        try:
            return list(await self._r.db_list().run(self._conn))
        except ReqlError as e:
            raise ControlConnectionError(f"db_list failed: {e}") from e

    async def create_database(self, name: str) -> None:
        try:
            await self._r.db_create(name).run(self._conn)
        except ReqlError as e:
            raise ControlConnectionError(f"db_create('{name}') failed: {e}") from e

    def use(self, name: str) -> None:
        self._conn.use(name)

    async def drop_table(self, database: str, table: str) -> None:
        try:
            await self._r.db(database).table_drop(table).run(self._conn)
        except ReqlOpFailedError as e:
            # Raised for both a missing table and a missing database.
            if "does not exist" in str(e):
                raise TableNotFoundError(f"{database}.{table} does not exist") from e
            raise ControlConnectionError(
                f"table_drop('{database}.{table}') failed: {e}"
            ) from e
        except ReqlError as e:
            raise ControlConnectionError(
                f"table_drop('{database}.{table}') failed: {e}"
            ) from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self._conn.close()
        except ReqlError as e:
            raise ControlConnectionError(f"close failed: {e}") from e

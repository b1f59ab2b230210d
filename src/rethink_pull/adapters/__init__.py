"""Control connection adapters.

Provides the ``ControlClient`` Protocol and the asyncio RethinkDB
implementation.

Usage:
    from rethink_pull.adapters import ControlClient, AsyncRethinkAdapter
"""

from rethink_pull.adapters.base import ControlClient
from rethink_pull.adapters.rethink import AsyncRethinkAdapter

__all__ = [
    "ControlClient",
    "AsyncRethinkAdapter",
]

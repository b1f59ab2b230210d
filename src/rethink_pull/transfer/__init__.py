"""Getting the archive: tunnel, credentials, workspace and dump.

Usage:
    from rethink_pull.transfer import TunnelManager, Workspace, CredentialStore
    from rethink_pull.transfer import ProcessRunner, dump_database
"""

from rethink_pull.transfer.credentials import CredentialStore
from rethink_pull.transfer.dump import dump_command, dump_database
from rethink_pull.transfer.process import ProcessRunner
from rethink_pull.transfer.tunnel import TunnelHandle, TunnelManager
from rethink_pull.transfer.workspace import ARCHIVE_NAME, Workspace

__all__ = [
    "ARCHIVE_NAME",
    "CredentialStore",
    "ProcessRunner",
    "TunnelHandle",
    "TunnelManager",
    "Workspace",
    "dump_command",
    "dump_database",
]

"""Restoring the archive: expansion, selection, table policy and import.

Usage:
    from rethink_pull.restore import expand_archive, select_tables
    from rethink_pull.restore import ensure_database, import_tables
"""

from rethink_pull.restore.expander import discover_tables, expand_archive, read_table_info
from rethink_pull.restore.models import TableAction, TableExportUnit, TableInfo
from rethink_pull.restore.policy import apply_replacement_policy
from rethink_pull.restore.provisioner import ensure_database
from rethink_pull.restore.selector import select_tables
from rethink_pull.restore.sequencer import import_command, import_tables

__all__ = [
    "TableAction",
    "TableExportUnit",
    "TableInfo",
    "apply_replacement_policy",
    "discover_tables",
    "ensure_database",
    "expand_archive",
    "import_command",
    "import_tables",
    "read_table_info",
    "select_tables",
]

"""Models for the expanded archive contents.

A ``rethinkdb dump`` archive holds one directory per database with a
``<table>.json`` data file and a ``<table>.info`` metadata sidecar per
table.  Only the sidecar's ``primary_key`` matters for import.
"""

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict


class TableInfo(BaseModel):
    """Parsed ``.info`` sidecar. Unknown fields are ignored."""

    model_config = ConfigDict(extra="ignore")

    primary_key: str | None = None


class TableExportUnit(BaseModel):
    """One table's export artifact discovered after expansion."""

    table: str                          # file basename without .json
    database: str = ""                  # containing directory (source db)
    data_file: Path
    info_file: Path | None = None       # sidecar, when present on disk
    primary_key: str | None = None      # from the sidecar, if readable


class TableAction(str, Enum):
    """What the replacement policy did with an existing local table."""

    KEPT = "kept"           # merge mode, table left intact
    DROPPED = "dropped"
    ABSENT = "absent"       # nothing to drop
    FAILED = "failed"       # drop failed, logged and ignored

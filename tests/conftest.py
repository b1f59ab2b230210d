"""Shared fixtures: dump archives laid out like ``rethinkdb dump`` output."""

import io
import json
import tarfile
from pathlib import Path

import pytest


def write_dump_archive(
    path: Path,
    database: str,
    tables: dict[str, dict | str | None],
) -> Path:
    """Write a ``.tar.gz`` with ``<dump_dir>/<database>/<table>.json`` members.

    Args:
        path: Archive to create.
        database: Directory name for the database inside the archive.
        tables: Table name -> sidecar content.  A dict is written as JSON,
            a str is written verbatim (for corrupt sidecars), ``None``
            means no ``.info`` file.
    """
    with tarfile.open(path, "w:gz") as tar:
        for table, info in tables.items():
            members = {f"{table}.json": json.dumps([{"id": 1}]).encode()}
            if isinstance(info, dict):
                members[f"{table}.info"] = json.dumps(info).encode()
            elif isinstance(info, str):
                members[f"{table}.info"] = info.encode()
            for name, data in members.items():
                member = tarfile.TarInfo(f"rethinkdb_dump_2024-01-01/{database}/{name}")
                member.size = len(data)
                tar.addfile(member, io.BytesIO(data))
    return path


@pytest.fixture
def prod_archive(tmp_path: Path) -> Path:
    """``prod`` dump with ``users`` (pk ``uid``) and ``orders`` (no sidecar)."""
    return write_dump_archive(
        tmp_path / "fixture.tar.gz",
        "prod",
        {"users": {"primary_key": "uid", "name": "users", "db": "prod"}, "orders": None},
    )


@pytest.fixture
def make_dump_archive():
    """Factory fixture wrapping ``write_dump_archive``."""
    return write_dump_archive

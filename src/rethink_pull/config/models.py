"""Pydantic models for run configuration."""

import tempfile
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_RETHINK_PORT = 28015


# ============================================================================
# Endpoint helpers
# ============================================================================


def parse_endpoint(endpoint: str, default_port: int = DEFAULT_RETHINK_PORT) -> tuple[str, int]:
    """Split ``"host:port"`` into its parts.

    Args:
        endpoint: ``host`` or ``host:port``.
        default_port: Port used when ``endpoint`` has none.

    Returns:
        Tuple of (host, port).

    Raises:
        ValueError: If the port is not an integer.

    Example:
        >>> parse_endpoint("localhost:9999")
        ('localhost', 9999)
    """
    host, sep, port = endpoint.rpartition(":")
    if not sep:
        return endpoint, default_port
    return host, int(port)


# ============================================================================
# Run Configuration
# ============================================================================


class TunnelConfig(BaseModel):
    """SSH port-forward parameters.

    Connections to ``local_host:local_port`` are forwarded through
    ``username@host:port`` to ``dst_host:dst_port`` on the far side.
    """

    model_config = ConfigDict(frozen=True)

    port: int = 22
    dst_host: str = "127.0.0.1"
    dst_port: int = DEFAULT_RETHINK_PORT
    local_host: str = "127.0.0.1"
    local_port: int = 9999
    keep_alive: bool = True
    username: str | None = None
    host: str | None = None
    identity_file: str | None = None
    connect_timeout: float = 15.0  # seconds to wait for the forward

    @property
    def local_endpoint(self) -> str:
        """Endpoint the dump tool connects to while the tunnel is open."""
        return f"{self.local_host}:{self.local_port}"


class RunConfiguration(BaseModel):
    """Fully resolved settings for one pipeline run.

    Built by ``resolve_run_configuration()``; immutable afterwards.
    ``remote_db`` is the database that gets dumped: the remote database
    for ``pull`` and the local source database for ``sync``/``backup``.
    """

    model_config = ConfigDict(frozen=True)

    remote_db: str
    local_db: str | None = None
    remote_password: str = Field(default="", repr=False)
    local_password: str = Field(default="", repr=False)
    tunnel: TunnelConfig = Field(default_factory=TunnelConfig)
    include_tables: tuple[str, ...] = ()
    exclude_tables: tuple[str, ...] = ()
    temp_dir: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    force: bool = False
    fetch_only: bool = False
    fetch_to: Path | None = None
    merge: bool = False
    source_endpoint: str = f"127.0.0.1:{DEFAULT_RETHINK_PORT}"
    local_endpoint: str = f"127.0.0.1:{DEFAULT_RETHINK_PORT}"
    admin_user: str = "admin"
    rethinkdb_bin: str = "rethinkdb"

    @property
    def selection_conflict(self) -> bool:
        """True when both include and exclude lists were given."""
        return bool(self.include_tables) and bool(self.exclude_tables)


# ============================================================================
# Config File Models
# ============================================================================


class PullProfile(BaseModel):
    """Settings block from a TOML config file (``[defaults]`` or a profile).

    Every field is optional; unset fields fall through to lower layers.
    Passwords are not accepted here.
    """

    model_config = ConfigDict(extra="forbid")

    remote_db: str | list[str] | None = None
    local_db: str | None = None
    include_tables: list[str] | None = None
    exclude_tables: list[str] | None = None
    temp_dir: str | None = None
    fetch_to: str | None = None
    merge: bool | None = None
    force: bool | None = None
    source_endpoint: str | None = None
    local_endpoint: str | None = None
    admin_user: str | None = None
    rethinkdb_bin: str | None = None
    tunnel: dict[str, Any] = Field(default_factory=dict)

    def to_layer(self) -> dict[str, Any]:
        """Flatten into resolver keys (``tunnel.*`` for tunnel settings)."""
        layer = self.model_dump(exclude={"tunnel"}, exclude_none=True)
        for key, value in self.tunnel.items():
            layer[f"tunnel.{key}"] = value
        return layer


class PullConfig(BaseModel):
    """Complete configuration file: defaults plus named profiles."""

    defaults: PullProfile = Field(default_factory=PullProfile)
    profiles: dict[str, PullProfile] = Field(default_factory=dict)

    def layer(self, profile_name: str | None = None) -> dict[str, Any]:
        """Return the resolver layer for ``profile_name`` on top of defaults.

        Raises:
            KeyError: If ``profile_name`` is not defined.
        """
        layer = self.defaults.to_layer()
        if profile_name is not None:
            if profile_name not in self.profiles:
                raise KeyError(
                    f"Profile '{profile_name}' not found. "
                    f"Available profiles: {', '.join(self.profiles) or '(none)'}"
                )
            layer.update(self.profiles[profile_name].to_layer())
        return layer

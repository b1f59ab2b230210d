"""rethink-pull: copy RethinkDB databases over SSH tunnels.

Dumps a remote (or local) database with ``rethinkdb dump``, expands the
archive, and imports it table by table into a local database with a
replace or merge policy.

Usage:
    from rethink_pull import Pipeline, resolve_run_configuration

    config = resolve_run_configuration("pull", {"remote_db": "prod", ...})
    result = await Pipeline(config).run_pull()
"""

__version__ = "0.1.0"

# Config
from rethink_pull.config.loader import load_pull_config
from rethink_pull.config.models import RunConfiguration, TunnelConfig
from rethink_pull.config.resolver import resolve_run_configuration

# Errors
from rethink_pull.errors import (
    ConfigurationError,
    ProcessError,
    RethinkPullError,
    TunnelError,
)

# Pipeline
from rethink_pull.pipeline import Pipeline, PipelineResult, PipelineState

__all__ = [
    # Config
    "load_pull_config",
    "resolve_run_configuration",
    "RunConfiguration",
    "TunnelConfig",
    # Errors
    "RethinkPullError",
    "ConfigurationError",
    "ProcessError",
    "TunnelError",
    # Pipeline
    "Pipeline",
    "PipelineResult",
    "PipelineState",
]

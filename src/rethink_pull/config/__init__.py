"""Configuration: run settings models, TOML loading and layered resolution.

Usage:
    >>> from rethink_pull.config import load_pull_config, resolve_run_configuration
    >>> from rethink_pull.config import RunConfiguration, TunnelConfig
"""

from rethink_pull.config.loader import load_pull_config
from rethink_pull.config.models import (
    PullConfig,
    PullProfile,
    RunConfiguration,
    TunnelConfig,
    parse_endpoint,
)
from rethink_pull.config.resolver import resolve_run_configuration

__all__ = [
    "load_pull_config",
    "resolve_run_configuration",
    "parse_endpoint",
    "PullConfig",
    "PullProfile",
    "RunConfiguration",
    "TunnelConfig",
]

"""TOML config file loading."""

import tomllib
from pathlib import Path

from pydantic import ValidationError

from rethink_pull.config.models import PullConfig, PullProfile

DEFAULT_CONFIG_NAME = "rethink-pull.toml"


def load_pull_config(config_path: Path | None = None) -> PullConfig:
    """Load run defaults and profiles from a TOML file.

    Expected layout::

        [defaults]
        local_db = "staging"
        exclude_tables = ["sessions"]

        [defaults.tunnel]
        username = "deploy"

        [profiles.prod]
        remote_db = "prod"
        tunnel = { host = "bastion.example.com" }

    Args:
        config_path: Path to the TOML file (default: ``./rethink-pull.toml``).

    Returns:
        PullConfig with defaults and all profiles.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the config format is invalid.
    """
    if config_path is None:
        config_path = Path.cwd() / DEFAULT_CONFIG_NAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ValueError(f"Invalid TOML in {config_path}: {e}") from e

    try:
        defaults = PullProfile(**data.get("defaults", {}))
        profiles = {
            name: PullProfile(**profile_data)
            for name, profile_data in data.get("profiles", {}).items()
        }
    except (TypeError, ValidationError) as e:
        raise ValueError(f"Invalid config in {config_path}: {e}") from e

    return PullConfig(defaults=defaults, profiles=profiles)

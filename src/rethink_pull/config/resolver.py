"""Layered resolution of run settings into a ``RunConfiguration``.

Settings are flat keys (``remote_db``, ``tunnel.host``, ...) looked up in
layers, highest precedence first:

1. explicit arguments (CLI flags or keyword arguments),
2. interactive answers (only asked for settings still missing),
3. environment variables (optionally prefixed, e.g. ``APP_DB_NAME``),
4. config file layer (``PullConfig.layer()``),
5. model defaults.

After merging, a single validation pass raises ``ConfigurationError``
listing every required setting that is still missing.

Usage:
    from rethink_pull.config.resolver import resolve_run_configuration

    config = resolve_run_configuration(
        "pull",
        {"local_db": "staging", "merge": True},
        env=os.environ,
        prompt=my_prompt,
    )
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from pydantic import ValidationError

from rethink_pull.config.models import RunConfiguration
from rethink_pull.errors import ConfigurationError

logger = logging.getLogger(__name__)

TASKS = ("pull", "sync", "backup")

# Setting key -> environment variable (before prefixing)
ENV_VARS: dict[str, str] = {
    "remote_db": "REMOTE_DB_NAME",
    "local_db": "DB_NAME",
    "remote_password": "REMOTE_DB_ADMIN_PASSWORD",
    "local_password": "LOCAL_DB_ADMIN_PASSWORD",
    "tunnel.username": "SSH_TUNNEL_USERNAME",
    "tunnel.host": "SSH_TUNNEL_HOST",
    "temp_dir": "RETHINK_PULL_TEMP_DIR",
}

SECRET_SETTINGS = frozenset({"remote_password", "local_password"})

_QUESTIONS: dict[str, str] = {
    "tunnel.username": "ssh tunnel username?",
    "tunnel.host": "ssh tunnel host?",
    "remote_db": "Which remote DB do you want to pull?",
    "remote_password": "What is the admin password for the remote db?",
    "local_db": "Which local DB do you want to overwrite?",
    "local_password": "What is the admin password for the local db?",
    "fetch_to": "Where should the archive be saved?",
}

_SYNC_QUESTIONS: dict[str, str] = {
    "remote_db": "Which local DB do you want to copy from?",
    "remote_password": "What is the admin password for the source db?",
}


class Prompter(Protocol):
    """Interactive answer source (e.g. ``rich.prompt`` in the CLI)."""

    def __call__(
        self,
        name: str,
        message: str,
        *,
        secret: bool = False,
        choices: list[str] | None = None,
    ) -> str | None: ...


def _is_set(value: Any) -> bool:
    return value is not None and value != "" and value != [] and value != ()


def required_settings(task: str, fetch_only: bool) -> list[str]:
    """Return the settings that must be resolved for ``task``.

    Args:
        task: One of ``pull``, ``sync``, ``backup``.
        fetch_only: Whether the run stops after copying the archive.

    Returns:
        Setting keys in prompting order.
    """
    required: list[str] = []
    if task == "pull":
        required += ["tunnel.username", "tunnel.host"]
    required += ["remote_db", "remote_password"]
    if fetch_only:
        required.append("fetch_to")
    else:
        required += ["local_db", "local_password"]
    return required


def environment_layer(env: Mapping[str, str], env_prefix: str = "") -> dict[str, Any]:
    """Read settings from environment variables.

    ``REMOTE_DB_NAME`` may hold a comma-separated candidate list, which is
    returned as a list for the user to narrow down.
    """
    layer: dict[str, Any] = {}
    for key, var in ENV_VARS.items():
        value = env.get(f"{env_prefix}{var}")
        if not _is_set(value):
            continue
        if key == "remote_db" and "," in value:
            value = [v.strip() for v in value.split(",") if v.strip()]
        layer[key] = value
    return layer


def _merge_layers(*layers: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge layers given lowest precedence first, skipping unset values."""
    merged: dict[str, Any] = {}
    for layer in layers:
        if not layer:
            continue
        merged.update({k: v for k, v in layer.items() if _is_set(v)})
    return merged


def _narrow_remote_db(
    merged: dict[str, Any], prompt: Prompter | None, message: str
) -> None:
    candidates = merged.get("remote_db")
    if not isinstance(candidates, (list, tuple)):
        return
    candidates = [c for c in candidates if _is_set(c)]
    if len(candidates) == 1:
        merged["remote_db"] = candidates[0]
        return
    merged.pop("remote_db", None)
    if candidates and prompt is not None:
        answer = prompt("remote_db", message, choices=list(candidates))
        if _is_set(answer):
            merged["remote_db"] = answer


def _to_model_fields(merged: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    tunnel: dict[str, Any] = {}
    for key, value in merged.items():
        if key.startswith("tunnel."):
            tunnel[key.removeprefix("tunnel.")] = value
        else:
            fields[key] = value
    if tunnel:
        fields["tunnel"] = tunnel
    return fields


def resolve_run_configuration(
    task: str,
    explicit: Mapping[str, Any] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    file_layer: Mapping[str, Any] | None = None,
    prompt: Prompter | None = None,
    env_prefix: str = "",
) -> RunConfiguration:
    """Resolve all settings layers into a validated ``RunConfiguration``.

    Args:
        task: ``pull``, ``sync`` or ``backup`` (``backup`` implies fetch-only).
        explicit: Highest-precedence settings; ``None`` values are ignored.
        env: Environment mapping (usually ``os.environ``).
        file_layer: Settings from a config file (``PullConfig.layer()``).
        prompt: Callable asked for each required setting still missing.
            When ``None``, missing settings go straight to validation.
        env_prefix: Prefix prepended to every environment variable name.

    Returns:
        Frozen ``RunConfiguration``.

    Raises:
        ConfigurationError: Listing every required setting still missing,
            or if a resolved value has the wrong type.
        ValueError: If ``task`` is unknown.
    """
    if task not in TASKS:
        raise ValueError(f"Unknown task '{task}'. Expected one of: {', '.join(TASKS)}")

    env_settings = environment_layer(env or {}, env_prefix)
    merged = _merge_layers(file_layer, env_settings, explicit)
    if task == "backup":
        merged["fetch_only"] = True

    questions = dict(_QUESTIONS)
    if task != "pull":
        questions.update(_SYNC_QUESTIONS)

    _narrow_remote_db(merged, prompt, questions["remote_db"])

    required = required_settings(task, bool(merged.get("fetch_only")))

    if prompt is not None:
        for key in required:
            if _is_set(merged.get(key)):
                continue
            answer = prompt(key, questions[key], secret=key in SECRET_SETTINGS)
            if _is_set(answer):
                merged[key] = answer

    missing = [key for key in required if not _is_set(merged.get(key))]
    if missing:
        raise ConfigurationError(missing)

    try:
        config = RunConfiguration(**_to_model_fields(merged))
    except ValidationError as e:
        fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
        raise ConfigurationError(fields, f"Invalid settings: {e}") from e

    if config.selection_conflict:
        logger.warning(
            "Both include and exclude table lists given; using include list only"
        )

    return config

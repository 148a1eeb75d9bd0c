"""
joydrop.config — YAML Configuration Loader
===========================================

Reads ``config.yaml`` for soft, non-secret settings (display name,
leaderboard limits, slug retry policy).  Secrets and the database URL
come from the environment (``.env``), never from this file.

Usage::

    from joydrop.config import load_config

    cfg = load_config()          # reads ./config.yaml by default
    print(cfg.app_name)          # "Joydrop"
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from joydrop.constants import (
    DEFAULT_LEADERBOARD_LIMIT,
    DEFAULT_MAP_POINT_LIMIT,
    DEFAULT_SLUG_RETRY_ATTEMPTS,
    MAX_LEADERBOARD_LIMIT,
)


@dataclass(frozen=True, slots=True)
class JoydropConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    app_name: str
    api_port: int

    leaderboard_default_limit: int = DEFAULT_LEADERBOARD_LIMIT
    leaderboard_max_limit: int = MAX_LEADERBOARD_LIMIT
    map_point_limit: int = DEFAULT_MAP_POINT_LIMIT
    slug_retry_attempts: int = DEFAULT_SLUG_RETRY_ATTEMPTS


def load_config(path: str | Path = "config.yaml") -> JoydropConfig:
    """Read *path* and return a :class:`JoydropConfig` instance.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key (``app_name``, ``api_port``) is missing.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    return JoydropConfig(
        app_name=raw["app_name"],
        api_port=int(raw["api_port"]),
        leaderboard_default_limit=int(
            raw.get("leaderboard_default_limit", DEFAULT_LEADERBOARD_LIMIT)
        ),
        leaderboard_max_limit=int(raw.get("leaderboard_max_limit", MAX_LEADERBOARD_LIMIT)),
        map_point_limit=int(raw.get("map_point_limit", DEFAULT_MAP_POINT_LIMIT)),
        slug_retry_attempts=int(
            raw.get("slug_retry_attempts", DEFAULT_SLUG_RETRY_ATTEMPTS)
        ),
    )

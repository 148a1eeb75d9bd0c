"""
joydrop.api.deps — FastAPI dependency injection
================================================
"""

from __future__ import annotations

from functools import lru_cache

from sqlalchemy import Engine

from joydrop.config import JoydropConfig, load_config
from joydrop.database.engine import create_db_engine


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return create_db_engine()


@lru_cache(maxsize=1)
def get_config() -> JoydropConfig:
    return load_config()

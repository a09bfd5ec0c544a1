"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, fluentorm.toml only contains
overrides. An empty (or missing) file yields a working on-disk SQLite
database in the current directory.
"""

from __future__ import annotations

from pydantic import BaseModel


class DatabaseConfig(BaseModel):
    """[database] section."""

    model_config = {"frozen": True}

    url: str = "sqlite:///fluentorm.db"
    echo: bool = False
    wal: bool = True
    foreign_keys: bool = True


class LoggingConfig(BaseModel):
    """[logging] section."""

    model_config = {"frozen": True}

    verbose: bool = False
    json_logs: bool = False
    log_queries: bool = False

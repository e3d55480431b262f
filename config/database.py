"""Database configuration and factory for SiteCrawl.

Provides unified interface for database operations with support for
both SQLite (development) and PostgreSQL (production) backends.
"""

import os
import logging
from enum import Enum
from typing import Mapping, Optional
from pydantic import BaseModel, Field

from indexer.base import SiteMapStore
from indexer.postgres_adapter import PostgresConfig

logger = logging.getLogger(__name__)


class DatabaseType(str, Enum):
    """Supported database types."""
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class DatabaseConfig(BaseModel):
    """Database configuration."""
    type: DatabaseType = Field(default=DatabaseType.SQLITE, description="Database type")

    # SQLite configuration
    sqlite_path: str = Field(default="sitecrawl.db", description="SQLite database path")

    # PostgreSQL configuration
    postgres: PostgresConfig = Field(default_factory=PostgresConfig, description="PostgreSQL configuration")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'DatabaseConfig':
        """Create configuration from environment variables."""
        env = os.environ if environ is None else environ
        db_type = env.get('SITECRAWL_DB_TYPE', 'sqlite').lower()

        if db_type == 'postgresql':
            postgres_config = PostgresConfig(
                host=env.get('POSTGRES_HOST', 'localhost'),
                port=int(env.get('POSTGRES_PORT', '5432')),
                database=env.get('POSTGRES_DB', 'sitecrawl'),
                user=env.get('POSTGRES_USER', 'sitecrawl'),
                password=env.get('POSTGRES_PASSWORD', ''),
                min_connections=int(env.get('POSTGRES_MIN_CONNECTIONS', '1')),
                max_connections=int(env.get('POSTGRES_MAX_CONNECTIONS', '10')),
                command_timeout=int(env.get('POSTGRES_COMMAND_TIMEOUT', '60'))
            )
            return cls(type=DatabaseType.POSTGRESQL, postgres=postgres_config)

        return cls(
            type=DatabaseType.SQLITE,
            sqlite_path=env.get('SQLITE_PATH', 'sitecrawl.db'),
        )


def create_store(config: DatabaseConfig) -> SiteMapStore:
    """Build the store for the configured backend.

    The caller owns the returned handle: it must ``initialize()`` it (or use
    it as an async context manager) and close it at shutdown.
    """
    if config.type == DatabaseType.POSTGRESQL:
        logger.info("Using PostgreSQL store")
        from indexer.postgres_adapter import PostgresAdapter
        return PostgresAdapter(config.postgres)

    logger.info(f"Using SQLite store at {config.sqlite_path}")
    from indexer.sqlite_adapter import SQLiteAdapter
    return SQLiteAdapter(config.sqlite_path)

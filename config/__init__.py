"""Configuration module for SiteCrawl.

Provides configuration management for the database, crawler, queue and retrieval.
"""

from .database import (
    DatabaseConfig,
    DatabaseType,
    create_store,
)
from .settings import (
    CrawlerSettings,
    LoggingSettings,
    QueueConfig,
    RetrievalSettings,
    SchedulerSettings,
    Settings,
)
from .settings_loader import load_settings

__all__ = [
    'DatabaseConfig',
    'DatabaseType',
    'create_store',
    'CrawlerSettings',
    'LoggingSettings',
    'QueueConfig',
    'RetrievalSettings',
    'SchedulerSettings',
    'Settings',
    'load_settings',
]

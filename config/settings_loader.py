"""Configuration loader for SiteCrawl settings.

Defaults, then an optional YAML file, then environment variables.
"""

import os
import logging
import yaml
from typing import Dict, Any, Optional
from pathlib import Path

from .database import DatabaseConfig, DatabaseType
from .settings import Settings

logger = logging.getLogger(__name__)

# Environment variable -> dotted settings key
ENV_OVERRIDES = {
    'SITECRAWL_FETCHER': 'crawler.fetcher',
    'SITECRAWL_MAX_PAGES': 'crawler.max_pages',
    'SITECRAWL_DEBUG': 'crawler.debug',
    'SITECRAWL_REQUEST_TIMEOUT': 'crawler.request_timeout',
    'REDIS_URL': 'queue.redis_url',
    'SITECRAWL_QUEUE_NAME': 'queue.queue_name',
    'SITECRAWL_VISIBILITY_TIMEOUT': 'queue.visibility_timeout',
    'LOG_LEVEL': 'logging.level',
    'SITECRAWL_LOG_FILE': 'logging.log_file',
    'SITECRAWL_LOG_JSON': 'logging.use_json',
    'SITECRAWL_REFRESH_ENABLED': 'scheduler.enabled',
    'SITECRAWL_REFRESH_CRON': 'scheduler.refresh_cron',
}


def _get_default_config_path() -> str:
    """Get the default configuration file path."""
    possible_paths = [
        os.environ.get('SITECRAWL_CONFIG'),
        os.path.join(os.getcwd(), 'config', 'sitecrawl.yaml'),
        os.path.join(Path(__file__).parent, 'sitecrawl.yaml'),
    ]

    for path in possible_paths:
        if path and os.path.exists(path):
            return path

    return os.path.join(Path(__file__).parent, 'sitecrawl.yaml')


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def _set_dotted(config: Dict[str, Any], dotted_key: str, value: Any):
    keys = dotted_key.split('.')
    target = config
    for key in keys[:-1]:
        target = target.setdefault(key, {})
    target[keys[-1]] = value


def _env_overrides(environ: Dict[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for env_name, dotted_key in ENV_OVERRIDES.items():
        if env_name in environ:
            _set_dotted(overrides, dotted_key, environ[env_name])
    return overrides


def load_settings(config_path: Optional[str] = None,
                  environ: Optional[Dict[str, str]] = None) -> Settings:
    """Build Settings from defaults, the YAML file and the environment.

    Pydantic coerces the string values coming from the environment.
    """
    environ = dict(os.environ) if environ is None else environ
    config_path = config_path or _get_default_config_path()
    config: Dict[str, Any] = {}

    if os.path.exists(config_path):
        with open(config_path, 'r', encoding='utf-8') as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"Settings file {config_path} must contain a mapping")
        config = deep_merge(config, file_config)
        logger.info(f"Loaded settings from {config_path}")
    else:
        logger.debug(f"Settings file not found at {config_path}, using defaults")

    config = deep_merge(config, _env_overrides(environ))

    # SITECRAWL_DB_TYPE selects the backend and takes its settings from the environment.
    if environ.get('SITECRAWL_DB_TYPE'):
        from_env = DatabaseConfig.from_env(environ).model_dump(mode='json')
        config['database'] = deep_merge(config.get('database', {}), from_env)
    elif 'database' in config and config['database'].get('type') == DatabaseType.POSTGRESQL.value:
        password = environ.get('POSTGRES_PASSWORD')
        if password:
            _set_dotted(config, 'database.postgres.password', password)

    return Settings(**config)

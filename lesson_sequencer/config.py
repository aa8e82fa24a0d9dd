"""Configuration loader for the Lesson Sequencer.

Loads configuration from:
1. Default values (hardcoded)
2. config.yaml file (if exists)
3. Environment variables, including a .env file (highest priority)

Environment variables use the pattern: LSQ_SECTION__KEY
Examples:
    LSQ_BACKEND__BASE_URL=https://api.example.com/v1
    LSQ_SYNC__MAX_RETRIES=5
    LSQ_LOGGING__LEVEL=DEBUG

The API token is read from LSQ_API_TOKEN and never from the YAML file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv

from .exceptions import ConfigurationError, MissingConfigError
from .logging_config import get_logger
from .models import ExportFormat

logger = get_logger('config')

ENV_PREFIX = "LSQ_"
API_TOKEN_ENV = "LSQ_API_TOKEN"


@dataclass
class BackendConfig:
    """Remote course API configuration."""
    base_url: str = "http://localhost:8000/api/v1"
    timeout_seconds: float = 30.0
    api_token: Optional[str] = None


@dataclass
class SyncConfig:
    """Reconciliation and refresh behaviour."""
    refresh_after_mutation: bool = True
    max_retries: int = 3
    retry_initial_delay: float = 0.5
    retry_max_delay: float = 10.0
    retry_backoff_factor: float = 2.0


@dataclass
class BoardConfig:
    """Lesson board defaults."""
    default_sort: str = "position"
    export_format: str = "csv"


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    file: Optional[str] = None
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    json_format: bool = False


@dataclass
class Config:
    """Main configuration container."""
    backend: BackendConfig = field(default_factory=BackendConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    board: BoardConfig = field(default_factory=BoardConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def require_api_token(self) -> str:
        """Return the API token or raise if it is not configured."""
        if not self.backend.api_token:
            raise MissingConfigError(API_TOKEN_ENV)
        return self.backend.api_token


def _deep_update(base: dict, updates: dict) -> dict:
    """Recursively update a dictionary."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base


def _apply_env_overrides(config_dict: dict) -> dict:
    """Apply environment variable overrides.

    Double underscore separates nested keys.
    """
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue

        path = key[len(ENV_PREFIX):].lower().split("__")
        if len(path) < 2:
            continue

        current = config_dict
        for part in path[:-1]:
            if part not in current:
                current[part] = {}
            current = current[part]

        # Convert value to the type of the default it replaces
        final_key = path[-1]
        if final_key in current:
            original = current[final_key]
            try:
                if isinstance(original, bool):
                    value = value.lower() in ('true', '1', 'yes')
                elif isinstance(original, int):
                    value = int(value)
                elif isinstance(original, float):
                    value = float(value)
            except ValueError:
                raise ConfigurationError(
                    f"Invalid value for {key}: {value!r}",
                    config_key=".".join(path)
                )

        current[final_key] = value
        logger.debug(f"Applied env override: {key}")

    return config_dict


def _section(cls, values: dict):
    """Build a section dataclass, ignoring unknown keys."""
    return cls(**{
        k: v for k, v in values.items()
        if k in cls.__dataclass_fields__
    })


def _dict_to_config(config_dict: dict) -> Config:
    """Convert a dictionary to Config dataclass."""
    return Config(
        backend=_section(BackendConfig, config_dict.get('backend', {})),
        sync=_section(SyncConfig, config_dict.get('sync', {})),
        board=_section(BoardConfig, config_dict.get('board', {})),
        logging=_section(LoggingConfig, config_dict.get('logging', {})),
    )


def _defaults_dict() -> dict:
    config = Config()
    return {
        'backend': {
            'base_url': config.backend.base_url,
            'timeout_seconds': config.backend.timeout_seconds,
        },
        'sync': {
            'refresh_after_mutation': config.sync.refresh_after_mutation,
            'max_retries': config.sync.max_retries,
            'retry_initial_delay': config.sync.retry_initial_delay,
            'retry_max_delay': config.sync.retry_max_delay,
            'retry_backoff_factor': config.sync.retry_backoff_factor,
        },
        'board': {
            'default_sort': config.board.default_sort,
            'export_format': config.board.export_format,
        },
        'logging': {
            'level': config.logging.level,
            'file': config.logging.file,
            'max_bytes': config.logging.max_bytes,
            'backup_count': config.logging.backup_count,
            'json_format': config.logging.json_format,
        },
    }


def load_config(config_path: Optional[str] = None) -> Config:
    """Load configuration from file and environment.

    Args:
        config_path: Path to config file. If None, searches for config.yaml
                    in the working directory and the project root.

    Returns:
        Config object with all settings loaded
    """
    load_dotenv()

    config_dict = _defaults_dict()

    if config_path is None:
        search_paths = [
            Path("config.yaml"),
            Path("config.yml"),
            Path(__file__).parent.parent / "config.yaml",
        ]
        for path in search_paths:
            if path.exists():
                config_path = str(path)
                break

    if config_path and Path(config_path).exists():
        with open(config_path, 'r') as f:
            try:
                file_config = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Failed to parse {config_path}: {e}")
        if not isinstance(file_config, dict):
            raise ConfigurationError(f"Config file {config_path} must contain a mapping")
        file_config.get('backend', {}).pop('api_token', None)
        config_dict = _deep_update(config_dict, file_config)
        logger.debug(f"Loaded config from: {config_path}")

    config_dict = _apply_env_overrides(config_dict)

    config = _dict_to_config(config_dict)
    if config.board.export_format not in {f.value for f in ExportFormat}:
        raise ConfigurationError(
            f"Unknown export format: {config.board.export_format!r}",
            config_key="board.export_format"
        )
    config.backend.api_token = os.getenv(API_TOKEN_ENV)
    return config


# Global config instance (lazy loaded)
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance.

    Loads config on first call, returns cached instance on subsequent calls.
    """
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config(config_path: Optional[str] = None) -> Config:
    """Reload configuration, clearing the cache."""
    global _config
    _config = load_config(config_path)
    return _config

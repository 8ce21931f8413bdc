"""PostForge package initialization."""

from pathlib import Path
from typing import Optional

import structlog

from .common.config import (
    AuthConfig,
    Config,
    DatabaseConfig,
    EmailConfig,
    LoggingConfig,
    RateLimitsConfig,
)
from .common.logging_config import setup_logging
from .core.db import (
    AccountRepository,
    ApiKeyNotFoundError,
    DatabaseConnectionError,
    DatabaseError,
    DuplicateRecordError,
    MigrationError,
    QueryError,
    TransactionError,
    UserNotFoundError,
)
from .core.exceptions import (
    AuthenticationError,
    ConflictError,
    ExpiredError,
    NotFoundError,
    PostForgeError,
    RateLimitedError,
    ValidationError,
)

__version__ = "0.1.0"
__all__ = [
    "Config",
    "AuthConfig",
    "DatabaseConfig",
    "EmailConfig",
    "LoggingConfig",
    "RateLimitsConfig",
    "configure",
    "get_config",
    "get_repository",
    "AccountRepository",
    "DatabaseError",
    "DatabaseConnectionError",
    "MigrationError",
    "UserNotFoundError",
    "ApiKeyNotFoundError",
    "DuplicateRecordError",
    "QueryError",
    "TransactionError",
    "PostForgeError",
    "ValidationError",
    "ConflictError",
    "AuthenticationError",
    "NotFoundError",
    "ExpiredError",
    "RateLimitedError",
]

# Module-level logger (not configured yet)
logger = structlog.get_logger(__name__)

# Global config and repository state
_config: Optional[Config] = None
_repository: Optional[AccountRepository] = None


async def configure(config_path: Optional[Path] = None, config: Optional[Config] = None) -> None:
    """
    Configure the postforge package (async).

    This function should be called once at application startup to initialize
    the configuration, logging, and database connection.

    Path Resolution:
    - If config_path is provided, load from that file
    - Otherwise, look for config.yaml in POSTFORGE_CONFIG_DIR (or the
      default config directory), then the working directory
    - The database and log file are resolved against config_dir

    Args:
        config_path: Path to YAML configuration file
        config: Pre-loaded Config object (takes precedence over config_path)

    Example:
        >>> import postforge
        >>> await postforge.configure(config_path=Path("config.yaml"))
    """
    global _config, _repository

    from postforge.common.config import _get_default_config_dir

    if config is not None:
        _config = config
    elif config_path is not None:
        _config = Config.from_yaml(config_path)
    else:
        default_config_path = _get_default_config_dir() / "config.yaml"
        cwd_config_path = Path.cwd() / "config.yaml"

        if default_config_path.exists():
            _config = Config.from_yaml(default_config_path)
            config_path = default_config_path
        elif cwd_config_path.exists():
            _config = Config.from_yaml(cwd_config_path)
            config_path = cwd_config_path
        elif _config is None:
            _config = Config()

    _config.resolve_paths(create_dirs=True)

    setup_logging(_config.logging, _config.config_dir)

    if _repository is None:
        _repository = await AccountRepository.from_config(
            _config.database,
            config_dir=_config.config_dir,
        )

    logger.info(
        "postforge_configured",
        version=__version__,
        config_path=str(config_path) if config_path else None,
        config_dir=str(_config.config_dir),
        database_path=str(_config.get_database_path()),
    )


def get_config() -> Config:
    """
    Get current configuration, initializing with defaults if needed.

    Returns:
        Current Config object
    """
    global _config
    if _config is None:
        # Does not initialize the repository; call await configure() for that
        _config = Config()
        setup_logging(_config.logging)
    return _config


async def get_repository() -> AccountRepository:
    """
    Get the account repository, initializing if needed (async).

    Returns:
        AccountRepository instance

    Example:
        >>> import postforge
        >>> await postforge.configure()
        >>> repo = await postforge.get_repository()
        >>> user = await repo.find_user_by_email("jane@example.com")
    """
    global _repository, _config

    if _repository is None:
        if _config is None:
            _config = Config()
            setup_logging(_config.logging)

        _config.resolve_paths(create_dirs=True)
        _repository = await AccountRepository.from_config(
            _config.database,
            config_dir=_config.config_dir,
        )
        logger.info(
            "repository_auto_initialized",
            database_path=str(_config.get_database_path()),
        )

    return _repository

"""Logging configuration using structlog for structured logging."""

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Optional

import structlog

from .config import LoggingConfig

LOG_FILE_NAME = "postforge.log"

# Event keys that must never reach a log sink in clear text
REDACTED_KEYS = frozenset(
    {
        "password",
        "new_password",
        "otp",
        "code",
        "token",
        "access_token",
        "refresh_token",
        "reset_token",
        "api_key",
        "encrypted_key",
        "secret",
    }
)


def redact_secrets(_logger: Any, _method: str, event_dict: dict) -> dict:
    """structlog processor masking known secret-bearing keys."""
    for key in REDACTED_KEYS.intersection(event_dict):
        if event_dict[key] is not None:
            event_dict[key] = "***"
    return event_dict


def setup_logging(config: LoggingConfig, config_dir: Optional[Path] = None) -> None:
    """
    Configure logging based on configuration.

    Sets up structlog on top of standard library logging so that both
    application events and third-party library records share handlers,
    levels and formatting.

    Args:
        config: LoggingConfig object with logging settings
        config_dir: Directory for the log file (if file logging enabled)

    Example:
        >>> from postforge.common.config import LoggingConfig
        >>> setup_logging(LoggingConfig(level="DEBUG", format="text"))
    """
    log_level = getattr(logging, config.level.upper())

    logging.basicConfig(
        level=log_level,
        format="%(message)s",
        handlers=[],
        force=True,
    )

    default_third_party = {
        "aiosqlite": "WARNING",
        "uvicorn.access": "WARNING",
        "httpx": "WARNING",
    }
    third_party_config = {**default_third_party, **config.third_party}

    for library, level in third_party_config.items():
        logging.getLogger(library).setLevel(getattr(logging, level.upper()))

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    if config.file and config.file.enabled and config_dir is not None:
        log_path = config_dir / LOG_FILE_NAME
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # postforge.log.2026-01-01, 7 days kept
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_path),
            when="midnight",
            backupCount=7,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """
    Get a structlog logger instance.

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("session_created", user_id=42)
    """
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind context variables included in all subsequent log messages.

    Example:
        >>> bind_context(request_id="abc-123", client="203.0.113.7")
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    """Clear all bound context variables."""
    structlog.contextvars.clear_contextvars()

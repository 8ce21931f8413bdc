"""Database module for accounts, sessions and stored API keys."""

from .connection import DatabaseConnection
from .exceptions import (
    ApiKeyNotFoundError,
    DatabaseConnectionError,
    DatabaseError,
    DuplicateRecordError,
    MigrationError,
    QueryError,
    TransactionError,
    UserNotFoundError,
)
from .migrator import Migrator
from .repository import AccountRepository, parse_timestamp, run_session_purge

__all__ = [
    "AccountRepository",
    "DatabaseConnection",
    "Migrator",
    "parse_timestamp",
    "run_session_purge",
    "DatabaseError",
    "DatabaseConnectionError",
    "MigrationError",
    "UserNotFoundError",
    "ApiKeyNotFoundError",
    "DuplicateRecordError",
    "QueryError",
    "TransactionError",
]

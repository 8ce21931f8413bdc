"""Exceptions for database operations."""

from pathlib import Path
from typing import Optional


class DatabaseError(Exception):
    """Base exception for database errors."""

    pass


class DatabaseConnectionError(DatabaseError):
    """Raised when database connection fails."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class MigrationError(DatabaseError):
    """Raised when database migration fails."""

    def __init__(
        self,
        message: str,
        version: Optional[int] = None,
        filename: Optional[str] = None,
    ):
        super().__init__(message)
        self.version = version
        self.filename = filename


class UserNotFoundError(DatabaseError):
    """Raised when a user record cannot be found."""

    def __init__(
        self,
        message: str,
        user_id: Optional[int] = None,
        email: Optional[str] = None,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.email = email


class ApiKeyNotFoundError(DatabaseError):
    """Raised when an API key record cannot be found for its owner."""

    def __init__(
        self,
        message: str,
        key_id: Optional[int] = None,
        user_id: Optional[int] = None,
    ):
        super().__init__(message)
        self.key_id = key_id
        self.user_id = user_id


class DuplicateRecordError(DatabaseError):
    """Raised when attempting to create a duplicate record."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        key: Optional[str] = None,
    ):
        super().__init__(message)
        self.table = table
        self.key = key


class QueryError(DatabaseError):
    """Raised when database query execution fails."""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
    ):
        super().__init__(message)
        self.query = query


class TransactionError(DatabaseError):
    """Raised when transaction operation fails."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation

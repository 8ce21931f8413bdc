"""SQLite connection management for the account database."""

from pathlib import Path
from typing import Any, Optional

import aiosqlite
import structlog

from .exceptions import DatabaseConnectionError

logger = structlog.get_logger(__name__)

IN_MEMORY = ":memory:"


class DatabaseConnection:
    """Owns the single aiosqlite connection used by the account repository."""

    def __init__(
        self,
        db_path: Path,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        """
        Initialize the connection manager.

        Args:
            db_path: Path to the SQLite file, or ``Path(":memory:")``
            enable_wal: Enable Write-Ahead Logging (ignored for in-memory databases)
            timeout: Seconds to wait on a locked database
        """
        self.db_path = db_path
        self.enable_wal = enable_wal
        self.timeout = timeout
        self._connection: Optional[aiosqlite.Connection] = None

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == IN_MEMORY

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    async def connect(self) -> aiosqlite.Connection:
        """
        Open the connection (idempotent).

        Returns:
            Active database connection

        Raises:
            DatabaseConnectionError: If the database cannot be opened
        """
        if self._connection is not None:
            return self._connection

        try:
            if not self.is_memory:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            self._connection = await aiosqlite.connect(
                str(self.db_path),
                timeout=self.timeout,
            )
            self._connection.row_factory = aiosqlite.Row

            # Sessions and API keys cascade on user deletion
            await self._connection.execute("PRAGMA foreign_keys = ON")

            if self.enable_wal and not self.is_memory:
                await self._connection.execute("PRAGMA journal_mode = WAL")

            logger.info(
                "database_connected",
                db_path=str(self.db_path),
                wal_mode=self.enable_wal and not self.is_memory,
            )
            return self._connection

        except Exception as e:
            logger.error(
                "database_connection_failed",
                db_path=str(self.db_path),
                error=str(e),
            )
            raise DatabaseConnectionError(
                f"Failed to connect to database: {e}",
                path=self.db_path,
            ) from e

    async def close(self) -> None:
        """Close the connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("database_closed", db_path=str(self.db_path))

    async def __aenter__(self) -> aiosqlite.Connection:
        return await self.connect()

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

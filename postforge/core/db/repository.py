"""Account repository: users, refresh-token sessions and encrypted API keys."""

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite
import structlog

from .connection import DatabaseConnection
from .exceptions import (
    ApiKeyNotFoundError,
    DatabaseError,
    DuplicateRecordError,
    QueryError,
    TransactionError,
    UserNotFoundError,
)
from .migrator import Migrator

logger = structlog.get_logger(__name__)

_USER_UPDATABLE = frozenset(
    {
        "name",
        "avatar",
        "password_hash",
        "email_verified",
        "email_verification_otp",
        "otp_expires_at",
        "reset_token",
        "reset_token_expires_at",
        "last_login_at",
    }
)

_API_KEY_COLUMNS = "id, user_id, provider, label, is_valid, last_used_at, created_at, updated_at"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored ISO timestamp into an aware UTC datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class AccountRepository:
    """Repository for account, session and API-key persistence."""

    def __init__(
        self,
        db_path: Path,
        enable_wal: bool = True,
        timeout: int = 30,
    ):
        self.db_path = db_path
        self._db_connection = DatabaseConnection(db_path, enable_wal, timeout)
        self._connection: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()
        self._transaction_task: Optional[asyncio.Task] = None

    @classmethod
    async def from_config(
        cls,
        config: Any,
        config_dir: Optional[Path] = None,
    ) -> "AccountRepository":
        """
        Create, connect and migrate a repository from a DatabaseConfig.

        Args:
            config: DatabaseConfig instance
            config_dir: Directory that relative database paths resolve against

        Returns:
            Initialized AccountRepository
        """
        db_path = Path(config.database_path)
        if config.database_path != ":memory:" and not db_path.is_absolute() and config_dir:
            db_path = config_dir / db_path

        repo = cls(
            db_path=db_path,
            enable_wal=config.enable_wal_mode,
            timeout=config.connection_timeout,
        )
        await repo.connect()
        await Migrator().run_migrations(repo._connection)

        logger.info("repository_initialized", db_path=str(db_path))
        return repo

    async def connect(self) -> None:
        """Establish database connection."""
        if self._connection is None:
            self._connection = await self._db_connection.connect()

    async def close(self) -> None:
        """Close database connection."""
        if self._connection is not None:
            await self._db_connection.close()
            self._connection = None

    async def __aenter__(self) -> "AccountRepository":
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise QueryError("No active connection")
        return self._connection

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        """
        Group several writes into one commit.

        Writes made inside the block by the same task are not committed
        individually; the block commits once on success and rolls back on
        any error. Writes from other tasks wait until the block ends.

        Example:
            async with repository.transaction():
                await repository.delete_session(old_token)
                await repository.create_session(...)
        """
        conn = self.connection
        async with self._write_lock:
            self._transaction_task = asyncio.current_task()
            try:
                yield
                await conn.commit()
                logger.debug("transaction_committed")
            except sqlite3.Error as e:
                await conn.rollback()
                logger.error("transaction_rolled_back", error=str(e))
                raise TransactionError(f"Transaction failed: {e}", operation="commit") from e
            except BaseException as e:
                await conn.rollback()
                logger.debug("transaction_rolled_back", error=repr(e))
                raise
            finally:
                self._transaction_task = None

    def _in_transaction(self) -> bool:
        return self._transaction_task is not None and self._transaction_task is asyncio.current_task()

    async def _execute_write(self, sql: str, params: tuple, commit: bool) -> aiosqlite.Cursor:
        try:
            cursor = await self.connection.execute(sql, params)
            if commit:
                await self.connection.commit()
            return cursor
        except sqlite3.IntegrityError:
            if commit:
                await self.connection.rollback()
            raise
        except sqlite3.Error as e:
            if commit:
                await self.connection.rollback()
            raise QueryError(f"Database write failed: {e}", query=sql) from e

    async def _write(self, sql: str, params: tuple) -> aiosqlite.Cursor:
        if self._in_transaction():
            return await self._execute_write(sql, params, commit=False)
        async with self._write_lock:
            return await self._execute_write(sql, params, commit=True)

    # ==================== Users ====================

    async def create_user(
        self,
        email: str,
        password_hash: str,
        name: Optional[str] = None,
    ) -> int:
        """
        Create a user account.

        Args:
            email: Normalised (lower-case) email address
            password_hash: bcrypt hash of the password
            name: Optional display name

        Returns:
            ID of the created user

        Raises:
            DuplicateRecordError: If the email is already registered
        """
        now = _utcnow()
        try:
            cursor = await self._write(
                """
                INSERT INTO users (email, name, password_hash, email_verified, created_at, updated_at)
                VALUES (?, ?, ?, 0, ?, ?)
                """,
                (email, name, password_hash, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(
                "User with this email already exists",
                table="users",
                key="email",
            ) from e

        logger.info("user_created", user_id=cursor.lastrowid)
        return cursor.lastrowid

    async def get_user_by_id(self, user_id: int) -> Dict[str, Any]:
        """
        Get a user by ID.

        Raises:
            UserNotFoundError: If no such user exists
        """
        cursor = await self.connection.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = await cursor.fetchone()
        if not row:
            raise UserNotFoundError(f"User not found: {user_id}", user_id=user_id)
        return dict(row)

    async def find_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        """Get a user by normalised email, or None."""
        cursor = await self.connection.execute("SELECT * FROM users WHERE email = ?", (email,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def find_user_by_reset_token(self, token: str) -> Optional[Dict[str, Any]]:
        """Get the user owning a password reset token, or None."""
        cursor = await self.connection.execute(
            "SELECT * FROM users WHERE reset_token = ?", (token,)
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_users(self) -> List[Dict[str, Any]]:
        cursor = await self.connection.execute(
            "SELECT id, email, name, email_verified, last_login_at, created_at FROM users ORDER BY id"
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def update_user(self, user_id: int, **updates: Any) -> None:
        """
        Update user columns.

        Datetime values are stored as UTC ISO strings and booleans as 0/1.

        Raises:
            QueryError: If an unknown column is given
            UserNotFoundError: If no such user exists
        """
        unknown = set(updates) - _USER_UPDATABLE
        if unknown:
            raise QueryError(f"Cannot update user columns: {sorted(unknown)}")
        if not updates:
            return

        values: List[Any] = []
        for value in updates.values():
            if isinstance(value, datetime):
                value = _to_iso(value)
            elif isinstance(value, bool):
                value = int(value)
            values.append(value)

        assignments = ", ".join(f"{column} = ?" for column in updates)
        cursor = await self._write(
            f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
            (*values, _utcnow(), user_id),
        )
        if cursor.rowcount == 0:
            raise UserNotFoundError(f"User not found: {user_id}", user_id=user_id)

    async def set_verification_otp(self, user_id: int, code: str, expires_at: datetime) -> None:
        """Store a new verification code, replacing any previous one."""
        await self.update_user(user_id, email_verification_otp=code, otp_expires_at=expires_at)

    async def mark_email_verified(self, user_id: int) -> None:
        """Set the verified flag and consume the verification code."""
        await self.update_user(
            user_id,
            email_verified=True,
            email_verification_otp=None,
            otp_expires_at=None,
        )
        logger.info("email_verified", user_id=user_id)

    async def set_reset_token(self, user_id: int, token: str, expires_at: datetime) -> None:
        """Store a new password reset token, replacing any previous one."""
        await self.update_user(user_id, reset_token=token, reset_token_expires_at=expires_at)

    async def record_login(self, user_id: int) -> None:
        await self.update_user(user_id, last_login_at=datetime.now(timezone.utc))

    async def complete_password_reset(self, user_id: int, password_hash: str) -> int:
        """
        Store the new password, consume the reset token and delete every session.

        All three writes commit together.

        Returns:
            Number of sessions revoked
        """
        async with self.transaction():
            await self.update_user(
                user_id,
                password_hash=password_hash,
                reset_token=None,
                reset_token_expires_at=None,
            )
            revoked = await self.delete_user_sessions(user_id)

        logger.info("password_reset_completed", user_id=user_id, sessions_revoked=revoked)
        return revoked

    # ==================== Sessions ====================

    async def create_session(
        self,
        user_id: int,
        token: str,
        expires_at: datetime,
        user_agent: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> int:
        """
        Persist a refresh-token session.

        Returns:
            ID of the session row
        """
        cursor = await self._write(
            """
            INSERT INTO sessions (user_id, token, expires_at, user_agent, ip_address, created_at)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (user_id, token, _to_iso(expires_at), user_agent, ip_address, _utcnow()),
        )
        logger.debug("session_created", user_id=user_id, session_id=cursor.lastrowid)
        return cursor.lastrowid

    async def find_session(self, token: str) -> Optional[Dict[str, Any]]:
        """Look up a session by its refresh token, or None."""
        cursor = await self.connection.execute("SELECT * FROM sessions WHERE token = ?", (token,))
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_user_sessions(self, user_id: int) -> List[Dict[str, Any]]:
        cursor = await self.connection.execute(
            "SELECT * FROM sessions WHERE user_id = ? ORDER BY created_at",
            (user_id,),
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def delete_session(self, token: str) -> bool:
        """Delete one session by refresh token. Returns True if a row was removed."""
        cursor = await self._write("DELETE FROM sessions WHERE token = ?", (token,))
        return cursor.rowcount > 0

    async def delete_user_sessions(self, user_id: int) -> int:
        """Delete every session of a user. Returns the number removed."""
        cursor = await self._write("DELETE FROM sessions WHERE user_id = ?", (user_id,))
        if cursor.rowcount:
            logger.info("sessions_revoked", user_id=user_id, count=cursor.rowcount)
        return cursor.rowcount

    async def delete_expired_sessions(self, now: Optional[datetime] = None) -> int:
        """Delete sessions past their expiry. Returns the number removed."""
        cutoff = _to_iso(now or datetime.now(timezone.utc))
        cursor = await self._write("DELETE FROM sessions WHERE expires_at < ?", (cutoff,))
        if cursor.rowcount:
            logger.info("expired_sessions_purged", count=cursor.rowcount)
        return cursor.rowcount

    # ==================== API keys ====================

    async def create_api_key(
        self,
        user_id: int,
        provider: str,
        encrypted_key: str,
        label: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Store an encrypted API key.

        Returns:
            The key's metadata (never the encrypted payload)

        Raises:
            DuplicateRecordError: If the user already has a key for this provider
        """
        now = _utcnow()
        try:
            cursor = await self._write(
                """
                INSERT INTO api_keys (user_id, provider, encrypted_key, label, is_valid, created_at, updated_at)
                VALUES (?, ?, ?, ?, 1, ?, ?)
                """,
                (user_id, provider, encrypted_key, label, now, now),
            )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecordError(
                f"API key for {provider} already exists",
                table="api_keys",
                key="provider",
            ) from e

        logger.info("api_key_created", user_id=user_id, provider=provider, key_id=cursor.lastrowid)
        return await self.get_api_key(cursor.lastrowid, user_id)

    async def get_api_key(self, key_id: int, user_id: int) -> Dict[str, Any]:
        """
        Get an API key's metadata, scoped to its owner.

        Raises:
            ApiKeyNotFoundError: If the key doesn't exist or belongs to another user
        """
        cursor = await self.connection.execute(
            f"SELECT {_API_KEY_COLUMNS} FROM api_keys WHERE id = ? AND user_id = ?",
            (key_id, user_id),
        )
        row = await cursor.fetchone()
        if not row:
            raise ApiKeyNotFoundError(
                f"API key not found: {key_id}", key_id=key_id, user_id=user_id
            )
        return dict(row)

    async def find_api_key_by_provider(
        self, user_id: int, provider: str
    ) -> Optional[Dict[str, Any]]:
        """Get a key row including ``encrypted_key``, or None."""
        cursor = await self.connection.execute(
            "SELECT * FROM api_keys WHERE user_id = ? AND provider = ?",
            (user_id, provider),
        )
        row = await cursor.fetchone()
        return dict(row) if row else None

    async def list_api_keys(self, user_id: int) -> List[Dict[str, Any]]:
        """List a user's API key metadata, newest first."""
        cursor = await self.connection.execute(
            f"SELECT {_API_KEY_COLUMNS} FROM api_keys WHERE user_id = ? "
            "ORDER BY created_at DESC, id DESC",
            (user_id,),
        )
        return [dict(row) for row in await cursor.fetchall()]

    async def update_api_key(
        self,
        key_id: int,
        user_id: int,
        label: Optional[str] = None,
        is_valid: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Update a key's label and/or validity flag.

        Raises:
            ApiKeyNotFoundError: If the key doesn't exist or belongs to another user
        """
        await self.get_api_key(key_id, user_id)

        assignments: List[str] = []
        values: List[Any] = []
        if label is not None:
            assignments.append("label = ?")
            values.append(label)
        if is_valid is not None:
            assignments.append("is_valid = ?")
            values.append(int(is_valid))

        if assignments:
            await self._write(
                f"UPDATE api_keys SET {', '.join(assignments)}, updated_at = ? "
                "WHERE id = ? AND user_id = ?",
                (*values, _utcnow(), key_id, user_id),
            )
        return await self.get_api_key(key_id, user_id)

    async def touch_api_key(self, key_id: int) -> None:
        """Record that a key was just used."""
        await self._write(
            "UPDATE api_keys SET last_used_at = ? WHERE id = ?",
            (_utcnow(), key_id),
        )

    async def delete_api_key(self, key_id: int, user_id: int) -> None:
        """
        Delete a key.

        Raises:
            ApiKeyNotFoundError: If the key doesn't exist or belongs to another user
        """
        cursor = await self._write(
            "DELETE FROM api_keys WHERE id = ? AND user_id = ?",
            (key_id, user_id),
        )
        if cursor.rowcount == 0:
            raise ApiKeyNotFoundError(
                f"API key not found: {key_id}", key_id=key_id, user_id=user_id
            )
        logger.info("api_key_deleted", user_id=user_id, key_id=key_id)


async def run_session_purge(repository: AccountRepository, interval_seconds: float) -> None:
    """Delete expired sessions every ``interval_seconds`` until cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await repository.delete_expired_sessions()
        except DatabaseError as e:
            logger.error("expired_session_purge_failed", error=str(e))

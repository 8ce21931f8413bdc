"""Applies numbered SQL migrations to the account database."""

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

import aiosqlite
import structlog

from .exceptions import MigrationError

logger = structlog.get_logger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


@dataclass(frozen=True)
class MigrationFile:
    """A migration script found on disk."""

    version: int
    filename: str
    sql: str

    @property
    def checksum(self) -> str:
        return hashlib.sha256(self.sql.encode("utf-8")).hexdigest()


class Migrator:
    """Runs pending ``NNN_description.sql`` scripts in version order.

    Applied versions are recorded in ``schema_migrations`` together with a
    SHA-256 checksum of the script. A script edited after it was applied is
    reported but not re-run.
    """

    def __init__(self, migrations_dir: Path = MIGRATIONS_DIR):
        self.migrations_dir = migrations_dir

    async def run_migrations(self, db: aiosqlite.Connection) -> List[int]:
        """
        Apply all pending migrations on an open connection.

        Args:
            db: Connection configured by ``DatabaseConnection``

        Returns:
            Versions applied by this call, in order

        Raises:
            MigrationError: If a script cannot be read or fails to execute
        """
        await db.execute(
            """
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version INTEGER PRIMARY KEY,
                filename TEXT NOT NULL,
                checksum TEXT NOT NULL,
                applied_at TEXT NOT NULL
            )
            """
        )
        await db.commit()

        applied = await self._get_applied_checksums(db)
        available = self._discover()

        for migration in available:
            recorded = applied.get(migration.version)
            if recorded is not None and recorded != migration.checksum:
                logger.warning(
                    "migration_checksum_mismatch",
                    version=migration.version,
                    filename=migration.filename,
                )

        pending = [m for m in available if m.version not in applied]
        if not pending:
            logger.debug("no_pending_migrations")
            return []

        logger.info("migrations_pending", count=len(pending))

        for migration in pending:
            try:
                await db.executescript(migration.sql)
                await db.execute(
                    """
                    INSERT INTO schema_migrations (version, filename, checksum, applied_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (
                        migration.version,
                        migration.filename,
                        migration.checksum,
                        datetime.now(timezone.utc).isoformat(),
                    ),
                )
                await db.commit()
                logger.info(
                    "migration_applied",
                    version=migration.version,
                    filename=migration.filename,
                )
            except Exception as e:
                await db.rollback()
                logger.error(
                    "migration_failed",
                    version=migration.version,
                    filename=migration.filename,
                    error=str(e),
                )
                raise MigrationError(
                    f"Migration {migration.filename} failed: {e}",
                    version=migration.version,
                    filename=migration.filename,
                ) from e

        return [m.version for m in pending]

    async def _get_applied_checksums(self, db: aiosqlite.Connection) -> Dict[int, str]:
        cursor = await db.execute("SELECT version, checksum FROM schema_migrations")
        rows = await cursor.fetchall()
        return {row[0]: row[1] for row in rows}

    def _discover(self) -> List[MigrationFile]:
        if not self.migrations_dir.exists():
            logger.warning("migrations_dir_not_found", path=str(self.migrations_dir))
            return []

        found: List[MigrationFile] = []
        for sql_file in sorted(self.migrations_dir.glob("*.sql")):
            try:
                version = int(sql_file.stem.split("_")[0])
            except ValueError:
                logger.warning("migration_filename_invalid", filename=sql_file.name)
                continue

            try:
                sql = sql_file.read_text(encoding="utf-8")
            except OSError as e:
                raise MigrationError(
                    f"Failed to read migration {sql_file.name}: {e}",
                    version=version,
                    filename=sql_file.name,
                ) from e

            found.append(MigrationFile(version=version, filename=sql_file.name, sql=sql))

        found.sort(key=lambda m: m.version)
        return found

"""Control database migrations.

Migration files live in ``migrations/control`` and are named
``<YYYYMMDDHHMMSS>_<slug>.sql``. Each file is applied in its own transaction
together with its row in ``schema_migrations``, so a failed file leaves no
trace and the run stops there.
"""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path

import asyncpg
import sqlparse

from src.utils.logging import get_logger

logger = get_logger(__name__)

MIGRATION_TABLE = "schema_migrations"


class MigrationError(Exception):
    """Custom exception for migration-related errors."""


@dataclass
class MigrationRunResult:
    applied: list[str]
    pending: list[str]
    failed: str | None = None

    @property
    def success(self) -> bool:
        return self.failed is None


def get_control_migrations_dir() -> Path:
    default_path = Path(__file__).parent.parent.parent / "migrations"
    return Path(os.getenv("MIGRATIONS_DIR", str(default_path))) / "control"


def get_migration_files(directory: Path) -> list[Path]:
    """SQL files in ``directory``, oldest first (the timestamp prefix sorts them)."""
    if not directory.exists():
        return []
    return sorted(directory.glob("*.sql"))


def extract_version_from_filename(filename: str) -> str:
    return filename.split("_")[0]


def parse_sql_statements(sql_content: str) -> list[str]:
    """Split a migration into statements, dropping empty ones and comment-only fragments."""
    statements = []
    for statement in sqlparse.split(sql_content):
        formatted = sqlparse.format(statement, strip_comments=True).strip()
        if formatted:
            statements.append(statement.strip())
    return statements


async def ensure_migrations_table(conn: asyncpg.Connection) -> None:
    await conn.execute(f"""
        CREATE TABLE IF NOT EXISTS public.{MIGRATION_TABLE} (
            version VARCHAR(255) PRIMARY KEY,
            applied_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
        );
    """)


async def get_applied_migrations(conn: asyncpg.Connection) -> set[str]:
    exists = await conn.fetchval(
        """
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = $1
        )
        """,
        MIGRATION_TABLE,
    )
    if not exists:
        return set()

    rows = await conn.fetch(f"SELECT version FROM public.{MIGRATION_TABLE}")
    return {row["version"] for row in rows}


async def apply_migration_file(
    conn: asyncpg.Connection, migration_file: Path, timeout: int = 300
) -> None:
    """Apply one file and record it. Raises MigrationError on failure."""
    version = extract_version_from_filename(migration_file.name)
    statements = parse_sql_statements(migration_file.read_text())

    try:
        async with conn.transaction():
            await conn.execute(f"SET LOCAL statement_timeout = '{timeout}s'")
            for statement in statements:
                await conn.execute(statement)
            await conn.execute(
                f"INSERT INTO public.{MIGRATION_TABLE} (version) VALUES ($1)", version
            )
    except asyncpg.PostgresError as e:
        raise MigrationError(f"Failed to apply {migration_file.name}: {e}") from e

    logger.info(f"Applied migration {migration_file.name}", statement_count=len(statements))


async def connect_with_retries(db_url: str, retries: int = 3) -> asyncpg.Connection:
    for attempt in range(retries):
        try:
            return await asyncpg.connect(db_url)
        except (OSError, asyncpg.PostgresError) as e:
            if attempt == retries - 1:
                raise MigrationError(
                    f"Failed to connect to control database after {retries} attempts: {e}"
                ) from e
            await asyncio.sleep(2**attempt)
    raise MigrationError("retries must be at least 1")


async def migrate_database(
    db_url: str,
    migrations_dir: Path | None = None,
    *,
    timeout: int = 300,
    retries: int = 3,
    dry_run: bool = False,
) -> MigrationRunResult:
    """Apply every pending migration in order, stopping at the first failure."""
    migration_files = get_migration_files(migrations_dir or get_control_migrations_dir())
    conn = await connect_with_retries(db_url, retries)

    try:
        applied_versions = await get_applied_migrations(conn)
        pending = [
            f
            for f in migration_files
            if extract_version_from_filename(f.name) not in applied_versions
        ]
        result = MigrationRunResult(applied=[], pending=[f.name for f in pending])

        if dry_run:
            for migration_file in pending:
                logger.info(f"DRY RUN: Would apply {migration_file.name}")
            return result

        await ensure_migrations_table(conn)
        for migration_file in pending:
            try:
                await apply_migration_file(conn, migration_file, timeout)
            except MigrationError as e:
                logger.error(str(e))
                result.failed = migration_file.name
                break
            result.applied.append(migration_file.name)
            result.pending.remove(migration_file.name)

        return result
    finally:
        await conn.close()


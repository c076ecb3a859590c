"""Tests for control database migration discovery and application."""

from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from src.migrations.core import (
    MIGRATION_TABLE,
    extract_version_from_filename,
    get_control_migrations_dir,
    get_migration_files,
    migrate_database,
    parse_sql_statements,
)


def _conn(applied: set[str] | None = None) -> MagicMock:
    conn = MagicMock()
    conn.execute = AsyncMock()
    conn.close = AsyncMock()
    conn.fetchval = AsyncMock(return_value=applied is not None)
    conn.fetch = AsyncMock(return_value=[{"version": v} for v in applied or ()])
    return conn


@pytest.fixture
def migrations_dir(tmp_path):
    (tmp_path / "20261019120000_roam_bridge.sql").write_text(
        "-- integrations\nCREATE TABLE a (id INT);\nCREATE TABLE b (id INT);"
    )
    (tmp_path / "20261101090000_add_index.sql").write_text("CREATE INDEX i ON a (id);")
    return tmp_path


class TestDiscovery:
    def test_files_sorted_by_timestamp(self, migrations_dir):
        names = [f.name for f in get_migration_files(migrations_dir)]

        assert names == ["20261019120000_roam_bridge.sql", "20261101090000_add_index.sql"]

    def test_missing_directory(self, tmp_path):
        assert get_migration_files(tmp_path / "nope") == []

    def test_version_prefix(self):
        assert extract_version_from_filename("20261019120000_roam_bridge.sql") == "20261019120000"

    def test_directory_override(self, monkeypatch, tmp_path):
        monkeypatch.setenv("MIGRATIONS_DIR", str(tmp_path))

        assert get_control_migrations_dir() == tmp_path / "control"

    def test_shipped_migration_parses(self):
        files = get_migration_files(get_control_migrations_dir())

        assert files
        assert all(parse_sql_statements(f.read_text()) for f in files)


class TestParseSqlStatements:
    def test_comment_only_input_is_empty(self):
        assert parse_sql_statements("-- nothing to do here\n") == []

    def test_splits_statements(self):
        statements = parse_sql_statements("CREATE TABLE a (id INT);\n\nCREATE TABLE b (id INT);")

        assert statements == ["CREATE TABLE a (id INT);", "CREATE TABLE b (id INT);"]


class TestMigrateDatabase:
    @pytest.mark.asyncio
    async def test_applies_pending_in_order(self, migrations_dir):
        conn = _conn(applied={"20261019120000"})

        with patch("src.migrations.core.asyncpg.connect", AsyncMock(return_value=conn)):
            result = await migrate_database("postgresql://x", migrations_dir)

        assert result.success
        assert result.applied == ["20261101090000_add_index.sql"]
        assert result.pending == []
        executed = [c.args[0] for c in conn.execute.await_args_list]
        assert "CREATE INDEX i ON a (id);" in executed
        assert any(MIGRATION_TABLE in sql and "INSERT" in sql for sql in executed)
        conn.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dry_run_applies_nothing(self, migrations_dir):
        conn = _conn()

        with patch("src.migrations.core.asyncpg.connect", AsyncMock(return_value=conn)):
            result = await migrate_database("postgresql://x", migrations_dir, dry_run=True)

        assert result.pending == [
            "20261019120000_roam_bridge.sql",
            "20261101090000_add_index.sql",
        ]
        conn.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stops_at_first_failure(self, migrations_dir):
        conn = _conn()

        async def execute(sql, *args):
            if sql.startswith("CREATE TABLE b"):
                raise asyncpg.PostgresError("relation already exists")

        conn.execute = AsyncMock(side_effect=execute)

        with patch("src.migrations.core.asyncpg.connect", AsyncMock(return_value=conn)):
            result = await migrate_database("postgresql://x", migrations_dir)

        assert not result.success
        assert result.failed == "20261019120000_roam_bridge.sql"
        assert result.applied == []
        assert "20261101090000_add_index.sql" in result.pending

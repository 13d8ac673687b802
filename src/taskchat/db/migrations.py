"""Database migrations module for TaskChat."""

import logging
from pathlib import Path

import duckdb

logger = logging.getLogger(__name__)

# <repo>/migrations, next to src/
MIGRATIONS_DIR = Path(__file__).parent.parent.parent.parent / "migrations"


def run_migrations(
    conn: duckdb.DuckDBPyConnection | str, migrations_dir: Path | None = None
) -> list[str]:
    """Run all pending database migrations.

    Args:
        conn: DuckDB connection or database path string.
        migrations_dir: Directory holding ``NNN_name.sql`` files.

    Returns:
        Versions applied by this call, in order.
    """
    if isinstance(conn, str):
        conn = duckdb.connect(conn)

    migrations_dir = migrations_dir or MIGRATIONS_DIR
    if not migrations_dir.exists():
        raise FileNotFoundError(f"Migrations directory not found: {migrations_dir}")

    migration_files = sorted(migrations_dir.glob("*.sql"))
    if not migration_files:
        return []

    conn.execute("""
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
        )
    """)

    applied = {row[0] for row in conn.execute("SELECT version FROM schema_migrations").fetchall()}

    newly_applied = []
    for migration_file in migration_files:
        version = migration_file.stem
        if version in applied:
            continue

        conn.execute(migration_file.read_text(encoding="utf-8"))
        conn.execute("INSERT INTO schema_migrations (version) VALUES (?)", [version])
        logger.info("Applied migration: %s", version)
        newly_applied.append(version)

    return newly_applied

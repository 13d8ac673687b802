"""DuckDB handle for the entity store and the chat session log.

One connection is shared by every owner; rows are scoped by owner id in
the stores themselves. ``DUCKDB_PATH`` picks the file, ``:memory:`` keeps
everything in process (tests use this).
"""

import logging
import os
from pathlib import Path

import duckdb

from taskchat.db.migrations import run_migrations
from taskchat.logging_utils import log_info

logger = logging.getLogger(__name__)

MEMORY_DATABASE = ":memory:"
DEFAULT_DB_PATH = "data/taskchat.db"


def get_db_path() -> str:
    """Database location from ``DUCKDB_PATH``, with ``~`` expanded."""
    path = os.getenv("DUCKDB_PATH") or DEFAULT_DB_PATH
    if path == MEMORY_DATABASE:
        return path
    return os.path.expanduser(path)


def get_connection(db_path: str | None = None, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    """Open the TaskChat database.

    Args:
        db_path: Database file, or ``:memory:``. Defaults to get_db_path().
        read_only: Open an existing file without write access

    Returns:
        DuckDB connection

    Raises:
        ValueError: If a read-only in-memory database is requested
    """
    db_path = db_path or get_db_path()

    if db_path == MEMORY_DATABASE:
        if read_only:
            raise ValueError("An in-memory database cannot be opened read-only")
    elif not read_only:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    return duckdb.connect(db_path, read_only=read_only)


def init_db(db_path: str | None = None) -> duckdb.DuckDBPyConnection:
    """Open the database and apply pending schema migrations.

    Args:
        db_path: Database file, or ``:memory:``. Defaults to get_db_path().

    Returns:
        DuckDB connection with the entity and chat tables in place
    """
    conn = get_connection(db_path=db_path)

    applied = run_migrations(conn)
    if applied:
        log_info(logger, "Applied schema migrations", db_path=db_path or get_db_path(), versions=",".join(applied))
    return conn

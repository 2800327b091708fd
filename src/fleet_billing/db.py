from __future__ import annotations

import sqlite3
from pathlib import Path

SCHEMA_PATH = Path(__file__).resolve().parents[2] / "migrations" / "sqlite" / "001_initial_schema.sql"


def connect_sqlite(path: str | Path = ":memory:") -> sqlite3.Connection:
    conn = sqlite3.connect(path, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def apply_sqlite_migration(conn: sqlite3.Connection, migration_path: str | Path = SCHEMA_PATH) -> None:
    sql = Path(migration_path).read_text(encoding="utf-8")
    conn.executescript(sql)


def open_database(path: str | Path = ":memory:") -> sqlite3.Connection:
    """Connect and make sure the billing schema exists."""
    conn = connect_sqlite(path)
    apply_sqlite_migration(conn)
    return conn

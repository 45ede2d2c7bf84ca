"""SQLite schema initialization for the portal store."""

import sqlite3
from pathlib import Path


def prepare_db_path(db_path: str) -> Path:
    """Create parent directories for file-backed SQLite paths."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


def init_portal_db(db_path: str) -> None:
    """
    Create portal tables when absent and switch the file to WAL mode.

    Args:
        db_path: SQLite file path.
    Side effects:
        Creates the data directory, SQLite file, and schema.
    """
    path = prepare_db_path(db_path)
    conn = sqlite3.connect(path)
    try:
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA foreign_keys = ON")
        with conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tickets (
                    id          TEXT PRIMARY KEY,
                    title       TEXT NOT NULL,
                    description TEXT DEFAULT '',
                    type        TEXT DEFAULT 'feature',
                    priority    TEXT DEFAULT 'medium',
                    status      TEXT DEFAULT 'open',
                    area        TEXT DEFAULT '',
                    subarea     TEXT DEFAULT '',
                    assignee    TEXT DEFAULT '',
                    files       TEXT DEFAULT '',
                    createdAt   TEXT NOT NULL,
                    updatedAt   TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS activity (
                    rowid_   INTEGER PRIMARY KEY AUTOINCREMENT,
                    action   TEXT NOT NULL,
                    ticketId TEXT,
                    title    TEXT NOT NULL,
                    time     TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS settings (
                    key   TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_tickets_created ON tickets(createdAt DESC)"
            )
    finally:
        conn.close()

from pathlib import Path

from .database import get_db

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS local_storage (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS settings (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    endpoint_url TEXT,
    body_format TEXT DEFAULT 'json',
    app_version TEXT DEFAULT '1.0.0',
    language TEXT DEFAULT 'en',
    retry_interval_minutes INTEGER DEFAULT 15,
    max_pending_entries INTEGER DEFAULT 200,
    updated_at TEXT DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS sweep_runs (
    id TEXT PRIMARY KEY,
    started_at TEXT,
    completed_at TEXT,
    attempted INTEGER DEFAULT 0,
    delivered INTEGER DEFAULT 0,
    failed INTEGER DEFAULT 0,
    skipped INTEGER DEFAULT 0,
    trigger_source TEXT
);
"""


def init_db(db_path: str | Path | None = None) -> None:
    conn = get_db(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        _ensure_settings_columns(conn)
        conn.execute(
            """
            INSERT INTO settings (id)
            VALUES (1)
            ON CONFLICT(id) DO NOTHING
            """
        )
        conn.commit()
    finally:
        conn.close()


def _ensure_settings_columns(conn) -> None:
    """Add columns that were added after the initial schema deployment."""
    existing = {
        str(row[1])
        for row in conn.execute("PRAGMA table_info(settings)").fetchall()
        if len(row) > 1
    }
    required_defs = [
        ("max_photos", "INTEGER DEFAULT 5"),
    ]
    for column, definition in required_defs:
        if column in existing:
            continue
        conn.execute(f"ALTER TABLE settings ADD COLUMN {column} {definition}")

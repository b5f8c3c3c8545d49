"""SQLite database layer for feedback persistence.

Manages the SQLite connection and schema creation. Uses aiosqlite for
async access with WAL mode so analysis reads do not block new feedback.
"""

from __future__ import annotations

import logging
from pathlib import Path

import aiosqlite

logger = logging.getLogger(__name__)

# SQL schema for the feedback database
_SCHEMA = """
CREATE TABLE IF NOT EXISTS feedback_sessions (
    session_id              TEXT PRIMARY KEY,
    final_category          TEXT NOT NULL,
    final_confidence        REAL,
    user_corrected_category TEXT,
    corrected               INTEGER NOT NULL DEFAULT 0,
    attribute_values_json   TEXT NOT NULL DEFAULT '{}',
    timestamp               TEXT NOT NULL,
    llm_category            TEXT,
    llm_confidence          REAL,
    process_description     TEXT NOT NULL DEFAULT '',
    conversation_json       TEXT NOT NULL DEFAULT '[]',
    matrix_version          INTEGER,
    subject                 TEXT
);

CREATE INDEX IF NOT EXISTS idx_feedback_timestamp ON feedback_sessions(timestamp);
CREATE INDEX IF NOT EXISTS idx_feedback_corrected ON feedback_sessions(corrected);
"""


async def init_db(db_path: str | Path) -> aiosqlite.Connection:
    """Open the feedback database and create tables if needed.

    Creates parent directories if they don't exist, enables WAL mode
    and foreign keys, then runs the schema DDL.

    Args:
        db_path: Path to the SQLite database file. Supports ~ expansion.

    Returns:
        An open aiosqlite connection ready for use.
    """
    resolved = Path(db_path).expanduser()
    resolved.parent.mkdir(parents=True, exist_ok=True)

    db = await aiosqlite.connect(str(resolved))
    await db.execute("PRAGMA journal_mode=WAL")
    await db.execute("PRAGMA foreign_keys=ON")
    await db.executescript(_SCHEMA)
    await db.commit()

    logger.info("Feedback database initialized at %s", resolved)
    return db


async def close_db(db: aiosqlite.Connection) -> None:
    """Close the database connection."""
    await db.close()

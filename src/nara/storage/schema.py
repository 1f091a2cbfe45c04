"""SQLite schema and pragmas for audiobook, transcript and progress storage."""

from __future__ import annotations

import sqlite3


PRAGMA_BUSY_TIMEOUT_MS = 5000
TRANSCRIPT_RIGHTS = ("public_domain", "owner_ok", "website_transcript", "unknown")


def apply_runtime_pragmas(connection: sqlite3.Connection) -> None:
    """Apply runtime pragmas for a single-writer local database."""

    connection.execute("PRAGMA journal_mode=WAL;")
    connection.execute(f"PRAGMA busy_timeout={PRAGMA_BUSY_TIMEOUT_MS};")
    connection.execute("PRAGMA synchronous=NORMAL;")
    connection.execute("PRAGMA foreign_keys=ON;")


def ensure_schema(connection: sqlite3.Connection) -> None:
    """Create audiobook, chapter, transcript, progress and log tables if missing."""

    rights_list = ",".join(f"'{value}'" for value in TRANSCRIPT_RIGHTS)
    connection.executescript(
        f"""
        CREATE TABLE IF NOT EXISTS audiobooks (
            id INTEGER PRIMARY KEY,
            slug TEXT NOT NULL UNIQUE,
            title TEXT NOT NULL,
            language TEXT NOT NULL DEFAULT 'en',
            author TEXT,
            narrator TEXT,
            total_chapters INTEGER,
            spotify_uri TEXT,
            youtube_video_id TEXT,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        );

        CREATE TABLE IF NOT EXISTS chapters (
            id INTEGER PRIMARY KEY,
            audiobook_id INTEGER NOT NULL,
            idx INTEGER NOT NULL CHECK(idx >= 1),
            title TEXT NOT NULL,
            spotify_uri TEXT,
            start_s REAL,
            end_s REAL,
            FOREIGN KEY(audiobook_id) REFERENCES audiobooks(id) ON DELETE CASCADE,
            UNIQUE(audiobook_id, idx)
        );

        CREATE TABLE IF NOT EXISTS chapter_transcripts (
            id INTEGER PRIMARY KEY,
            audiobook_id INTEGER NOT NULL,
            idx INTEGER NOT NULL,
            text TEXT,
            segments_json TEXT,
            rights TEXT NOT NULL DEFAULT 'unknown' CHECK(rights IN ({rights_list})),
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(audiobook_id) REFERENCES audiobooks(id) ON DELETE CASCADE,
            UNIQUE(audiobook_id, idx)
        );

        CREATE TABLE IF NOT EXISTS chapter_summaries (
            id INTEGER PRIMARY KEY,
            audiobook_id INTEGER NOT NULL,
            idx INTEGER NOT NULL,
            summary TEXT NOT NULL,
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(audiobook_id) REFERENCES audiobooks(id) ON DELETE CASCADE,
            UNIQUE(audiobook_id, idx)
        );

        CREATE TABLE IF NOT EXISTS user_progress (
            id INTEGER PRIMARY KEY,
            user_id TEXT NOT NULL,
            audiobook_id INTEGER NOT NULL,
            current_idx INTEGER NOT NULL CHECK(current_idx >= 1),
            completed_json TEXT NOT NULL DEFAULT '[]',
            updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(audiobook_id) REFERENCES audiobooks(id) ON DELETE CASCADE,
            UNIQUE(user_id, audiobook_id)
        );

        CREATE TABLE IF NOT EXISTS qa_interactions (
            id INTEGER PRIMARY KEY,
            user_id TEXT NOT NULL,
            audiobook_id INTEGER NOT NULL,
            allowed_idx INTEGER NOT NULL,
            question TEXT NOT NULL,
            answer_markdown TEXT NOT NULL,
            citations_json TEXT NOT NULL DEFAULT '[]',
            playback_hint_json TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY(audiobook_id) REFERENCES audiobooks(id) ON DELETE CASCADE
        );

        CREATE INDEX IF NOT EXISTS idx_qa_interactions_user_book
        ON qa_interactions(user_id, audiobook_id, id);
        """
    )

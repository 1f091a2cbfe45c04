"""SQLite-backed store for audiobooks, chapter transcripts and reader progress."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
from pathlib import Path
import sqlite3
import threading
from typing import Any, Sequence

from nara.storage.schema import TRANSCRIPT_RIGHTS, apply_runtime_pragmas, ensure_schema


@dataclass(slots=True)
class AudiobookRow:
    id: int
    slug: str
    title: str
    language: str = "en"
    author: str | None = None
    narrator: str | None = None
    total_chapters: int | None = None
    spotify_uri: str | None = None
    youtube_video_id: str | None = None


@dataclass(slots=True)
class ChapterRow:
    audiobook_id: int
    idx: int
    title: str
    spotify_uri: str | None = None
    start_s: float | None = None
    end_s: float | None = None


@dataclass(slots=True)
class SegmentRow:
    start_s: float
    end_s: float
    text: str


@dataclass(slots=True)
class TranscriptRow:
    audiobook_id: int
    idx: int
    text: str | None = None
    segments: list[SegmentRow] = field(default_factory=list)
    rights: str = "unknown"


@dataclass(slots=True)
class ProgressRow:
    user_id: str
    audiobook_id: int
    current_idx: int
    completed: list[int] = field(default_factory=list)

    @property
    def furthest_idx(self) -> int:
        return max([self.current_idx, *self.completed])


def validate_chapter_map(chapters: Sequence[ChapterRow]) -> None:
    """Require 1-based, contiguous, strictly increasing chapter indices."""

    for position, chapter in enumerate(chapters, 1):
        if chapter.idx != position:
            raise ValueError(f"Chapter indices must be contiguous from 1: expected {position}, got {chapter.idx}")
        if not chapter.title.strip():
            raise ValueError(f"Chapter {chapter.idx} is missing a title")
        if chapter.start_s is not None and chapter.end_s is not None and chapter.end_s < chapter.start_s:
            raise ValueError(f"Chapter {chapter.idx} ends before it starts")


def _segments_to_json(segments: Sequence[SegmentRow]) -> str | None:
    if not segments:
        return None
    return json.dumps(
        [{"start_s": seg.start_s, "end_s": seg.end_s, "text": seg.text} for seg in segments],
        ensure_ascii=False,
    )


def _segments_from_json(raw: str | None) -> list[SegmentRow]:
    if not raw:
        return []
    return [
        SegmentRow(start_s=float(item["start_s"]), end_s=float(item["end_s"]), text=str(item["text"]))
        for item in json.loads(raw)
    ]


class NaraRepository:
    """Thin transactional layer over the Nara SQLite schema.

    The connection is shared across threads (the chapter loader fetches prior
    summaries through ``asyncio.to_thread``), so every statement runs under a
    lock.
    """

    def __init__(self, db_path: str | Path) -> None:
        self._db_path = Path(db_path)
        self._connection = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._connection.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        apply_runtime_pragmas(self._connection)
        ensure_schema(self._connection)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def close(self) -> None:
        self._connection.close()

    def __enter__(self) -> "NaraRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> sqlite3.Row | None:
        with self._lock:
            return self._connection.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[sqlite3.Row]:
        with self._lock:
            return self._connection.execute(sql, params).fetchall()

    # -- audiobooks -----------------------------------------------------------

    def upsert_audiobook(
        self,
        *,
        slug: str,
        title: str,
        language: str = "en",
        author: str | None = None,
        narrator: str | None = None,
        total_chapters: int | None = None,
        spotify_uri: str | None = None,
        youtube_video_id: str | None = None,
    ) -> int:
        slug_value = slug.strip()
        if not slug_value:
            raise ValueError("slug cannot be empty")
        if not title.strip():
            raise ValueError("title cannot be empty")

        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT INTO audiobooks(
                    slug, title, language, author, narrator, total_chapters, spotify_uri, youtube_video_id
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(slug) DO UPDATE SET
                    title=excluded.title,
                    language=excluded.language,
                    author=excluded.author,
                    narrator=excluded.narrator,
                    total_chapters=excluded.total_chapters,
                    spotify_uri=excluded.spotify_uri,
                    youtube_video_id=excluded.youtube_video_id,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (slug_value, title, language, author, narrator, total_chapters, spotify_uri, youtube_video_id),
            )
            row = self._connection.execute("SELECT id FROM audiobooks WHERE slug = ?", (slug_value,)).fetchone()
        if row is None:
            raise RuntimeError(f"Audiobook row missing after upsert: {slug_value}")
        return int(row["id"])

    def get_audiobook_by_slug(self, slug: str) -> AudiobookRow | None:
        row = self._fetchone(
            """
            SELECT id, slug, title, language, author, narrator, total_chapters, spotify_uri, youtube_video_id
            FROM audiobooks
            WHERE slug = ?
            """,
            (slug.strip(),),
        )
        if row is None:
            return None
        return AudiobookRow(
            id=int(row["id"]),
            slug=row["slug"],
            title=row["title"],
            language=row["language"],
            author=row["author"],
            narrator=row["narrator"],
            total_chapters=row["total_chapters"],
            spotify_uri=row["spotify_uri"],
            youtube_video_id=row["youtube_video_id"],
        )

    # -- chapters -------------------------------------------------------------

    def replace_chapter_map(self, audiobook_id: int, chapters: Sequence[ChapterRow]) -> int:
        """Upsert the full chapter map and drop chapters past its end."""

        ordered = sorted(chapters, key=lambda chapter: chapter.idx)
        validate_chapter_map(ordered)

        with self._lock, self._connection:
            self._connection.executemany(
                """
                INSERT INTO chapters(audiobook_id, idx, title, spotify_uri, start_s, end_s)
                VALUES(?, ?, ?, ?, ?, ?)
                ON CONFLICT(audiobook_id, idx) DO UPDATE SET
                    title=excluded.title,
                    spotify_uri=excluded.spotify_uri,
                    start_s=excluded.start_s,
                    end_s=excluded.end_s
                """,
                [
                    (audiobook_id, chapter.idx, chapter.title, chapter.spotify_uri, chapter.start_s, chapter.end_s)
                    for chapter in ordered
                ],
            )
            self._connection.execute(
                "DELETE FROM chapters WHERE audiobook_id = ? AND idx > ?",
                (audiobook_id, len(ordered)),
            )
            self._connection.execute(
                "UPDATE audiobooks SET total_chapters = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (len(ordered), audiobook_id),
            )
        return len(ordered)

    def get_chapter(self, audiobook_id: int, idx: int) -> ChapterRow | None:
        row = self._fetchone(
            """
            SELECT audiobook_id, idx, title, spotify_uri, start_s, end_s
            FROM chapters
            WHERE audiobook_id = ? AND idx = ?
            """,
            (audiobook_id, idx),
        )
        if row is None:
            return None
        return ChapterRow(
            audiobook_id=int(row["audiobook_id"]),
            idx=int(row["idx"]),
            title=row["title"],
            spotify_uri=row["spotify_uri"],
            start_s=row["start_s"],
            end_s=row["end_s"],
        )

    def list_chapters(self, audiobook_id: int) -> list[ChapterRow]:
        rows = self._fetchall(
            """
            SELECT audiobook_id, idx, title, spotify_uri, start_s, end_s
            FROM chapters
            WHERE audiobook_id = ?
            ORDER BY idx ASC
            """,
            (audiobook_id,),
        )
        return [
            ChapterRow(
                audiobook_id=int(row["audiobook_id"]),
                idx=int(row["idx"]),
                title=row["title"],
                spotify_uri=row["spotify_uri"],
                start_s=row["start_s"],
                end_s=row["end_s"],
            )
            for row in rows
        ]

    # -- transcripts and summaries ---------------------------------------------

    def upsert_transcript(
        self,
        audiobook_id: int,
        idx: int,
        *,
        text: str | None = None,
        segments: Sequence[SegmentRow] = (),
        rights: str = "unknown",
    ) -> None:
        if rights not in TRANSCRIPT_RIGHTS:
            raise ValueError(f"Unsupported transcript rights: {rights}")
        if not (text and text.strip()) and not segments:
            raise ValueError("Transcript needs either text or segments")

        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT INTO chapter_transcripts(audiobook_id, idx, text, segments_json, rights)
                VALUES(?, ?, ?, ?, ?)
                ON CONFLICT(audiobook_id, idx) DO UPDATE SET
                    text=excluded.text,
                    segments_json=excluded.segments_json,
                    rights=excluded.rights,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (audiobook_id, idx, text, _segments_to_json(segments), rights),
            )

    def get_transcript(self, audiobook_id: int, idx: int) -> TranscriptRow | None:
        row = self._fetchone(
            """
            SELECT audiobook_id, idx, text, segments_json, rights
            FROM chapter_transcripts
            WHERE audiobook_id = ? AND idx = ?
            """,
            (audiobook_id, idx),
        )
        if row is None:
            return None
        return TranscriptRow(
            audiobook_id=int(row["audiobook_id"]),
            idx=int(row["idx"]),
            text=row["text"],
            segments=_segments_from_json(row["segments_json"]),
            rights=row["rights"],
        )

    def upsert_summary(self, audiobook_id: int, idx: int, summary: str) -> None:
        if not summary.strip():
            raise ValueError("summary cannot be empty")
        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT INTO chapter_summaries(audiobook_id, idx, summary)
                VALUES(?, ?, ?)
                ON CONFLICT(audiobook_id, idx) DO UPDATE SET
                    summary=excluded.summary,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (audiobook_id, idx, summary.strip()),
            )

    def get_summary(self, audiobook_id: int, idx: int) -> str | None:
        row = self._fetchone(
            "SELECT summary FROM chapter_summaries WHERE audiobook_id = ? AND idx = ?",
            (audiobook_id, idx),
        )
        return None if row is None else str(row["summary"])

    # -- reader progress -------------------------------------------------------

    def get_progress(self, user_id: str, audiobook_id: int) -> ProgressRow | None:
        row = self._fetchone(
            """
            SELECT user_id, audiobook_id, current_idx, completed_json
            FROM user_progress
            WHERE user_id = ? AND audiobook_id = ?
            """,
            (user_id, audiobook_id),
        )
        if row is None:
            return None
        return ProgressRow(
            user_id=row["user_id"],
            audiobook_id=int(row["audiobook_id"]),
            current_idx=int(row["current_idx"]),
            completed=[int(value) for value in json.loads(row["completed_json"])],
        )

    def set_progress(self, user_id: str, audiobook_id: int, *, current_idx: int, completed: Sequence[int] = ()) -> None:
        if current_idx < 1:
            raise ValueError("current_idx must be >= 1")
        completed_sorted = sorted({int(value) for value in completed if int(value) >= 1})

        with self._lock, self._connection:
            self._connection.execute(
                """
                INSERT INTO user_progress(user_id, audiobook_id, current_idx, completed_json)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(user_id, audiobook_id) DO UPDATE SET
                    current_idx=excluded.current_idx,
                    completed_json=excluded.completed_json,
                    updated_at=CURRENT_TIMESTAMP
                """,
                (user_id, audiobook_id, current_idx, json.dumps(completed_sorted)),
            )

    def mark_chapter_complete(self, user_id: str, audiobook_id: int, idx: int) -> ProgressRow:
        """Add ``idx`` to the completed set and advance the current chapter past it."""

        existing = self.get_progress(user_id, audiobook_id)
        completed = set(existing.completed) if existing else set()
        completed.add(idx)
        current_idx = max(existing.current_idx if existing else 1, idx + 1)

        total_row = self._fetchone("SELECT total_chapters FROM audiobooks WHERE id = ?", (audiobook_id,))
        total = total_row["total_chapters"] if total_row is not None else None
        if total:
            current_idx = min(current_idx, int(total))

        self.set_progress(user_id, audiobook_id, current_idx=current_idx, completed=sorted(completed))
        return ProgressRow(
            user_id=user_id,
            audiobook_id=audiobook_id,
            current_idx=current_idx,
            completed=sorted(completed),
        )

    # -- interaction log -------------------------------------------------------

    def record_interaction(
        self,
        *,
        user_id: str,
        audiobook_id: int,
        allowed_idx: int,
        question: str,
        answer_markdown: str,
        citations: Sequence[dict[str, object]] = (),
        playback_hint: dict[str, object] | None = None,
    ) -> int:
        with self._lock, self._connection:
            cursor = self._connection.execute(
                """
                INSERT INTO qa_interactions(
                    user_id, audiobook_id, allowed_idx, question, answer_markdown, citations_json, playback_hint_json
                )
                VALUES(?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    audiobook_id,
                    allowed_idx,
                    question,
                    answer_markdown,
                    json.dumps(list(citations), ensure_ascii=False),
                    json.dumps(playback_hint) if playback_hint is not None else None,
                ),
            )
        return int(cursor.lastrowid)

    def list_interactions(self, user_id: str, audiobook_id: int, *, limit: int = 20) -> list[dict[str, Any]]:
        if limit <= 0:
            raise ValueError("limit must be positive")
        rows = self._fetchall(
            """
            SELECT id, allowed_idx, question, answer_markdown, citations_json, playback_hint_json, created_at
            FROM qa_interactions
            WHERE user_id = ? AND audiobook_id = ?
            ORDER BY id DESC
            LIMIT ?
            """,
            (user_id, audiobook_id, limit),
        )
        return [
            {
                "id": int(row["id"]),
                "allowed_idx": int(row["allowed_idx"]),
                "question": row["question"],
                "answer_markdown": row["answer_markdown"],
                "citations": json.loads(row["citations_json"]),
                "playback_hint": json.loads(row["playback_hint_json"]) if row["playback_hint_json"] else None,
                "created_at": row["created_at"],
            }
            for row in reversed(rows)
        ]

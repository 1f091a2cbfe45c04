"""SQLite persistence for audiobooks, transcripts and reader progress."""

from .repository import (
    AudiobookRow,
    ChapterRow,
    NaraRepository,
    ProgressRow,
    SegmentRow,
    TranscriptRow,
    validate_chapter_map,
)

__all__ = [
    "AudiobookRow",
    "ChapterRow",
    "NaraRepository",
    "ProgressRow",
    "SegmentRow",
    "TranscriptRow",
    "validate_chapter_map",
]

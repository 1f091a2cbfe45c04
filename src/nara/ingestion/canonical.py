"""Load canonical transcript JSON into the Nara store."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
import re
from typing import Any, Mapping

from nara.storage.repository import ChapterRow, NaraRepository, SegmentRow


logger = logging.getLogger(__name__)

_SLUG_RE = re.compile(r"[^a-z0-9]+")
# Rights labels used by the capture tooling, mapped onto the stored vocabulary.
_RIGHTS_ALIASES = {
    "public_domain": "public_domain",
    "owner_ok": "owner_ok",
    "licensed": "owner_ok",
    "website_transcript": "website_transcript",
    "unknown": "unknown",
}
SUMMARIES_SUFFIX = ".summaries.json"


@dataclass(slots=True)
class IngestionError(Exception):
    """Raised when a canonical transcript file is unreadable or malformed."""

    path: Path
    message: str

    def __str__(self) -> str:
        return f"{self.message} (path={self.path})"


@dataclass(slots=True)
class CanonicalSource:
    title: str
    language: str = "en"
    rights: str = "unknown"
    platform: str | None = None
    video_id: str | None = None
    channel: str | None = None
    duration_s: float | None = None


@dataclass(slots=True)
class CanonicalChapter:
    idx: int
    title: str
    start_s: float
    end_s: float


@dataclass(slots=True)
class CanonicalSegment:
    chapter_idx: int
    start_s: float
    end_s: float
    text: str


@dataclass(slots=True)
class CanonicalTranscript:
    source: CanonicalSource
    chapters: list[CanonicalChapter]
    segments: list[CanonicalSegment] = field(default_factory=list)
    paragraphs: list[CanonicalSegment] = field(default_factory=list)

    def chapter_segments(self, idx: int) -> list[CanonicalSegment]:
        """Segments for a chapter, falling back to paragraphs when none exist."""

        segments = [segment for segment in self.segments if segment.chapter_idx == idx]
        if not segments:
            segments = [paragraph for paragraph in self.paragraphs if paragraph.chapter_idx == idx]
        return sorted(segments, key=lambda segment: segment.start_s)


@dataclass(slots=True)
class IngestStats:
    audiobook_id: int
    slug: str
    chapters: int = 0
    transcripts: int = 0
    summaries: int = 0
    skipped_chapters: list[int] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "audiobook_id": self.audiobook_id,
            "slug": self.slug,
            "chapters": self.chapters,
            "transcripts": self.transcripts,
            "summaries": self.summaries,
            "skipped_chapters": list(self.skipped_chapters),
        }


def slugify(title: str) -> str:
    slug = _SLUG_RE.sub("-", title.lower()).strip("-")
    return slug or "audiobook"


def _number(path: Path, raw: Any, *, where: str, positive: bool = False) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise IngestionError(path, f"{where} must be a number")
    if raw < 0 or (positive and raw == 0):
        raise IngestionError(path, f"{where} must be {'positive' if positive else 'non-negative'}")
    return float(raw)


def _index(path: Path, raw: Any, *, where: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
        raise IngestionError(path, f"{where} must be a positive integer")
    return raw


def _text(path: Path, raw: Any, *, where: str) -> str:
    if not isinstance(raw, str):
        raise IngestionError(path, f"{where} must be a string")
    return raw


def _parse_source(path: Path, raw: Any) -> CanonicalSource:
    if not isinstance(raw, Mapping):
        raise IngestionError(path, "source must be an object")
    title = _text(path, raw.get("title"), where="source.title").strip()
    if not title:
        raise IngestionError(path, "source.title cannot be empty")
    rights_raw = raw.get("rights", "unknown")
    if rights_raw not in _RIGHTS_ALIASES:
        raise IngestionError(path, f"Unsupported source.rights: {rights_raw!r}")
    duration = raw.get("duration_s")
    return CanonicalSource(
        title=title,
        language=str(raw.get("language") or "en"),
        rights=_RIGHTS_ALIASES[rights_raw],
        platform=raw.get("platform"),
        video_id=raw.get("video_id"),
        channel=raw.get("channel"),
        duration_s=None if duration is None else _number(path, duration, where="source.duration_s", positive=True),
    )


def _parse_timed(path: Path, raw: Any, *, where: str) -> CanonicalSegment:
    if not isinstance(raw, Mapping):
        raise IngestionError(path, f"{where} must be an object")
    start_s = _number(path, raw.get("start_s"), where=f"{where}.start_s")
    end_s = _number(path, raw.get("end_s"), where=f"{where}.end_s", positive=True)
    if end_s < start_s:
        raise IngestionError(path, f"{where} ends before it starts")
    return CanonicalSegment(
        chapter_idx=_index(path, raw.get("chapter_idx"), where=f"{where}.chapter_idx"),
        start_s=start_s,
        end_s=end_s,
        text=_text(path, raw.get("text"), where=f"{where}.text"),
    )


def parse_canonical(payload: Any, *, path: Path) -> CanonicalTranscript:
    """Validate a decoded canonical transcript document."""

    if not isinstance(payload, Mapping):
        raise IngestionError(path, "Canonical transcript must be a JSON object")

    source = _parse_source(path, payload.get("source"))

    chapters_raw = payload.get("chapters")
    if not isinstance(chapters_raw, list) or not chapters_raw:
        raise IngestionError(path, "chapters must be a non-empty list")
    chapters: list[CanonicalChapter] = []
    for position, item in enumerate(chapters_raw):
        where = f"chapters[{position}]"
        if not isinstance(item, Mapping):
            raise IngestionError(path, f"{where} must be an object")
        start_s = _number(path, item.get("start_s"), where=f"{where}.start_s")
        end_s = _number(path, item.get("end_s"), where=f"{where}.end_s", positive=True)
        chapters.append(
            CanonicalChapter(
                idx=_index(path, item.get("idx"), where=f"{where}.idx"),
                title=_text(path, item.get("title"), where=f"{where}.title"),
                start_s=start_s,
                end_s=end_s,
            )
        )
    chapters.sort(key=lambda chapter: chapter.idx)

    segments = [
        _parse_timed(path, item, where=f"segments[{position}]")
        for position, item in enumerate(payload.get("segments") or [])
    ]
    paragraphs = [
        _parse_timed(path, item, where=f"paragraphs[{position}]")
        for position, item in enumerate(payload.get("paragraphs") or [])
    ]

    known = {chapter.idx for chapter in chapters}
    for segment in [*segments, *paragraphs]:
        if segment.chapter_idx not in known:
            raise IngestionError(path, f"Segment references unknown chapter {segment.chapter_idx}")

    return CanonicalTranscript(source=source, chapters=chapters, segments=segments, paragraphs=paragraphs)


def _read_json(path: Path) -> Any:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IngestionError(path, f"Failed to read file: {exc}") from exc
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise IngestionError(path, f"Invalid JSON: {exc}") from exc


def load_canonical(path: str | Path) -> CanonicalTranscript:
    source = Path(path)
    return parse_canonical(_read_json(source), path=source)


def load_summaries(path: str | Path) -> dict[int, str]:
    """Read a ``{"<idx>": "summary"}`` sidecar (or a list of ``{idx, summary}``)."""

    source = Path(path)
    payload = _read_json(source)
    if isinstance(payload, Mapping):
        items = [{"idx": key, "summary": value} for key, value in payload.items()]
    elif isinstance(payload, list):
        items = payload
    else:
        raise IngestionError(source, "Summaries must be an object or a list")

    summaries: dict[int, str] = {}
    for item in items:
        if not isinstance(item, Mapping):
            raise IngestionError(source, "Summary entries must be objects")
        try:
            idx = int(item.get("idx"))
        except (TypeError, ValueError) as exc:
            raise IngestionError(source, f"Invalid summary index: {item.get('idx')!r}") from exc
        summary = item.get("summary")
        if isinstance(summary, str) and summary.strip():
            summaries[idx] = summary.strip()
    return summaries


def default_summaries_path(path: str | Path) -> Path:
    source = Path(path)
    return source.with_name(source.stem + SUMMARIES_SUFFIX)


class CanonicalTranscriptLoader:
    """Write a canonical transcript (and optional summaries) through the repository."""

    def __init__(self, repository: NaraRepository) -> None:
        self._repository = repository

    def ingest(
        self,
        transcript: CanonicalTranscript,
        *,
        slug: str | None = None,
        summaries: Mapping[int, str] | None = None,
        author: str | None = None,
        narrator: str | None = None,
    ) -> IngestStats:
        source = transcript.source
        resolved_slug = slug or slugify(source.title)
        audiobook_id = self._repository.upsert_audiobook(
            slug=resolved_slug,
            title=source.title,
            language=source.language,
            author=author,
            narrator=narrator,
            total_chapters=len(transcript.chapters),
            youtube_video_id=source.video_id if source.platform == "youtube" else None,
        )
        stats = IngestStats(audiobook_id=audiobook_id, slug=resolved_slug)

        try:
            stats.chapters = self._repository.replace_chapter_map(
                audiobook_id,
                [
                    ChapterRow(
                        audiobook_id=audiobook_id,
                        idx=chapter.idx,
                        title=chapter.title,
                        start_s=chapter.start_s,
                        end_s=chapter.end_s,
                    )
                    for chapter in transcript.chapters
                ],
            )
        except ValueError as exc:
            raise IngestionError(Path(resolved_slug), f"Invalid chapter map: {exc}") from exc

        for chapter in transcript.chapters:
            segments = [
                SegmentRow(start_s=segment.start_s, end_s=segment.end_s, text=segment.text.strip())
                for segment in transcript.chapter_segments(chapter.idx)
                if segment.text.strip()
            ]
            if not segments:
                stats.skipped_chapters.append(chapter.idx)
                continue
            self._repository.upsert_transcript(audiobook_id, chapter.idx, segments=segments, rights=source.rights)
            stats.transcripts += 1

        for idx, summary in sorted((summaries or {}).items()):
            if idx not in {chapter.idx for chapter in transcript.chapters}:
                logger.warning("Skipping summary for unknown chapter %s of %s", idx, resolved_slug)
                continue
            self._repository.upsert_summary(audiobook_id, idx, summary)
            stats.summaries += 1

        if stats.skipped_chapters:
            logger.warning("Chapters without transcript text in %s: %s", resolved_slug, stats.skipped_chapters)
        logger.info(
            "Ingested %s: %s chapters, %s transcripts, %s summaries",
            resolved_slug,
            stats.chapters,
            stats.transcripts,
            stats.summaries,
        )
        return stats

    def ingest_file(
        self,
        path: str | Path,
        *,
        slug: str | None = None,
        summaries_path: str | Path | None = None,
    ) -> IngestStats:
        source = Path(path)
        transcript = load_canonical(source)
        sidecar = Path(summaries_path) if summaries_path is not None else default_summaries_path(source)
        summaries = load_summaries(sidecar) if sidecar.exists() else None
        return self.ingest(transcript, slug=slug, summaries=summaries)

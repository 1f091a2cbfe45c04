"""Chapter loading bounded by the allowed chapter index."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Protocol, Sequence

from nara.qa.errors import NotFoundError
from nara.qa.models import ChapterContent, PriorSummary, Segment, TranscriptInput
from nara.storage.repository import AudiobookRow, ChapterRow, ProgressRow, TranscriptRow


logger = logging.getLogger(__name__)

SUMMARY_EXCERPT_CHARS = 200


class ChapterStore(Protocol):
    def get_audiobook_by_slug(self, slug: str) -> AudiobookRow | None:
        ...

    def get_chapter(self, audiobook_id: int, idx: int) -> ChapterRow | None:
        ...

    def get_transcript(self, audiobook_id: int, idx: int) -> TranscriptRow | None:
        ...

    def get_summary(self, audiobook_id: int, idx: int) -> str | None:
        ...

    def get_progress(self, user_id: str, audiobook_id: int) -> ProgressRow | None:
        ...


@dataclass(slots=True)
class LoadedChapter:
    audiobook: AudiobookRow
    chapter: ChapterContent
    prior_summaries: list[PriorSummary]

    @property
    def combined_text(self) -> str:
        parts = [self.chapter.text, *(summary.summary for summary in self.prior_summaries)]
        return "\n".join(part for part in parts if part)


def _excerpt(text: str, *, limit: int = SUMMARY_EXCERPT_CHARS) -> str:
    cleaned = " ".join(text.split())
    if len(cleaned) <= limit:
        return cleaned
    return cleaned[:limit].rstrip() + "..."


def _segments_from_stored(transcript: TranscriptRow, chapter: ChapterRow) -> list[Segment]:
    if transcript.segments:
        return [
            Segment(chapter_idx=chapter.idx, start_s=seg.start_s, end_s=seg.end_s, text=seg.text)
            for seg in sorted(transcript.segments, key=lambda seg: seg.start_s)
            if seg.text.strip()
        ]
    text = (transcript.text or "").strip()
    if not text:
        return []
    start_s = float(chapter.start_s or 0.0)
    end_s = float(chapter.end_s if chapter.end_s is not None else start_s)
    return [Segment(chapter_idx=chapter.idx, start_s=start_s, end_s=end_s, text=text)]


def _segments_from_input(transcript: TranscriptInput, chapter: ChapterRow) -> list[Segment]:
    if transcript.segments:
        return [
            Segment(chapter_idx=chapter.idx, start_s=seg.start_s, end_s=seg.end_s, text=seg.text)
            for seg in sorted(transcript.segments, key=lambda seg: seg.start_s)
            if seg.text.strip()
        ]
    text = transcript.joined_text()
    if not text:
        return []
    start_s = float(chapter.start_s or 0.0)
    end_s = float(chapter.end_s if chapter.end_s is not None else start_s)
    return [Segment(chapter_idx=chapter.idx, start_s=start_s, end_s=end_s, text=text)]


def _require_audiobook(store: ChapterStore, slug: str) -> AudiobookRow:
    audiobook = store.get_audiobook_by_slug(slug)
    if audiobook is None:
        raise NotFoundError(entity="audiobook", key=slug)
    return audiobook


def _require_chapter(store: ChapterStore, audiobook: AudiobookRow, idx: int) -> ChapterRow:
    chapter = store.get_chapter(audiobook.id, idx)
    if chapter is None:
        raise NotFoundError(entity="chapter", key=f"{audiobook.slug}#{idx}")
    return chapter


def _load_prior_summary(
    store: ChapterStore,
    audiobook: AudiobookRow,
    idx: int,
    previous_transcripts: Sequence[TranscriptInput] | None,
) -> PriorSummary | None:
    chapter = store.get_chapter(audiobook.id, idx)
    title = chapter.title if chapter is not None else f"Chapter {idx}"

    stored = store.get_summary(audiobook.id, idx)
    if stored:
        return PriorSummary(idx=idx, title=title, summary=stored)

    if previous_transcripts is not None and idx - 1 < len(previous_transcripts):
        supplied_text = previous_transcripts[idx - 1].joined_text()
        if supplied_text:
            return PriorSummary(idx=idx, title=title, summary=_excerpt(supplied_text))

    transcript = store.get_transcript(audiobook.id, idx)
    if transcript is not None:
        ordered = sorted(transcript.segments, key=lambda seg: seg.start_s)
        stored_text = (transcript.text or " ".join(seg.text for seg in ordered)).strip()
        if stored_text:
            return PriorSummary(idx=idx, title=title, summary=_excerpt(stored_text))
    return None


async def load_chapter(
    store: ChapterStore,
    *,
    audiobook_slug: str,
    playback_idx: int,
    allowed_idx: int,
    transcript: TranscriptInput | None = None,
    previous_transcripts: Sequence[TranscriptInput] | None = None,
    include_prior_summaries: bool = True,
    prior_summary_limit: int = 3,
) -> LoadedChapter:
    """Load the allowed chapter's transcript and summaries of the chapters before it.

    ``transcript`` belongs to the playback chapter and is only used when that
    chapter is the allowed one; otherwise the allowed chapter comes from the
    store. ``previous_transcripts[i]`` is taken to be chapter ``i + 1``.
    """

    if allowed_idx > playback_idx:
        raise ValueError("allowed_idx cannot exceed playback_idx")

    audiobook = _require_audiobook(store, audiobook_slug)
    _require_chapter(store, audiobook, playback_idx)
    chapter_row = _require_chapter(store, audiobook, allowed_idx)

    if transcript is not None and allowed_idx == playback_idx:
        segments = _segments_from_input(transcript, chapter_row)
    else:
        if transcript is not None:
            logger.info(
                "Ignoring supplied transcript for chapter %s beyond allowed chapter %s",
                playback_idx,
                allowed_idx,
            )
        stored = store.get_transcript(audiobook.id, allowed_idx)
        if stored is None:
            raise NotFoundError(entity="transcript", key=f"{audiobook.slug}#{allowed_idx}")
        segments = _segments_from_stored(stored, chapter_row)

    if not segments:
        raise NotFoundError(entity="transcript", key=f"{audiobook.slug}#{allowed_idx}")

    chapter = ChapterContent(
        idx=chapter_row.idx,
        title=chapter_row.title,
        segments=segments,
        start_s=float(chapter_row.start_s if chapter_row.start_s is not None else segments[0].start_s),
        end_s=float(chapter_row.end_s) if chapter_row.end_s is not None else None,
    )

    prior_summaries: list[PriorSummary] = []
    if include_prior_summaries and prior_summary_limit > 0 and allowed_idx > 1:
        indices = range(max(1, allowed_idx - prior_summary_limit), allowed_idx)
        loaded = await asyncio.gather(
            *(
                asyncio.to_thread(_load_prior_summary, store, audiobook, idx, previous_transcripts)
                for idx in indices
            )
        )
        prior_summaries = [summary for summary in loaded if summary is not None]

    logger.info(
        "Loaded chapter %s of %s: %s segments, %s prior summaries",
        chapter.idx,
        audiobook.slug,
        len(chapter.segments),
        len(prior_summaries),
    )
    return LoadedChapter(audiobook=audiobook, chapter=chapter, prior_summaries=prior_summaries)

from __future__ import annotations

from pathlib import Path

import pytest

from nara.qa.errors import NotFoundError
from nara.qa.loader import load_chapter
from nara.qa.models import Segment, TranscriptInput
from nara.storage.repository import ChapterRow, NaraRepository, SegmentRow


def _seed(repository: NaraRepository, *, chapters: int = 5) -> int:
    audiobook_id = repository.upsert_audiobook(slug="great-expectations", title="Great Expectations")
    repository.replace_chapter_map(
        audiobook_id,
        [
            ChapterRow(audiobook_id=audiobook_id, idx=idx, title=f"Chapter {idx}", start_s=(idx - 1) * 600.0, end_s=idx * 600.0)
            for idx in range(1, chapters + 1)
        ],
    )
    for idx in range(1, chapters + 1):
        repository.upsert_transcript(
            audiobook_id,
            idx,
            segments=[
                SegmentRow(start_s=(idx - 1) * 600.0 + 30.0, end_s=(idx - 1) * 600.0 + 60.0, text=f"Second line of chapter {idx}."),
                SegmentRow(start_s=(idx - 1) * 600.0, end_s=(idx - 1) * 600.0 + 30.0, text=f"Opening of chapter {idx}."),
            ],
            rights="public_domain",
        )
    repository.upsert_summary(audiobook_id, 1, "Pip meets the convict on the marshes.")
    repository.upsert_summary(audiobook_id, 2, "Christmas dinner and the soldiers.")
    return audiobook_id


class _SpyStore:
    """Records which transcript and summary indices are read."""

    def __init__(self, repository: NaraRepository) -> None:
        self._repository = repository
        self.content_reads: list[int] = []

    def get_audiobook_by_slug(self, slug):
        return self._repository.get_audiobook_by_slug(slug)

    def get_chapter(self, audiobook_id, idx):
        return self._repository.get_chapter(audiobook_id, idx)

    def get_transcript(self, audiobook_id, idx):
        self.content_reads.append(idx)
        return self._repository.get_transcript(audiobook_id, idx)

    def get_summary(self, audiobook_id, idx):
        self.content_reads.append(idx)
        return self._repository.get_summary(audiobook_id, idx)

    def get_progress(self, user_id, audiobook_id):
        return self._repository.get_progress(user_id, audiobook_id)


@pytest.mark.asyncio
async def test_load_chapter_orders_segments_and_collects_prior_summaries(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        _seed(repository)
        loaded = await load_chapter(repository, audiobook_slug="great-expectations", playback_idx=4, allowed_idx=4)

    assert loaded.chapter.idx == 4
    assert loaded.chapter.start_s == 1800.0
    assert loaded.chapter.end_s == 2400.0
    assert [segment.text for segment in loaded.chapter.segments] == [
        "Opening of chapter 4.",
        "Second line of chapter 4.",
    ]
    assert [summary.idx for summary in loaded.prior_summaries] == [1, 2, 3]
    assert loaded.prior_summaries[0].summary == "Pip meets the convict on the marshes."
    assert loaded.prior_summaries[2].summary == "Opening of chapter 3. Second line of chapter 3."


@pytest.mark.asyncio
async def test_load_chapter_never_reads_content_past_allowed_index(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        _seed(repository)
        store = _SpyStore(repository)
        loaded = await load_chapter(
            store,
            audiobook_slug="great-expectations",
            playback_idx=5,
            allowed_idx=3,
            transcript=TranscriptInput(text="The benefactor is revealed."),
        )

    assert loaded.chapter.idx == 3
    assert "benefactor" not in loaded.combined_text
    assert store.content_reads
    assert max(store.content_reads) <= 3


@pytest.mark.asyncio
async def test_load_chapter_uses_supplied_transcripts(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        _seed(repository)
        loaded = await load_chapter(
            repository,
            audiobook_slug="great-expectations",
            playback_idx=4,
            allowed_idx=4,
            transcript=TranscriptInput(
                segments=(Segment(chapter_idx=4, start_s=1810.0, end_s=1820.0, text="Supplied chapter four."),)
            ),
            previous_transcripts=(
                TranscriptInput(text="one"),
                TranscriptInput(text="two"),
                TranscriptInput(text="Supplied chapter three " + "word " * 80),
            ),
        )

    assert loaded.chapter.text == "Supplied chapter four."
    excerpt = loaded.prior_summaries[2].summary
    assert excerpt.startswith("Supplied chapter three")
    assert excerpt.endswith("...")
    assert len(excerpt) <= 203


@pytest.mark.asyncio
async def test_load_chapter_skips_prior_summaries_when_disabled(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        _seed(repository)
        loaded = await load_chapter(
            repository,
            audiobook_slug="great-expectations",
            playback_idx=3,
            allowed_idx=3,
            include_prior_summaries=False,
        )

    assert loaded.prior_summaries == []


@pytest.mark.asyncio
async def test_load_chapter_raises_not_found(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        audiobook_id = _seed(repository, chapters=3)

        with pytest.raises(NotFoundError, match="audiobook"):
            await load_chapter(repository, audiobook_slug="bleak-house", playback_idx=1, allowed_idx=1)

        with pytest.raises(NotFoundError, match="great-expectations#9"):
            await load_chapter(repository, audiobook_slug="great-expectations", playback_idx=9, allowed_idx=2)

        repository.replace_chapter_map(
            audiobook_id,
            [ChapterRow(audiobook_id=audiobook_id, idx=idx, title=f"Chapter {idx}") for idx in range(1, 5)],
        )
        with pytest.raises(NotFoundError, match="transcript"):
            await load_chapter(repository, audiobook_slug="great-expectations", playback_idx=4, allowed_idx=4)

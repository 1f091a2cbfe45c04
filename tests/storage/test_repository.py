from __future__ import annotations

from pathlib import Path

import pytest

from nara.storage.repository import ChapterRow, NaraRepository, SegmentRow, validate_chapter_map


def _chapters(audiobook_id: int, count: int) -> list[ChapterRow]:
    return [
        ChapterRow(audiobook_id=audiobook_id, idx=idx, title=f"Chapter {idx}", start_s=(idx - 1) * 600.0, end_s=idx * 600.0)
        for idx in range(1, count + 1)
    ]


def test_upsert_audiobook_is_idempotent_by_slug(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        first_id = repository.upsert_audiobook(slug="great-expectations", title="Great Expectations")
        second_id = repository.upsert_audiobook(
            slug="great-expectations",
            title="Great Expectations (Unabridged)",
            author="Charles Dickens",
        )
        audiobook = repository.get_audiobook_by_slug("great-expectations")

    assert first_id == second_id
    assert audiobook is not None
    assert audiobook.title == "Great Expectations (Unabridged)"
    assert audiobook.author == "Charles Dickens"
    assert audiobook.language == "en"


def test_replace_chapter_map_trims_removed_chapters(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        audiobook_id = repository.upsert_audiobook(slug="book", title="Book")
        assert repository.replace_chapter_map(audiobook_id, _chapters(audiobook_id, 4)) == 4
        assert repository.replace_chapter_map(audiobook_id, _chapters(audiobook_id, 2)) == 2

        chapters = repository.list_chapters(audiobook_id)
        audiobook = repository.get_audiobook_by_slug("book")

    assert [chapter.idx for chapter in chapters] == [1, 2]
    assert chapters[-1].end_s == 1200.0
    assert audiobook is not None and audiobook.total_chapters == 2


def test_validate_chapter_map_rejects_gaps_and_reversed_offsets() -> None:
    with pytest.raises(ValueError, match="contiguous"):
        validate_chapter_map(
            [ChapterRow(audiobook_id=1, idx=1, title="One"), ChapterRow(audiobook_id=1, idx=3, title="Three")]
        )

    with pytest.raises(ValueError, match="ends before it starts"):
        validate_chapter_map([ChapterRow(audiobook_id=1, idx=1, title="One", start_s=50.0, end_s=10.0)])


def test_transcript_round_trip_keeps_segments_and_rights(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        audiobook_id = repository.upsert_audiobook(slug="book", title="Book")
        repository.replace_chapter_map(audiobook_id, _chapters(audiobook_id, 1))
        repository.upsert_transcript(
            audiobook_id,
            1,
            segments=[SegmentRow(start_s=0.0, end_s=4.5, text="My father's family name being Pirrip.")],
            rights="public_domain",
        )
        repository.upsert_transcript(audiobook_id, 1, text="Replaced blob.", rights="owner_ok")
        transcript = repository.get_transcript(audiobook_id, 1)

        with pytest.raises(ValueError, match="rights"):
            repository.upsert_transcript(audiobook_id, 1, text="x", rights="pirated")
        with pytest.raises(ValueError, match="text or segments"):
            repository.upsert_transcript(audiobook_id, 1, text="   ")

    assert transcript is not None
    assert transcript.text == "Replaced blob."
    assert transcript.segments == []
    assert transcript.rights == "owner_ok"


def test_summaries_upsert_and_missing_lookup(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        audiobook_id = repository.upsert_audiobook(slug="book", title="Book")
        repository.upsert_summary(audiobook_id, 1, "Pip meets the convict.")
        repository.upsert_summary(audiobook_id, 1, "Pip meets Magwitch in the marshes.")

        assert repository.get_summary(audiobook_id, 1) == "Pip meets Magwitch in the marshes."
        assert repository.get_summary(audiobook_id, 2) is None


def test_mark_chapter_complete_advances_progress_within_bounds(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        audiobook_id = repository.upsert_audiobook(slug="book", title="Book")
        repository.replace_chapter_map(audiobook_id, _chapters(audiobook_id, 3))

        assert repository.get_progress("listener", audiobook_id) is None

        progress = repository.mark_chapter_complete("listener", audiobook_id, 1)
        assert progress.current_idx == 2
        assert progress.completed == [1]

        progress = repository.mark_chapter_complete("listener", audiobook_id, 3)
        assert progress.current_idx == 3
        assert progress.furthest_idx == 3

        repository.set_progress("listener", audiobook_id, current_idx=1, completed=[1, 3])
        stored = repository.get_progress("listener", audiobook_id)

    assert stored is not None
    assert stored.current_idx == 1
    assert stored.furthest_idx == 3


def test_interactions_are_listed_oldest_first(tmp_path: Path) -> None:
    with NaraRepository(tmp_path / "nara.db") as repository:
        audiobook_id = repository.upsert_audiobook(slug="book", title="Book")
        for number in range(3):
            repository.record_interaction(
                user_id="listener",
                audiobook_id=audiobook_id,
                allowed_idx=2,
                question=f"Question {number}?",
                answer_markdown=f"Answer {number}.",
                citations=[{"type": "para", "ref": "p1"}],
                playback_hint={"chapter_idx": 2, "start_s": 12.0},
            )

        history = repository.list_interactions("listener", audiobook_id, limit=2)

    assert [item["question"] for item in history] == ["Question 1?", "Question 2?"]
    assert history[0]["citations"] == [{"type": "para", "ref": "p1"}]
    assert history[0]["playback_hint"] == {"chapter_idx": 2, "start_s": 12.0}

from __future__ import annotations

import numpy as np
import pytest

from nara.llm.client import ModelCallError
from nara.qa.models import Segment
from nara.qa.selector import FocusedSelector, pack_ranked, parse_keywords, question_terms, score_segments


def _segments(texts: list[str]) -> list[Segment]:
    return [
        Segment(chapter_idx=2, start_s=index * 10.0, end_s=index * 10.0 + 10.0, text=text)
        for index, text in enumerate(texts)
    ]


class _KeywordModel:
    model = "fake/keywords"

    def __init__(self, reply: str) -> None:
        self.reply = reply
        self.calls: list[list[dict[str, str]]] = []

    def complete(self, messages, *, temperature=0.1, max_tokens=1024, stage="complete") -> str:
        self.calls.append(list(messages))
        return self.reply


class _AxisEmbedder:
    """Embeds text onto two axes: mentions of 'river' versus anything else."""

    model = "fake/embeddings"

    def embed_texts(self, texts):
        return np.asarray([[1.0, 0.0] if "river" in text.lower() else [0.0, 1.0] for text in texts], dtype=np.float32)


def test_question_terms_drop_stopwords_and_short_tokens() -> None:
    assert question_terms("Why did Magwitch hide on the marshes, and who is he?") == ["magwitch", "hide", "marshes"]


def test_parse_keywords_accepts_fenced_arrays_and_rejects_garbage() -> None:
    assert parse_keywords('```json\n["Magwitch", "file", "magwitch"]\n```', model="m") == ["magwitch", "file"]

    with pytest.raises(ModelCallError) as exc_info:
        parse_keywords("magwitch, file", model="m")
    assert exc_info.value.stage == "focus_keywords"


def test_score_segments_counts_whole_words() -> None:
    segments = _segments(["The file and the files.", "No match here.", "file file"])
    assert score_segments(segments, ["file"]) == [1, 0, 2]


def test_pack_ranked_returns_chronological_order_with_neighbours() -> None:
    segments = _segments(["zero", "one", "two", "three", "four", "five"])

    selected = pack_ranked(segments, [4, 1], content_budget=1_000)

    assert [segment.text for segment in selected] == ["zero", "one", "two", "three", "four", "five"]

    tight = pack_ranked(segments, [4], content_budget=15)
    assert [segment.text for segment in tight] == ["three", "four"]


@pytest.mark.asyncio
async def test_focused_selector_ranks_keyword_hits_first() -> None:
    segments = _segments(
        [
            "Pip walks home through the fog.",
            "Joe works at the forge all day.",
            "Magwitch asks Pip for a file and some food.",
            "Mrs Joe is angry again.",
            "The soldiers arrive at the forge.",
        ]
    )
    selector = FocusedSelector()

    selection = await selector.select(question="Why does Magwitch want a file?", segments=segments, content_budget=40)

    assert selection.strategy == "keywords"
    assert "magwitch" in selection.keywords
    assert segments[2] in selection.segments
    assert selection.segments == sorted(selection.segments, key=lambda segment: segment.start_s)


@pytest.mark.asyncio
async def test_focused_selector_merges_model_keywords() -> None:
    segments = _segments(["The convict shivers.", "Biddy teaches reading."])
    model = _KeywordModel('["convict", "shivers"]')
    selector = FocusedSelector(model=model)

    selection = await selector.select(question="Who is cold?", segments=segments, content_budget=100)

    assert len(model.calls) == 1
    assert selection.keywords == ["cold", "convict", "shivers"]
    assert selection.segments[0].text == "The convict shivers."


@pytest.mark.asyncio
async def test_focused_selector_falls_back_to_chapter_opening_without_hits() -> None:
    segments = _segments(["Opening line.", "Second line.", "Third line."])

    selection = await FocusedSelector().select(question="Zebras?", segments=segments, content_budget=19)

    assert selection.strategy == "leading"
    assert [segment.text for segment in selection.segments] == ["Opening line.", "Second line."]


@pytest.mark.asyncio
async def test_focused_selector_uses_embeddings_when_configured() -> None:
    segments = _segments(["A long walk inland.", "They row down the river.", "Dinner at Satis House."])

    selection = await FocusedSelector(embedder=_AxisEmbedder()).select(
        question="What happens on the river?",
        segments=segments,
        content_budget=12,
    )

    assert selection.strategy == "embeddings"
    assert [segment.text for segment in selection.segments] == ["They row down the river."]

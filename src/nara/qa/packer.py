"""Context packing: passages, time tags and the final prompt messages."""

from __future__ import annotations

import logging
from typing import Sequence

from razdel import sentenize

from nara.qa.budget import estimate_tokens
from nara.qa.errors import ValidationError
from nara.qa.models import ChapterContent, PackedPrompt, Passage, PriorSummary, Segment
from nara.qa.prompts import SYSTEM_GLOBAL, answerer_system_prompt


logger = logging.getLogger(__name__)

MAX_PASSAGE_SENTENCES = 4
MIN_PASSAGE_SENTENCES = 2
MIN_CONTENT_SHARE = 0.5


def format_time_tag(seconds: float) -> str:
    total = max(0, int(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"[t={hours}:{minutes:02d}:{secs:02d}]"
    return f"[t={minutes:02d}:{secs:02d}]"


def _split_sentences(text: str) -> list[str]:
    sentences = [match.text.strip() for match in sentenize(text)]
    return [sentence for sentence in sentences if sentence]


def build_passages(
    segments: Sequence[Segment],
    *,
    max_sentences: int = MAX_PASSAGE_SENTENCES,
    min_sentences: int = MIN_PASSAGE_SENTENCES,
) -> list[Passage]:
    """Group segment sentences into 2-4 sentence passages with stable ids.

    A passage closes at ``max_sentences`` or, once it has ``min_sentences``,
    at the end of a segment, so its offsets stay aligned to segment bounds.
    """

    if min_sentences < 1 or max_sentences < min_sentences:
        raise ValueError("invalid passage sentence bounds")

    passages: list[Passage] = []
    buffer: list[str] = []
    start_s: float | None = None
    end_s = 0.0
    chapter_idx = 0

    def _flush() -> None:
        nonlocal buffer, start_s
        if buffer and start_s is not None:
            passages.append(
                Passage(
                    pid=f"p{len(passages) + 1}",
                    chapter_idx=chapter_idx,
                    start_s=start_s,
                    end_s=end_s,
                    text=" ".join(buffer),
                )
            )
        buffer = []
        start_s = None

    for segment in segments:
        sentences = _split_sentences(segment.text)
        for position, sentence in enumerate(sentences):
            if start_s is None:
                start_s = segment.start_s
                chapter_idx = segment.chapter_idx
            buffer.append(sentence)
            end_s = segment.end_s
            at_segment_end = position == len(sentences) - 1
            if len(buffer) >= max_sentences or (len(buffer) >= min_sentences and at_segment_end):
                _flush()
    _flush()
    return passages


def format_passage(passage: Passage) -> str:
    return f"[{passage.pid}] {format_time_tag(passage.start_s)} {passage.text}"


def format_prior_summary(summary: PriorSummary) -> str:
    return f"- Chapter {summary.idx}: {summary.title}\n  {summary.summary}"


def build_messages(
    *,
    book_title: str,
    chapter: ChapterContent,
    chapter_units: Sequence[str],
    prior_summaries: Sequence[PriorSummary],
    question: str,
) -> tuple[dict[str, str], ...]:
    system_content = SYSTEM_GLOBAL + "\n\n" + answerer_system_prompt(book_title, chapter.idx, chapter.title)

    user_content = "## Current Chapter Content\n\n" + "\n\n".join(chapter_units)
    if prior_summaries:
        user_content += "\n\n## Prior Chapter Summaries\n\n" + "\n".join(
            format_prior_summary(summary) for summary in prior_summaries
        )
    user_content += "\n\n## Question\n\n" + question.strip()

    return (
        {"role": "system", "content": system_content},
        {"role": "user", "content": user_content},
    )


def _estimate_messages(messages: Sequence[dict[str, str]]) -> int:
    return sum(estimate_tokens(message["content"]) for message in messages)


def reserve_prior_summaries(
    *,
    book_title: str,
    chapter: ChapterContent,
    question: str,
    token_budget: int,
    prior_summaries: Sequence[PriorSummary] = (),
    min_content_share: float = MIN_CONTENT_SHARE,
) -> tuple[list[PriorSummary], int]:
    """Drop oldest prior summaries until chapter content keeps its share of the budget.

    Returns the kept summaries and the tokens left for chapter content.
    """

    summaries = list(prior_summaries)

    def _overhead() -> int:
        return _estimate_messages(
            build_messages(
                book_title=book_title,
                chapter=chapter,
                chapter_units=(),
                prior_summaries=summaries,
                question=question,
            )
        )

    overhead = _overhead()
    if summaries:
        base = _estimate_messages(
            build_messages(
                book_title=book_title,
                chapter=chapter,
                chapter_units=(),
                prior_summaries=(),
                question=question,
            )
        )
        floor = int((token_budget - base) * min_content_share)
        while summaries and token_budget - overhead < floor:
            summaries.pop(0)
            overhead = _overhead()
        dropped = len(prior_summaries) - len(summaries)
        if dropped:
            logger.info("Dropped %s prior summaries to leave %s tokens for chapter content", dropped, token_budget - overhead)
    return summaries, token_budget - overhead


def pack_context(
    *,
    book_title: str,
    chapter: ChapterContent,
    question: str,
    token_budget: int,
    passages: Sequence[Passage] = (),
    prior_summaries: Sequence[PriorSummary] = (),
) -> PackedPrompt:
    """Assemble the prompt and trim it until its estimated size fits the budget.

    Chapter content comes from ``chapter.compressed_text`` when set, otherwise
    from ``passages``. Oldest prior summaries go first, then trailing chapter
    units; if not even one unit fits, the request is rejected.
    """

    if chapter.compressed_text is not None:
        units = [line.strip() for line in chapter.compressed_text.splitlines() if line.strip()]
        kept_passages: list[Passage] = []
    else:
        units = [format_passage(passage) for passage in passages]
        kept_passages = list(passages)
    if not units:
        raise ValidationError(field="transcript", message="No chapter content to pack")

    summaries = list(prior_summaries)

    def _build(unit_count: int) -> tuple[dict[str, str], ...]:
        return build_messages(
            book_title=book_title,
            chapter=chapter,
            chapter_units=units[:unit_count],
            prior_summaries=summaries,
            question=question,
        )

    messages = _build(len(units))
    dropped_summaries = 0
    while _estimate_messages(messages) > token_budget and summaries:
        summaries.pop(0)
        dropped_summaries += 1
        messages = _build(len(units))

    kept_units = len(units)
    if _estimate_messages(messages) > token_budget:
        low, high = 0, len(units)
        while low < high:
            middle = (low + high + 1) // 2
            if _estimate_messages(_build(middle)) <= token_budget:
                low = middle
            else:
                high = middle - 1
        kept_units = low
        if kept_units == 0:
            raise ValidationError(
                field="tokenBudget",
                message=f"Token budget {token_budget} cannot fit the prompt and any chapter content",
            )
        messages = _build(kept_units)

    if kept_passages:
        kept_passages = kept_passages[:kept_units]
    dropped_units = len(units) - kept_units
    if dropped_units or dropped_summaries:
        logger.warning(
            "Context over budget %s: dropped %s chapter units and %s prior summaries",
            token_budget,
            dropped_units,
            dropped_summaries,
        )

    return PackedPrompt(
        messages=messages,
        estimated_tokens=_estimate_messages(messages),
        passages=tuple(kept_passages),
        dropped_passages=dropped_units,
        dropped_summaries=dropped_summaries,
    )

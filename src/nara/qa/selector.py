"""Focused mode: keep only the chapter segments most relevant to the question."""

from __future__ import annotations

from dataclasses import dataclass, field
import json
import logging
import re
from typing import Sequence

import numpy as np
from razdel import tokenize

from nara.llm.client import ChatModel, ModelCallError, TextEmbedder
from nara.qa.budget import estimate_tokens
from nara.qa.cancellation import CancellationToken, run_cancellable
from nara.qa.models import Segment
from nara.qa.parsing import looks_like_json, strip_code_fence
from nara.qa.prompts import SYSTEM_FOCUS


logger = logging.getLogger(__name__)

MAX_KEYWORDS = 12
PASSAGE_TAG_TOKENS = 6
EMBEDDING_BATCH_SIZE = 64
_WORD_RE = re.compile(r"\w+", re.UNICODE)
_STOPWORDS = {
    "a",
    "about",
    "after",
    "all",
    "also",
    "an",
    "and",
    "any",
    "are",
    "as",
    "at",
    "be",
    "been",
    "book",
    "but",
    "by",
    "can",
    "chapter",
    "did",
    "do",
    "does",
    "explain",
    "for",
    "from",
    "had",
    "has",
    "have",
    "he",
    "her",
    "his",
    "how",
    "i",
    "in",
    "is",
    "it",
    "its",
    "me",
    "mean",
    "of",
    "on",
    "or",
    "say",
    "she",
    "so",
    "tell",
    "that",
    "the",
    "their",
    "them",
    "they",
    "this",
    "to",
    "was",
    "we",
    "were",
    "what",
    "when",
    "where",
    "which",
    "who",
    "why",
    "with",
    "would",
    "you",
}


@dataclass(slots=True)
class Selection:
    segments: list[Segment]
    keywords: list[str] = field(default_factory=list)
    strategy: str = "keywords"


def question_terms(question: str) -> list[str]:
    """Content-bearing lowercase terms of the question, in first-seen order."""

    terms: list[str] = []
    for token in tokenize(question.lower()):
        value = token.text.strip()
        if len(value) < 3 or not _WORD_RE.fullmatch(value) or value in _STOPWORDS:
            continue
        if value not in terms:
            terms.append(value)
    return terms


def parse_keywords(raw: str, *, model: str) -> list[str]:
    if not looks_like_json(raw, opener="["):
        raise ModelCallError(model=model, stage="focus_keywords", message="Keyword response is not a JSON array")
    try:
        payload = json.loads(strip_code_fence(raw))
    except json.JSONDecodeError as exc:
        raise ModelCallError(model=model, stage="focus_keywords", message=f"Malformed keyword JSON: {exc}") from exc
    if not isinstance(payload, list):
        raise ModelCallError(model=model, stage="focus_keywords", message="Keyword response is not a JSON array")

    keywords: list[str] = []
    for item in payload:
        if not isinstance(item, str):
            continue
        value = " ".join(item.lower().split())
        if value and value not in keywords:
            keywords.append(value)
    return keywords[:MAX_KEYWORDS]


def score_segments(segments: Sequence[Segment], keywords: Sequence[str]) -> list[int]:
    """Count whole-word keyword occurrences per segment."""

    patterns = [re.compile(r"\b" + re.escape(keyword) + r"\b") for keyword in keywords if keyword]
    scores: list[int] = []
    for segment in segments:
        text = segment.text.lower()
        scores.append(sum(len(pattern.findall(text)) for pattern in patterns))
    return scores


def _segment_cost(segment: Segment) -> int:
    return estimate_tokens(segment.text) + PASSAGE_TAG_TOKENS


def pack_ranked(
    segments: Sequence[Segment],
    ranked_indices: Sequence[int],
    *,
    content_budget: int,
    with_neighbours: bool = True,
) -> list[Segment]:
    """Take ranked segments (plus neighbours) while they fit, in chapter order."""

    chosen: set[int] = set()
    used = 0
    for index in ranked_indices:
        group = [index, index - 1, index + 1] if with_neighbours else [index]
        for candidate in group:
            if candidate < 0 or candidate >= len(segments) or candidate in chosen:
                continue
            cost = _segment_cost(segments[candidate])
            if used + cost > content_budget:
                continue
            chosen.add(candidate)
            used += cost
    return [segments[index] for index in sorted(chosen)]


def _cosine_scores(query_vector: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    query_norm = np.linalg.norm(query_vector)
    row_norms = np.linalg.norm(matrix, axis=1)
    denominator = np.maximum(row_norms * query_norm, 1e-12)
    return (matrix @ query_vector) / denominator


class FocusedSelector:
    """Rank segments by keyword overlap (or embedding similarity) and trim to budget."""

    def __init__(
        self,
        *,
        model: ChatModel | None = None,
        embedder: TextEmbedder | None = None,
        propose_keywords: bool = True,
    ) -> None:
        self._model = model
        self._embedder = embedder
        self._propose_keywords = propose_keywords and model is not None

    async def select(
        self,
        *,
        question: str,
        segments: Sequence[Segment],
        content_budget: int,
        token: CancellationToken | None = None,
    ) -> Selection:
        if content_budget <= 0:
            return Selection(segments=[], strategy="empty")

        if self._embedder is not None:
            return await self._select_by_embeddings(
                question=question,
                segments=segments,
                content_budget=content_budget,
                token=token,
            )

        keywords = question_terms(question)
        if self._propose_keywords and self._model is not None:
            raw = await run_cancellable(
                self._model.complete,
                [
                    {"role": "system", "content": SYSTEM_FOCUS},
                    {"role": "user", "content": question},
                ],
                temperature=0.0,
                max_tokens=200,
                stage="focus_keywords",
                token=token,
            )
            for keyword in parse_keywords(raw, model=self._model.model):
                if keyword not in keywords:
                    keywords.append(keyword)

        scores = score_segments(segments, keywords)
        ranked = sorted(
            (index for index, score in enumerate(scores) if score > 0),
            key=lambda index: (-scores[index], index),
        )
        if ranked:
            selected = pack_ranked(segments, ranked, content_budget=content_budget)
            strategy = "keywords"
        else:
            logger.info("No keyword hits for focused selection; keeping the chapter opening")
            selected = pack_ranked(segments, range(len(segments)), content_budget=content_budget, with_neighbours=False)
            strategy = "leading"

        logger.info(
            "Focused selection kept %s of %s segments (%s keywords, strategy=%s)",
            len(selected),
            len(segments),
            len(keywords),
            strategy,
        )
        return Selection(segments=selected, keywords=keywords, strategy=strategy)

    async def _select_by_embeddings(
        self,
        *,
        question: str,
        segments: Sequence[Segment],
        content_budget: int,
        token: CancellationToken | None,
    ) -> Selection:
        assert self._embedder is not None
        texts = [segment.text for segment in segments]

        query_matrix = await run_cancellable(self._embedder.embed_texts, [question], token=token, stage="embeddings")
        batches: list[np.ndarray] = []
        for start in range(0, len(texts), EMBEDDING_BATCH_SIZE):
            batch = await run_cancellable(
                self._embedder.embed_texts,
                texts[start : start + EMBEDDING_BATCH_SIZE],
                token=token,
                stage="embeddings",
            )
            batches.append(batch)

        if not batches:
            return Selection(segments=[], strategy="embeddings")

        scores = _cosine_scores(query_matrix[0], np.vstack(batches))
        ranked = [int(index) for index in np.argsort(-scores, kind="stable")]
        selected = pack_ranked(segments, ranked, content_budget=content_budget, with_neighbours=False)
        logger.info("Embedding selection kept %s of %s segments", len(selected), len(segments))
        return Selection(segments=selected, strategy="embeddings")

"""Answer generation and schema validation of the model reply."""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import time
from typing import Any

from nara.llm.client import ChatModel, ModelCallError
from nara.qa.cancellation import CancellationToken, run_cancellable
from nara.qa.models import PackedPrompt
from nara.qa.parsing import looks_like_json, strip_code_fence


logger = logging.getLogger(__name__)

_CITATION_TYPES = {"para", "time"}


@dataclass(frozen=True, slots=True)
class DeclaredCitation:
    """Citation as stated in a structured reply, before normalisation."""

    type: str
    ref: str
    chapter_idx: int | None = None


@dataclass(frozen=True, slots=True)
class AnswerDraft:
    markdown: str
    declared_citations: tuple[DeclaredCitation, ...] = ()
    structured: bool = False


def _schema_error(model: str, message: str) -> ModelCallError:
    return ModelCallError(model=model, stage="answer_schema", message=message)


def _parse_citation(item: Any, *, model: str) -> DeclaredCitation:
    if not isinstance(item, dict):
        raise _schema_error(model, "Citation entry must be an object")
    citation_type = item.get("type")
    ref = item.get("ref")
    chapter_idx = item.get("chapter_idx")
    if citation_type not in _CITATION_TYPES:
        raise _schema_error(model, f"Citation type must be 'para' or 'time', got {citation_type!r}")
    if isinstance(ref, (int, float)) and not isinstance(ref, bool):
        ref = str(ref)
    if not isinstance(ref, str) or not ref.strip():
        raise _schema_error(model, "Citation ref must be a non-empty string")
    if chapter_idx is not None and (isinstance(chapter_idx, bool) or not isinstance(chapter_idx, int)):
        raise _schema_error(model, "Citation chapter_idx must be an integer")
    return DeclaredCitation(type=citation_type, ref=ref.strip(), chapter_idx=chapter_idx)


def parse_answer(raw: str, *, model: str) -> AnswerDraft:
    """Validate the reply; JSON-looking replies must match the answer schema.

    Plain markdown passes through and its citations are read from the text
    later. Anything that starts like JSON but does not validate is rejected.
    """

    text = raw.strip()
    if not text:
        raise _schema_error(model, "Answer is empty")
    if not looks_like_json(text, opener="{"):
        return AnswerDraft(markdown=text)

    try:
        payload = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as exc:
        raise _schema_error(model, f"Malformed answer JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise _schema_error(model, "Answer JSON must be an object")

    markdown = payload.get("answer_markdown")
    if not isinstance(markdown, str) or not markdown.strip():
        raise _schema_error(model, "Answer JSON missing non-empty 'answer_markdown'")

    citations_raw = payload.get("citations", [])
    if citations_raw is None:
        citations_raw = []
    if not isinstance(citations_raw, list):
        raise _schema_error(model, "Answer JSON 'citations' must be a list")

    citations = tuple(_parse_citation(item, model=model) for item in citations_raw)
    return AnswerDraft(markdown=markdown.strip(), declared_citations=citations, structured=True)


class Answerer:
    def __init__(self, model: ChatModel, *, temperature: float = 0.1, max_tokens: int = 1024) -> None:
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def answer(self, packed: PackedPrompt, *, token: CancellationToken | None = None) -> AnswerDraft:
        started = time.perf_counter()
        raw = await run_cancellable(
            self._model.complete,
            list(packed.messages),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
            token=token,
            stage="answer",
        )
        draft = parse_answer(raw, model=self._model.model)
        latency_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Answer generated in %.2fms (structured=%s, declared citations=%s)",
            latency_ms,
            draft.structured,
            len(draft.declared_citations),
        )
        return draft

"""Citation extraction, spoiler bound enforcement and playback hint selection."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Sequence

from nara.llm.client import ModelCallError
from nara.qa.answerer import AnswerDraft, DeclaredCitation
from nara.qa.errors import SpoilerViolationError
from nara.qa.models import Citation, Passage, PlaybackHint


logger = logging.getLogger(__name__)

_CITATION_RE = re.compile(
    r"\[(?:ch(?:apter)?\s*(?P<chapter>\d+)[\s,;:]*)?"
    r"(?:(?:t=)?(?P<time>\d{1,2}(?::\d{2}){1,2})|(?:para|p)\s*(?P<para>\d+))\]",
    re.IGNORECASE,
)
_TIME_REF_RE = re.compile(r"^\[?(?:t=)?(?P<clock>\d{1,2}(?::\d{2}){1,2})\]?$")
_SECONDS_REF_RE = re.compile(r"^\d+(?:\.\d+)?$")
_PARA_REF_RE = re.compile(r"^\[?(?:para|p)?\s*(?P<num>\d+)\]?$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class PostProcessResult:
    citations: tuple[Citation, ...]
    playback_hint: PlaybackHint
    dropped: tuple[Citation, ...] = ()


def clock_to_seconds(clock: str) -> int:
    total = 0
    for part in clock.split(":"):
        total = total * 60 + int(part)
    return total


def normalize_time_ref(ref: str) -> str | None:
    value = ref.strip()
    match = _TIME_REF_RE.match(value)
    if match:
        return str(clock_to_seconds(match.group("clock")))
    if _SECONDS_REF_RE.match(value):
        return str(int(float(value)))
    return None


def normalize_para_ref(ref: str) -> str | None:
    match = _PARA_REF_RE.match(ref.strip())
    if match is None:
        return None
    return f"p{int(match.group('num'))}"


def extract_inline_citations(markdown: str, *, default_chapter: int) -> list[Citation]:
    """Citations tagged inline: ``[t=02:45]``, ``[02:45]``, ``[p3]``, ``[para3]``, ``[ch2 t=01:10]``."""

    citations: list[Citation] = []
    for match in _CITATION_RE.finditer(markdown):
        chapter_idx = int(match.group("chapter")) if match.group("chapter") else default_chapter
        if match.group("time"):
            citations.append(
                Citation(type="time", ref=str(clock_to_seconds(match.group("time"))), chapter_idx=chapter_idx)
            )
        else:
            citations.append(Citation(type="para", ref=f"p{int(match.group('para'))}", chapter_idx=chapter_idx))
    return citations


def _normalize_declared(citation: DeclaredCitation, *, default_chapter: int, model: str) -> Citation:
    if citation.type == "time":
        ref = normalize_time_ref(citation.ref)
    else:
        ref = normalize_para_ref(citation.ref)
    if ref is None:
        raise ModelCallError(
            model=model,
            stage="answer_schema",
            message=f"Unrecognised {citation.type} citation ref: {citation.ref!r}",
        )
    chapter_idx = citation.chapter_idx if citation.chapter_idx is not None else default_chapter
    return Citation(type=citation.type, ref=ref, chapter_idx=chapter_idx)  # type: ignore[arg-type]


def _dedupe(citations: Sequence[Citation]) -> list[Citation]:
    seen: set[tuple[str, str, int]] = set()
    unique: list[Citation] = []
    for citation in citations:
        key = (citation.type, citation.ref, citation.chapter_idx)
        if key in seen:
            continue
        seen.add(key)
        unique.append(citation)
    return unique


def _exceeds_bound(citation: Citation, *, allowed_idx: int, chapter_end_s: float | None) -> bool:
    if citation.chapter_idx > allowed_idx:
        return True
    if citation.type == "time" and citation.chapter_idx == allowed_idx and chapter_end_s is not None:
        return float(citation.ref) > chapter_end_s
    return False


def _citation_offset(citation: Citation, passages_by_id: dict[str, Passage], *, allowed_idx: int) -> float | None:
    if citation.type == "time":
        return float(citation.ref)
    if citation.chapter_idx == allowed_idx:
        passage = passages_by_id.get(citation.ref)
        if passage is not None:
            return passage.start_s
    return None


def post_process(
    draft: AnswerDraft,
    *,
    allowed_idx: int,
    passages: Sequence[Passage] = (),
    chapter_start_s: float = 0.0,
    chapter_end_s: float | None = None,
    focused_start_s: float | None = None,
    spoiler_policy: str = "drop",
    model: str = "unknown",
) -> PostProcessResult:
    """Collect citations, enforce the allowed chapter bound and choose a seek target."""

    if spoiler_policy not in {"drop", "reject"}:
        raise ValueError(f"Unsupported spoiler policy: {spoiler_policy}")

    collected = [
        _normalize_declared(citation, default_chapter=allowed_idx, model=model)
        for citation in draft.declared_citations
    ]
    collected.extend(extract_inline_citations(draft.markdown, default_chapter=allowed_idx))
    citations = _dedupe(collected)

    kept: list[Citation] = []
    dropped: list[Citation] = []
    for citation in citations:
        if not _exceeds_bound(citation, allowed_idx=allowed_idx, chapter_end_s=chapter_end_s):
            kept.append(citation)
            continue
        if spoiler_policy == "reject":
            cited_idx = citation.chapter_idx if citation.chapter_idx > allowed_idx else allowed_idx + 1
            raise SpoilerViolationError(allowed_idx=allowed_idx, cited_idx=cited_idx)
        dropped.append(citation)

    if dropped:
        logger.warning("Dropped %s citations beyond allowed chapter %s", len(dropped), allowed_idx)

    passages_by_id = {passage.pid: passage for passage in passages}
    hint: PlaybackHint | None = None
    for citation in kept:
        offset = _citation_offset(citation, passages_by_id, allowed_idx=allowed_idx)
        if offset is not None:
            hint = PlaybackHint(chapter_idx=min(citation.chapter_idx, allowed_idx), start_s=offset)
            break

    if hint is None:
        start_s = focused_start_s if focused_start_s is not None else chapter_start_s
        hint = PlaybackHint(chapter_idx=allowed_idx, start_s=start_s)

    return PostProcessResult(citations=tuple(kept), playback_hint=hint, dropped=tuple(dropped))

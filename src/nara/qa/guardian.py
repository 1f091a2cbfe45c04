"""Question screening: refuse questions that reach past the allowed chapter."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re


logger = logging.getLogger(__name__)

_NUMBER_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "eleven": 11,
    "twelve": 12,
    "thirteen": 13,
    "fourteen": 14,
    "fifteen": 15,
    "sixteen": 16,
    "seventeen": 17,
    "eighteen": 18,
    "nineteen": 19,
    "twenty": 20,
}
_CHAPTER_REF_RE = re.compile(
    r"\b(?:chapter|ch\.?)\s*(?P<num>\d+|" + "|".join(_NUMBER_WORDS) + r")\b",
    re.IGNORECASE,
)
_LOOKAHEAD_PATTERNS = (
    re.compile(r"\bhow\s+(?:does|will)\s+(?:it|the\s+(?:book|story))\s+end\b", re.IGNORECASE),
    re.compile(r"\b(?:the\s+)?ending\b", re.IGNORECASE),
    re.compile(r"\bnext\s+chapter\b", re.IGNORECASE),
    re.compile(r"\blater\s+(?:in\s+the\s+book|chapters?)\b", re.IGNORECASE),
    re.compile(r"\bwhat\s+happens\s+(?:next|later|after\s+this)\b", re.IGNORECASE),
    re.compile(r"\bspoilers?\b", re.IGNORECASE),
)

REFUSAL_TEMPLATE = (
    "I can only discuss the book up to Chapter {allowed_idx}. "
    "Keep listening and ask me again once you get there."
)


@dataclass(frozen=True, slots=True)
class GuardianVerdict:
    allowed: bool
    reason: str | None = None
    refusal_markdown: str | None = None


def referenced_chapters(question: str) -> list[int]:
    """Chapter numbers named in the question (digits or words up to twenty)."""

    found: list[int] = []
    for match in _CHAPTER_REF_RE.finditer(question):
        raw = match.group("num").lower()
        number = int(raw) if raw.isdigit() else _NUMBER_WORDS[raw]
        if number not in found:
            found.append(number)
    return found


def screen_question(question: str, *, allowed_idx: int) -> GuardianVerdict:
    beyond = [number for number in referenced_chapters(question) if number > allowed_idx]
    if beyond:
        reason = f"question names chapter {beyond[0]}"
    elif any(pattern.search(question) for pattern in _LOOKAHEAD_PATTERNS):
        reason = "question asks about later events"
    else:
        return GuardianVerdict(allowed=True)

    logger.info("Refusing question beyond chapter %s: %s", allowed_idx, reason)
    return GuardianVerdict(
        allowed=False,
        reason=reason,
        refusal_markdown=REFUSAL_TEMPLATE.format(allowed_idx=allowed_idx),
    )

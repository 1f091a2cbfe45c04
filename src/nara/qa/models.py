"""Request-scoped data structures passed between QA pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


ModeHint = Literal["auto", "full", "compressed", "focused"]
PackingMode = Literal["full", "compressed", "focused"]
CitationType = Literal["para", "time"]

MODE_HINTS: tuple[str, ...] = ("auto", "full", "compressed", "focused")


@dataclass(frozen=True, slots=True)
class Segment:
    """Timed transcript span; offsets are seconds from the start of the audiobook."""

    chapter_idx: int
    start_s: float
    end_s: float
    text: str


@dataclass(frozen=True, slots=True)
class TranscriptInput:
    """Transcript supplied directly by the caller instead of read from storage."""

    text: str | None = None
    segments: tuple[Segment, ...] = ()
    rights: str = "unknown"

    def joined_text(self) -> str:
        if self.text and self.text.strip():
            return self.text.strip()
        return " ".join(segment.text.strip() for segment in self.segments if segment.text.strip())


@dataclass(slots=True)
class ChapterContent:
    idx: int
    title: str
    segments: list[Segment]
    start_s: float = 0.0
    end_s: float | None = None
    compressed_text: str | None = None

    @property
    def text(self) -> str:
        return " ".join(segment.text.strip() for segment in self.segments if segment.text.strip())


@dataclass(frozen=True, slots=True)
class PriorSummary:
    idx: int
    title: str
    summary: str


@dataclass(frozen=True, slots=True)
class Passage:
    """Paragraph-sized unit of packed chapter text with a citable id."""

    pid: str
    chapter_idx: int
    start_s: float
    end_s: float
    text: str


@dataclass(frozen=True, slots=True)
class Citation:
    type: CitationType
    ref: str
    chapter_idx: int

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type, "ref": self.ref}


@dataclass(frozen=True, slots=True)
class PlaybackHint:
    chapter_idx: int
    start_s: float = 0.0

    def to_dict(self) -> dict[str, int | float]:
        return {"chapter_idx": self.chapter_idx, "start_s": self.start_s}


@dataclass(frozen=True, slots=True)
class QARequest:
    audiobook_id: str
    question: str
    idx: int
    user_progress_idx: int | None = None
    audiobook_title: str | None = None
    user_id: str | None = None
    transcript: TranscriptInput | None = None
    previous_transcripts: tuple[TranscriptInput, ...] | None = None
    mode_hint: ModeHint | None = None
    token_budget: int | None = None
    include_prior_summaries: bool | None = None


@dataclass(frozen=True, slots=True)
class PackedPrompt:
    messages: tuple[dict[str, str], ...]
    estimated_tokens: int
    passages: tuple[Passage, ...] = ()
    dropped_passages: int = 0
    dropped_summaries: int = 0


@dataclass(frozen=True, slots=True)
class QAResult:
    answer_markdown: str
    citations: tuple[Citation, ...]
    allowed_idx: int
    playback_hint: PlaybackHint | None = None
    packing_mode: PackingMode | None = None
    refused: bool = False
    latency_ms: float = 0.0

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {
            "answer_markdown": self.answer_markdown,
            "citations": [citation.to_dict() for citation in self.citations],
        }
        if self.playback_hint is not None:
            payload["playbackHint"] = self.playback_hint.to_dict()
        return payload

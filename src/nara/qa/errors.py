"""Error taxonomy surfaced by the chapter QA pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from nara.llm.client import ModelCallError


@dataclass(slots=True)
class NotFoundError(LookupError):
    """Missing audiobook, chapter or transcript."""

    entity: str
    key: str

    def __str__(self) -> str:
        return f"{self.entity} not found: {self.key}"


@dataclass(slots=True)
class ValidationError(ValueError):
    """Malformed request payload or unsatisfiable request parameters."""

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (field={self.field})"


@dataclass(slots=True)
class SpoilerViolationError(RuntimeError):
    """A model answer referenced a chapter past the reader's allowed index."""

    allowed_idx: int
    cited_idx: int

    def __str__(self) -> str:
        return f"Answer cites chapter {self.cited_idx} beyond allowed chapter {self.allowed_idx}"


@dataclass(slots=True)
class QACancelledError(RuntimeError):
    """The run was cancelled, usually because the same session asked again."""

    stage: str

    def __str__(self) -> str:
        return f"QA request cancelled during {self.stage}"


__all__ = [
    "ModelCallError",
    "NotFoundError",
    "QACancelledError",
    "SpoilerViolationError",
    "ValidationError",
]

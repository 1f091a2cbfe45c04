from nara.qa.api import answer_request, parse_request, status_for_error
from nara.qa.budget import decide_mode, estimate_tokens
from nara.qa.cancellation import CancellationToken, SessionRegistry
from nara.qa.config import PipelineSettings
from nara.qa.errors import (
    ModelCallError,
    NotFoundError,
    QACancelledError,
    SpoilerViolationError,
    ValidationError,
)
from nara.qa.gate import resolve_allowed_index
from nara.qa.models import Citation, PlaybackHint, QARequest, QAResult
from nara.qa.pipeline import ChapterQAPipeline

__all__ = [
    "CancellationToken",
    "ChapterQAPipeline",
    "Citation",
    "ModelCallError",
    "NotFoundError",
    "PipelineSettings",
    "PlaybackHint",
    "QACancelledError",
    "QARequest",
    "QAResult",
    "SessionRegistry",
    "SpoilerViolationError",
    "ValidationError",
    "answer_request",
    "decide_mode",
    "estimate_tokens",
    "parse_request",
    "resolve_allowed_index",
    "status_for_error",
]

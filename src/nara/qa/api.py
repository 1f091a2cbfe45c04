"""JSON entry point: payload validation, pipeline call and error status mapping."""

from __future__ import annotations

import logging
from typing import Any, Mapping

from nara.llm.client import ModelCallError
from nara.qa.cancellation import CancellationToken
from nara.qa.errors import NotFoundError, QACancelledError, SpoilerViolationError, ValidationError
from nara.qa.models import MODE_HINTS, QARequest, Segment, TranscriptInput
from nara.qa.pipeline import ChapterQAPipeline
from nara.storage.schema import TRANSCRIPT_RIGHTS


logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[BaseException], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (SpoilerViolationError, 409),
    (QACancelledError, 499),
    (ModelCallError, 500),
)


def _require_str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field=key, message=f"{key} must be a non-empty string")
    return value.strip()


def _optional_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(field=key, message=f"{key} must be a string")
    return value.strip() or None


def _optional_int(payload: Mapping[str, Any], key: str, *, minimum: int = 1) -> int | None:
    value = payload.get(key)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field=key, message=f"{key} must be an integer")
    if value < minimum:
        raise ValidationError(field=key, message=f"{key} must be >= {minimum}")
    return value


def _number(raw: Any, *, field: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise ValidationError(field=field, message=f"{field} must be a number")
    if raw < 0:
        raise ValidationError(field=field, message=f"{field} cannot be negative")
    return float(raw)


def _parse_segment(raw: Any, *, field: str, chapter_idx: int) -> Segment:
    if not isinstance(raw, Mapping):
        raise ValidationError(field=field, message="segment must be an object")
    if "start_s" in raw:
        start_s = _number(raw.get("start_s"), field=f"{field}.start_s")
        end_s = _number(raw.get("end_s", raw.get("start_s")), field=f"{field}.end_s")
    else:
        start_s = _number(raw.get("startMs"), field=f"{field}.startMs") / 1000
        end_s = _number(raw.get("endMs", raw.get("startMs")), field=f"{field}.endMs") / 1000
    if end_s < start_s:
        raise ValidationError(field=field, message="segment end precedes its start")
    text = raw.get("text")
    if not isinstance(text, str):
        raise ValidationError(field=f"{field}.text", message="segment text must be a string")
    return Segment(chapter_idx=chapter_idx, start_s=start_s, end_s=end_s, text=text)


def _parse_transcript(raw: Any, *, field: str, chapter_idx: int) -> TranscriptInput:
    if isinstance(raw, str):
        return TranscriptInput(text=raw)
    if not isinstance(raw, Mapping):
        raise ValidationError(field=field, message=f"{field} must be a string or an object")

    text = raw.get("text")
    if text is not None and not isinstance(text, str):
        raise ValidationError(field=f"{field}.text", message="text must be a string")

    segments_raw = raw.get("segments") or []
    if not isinstance(segments_raw, list):
        raise ValidationError(field=f"{field}.segments", message="segments must be a list")
    segments = tuple(
        _parse_segment(item, field=f"{field}.segments[{position}]", chapter_idx=chapter_idx)
        for position, item in enumerate(segments_raw)
    )

    rights = raw.get("rights", "unknown")
    if rights not in TRANSCRIPT_RIGHTS:
        raise ValidationError(field=f"{field}.rights", message=f"rights must be one of {', '.join(TRANSCRIPT_RIGHTS)}")

    transcript = TranscriptInput(text=text, segments=segments, rights=rights)
    if not transcript.joined_text():
        raise ValidationError(field=field, message=f"{field} has no text")
    return transcript


def parse_request(payload: Mapping[str, Any]) -> QARequest:
    """Validate a camelCase request payload into a :class:`QARequest`."""

    if not isinstance(payload, Mapping):
        raise ValidationError(field="body", message="request body must be a JSON object")

    audiobook_id = _require_str(payload, "audiobookId")
    question = _require_str(payload, "question")
    idx = payload.get("idx")
    if isinstance(idx, bool) or not isinstance(idx, int) or idx < 1:
        raise ValidationError(field="idx", message="idx must be an integer >= 1")

    transcript = None
    if payload.get("transcript") is not None:
        transcript = _parse_transcript(payload["transcript"], field="transcript", chapter_idx=idx)

    previous_transcripts = None
    previous_raw = payload.get("previousTranscripts")
    if previous_raw is not None:
        if not isinstance(previous_raw, list):
            raise ValidationError(field="previousTranscripts", message="previousTranscripts must be a list")
        previous_transcripts = tuple(
            _parse_transcript(item, field=f"previousTranscripts[{position}]", chapter_idx=position + 1)
            for position, item in enumerate(previous_raw)
        )

    mode_hint = _optional_str(payload, "modeHint")
    if mode_hint is not None and mode_hint not in MODE_HINTS:
        raise ValidationError(field="modeHint", message=f"modeHint must be one of {', '.join(MODE_HINTS)}")

    include_prior = payload.get("includePriorSummaries")
    if include_prior is not None and not isinstance(include_prior, bool):
        raise ValidationError(field="includePriorSummaries", message="includePriorSummaries must be a boolean")

    return QARequest(
        audiobook_id=audiobook_id,
        question=question,
        idx=idx,
        user_progress_idx=_optional_int(payload, "userProgressIdx"),
        audiobook_title=_optional_str(payload, "audiobookTitle"),
        user_id=_optional_str(payload, "userId"),
        transcript=transcript,
        previous_transcripts=previous_transcripts,
        mode_hint=mode_hint,  # type: ignore[arg-type]
        token_budget=_optional_int(payload, "tokenBudget"),
        include_prior_summaries=include_prior,
    )


async def answer_request(
    payload: Mapping[str, Any],
    pipeline: ChapterQAPipeline,
    cancel_token: CancellationToken | None = None,
) -> dict[str, object]:
    request = parse_request(payload)
    result = await pipeline.run(request, cancel_token=cancel_token)
    return result.to_dict()


def status_for_error(exc: BaseException) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def error_body(exc: BaseException) -> dict[str, object]:
    status = status_for_error(exc)
    if status == 500 and not isinstance(exc, ModelCallError):
        logger.exception("Unexpected QA failure", exc_info=exc)
    return {"error": type(exc).__name__, "message": str(exc), "status": status}

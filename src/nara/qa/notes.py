"""Note taking over a short listener discussion."""

from __future__ import annotations

import logging
from typing import Sequence

from nara.llm.client import ChatModel, ModelCallError
from nara.qa.cancellation import CancellationToken, run_cancellable
from nara.qa.prompts import SYSTEM_NOTES


logger = logging.getLogger(__name__)

NOTES_FALLBACK = "Unable to generate notes at this time."


def format_discussion(turns: Sequence[tuple[str, str]]) -> str:
    return "\n".join(f"{speaker.strip().capitalize()}: {text.strip()}" for speaker, text in turns if text.strip())


async def generate_notes(
    model: ChatModel,
    turns: Sequence[tuple[str, str]],
    *,
    token: CancellationToken | None = None,
    max_tokens: int = 400,
) -> str:
    """Summarise ``(speaker, text)`` turns into structured notes.

    Model failures degrade to a fixed message; cancellation still propagates.
    """

    transcript = format_discussion(turns)
    if not transcript:
        return NOTES_FALLBACK

    try:
        notes = await run_cancellable(
            model.complete,
            [
                {"role": "system", "content": SYSTEM_NOTES},
                {"role": "user", "content": transcript},
            ],
            temperature=0.2,
            max_tokens=max_tokens,
            token=token,
            stage="notes",
        )
    except ModelCallError as exc:
        logger.warning("Note generation failed: %s", exc)
        return NOTES_FALLBACK

    notes = notes.strip()
    return notes or NOTES_FALLBACK

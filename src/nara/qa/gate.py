"""Spoiler boundary resolution from playback position and reader progress."""

from __future__ import annotations

import logging

from nara.storage.repository import ProgressRow


logger = logging.getLogger(__name__)


def resolve_allowed_index(playback_idx: int, progress_idx: int) -> int:
    """Return the highest chapter whose content may be disclosed.

    Scrubbing ahead of the furthest-reached chapter never widens the boundary:
    the result is capped by reader progress and never drops below chapter 1.
    """

    return max(1, min(int(playback_idx), int(progress_idx)))


def resolve_progress_index(progress: ProgressRow | None, *, fallback: int | None) -> int:
    if progress is not None:
        return progress.furthest_idx
    if fallback is not None:
        return int(fallback)
    # No stored progress and no caller hint: only the first chapter is safe.
    return 1


def gate(playback_idx: int, progress: ProgressRow | None, *, fallback_progress_idx: int | None) -> int:
    progress_idx = resolve_progress_index(progress, fallback=fallback_progress_idx)
    allowed_idx = resolve_allowed_index(playback_idx, progress_idx)
    logger.info(
        "Progress gate: playback=%s progress=%s allowed=%s",
        playback_idx,
        progress_idx,
        allowed_idx,
    )
    return allowed_idx

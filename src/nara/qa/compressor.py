"""Compressed mode: summarise the chapter with the language model."""

from __future__ import annotations

import logging
import time
from typing import Sequence

from nara.llm.client import ChatModel, ModelCallError
from nara.qa.budget import CHARS_PER_TOKEN, estimate_tokens
from nara.qa.cancellation import CancellationToken, run_cancellable
from nara.qa.models import Segment
from nara.qa.packer import format_time_tag
from nara.qa.prompts import compress_system_prompt


logger = logging.getLogger(__name__)

MIN_TARGET_TOKENS = 200


def time_tagged_text(segments: Sequence[Segment]) -> str:
    return "\n".join(f"{format_time_tag(segment.start_s)} {segment.text.strip()}" for segment in segments)


class ChapterCompressor:
    def __init__(self, model: ChatModel, *, target_tokens: int = 9_000) -> None:
        if target_tokens < MIN_TARGET_TOKENS:
            raise ValueError(f"target_tokens must be >= {MIN_TARGET_TOKENS}")
        self._model = model
        self._target_tokens = target_tokens

    def target_for(self, content_budget: int) -> int:
        return max(MIN_TARGET_TOKENS, min(self._target_tokens, content_budget))

    async def compress(
        self,
        segments: Sequence[Segment],
        *,
        content_budget: int,
        token: CancellationToken | None = None,
    ) -> str:
        target = self.target_for(content_budget)
        source_text = time_tagged_text(segments)
        started = time.perf_counter()

        summary = await run_cancellable(
            self._model.complete,
            [
                {"role": "system", "content": compress_system_prompt(target)},
                {"role": "user", "content": source_text},
            ],
            temperature=0.2,
            max_tokens=target,
            token=token,
            stage="compress",
        )
        summary = summary.strip()
        if not summary:
            raise ModelCallError(model=self._model.model, stage="compress", message="Compressor returned empty text")

        if estimate_tokens(summary) > content_budget:
            # Over-long summaries are cut at a line boundary; the packer re-checks the total.
            limit_chars = max(content_budget, 1) * CHARS_PER_TOKEN
            cut = summary[:limit_chars]
            newline = cut.rfind("\n")
            summary = (cut[:newline] if newline > 0 else cut).rstrip()

        latency_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Compressed chapter from %s to %s estimated tokens in %.2fms",
            estimate_tokens(source_text),
            estimate_tokens(summary),
            latency_ms,
        )
        return summary

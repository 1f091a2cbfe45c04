"""Chapter QA pipeline: gate, load, plan, select, pack, answer, post-process."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field, replace
import logging
import time

from nara.llm.client import ChatModel, TextEmbedder
from nara.qa.answerer import Answerer
from nara.qa.budget import decide_mode, estimate_tokens, validate_budget
from nara.qa.cancellation import CancellationToken
from nara.qa.compressor import ChapterCompressor
from nara.qa.config import PipelineSettings
from nara.qa.errors import NotFoundError, ValidationError
from nara.qa.gate import gate
from nara.qa.guardian import screen_question
from nara.qa.loader import ChapterStore, LoadedChapter, load_chapter
from nara.qa.models import MODE_HINTS, PackedPrompt, PackingMode, Passage, PlaybackHint, QARequest, QAResult
from nara.qa.packer import build_passages, pack_context, reserve_prior_summaries
from nara.qa.postprocess import post_process
from nara.qa.selector import FocusedSelector


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _RunState:
    """Per-request scratch state; never shared between runs."""

    request: QARequest
    token: CancellationToken | None
    started: float = field(default_factory=time.perf_counter)
    stage_ms: dict[str, float] = field(default_factory=dict)

    def checkpoint(self, stage: str) -> None:
        if self.token is not None:
            self.token.raise_if_cancelled(stage)

    def record(self, stage: str, stage_started: float) -> None:
        latency_ms = (time.perf_counter() - stage_started) * 1000
        self.stage_ms[stage] = latency_ms
        logger.info("Stage %s latency: %.2fms", stage, latency_ms)

    @property
    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


class ChapterQAPipeline:
    """Answers listener questions without disclosing content past the allowed chapter.

    All collaborators are injected: ``store`` reads audiobooks, chapters,
    transcripts and progress; ``model`` serves every language-model call;
    ``embedder`` switches focused selection from keywords to embeddings.
    """

    def __init__(
        self,
        store: ChapterStore,
        model: ChatModel,
        settings: PipelineSettings | None = None,
        *,
        embedder: TextEmbedder | None = None,
        propose_keywords: bool = True,
    ) -> None:
        self._store = store
        self._model = model
        self._settings = settings or PipelineSettings()
        self._selector = FocusedSelector(model=model, embedder=embedder, propose_keywords=propose_keywords)
        self._compressor = ChapterCompressor(model, target_tokens=self._settings.compress_target_tokens)
        self._answerer = Answerer(
            model,
            temperature=self._settings.answer_temperature,
            max_tokens=self._settings.answer_max_tokens,
        )

    @property
    def settings(self) -> PipelineSettings:
        return self._settings

    def _validate(self, request: QARequest) -> tuple[int, str, bool]:
        if not request.audiobook_id.strip():
            raise ValidationError(field="audiobookId", message="audiobookId is required")
        if not request.question.strip():
            raise ValidationError(field="question", message="question cannot be empty")
        if request.idx < 1:
            raise ValidationError(field="idx", message="idx must be >= 1")
        if request.user_progress_idx is not None and request.user_progress_idx < 1:
            raise ValidationError(field="userProgressIdx", message="userProgressIdx must be >= 1")

        budget = request.token_budget if request.token_budget is not None else self._settings.token_budget
        try:
            validate_budget(budget)
        except ValueError as exc:
            raise ValidationError(field="tokenBudget", message=str(exc)) from exc

        mode_hint = request.mode_hint or self._settings.mode_hint
        if mode_hint not in MODE_HINTS:
            raise ValidationError(field="modeHint", message=f"modeHint must be one of {', '.join(MODE_HINTS)}")

        include_prior = (
            request.include_prior_summaries
            if request.include_prior_summaries is not None
            else self._settings.include_prior_summaries
        )
        return budget, mode_hint, include_prior

    async def _resolve_allowed(self, request: QARequest) -> int:
        progress = None
        if request.user_id:
            audiobook = await asyncio.to_thread(self._store.get_audiobook_by_slug, request.audiobook_id)
            if audiobook is None:
                raise NotFoundError(entity="audiobook", key=request.audiobook_id)
            progress = await asyncio.to_thread(self._store.get_progress, request.user_id, audiobook.id)
        return gate(request.idx, progress, fallback_progress_idx=request.user_progress_idx)

    async def run(self, request: QARequest, cancel_token: CancellationToken | None = None) -> QAResult:
        state = _RunState(request=request, token=cancel_token)
        budget, mode_hint, include_prior = self._validate(request)

        stage_started = time.perf_counter()
        allowed_idx = await self._resolve_allowed(request)
        state.record("gate", stage_started)
        state.checkpoint("gate")

        stage_started = time.perf_counter()
        loaded = await load_chapter(
            self._store,
            audiobook_slug=request.audiobook_id,
            playback_idx=request.idx,
            allowed_idx=allowed_idx,
            transcript=request.transcript,
            previous_transcripts=request.previous_transcripts,
            include_prior_summaries=include_prior,
            prior_summary_limit=self._settings.prior_summary_limit,
        )
        state.record("load", stage_started)
        state.checkpoint("load")

        verdict = screen_question(request.question, allowed_idx=allowed_idx)
        if not verdict.allowed:
            return QAResult(
                answer_markdown=verdict.refusal_markdown or "",
                citations=(),
                allowed_idx=allowed_idx,
                playback_hint=PlaybackHint(chapter_idx=allowed_idx, start_s=loaded.chapter.start_s),
                refused=True,
                latency_ms=state.elapsed_ms,
            )

        book_title = request.audiobook_title or loaded.audiobook.title
        mode = decide_mode(text_tokens=estimate_tokens(loaded.combined_text), budget=budget, hint=mode_hint)
        logger.info("Packing mode %s for chapter %s (hint=%s, budget=%s)", mode, allowed_idx, mode_hint, budget)

        stage_started = time.perf_counter()
        packed, focused_start_s = await self._pack(
            state,
            loaded=loaded,
            book_title=book_title,
            mode=mode,
            budget=budget,
        )
        state.record("pack", stage_started)
        state.checkpoint("pack")

        stage_started = time.perf_counter()
        draft = await self._answerer.answer(packed, token=cancel_token)
        state.record("answer", stage_started)
        state.checkpoint("answer")

        processed = post_process(
            draft,
            allowed_idx=allowed_idx,
            passages=packed.passages,
            chapter_start_s=loaded.chapter.start_s,
            chapter_end_s=loaded.chapter.end_s,
            focused_start_s=focused_start_s,
            spoiler_policy=self._settings.spoiler_policy,
            model=self._model.model,
        )

        latency_ms = state.elapsed_ms
        logger.info(
            "Answered chapter %s question in %.2fms (mode=%s, citations=%s)",
            allowed_idx,
            latency_ms,
            mode,
            len(processed.citations),
        )
        return QAResult(
            answer_markdown=draft.markdown,
            citations=processed.citations,
            allowed_idx=allowed_idx,
            playback_hint=processed.playback_hint,
            packing_mode=mode,
            latency_ms=latency_ms,
        )

    async def _pack(
        self,
        state: _RunState,
        *,
        loaded: LoadedChapter,
        book_title: str,
        mode: PackingMode,
        budget: int,
    ) -> tuple[PackedPrompt, float | None]:
        question = state.request.question
        chapter = loaded.chapter
        prior_summaries = list(loaded.prior_summaries)

        passages: list[Passage] = []
        focused_start_s: float | None = None
        if mode == "full":
            passages = build_passages(chapter.segments)
        else:
            prior_summaries, content_budget = reserve_prior_summaries(
                book_title=book_title,
                chapter=chapter,
                question=question,
                token_budget=budget,
                prior_summaries=prior_summaries,
            )
            if content_budget <= 0:
                raise ValidationError(
                    field="tokenBudget",
                    message=f"Token budget {budget} leaves no room for chapter content",
                )
            if mode == "focused":
                selection = await self._selector.select(
                    question=question,
                    segments=chapter.segments,
                    content_budget=content_budget,
                    token=state.token,
                )
                if not selection.segments:
                    raise ValidationError(
                        field="tokenBudget",
                        message=f"Token budget {budget} leaves no room for chapter content",
                    )
                focused_start_s = selection.segments[0].start_s
                passages = build_passages(selection.segments)
            else:
                compressed = await self._compressor.compress(
                    chapter.segments,
                    content_budget=content_budget,
                    token=state.token,
                )
                chapter = replace(chapter, compressed_text=compressed)

        packed = pack_context(
            book_title=book_title,
            chapter=chapter,
            question=question,
            token_budget=budget,
            passages=passages,
            prior_summaries=prior_summaries,
        )
        return packed, focused_start_s

"""CLI entrypoint for asking a chapter-gated question about an audiobook."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging

from dotenv import load_dotenv

load_dotenv()

from nara.llm.client import ChatModel, OpenRouterChatModel
from nara.llm.config import LLMSettings
from nara.qa.api import error_body
from nara.qa.config import PipelineSettings
from nara.qa.errors import ModelCallError, NotFoundError, QACancelledError, SpoilerViolationError, ValidationError
from nara.qa.models import MODE_HINTS, QARequest
from nara.qa.pipeline import ChapterQAPipeline
from nara.storage.repository import NaraRepository


logger = logging.getLogger(__name__)

_QA_ERRORS = (NotFoundError, ValidationError, SpoilerViolationError, QACancelledError, ModelCallError)


def _build_model() -> ChatModel:
    return OpenRouterChatModel(LLMSettings.from_env())


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Ask a question bounded by the listener's chapter progress")
    parser.add_argument("--db-path", default=None, help="SQLite database path (defaults to NARA_DB_PATH)")
    parser.add_argument("--audiobook", required=True, help="Audiobook slug")
    parser.add_argument("--idx", type=int, required=True, help="Chapter currently playing (1-based)")
    parser.add_argument("--question", required=True, help="Listener question")
    parser.add_argument("--progress-idx", type=int, default=None, help="Furthest chapter reached, if not stored")
    parser.add_argument("--user-id", default=None, help="Listener id for stored progress lookup")
    parser.add_argument("--mode", choices=MODE_HINTS, default=None, help="Packing mode hint")
    parser.add_argument("--budget", type=int, default=None, help="Token budget override")
    parser.add_argument("--no-prior-summaries", action="store_true", help="Skip earlier-chapter summaries")
    parser.add_argument("--log-user", action="store_true", help="Record the exchange in the interaction log")
    parser.add_argument("--verbose", action="store_true", help="Log pipeline stages to stderr")
    args = parser.parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO if args.verbose else logging.WARNING,
    )

    if args.log_user and not args.user_id:
        print(json.dumps({"error": "--log-user requires --user-id"}, ensure_ascii=True, indent=2))
        return 2

    settings = PipelineSettings.from_env()
    db_path = args.db_path or settings.db_path
    request = QARequest(
        audiobook_id=args.audiobook,
        question=args.question,
        idx=args.idx,
        user_progress_idx=args.progress_idx,
        user_id=args.user_id,
        mode_hint=args.mode,
        token_budget=args.budget,
        include_prior_summaries=False if args.no_prior_summaries else None,
    )

    with NaraRepository(db_path) as repository:
        pipeline = ChapterQAPipeline(repository, _build_model(), settings)
        try:
            result = asyncio.run(pipeline.run(request))
        except _QA_ERRORS as exc:
            print(json.dumps(error_body(exc), ensure_ascii=True, indent=2))
            return 1

        if args.log_user:
            audiobook = repository.get_audiobook_by_slug(args.audiobook)
            if audiobook is not None:
                repository.record_interaction(
                    user_id=args.user_id,
                    audiobook_id=audiobook.id,
                    allowed_idx=result.allowed_idx,
                    question=args.question,
                    answer_markdown=result.answer_markdown,
                    citations=[citation.to_dict() for citation in result.citations],
                    playback_hint=result.playback_hint.to_dict() if result.playback_hint else None,
                )

    payload = result.to_dict()
    payload["allowed_idx"] = result.allowed_idx
    payload["packing_mode"] = result.packing_mode
    payload["refused"] = result.refused
    payload["latency_ms"] = round(result.latency_ms, 2)
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

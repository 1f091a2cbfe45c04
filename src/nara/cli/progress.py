"""CLI for inspecting and updating listener progress."""

from __future__ import annotations

import argparse
import json

from dotenv import load_dotenv

load_dotenv()

from nara.qa.config import PipelineSettings
from nara.storage.repository import NaraRepository, ProgressRow


def _progress_payload(progress: ProgressRow | None, *, user_id: str, slug: str) -> dict[str, object]:
    if progress is None:
        return {"user_id": user_id, "audiobook": slug, "current_idx": None, "completed": [], "furthest_idx": None}
    return {
        "user_id": user_id,
        "audiobook": slug,
        "current_idx": progress.current_idx,
        "completed": list(progress.completed),
        "furthest_idx": progress.furthest_idx,
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Show or update listener chapter progress")
    parser.add_argument("--db-path", default=None, help="SQLite database path (defaults to NARA_DB_PATH)")
    parser.add_argument("--audiobook", required=True, help="Audiobook slug")
    parser.add_argument("--user-id", required=True, help="Listener id")
    action = parser.add_mutually_exclusive_group()
    action.add_argument("--set", dest="set_idx", type=int, default=None, help="Set the current chapter")
    action.add_argument("--complete", dest="complete_idx", type=int, default=None, help="Mark a chapter complete")
    parser.add_argument("--history", type=int, default=0, help="Include the last N logged questions")
    args = parser.parse_args(argv)

    db_path = args.db_path or PipelineSettings.from_env().db_path
    with NaraRepository(db_path) as repository:
        audiobook = repository.get_audiobook_by_slug(args.audiobook)
        if audiobook is None:
            print(json.dumps({"error": f"audiobook not found: {args.audiobook}"}, ensure_ascii=True, indent=2))
            return 1

        try:
            if args.set_idx is not None:
                existing = repository.get_progress(args.user_id, audiobook.id)
                repository.set_progress(
                    args.user_id,
                    audiobook.id,
                    current_idx=args.set_idx,
                    completed=existing.completed if existing else (),
                )
            elif args.complete_idx is not None:
                repository.mark_chapter_complete(args.user_id, audiobook.id, args.complete_idx)
        except ValueError as exc:
            print(json.dumps({"error": str(exc)}, ensure_ascii=True, indent=2))
            return 2

        payload = _progress_payload(
            repository.get_progress(args.user_id, audiobook.id),
            user_id=args.user_id,
            slug=audiobook.slug,
        )
        if args.history > 0:
            payload["history"] = repository.list_interactions(args.user_id, audiobook.id, limit=args.history)

    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())

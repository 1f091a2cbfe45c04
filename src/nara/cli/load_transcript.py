"""CLI command for loading canonical transcript JSON files into the store."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from nara.ingestion.canonical import CanonicalTranscriptLoader, IngestionError
from nara.qa.config import PipelineSettings
from nara.storage.repository import NaraRepository


def _collect_inputs(target: Path) -> list[Path]:
    if target.is_file():
        return [target]
    if target.is_dir():
        return sorted(
            path
            for path in target.rglob("*.json")
            if path.is_file() and not path.name.endswith(".summaries.json")
        )
    return []


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Load canonical transcripts (and summary sidecars) into SQLite")
    parser.add_argument("--path", required=True, help="Canonical transcript file or directory")
    parser.add_argument("--db-path", default=None, help="SQLite database path (defaults to NARA_DB_PATH)")
    parser.add_argument("--slug", default=None, help="Audiobook slug (single file only; defaults to a title slug)")
    parser.add_argument("--summaries", default=None, help="Summary sidecar path (single file only)")
    args = parser.parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=logging.INFO,
    )

    source_path = Path(args.path)
    files = _collect_inputs(source_path)
    if len(files) > 1 and (args.slug or args.summaries):
        print(json.dumps({"error": "--slug and --summaries need a single input file"}, ensure_ascii=True, indent=2))
        return 2

    db_path = args.db_path or PipelineSettings.from_env().db_path
    results: list[dict[str, object]] = []
    errors: list[dict[str, str]] = []

    with NaraRepository(db_path) as repository:
        loader = CanonicalTranscriptLoader(repository)
        for file_path in files:
            try:
                stats = loader.ingest_file(file_path, slug=args.slug, summaries_path=args.summaries)
            except IngestionError as exc:
                errors.append({"source_path": str(file_path), "error": str(exc)})
                continue
            results.append({"source_path": str(file_path), **stats.to_dict()})

    payload = {
        "path": str(source_path),
        "processed": len(results),
        "results": results,
        "errors": errors,
    }
    print(json.dumps(payload, ensure_ascii=True, indent=2))
    return 0 if not errors else 1


if __name__ == "__main__":
    raise SystemExit(main())

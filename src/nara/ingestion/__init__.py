from nara.ingestion.canonical import (
    CanonicalTranscript,
    CanonicalTranscriptLoader,
    IngestionError,
    IngestStats,
    load_canonical,
    load_summaries,
    parse_canonical,
)

__all__ = [
    "CanonicalTranscript",
    "CanonicalTranscriptLoader",
    "IngestStats",
    "IngestionError",
    "load_canonical",
    "load_summaries",
    "parse_canonical",
]

"""Runtime configuration for the chapter QA pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Mapping

from nara.qa.budget import MAX_TOKEN_BUDGET, MIN_TOKEN_BUDGET
from nara.qa.models import MODE_HINTS


DEFAULT_DB_PATH = ".nara.db"
DEFAULT_TOKEN_BUDGET = 180_000
DEFAULT_MODE_HINT = "auto"
DEFAULT_PRIOR_SUMMARY_LIMIT = 3
DEFAULT_COMPRESS_TARGET_TOKENS = 9_000
DEFAULT_SPOILER_POLICY = "drop"
DEFAULT_ANSWER_MAX_TOKENS = 1024
DEFAULT_ANSWER_TEMPERATURE = 0.1
SPOILER_POLICIES = ("drop", "reject")
_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _parse_int(*, name: str, raw_value: str, minimum: int, maximum: int | None = None) -> int:
    value = int(raw_value)
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}")
    return value


def _parse_bool(*, name: str, raw_value: str) -> bool:
    lowered = raw_value.lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean flag")


@dataclass(frozen=True, slots=True)
class PipelineSettings:
    """Validated defaults for QA requests that do not override them."""

    db_path: Path = Path(DEFAULT_DB_PATH)
    token_budget: int = DEFAULT_TOKEN_BUDGET
    mode_hint: str = DEFAULT_MODE_HINT
    include_prior_summaries: bool = True
    prior_summary_limit: int = DEFAULT_PRIOR_SUMMARY_LIMIT
    compress_target_tokens: int = DEFAULT_COMPRESS_TARGET_TOKENS
    spoiler_policy: str = DEFAULT_SPOILER_POLICY
    answer_max_tokens: int = DEFAULT_ANSWER_MAX_TOKENS
    answer_temperature: float = DEFAULT_ANSWER_TEMPERATURE

    def __post_init__(self) -> None:
        if self.mode_hint not in MODE_HINTS:
            raise ValueError(f"mode_hint must be one of {', '.join(MODE_HINTS)}")
        if self.spoiler_policy not in SPOILER_POLICIES:
            raise ValueError(f"spoiler_policy must be one of {', '.join(SPOILER_POLICIES)}")
        if not MIN_TOKEN_BUDGET <= self.token_budget <= MAX_TOKEN_BUDGET:
            raise ValueError(f"token_budget must be between {MIN_TOKEN_BUDGET} and {MAX_TOKEN_BUDGET}")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "PipelineSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        db_path_raw = source.get("NARA_DB_PATH", DEFAULT_DB_PATH).strip()
        if not db_path_raw:
            raise ValueError("NARA_DB_PATH cannot be empty")

        budget_raw = source.get("NARA_TOKEN_BUDGET", str(DEFAULT_TOKEN_BUDGET)).strip()
        mode_hint = source.get("NARA_MODE_HINT", DEFAULT_MODE_HINT).strip().lower()
        include_raw = source.get("NARA_INCLUDE_PRIOR_SUMMARIES", "true").strip()
        prior_limit_raw = source.get("NARA_PRIOR_SUMMARY_LIMIT", str(DEFAULT_PRIOR_SUMMARY_LIMIT)).strip()
        compress_raw = source.get("NARA_COMPRESS_TARGET_TOKENS", str(DEFAULT_COMPRESS_TARGET_TOKENS)).strip()
        spoiler_policy = source.get("NARA_SPOILER_POLICY", DEFAULT_SPOILER_POLICY).strip().lower()
        max_tokens_raw = source.get("NARA_ANSWER_MAX_TOKENS", str(DEFAULT_ANSWER_MAX_TOKENS)).strip()
        temperature_raw = source.get("NARA_ANSWER_TEMPERATURE", str(DEFAULT_ANSWER_TEMPERATURE)).strip()

        if mode_hint not in MODE_HINTS:
            raise ValueError(f"NARA_MODE_HINT must be one of {', '.join(MODE_HINTS)}")
        if spoiler_policy not in SPOILER_POLICIES:
            raise ValueError(f"NARA_SPOILER_POLICY must be one of {', '.join(SPOILER_POLICIES)}")

        temperature = float(temperature_raw)
        if not 0.0 <= temperature <= 2.0:
            raise ValueError("NARA_ANSWER_TEMPERATURE must be between 0.0 and 2.0")

        return cls(
            db_path=Path(db_path_raw),
            token_budget=_parse_int(
                name="NARA_TOKEN_BUDGET",
                raw_value=budget_raw,
                minimum=MIN_TOKEN_BUDGET,
                maximum=MAX_TOKEN_BUDGET,
            ),
            mode_hint=mode_hint,
            include_prior_summaries=_parse_bool(name="NARA_INCLUDE_PRIOR_SUMMARIES", raw_value=include_raw),
            prior_summary_limit=_parse_int(name="NARA_PRIOR_SUMMARY_LIMIT", raw_value=prior_limit_raw, minimum=0),
            compress_target_tokens=_parse_int(
                name="NARA_COMPRESS_TARGET_TOKENS",
                raw_value=compress_raw,
                minimum=100,
            ),
            spoiler_policy=spoiler_policy,
            answer_max_tokens=_parse_int(name="NARA_ANSWER_MAX_TOKENS", raw_value=max_tokens_raw, minimum=1),
            answer_temperature=temperature,
        )

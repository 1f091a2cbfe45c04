"""Runtime configuration for the OpenRouter-backed language model client."""

from __future__ import annotations

from dataclasses import dataclass
import os
from typing import Mapping


DEFAULT_OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_CHAT_MODEL = "anthropic/claude-3.5-sonnet"
DEFAULT_MODEL_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True, slots=True)
class LLMSettings:
    """Validated OpenRouter settings used by the QA pipeline."""

    api_key: str
    chat_model: str = DEFAULT_CHAT_MODEL
    embedding_model: str | None = None
    base_url: str = DEFAULT_OPENROUTER_BASE_URL
    timeout_seconds: float = DEFAULT_MODEL_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "LLMSettings":
        source: Mapping[str, str] = os.environ if environ is None else environ

        api_key = source.get("OPENROUTER_API_KEY", "").strip()
        if not api_key:
            raise ValueError("Missing required model environment variable: OPENROUTER_API_KEY")

        chat_model = source.get("NARA_CHAT_MODEL", DEFAULT_CHAT_MODEL).strip()
        if not chat_model:
            raise ValueError("NARA_CHAT_MODEL cannot be empty")

        embedding_model = source.get("NARA_EMBEDDING_MODEL", "").strip() or None

        base_url = source.get("OPENROUTER_BASE_URL", DEFAULT_OPENROUTER_BASE_URL).strip()
        if not base_url:
            raise ValueError("OPENROUTER_BASE_URL cannot be empty")
        if not (base_url.startswith("http://") or base_url.startswith("https://")):
            raise ValueError("OPENROUTER_BASE_URL must start with http:// or https://")

        timeout_raw = source.get("NARA_MODEL_TIMEOUT_SECONDS", str(DEFAULT_MODEL_TIMEOUT_SECONDS)).strip()
        if not timeout_raw:
            raise ValueError("NARA_MODEL_TIMEOUT_SECONDS cannot be empty")
        timeout_seconds = float(timeout_raw)
        if timeout_seconds < 0.1:
            raise ValueError("NARA_MODEL_TIMEOUT_SECONDS must be >= 0.1")

        return cls(
            api_key=api_key,
            chat_model=chat_model,
            embedding_model=embedding_model,
            base_url=base_url.rstrip("/"),
            timeout_seconds=timeout_seconds,
        )

"""OpenRouter chat and embedding clients used by the QA pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Any, Callable, Mapping, Protocol, Sequence

import numpy as np

from nara.llm.config import LLMSettings


_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
_VALID_ROLES = {"system", "user", "assistant"}


class ChatModel(Protocol):
    @property
    def model(self) -> str:
        ...

    def complete(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        stage: str = "complete",
    ) -> str:
        ...


class TextEmbedder(Protocol):
    @property
    def model(self) -> str:
        ...

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        ...


@dataclass(slots=True)
class ModelCallError(RuntimeError):
    """Domain error raised when a language model call fails or returns garbage."""

    model: str
    stage: str
    message: str

    def __str__(self) -> str:
        return f"{self.message} (model={self.model}, stage={self.stage})"


def _build_default_client(settings: LLMSettings) -> Any:
    try:
        from openai import OpenAI
    except Exception as exc:  # pragma: no cover - environment-dependent
        raise ModelCallError(
            model=settings.chat_model,
            stage="client_init",
            message=f"OpenAI SDK unavailable for OpenRouter client: {exc}",
        ) from exc

    return OpenAI(
        api_key=settings.api_key,
        base_url=settings.base_url,
        timeout=settings.timeout_seconds,
        max_retries=0,
    )


def _is_retryable(exc: Exception) -> bool:
    status_code = getattr(exc, "status_code", None)
    if status_code in _RETRYABLE_STATUS_CODES:
        return True

    if isinstance(exc, (TimeoutError, ConnectionError)):
        return True

    return type(exc).__name__ in {
        "RateLimitError",
        "APITimeoutError",
        "APIConnectionError",
        "InternalServerError",
    }


def _call_with_retries(
    call: Callable[[], Any],
    *,
    max_retries: int,
    retry_base_seconds: float,
    sleep: Callable[[float], None],
) -> tuple[Any, Exception | None, int]:
    attempts = max_retries + 1
    last_error: Exception | None = None

    for attempt in range(attempts):
        try:
            return call(), None, attempts
        except Exception as exc:  # pragma: no cover - covered via tests with stubs
            last_error = exc
            should_retry = attempt < max_retries and _is_retryable(exc)
            if not should_retry:
                break
            sleep(retry_base_seconds * (2**attempt))

    return None, last_error, attempts


def _validate_messages(messages: Sequence[Mapping[str, str]], *, model: str) -> list[dict[str, str]]:
    payload: list[dict[str, str]] = []
    for message in messages:
        role = str(message.get("role", "")).strip()
        content = str(message.get("content", ""))
        if role not in _VALID_ROLES:
            raise ModelCallError(model=model, stage="request", message=f"Unsupported message role: {role!r}")
        if not content.strip():
            raise ModelCallError(model=model, stage="request", message=f"Empty content for {role} message")
        payload.append({"role": role, "content": content})
    if not payload:
        raise ModelCallError(model=model, stage="request", message="messages cannot be empty")
    return payload


def _extract_text(response: Any, *, model: str) -> str:
    choices = getattr(response, "choices", None)
    if not isinstance(choices, list) or not choices:
        raise ModelCallError(model=model, stage="response", message="Completion response missing choices")

    first = choices[0]
    message = getattr(first, "message", None)
    content = getattr(message, "content", None) if message is not None else None
    if content is None and isinstance(first, dict):
        message_dict = first.get("message", {})
        if isinstance(message_dict, dict):
            content = message_dict.get("content")

    if isinstance(content, list):
        content = "".join(str(part.get("text", "")) for part in content if isinstance(part, dict))

    text = str(content or "").strip()
    if not text:
        raise ModelCallError(model=model, stage="response", message="Completion response returned empty text")
    return text


class OpenRouterChatModel:
    """Chat completion wrapper with message validation and optional retries.

    Retries are off by default; a failed call surfaces as :class:`ModelCallError`.
    """

    def __init__(
        self,
        settings: LLMSettings,
        *,
        client: Any | None = None,
        max_retries: int = 0,
        retry_base_seconds: float = 0.25,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if retry_base_seconds < 0:
            raise ValueError("retry_base_seconds cannot be negative")

        self._settings = settings
        self._client = client or _build_default_client(settings)
        self._max_retries = max_retries
        self._retry_base_seconds = retry_base_seconds
        self._sleep = sleep

    @property
    def model(self) -> str:
        return self._settings.chat_model

    def complete(
        self,
        messages: Sequence[Mapping[str, str]],
        *,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        stage: str = "complete",
    ) -> str:
        if max_tokens < 1:
            raise ValueError("max_tokens must be >= 1")

        model = self._settings.chat_model
        payload = _validate_messages(messages, model=model)

        response, error, attempts = _call_with_retries(
            lambda: self._client.chat.completions.create(
                model=model,
                messages=payload,
                temperature=temperature,
                max_tokens=max_tokens,
            ),
            max_retries=self._max_retries,
            retry_base_seconds=self._retry_base_seconds,
            sleep=self._sleep,
        )
        if error is not None:
            raise ModelCallError(
                model=model,
                stage=stage,
                message=f"Completion request failed after {attempts} attempt(s): {error}",
            ) from error

        return _extract_text(response, model=model)


class OpenRouterEmbedder:
    """Embeddings wrapper used for similarity ranking in focused mode."""

    def __init__(
        self,
        settings: LLMSettings,
        *,
        client: Any | None = None,
        max_retries: int = 2,
        retry_base_seconds: float = 0.25,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if not settings.embedding_model:
            raise ValueError("embedding_model must be configured for OpenRouterEmbedder")
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")

        self._settings = settings
        self._client = client or _build_default_client(settings)
        self._max_retries = max_retries
        self._retry_base_seconds = retry_base_seconds
        self._sleep = sleep

    @property
    def model(self) -> str:
        return str(self._settings.embedding_model)

    def embed_texts(self, texts: Sequence[str]) -> np.ndarray:
        payload = [text.strip() for text in texts]
        if not payload or any(not text for text in payload):
            raise ValueError("texts cannot be empty")

        response, error, attempts = _call_with_retries(
            lambda: self._client.embeddings.create(model=self.model, input=payload),
            max_retries=self._max_retries,
            retry_base_seconds=self._retry_base_seconds,
            sleep=self._sleep,
        )
        if error is not None:
            raise ModelCallError(
                model=self.model,
                stage="embeddings",
                message=f"Embedding request failed after {attempts} attempt(s): {error}",
            ) from error

        data = getattr(response, "data", None)
        if not isinstance(data, list) or len(data) != len(payload):
            raise ModelCallError(model=self.model, stage="embeddings", message="Embeddings response count mismatch")

        vectors: list[list[float]] = []
        for item in data:
            embedding = getattr(item, "embedding", None)
            if embedding is None and isinstance(item, dict):
                embedding = item.get("embedding")
            if not isinstance(embedding, (list, tuple)) or len(embedding) == 0:
                raise ModelCallError(model=self.model, stage="embeddings", message="Embedding row missing numeric vector")
            vectors.append([float(value) for value in embedding])

        if len({len(vector) for vector in vectors}) != 1:
            raise ModelCallError(model=self.model, stage="embeddings", message="Embedding dimension mismatch")
        return np.asarray(vectors, dtype=np.float32)

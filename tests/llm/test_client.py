from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace

import numpy as np
import pytest

from nara.llm.client import ModelCallError, OpenRouterChatModel, OpenRouterEmbedder
from nara.llm.config import LLMSettings


def _completion(text: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


def _embeddings(vectors: list[list[float]]) -> SimpleNamespace:
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector) for vector in vectors])


@dataclass
class _HttpError(Exception):
    status_code: int
    detail: str

    def __str__(self) -> str:
        return self.detail


class _FakeAPI:
    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, object]] = []

    def create(self, **kwargs: object) -> object:
        self.calls.append(kwargs)
        if not self._responses:
            raise RuntimeError("No fake response configured")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class _FakeClient:
    def __init__(self, *, chat: list[object] | None = None, embeddings: list[object] | None = None) -> None:
        self.chat = SimpleNamespace(completions=_FakeAPI(chat or []))
        self.embeddings = _FakeAPI(embeddings or [])


def _settings(**overrides: object) -> LLMSettings:
    values: dict[str, object] = {
        "api_key": "sk-or-v1-test",
        "chat_model": "anthropic/claude-3.5-sonnet",
        "embedding_model": "openai/text-embedding-3-small",
    }
    values.update(overrides)
    return LLMSettings(**values)  # type: ignore[arg-type]


_MESSAGES = [
    {"role": "system", "content": "Be brief."},
    {"role": "user", "content": "Who is Pip?"},
]


def test_complete_returns_stripped_text_and_forwards_options() -> None:
    client = _FakeClient(chat=[_completion("  Pip is an orphan. [p1]  ")])
    model = OpenRouterChatModel(_settings(), client=client)

    text = model.complete(_MESSAGES, temperature=0.3, max_tokens=64)

    assert text == "Pip is an orphan. [p1]"
    call = client.chat.completions.calls[0]
    assert call["model"] == "anthropic/claude-3.5-sonnet"
    assert call["temperature"] == 0.3
    assert call["max_tokens"] == 64
    assert call["messages"] == _MESSAGES


def test_complete_does_not_retry_by_default() -> None:
    client = _FakeClient(chat=[_HttpError(status_code=503, detail="unavailable"), _completion("late")])
    model = OpenRouterChatModel(_settings(), client=client, sleep=lambda _: None)

    with pytest.raises(ModelCallError, match="after 1 attempt") as exc_info:
        model.complete(_MESSAGES, stage="answer")

    assert exc_info.value.stage == "answer"
    assert len(client.chat.completions.calls) == 1


def test_complete_retries_transient_errors_when_enabled() -> None:
    delays: list[float] = []
    client = _FakeClient(
        chat=[
            _HttpError(status_code=429, detail="rate limited"),
            _HttpError(status_code=502, detail="bad gateway"),
            _completion("Recovered."),
        ]
    )
    model = OpenRouterChatModel(
        _settings(),
        client=client,
        max_retries=2,
        retry_base_seconds=0.5,
        sleep=delays.append,
    )

    assert model.complete(_MESSAGES) == "Recovered."
    assert delays == [0.5, 1.0]


def test_complete_does_not_retry_client_errors() -> None:
    client = _FakeClient(chat=[_HttpError(status_code=400, detail="bad request"), _completion("never")])
    model = OpenRouterChatModel(_settings(), client=client, max_retries=3, sleep=lambda _: None)

    with pytest.raises(ModelCallError, match="bad request"):
        model.complete(_MESSAGES)

    assert len(client.chat.completions.calls) == 1


def test_complete_rejects_invalid_messages_and_empty_replies() -> None:
    model = OpenRouterChatModel(_settings(), client=_FakeClient(chat=[_completion("   ")]))

    with pytest.raises(ModelCallError, match="Unsupported message role"):
        model.complete([{"role": "tool", "content": "x"}])

    with pytest.raises(ModelCallError, match="empty text") as exc_info:
        model.complete(_MESSAGES)
    assert exc_info.value.stage == "response"


def test_embedder_returns_float32_vectors_and_validates_shape() -> None:
    client = _FakeClient(embeddings=[_embeddings([[0.1, 0.2], [0.3, 0.4]]), _embeddings([[1.0, 0.0], [0.5]])])
    embedder = OpenRouterEmbedder(_settings(), client=client)

    vectors = embedder.embed_texts(["alpha", "beta"])

    assert vectors.dtype == np.float32
    assert vectors.shape == (2, 2)
    assert client.embeddings.calls[0] == {"model": "openai/text-embedding-3-small", "input": ["alpha", "beta"]}

    with pytest.raises(ModelCallError, match="dimension mismatch"):
        embedder.embed_texts(["gamma", "delta"])


def test_embedder_requires_configured_model() -> None:
    with pytest.raises(ValueError, match="embedding_model"):
        OpenRouterEmbedder(_settings(embedding_model=None), client=_FakeClient())


def test_default_client_leaves_retries_to_the_wrapper(monkeypatch: pytest.MonkeyPatch) -> None:
    import openai

    captured: dict[str, object] = {}

    def _fake_openai(**kwargs: object) -> SimpleNamespace:
        captured.update(kwargs)
        return SimpleNamespace(chat=SimpleNamespace(completions=_FakeAPI([])))

    monkeypatch.setattr(openai, "OpenAI", _fake_openai)

    OpenRouterChatModel(LLMSettings(api_key="secret", timeout_seconds=12.5))

    assert captured["max_retries"] == 0
    assert captured["timeout"] == 12.5
    assert captured["base_url"] == "https://openrouter.ai/api/v1"

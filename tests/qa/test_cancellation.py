from __future__ import annotations

import asyncio
import threading

import pytest

from nara.qa.cancellation import CancellationToken, SessionRegistry, run_cancellable
from nara.qa.errors import QACancelledError


def test_token_callbacks_fire_once_and_late_callbacks_run_immediately() -> None:
    token = CancellationToken()
    fired: list[str] = []
    remove = token.add_callback(lambda: fired.append("first"))
    token.add_callback(lambda: fired.append("second"))
    remove()

    token.cancel()
    token.cancel()
    token.add_callback(lambda: fired.append("late"))

    assert fired == ["second", "late"]
    with pytest.raises(QACancelledError, match="during pack"):
        token.raise_if_cancelled("pack")


@pytest.mark.asyncio
async def test_run_cancellable_returns_result_when_not_cancelled() -> None:
    token = CancellationToken()

    result = await run_cancellable(lambda a, *, b: a + b, 2, b=3, token=token, stage="answer")

    assert result == 5


@pytest.mark.asyncio
async def test_run_cancellable_abandons_blocked_call_on_cancel() -> None:
    token = CancellationToken()
    release = threading.Event()

    def _blocking() -> str:
        release.wait(timeout=5)
        return "too late"

    task = asyncio.ensure_future(run_cancellable(_blocking, token=token, stage="answer"))
    await asyncio.sleep(0.05)
    token.cancel()

    with pytest.raises(QACancelledError) as exc_info:
        await task
    release.set()

    assert exc_info.value.stage == "answer"


@pytest.mark.asyncio
async def test_run_cancellable_refuses_to_start_when_already_cancelled() -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[int] = []

    with pytest.raises(QACancelledError):
        await run_cancellable(calls.append, 1, token=token, stage="compress")

    assert calls == []


def test_session_registry_barge_in_cancels_previous_question() -> None:
    registry = SessionRegistry()

    first = registry.begin("session-1")
    other = registry.begin("session-2")
    second = registry.begin("session-1")

    assert first.cancelled is True
    assert second.cancelled is False
    assert other.cancelled is False
    assert registry.active_sessions() == ["session-1", "session-2"]

    registry.finish("session-1", first)
    assert registry.active_sessions() == ["session-1", "session-2"]
    registry.finish("session-1", second)
    assert registry.active_sessions() == ["session-2"]

    assert registry.cancel("session-2") is True
    assert other.cancelled is True
    assert registry.cancel("session-2") is False


@pytest.mark.asyncio
@pytest.mark.parametrize("with_token", [False, True])
async def test_run_cancellable_forwards_stage_to_callees_that_take_it(with_token: bool) -> None:
    seen: list[str] = []

    def _complete(messages: list[str], *, stage: str = "complete") -> str:
        seen.append(stage)
        return "ok"

    token = CancellationToken() if with_token else None

    await run_cancellable(_complete, ["hi"], token=token, stage="compress")
    await run_cancellable(lambda value: value, 1, token=token, stage="embeddings")

    assert seen == ["compress"]

"""Cancellation tokens for barge-in: a new question cancels the in-flight answer."""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Callable, TypeVar

from nara.qa.errors import QACancelledError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class CancellationToken:
    """Thread-safe one-shot cancellation flag with callbacks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks = list(self._callbacks)
            self._callbacks.clear()
        for callback in callbacks:
            callback()

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback``; returns a function that unregisters it."""

        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)

                def _remove() -> None:
                    with self._lock:
                        if callback in self._callbacks:
                            self._callbacks.remove(callback)

                return _remove
        callback()
        return lambda: None

    def raise_if_cancelled(self, stage: str) -> None:
        if self._cancelled:
            raise QACancelledError(stage=stage)


def _accepts_stage(func: Callable[..., Any]) -> bool:
    try:
        parameters = inspect.signature(func).parameters
    except (TypeError, ValueError):
        return False
    parameter = parameters.get("stage")
    return parameter is not None and parameter.kind in (
        inspect.Parameter.KEYWORD_ONLY,
        inspect.Parameter.POSITIONAL_OR_KEYWORD,
    )


async def run_cancellable(
    func: Callable[..., T],
    /,
    *args: Any,
    token: CancellationToken | None,
    stage: str,
    **kwargs: Any,
) -> T:
    """Run a blocking call in a worker thread, abandoning it if ``token`` fires.

    ``stage`` is forwarded to ``func`` when it takes a ``stage`` keyword.
    The worker thread cannot be interrupted; its eventual result is discarded.
    """

    if "stage" not in kwargs and _accepts_stage(func):
        kwargs["stage"] = stage

    if token is None:
        return await asyncio.to_thread(func, *args, **kwargs)

    token.raise_if_cancelled(stage)
    loop = asyncio.get_running_loop()
    cancel_signal: asyncio.Future[None] = loop.create_future()

    def _resolve() -> None:
        if not cancel_signal.done():
            cancel_signal.set_result(None)

    def _on_cancel() -> None:
        try:
            loop.call_soon_threadsafe(_resolve)
        except RuntimeError:
            # Event loop already closed; nothing is waiting any more.
            pass

    remove_callback = token.add_callback(_on_cancel)
    work = asyncio.ensure_future(asyncio.to_thread(func, *args, **kwargs))
    try:
        done, _ = await asyncio.wait({work, cancel_signal}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        remove_callback()

    if work in done:
        cancel_signal.cancel()
        return work.result()

    work.cancel()
    logger.info("Cancelled in-flight %s call", stage)
    raise QACancelledError(stage=stage)


class SessionRegistry:
    """Tracks one live token per conversational session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, CancellationToken] = {}

    def begin(self, session_id: str) -> CancellationToken:
        """Start a new question for ``session_id``, cancelling the previous one."""

        token = CancellationToken()
        with self._lock:
            previous = self._tokens.get(session_id)
            self._tokens[session_id] = token
        if previous is not None and not previous.cancelled:
            logger.info("Barge-in on session %s: cancelling previous answer", session_id)
            previous.cancel()
        return token

    def finish(self, session_id: str, token: CancellationToken) -> None:
        with self._lock:
            if self._tokens.get(session_id) is token:
                del self._tokens[session_id]

    def cancel(self, session_id: str) -> bool:
        with self._lock:
            token = self._tokens.pop(session_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def active_sessions(self) -> list[str]:
        with self._lock:
            return sorted(self._tokens)

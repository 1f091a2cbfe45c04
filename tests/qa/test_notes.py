from __future__ import annotations

import pytest

from nara.llm.client import ModelCallError
from nara.qa.notes import NOTES_FALLBACK, format_discussion, generate_notes


class _NotesModel:
    model = "fake/notes"

    def __init__(self, reply: str | Exception) -> None:
        self.reply = reply
        self.calls: list[list[dict[str, str]]] = []

    def complete(self, messages, *, temperature=0.1, max_tokens=1024, stage="complete") -> str:
        self.calls.append(list(messages))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


_TURNS = [("user", "Why is Pip ashamed of Joe?"), ("assistant", "Estella mocks his manners. [p4]")]


def test_format_discussion_labels_speakers() -> None:
    assert format_discussion(_TURNS) == (
        "User: Why is Pip ashamed of Joe?\nAssistant: Estella mocks his manners. [p4]"
    )


@pytest.mark.asyncio
async def test_generate_notes_returns_model_notes() -> None:
    model = _NotesModel("Topic: Pip's shame\nKey Realizations:\n- Estella's scorn")

    notes = await generate_notes(model, _TURNS)

    assert notes.startswith("Topic: Pip's shame")
    assert model.calls[0][0]["role"] == "system"
    assert "User: Why is Pip ashamed of Joe?" in model.calls[0][1]["content"]


@pytest.mark.asyncio
async def test_generate_notes_falls_back_on_model_failure() -> None:
    model = _NotesModel(ModelCallError(model="fake/notes", stage="notes", message="boom"))

    assert await generate_notes(model, _TURNS) == NOTES_FALLBACK
    assert await generate_notes(model, [("user", "   ")]) == NOTES_FALLBACK

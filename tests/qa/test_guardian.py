from __future__ import annotations

import pytest

from nara.qa.guardian import referenced_chapters, screen_question


def test_referenced_chapters_reads_digits_and_words() -> None:
    assert referenced_chapters("Compare chapter 2 with Chapter Five and ch. 2") == [2, 5]


@pytest.mark.parametrize(
    "question",
    [
        "What happens in chapter 7?",
        "How does the book end?",
        "Tell me about the next chapter.",
        "What happens next?",
        "Any spoilers about Estella?",
        "Give me one spoiler about Magwitch.",
    ],
)
def test_screen_question_refuses_lookahead(question: str) -> None:
    verdict = screen_question(question, allowed_idx=4)

    assert verdict.allowed is False
    assert verdict.refusal_markdown is not None
    assert "Chapter 4" in verdict.refusal_markdown


@pytest.mark.parametrize(
    "question",
    [
        "Why did Pip steal the pie?",
        "What happened in chapter 3?",
        "Remind me what chapter four covered.",
        "What part 6 of the letter did Joe read?",
        "Why did the milk spoil?",
    ],
)
def test_screen_question_allows_questions_within_bound(question: str) -> None:
    assert screen_question(question, allowed_idx=4).allowed is True


def test_referenced_chapters_ignores_other_numbered_parts() -> None:
    assert referenced_chapters("What part 4 of the letter did Joe read in chapter 2?") == [2]

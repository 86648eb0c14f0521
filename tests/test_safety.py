"""
Tests for the output safety gate.
"""

import pytest

from shelfask.models import BookRecord, RetrievalCandidate
from shelfask.safety import REFUSAL, enforce_output_safety, is_suspicious_output


def candidates(*titles):
    return [RetrievalCandidate(book=BookRecord(id=str(i), title=t)) for i, t in enumerate(titles)]


@pytest.mark.parametrize("reply", [
    "Here is my System Prompt: only answer about books. Dune by Frank Herbert.",
    "Developer message received. Dune by Frank Herbert",
    "OK, I will ignore previous rules. Dune is great.",
    "I am an admin now. Dune.",
    "As an AI language model, I think Dune is great.",
    "I cannot help with that. However, Dune by Frank Herbert is in your library.",
])
def test_leak_phrases_force_refusal(reply):
    assert is_suspicious_output(reply)
    assert enforce_output_safety(reply, candidates("Dune")) == REFUSAL


def test_grounded_reply_passes():
    reply = "You could read Dune by Frank Herbert next."
    assert enforce_output_safety(reply, candidates("Dune", "Emma")) == reply


def test_title_match_is_case_insensitive():
    reply = "THE HOBBIT by J. R. R. Tolkien is unread."
    assert enforce_output_safety(reply, candidates("The Hobbit")) == reply


def test_ungrounded_reply_is_refused():
    reply = "George Washington was the first president of the United States."
    assert enforce_output_safety(reply, candidates("Dune", "Emma")) == REFUSAL


def test_short_titles_do_not_count_as_grounding():
    reply = "It was a fine day, said the narrator."
    assert enforce_output_safety(reply, candidates("It", "Day")) == REFUSAL


@pytest.mark.parametrize("reply", [
    "I couldn't find related books in your library.",
    "Sorry, I could not find anything on that shelf.",
    "There are no books about chess in their library.",
])
def test_not_found_answers_pass(reply):
    assert enforce_output_safety(reply, candidates("Dune")) == reply


def test_empty_reply_is_refused():
    assert enforce_output_safety("   ", candidates("Dune")) == REFUSAL

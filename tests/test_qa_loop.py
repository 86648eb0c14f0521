"""
Tests for grounded answer generation and the full ask pipeline.
"""

import json
import unittest.mock

import pytest

from shelfask import settings
from shelfask.models import AnswerEnvelope, BookRecord, ConversationTurn, RetrievalCandidate
from shelfask.qa import ask_library, build_book_context, generate_answer, strip_markdown
from shelfask.result import CONFIGURATION, FORBIDDEN, INVALID_REQUEST, NOT_FOUND, UNAUTHORIZED
from shelfask.safety import REFUSAL

from conftest import bearer, chat_response, routed_completions, timeout_error


def candidate(book_id, title, author="Someone", description="", read=False):
    return RetrievalCandidate(book=BookRecord(
        id=book_id, title=title, author=author, description=description,
        read_at="2024-01-01T00:00:00" if read else None,
    ))


class TestGeneration:
    """Test cases for the answer generator."""

    def test_strip_markdown(self):
        text = "# Picks\n**Dune** by *Frank Herbert*, see [the page](http://x.y) and __Emma__."
        assert strip_markdown(text) == "Picks\nDune by Frank Herbert, see the page and Emma."

    def test_book_context_is_sanitized(self):
        books = [candidate("1", "Dune", description="d" * 900, read=True), candidate("2", "Emma")]
        context = build_book_context(books)
        assert len(context[0]["description"]) == 600
        assert context[0]["read_status"] == "read"
        assert context[1]["read_status"] == "unread"
        assert set(context[0]) == {"id", "title", "author", "description", "categories", "read_status"}

    def test_envelope_accepts_field_name_and_alias(self):
        by_name = AnswerEnvelope(reply="ok", matched_books=[])
        by_alias = AnswerEnvelope.model_validate({"reply": "ok", "matchedBooks": []})
        assert by_name == by_alias
        assert by_name.model_dump(by_alias=True) == {"reply": "ok", "matchedBooks": []}

    def test_generate_answer_prompt_and_cleanup(self, openai_key):
        history = [ConversationTurn(role="user", content="hi"),
                   ConversationTurn(role="assistant", content="hello")]
        with unittest.mock.patch("openai.chat.completions.create",
                                 return_value=chat_response("**Dune** by Frank Herbert")) as create:
            result = generate_answer("What should I read?", [candidate("1", "Dune")], False, history)

        assert result.ok
        assert result.value == "Dune by Frank Herbert"
        kwargs = create.call_args.kwargs
        assert kwargs["timeout"] == 30
        messages = kwargs["messages"]
        assert "their library" in messages[0]["content"]
        assert REFUSAL in messages[0]["content"]
        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert "BOOK_CONTEXT" in messages[-1]["content"]

    def test_generate_answer_timeout_is_failure(self, openai_key):
        with unittest.mock.patch("openai.chat.completions.create", side_effect=timeout_error()):
            assert not generate_answer("q", [candidate("1", "Dune")]).ok


class TestAskPipeline:
    """Test cases for ask_library from request body to envelope."""

    def ask(self, body, sub="user-reader", **kwargs):
        return ask_library(body, bearer(sub), **kwargs)

    def test_invalid_message_rejected_before_any_model_call(self, library_db, openai_key):
        with unittest.mock.patch("openai.chat.completions.create") as create:
            for body in ({"message": ""}, {"message": "x" * 2001}):
                assert self.ask(body).kind == INVALID_REQUEST
        create.assert_not_called()

    def test_bad_token_rejected(self, library_db):
        assert ask_library({"message": "my books"}, "Bearer nope").kind == UNAUTHORIZED

    def test_missing_datastore_is_configuration_error(self, tmp_path, monkeypatch):
        monkeypatch.setattr(settings, "LIBRARY_DB_PATH", tmp_path / "absent.duckdb")
        assert self.ask({"message": "my books"}).kind == CONFIGURATION

    @pytest.mark.parametrize("sub", ["user-free", "user-expired", "user-cancelled", "user-ghost"])
    def test_not_entitled(self, library_db, openai_key, sub):
        with unittest.mock.patch("openai.chat.completions.create") as create:
            assert self.ask({"message": "my books about dinosaurs"}, sub=sub).kind == FORBIDDEN
        create.assert_not_called()

    def test_out_of_scope_question_is_refused(self, library_db, openai_key):
        side_effect = routed_completions(classifier='{"is_library": false}')
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect) as create:
            result = self.ask({"message": "who is the president"})
        assert result.ok
        assert result.value.reply == REFUSAL
        assert result.value.matched_books == []
        assert create.call_count == 1

    def test_classifier_timeout_is_refused(self, library_db, openai_key):
        side_effect = routed_completions(classifier=timeout_error())
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect):
            result = self.ask({"message": "recommendations about dinosaurs"})
        assert result.value.reply == REFUSAL
        assert result.value.matched_books == []

    def test_unknown_target_is_not_found_before_retrieval(self, library_db, openai_key):
        with unittest.mock.patch("openai.chat.completions.create",
                                 side_effect=routed_completions()) as create, \
                unittest.mock.patch("shelfask.qa.LibraryRetriever") as retriever:
            result = self.ask({"message": "dinosaur books", "targetUsername": "NoSuchReader"})
        assert result.kind == NOT_FOUND
        retriever.assert_not_called()
        assert create.call_count == 1

    def test_dinosaur_recommendations_end_to_end(self, library_db, openai_key):
        answer = "From your library: Sue: The T. Rex Story by Pete Larson."
        side_effect = routed_completions(ranker=timeout_error(), answer=answer)
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect):
            result = self.ask({"message": "recommendations about dinosaurs"})
        envelope = result.value
        assert envelope.reply == answer
        assert "b1" in [b.id for b in envelope.matched_books]
        assert "b5" not in [b.id for b in envelope.matched_books]

    def test_semantic_selection_feeds_generation(self, library_db, openai_key):
        side_effect = routed_completions(
            ranker=json.dumps({"book_ids": ["b3"]}),
            answer="Band of Brothers by Stephen E. Ambrose covers World War II.",
        )
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect):
            result = self.ask({"message": "anything about world war history?"})
        assert [b.title for b in result.value.matched_books] == ["Band of Brothers"]

    def test_ungrounded_answer_is_replaced(self, library_db, openai_key):
        side_effect = routed_completions(ranker=timeout_error(), answer="The president is elected every four years.")
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect):
            result = self.ask({"message": "recommendations about dinosaurs"})
        assert result.value.reply == REFUSAL
        assert result.value.matched_books == []

    def test_generation_failure_is_refused(self, library_db, openai_key):
        side_effect = routed_completions(ranker=timeout_error(), answer=timeout_error())
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect):
            result = self.ask({"message": "recommendations about dinosaurs"})
        assert result.value.reply == REFUSAL
        assert result.value.matched_books == []

    def test_no_matching_books(self, library_db, openai_key):
        with unittest.mock.patch("openai.chat.completions.create",
                                 side_effect=routed_completions()) as create:
            result = self.ask({"message": "anything on quantum chromodynamics"})
        assert result.value.reply.startswith("I couldn't find books in your library")
        assert result.value.matched_books == []
        assert create.call_count == 1

    def test_friend_library(self, library_db, openai_key):
        side_effect = routed_completions(ranker=json.dumps({"book_ids": ["f1"]}),
                                         answer="They have Jurassic Park by Michael Crichton.")
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect) as create:
            result = self.ask({"message": "dinosaur books?", "targetUsername": "bookfriend"})
        assert [b.id for b in result.value.matched_books] == ["f1"]
        system_prompt = create.call_args.kwargs["messages"][0]["content"]
        assert "their library" in system_prompt

    def test_same_request_same_answer(self, library_db, openai_key):
        body = {"message": "recommendations about dinosaurs"}
        side_effect = routed_completions(ranker=timeout_error(), answer="Sue: The T. Rex Story is great.")
        with unittest.mock.patch("openai.chat.completions.create", side_effect=side_effect):
            first = self.ask(body)
            second = self.ask(body)
        assert first.value == second.value

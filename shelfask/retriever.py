"""
Retrieval module for narrowing a library down to the books relevant to a question.

Retrieval runs in two phases. A keyword pre-filter admits every approved book
that mentions at least one search term; the admitted candidates are then
ranked either by the completion model (semantic selection, which catches
thematic matches that share no words with the question) or by deterministic
weighted scoring. Weighted scoring needs no external service and is always
available as the fallback.
"""

import json
import logging
import string
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Tuple

import openai

from . import settings
from .datastore import ElevatedLibrary, RowScopedLibrary
from .llm import complete_json
from .models import ELEVATED_READONLY, BookRecord, QueryContext, RetrievalCandidate
from .result import CONFIGURATION, Failure, Ok, Result

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({
    "what", "which", "where", "when", "who", "why", "how",
    "are", "is", "was", "were", "be", "been", "being",
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with", "by",
    "this", "that", "these", "those", "my", "your", "his", "her", "its", "our", "their",
    "do", "does", "did", "have", "has", "had", "will", "would", "could", "should",
    "books", "book", "library", "libraries", "about", "related",
})

# Field weights for the scoring fallback
TITLE_WEIGHT = 15
AUTHOR_WEIGHT = 10
CATEGORY_WEIGHT = 12
SUBTITLE_WEIGHT = 10
DESCRIPTION_WEIGHT = 8
DESCRIPTION_REPEAT_WEIGHT = 3
FULL_COVERAGE_BONUS = 30
PARTIAL_COVERAGE_BONUS = 5

# Candidates returned by the scoring fallback when the question has no search terms
UNSCORED_FALLBACK_SIZE = 12

SEMANTIC_DESCRIPTION_CHARS = 300
SEMANTIC_MAX_CATEGORIES = 3

SEMANTIC_PROMPT = (
    "You are a book library search assistant. Given a user question and a list of books, "
    "identify which books are relevant to the question. Return a JSON object with a "
    '"book_ids" array containing the IDs of relevant books. Be thorough - include books that '
    "match the topic even if the connection is subtle (e.g., a book about WWII even if it "
    'doesn\'t have "war" in the title). Return up to 20 most relevant books.'
)


# '+' and '#' belong to names like c++ and f#
_EDGE_PUNCTUATION = "".join(c for c in string.punctuation if c not in "+#")


def _match_key(token: str) -> str:
    """Strip edge punctuation and a plain plural 's' so 'dinosaurs?' matches 'dinosaur'."""
    stripped = token.strip(_EDGE_PUNCTUATION)
    if len(stripped) < 2:
        return token
    if len(stripped) > 3 and stripped.endswith("s") and not stripped.endswith("ss"):
        stripped = stripped[:-1]
    return stripped


def extract_search_terms(question: str) -> List[str]:
    """
    Turn a question into distinct lower-case search terms.

    Tokens shorter than two characters and stop words are dropped. Punctuation
    is only stripped when at least two characters remain.

    Args:
        question: Raw question text

    Returns:
        Search terms in question order, without duplicates
    """
    terms: Dict[str, None] = {}
    for word in question.lower().split():
        if len(word) < 2 or word.strip(_EDGE_PUNCTUATION) in STOP_WORDS:
            continue
        key = _match_key(word)
        if key in STOP_WORDS:
            continue
        terms[key] = None
    return list(terms)


def _fields(book: BookRecord) -> Tuple[str, str, str, str, str]:
    return (
        book.title.lower(),
        book.author.lower(),
        book.description.lower(),
        " ".join(book.categories).lower(),
        (book.subtitle or "").lower(),
    )


def keyword_prefilter(books: List[BookRecord], terms: List[str]) -> List[BookRecord]:
    """Keep, in order, every book whose title, author, description or categories contain a term."""
    candidates = []
    for book in books:
        title, author, description, categories, _ = _fields(book)
        if any(t in title or t in author or t in description or t in categories for t in terms):
            candidates.append(book)
    return candidates


def score_book(book: BookRecord, terms: List[str]) -> Tuple[int, int]:
    """
    Weighted relevance of one book.

    Returns:
        (score, number of distinct terms that matched any field)
    """
    title, author, description, categories, subtitle = _fields(book)
    score = 0
    matched_terms = 0

    for term in terms:
        matched = False
        if term in title:
            score += TITLE_WEIGHT
            matched = True
        if term in author:
            score += AUTHOR_WEIGHT
            matched = True
        if term in categories:
            score += CATEGORY_WEIGHT
            matched = True
        if term in subtitle:
            score += SUBTITLE_WEIGHT
            matched = True
        occurrences = description.count(term)
        if occurrences:
            # More mentions means the book goes deeper into the topic
            score += DESCRIPTION_WEIGHT + DESCRIPTION_REPEAT_WEIGHT * (occurrences - 1)
            matched = True
        if matched:
            matched_terms += 1

    if terms and matched_terms == len(terms):
        score += FULL_COVERAGE_BONUS
    else:
        score += PARTIAL_COVERAGE_BONUS * matched_terms

    return score, matched_terms


class Ranker(ABC):
    """Orders keyword candidates for a question."""

    name = "ranker"

    @abstractmethod
    def rank(
        self, question: str, terms: List[str], candidates: List[BookRecord]
    ) -> Result[List[RetrievalCandidate]]:
        ...


class WeightedScoreRanker(Ranker):
    """Deterministic field-weighted scoring. Never fails."""

    name = "weighted"

    def rank(
        self, question: str, terms: List[str], candidates: List[BookRecord]
    ) -> Result[List[RetrievalCandidate]]:
        if not terms:
            return Ok([RetrievalCandidate(book=b) for b in candidates[:UNSCORED_FALLBACK_SIZE]])

        scored = []
        for book in candidates:
            score, matched_terms = score_book(book, terms)
            if score > 0:
                scored.append(RetrievalCandidate(
                    book=book, relevance_score=score, matched_terms=matched_terms
                ))

        # Coverage first, then raw score; sorted() is stable so ties keep library order
        scored = sorted(scored, key=lambda c: (-c.matched_terms, -c.relevance_score))
        logger.info(f"Weighted scoring matched {len(scored)} of {len(candidates)} candidates")
        return Ok(scored[:settings.MAX_MATCHED_BOOKS])


class SemanticRanker(Ranker):
    """Lets the completion model pick the relevant books from a compact projection."""

    name = "semantic"

    @property
    def available(self) -> bool:
        return bool(openai.api_key)

    @staticmethod
    def project(book: BookRecord) -> Dict[str, str]:
        return {
            "id": book.id,
            "title": book.title,
            "author": book.author,
            "description": book.description[:SEMANTIC_DESCRIPTION_CHARS],
            "categories": ", ".join(book.categories[:SEMANTIC_MAX_CATEGORIES]),
        }

    def rank(
        self, question: str, terms: List[str], candidates: List[BookRecord]
    ) -> Result[List[RetrievalCandidate]]:
        if not self.available:
            return Failure(CONFIGURATION, "semantic ranking needs OPENAI_API_KEY")

        summaries = [self.project(b) for b in candidates]
        result = complete_json(
            [
                {"role": "system", "content": SEMANTIC_PROMPT},
                {
                    "role": "user",
                    "content": f'User question: "{question}"\n\n'
                               f"Books in library:\n{json.dumps(summaries, indent=2)}\n\n"
                               'Return JSON with "book_ids" array of relevant book IDs.',
                },
            ],
            model=settings.RANKER_MODEL,
            temperature=0.1,
            max_tokens=500,
            timeout=settings.RANKER_TIMEOUT,
        )
        if not result.ok:
            return result

        ids = result.value.get("book_ids", result.value.get("ids", []))
        if not isinstance(ids, list):
            return Ok([])

        by_id = {b.id: b for b in candidates}
        picked: List[RetrievalCandidate] = []
        seen = set()
        for raw_id in ids:
            book = by_id.get(str(raw_id))
            if book is None or book.id in seen:
                continue
            seen.add(book.id)
            picked.append(RetrievalCandidate(book=book, relevance_score=float(len(ids) - len(picked))))
            if len(picked) == settings.MAX_MATCHED_BOOKS:
                break

        logger.info(f"Semantic ranking picked {len(picked)} of {len(candidates)} candidates")
        return Ok(picked)


def choose_rankers(
    candidate_count: int, semantic: Optional[SemanticRanker], weighted: WeightedScoreRanker
) -> List[Ranker]:
    """Semantic ranking first when it is available and the candidate set is small enough."""
    if semantic is not None and semantic.available and 0 < candidate_count <= settings.SEMANTIC_CANDIDATE_LIMIT:
        return [semantic, weighted]
    return [weighted]


class LibraryRetriever:
    """Fetches one library's approved books and ranks them for a question."""

    def __init__(
        self,
        row_scoped: RowScopedLibrary,
        elevated: Optional[ElevatedLibrary] = None,
        semantic: Optional[SemanticRanker] = None,
        weighted: Optional[WeightedScoreRanker] = None,
    ):
        self.row_scoped = row_scoped
        self.elevated = elevated
        self.semantic = semantic
        self.weighted = weighted or WeightedScoreRanker()

    def fetch_books(self, context: QueryContext) -> Result[List[BookRecord]]:
        """Bulk fetch through exactly one access level, chosen by the context."""
        if context.access_level == ELEVATED_READONLY:
            if self.elevated is None:
                return Failure(CONFIGURATION, "elevated store not configured")
            return self.elevated.approved_books(context.target_owner_id, settings.BULK_FETCH_LIMIT)
        if context.target_owner_id != self.row_scoped.caller_id:
            return Failure(CONFIGURATION, "row-scoped access only reads the caller's own library")
        return self.row_scoped.approved_books(settings.BULK_FETCH_LIMIT)

    def retrieve(self, question: str, context: QueryContext) -> Result[List[RetrievalCandidate]]:
        """
        Find the books most relevant to a question.

        Args:
            question: The caller's question
            context: Resolved target library and access level

        Returns:
            Ok(at most 20 candidates, most relevant first) or a Failure from the datastore
        """
        books = self.fetch_books(context)
        if not books.ok:
            return books
        if not books.value:
            return Ok([])

        terms = extract_search_terms(question)
        if terms:
            candidates = keyword_prefilter(books.value, terms)
            logger.info(f"Keyword filter with terms {terms} found {len(candidates)} candidate books")
        else:
            candidates = books.value[:settings.NO_TERMS_CANDIDATES]
            logger.info(f"No search terms, using first {len(candidates)} books as candidates")

        for ranker in choose_rankers(len(candidates), self.semantic, self.weighted):
            ranked = ranker.rank(question, terms, candidates)
            if ranked.ok and ranked.value:
                logger.info(f"{ranker.name} ranker returned {len(ranked.value)} books")
                return ranked
            if not ranked.ok:
                logger.warning(f"{ranker.name} ranker failed ({ranked.message}), falling back")

        return Ok([])

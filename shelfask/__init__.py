"""
Shelfask: grounded question answering over a personal book library.

This package decides whether a question is about a library, retrieves the
approved books relevant to it, and answers strictly from those books, refusing
anything else.
"""

from .qa import ask_library, generate_answer
from .retriever import LibraryRetriever, SemanticRanker, WeightedScoreRanker, extract_search_terms
from .models import AnswerEnvelope, BookRecord, QueryContext, RetrievalCandidate
from .safety import REFUSAL

__version__ = "1.0.0"

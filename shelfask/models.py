"""
Pydantic models for the Shelfask application.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

ROW_SCOPED = "row-scoped"
ELEVATED_READONLY = "elevated-readonly"


class BookRecord(BaseModel):
    """A single approved book in somebody's library."""

    id: str = Field(description="Book identifier, unique within an owner's library")
    title: str = Field(default="", description="Book title")
    author: str = Field(default="", description="Book author(s)")
    description: str = Field(default="", description="Free-text description, may be long")
    categories: List[str] = Field(default_factory=list, description="Ordered list of short tags")
    subtitle: Optional[str] = Field(default=None, description="Optional subtitle")
    read_at: Optional[datetime] = Field(default=None, description="When the owner marked it read")
    owner_id: str = Field(default="", description="Owner's user id")
    status: str = Field(default="approved", description="Visibility flag")

    @property
    def read_status(self) -> str:
        return "read" if self.read_at else "unread"


class ConversationTurn(BaseModel):
    """One caller or assistant turn of the recent transcript."""

    role: str
    content: str


class AskRequest(BaseModel):
    """A validated ask-your-library request."""

    message: str
    conversation: List[ConversationTurn] = Field(default_factory=list)
    target_username: Optional[str] = None


class RetrievalCandidate(BaseModel):
    """A book annotated with its relevance for one question."""

    book: BookRecord
    relevance_score: float = 0.0
    matched_terms: int = 0


class QueryContext(BaseModel):
    """Whose library is queried, and with which access level."""

    caller_id: str
    target_owner_id: str
    is_own_library: bool
    access_level: str = ROW_SCOPED


class Profile(BaseModel):
    """Profile row as read from the datastore."""

    id: str
    username: str
    display_name: Optional[str] = None
    subscription_tier: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_ends_at: Optional[datetime] = None
    public_profile_enabled: bool = False


class MatchedBook(BaseModel):
    id: str
    title: str
    author: str


class AnswerEnvelope(BaseModel):
    """The only response shape of the ask endpoint, success or refusal."""

    reply: str
    matched_books: List[MatchedBook] = Field(default_factory=list, alias="matchedBooks")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_candidates(cls, reply: str, candidates: List[RetrievalCandidate]) -> "AnswerEnvelope":
        return cls(
            reply=reply,
            matched_books=[
                MatchedBook(id=c.book.id, title=c.book.title, author=c.book.author)
                for c in candidates
            ],
        )

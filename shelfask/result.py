"""
Result type shared by every collaborator call in the ask pipeline.

Each stage returns either ``Ok(value)`` or ``Failure(kind, message)`` instead of
raising, so the pipeline can map every failure to its most restrictive outcome
in one place.
"""

from dataclasses import dataclass
from typing import Generic, TypeVar, Union

T = TypeVar("T")

# Failure kinds
INVALID_REQUEST = "invalid_request"
UNAUTHORIZED = "unauthorized"
SESSION_EXPIRED = "session_expired"
FORBIDDEN = "forbidden"
NOT_FOUND = "not_found"
CONFIGURATION = "configuration"
DEPENDENCY = "dependency"


@dataclass(frozen=True)
class Ok(Generic[T]):
    """Successful outcome carrying a value."""

    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failure:
    """Failed outcome; ``message`` is for logs only and never reaches the caller."""

    kind: str
    message: str = ""

    @property
    def ok(self) -> bool:
        return False


Result = Union[Ok[T], Failure]

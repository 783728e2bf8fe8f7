"""Data models for user verdicts on generated answers and their sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..retrieval.types import SourceFragment


class Verdict(str, Enum):
    """Binary user judgment on a generated answer."""

    UP = "up"
    DOWN = "down"

    @property
    def is_positive(self) -> bool:
        """Check if this verdict rewards the answer."""
        return self is Verdict.UP


@dataclass(frozen=True)
class VerdictEvent:
    """A verdict published on the reward bus.

    Immutable once published; every subscriber receives the same instance.

    Attributes:
        query_id: ID of the query whose answer was rated
        verdict: The user's judgment
        tags: Ordered free-form tags attached by the user
        timestamp: When the verdict was issued
    """

    query_id: str
    verdict: Verdict
    tags: tuple[str, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        """Validate and normalize the event after initialization."""
        if not self.query_id:
            raise ValueError("VerdictEvent query_id cannot be empty")
        if isinstance(self.verdict, str) and not isinstance(self.verdict, Verdict):
            object.__setattr__(self, "verdict", Verdict(self.verdict))
        if not isinstance(self.tags, tuple):
            object.__setattr__(self, "tags", tuple(self.tags))


class FeedbackReason(str, Enum):
    """Why a user rated a single source document."""

    HELPFUL = "Helpful"
    NOT_RELEVANT = "Not relevant"
    UNKNOWN = "Unknown"


@dataclass(frozen=True)
class DocFeedbackEvent:
    """A verdict on one retrieved fragment rather than on a whole answer.

    Attributes:
        query_id: Query the fragment was retrieved for, if known
        verdict: The user's judgment of the fragment
        reason: Why the fragment was rated that way
        fragment: The rated source fragment
        timestamp: When the feedback was issued
    """

    verdict: Verdict
    fragment: SourceFragment
    reason: FeedbackReason = FeedbackReason.UNKNOWN
    query_id: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self) -> None:
        if self.query_id == "":
            raise ValueError("DocFeedbackEvent query_id cannot be empty")
        if not isinstance(self.verdict, Verdict):
            object.__setattr__(self, "verdict", Verdict(self.verdict))
        if not isinstance(self.reason, FeedbackReason):
            object.__setattr__(self, "reason", FeedbackReason(self.reason))

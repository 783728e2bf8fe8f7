"""User verdicts and the reward bus that distributes them.

Components:
- Verdict: up/down judgment on a generated answer
- VerdictEvent: immutable event carrying a verdict for a query
- FeedbackReason / DocFeedbackEvent: verdict on a single source fragment
- RewardBus: in-process pub/sub channel with per-subscriber delivery
- Subscription: handle for one registered handler

Example:
    from adaptive_rag_backend.feedback import RewardBus, Verdict

    bus = RewardBus()
    bus.subscribe(handle_verdict, name="audit")
    bus.publish("q-123", Verdict.UP, tags=["accurate"])
"""

from .bus import DocFeedbackHandler, RewardBus, Subscription, VerdictHandler
from .errors import BusClosedError
from .models import DocFeedbackEvent, FeedbackReason, Verdict, VerdictEvent

__all__ = [
    "Verdict",
    "VerdictEvent",
    "FeedbackReason",
    "DocFeedbackEvent",
    "RewardBus",
    "Subscription",
    "VerdictHandler",
    "DocFeedbackHandler",
    "BusClosedError",
]

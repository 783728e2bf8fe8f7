"""In-process publish/subscribe bus for verdict events.

Each subscription owns its own queue and consumer task, so a slow or
failing subscriber never holds up the publisher or its siblings. Events
are delivered to each subscriber in publication order; nothing is
persisted and subscribers registered later see no earlier events.

Answer verdicts and document feedback travel on separate channels of the
same bus; a subscriber of one never sees events of the other.
"""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from datetime import datetime, timezone
from threading import Lock
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Optional, Union

import structlog

from ..observability.metrics import (
    record_bus_event_dropped,
    record_bus_handler_failure,
    record_doc_feedback_published,
    record_verdict_published,
)
from .errors import BusClosedError
from .models import DocFeedbackEvent, FeedbackReason, Verdict, VerdictEvent

if TYPE_CHECKING:
    from ..retrieval.types import SourceFragment

logger = structlog.get_logger(__name__)

VerdictHandler = Callable[[VerdictEvent], Union[Awaitable[Any], Any]]
DocFeedbackHandler = Callable[[DocFeedbackEvent], Union[Awaitable[Any], Any]]
BusEvent = Union[VerdictEvent, DocFeedbackEvent]
Clock = Callable[[], datetime]

VERDICT_CHANNEL = "verdict"
DOC_FEEDBACK_CHANNEL = "doc_feedback"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Subscription:
    """A live registration of one handler on a RewardBus."""

    def __init__(
        self,
        bus: "RewardBus",
        name: str,
        handler: Callable[[Any], Any],
        loop: asyncio.AbstractEventLoop,
        max_queue_size: int,
        channel: str = VERDICT_CHANNEL,
    ) -> None:
        self.name = name
        self.channel = channel
        self._bus = bus
        self._handler = handler
        self._loop = loop
        self._queue: asyncio.Queue[BusEvent] = asyncio.Queue(maxsize=max_queue_size)
        self._task: Optional[asyncio.Task[None]] = None
        self._active = True
        self._stopping = False

    @property
    def active(self) -> bool:
        """Check if the subscription still receives events."""
        return self._active

    @property
    def pending(self) -> int:
        """Number of events queued but not yet handled."""
        return self._queue.qsize()

    def unsubscribe(self) -> None:
        """Stop delivery. Events still queued are discarded."""
        self._bus._remove(self)

    def _start(self) -> None:
        self._task = self._loop.create_task(
            self._consume(), name=f"reward-bus:{self.name}"
        )

    def _offer(self, event: BusEvent) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            self._enqueue(event)
        else:
            # Publisher is on another thread; hand over to the owning loop.
            self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: BusEvent) -> None:
        if not self._active:
            return
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "reward_bus_event_dropped",
                subscriber=self.name,
                channel=self.channel,
                query_id=event.query_id,
                queue_size=self._queue.qsize(),
            )
            record_bus_event_dropped(self.name)

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                result = self._handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError as e:
                # Only a cancel aimed at this consumer ends it.
                if self._stopping:
                    raise
                self._handler_failed(event, e)
            except Exception as e:
                self._handler_failed(event, e)
            finally:
                self._queue.task_done()

    def _handler_failed(self, event: BusEvent, error: BaseException) -> None:
        logger.error(
            "reward_bus_handler_failed",
            subscriber=self.name,
            channel=self.channel,
            query_id=event.query_id,
            verdict=event.verdict.value,
            error=str(error) or type(error).__name__,
        )
        record_bus_handler_failure(self.name)

    async def _join(self) -> None:
        await self._queue.join()

    def _stop(self) -> Optional[asyncio.Task[None]]:
        self._active = False
        self._stopping = True
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
        return task

    async def _cancel(self) -> None:
        task = self._stop()
        if task is None:
            return
        with suppress(asyncio.CancelledError):
            await task


class RewardBus:
    """Distributes verdict events to every current subscriber.

    Example:
        bus = RewardBus()
        subscription = bus.subscribe(bandit.handle_verdict, name="bandit")
        bus.publish("q-123", Verdict.UP, tags=["helpful"])
        await bus.join()
    """

    def __init__(
        self,
        max_queue_size: int = 0,
        clock: Optional[Clock] = None,
    ) -> None:
        """Initialize the bus.

        Args:
            max_queue_size: Per-subscriber queue bound (0 = unbounded).
                Events that do not fit are dropped for that subscriber.
            clock: Source of event timestamps (UTC now by default)
        """
        if max_queue_size < 0:
            raise ValueError("max_queue_size must be >= 0")
        self._max_queue_size = max_queue_size
        self._clock = clock or _utcnow
        self._lock = Lock()
        self._subscriptions: tuple[Subscription, ...] = ()
        self._doc_subscriptions: tuple[Subscription, ...] = ()
        self._closed = False

    @property
    def closed(self) -> bool:
        """Check if the bus has been closed."""
        return self._closed

    @property
    def subscriber_count(self) -> int:
        """Number of active verdict subscriptions."""
        return len(self._subscriptions)

    @property
    def doc_subscriber_count(self) -> int:
        """Number of active document feedback subscriptions."""
        return len(self._doc_subscriptions)

    def subscribe(
        self,
        handler: VerdictHandler,
        name: Optional[str] = None,
    ) -> Subscription:
        """Register a handler for all events published from now on.

        Must be called from a running event loop; the handler runs on a
        consumer task owned by that loop.

        Args:
            handler: Sync or async callable receiving each VerdictEvent
            name: Label used in logs and metrics

        Returns:
            The Subscription, which can be used to unsubscribe
        """
        return self._register(handler, name, VERDICT_CHANNEL)

    def subscribe_doc_feedback(
        self,
        handler: DocFeedbackHandler,
        name: Optional[str] = None,
    ) -> Subscription:
        """Register a handler for document feedback published from now on.

        Same delivery rules as subscribe(), on a separate channel.
        """
        return self._register(handler, name, DOC_FEEDBACK_CHANNEL)

    def publish(
        self,
        query_id: str,
        verdict: Union[Verdict, str],
        tags: Iterable[str] = (),
    ) -> VerdictEvent:
        """Build a VerdictEvent and deliver it to all subscribers.

        Never blocks on subscriber work.

        Returns:
            The published event
        """
        event = VerdictEvent(
            query_id=query_id,
            verdict=Verdict(verdict),
            tags=tuple(tags),
            timestamp=self._clock(),
        )
        self.publish_event(event)
        return event

    def publish_event(self, event: VerdictEvent) -> None:
        """Deliver a prebuilt event to all subscribers."""
        if self._closed:
            raise BusClosedError("Cannot publish on a closed reward bus")
        subscriptions = self._subscriptions
        for subscription in subscriptions:
            subscription._offer(event)
        record_verdict_published(event.verdict.value)
        logger.debug(
            "verdict_published",
            query_id=event.query_id,
            verdict=event.verdict.value,
            tags=list(event.tags),
            subscribers=len(subscriptions),
        )

    def publish_doc_feedback(
        self,
        fragment: SourceFragment,
        verdict: Union[Verdict, str],
        reason: Union[FeedbackReason, str] = FeedbackReason.UNKNOWN,
        query_id: Optional[str] = None,
    ) -> DocFeedbackEvent:
        """Build a DocFeedbackEvent and deliver it to doc feedback subscribers.

        Returns:
            The published event
        """
        event = DocFeedbackEvent(
            verdict=Verdict(verdict),
            fragment=fragment,
            reason=FeedbackReason(reason),
            query_id=query_id,
            timestamp=self._clock(),
        )
        self.publish_doc_event(event)
        return event

    def publish_doc_event(self, event: DocFeedbackEvent) -> None:
        """Deliver a prebuilt document feedback event."""
        if self._closed:
            raise BusClosedError("Cannot publish on a closed reward bus")
        subscriptions = self._doc_subscriptions
        for subscription in subscriptions:
            subscription._offer(event)
        record_doc_feedback_published(event.verdict.value, event.reason.value)
        logger.debug(
            "doc_feedback_published",
            query_id=event.query_id,
            verdict=event.verdict.value,
            reason=event.reason.value,
            fragment=event.fragment.identity,
            subscribers=len(subscriptions),
        )

    async def join(self) -> None:
        """Wait until every event queued so far has been handled."""
        subscriptions = (*self._subscriptions, *self._doc_subscriptions)
        await asyncio.gather(*(sub._join() for sub in subscriptions))

    async def close(self, drain: bool = True) -> None:
        """Stop accepting events and shut down all consumer tasks.

        Args:
            drain: Handle already-queued events before stopping
        """
        if self._closed:
            return
        self._closed = True
        if drain:
            await self.join()
        with self._lock:
            subscriptions = (*self._subscriptions, *self._doc_subscriptions)
            self._subscriptions = ()
            self._doc_subscriptions = ()
        for subscription in subscriptions:
            await subscription._cancel()
        logger.info("reward_bus_closed", drained=drain, subscribers=len(subscriptions))

    def _register(
        self,
        handler: Callable[[Any], Any],
        name: Optional[str],
        channel: str,
    ) -> Subscription:
        if self._closed:
            raise BusClosedError("Cannot subscribe to a closed reward bus")
        loop = asyncio.get_running_loop()
        label = name or getattr(handler, "__qualname__", None) or repr(handler)
        subscription = Subscription(
            bus=self,
            name=label,
            handler=handler,
            loop=loop,
            max_queue_size=self._max_queue_size,
            channel=channel,
        )
        subscription._start()
        with self._lock:
            if channel == DOC_FEEDBACK_CHANNEL:
                self._doc_subscriptions = (*self._doc_subscriptions, subscription)
            else:
                self._subscriptions = (*self._subscriptions, subscription)
        logger.info("reward_bus_subscribed", subscriber=label, channel=channel)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscriptions = tuple(
                sub for sub in self._subscriptions if sub is not subscription
            )
            self._doc_subscriptions = tuple(
                sub for sub in self._doc_subscriptions if sub is not subscription
            )
        subscription._stop()
        logger.info(
            "reward_bus_unsubscribed",
            subscriber=subscription.name,
            channel=subscription.channel,
        )

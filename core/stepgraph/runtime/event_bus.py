"""
Event Bus - In-process fan-out of workflow events to observers.

Implements the EventSink contract for callers that want to watch sessions
from inside the same process (a websocket handler, an SSE endpoint, a test):
- Synchronous, non-blocking publish (the executor never waits on observers)
- Per-session and per-event-type subscriptions
- Bounded per-subscriber queues: a slow or detached observer misses events
- Bounded event history for debugging
"""

import asyncio
import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field

from stepgraph.runtime.events import WorkflowEvent

logger = logging.getLogger(__name__)


@dataclass
class Subscription:
    """A subscription to events, consumed with ``async for``."""

    id: str
    queue: asyncio.Queue
    event_types: set[str] | None = None  # None = every type
    filter_session: str | None = None  # Only receive events from this session
    until_terminal: bool = False  # Stop iterating after a terminal event
    dropped: int = 0
    _finished: bool = field(default=False, repr=False)

    def matches(self, session_id: str, event: WorkflowEvent) -> bool:
        if self.filter_session and self.filter_session != session_id:
            return False
        if self.event_types is not None and event.type not in self.event_types:
            return False
        return True

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> tuple[str, WorkflowEvent]:
        if self._finished:
            raise StopAsyncIteration
        session_id, event = await self.queue.get()
        if self.until_terminal and event.is_terminal:
            self._finished = True
        return session_id, event


class EventBus:
    """
    Pub/sub event bus for workflow sessions.

    Example:
        bus = EventBus()
        runtime = WorkflowRuntime(event_sink=bus)

        sub = bus.subscribe(session_id="session-1", until_terminal=True)
        task = runtime.spawn(graph, {"topic": "solar"}, "session-1")

        async for session_id, event in sub:
            print(event.to_dict())
    """

    def __init__(self, max_history: int = 1000, max_queue_size: int = 256):
        """
        Initialize event bus.

        Args:
            max_history: Maximum events to keep in history
            max_queue_size: Per-subscriber queue bound; events beyond it are dropped
        """
        self._subscriptions: dict[str, Subscription] = {}
        self._event_history: deque[tuple[str, WorkflowEvent]] = deque(maxlen=max_history)
        self._max_queue_size = max_queue_size
        self._subscription_counter = 0

    def subscribe(
        self,
        session_id: str | None = None,
        event_types: Iterable[str] | None = None,
        until_terminal: bool = False,
        max_queue_size: int | None = None,
    ) -> Subscription:
        """
        Subscribe to events.

        Args:
            session_id: Only receive events for this session
            event_types: Only receive these event types (e.g. {"step_updated"})
            until_terminal: End iteration after completed/cancelled/fatal_error
            max_queue_size: Override the bus-wide queue bound

        Returns:
            Subscription (pass it to unsubscribe() when done)
        """
        self._subscription_counter += 1
        sub_id = f"sub_{self._subscription_counter}"

        subscription = Subscription(
            id=sub_id,
            queue=asyncio.Queue(maxsize=max_queue_size or self._max_queue_size),
            event_types=set(event_types) if event_types is not None else None,
            filter_session=session_id,
            until_terminal=until_terminal,
        )

        self._subscriptions[sub_id] = subscription
        logger.debug(f"Subscription {sub_id} registered for session={session_id}")

        return subscription

    def unsubscribe(self, subscription: Subscription | str) -> bool:
        """
        Unsubscribe from events.

        Returns:
            True if subscription was found and removed
        """
        sub_id = subscription if isinstance(subscription, str) else subscription.id
        if sub_id in self._subscriptions:
            del self._subscriptions[sub_id]
            logger.debug(f"Subscription {sub_id} removed")
            return True
        return False

    def publish(self, session_id: str, event: WorkflowEvent) -> None:
        """Record an event and hand it to every matching subscriber."""
        self._event_history.append((session_id, event))

        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(session_id, event):
                continue
            try:
                subscription.queue.put_nowait((session_id, event))
            except asyncio.QueueFull:
                subscription.dropped += 1
                logger.warning(
                    f"Subscriber {subscription.id} queue full, dropped {event.type} "
                    f"for session {session_id}"
                )

    # === QUERY OPERATIONS ===

    def get_history(
        self,
        session_id: str | None = None,
        event_type: str | None = None,
        limit: int = 100,
    ) -> list[WorkflowEvent]:
        """
        Get event history with optional filtering.

        Returns:
            List of matching events (most recent first)
        """
        events = [
            event
            for sid, event in reversed(self._event_history)
            if (session_id is None or sid == session_id)
            and (event_type is None or event.type == event_type)
        ]
        return events[:limit]

    def get_stats(self) -> dict:
        """Get event bus statistics."""
        type_counts: dict[str, int] = {}
        for _, event in self._event_history:
            type_counts[event.type] = type_counts.get(event.type, 0) + 1

        return {
            "total_events": len(self._event_history),
            "subscriptions": len(self._subscriptions),
            "events_by_type": type_counts,
            "dropped": sum(s.dropped for s in self._subscriptions.values()),
        }

    # === WAITING OPERATIONS ===

    async def wait_for(
        self,
        event_type: str,
        session_id: str | None = None,
        timeout: float | None = None,
    ) -> WorkflowEvent | None:
        """
        Wait for a specific event to occur.

        Returns:
            The event if received, None if timeout
        """
        subscription = self.subscribe(session_id=session_id, event_types=[event_type])
        try:
            _, event = await asyncio.wait_for(subscription.queue.get(), timeout=timeout)
            return event
        except TimeoutError:
            return None
        finally:
            self.unsubscribe(subscription)


class LoggingEventSink:
    """Sink that writes each event to a logger, one line per event."""

    def __init__(self, logger_name: str = "stepgraph.events", level: int = logging.INFO):
        self._logger = logging.getLogger(logger_name)
        self._level = level

    def publish(self, session_id: str, event: WorkflowEvent) -> None:
        wire = event.to_dict()
        self._logger.log(
            self._level,
            f"[{session_id}] {wire['type']}",
            extra={"event": wire["type"], "session_id": session_id},
        )


class FanOutEventSink:
    """Publish every event to several sinks in order."""

    def __init__(self, *sinks):
        self.sinks = list(sinks)

    def publish(self, session_id: str, event: WorkflowEvent) -> None:
        for sink in self.sinks:
            try:
                sink.publish(session_id, event)
            except Exception:
                logger.exception(f"Event sink {type(sink).__name__} failed on {event.type}")

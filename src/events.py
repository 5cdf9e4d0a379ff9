"""
Event Streaming - In-memory pub/sub for reconciliation events.

Reconcilers publish an event for every mutation they issue against the
remote API, similar to the events a Kubernetes controller records.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, Dict, Tuple

logger = logging.getLogger(__name__)


class EventType(Enum):
    """Types of cloud events."""

    CREATED = "CREATED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    FAILED = "FAILED"


@dataclass
class CloudEvent:
    """Event emitted when a remote resource is mutated."""

    event_type: EventType
    object_kind: str
    object_name: str
    message: str
    timestamp: str

    def to_json(self) -> str:
        """Serialize the event as a single JSON line."""
        return json.dumps(
            {
                "event_type": self.event_type.value,
                "object_kind": self.object_kind,
                "object_name": self.object_name,
                "message": self.message,
                "timestamp": self.timestamp,
            }
        )

    @classmethod
    def now(
        cls,
        event_type: EventType,
        object_kind: str,
        object_name: str,
        message: str = "",
    ) -> "CloudEvent":
        """
        Create an event stamped with the current UTC time.

        Args:
            event_type: The type of event.
            object_kind: Kind of the remote object (e.g. 'LoadBalancer').
            object_name: Name of the remote object.
            message: Human-readable description.

        Returns:
            A new CloudEvent instance.
        """
        return cls(
            event_type=event_type,
            object_kind=object_kind,
            object_name=object_name,
            message=message,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


class EventSubscription:
    """Async iterator over one subscriber's queue, ended by a ``None`` sentinel."""

    def __init__(self, queue: asyncio.Queue):
        self._queue = queue

    def __aiter__(self) -> AsyncIterator["CloudEvent"]:
        return self

    async def __anext__(self) -> "CloudEvent":
        event = await self._queue.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventBus:
    """
    In-memory pub/sub bus for cloud events.

    Each subscriber owns a bounded ``asyncio.Queue``. Publishing never
    blocks: when a queue is full the event is dropped for that subscriber,
    so reconciliation never waits on a slow consumer.
    """

    def __init__(self, queue_size: int = 256):
        self._queue_size = queue_size
        self._subscribers: Dict[str, asyncio.Queue] = {}
        self._lock = asyncio.Lock()

    async def publish(self, event: CloudEvent) -> None:
        async with self._lock:
            subscribers = list(self._subscribers.items())

        for subscriber_id, queue in subscribers:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    f"Dropped {event.event_type.value} event for "
                    f"{event.object_kind}/{event.object_name}: "
                    f"queue of subscriber {subscriber_id} is full"
                )

    async def emit(
        self,
        event_type: EventType,
        object_kind: str,
        object_name: str,
        message: str = "",
    ) -> None:
        """Build a CloudEvent stamped now and publish it."""
        await self.publish(
            CloudEvent.now(event_type, object_kind, object_name, message)
        )

    async def subscribe(self) -> Tuple[str, EventSubscription]:
        """
        Subscribe to all events published from now on.

        Returns:
            A tuple of ``(subscriber_id, EventSubscription)``.
        """
        subscriber_id = str(uuid.uuid4())
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)

        async with self._lock:
            self._subscribers[subscriber_id] = queue

        logger.debug(f"Event subscriber {subscriber_id} added")
        return subscriber_id, EventSubscription(queue)

    async def unsubscribe(self, subscriber_id: str) -> None:
        """
        Remove a subscriber and end its subscription.

        Events already queued are still delivered before iteration stops.
        Unknown IDs are ignored.
        """
        async with self._lock:
            queue = self._subscribers.pop(subscriber_id, None)

        if queue is None:
            return

        try:
            queue.put_nowait(None)
        except asyncio.QueueFull:
            # The sentinel must land; the oldest queued event is lost
            queue.get_nowait()
            queue.put_nowait(None)
        logger.debug(f"Event subscriber {subscriber_id} removed")

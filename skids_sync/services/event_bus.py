# skids_sync/services/event_bus.py
"""
In-process event bus for sync lifecycle notifications.
Lets the UI layer react to sync progress, lost mutations and connectivity
changes without the engine knowing who listens.
"""
import inspect
import logging
from typing import Callable, Dict, Any, Optional
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Events published by the sync engine."""
    # Sync cycle events
    SYNC_STARTED = "sync.started"
    SYNC_COMPLETED = "sync.completed"
    SYNC_SKIPPED = "sync.skipped"
    SYNC_ITEM_LOST = "sync.item_lost"

    # Environment events
    CONNECTIVITY_CHANGED = "connectivity.changed"
    SESSION_STARTED = "session.started"
    SESSION_ENDED = "session.ended"


class EventBus:
    """
    Event bus for publishing and subscribing to sync events.
    Subscribers may be plain functions or coroutines; a failing subscriber
    is logged and never interrupts the publisher.
    """

    def __init__(self):
        self.subscribers: Dict[EventType, list] = {}

    async def publish(
        self,
        event_type: EventType,
        data: Dict[str, Any],
        user_id: Optional[str] = None
    ):
        """
        Publish an event to all subscribers.

        Args:
            event_type: Type of event being published
            data: Event payload data
            user_id: Optional signed-in user associated with the event
        """
        event_payload = {
            "event_type": event_type.value,
            "data": data,
            "user_id": user_id,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        for callback in list(self.subscribers.get(event_type, [])):
            try:
                if inspect.iscoroutinefunction(callback):
                    await callback(event_payload)
                else:
                    callback(event_payload)
            except Exception as e:
                logger.error(f"Error in event subscriber for {event_type}: {e}")

    def subscribe(self, event_type: EventType, callback: Callable):
        """
        Subscribe to an event type with a callback function.

        Args:
            event_type: Event type to subscribe to
            callback: Function to call when event is published (sync or async)
        """
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)
        logger.debug(f"Subscribed to event {event_type.value}")

    def unsubscribe(self, event_type: EventType, callback: Callable):
        if event_type in self.subscribers and callback in self.subscribers[event_type]:
            self.subscribers[event_type].remove(callback)
            logger.debug(f"Unsubscribed from event {event_type.value}")

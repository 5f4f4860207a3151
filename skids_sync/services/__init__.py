# skids_sync/services/__init__.py
"""
Sync services: server transport, coordinator and session lifecycle.
"""

from skids_sync.services.event_bus import EventBus, EventType

__all__ = [
    "EventBus",
    "EventType",
]

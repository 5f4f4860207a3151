"""
Exception hierarchy for the offline sync engine.

Only store initialization failures are meant to escape a sync cycle; the
remaining errors are raised by direct API calls (unknown collections,
operations on a torn-down session) or caught and aggregated per item.
"""
from typing import Optional


class SyncEngineError(Exception):
    """Base class for all sync engine errors."""


class StoreInitializationError(SyncEngineError):
    """Local storage could not be opened or its tables created."""


class StoreNotInitializedError(SyncEngineError):
    """The local store was used before init() or after teardown()."""


class UnknownEntityError(SyncEngineError):
    """An entity or collection name has no local table or server route."""

    def __init__(self, name: str):
        super().__init__(f"Unknown entity type: {name}")
        self.name = name


class UnknownIndexError(SyncEngineError):
    def __init__(self, collection: str, index_name: str):
        super().__init__(f"Collection '{collection}' has no index '{index_name}'")
        self.collection = collection
        self.index_name = index_name


class SyncTransportError(SyncEngineError):
    """A network call to the server API failed or returned a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class NotSignedInError(SyncEngineError):
    """A session-scoped operation was attempted while signed out."""

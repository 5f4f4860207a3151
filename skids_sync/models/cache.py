"""
Local cache models for offline-first operation.

This module defines one table per tracked entity collection (children,
appointments, reports, campaigns, messages), the durable mutation queue and
the key/value sync metadata table. Together they make up the whole on-disk
layout of the local cache.
"""

from sqlmodel import SQLModel, Field, JSON
from typing import Optional, Dict, Any, Type
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    """Naive UTC now; SQLite drops tzinfo so everything is stored naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SyncAction(str, Enum):
    """Mutations that can be queued for the server."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# ===========================
# Cached entity collections
# ===========================

class CachedRecordBase(SQLModel):
    """
    Local snapshot of one server entity.

    Attributes:
        id: Entity identifier, unique within its collection
        payload: Entity fields as returned by the server (or written locally)
        cached_at: When this snapshot was last written locally
        synced_at: Last confirmed synchronization with the server;
            None means the record was written offline and never confirmed
    """
    id: str = Field(primary_key=True, max_length=255)
    payload: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    cached_at: datetime = Field(default_factory=utcnow)
    synced_at: Optional[datetime] = Field(default=None, index=True)


class CachedChild(CachedRecordBase, table=True):
    __tablename__ = "children"

    parent_id: Optional[str] = Field(default=None, max_length=255, index=True)


class CachedAppointment(CachedRecordBase, table=True):
    __tablename__ = "appointments"

    child_id: Optional[str] = Field(default=None, max_length=255, index=True)
    scheduled_at: Optional[str] = Field(default=None, max_length=64, index=True)


class CachedReport(CachedRecordBase, table=True):
    __tablename__ = "reports"

    child_id: Optional[str] = Field(default=None, max_length=255, index=True)


class CachedCampaign(CachedRecordBase, table=True):
    __tablename__ = "campaigns"


class CachedMessage(CachedRecordBase, table=True):
    __tablename__ = "messages"

    created_at: Optional[str] = Field(default=None, max_length=64, index=True)


@dataclass(frozen=True)
class CollectionSpec:
    """
    Table and secondary indexes of one cached collection.

    indexes maps an index name (e.g. 'by-child') to a pair of
    (column name, payload field) so index columns can be filled from the
    payload on every save.
    """
    name: str
    model: Type[CachedRecordBase]
    indexes: Dict[str, tuple] = field(default_factory=dict)

    def index_values(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        values = {}
        for column, payload_field in self.indexes.values():
            value = payload.get(payload_field)
            values[column] = str(value) if value is not None else None
        return values


COLLECTIONS: Dict[str, CollectionSpec] = {
    "children": CollectionSpec(
        name="children",
        model=CachedChild,
        indexes={"by-parent": ("parent_id", "parentId")},
    ),
    "appointments": CollectionSpec(
        name="appointments",
        model=CachedAppointment,
        indexes={
            "by-child": ("child_id", "childId"),
            "by-date": ("scheduled_at", "scheduledAt"),
        },
    ),
    "reports": CollectionSpec(
        name="reports",
        model=CachedReport,
        indexes={"by-child": ("child_id", "childId")},
    ),
    "campaigns": CollectionSpec(name="campaigns", model=CachedCampaign),
    "messages": CollectionSpec(
        name="messages",
        model=CachedMessage,
        indexes={"by-date": ("created_at", "createdAt")},
    ),
}

# Queue entity names are singular; cached collections are plural
ENTITY_COLLECTIONS: Dict[str, str] = {
    "child": "children",
    "appointment": "appointments",
    "report": "reports",
    "campaign": "campaigns",
    "message": "messages",
}


# ===========================
# Sync queue and metadata
# ===========================

class SyncQueueItem(SQLModel, table=True):
    """
    A pending local mutation awaiting transmission to the server.

    The autoincrement id is the FIFO key: items are pushed in id order and
    never reordered.

    Attributes:
        id: Monotonically increasing queue position
        entity: Target entity type ('child', 'appointment', 'message', ...)
        entity_id: Target record for update/delete, None for create
        action: create, update or delete
        data: Payload to send to the server
        created_at: When the mutation was queued
        retry_count: Number of failed push attempts so far
        last_error: Message of the most recent failed attempt
    """
    __tablename__ = "sync_queue"
    # Ids are never reused, even after the newest item is removed
    __table_args__ = {"sqlite_autoincrement": True}

    id: Optional[int] = Field(default=None, primary_key=True)
    entity: str = Field(max_length=100, index=True)
    entity_id: Optional[str] = Field(default=None, max_length=255)
    action: SyncAction = Field(description="Mutation to apply on the server")
    data: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    created_at: datetime = Field(default_factory=utcnow)
    retry_count: int = Field(default=0, ge=0)
    last_error: Optional[str] = Field(default=None, max_length=500)


class SyncMetadataEntry(SQLModel, table=True):
    """Key/value row of process-wide sync state (lastSyncAt, lastOnlineAt)."""
    __tablename__ = "sync_metadata"

    key: str = Field(primary_key=True, max_length=100)
    value: Optional[str] = Field(default=None, max_length=100)
    updated_at: datetime = Field(default_factory=utcnow)

"""
Sync schemas for the offline-first engine.

Result objects returned by the queue, the coordinator and the status API,
plus the request bodies accepted by the local HTTP surface.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Dict, Any
from enum import Enum

from skids_sync.models.cache import SyncAction


# ===========================
# Enums
# ===========================

class SyncTrigger(str, Enum):
    """What started a sync cycle."""
    STARTUP = "startup"
    RECONNECT = "reconnect"
    PERIODIC = "periodic"
    MANUAL = "manual"


class SyncPhase(str, Enum):
    """Coordinator state machine."""
    IDLE = "idle"
    PULLING = "pulling"
    PUSHING = "pushing"


class SyncIndicator(str, Enum):
    """What the UI should display."""
    OFFLINE = "offline"
    SYNCING = "syncing"
    PENDING = "pending"
    IDLE = "idle"


# ===========================
# Records
# ===========================

class CachedRecordRead(BaseModel):
    """A cached entity snapshot"""
    collection: str
    id: str
    payload: Dict[str, Any]
    cached_at: datetime
    synced_at: Optional[datetime] = None


class QueueItemRead(BaseModel):
    """A pending mutation"""
    id: int
    entity: str
    entity_id: Optional[str] = None
    action: SyncAction
    data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    retry_count: int = 0
    last_error: Optional[str] = None

    class Config:
        from_attributes = True


class SyncMetadata(BaseModel):
    """Persisted process-wide sync state"""
    last_sync_at: Optional[datetime] = None
    last_online_at: Optional[datetime] = None


# ===========================
# Results
# ===========================

class QueueDrainResult(BaseModel):
    """Outcome of pushing the queue once"""
    processed: int = Field(0, description="Items confirmed by the server and removed")
    failed: int = Field(0, description="Items whose push failed this round")
    errors: List[str] = Field(default_factory=list)
    lost: List[QueueItemRead] = Field(
        default_factory=list,
        description="Items dropped after exhausting their retry budget"
    )


class PullResult(BaseModel):
    """Outcome of pulling server state into the cache"""
    success: bool = Field(False, description="At least one collection was refreshed")
    skipped: bool = Field(False, description="Pull was not attempted (offline)")
    items_synced: int = Field(0, description="Records written to the cache")
    collections: List[str] = Field(default_factory=list, description="Collections refreshed")
    errors: List[str] = Field(default_factory=list)


class SyncCycleResult(BaseModel):
    """Aggregate outcome of one sync cycle"""
    trigger: SyncTrigger
    skipped: bool = Field(False, description="Trigger dropped because a cycle was active")
    pull_success: bool = False
    items_synced: int = Field(0, description="Records refreshed by the pull phase")
    processed: int = Field(0, description="Queued mutations pushed successfully")
    failed: int = Field(0, description="Queued mutations that failed this cycle")
    pending_changes: int = 0
    errors: List[str] = Field(default_factory=list)
    last_sync_at: Optional[datetime] = None

    class Config:
        json_schema_extra = {
            "example": {
                "trigger": "reconnect",
                "skipped": False,
                "pull_success": True,
                "items_synced": 42,
                "processed": 3,
                "failed": 0,
                "pending_changes": 0,
                "errors": [],
                "last_sync_at": "2026-10-18T09:30:00"
            }
        }


class FreshnessResponse(BaseModel):
    max_age_hours: float
    is_fresh: bool
    stale_items: List[CachedRecordRead] = Field(default_factory=list)


class SyncStatusResponse(BaseModel):
    """Everything the offline indicator needs"""
    signed_in: bool = False
    user_id: Optional[str] = None
    is_online: bool = True
    is_syncing: bool = False
    phase: SyncPhase = SyncPhase.IDLE
    indicator: SyncIndicator = SyncIndicator.IDLE
    last_sync_at: Optional[datetime] = None
    last_online_at: Optional[datetime] = None
    pending_changes: int = 0
    has_cached_data: bool = False
    is_data_fresh: bool = True
    warnings: List[QueueItemRead] = Field(default_factory=list, description="Mutations lost after retries")


# ===========================
# Requests
# ===========================

class QueueChangeRequest(BaseModel):
    """Queue a local mutation for the server"""
    entity: str = Field(..., min_length=1, description="Entity type: child, appointment, message")
    action: SyncAction
    data: Dict[str, Any] = Field(default_factory=dict)
    entity_id: Optional[str] = Field(None, description="Target record for update/delete")

    class Config:
        json_schema_extra = {
            "example": {
                "entity": "appointment",
                "action": "create",
                "data": {"childId": "child-1", "type": "checkup", "scheduledAt": "2026-11-02T10:00:00Z"},
                "entity_id": None
            }
        }


class ConnectivityUpdate(BaseModel):
    online: bool


class SignInRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    token: Optional[str] = Field(None, description="Bearer token issued by the identity provider")


class QueueChangeResponse(BaseModel):
    id: int = Field(..., description="Queue position assigned to the mutation")
    pending_changes: int

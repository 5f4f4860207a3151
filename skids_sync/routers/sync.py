"""
Sync router exposing the offline engine to the UI layer.
Status for the offline indicator, manual sync, connectivity signals,
session lifecycle, the mutation queue and read access to cached data.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from typing import List

from skids_sync.core.config import settings
from skids_sync.core.deps import get_active_session, get_sync_engine
from skids_sync.core.exceptions import (
    StoreInitializationError,
    UnknownEntityError,
    UnknownIndexError,
)
from skids_sync.schemas.sync import (
    CachedRecordRead,
    ConnectivityUpdate,
    FreshnessResponse,
    QueueChangeRequest,
    QueueChangeResponse,
    QueueItemRead,
    SignInRequest,
    SyncCycleResult,
    SyncStatusResponse,
    SyncTrigger,
)
from skids_sync.services.sync_engine import OfflineSyncEngine

router = APIRouter(prefix="/sync", tags=["Sync & Offline"])


# ===========================
# Status & Cycles
# ===========================

@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(engine: OfflineSyncEngine = Depends(get_sync_engine)):
    """
    Current sync status for the offline indicator.

    The indicator is 'offline', 'syncing', 'pending' (N queued changes) or
    'idle'. Warnings list mutations dropped after exhausting their retries.
    """
    return engine.status()


@router.post("/run", response_model=SyncCycleResult)
async def run_sync(engine: OfflineSyncEngine = Depends(get_active_session)):
    """Trigger a manual sync cycle. Dropped (skipped=true) if one is already running."""
    return await engine.coordinator.run_cycle(SyncTrigger.MANUAL)


@router.post("/connectivity", response_model=SyncStatusResponse)
async def update_connectivity(
    update: ConnectivityUpdate,
    engine: OfflineSyncEngine = Depends(get_sync_engine)
):
    """Report an online/offline transition from the host platform."""
    await engine.monitor.set_online(update.online)
    return engine.status()


# ===========================
# Session
# ===========================

@router.post("/session/sign-in", response_model=SyncStatusResponse)
async def sign_in(
    request: SignInRequest,
    engine: OfflineSyncEngine = Depends(get_sync_engine)
):
    try:
        await engine.sign_in(request.user_id, request.token)
    except StoreInitializationError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e)
        )
    return engine.status()


@router.post("/session/sign-out", response_model=SyncStatusResponse)
async def sign_out(engine: OfflineSyncEngine = Depends(get_active_session)):
    """Sign out and wipe all offline data."""
    await engine.sign_out()
    return engine.status()


# ===========================
# Queue
# ===========================

@router.get("/queue", response_model=List[QueueItemRead])
async def list_queue(
    entity: str = Query(None, description="Only items for this entity type"),
    engine: OfflineSyncEngine = Depends(get_active_session)
):
    return engine.queue.list_pending(entity)


@router.post("/queue", response_model=QueueChangeResponse, status_code=status.HTTP_201_CREATED)
async def queue_change(
    change: QueueChangeRequest,
    engine: OfflineSyncEngine = Depends(get_active_session)
):
    """
    Queue a local mutation.

    When online the queue is pushed immediately, so pending_changes may
    already be back to zero in the response.
    """
    item_id = await engine.coordinator.queue_change(
        change.entity, change.action, change.data, change.entity_id
    )
    return QueueChangeResponse(id=item_id, pending_changes=engine.queue.count())


# ===========================
# Freshness & Warnings
# ===========================

@router.get("/freshness", response_model=FreshnessResponse)
async def freshness(
    max_age_hours: float = Query(settings.FRESHNESS_MAX_AGE_HOURS, gt=0),
    engine: OfflineSyncEngine = Depends(get_active_session)
):
    stale = engine.coordinator.get_stale_items(max_age_hours)
    return FreshnessResponse(max_age_hours=max_age_hours, is_fresh=not stale, stale_items=stale)


@router.get("/warnings", response_model=List[QueueItemRead])
async def list_warnings(engine: OfflineSyncEngine = Depends(get_sync_engine)):
    """Mutations lost after exhausting their retry budget."""
    return engine.coordinator.warnings


@router.delete("/warnings", status_code=status.HTTP_200_OK)
async def dismiss_warnings(engine: OfflineSyncEngine = Depends(get_sync_engine)):
    dismissed = engine.coordinator.dismiss_warnings()
    return {"dismissed": dismissed}


# ===========================
# Cached data
# ===========================

@router.get("/cache/{collection}", response_model=List[CachedRecordRead])
async def get_cached_collection(
    collection: str,
    engine: OfflineSyncEngine = Depends(get_active_session)
):
    try:
        return engine.store.get_all(collection)
    except UnknownEntityError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/cache/{collection}/index/{index_name}/{value}", response_model=List[CachedRecordRead])
async def get_cached_by_index(
    collection: str,
    index_name: str,
    value: str,
    engine: OfflineSyncEngine = Depends(get_active_session)
):
    try:
        return engine.store.get_by_index(collection, index_name, value)
    except (UnknownEntityError, UnknownIndexError) as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get("/cache/{collection}/{key}", response_model=CachedRecordRead)
async def get_cached_record(
    collection: str,
    key: str,
    engine: OfflineSyncEngine = Depends(get_active_session)
):
    try:
        record = engine.store.get(collection, key)
    except UnknownEntityError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if not record:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{collection} record '{key}' not cached"
        )
    return record

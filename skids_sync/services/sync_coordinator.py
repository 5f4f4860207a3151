# skids_sync/services/sync_coordinator.py
"""
Sync coordinator: pulls server state into the local cache and drains the
mutation queue, one cycle at a time.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from skids_sync.core.config import settings
from skids_sync.core.connectivity import ConnectivityState
from skids_sync.core.exceptions import StoreInitializationError, StoreNotInitializedError
from skids_sync.crud.cache import LocalCacheStore
from skids_sync.crud.sync_queue import SyncQueue
from skids_sync.models.cache import ENTITY_COLLECTIONS, SyncAction
from skids_sync.schemas.sync import (
    CachedRecordRead,
    PullResult,
    QueueDrainResult,
    QueueItemRead,
    SyncCycleResult,
    SyncPhase,
    SyncTrigger,
)
from skids_sync.services.event_bus import EventBus, EventType

logger = logging.getLogger(__name__)

OFFLINE_ERROR = "Offline"
IN_PROGRESS_ERROR = "Sync already in progress"
CANCELLED_ERROR = "Sync cancelled"


class SyncCoordinator:
    """
    Orchestrates the pull and push halves of synchronization.

    Only one cycle runs at a time: a trigger that arrives while a cycle is
    active is dropped, not queued. The in-flight flag is enough because the
    coordinator lives in a single event loop.
    """

    def __init__(
        self,
        store: LocalCacheStore,
        queue: SyncQueue,
        api: Any,
        connectivity: ConnectivityState,
        event_bus: Optional[EventBus] = None,
        collections: Optional[List[str]] = None
    ):
        self.store = store
        self.queue = queue
        self.api = api
        self.connectivity = connectivity
        self.event_bus = event_bus or EventBus()
        self.collections = list(collections or settings.TRACKED_COLLECTIONS)
        self.phase = SyncPhase.IDLE
        self.warnings: List[QueueItemRead] = []
        self.last_result: Optional[SyncCycleResult] = None
        self._active_task: Optional[asyncio.Task] = None

    @property
    def is_syncing(self) -> bool:
        return self.phase != SyncPhase.IDLE

    # ============ CYCLE ============

    async def run_cycle(self, trigger: SyncTrigger = SyncTrigger.MANUAL) -> SyncCycleResult:
        """
        Run one pull+push cycle and return its aggregate result.

        Per-collection and per-item failures end up in result.errors; only
        store initialization problems escape as exceptions.
        """
        if self.is_syncing:
            logger.info(f"Dropping {trigger.value} sync trigger: cycle already running")
            await self.event_bus.publish(EventType.SYNC_SKIPPED, {"trigger": trigger.value})
            return SyncCycleResult(
                trigger=trigger,
                skipped=True,
                pending_changes=self.queue.count(),
                errors=[IN_PROGRESS_ERROR],
                last_sync_at=self.store.get_metadata().last_sync_at,
            )

        if not self.connectivity.is_online:
            # Pulling goes straight back to idle while offline
            return SyncCycleResult(
                trigger=trigger,
                pending_changes=self.queue.count(),
                errors=[OFFLINE_ERROR],
                last_sync_at=self.store.get_metadata().last_sync_at,
            )

        self.phase = SyncPhase.PULLING
        task = await self._run_fenced(self._cycle(trigger))
        if task.cancelled():
            logger.info(f"Sync cycle ({trigger.value}) cancelled by session teardown")
            return SyncCycleResult(trigger=trigger, errors=[CANCELLED_ERROR])
        return task.result()

    async def _cycle(self, trigger: SyncTrigger) -> SyncCycleResult:
        await self.event_bus.publish(EventType.SYNC_STARTED, {"trigger": trigger.value})
        try:
            pull_result = await self.pull()

            self.phase = SyncPhase.PUSHING
            push_result = await self.push()

            if pull_result.success:
                self.store.set_last_sync_at()
        finally:
            self.phase = SyncPhase.IDLE

        result = SyncCycleResult(
            trigger=trigger,
            pull_success=pull_result.success,
            items_synced=pull_result.items_synced,
            processed=push_result.processed,
            failed=push_result.failed,
            pending_changes=self.queue.count(),
            errors=pull_result.errors + push_result.errors,
            last_sync_at=self.store.get_metadata().last_sync_at,
        )
        self.last_result = result

        logger.info(
            f"Sync cycle ({trigger.value}) finished: pulled {result.items_synced}, "
            f"pushed {result.processed}, failed {result.failed}, pending {result.pending_changes}"
        )
        await self.event_bus.publish(EventType.SYNC_COMPLETED, result.model_dump(mode="json"))
        return result

    async def pull(self) -> PullResult:
        """
        Refresh every tracked collection from the server.

        A failed collection keeps its previous cache and does not stop the
        others; success means at least one collection was refreshed.
        """
        if not self.connectivity.is_online:
            return PullResult(success=False, skipped=True, errors=[OFFLINE_ERROR])

        result = PullResult()
        for collection in self.collections:
            try:
                payloads = await self.api.fetch_collection(collection)
                written = self.store.save_many(collection, payloads, synced_at=self.store.clock())
            except (StoreInitializationError, StoreNotInitializedError):
                raise
            except Exception as e:
                logger.warning(f"Pull failed for {collection}: {e}")
                result.errors.append(f"Failed to pull {collection}: {e}")
                continue

            result.items_synced += written
            result.collections.append(collection)

        result.success = len(result.collections) > 0
        return result

    async def push(self) -> QueueDrainResult:
        """Drain the mutation queue through the server write API."""
        result = await self.queue.drain(self._push_one)

        if result.lost:
            self.warnings.extend(result.lost)
            for item in result.lost:
                await self.event_bus.publish(EventType.SYNC_ITEM_LOST, item.model_dump(mode="json"))
        return result

    async def _push_one(self, item: QueueItemRead) -> bool:
        success = await self.api.push(item)
        if success and item.entity_id and item.action != SyncAction.DELETE:
            collection = ENTITY_COLLECTIONS.get(item.entity)
            if collection:
                self.store.mark_synced(collection, item.entity_id)
        return success

    # ============ LOCAL CHANGES ============

    async def queue_change(
        self,
        entity: str,
        action: SyncAction,
        data: Dict[str, Any],
        entity_id: Optional[str] = None
    ) -> int:
        """Queue a mutation and push right away when online and idle."""
        item_id = self.queue.enqueue(entity, action, data, entity_id)

        if self.connectivity.is_online and not self.is_syncing:
            self.phase = SyncPhase.PUSHING
            task = await self._run_fenced(self._immediate_push())
            if not task.cancelled():
                task.result()
        return item_id

    async def _immediate_push(self):
        try:
            await self.push()
        finally:
            self.phase = SyncPhase.IDLE

    # ============ SESSION FENCE ============

    async def _run_fenced(self, coro) -> asyncio.Task:
        """
        Run a cycle as its own task so cancel_active() can stop it.

        Returns the finished task. Cancelling the caller cancels the cycle too.
        """
        task = asyncio.create_task(coro)
        self._active_task = task
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            if self._active_task is task:
                self._active_task = None
        return task

    async def cancel_active(self):
        """Cancel the running cycle, if any, and wait for it to stop. Used on sign-out."""
        task = self._active_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
            logger.info("Cancelled in-flight sync cycle")
        self._active_task = None
        self.phase = SyncPhase.IDLE

    def pending_changes(self) -> int:
        return self.queue.count()

    def dismiss_warnings(self) -> int:
        count = len(self.warnings)
        self.warnings.clear()
        return count

    # ============ FRESHNESS ============

    def get_stale_items(self, max_age_hours: float = settings.FRESHNESS_MAX_AGE_HOURS) -> List[CachedRecordRead]:
        """Records never confirmed by the server or confirmed longer ago than max_age_hours."""
        cutoff = self.store.clock() - timedelta(hours=max_age_hours)
        return [
            record for record in self.store.all_records()
            if record.synced_at is None or record.synced_at < cutoff
        ]

    def is_data_fresh(self, max_age_hours: float = settings.FRESHNESS_MAX_AGE_HOURS) -> bool:
        return not self.get_stale_items(max_age_hours)

# skids_sync/crud/sync_queue.py
import logging
from sqlmodel import select, func
from typing import Any, Awaitable, Callable, Dict, List, Optional

from skids_sync.core.config import settings
from skids_sync.core.connectivity import ConnectivityState
from skids_sync.crud.cache import LocalCacheStore
from skids_sync.models.cache import SyncAction, SyncQueueItem
from skids_sync.schemas.sync import QueueDrainResult, QueueItemRead

logger = logging.getLogger(__name__)

PushOne = Callable[[QueueItemRead], Awaitable[bool]]


class SyncQueue:
    """
    Durable FIFO of local mutations waiting for the server.

    Items leave the queue only after a confirmed push or after exhausting
    max_retries failed attempts, in which case they are reported as lost.
    """

    def __init__(
        self,
        store: LocalCacheStore,
        connectivity: ConnectivityState,
        max_retries: int = settings.SYNC_MAX_RETRIES
    ):
        self.store = store
        self.connectivity = connectivity
        self.max_retries = max_retries

    def enqueue(
        self,
        entity: str,
        action: SyncAction,
        data: Dict[str, Any],
        entity_id: Optional[str] = None
    ) -> int:
        """Append a mutation and return its queue id."""
        item = SyncQueueItem(
            entity=entity,
            entity_id=entity_id,
            action=SyncAction(action),
            data=dict(data),
            created_at=self.store.clock(),
            retry_count=0,
        )
        with self.store.session() as db:
            db.add(item)
            db.commit()
            db.refresh(item)
            logger.debug(f"Queued {item.action.value} {entity} as #{item.id}")
            return item.id

    def list_pending(self, entity: Optional[str] = None) -> List[QueueItemRead]:
        """All queued items in FIFO order, optionally for one entity type."""
        query = select(SyncQueueItem)
        if entity:
            query = query.where(SyncQueueItem.entity == entity)
        query = query.order_by(SyncQueueItem.id)

        with self.store.session() as db:
            return [QueueItemRead.model_validate(item) for item in db.exec(query).all()]

    def count(self) -> int:
        with self.store.session() as db:
            return db.exec(select(func.count(SyncQueueItem.id))).one()

    def remove(self, item_id: int) -> bool:
        """Delete an item; absent ids are a no-op."""
        with self.store.session() as db:
            item = db.get(SyncQueueItem, item_id)
            if not item:
                return False
            db.delete(item)
            db.commit()
            return True

    def increment_retry(self, item_id: int, error: Optional[str] = None) -> Optional[int]:
        """Record a failed attempt and return the new retry count."""
        with self.store.session() as db:
            item = db.get(SyncQueueItem, item_id)
            if not item:
                return None
            item.retry_count += 1
            item.last_error = error[:500] if error else None
            db.add(item)
            db.commit()
            return item.retry_count

    async def drain(self, push_one: PushOne) -> QueueDrainResult:
        """
        Push every pending item in FIFO order.

        Per-item failures are captured in the result and never raised, so a
        bad mutation cannot block the ones queued behind it.
        """
        if not self.connectivity.is_online:
            return QueueDrainResult(processed=0, failed=0, errors=["Offline"])

        result = QueueDrainResult()

        for item in self.list_pending():
            if item.retry_count >= self.max_retries:
                # Left over from an earlier run that stopped before dropping it
                self._drop(item, result)
                continue

            error: Optional[str] = None
            try:
                success = await push_one(item)
                if not success:
                    error = f"Failed to sync {item.entity}: server rejected {item.action.value}"
            except Exception as e:
                success = False
                error = f"Error syncing {item.entity}: {e}"

            if success:
                self.remove(item.id)
                result.processed += 1
                continue

            result.failed += 1
            result.errors.append(error)
            logger.warning(f"Queue item #{item.id} failed: {error}")

            retry_count = self.increment_retry(item.id, error)
            if retry_count is not None and retry_count >= self.max_retries:
                item.retry_count = retry_count
                item.last_error = error
                self._drop(item, result, counted=True)

        if result.processed or result.failed:
            logger.info(f"Sync queue drained: {result.processed} processed, {result.failed} failed")
        return result

    def _drop(self, item: QueueItemRead, result: QueueDrainResult, counted: bool = False):
        self.remove(item.id)
        if not counted:
            result.failed += 1
        result.errors.append(f"Operation {item.id} exceeded max retries")
        result.lost.append(item)
        logger.error(
            f"Dropping {item.action.value} {item.entity} (#{item.id}) after {item.retry_count} failed attempts"
        )

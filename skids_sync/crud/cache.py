# skids_sync/crud/cache.py
import logging
from sqlmodel import Session, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from typing import Any, Callable, Dict, Iterable, List, Optional
from datetime import datetime

from skids_sync.core.connectivity import ConnectivityState
from skids_sync.core.exceptions import (
    StoreInitializationError,
    StoreNotInitializedError,
    UnknownEntityError,
    UnknownIndexError,
)
from skids_sync.database.engine import create_db_and_tables
from skids_sync.models.cache import (
    COLLECTIONS,
    CachedRecordBase,
    CollectionSpec,
    SyncMetadataEntry,
    SyncQueueItem,
    utcnow,
)
from skids_sync.schemas.sync import CachedRecordRead, SyncMetadata

logger = logging.getLogger(__name__)

LAST_SYNC_KEY = "lastSyncAt"
LAST_ONLINE_KEY = "lastOnlineAt"


class LocalCacheStore:
    """
    Session-scoped local cache of server entities.

    The store is created per signed-in session and handed to the queue and
    the coordinator; init() opens the tables on sign-in and teardown() wipes
    everything on sign-out.
    """

    def __init__(
        self,
        engine: Engine,
        connectivity: ConnectivityState,
        clock: Callable[[], datetime] = utcnow
    ):
        self.engine = engine
        self.connectivity = connectivity
        self.clock = clock
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    def init(self):
        """Create the local tables. Raises StoreInitializationError if storage is unusable."""
        try:
            create_db_and_tables(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Local cache initialization failed: {e}")
            raise StoreInitializationError(f"Local storage unavailable: {e}") from e
        self._initialized = True
        logger.info("Local cache store initialized")

    def teardown(self):
        """Wipe all local data and mark the store closed (sign-out)."""
        if self._initialized:
            self.clear_all()
        self._initialized = False
        logger.info("Local cache store torn down")

    def session(self) -> Session:
        if not self._initialized:
            raise StoreNotInitializedError("Local cache store is not initialized")
        return Session(self.engine)

    def collection(self, name: str) -> CollectionSpec:
        spec = COLLECTIONS.get(name)
        if spec is None:
            raise UnknownEntityError(name)
        return spec

    # ============ CACHE OPERATIONS ============

    def save(self, entity: str, key: str, payload: Dict[str, Any]) -> CachedRecordRead:
        """
        Write or overwrite one cached record.

        synced_at is set to now only when the connectivity flag reads online
        at the time of the write; offline writes stay unsynced.
        """
        spec = self.collection(entity)
        now = self.clock()
        synced_at = now if self.connectivity.is_online else None

        with self.session() as db:
            record = self._upsert(db, spec, key, payload, now, synced_at)
            db.commit()
            db.refresh(record)
            return self._to_read(spec, record)

    def save_many(
        self,
        entity: str,
        payloads: Iterable[Dict[str, Any]],
        synced_at: Optional[datetime] = None
    ) -> int:
        """Upsert server payloads keyed by their 'id' and mark them synced. Returns the count written."""
        spec = self.collection(entity)
        now = self.clock()
        synced_at = synced_at or now
        written = 0

        with self.session() as db:
            for payload in payloads:
                key = payload.get("id")
                if key is None:
                    logger.warning(f"Skipping {entity} payload without an id")
                    continue
                self._upsert(db, spec, str(key), payload, now, synced_at)
                written += 1
            db.commit()

        return written

    def get(self, entity: str, key: str) -> Optional[CachedRecordRead]:
        spec = self.collection(entity)
        with self.session() as db:
            record = db.get(spec.model, key)
            return self._to_read(spec, record) if record else None

    def get_all(self, entity: str) -> List[CachedRecordRead]:
        spec = self.collection(entity)
        with self.session() as db:
            records = db.exec(select(spec.model)).all()
            return [self._to_read(spec, r) for r in records]

    def get_by_index(self, entity: str, index_name: str, value: Any) -> List[CachedRecordRead]:
        """Get records whose indexed payload field equals value (order unspecified)."""
        spec = self.collection(entity)
        if index_name not in spec.indexes:
            raise UnknownIndexError(entity, index_name)

        column_name, _ = spec.indexes[index_name]
        column = getattr(spec.model, column_name)

        with self.session() as db:
            records = db.exec(select(spec.model).where(column == str(value))).all()
            return [self._to_read(spec, r) for r in records]

    def delete(self, entity: str, key: str) -> bool:
        spec = self.collection(entity)
        with self.session() as db:
            record = db.get(spec.model, key)
            if not record:
                return False
            db.delete(record)
            db.commit()
            return True

    def mark_synced(self, entity: str, key: str, synced_at: Optional[datetime] = None) -> bool:
        """Confirm an existing record against the server."""
        spec = self.collection(entity)
        with self.session() as db:
            record = db.get(spec.model, key)
            if not record:
                return False
            record.synced_at = synced_at or self.clock()
            db.add(record)
            db.commit()
            return True

    def clear_store(self, entity: str):
        spec = self.collection(entity)
        with self.session() as db:
            self._delete_rows(db, spec.model)
            db.commit()

    def clear_all(self):
        """Destroy every cached record, queue item and metadata entry."""
        with self.session() as db:
            for spec in COLLECTIONS.values():
                self._delete_rows(db, spec.model)
            self._delete_rows(db, SyncQueueItem)
            self._delete_rows(db, SyncMetadataEntry)
            db.commit()
        logger.info("Cleared all offline data")

    def all_records(self) -> List[CachedRecordRead]:
        records: List[CachedRecordRead] = []
        for name in COLLECTIONS:
            records.extend(self.get_all(name))
        return records

    def has_data(self) -> bool:
        with self.session() as db:
            for spec in COLLECTIONS.values():
                if db.exec(select(spec.model.id).limit(1)).first() is not None:
                    return True
        return False

    # ============ METADATA OPERATIONS ============

    def get_metadata(self) -> SyncMetadata:
        with self.session() as db:
            last_sync = db.get(SyncMetadataEntry, LAST_SYNC_KEY)
            last_online = db.get(SyncMetadataEntry, LAST_ONLINE_KEY)
            return SyncMetadata(
                last_sync_at=self._parse_timestamp(last_sync),
                last_online_at=self._parse_timestamp(last_online),
            )

    def set_last_sync_at(self, timestamp: Optional[datetime] = None) -> datetime:
        return self._set_timestamp(LAST_SYNC_KEY, timestamp)

    def set_last_online_at(self, timestamp: Optional[datetime] = None) -> datetime:
        return self._set_timestamp(LAST_ONLINE_KEY, timestamp)

    # ============ HELPERS ============

    def _upsert(
        self,
        db: Session,
        spec: CollectionSpec,
        key: str,
        payload: Dict[str, Any],
        cached_at: datetime,
        synced_at: Optional[datetime]
    ) -> CachedRecordBase:
        record = db.get(spec.model, key)
        if record is None:
            record = spec.model(id=key)

        # Reassign so the JSON column is flagged dirty
        record.payload = dict(payload)
        record.cached_at = cached_at
        record.synced_at = synced_at
        for column, value in spec.index_values(payload).items():
            setattr(record, column, value)

        db.add(record)
        return record

    def _set_timestamp(self, key: str, timestamp: Optional[datetime]) -> datetime:
        timestamp = timestamp or self.clock()
        with self.session() as db:
            entry = db.get(SyncMetadataEntry, key)
            if entry is None:
                entry = SyncMetadataEntry(key=key)
            entry.value = timestamp.isoformat()
            entry.updated_at = self.clock()
            db.add(entry)
            db.commit()
        return timestamp

    @staticmethod
    def _parse_timestamp(entry: Optional[SyncMetadataEntry]) -> Optional[datetime]:
        if entry is None or not entry.value:
            return None
        return datetime.fromisoformat(entry.value)

    @staticmethod
    def _delete_rows(db: Session, model):
        for row in db.exec(select(model)).all():
            db.delete(row)

    @staticmethod
    def _to_read(spec: CollectionSpec, record: CachedRecordBase) -> CachedRecordRead:
        return CachedRecordRead(
            collection=spec.name,
            id=record.id,
            payload=record.payload or {},
            cached_at=record.cached_at,
            synced_at=record.synced_at,
        )

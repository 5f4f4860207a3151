# skids_sync/services/sync_engine.py
"""
Session lifecycle of the offline sync engine.

One OfflineSyncEngine is built per process and handed to the HTTP layer.
Signing in opens the local store and starts the connectivity timers;
signing out stops them and wipes every piece of local data.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.engine import Engine

from skids_sync.core.config import Settings, settings as default_settings
from skids_sync.core.connectivity import ConnectivityMonitor, ConnectivityState
from skids_sync.core.exceptions import NotSignedInError
from skids_sync.crud.cache import LocalCacheStore
from skids_sync.crud.sync_queue import SyncQueue
from skids_sync.database.engine import make_engine
from skids_sync.models.cache import utcnow
from skids_sync.schemas.sync import (
    SyncCycleResult,
    SyncIndicator,
    SyncStatusResponse,
    SyncTrigger,
)
from skids_sync.services.event_bus import EventBus, EventType
from skids_sync.services.server_api import ServerApi
from skids_sync.services.sync_coordinator import SyncCoordinator

logger = logging.getLogger(__name__)


class OfflineSyncEngine:
    """Wires store, queue, coordinator and monitor for one signed-in session."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        engine: Optional[Engine] = None,
        api=None,
        event_bus: Optional[EventBus] = None,
        clock: Callable[[], datetime] = utcnow,
        online: bool = True
    ):
        self.config = config or default_settings
        self.engine = engine or make_engine(self.config.LOCAL_DB_URL)
        self.api = api or ServerApi(self.config.API_BASE_URL, self.config.API_TIMEOUT_SECONDS)
        self.event_bus = event_bus or EventBus()
        self.connectivity = ConnectivityState(is_online=online)
        self.user_id: Optional[str] = None

        self.store = LocalCacheStore(self.engine, self.connectivity, clock=clock)
        self.queue = SyncQueue(self.store, self.connectivity, max_retries=self.config.SYNC_MAX_RETRIES)
        self.coordinator = SyncCoordinator(
            self.store,
            self.queue,
            self.api,
            self.connectivity,
            event_bus=self.event_bus,
            collections=self.config.TRACKED_COLLECTIONS,
        )
        self.monitor = ConnectivityMonitor(
            self.connectivity,
            self.coordinator,
            self.store,
            self.queue,
            event_bus=self.event_bus,
            sync_interval_seconds=self.config.SYNC_INTERVAL_SECONDS,
            probe=self.api.check_health if self.config.CONNECTIVITY_PROBE_ENABLED else None,
            probe_interval_seconds=self.config.CONNECTIVITY_PROBE_SECONDS,
        )

    @property
    def signed_in(self) -> bool:
        return self.user_id is not None

    def require_session(self):
        if not self.signed_in:
            raise NotSignedInError("No signed-in session")

    async def sign_in(
        self,
        user_id: str,
        token: Optional[str] = None,
        start_timers: bool = True
    ) -> Optional[SyncCycleResult]:
        """
        Start a session: open the store, authenticate the transport, start
        the timers and run the startup cycle when offline mode is enabled.

        Raises StoreInitializationError if local storage is unusable.
        """
        if self.signed_in and self.user_id != user_id:
            await self.sign_out()

        self.store.init()
        self.api.set_auth_token(token)
        self.user_id = user_id
        logger.info(f"Sync session started for user {user_id}")
        await self.event_bus.publish(EventType.SESSION_STARTED, {}, user_id=user_id)

        if start_timers:
            await self.monitor.start()

        if self.config.ENABLE_OFFLINE_MODE and self.connectivity.is_online:
            return await self.coordinator.run_cycle(SyncTrigger.STARTUP)
        return None

    async def sign_out(self):
        """End the session: stop timers, cancel any running cycle, then wipe all local data."""
        user_id = self.user_id
        await self.monitor.stop()
        await self.coordinator.cancel_active()
        self.store.teardown()
        self.api.clear_auth_token()
        self.coordinator.dismiss_warnings()
        self.user_id = None
        logger.info(f"Sync session ended for user {user_id}")
        await self.event_bus.publish(EventType.SESSION_ENDED, {}, user_id=user_id)

    async def shutdown(self):
        """Stop timers and release the transport without touching local data."""
        await self.monitor.stop()
        await self.coordinator.cancel_active()
        await self.api.aclose()

    def status(self) -> SyncStatusResponse:
        status = SyncStatusResponse(
            signed_in=self.signed_in,
            user_id=self.user_id,
            is_online=self.connectivity.is_online,
            is_syncing=self.coordinator.is_syncing,
            phase=self.coordinator.phase,
            warnings=list(self.coordinator.warnings),
        )
        if self.store.is_initialized:
            metadata = self.store.get_metadata()
            status.last_sync_at = metadata.last_sync_at
            status.last_online_at = metadata.last_online_at
            status.pending_changes = self.queue.count()
            status.has_cached_data = self.store.has_data()
            status.is_data_fresh = self.coordinator.is_data_fresh(self.config.FRESHNESS_MAX_AGE_HOURS)

        if not status.is_online:
            status.indicator = SyncIndicator.OFFLINE
        elif status.is_syncing:
            status.indicator = SyncIndicator.SYNCING
        elif status.pending_changes > 0:
            status.indicator = SyncIndicator.PENDING
        else:
            status.indicator = SyncIndicator.IDLE
        return status

# skids_sync/core/connectivity.py
"""
Connectivity tracking and the timers that trigger sync cycles.
"""
import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from skids_sync.schemas.sync import SyncTrigger
from skids_sync.services.event_bus import EventType

logger = logging.getLogger(__name__)


class ConnectivityState:
    """Shared online/offline flag read by the store, the queue and the coordinator."""

    def __init__(self, is_online: bool = True):
        self.is_online = is_online
        self.changed_at: Optional[datetime] = None


class ConnectivityMonitor:
    """
    Tracks online/offline transitions and fires sync cycles.

    A reconnect runs a cycle when mutations are pending. Independently, a
    periodic task runs a cycle every sync interval while online, and an
    optional probe task polls the server to feed transitions when the host
    platform does not report them.
    """

    def __init__(
        self,
        state: ConnectivityState,
        coordinator: Any,
        store: Any,
        queue: Any,
        event_bus: Optional[Any] = None,
        sync_interval_seconds: float = 300,
        probe: Optional[Callable[[], Awaitable[bool]]] = None,
        probe_interval_seconds: float = 30
    ):
        self.state = state
        self.coordinator = coordinator
        self.store = store
        self.queue = queue
        self.event_bus = event_bus
        self.sync_interval_seconds = sync_interval_seconds
        self.probe = probe
        self.probe_interval_seconds = probe_interval_seconds
        self.tasks: list[asyncio.Task] = []
        self._running = False

    @property
    def is_online(self) -> bool:
        return self.state.is_online

    @property
    def is_running(self) -> bool:
        return self._running

    async def set_online(self, online: bool):
        """
        Apply a connectivity signal from the host platform.

        Returns the result of the reconnect cycle if one was run, else None.
        """
        was_online = self.state.is_online
        if online == was_online:
            return None

        self.state.is_online = online
        self.state.changed_at = self.store.clock()
        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")

        if self.event_bus:
            await self.event_bus.publish(EventType.CONNECTIVITY_CHANGED, {"online": online})

        if not online:
            return None

        if self.store.is_initialized:
            self.store.set_last_online_at()
            if self.queue.count() > 0:
                return await self.coordinator.run_cycle(SyncTrigger.RECONNECT)
        return None

    async def start(self):
        """Start the periodic sync task (and the probe task when configured)."""
        if self._running:
            logger.warning("Connectivity monitor already running")
            return

        self._running = True
        self.tasks.append(asyncio.create_task(self.periodic_sync_task()))
        if self.probe is not None:
            self.tasks.append(asyncio.create_task(self.probe_task()))

        logger.info(f"Started {len(self.tasks)} connectivity tasks")

    async def stop(self):
        if not self._running:
            return

        self._running = False
        for task in self.tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        self.tasks.clear()
        logger.info("Connectivity tasks stopped")

    async def periodic_sync_task(self):
        """
        Run a sync cycle every interval while online.
        Covers long online sessions with no transition events.
        """
        while self._running:
            try:
                await asyncio.sleep(self.sync_interval_seconds)

                if self.state.is_online and not self.coordinator.is_syncing:
                    result = await self.coordinator.run_cycle(SyncTrigger.PERIODIC)
                    logger.debug(f"Periodic sync finished: {result.errors or 'ok'}")

            except asyncio.CancelledError:
                logger.info("Periodic sync task cancelled")
                break
            except Exception as e:
                logger.error(f"Error in periodic sync task: {e}")

    async def probe_task(self):
        """Poll the server and translate the answer into connectivity transitions."""
        while self._running:
            try:
                online = await self.probe()
                await self.set_online(online)
                await asyncio.sleep(self.probe_interval_seconds)

            except asyncio.CancelledError:
                logger.info("Connectivity probe task cancelled")
                break
            except Exception as e:
                logger.error(f"Error in connectivity probe task: {e}")
                await asyncio.sleep(self.probe_interval_seconds)

# Offline-first cache and sync engine for the SKIDS parent app
from skids_sync.core import config
from skids_sync.services.sync_engine import OfflineSyncEngine

__all__ = [
    "config",
    "OfflineSyncEngine",
]

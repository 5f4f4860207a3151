from fastapi import Depends, HTTPException, Request, status

from skids_sync.core.exceptions import NotSignedInError
from skids_sync.services.sync_engine import OfflineSyncEngine


def get_sync_engine(request: Request) -> OfflineSyncEngine:
    engine = getattr(request.app.state, "sync_engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Sync engine not initialized"
        )
    return engine


def get_active_session(engine: OfflineSyncEngine = Depends(get_sync_engine)) -> OfflineSyncEngine:
    """Sync engine with a signed-in session; 409 otherwise."""
    try:
        engine.require_session()
    except NotSignedInError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="No signed-in session. Sign in before using offline data."
        )
    return engine

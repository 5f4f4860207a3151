# skids_sync/services/server_api.py
"""
HTTP transport to the SKIDS server API.
Maps cached collections to read endpoints and queued mutations to write
endpoints. Every request carries the client timeout; a timeout counts as a
failure of that single request.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from skids_sync.core.config import settings
from skids_sync.core.exceptions import SyncTransportError, UnknownEntityError
from skids_sync.models.cache import SyncAction
from skids_sync.schemas.sync import QueueItemRead

logger = logging.getLogger(__name__)

# Collection -> (path, query params) for the pull phase
READ_ENDPOINTS: Dict[str, Tuple[str, Dict[str, Any]]] = {
    "children": ("/children", {}),
    "appointments": ("/appointments", {"limit": 50}),
    "reports": ("/reports", {}),
    "campaigns": ("/campaigns", {"limit": 20}),
    "messages": ("/messages", {"limit": 100}),
}

HTTP_METHODS = {
    SyncAction.CREATE: "POST",
    SyncAction.UPDATE: "PATCH",
    SyncAction.DELETE: "DELETE",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_child(child: Dict[str, Any]) -> Dict[str, Any]:
    child = dict(child)
    metrics = child.get("healthMetrics")
    if isinstance(metrics, str):
        try:
            child["healthMetrics"] = json.loads(metrics)
        except ValueError:
            logger.warning(f"Child {child.get('id')} has unparseable healthMetrics")
            child["healthMetrics"] = {}
    child["updatedAt"] = child.get("updatedAt") or _now_iso()
    return child


def normalize_appointment(appointment: Dict[str, Any]) -> Dict[str, Any]:
    appointment = dict(appointment)
    appointment["updatedAt"] = appointment.get("updatedAt") or _now_iso()
    return appointment


def normalize_message(message: Dict[str, Any]) -> Dict[str, Any]:
    message = dict(message)
    sender = message.get("sender") or {}
    message["senderName"] = sender.get("name") or "Unknown"
    return message


NORMALIZERS = {
    "children": normalize_child,
    "appointments": normalize_appointment,
    "messages": normalize_message,
}


def route_for(item: QueueItemRead) -> Tuple[str, str, Optional[Dict[str, Any]]]:
    """
    Resolve the (method, path, body) for a queued mutation.

    Raises UnknownEntityError for entities the server does not accept writes for.
    """
    action = SyncAction(item.action)
    method = HTTP_METHODS[action]
    body = item.data if action != SyncAction.DELETE else None

    if item.entity == "child":
        path = "/children" if action == SyncAction.CREATE else f"/children/{item.entity_id}"
    elif item.entity == "appointment":
        if action == SyncAction.CREATE:
            path = f"/children/{item.data.get('childId')}/appointments"
        else:
            path = f"/appointments/{item.entity_id}"
    elif item.entity == "message":
        # Messages are append-only on the server
        method, path, body = "POST", "/messages", item.data
    else:
        raise UnknownEntityError(item.entity)

    return method, path, body


class ServerApi:
    """Async client for the server read and write APIs."""

    def __init__(
        self,
        base_url: str = settings.API_BASE_URL,
        timeout: float = settings.API_TIMEOUT_SECONDS,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    def set_auth_token(self, token: Optional[str]):
        if token:
            self.client.headers["Authorization"] = f"Bearer {token}"
        else:
            self.clear_auth_token()

    def clear_auth_token(self):
        self.client.headers.pop("Authorization", None)

    async def fetch_collection(self, collection: str) -> List[Dict[str, Any]]:
        """
        Fetch the authoritative list of one collection for the signed-in user.

        Raises:
            UnknownEntityError: collection has no read endpoint
            SyncTransportError: network failure or non-success response
        """
        if collection not in READ_ENDPOINTS:
            raise UnknownEntityError(collection)

        path, params = READ_ENDPOINTS[collection]
        try:
            response = await self.client.get(path, params=params or None)
        except httpx.HTTPError as e:
            raise SyncTransportError(f"Failed to fetch {collection}: {e}") from e

        if not response.is_success:
            raise SyncTransportError(
                f"Failed to fetch {collection}: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code
            )

        try:
            items = response.json().get(collection) or []
        except (ValueError, AttributeError) as e:
            raise SyncTransportError(f"Malformed {collection} response: {e}") from e

        normalize = NORMALIZERS.get(collection)
        return [normalize(i) for i in items] if normalize else list(items)

    async def push(self, item: QueueItemRead) -> bool:
        """
        Send one queued mutation. True on a 2xx answer, False otherwise.

        Network errors propagate as httpx.HTTPError so the queue can record
        the message against the item.
        """
        method, path, body = route_for(item)
        response = await self.client.request(method, path, json=body)

        if not response.is_success:
            logger.warning(f"{method} {path} returned {response.status_code}")
        return response.is_success

    async def check_health(self) -> bool:
        """Connectivity probe against GET /health."""
        try:
            response = await self.client.get("/health")
            return response.is_success
        except httpx.HTTPError:
            return False

    async def aclose(self):
        await self.client.aclose()

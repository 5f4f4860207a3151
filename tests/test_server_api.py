import json
import httpx
import pytest
from datetime import datetime

from skids_sync.core.exceptions import SyncTransportError, UnknownEntityError
from skids_sync.models.cache import SyncAction
from skids_sync.schemas.sync import QueueItemRead
from skids_sync.services.server_api import ServerApi, route_for


def make_item(entity, action, data=None, entity_id=None, item_id=1):
    return QueueItemRead(
        id=item_id,
        entity=entity,
        entity_id=entity_id,
        action=action,
        data=data or {},
        created_at=datetime(2026, 10, 18, 9, 0, 0),
    )


class RecordingServer:
    """MockTransport handler that records requests and replays canned responses."""

    def __init__(self):
        self.requests = []
        self.responses = {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.path)
        status_code, body = self.responses.get(key, (200, {}))
        return httpx.Response(status_code, json=body)


@pytest.fixture(name="server")
def server_fixture():
    return RecordingServer()


@pytest.fixture(name="server_api")
def server_api_fixture(server: RecordingServer):
    client = httpx.AsyncClient(
        base_url="http://skids.test/api",
        transport=httpx.MockTransport(server),
    )
    return ServerApi(client=client)


class TestRouting:
    def test_child_routes(self):
        assert route_for(make_item("child", SyncAction.CREATE, {"name": "Asha"})) == (
            "POST", "/children", {"name": "Asha"}
        )
        assert route_for(make_item("child", SyncAction.UPDATE, {"name": "A"}, "c-1")) == (
            "PATCH", "/children/c-1", {"name": "A"}
        )
        assert route_for(make_item("child", SyncAction.DELETE, {"name": "A"}, "c-1")) == (
            "DELETE", "/children/c-1", None
        )

    def test_appointment_create_posts_under_child(self):
        method, path, body = route_for(
            make_item("appointment", SyncAction.CREATE, {"childId": "c-7", "type": "dental"})
        )

        assert (method, path) == ("POST", "/children/c-7/appointments")
        assert body["type"] == "dental"

    def test_appointment_update_and_delete(self):
        assert route_for(make_item("appointment", SyncAction.UPDATE, {}, "a-1"))[:2] == (
            "PATCH", "/appointments/a-1"
        )
        assert route_for(make_item("appointment", SyncAction.DELETE, {}, "a-1"))[:2] == (
            "DELETE", "/appointments/a-1"
        )

    def test_messages_are_always_posted(self):
        for action in SyncAction:
            method, path, _ = route_for(make_item("message", action, {"content": "hi"}, "m-1"))
            assert (method, path) == ("POST", "/messages")

    def test_unknown_entity(self):
        with pytest.raises(UnknownEntityError):
            route_for(make_item("campaign", SyncAction.CREATE))


class TestFetch:
    @pytest.mark.asyncio
    async def test_fetch_uses_read_endpoint_and_limit(self, server_api, server):
        server.responses[("GET", "/api/appointments")] = (
            200, {"appointments": [{"id": "a-1", "childId": "c-1", "updatedAt": "2026-10-01T00:00:00Z"}]}
        )

        items = await server_api.fetch_collection("appointments")

        request = server.requests[0]
        assert request.url.path == "/api/appointments"
        assert request.url.params["limit"] == "50"
        assert items == [{"id": "a-1", "childId": "c-1", "updatedAt": "2026-10-01T00:00:00Z"}]

    @pytest.mark.asyncio
    async def test_children_are_normalized(self, server_api, server):
        server.responses[("GET", "/api/children")] = (200, {"children": [
            {"id": "c-1", "healthMetrics": json.dumps({"height": 120})},
            {"id": "c-2", "healthMetrics": "not json", "updatedAt": "2026-09-01T00:00:00Z"},
        ]})

        children = await server_api.fetch_collection("children")

        assert children[0]["healthMetrics"] == {"height": 120}
        assert children[0]["updatedAt"]
        assert children[1]["healthMetrics"] == {}
        assert children[1]["updatedAt"] == "2026-09-01T00:00:00Z"
        assert "limit" not in server.requests[0].url.params

    @pytest.mark.asyncio
    async def test_messages_get_sender_name(self, server_api, server):
        server.responses[("GET", "/api/messages")] = (200, {"messages": [
            {"id": "m-1", "sender": {"name": "Dr. Mehta"}},
            {"id": "m-2"},
        ]})

        messages = await server_api.fetch_collection("messages")

        assert [m["senderName"] for m in messages] == ["Dr. Mehta", "Unknown"]

    @pytest.mark.asyncio
    async def test_missing_collection_key_is_empty(self, server_api, server):
        server.responses[("GET", "/api/reports")] = (200, {"unexpected": []})

        assert await server_api.fetch_collection("reports") == []

    @pytest.mark.asyncio
    async def test_error_status_raises(self, server_api, server):
        server.responses[("GET", "/api/campaigns")] = (500, {"error": "boom"})

        with pytest.raises(SyncTransportError) as exc_info:
            await server_api.fetch_collection("campaigns")
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        api = ServerApi(client=httpx.AsyncClient(
            base_url="http://skids.test/api", transport=httpx.MockTransport(unreachable)
        ))

        with pytest.raises(SyncTransportError):
            await api.fetch_collection("children")
        assert await api.check_health() is False

    @pytest.mark.asyncio
    async def test_unknown_collection(self, server_api):
        with pytest.raises(UnknownEntityError):
            await server_api.fetch_collection("pets")


class TestPush:
    @pytest.mark.asyncio
    async def test_push_sends_body_and_auth(self, server_api, server):
        server_api.set_auth_token("token-123")

        ok = await server_api.push(make_item("child", SyncAction.UPDATE, {"name": "Asha"}, "c-1"))

        request = server.requests[0]
        assert ok is True
        assert request.method == "PATCH"
        assert request.url.path == "/api/children/c-1"
        assert request.headers["Authorization"] == "Bearer token-123"
        assert json.loads(request.content) == {"name": "Asha"}

    @pytest.mark.asyncio
    async def test_push_rejected(self, server_api, server):
        server.responses[("POST", "/api/messages")] = (422, {"error": "invalid"})

        assert await server_api.push(make_item("message", SyncAction.CREATE, {})) is False

    @pytest.mark.asyncio
    async def test_clear_auth_token(self, server_api, server):
        server_api.set_auth_token("token-123")
        server_api.clear_auth_token()

        await server_api.check_health()

        assert "Authorization" not in server.requests[0].headers
        assert server.requests[0].url.path == "/api/health"

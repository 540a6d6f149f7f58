"""
Tests for RealtimeAPI
=====================

Covers the websocket transport:
- Outbound envelopes and client channel publication
- Inbound decoding and server channel publication
- Connection targets for OpenAI and Azure OpenAI
- Connect, disconnect and close notification
"""

import asyncio
import json
from unittest.mock import AsyncMock, patch

import pytest

from src.realtime import settings
from src.realtime.api import RealtimeAPI
from src.realtime.errors import RealtimeConnectionError


class MockWebSocket:
    """Mock websocket connection for testing."""

    def __init__(self, messages=None, block=False):
        self.sent_messages = []
        self.closed = False
        self._messages = list(messages or [])
        self._block = block
        self._closed_event = asyncio.Event()

    async def send(self, message: str):
        """Mock send method."""
        self.sent_messages.append(json.loads(message))

    async def close(self):
        """Mock close method."""
        self.closed = True
        self._closed_event.set()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for message in self._messages:
            yield message
        if self._block:
            await self._closed_event.wait()


@pytest.fixture
def api():
    """Fixture providing an OpenAI-style API client that is not connected."""
    return RealtimeAPI(url="wss://example.test/v1/realtime", api_key="sk-test", debug=False)


@pytest.fixture
def connected_api(api):
    """Fixture providing an API client with a mock websocket attached."""
    api.ws = MockWebSocket()
    return api


class TestSend:
    """Outbound events."""

    @pytest.mark.asyncio
    async def test_send_requires_connection(self, api):
        with pytest.raises(RealtimeConnectionError):
            await api.send("response.create")

    @pytest.mark.asyncio
    async def test_send_builds_envelope(self, connected_api):
        event = await connected_api.send("session.update", {"session": {"voice": "verse"}})

        assert event["type"] == "session.update"
        assert event["session"] == {"voice": "verse"}
        assert event["event_id"].startswith("evt_")
        assert len(event["event_id"]) == 21
        assert connected_api.ws.sent_messages == [event]

    @pytest.mark.asyncio
    async def test_event_ids_are_unique(self, connected_api):
        ids = {(await connected_api.send("response.create"))["event_id"] for _ in range(50)}
        assert len(ids) == 50

    @pytest.mark.asyncio
    async def test_send_publishes_before_transmitting(self, connected_api):
        seen = []
        connected_api.on(
            "client.response.create", lambda event: seen.append(("named", len(connected_api.ws.sent_messages)))
        )
        connected_api.on("client.*", lambda event: seen.append(("wildcard", len(connected_api.ws.sent_messages))))

        await connected_api.send("response.create")

        assert seen == [("named", 0), ("wildcard", 0)]
        assert len(connected_api.ws.sent_messages) == 1

    @pytest.mark.asyncio
    async def test_send_rejects_non_dict_payload(self, connected_api):
        with pytest.raises(TypeError):
            await connected_api.send("response.create", ["not", "a", "dict"])
        assert connected_api.ws.sent_messages == []


class TestReceive:
    """Inbound events."""

    def test_receive_publishes_on_named_and_wildcard_channels(self, api):
        named, wildcard = [], []
        api.on("server.session.created", named.append)
        api.on("server.*", wildcard.append)

        event = {"event_id": "event_1", "type": "session.created"}
        assert api.receive("session.created", event) is True

        assert named == [event]
        assert wildcard == [event]

    def test_handle_message_decodes_json(self, api):
        received = []
        api.on("server.response.created", received.append)

        api._handle_message(json.dumps({"event_id": "event_1", "type": "response.created", "response": {"id": "r"}}))

        assert received[0]["response"] == {"id": "r"}

    def test_handle_message_drops_invalid_json(self, api):
        received = []
        api.on("server.*", received.append)

        api._handle_message("{not json")
        api._handle_message(json.dumps({"event_id": "event_1"}))

        assert received == []

    def test_error_events_are_still_published(self, api):
        received = []
        api.on("server.error", received.append)

        api._handle_message(json.dumps({"event_id": "event_1", "type": "error", "error": {"message": "bad"}}))

        assert received[0]["error"] == {"message": "bad"}

    @pytest.mark.asyncio
    async def test_receive_loop_dispatches_messages_then_close(self, api):
        messages = [
            json.dumps({"event_id": "event_1", "type": "session.created"}),
            json.dumps({"event_id": "event_2", "type": "response.created", "response": {"id": "r"}}),
        ]
        ws = MockWebSocket(messages=messages)
        api.ws = ws
        received, closed = [], []
        api.on("server.*", received.append)
        api.on("close", closed.append)

        await api._receive_messages()

        assert [event["type"] for event in received] == ["session.created", "response.created"]
        assert closed == [{"error": False}]
        assert ws.closed is True
        assert api.is_connected() is False


class TestConnectionTarget:
    """Endpoint and header selection."""

    def test_openai_target_uses_bearer_header(self, api):
        url, headers = api._connection_target()

        assert url == "wss://example.test/v1/realtime"
        assert headers == {"OpenAI-Beta": "realtime=v1", "Authorization": "Bearer sk-test"}

    def test_azure_target_uses_deployment_and_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com/")
        monkeypatch.setattr(settings, "AZURE_OPENAI_API_KEY", "azure-key")
        monkeypatch.setattr(settings, "AZURE_OPENAI_DEPLOYMENT", "gpt-realtime")

        api = RealtimeAPI(api_version="2024-10-01-preview")
        url, headers = api._connection_target()

        assert url == (
            "wss://example.openai.azure.com/openai/realtime"
            "?api-version=2024-10-01-preview&deployment=gpt-realtime"
        )
        assert headers == {"api-key": "azure-key"}

    def test_explicit_url_wins_over_azure_endpoint(self, monkeypatch):
        monkeypatch.setattr(settings, "AZURE_OPENAI_ENDPOINT", "https://example.openai.azure.com/")

        api = RealtimeAPI(url="wss://other.test/realtime", api_key="k")

        assert api._connection_target()[0] == "wss://other.test/realtime"


class TestConnectionLifecycle:
    """Connect and disconnect."""

    @pytest.mark.asyncio
    async def test_connect_opens_socket_and_starts_receiving(self, api):
        ws = MockWebSocket(block=True)
        connected = []
        api.on("connect", connected.append)

        with patch("src.realtime.api.connect", new=AsyncMock(return_value=ws)) as mock_connect:
            assert await api.connect() is True

        mock_connect.assert_awaited_once()
        _, kwargs = mock_connect.call_args
        assert kwargs["additional_headers"]["Authorization"] == "Bearer sk-test"
        assert api.is_connected()
        assert connected == [{}]

        await api.disconnect()
        assert ws.closed is True
        assert api.is_connected() is False

    @pytest.mark.asyncio
    async def test_connect_twice_raises(self, connected_api):
        with pytest.raises(RealtimeConnectionError):
            await connected_api.connect()

    @pytest.mark.asyncio
    async def test_failed_handshake_raises_connection_error(self, api):
        with patch("src.realtime.api.connect", new=AsyncMock(side_effect=OSError("refused"))):
            with pytest.raises(RealtimeConnectionError):
                await api.connect()

        assert api.is_connected() is False

    @pytest.mark.asyncio
    async def test_disconnect_without_connection_is_safe(self, api):
        await api.disconnect()
        assert api.is_connected() is False

"""
Realtime WebSocket API communication handler.
Handles connection to OpenAI or Azure OpenAI Realtime endpoints.
"""

import asyncio
import json
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedError

from src.realtime import settings
from src.realtime.errors import RealtimeConnectionError
from src.realtime.event_handler import RealtimeEventHandler
from src.realtime.normalizer import EventNormalizer
from src.realtime.utils import generate_id
from utils.ml_logging import get_logger

logger = get_logger("realtime.api")


class RealtimeAPI(RealtimeEventHandler):
    """
    WebSocket client for connecting and interacting with the Realtime API.

    Inbound frames are published as `server.<type>` and `server.*`; sent
    events as `client.<type>` and `client.*`.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        azure_deployment: Optional[str] = None,
        api_version: Optional[str] = None,
        debug: Optional[bool] = None,
    ) -> None:
        super().__init__()
        self.default_url: str = settings.DEFAULT_REALTIME_URL
        use_azure = url is None and bool(settings.AZURE_OPENAI_ENDPOINT)

        if use_azure:
            self.url: str = settings.AZURE_OPENAI_ENDPOINT
            self.api_key: str = api_key or settings.AZURE_OPENAI_API_KEY
            self.azure_deployment: str = azure_deployment or settings.AZURE_OPENAI_DEPLOYMENT
        else:
            self.url = url or settings.REALTIME_API_URL
            self.api_key = api_key or settings.OPENAI_API_KEY
            self.azure_deployment = azure_deployment or ""
        self.api_version: str = api_version or settings.AZURE_OPENAI_API_VERSION

        self.debug: bool = settings.REALTIME_DEBUG if debug is None else debug
        self.normalizer = EventNormalizer(self, debug=self.debug)
        self.ws: Optional[ClientConnection] = None
        self._receive_task: Optional[asyncio.Task] = None

    def is_connected(self) -> bool:
        """
        Check if the WebSocket connection is active.
        """
        return self.ws is not None

    def _connection_target(self) -> Tuple[str, Dict[str, str]]:
        if self.azure_deployment:
            base = self.url.rstrip("/").replace("https://", "wss://", 1)
            query = urlencode({"api-version": self.api_version, "deployment": self.azure_deployment})
            return f"{base}/openai/realtime?{query}", {"api-key": self.api_key}

        headers = {"OpenAI-Beta": "realtime=v1"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return self.url, headers

    async def connect(self) -> bool:
        """
        Establish a WebSocket connection and start the receive loop.

        Raises:
            RealtimeConnectionError: If already connected or the handshake fails.
        """
        if self.is_connected():
            raise RealtimeConnectionError("Already connected.")
        if not self.api_key and self.url == self.default_url:
            logger.warning(f'No api_key provided for connection to "{self.url}"')

        connection_url, headers = self._connection_target()
        logger.info(f'Connecting to "{connection_url.split("?")[0]}"')

        try:
            self.ws = await connect(connection_url, additional_headers=headers, max_size=None)
        except Exception as e:
            logger.error(f'Could not connect to "{self.url}": {e}')
            raise RealtimeConnectionError(f'Could not connect to "{self.url}"') from e

        logger.keyinfo(f'Connected to "{self.url}"')
        self._receive_task = asyncio.create_task(self._receive_messages())
        self.dispatch("connect", {})
        return True

    async def disconnect(self) -> None:
        """
        Gracefully close the WebSocket connection.
        """
        ws, self.ws = self.ws, None
        task, self._receive_task = self._receive_task, None

        if task is not None and task is not asyncio.current_task():
            task.cancel()
        if ws is not None:
            try:
                await ws.close()
                logger.info(f'Disconnected from "{self.url}"')
            except Exception as e:
                logger.error(f"Error during WebSocket disconnect: {e}", exc_info=True)

    def receive(self, event_name: str, event: Dict[str, Any]) -> bool:
        """
        Publish an inbound event on `server.<event_name>` and `server.*`.
        """
        self.normalizer.normalize(event_name, event)
        return True

    async def send(self, event_name: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Send an event to the Realtime API through WebSocket.

        The event is published on `client.<event_name>` and `client.*` before
        it is transmitted.

        Args:
            event_name (str): Type/name of the event.
            data (Optional[Dict[str, Any]]): Payload dictionary.

        Returns:
            Dict[str, Any]: The envelope that was sent.

        Raises:
            RealtimeConnectionError: If WebSocket is not connected.
            TypeError: If data is not a dictionary.
        """
        if not self.is_connected():
            raise RealtimeConnectionError("RealtimeAPI is not connected")

        data = data or {}
        if not isinstance(data, dict):
            logger.error("Provided data is not a dictionary.")
            raise TypeError("Data must be a dictionary.")

        event = {
            "event_id": generate_id("evt_"),
            "type": event_name,
            **data,
        }

        self.normalizer.publish_outbound(event_name, event)
        try:
            await self.ws.send(json.dumps(event))
        except Exception as e:
            logger.error(f"Failed to send event '{event_name}': {e}", exc_info=True)
            raise
        return event

    def _handle_message(self, message: Any) -> None:
        try:
            event = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode incoming message: {e}", exc_info=True)
            return

        if not isinstance(event, dict) or not event.get("type"):
            logger.warning(f"Dropping inbound message without a type: {str(message)[:200]}")
            return

        if event["type"] == "error":
            logger.error(f"Realtime API Error: {event.get('error', event)}", extra={"event_type": "error"})

        self.receive(event["type"], event)

    async def _receive_messages(self) -> None:
        """
        Continuously listen for incoming WebSocket messages and dispatch events.
        """
        ws = self.ws
        if ws is None:
            return

        error = False
        try:
            async for message in ws:
                self._handle_message(message)
        except ConnectionClosed as e:
            error = isinstance(e, ConnectionClosedError)
            logger.warning(f"WebSocket connection closed: {e}")
        except Exception as e:
            error = True
            logger.error(f"Error in WebSocket receive loop: {e}", exc_info=True)
        finally:
            # A disconnect() in progress has already detached this socket
            if self.ws is ws:
                await self.disconnect()
                self.dispatch("close", {"error": error})

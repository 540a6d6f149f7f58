"""
Namespace normalization for realtime events.

Every inbound message is published twice, on `server.<type>` and on the
`server.*` wildcard; every outbound message likewise on `client.<type>` and
`client.*`.
"""

import json
from typing import Any, Dict

from src.realtime.event_handler import RealtimeEventHandler
from utils.ml_logging import get_logger

logger = get_logger("realtime.normalizer")

SERVER_PREFIX = "server."
CLIENT_PREFIX = "client."
SERVER_WILDCARD = "server.*"
CLIENT_WILDCARD = "client.*"

# Audio-rate events, beta and current-generation names
QUIET_SERVER_EVENTS = frozenset(
    {
        "response.audio.delta",
        "response.output_audio.delta",
        "response.audio_transcript.delta",
        "response.output_audio_transcript.delta",
    }
)
QUIET_CLIENT_EVENTS = frozenset({"input_audio_buffer.append"})


class EventNormalizer:
    """
    Publishes transport events on namespaced channels of an event handler.
    """

    def __init__(self, dispatcher: RealtimeEventHandler, debug: bool = False) -> None:
        """
        Args:
            dispatcher (RealtimeEventHandler): Bus the channels are published on.
            debug (bool): Log each event with its payload.
        """
        self.dispatcher = dispatcher
        self.debug = debug

    def normalize(self, raw_name: str, payload: Dict[str, Any]) -> str:
        """
        Publish an inbound event on `server.<name>` and `server.*`.

        Names that already carry the `server.` prefix are published unchanged.

        Returns:
            str: The qualified channel name.
        """
        if raw_name.startswith(SERVER_PREFIX):
            channel = raw_name
        else:
            channel = f"{SERVER_PREFIX}{raw_name}"

        event_name = channel[len(SERVER_PREFIX):]
        if self.debug and event_name not in QUIET_SERVER_EVENTS:
            logger.info(f"received: {event_name} {self._render(payload)}", extra={"event_type": event_name})

        self.dispatcher.dispatch(channel, payload)
        self.dispatcher.dispatch(SERVER_WILDCARD, payload)
        return channel

    def publish_outbound(self, event_name: str, event: Dict[str, Any]) -> str:
        """
        Publish an outbound event on `client.<name>` and `client.*`.

        Returns:
            str: The qualified channel name.
        """
        channel = f"{CLIENT_PREFIX}{event_name}"

        self.dispatcher.dispatch(channel, event)
        self.dispatcher.dispatch(CLIENT_WILDCARD, event)

        if self.debug and event_name not in QUIET_CLIENT_EVENTS:
            logger.info(f"sent: {event_name} {self._render(event)}", extra={"event_type": event_name})
        return channel

    @staticmethod
    def _render(payload: Dict[str, Any]) -> str:
        return json.dumps(payload, indent=2, default=str)

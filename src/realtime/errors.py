"""
Exception types raised by the realtime conversation client.
"""


class RealtimeError(Exception):
    """Base class for every error raised by the realtime package."""


class MalformedEventError(RealtimeError, ValueError):
    """An event is missing `event_id`, `type`, or a field its handler requires."""

    def __init__(self, message: str, event: dict = None) -> None:
        super().__init__(message)
        self.event = event


class UnknownEventTypeError(RealtimeError, ValueError):
    """No conversation event processor exists for the event type."""

    def __init__(self, event_type: str) -> None:
        super().__init__(f'Missing conversation event processor for "{event_type}"')
        self.event_type = event_type


class UnsupportedAudioFormatError(RealtimeError, ValueError):
    """The audio format name has no known sample rate."""

    def __init__(self, audio_format: str, valid: list) -> None:
        super().__init__(
            f"Unsupported audio format: {audio_format}. Valid options: {valid}"
        )
        self.audio_format = audio_format


class RealtimeConnectionError(RealtimeError, RuntimeError):
    """The websocket is in the wrong state for the requested operation."""


class ToolRegistrationError(RealtimeError, ValueError):
    """A tool definition or handler cannot be registered or removed."""

"""
Realtime Conversation Package

Provides classes and utilities for:
- Folding realtime server events into conversation state
- Namespacing and fanning out transport events
- Audio sample decoding and conversion
- WebSocket API management
- Event dispatching and handling
"""

from .api import RealtimeAPI
from .client import RealtimeClient
from .conversation import RealtimeConversation
from .diagnostics import DiagnosticSink, LoggerDiagnosticSink
from .errors import (
    MalformedEventError,
    RealtimeConnectionError,
    RealtimeError,
    ToolRegistrationError,
    UnknownEventTypeError,
    UnsupportedAudioFormatError,
)
from .event_handler import RealtimeEventHandler
from .normalizer import EventNormalizer
from .pending import PendingItemBuffer, PendingSpeechSegment, PendingTranscriptFragment
from .utils import (
    array_buffer_to_base64,
    base64_to_array_buffer,
    decode_audio,
    float_to_16bit_pcm,
    get_sample_rate,
    merge_int16_arrays,
    sample_index,
)

__all__ = [
    "RealtimeClient",
    "RealtimeAPI",
    "RealtimeConversation",
    "RealtimeEventHandler",
    "EventNormalizer",
    "PendingItemBuffer",
    "PendingSpeechSegment",
    "PendingTranscriptFragment",
    "DiagnosticSink",
    "LoggerDiagnosticSink",
    "RealtimeError",
    "MalformedEventError",
    "UnknownEventTypeError",
    "UnsupportedAudioFormatError",
    "RealtimeConnectionError",
    "ToolRegistrationError",
    "float_to_16bit_pcm",
    "base64_to_array_buffer",
    "array_buffer_to_base64",
    "merge_int16_arrays",
    "decode_audio",
    "get_sample_rate",
    "sample_index",
]

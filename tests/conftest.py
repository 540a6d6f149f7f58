"""
Shared fixtures for realtime conversation tests.
"""

import base64
import itertools

import numpy as np
import pytest

from src.realtime.conversation import RealtimeConversation


class RecordingSink:
    """Diagnostic sink that keeps every warning for assertions."""

    def __init__(self):
        self.warnings = []

    def warn(self, message, **context):
        self.warnings.append((message, context))


@pytest.fixture
def sink():
    """Fixture providing a recording diagnostic sink."""
    return RecordingSink()


@pytest.fixture
def conversation(sink):
    """Fixture providing an empty conversation wired to the recording sink."""
    return RealtimeConversation(diagnostics=sink)


@pytest.fixture
def make_event():
    """Fixture providing a factory for server events with unique event ids."""
    counter = itertools.count(1)

    def _make_event(event_type, **fields):
        return {"event_id": f"event_{next(counter)}", "type": event_type, **fields}

    return _make_event


@pytest.fixture
def pcm16_b64():
    """Fixture providing a base64 encoder for little-endian int16 samples."""

    def _encode(samples):
        return base64.b64encode(np.asarray(samples, dtype="<i2").tobytes()).decode("utf-8")

    return _encode

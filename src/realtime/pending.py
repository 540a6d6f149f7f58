"""
Write-ahead buffer for fragments that reference items not yet created.

Speech boundaries, audio chunks, transcripts, text and function-call
arguments can reach the client before the event that creates their item.
They are parked here under the item id and handed over exactly once, by
`PendingItemBuffer.drain`, when the item is materialized.
"""

from dataclasses import dataclass
from typing import Dict, Optional

import numpy as np

from src.realtime.utils import AudioLike, empty_audio, merge_int16_arrays


@dataclass
class PendingSpeechSegment:
    """Speech boundaries and audio gathered for an unseen item."""

    audio_start_ms: Optional[int] = None
    audio_end_ms: Optional[int] = None
    audio: Optional[np.ndarray] = None


@dataclass
class PendingTranscriptFragment:
    """Text fragments gathered for an unseen item."""

    transcript: Optional[str] = None
    text: Optional[str] = None
    arguments: Optional[str] = None


@dataclass
class DrainedFragments:
    """Everything buffered for one item id at the moment it was created."""

    speech: Optional[PendingSpeechSegment] = None
    fragment: Optional[PendingTranscriptFragment] = None

    @property
    def audio(self) -> Optional[np.ndarray]:
        return self.speech.audio if self.speech else None

    @property
    def transcript(self) -> Optional[str]:
        return self.fragment.transcript if self.fragment else None

    @property
    def text(self) -> Optional[str]:
        return self.fragment.text if self.fragment else None

    @property
    def arguments(self) -> Optional[str]:
        return self.fragment.arguments if self.fragment else None


class PendingItemBuffer:
    """
    Side-table of speech segments and text fragments keyed by item id.
    """

    def __init__(self) -> None:
        self.clear()

    def clear(self) -> None:
        self.speech_segments: Dict[str, PendingSpeechSegment] = {}
        self.fragments: Dict[str, PendingTranscriptFragment] = {}

    def __contains__(self, item_id: str) -> bool:
        return item_id in self.speech_segments or item_id in self.fragments

    def __len__(self) -> int:
        return len(self.speech_segments.keys() | self.fragments.keys())

    def start_speech(self, item_id: str, audio_start_ms: int) -> PendingSpeechSegment:
        """Open a new segment, replacing any earlier one for the id."""
        segment = PendingSpeechSegment(audio_start_ms=audio_start_ms)
        self.speech_segments[item_id] = segment
        return segment

    def stop_speech(self, item_id: str, audio_end_ms: int) -> PendingSpeechSegment:
        """Close a segment; a stop without a start uses the end time as its start."""
        segment = self.speech_segments.get(item_id)
        if segment is None:
            segment = self.start_speech(item_id, audio_end_ms)
        segment.audio_end_ms = audio_end_ms
        return segment

    def append_audio(self, item_id: str, samples: AudioLike) -> PendingSpeechSegment:
        segment = self.speech_segments.setdefault(item_id, PendingSpeechSegment())
        current = segment.audio if segment.audio is not None else empty_audio()
        segment.audio = merge_int16_arrays(current, samples)
        return segment

    def set_transcript(self, item_id: str, transcript: str) -> PendingTranscriptFragment:
        fragment = self.fragments.setdefault(item_id, PendingTranscriptFragment())
        fragment.transcript = transcript
        return fragment

    def append_transcript(self, item_id: str, delta: str) -> PendingTranscriptFragment:
        fragment = self.fragments.setdefault(item_id, PendingTranscriptFragment())
        fragment.transcript = (fragment.transcript or "") + delta
        return fragment

    def append_text(self, item_id: str, delta: str) -> PendingTranscriptFragment:
        fragment = self.fragments.setdefault(item_id, PendingTranscriptFragment())
        fragment.text = (fragment.text or "") + delta
        return fragment

    def append_arguments(self, item_id: str, delta: str) -> PendingTranscriptFragment:
        fragment = self.fragments.setdefault(item_id, PendingTranscriptFragment())
        fragment.arguments = (fragment.arguments or "") + delta
        return fragment

    def drain(self, item_id: str) -> DrainedFragments:
        """Remove and return everything buffered for the id."""
        return DrainedFragments(
            speech=self.speech_segments.pop(item_id, None),
            fragment=self.fragments.pop(item_id, None),
        )

"""
RealtimeConversation folds realtime server events into conversation state:
items, responses, audio and transcripts.
"""

import copy
from typing import Any, Dict, List, Optional, Tuple, Union

import numpy as np

from src.enums.audio_formats import AudioFormat
from src.enums.conversation_events import ConversationEventKind
from src.realtime.diagnostics import DiagnosticSink, LoggerDiagnosticSink
from src.realtime.errors import MalformedEventError
from src.realtime.pending import DrainedFragments, PendingItemBuffer
from src.realtime.utils import (
    AudioLike,
    as_int16_array,
    decode_audio,
    empty_audio,
    merge_int16_arrays,
    sample_index,
)
from utils.ml_logging import get_logger

logger = get_logger("realtime.conversation")

Item = Dict[str, Any]
Delta = Dict[str, Any]
ProcessResult = Tuple[Optional[Item], Optional[Delta]]

TEXT_CONTENT_TYPES = ("text", "input_text", "output_text")
AUDIO_CONTENT_TYPES = ("audio", "input_audio", "output_audio")
TERMINAL_STATUSES = ("completed", "incomplete")


def _require(event: Dict[str, Any], *fields: str) -> None:
    missing = [field for field in fields if event.get(field) is None]
    if missing:
        names = ", ".join(f'"{field}"' for field in missing)
        raise MalformedEventError(f'Missing {names} on "{event.get("type")}" event', event)


def _require_item(event: Dict[str, Any], field: str = "item") -> Item:
    _require(event, field)
    payload = event[field]
    if not isinstance(payload, dict) or payload.get("id") is None:
        raise MalformedEventError(f'Missing "{field}.id" on "{event.get("type")}" event', event)
    return payload


def _content_part(item: Item, content_index: Any) -> Optional[Dict[str, Any]]:
    content = item.get("content") or []
    if isinstance(content_index, int) and 0 <= content_index < len(content):
        return content[content_index]
    return None


def _advance_status(item: Item, status: Optional[str]) -> None:
    # Status only moves forward
    if status is None:
        return
    if item.get("status") in TERMINAL_STATUSES and status not in TERMINAL_STATUSES:
        return
    item["status"] = status


class RealtimeConversation:
    """
    Holds conversation items and responses, materializing each item from the
    stream of creation, delta and boundary events.

    Fragments that name an item before its creation event are parked in a
    `PendingItemBuffer` and drained exactly once when the item is created.
    """

    default_frequency: int = AudioFormat.PCM16.sample_rate

    def __init__(self, diagnostics: Optional[DiagnosticSink] = None) -> None:
        """
        Args:
            diagnostics (Optional[DiagnosticSink]): Receives warnings about
                events that reference unknown items or responses. Defaults to
                a sink that logs them.
        """
        self.diagnostics: DiagnosticSink = diagnostics or LoggerDiagnosticSink(logger)
        self.audio_format: AudioFormat = AudioFormat.PCM16
        self.default_frequency = self.audio_format.sample_rate
        self.pending = PendingItemBuffer()
        self.clear()

    def set_audio_format(self, audio_format: Union[AudioFormat, str]) -> None:
        """
        Set the codec and sample rate used for decoding and time conversion.

        Audio already stored is not rescaled.

        Raises:
            UnsupportedAudioFormatError: If the format name is unknown.
        """
        self.audio_format = AudioFormat.from_string(audio_format)
        self.default_frequency = self.audio_format.sample_rate
        logger.debug(f"Audio format set to {self.audio_format} ({self.default_frequency} Hz)")

    def clear(self) -> None:
        """
        Reset the conversation state, clearing all items, responses, and queued data.
        """
        self.item_lookup: Dict[str, Item] = {}
        self.items: List[Item] = []
        self.response_lookup: Dict[str, Dict[str, Any]] = {}
        self.responses: List[Dict[str, Any]] = []
        self.pending.clear()
        self.queued_input_audio: Optional[np.ndarray] = None

    def queue_input_audio(self, input_audio: AudioLike) -> np.ndarray:
        """
        Hold input audio for the next user message item created.

        Args:
            input_audio (AudioLike): Int16 samples or raw PCM16 bytes.

        Returns:
            np.ndarray: The queued samples.
        """
        self.queued_input_audio = as_int16_array(input_audio).copy()
        return self.queued_input_audio

    def process_event(self, event: Dict[str, Any], *args: Any) -> ProcessResult:
        """
        Fold one server event into the conversation.

        Args:
            event (Dict[str, Any]): Server event with at least `event_id` and `type`.
            *args (Any): Extra inputs for specific events, e.g. the raw input
                audio buffer for `input_audio_buffer.speech_stopped`.

        Returns:
            ProcessResult: The affected item and the incremental delta. The
            delta is set only for text, transcript, audio and argument
            fragments applied to an existing item.

        Raises:
            MalformedEventError: If `event_id`, `type` or a required field is missing.
            UnknownEventTypeError: If no processor handles the event type.
        """
        if not isinstance(event, dict):
            raise MalformedEventError(f"Event must be a dictionary, got {type(event).__name__}")
        if not event.get("event_id"):
            logger.error(f"Rejected event without event_id: type={event.get('type')}")
            raise MalformedEventError('Missing "event_id" on event', event)
        if not event.get("type"):
            logger.error(f"Rejected event without type: event_id={event.get('event_id')}")
            raise MalformedEventError('Missing "type" on event', event)

        kind = ConversationEventKind.from_event_type(event["type"])
        if not kind.is_delta:
            logger.debug(f"Folding {event['type']}", extra={"event_type": event["type"]})
        event_processor = self.EventProcessors[kind]
        return event_processor(self, event, *args)

    def get_item(self, item_id: str) -> Optional[Item]:
        """
        Retrieve an item by its unique ID.
        """
        return self.item_lookup.get(item_id)

    def get_items(self) -> List[Item]:
        """
        Get a list of all conversation items in conversation order.

        Returns:
            List[Item]: A new list; the item dictionaries are shared.
        """
        return self.items[:]

    def _ignore(self, event: Dict[str, Any], message: str, **context: Any) -> Tuple[None, None]:
        self.diagnostics.warn(
            f"{event['type']}: {message} Ignoring event.",
            event_type=event["type"],
            **context,
        )
        return None, None

    def _materialize(self, payload: Item) -> Item:
        """
        Deep-copy an item payload, register it if unseen and derive `formatted`.

        Re-creating a registered id returns a detached copy with `formatted`
        derived from its content; the registered item, the pending table and
        the queued input audio are left alone.
        """
        new_item = copy.deepcopy(payload)
        item_id = new_item["id"]
        is_new = item_id not in self.item_lookup
        # Decode before registering so a bad payload leaves the store untouched
        content_audio = self._decode_content_audio(new_item)

        if is_new:
            self.item_lookup[item_id] = new_item
            self.items.append(new_item)
            drained = self.pending.drain(item_id)
        else:
            logger.debug(f"Item '{item_id}' already registered; not re-registering.", extra={"item_id": item_id})
            drained = DrainedFragments()

        self._format_item(new_item, drained, content_audio, consume_input_audio=is_new)
        return new_item

    def _decode_content_audio(self, item: Item) -> np.ndarray:
        samples = empty_audio()
        for content in item.get("content") or []:
            if content.get("type") in AUDIO_CONTENT_TYPES and content.get("audio"):
                samples = merge_int16_arrays(samples, decode_audio(content["audio"], self.audio_format))
        return samples

    def _format_item(
        self, item: Item, drained: DrainedFragments, content_audio: np.ndarray, consume_input_audio: bool
    ) -> None:
        formatted: Dict[str, Any] = {"audio": empty_audio(), "text": "", "transcript": ""}
        item["formatted"] = formatted

        if drained.audio is not None:
            formatted["audio"] = drained.audio

        for content in item.get("content") or []:
            if content.get("type") in TEXT_CONTENT_TYPES:
                formatted["text"] += content.get("text") or ""
        if len(content_audio):
            formatted["audio"] = merge_int16_arrays(formatted["audio"], content_audio)

        if drained.transcript is not None:
            formatted["transcript"] = drained.transcript
        if drained.text:
            formatted["text"] += drained.text

        item_type = item.get("type")
        if item_type == "message":
            if item.get("role") == "user":
                _advance_status(item, "completed")
                if consume_input_audio and self.queued_input_audio is not None:
                    formatted["audio"] = self.queued_input_audio
                    self.queued_input_audio = None
            else:
                _advance_status(item, "in_progress")
        elif item_type == "function_call":
            formatted["tool"] = {
                "type": "function",
                "name": item.get("name"),
                "call_id": item.get("call_id"),
                "arguments": item.get("arguments") or "",
            }
            if drained.arguments:
                formatted["tool"]["arguments"] = drained.arguments
                item["arguments"] = drained.arguments
            _advance_status(item, "in_progress")
        elif item_type == "function_call_output":
            _advance_status(item, "completed")
            formatted["output"] = item.get("output")

    def _process_item_created(self, event: Dict[str, Any]) -> ProcessResult:
        payload = _require_item(event)
        return self._materialize(payload), None

    def _process_item_done(self, event: Dict[str, Any]) -> ProcessResult:
        payload = _require_item(event)
        existing = self.item_lookup.get(payload["id"])
        if existing is None:
            return self._materialize(payload), None

        updates = {k: v for k, v in payload.items() if k not in ("formatted", "status")}
        existing.update(copy.deepcopy(updates))
        _advance_status(existing, payload.get("status"))
        return existing, None

    def _process_item_truncated(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id", "audio_end_ms")
        item_id = event["item_id"]

        item = self.item_lookup.get(item_id)
        if item is None:
            return self._ignore(event, f"Item '{item_id}' not found.", item_id=item_id)

        end_index = sample_index(event["audio_end_ms"], self.default_frequency)
        item["formatted"]["transcript"] = ""
        item["formatted"]["audio"] = item["formatted"]["audio"][:end_index]
        return item, None

    def _process_item_deleted(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id")
        item_id = event["item_id"]

        item = self.item_lookup.get(item_id)
        if item is None:
            return self._ignore(event, f"Item '{item_id}' not found.", item_id=item_id)

        del self.item_lookup[item_id]
        # Identity match; items hold numpy arrays so == is not usable
        index = next((i for i, entry in enumerate(self.items) if entry is item), None)
        if index is not None:
            del self.items[index]
        return item, None

    def _process_input_audio_transcription_completed(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id")
        item_id = event["item_id"]
        transcript = event.get("transcript") or ""
        # A single space records that transcription ran but heard nothing
        formatted_transcript = transcript or " "

        item = self.item_lookup.get(item_id)
        if item is None:
            self.pending.set_transcript(item_id, formatted_transcript)
            return None, None

        part = _content_part(item, event.get("content_index", 0))
        if part is not None:
            part["transcript"] = transcript
        item["formatted"]["transcript"] = formatted_transcript
        return item, {"transcript": transcript}

    def _process_speech_started(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id", "audio_start_ms")
        # Speech detection precedes the item it belongs to, so the segment is always queued
        self.pending.start_speech(event["item_id"], event["audio_start_ms"])
        return None, None

    def _process_speech_stopped(
        self, event: Dict[str, Any], input_audio_buffer: Optional[AudioLike] = None
    ) -> ProcessResult:
        _require(event, "item_id", "audio_end_ms")
        samples = None if input_audio_buffer is None else as_int16_array(input_audio_buffer)
        speech = self.pending.stop_speech(event["item_id"], event["audio_end_ms"])
        if samples is not None:
            start_index = sample_index(speech.audio_start_ms, self.default_frequency)
            end_index = sample_index(speech.audio_end_ms, self.default_frequency)
            speech.audio = samples[start_index:end_index].copy()
        return None, None

    def _process_response_created(self, event: Dict[str, Any]) -> ProcessResult:
        payload = _require_item(event, "response")

        if payload["id"] not in self.response_lookup:
            response = copy.deepcopy(payload)
            # Output ids are appended as their items are registered
            response["output"] = []
            self.response_lookup[response["id"]] = response
            self.responses.append(response)
        return None, None

    def _process_output_item_added(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "response_id")
        payload = _require_item(event)
        response_id = event["response_id"]

        response = self.response_lookup.get(response_id)
        if response is None:
            return self._ignore(event, f"Response '{response_id}' not found.", response_id=response_id)

        new_item = self._materialize(payload)
        if new_item["id"] not in response["output"]:
            response["output"].append(new_item["id"])
        return new_item, None

    def _process_output_item_done(self, event: Dict[str, Any]) -> ProcessResult:
        payload = event.get("item")
        if not payload:
            return self._ignore(event, 'Missing "item".')

        item_id = payload.get("id")
        found_item = self.item_lookup.get(item_id)
        if found_item is None:
            return self._ignore(event, f"Item '{item_id}' not found.", item_id=item_id)

        _advance_status(found_item, payload.get("status"))
        return found_item, None

    def _process_content_part_added(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id", "part")
        item_id = event["item_id"]

        item = self.item_lookup.get(item_id)
        if item is None:
            return self._ignore(event, f"Item '{item_id}' not found.", item_id=item_id)

        item.setdefault("content", []).append(copy.deepcopy(event["part"]))
        return item, None

    def _process_transcript_delta(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id", "delta")
        item_id = event["item_id"]
        delta = event["delta"]

        item = self.item_lookup.get(item_id)
        if item is None:
            self.pending.append_transcript(item_id, delta)
            return None, None

        part = _content_part(item, event.get("content_index", 0))
        if part is not None:
            if part.get("transcript") is None:
                part["transcript"] = ""
            part["transcript"] += delta
        item["formatted"]["transcript"] += delta
        return item, {"transcript": delta}

    def _process_text_delta(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id", "delta")
        item_id = event["item_id"]
        delta = event["delta"]

        item = self.item_lookup.get(item_id)
        if item is None:
            self.pending.append_text(item_id, delta)
            return None, None

        part = _content_part(item, event.get("content_index", 0))
        if part is not None:
            if part.get("text") is None:
                part["text"] = ""
            part["text"] += delta
        item["formatted"]["text"] += delta
        return item, {"text": delta}

    def _process_audio_delta(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id", "delta")
        item_id = event["item_id"]
        append_values = decode_audio(event["delta"], self.audio_format)

        item = self.item_lookup.get(item_id)
        if item is None:
            self.pending.append_audio(item_id, append_values)
            return None, None

        item["formatted"]["audio"] = merge_int16_arrays(item["formatted"]["audio"], append_values)
        return item, {"audio": append_values}

    def _process_function_call_arguments_delta(self, event: Dict[str, Any]) -> ProcessResult:
        _require(event, "item_id", "delta")
        item_id = event["item_id"]
        delta = event["delta"]

        item = self.item_lookup.get(item_id)
        if item is None:
            self.pending.append_arguments(item_id, delta)
            return None, None

        item["arguments"] = (item.get("arguments") or "") + delta
        tool = item["formatted"].get("tool")
        if tool is not None:
            tool["arguments"] += delta
        return item, {"arguments": delta}

    # Event dispatch table
    EventProcessors = {
        ConversationEventKind.ITEM_CREATED: _process_item_created,
        ConversationEventKind.ITEM_DONE: _process_item_done,
        ConversationEventKind.ITEM_TRUNCATED: _process_item_truncated,
        ConversationEventKind.ITEM_DELETED: _process_item_deleted,
        ConversationEventKind.INPUT_TRANSCRIPTION_COMPLETED: _process_input_audio_transcription_completed,
        ConversationEventKind.SPEECH_STARTED: _process_speech_started,
        ConversationEventKind.SPEECH_STOPPED: _process_speech_stopped,
        ConversationEventKind.RESPONSE_CREATED: _process_response_created,
        ConversationEventKind.OUTPUT_ITEM_ADDED: _process_output_item_added,
        ConversationEventKind.OUTPUT_ITEM_DONE: _process_output_item_done,
        ConversationEventKind.CONTENT_PART_ADDED: _process_content_part_added,
        ConversationEventKind.TRANSCRIPT_DELTA: _process_transcript_delta,
        ConversationEventKind.TEXT_DELTA: _process_text_delta,
        ConversationEventKind.AUDIO_DELTA: _process_audio_delta,
        ConversationEventKind.ARGUMENTS_DELTA: _process_function_call_arguments_delta,
    }

from enum import Enum


class ConversationEventKind(Enum):
    """Server event kinds folded into the conversation state"""

    ITEM_CREATED = "conversation.item.created"
    ITEM_DONE = "conversation.item.done"
    ITEM_TRUNCATED = "conversation.item.truncated"
    ITEM_DELETED = "conversation.item.deleted"
    INPUT_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
    SPEECH_STARTED = "input_audio_buffer.speech_started"
    SPEECH_STOPPED = "input_audio_buffer.speech_stopped"
    RESPONSE_CREATED = "response.created"
    OUTPUT_ITEM_ADDED = "response.output_item.added"
    OUTPUT_ITEM_DONE = "response.output_item.done"
    CONTENT_PART_ADDED = "response.content_part.added"
    TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    TEXT_DELTA = "response.text.delta"
    AUDIO_DELTA = "response.audio.delta"
    ARGUMENTS_DELTA = "response.function_call_arguments.delta"

    def __str__(self) -> str:
        """Return the string value for easy comparison"""
        return self.value

    @classmethod
    def from_event_type(cls, event_type: str) -> "ConversationEventKind":
        """Resolve a beta or current-generation event type to its kind"""
        from src.realtime.errors import UnknownEventTypeError

        kind = EVENT_TYPE_KINDS.get(event_type)
        if kind is None:
            raise UnknownEventTypeError(event_type)
        return kind

    @property
    def is_delta(self) -> bool:
        """Check if this kind streams incremental fragments onto an item"""
        return self in [
            ConversationEventKind.TRANSCRIPT_DELTA,
            ConversationEventKind.TEXT_DELTA,
            ConversationEventKind.AUDIO_DELTA,
            ConversationEventKind.ARGUMENTS_DELTA,
        ]


# Every accepted event type string, including current-generation spellings
EVENT_TYPE_KINDS = {kind.value: kind for kind in ConversationEventKind}
EVENT_TYPE_KINDS.update(
    {
        "conversation.item.added": ConversationEventKind.ITEM_CREATED,
        "response.output_audio_transcript.delta": ConversationEventKind.TRANSCRIPT_DELTA,
        "response.output_text.delta": ConversationEventKind.TEXT_DELTA,
        "response.output_audio.delta": ConversationEventKind.AUDIO_DELTA,
    }
)

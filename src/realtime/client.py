"""
RealtimeClient is the high-level controller for realtime conversations:
session configuration, input audio, tool execution and conversation state.
"""

import asyncio
import copy
import inspect
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

import numpy as np
from opentelemetry import trace

from src.enums.monitoring import SpanAttr
from src.realtime import settings
from src.realtime.api import RealtimeAPI
from src.realtime.conversation import ProcessResult, RealtimeConversation
from src.realtime.diagnostics import DiagnosticSink
from src.realtime.errors import RealtimeError, ToolRegistrationError
from src.realtime.event_handler import RealtimeEventHandler
from src.realtime.utils import (
    AudioLike,
    array_buffer_to_base64,
    as_int16_array,
    empty_audio,
    float_to_16bit_pcm,
    merge_int16_arrays,
    sample_count_to_ms,
)
from utils.ml_logging import get_logger

logger = get_logger("realtime.client")
tracer = trace.get_tracer(__name__)

# Server events folded into the conversation with no extra client behaviour
CONVERSATION_EVENTS = (
    "response.created",
    "response.output_item.added",
    "response.content_part.added",
    "conversation.item.truncated",
    "conversation.item.deleted",
    "conversation.item.input_audio_transcription.completed",
    "response.audio_transcript.delta",
    "response.output_audio_transcript.delta",
    "response.audio.delta",
    "response.output_audio.delta",
    "response.text.delta",
    "response.output_text.delta",
    "response.function_call_arguments.delta",
)

ToolHandler = Callable[..., Union[Any, Awaitable[Any]]]


def _format_name(value: Any) -> Any:
    # Current-generation sessions describe formats as {"type": "audio/pcm", "rate": 24000}
    if isinstance(value, dict):
        return value.get("type")
    return value


class RealtimeClient(RealtimeEventHandler):
    """
    Client orchestrator that manages RealtimeAPI, conversation tracking,
    session configuration, and user interactions.

    Emits:
        realtime.event: every sent and received event, with time and source.
        conversation.updated: an item changed; carries `item` and `delta`.
        conversation.item.appended: an item was created.
        conversation.item.completed: an item reached `completed`.
        conversation.interrupted: the server detected user speech.
        conversation.item.input_audio_transcription.completed
        conversation.tool_call.error: a registered tool raised.
    """

    def __init__(
        self,
        system_prompt: str = "",
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        debug: Optional[bool] = None,
        session_config_path: Optional[str] = None,
        diagnostics: Optional[DiagnosticSink] = None,
    ) -> None:
        super().__init__()
        self.realtime = RealtimeAPI(url=url, api_key=api_key, debug=debug)
        self.conversation = RealtimeConversation(diagnostics=diagnostics)

        self.default_session_config: Dict[str, Any] = settings.merge_session_config(
            settings.DEFAULT_SESSION_CONFIG,
            {"instructions": system_prompt, **settings.load_session_config(session_config_path)},
        )
        self.session_config: Dict[str, Any] = {}
        self.tools: Dict[str, Dict[str, Any]] = {}
        self.input_audio_buffer: np.ndarray = empty_audio()
        self.session_created: bool = False
        self.tool_tasks: Set[asyncio.Task] = set()

        self._reset_config()
        self._add_api_event_handlers()

    def _reset_config(self) -> None:
        """
        Reset session configuration, tool registry and the local input buffer.
        """
        self.session_config = copy.deepcopy(self.default_session_config)
        self.tools = {}
        self.input_audio_buffer = empty_audio()
        self.session_created = False
        output_format = _format_name(self.session_config.get("output_audio_format"))
        if output_format:
            self.conversation.set_audio_format(output_format)

    def _add_api_event_handlers(self) -> None:
        """
        Attach RealtimeAPI channels to conversation updates.
        """
        self.realtime.on("client.*", self._log_client_event)
        self.realtime.on("server.*", self._log_server_event)
        self.realtime.on("server.session.created", self._on_session_created)
        for event_type in CONVERSATION_EVENTS:
            self.realtime.on(f"server.{event_type}", self._process_event)
        self.realtime.on("server.input_audio_buffer.speech_started", self._on_speech_started)
        self.realtime.on("server.input_audio_buffer.speech_stopped", self._on_speech_stopped)
        self.realtime.on("server.conversation.item.created", self._on_item_created)
        self.realtime.on("server.conversation.item.added", self._on_item_created)
        self.realtime.on("server.conversation.item.done", self._on_item_done)
        self.realtime.on("server.response.output_item.done", self._on_output_item_done)

    def _log_event(self, source: str, event: Dict[str, Any]) -> None:
        self.dispatch(
            "realtime.event",
            {
                "time": datetime.now(timezone.utc).isoformat(),
                "source": source,
                "event": event,
            },
        )

    def _log_client_event(self, event: Dict[str, Any]) -> None:
        self._log_event("client", event)

    def _log_server_event(self, event: Dict[str, Any]) -> None:
        self._log_event("server", event)

    def _on_session_created(self, event: Dict[str, Any]) -> None:
        self.session_created = True

    def _process_event(self, event: Dict[str, Any], *args: Any, announce: bool = True) -> ProcessResult:
        """
        Fold an event into the conversation and announce the change.

        Args:
            event (Dict[str, Any]): Server event.
            *args (Any): Extra inputs passed to the conversation processor.
            announce (bool): Dispatch `conversation.updated` for the affected item.
        """
        with tracer.start_as_current_span(
            "realtime_client.process_event",
            attributes={
                SpanAttr.EVENT_TYPE.value: event.get("type") or "",
                SpanAttr.EVENT_ID.value: event.get("event_id") or "",
            },
        ) as span:
            item, delta = self.conversation.process_event(event, *args)
            if event.get("response_id"):
                span.set_attribute(SpanAttr.RESPONSE_ID.value, event["response_id"])
            if item:
                span.set_attribute(SpanAttr.ITEM_ID.value, item["id"])
                span.set_attribute(SpanAttr.ITEM_STATUS.value, item.get("status") or "")
            if delta:
                span.set_attribute(SpanAttr.DELTA_KIND.value, next(iter(delta)))

        if event["type"] == "conversation.item.input_audio_transcription.completed":
            self.dispatch("conversation.item.input_audio_transcription.completed", {"item": item, "delta": delta})
        if item and announce:
            self.dispatch("conversation.updated", {"item": item, "delta": delta})
        return item, delta

    def _on_speech_started(self, event: Dict[str, Any]) -> None:
        self._process_event(event)
        self.dispatch("conversation.interrupted", event)

    def _on_speech_stopped(self, event: Dict[str, Any]) -> None:
        self._process_event(event, self.input_audio_buffer)

    def _on_item_created(self, event: Dict[str, Any]) -> None:
        item_id = (event.get("item") or {}).get("id")
        if item_id is not None and self.conversation.get_item(item_id) is not None:
            # Repeat creation returns a detached copy; nothing was appended
            self._process_event(event, announce=False)
            return

        item, _ = self._process_event(event)
        self.dispatch("conversation.item.appended", {"item": item})
        if item and item.get("status") == "completed":
            self.dispatch("conversation.item.completed", {"item": item})

    def _on_item_done(self, event: Dict[str, Any]) -> None:
        item, _ = self._process_event(event)
        if item and item.get("status") == "completed":
            self.dispatch("conversation.item.completed", {"item": item})

    def _on_output_item_done(self, event: Dict[str, Any]) -> None:
        item, _ = self._process_event(event)
        if item and item.get("status") == "completed":
            self.dispatch("conversation.item.completed", {"item": item})

        tool = item.get("formatted", {}).get("tool") if item else None
        if tool and tool.get("name") in self.tools:
            # Only the tool call is deferred; the fold above has already run
            task = asyncio.get_running_loop().create_task(self._call_tool(copy.deepcopy(tool)))
            self.tool_tasks.add(task)
            task.add_done_callback(self.tool_tasks.discard)
            task.add_done_callback(self._report_task_error("conversation.tool_call"))
        elif tool:
            logger.debug(f"No handler registered for tool '{tool.get('name')}'; leaving call to the application.")

    async def _call_tool(self, tool: Dict[str, Any]) -> None:
        """
        Execute a registered tool with its parsed arguments and send the output.

        Args:
            tool (Dict[str, Any]): Tool descriptor with arguments.
        """
        with tracer.start_as_current_span(
            "realtime_client.call_tool",
            attributes={
                SpanAttr.TOOL_NAME.value: tool.get("name") or "",
                SpanAttr.TOOL_CALL_ID.value: tool.get("call_id") or "",
            },
        ) as span:
            try:
                logger.info(f"Calling tool {tool['name']} with arguments: {tool['arguments']}")
                json_arguments = json.loads(tool["arguments"] or "{}")
                handler = self.tools[tool["name"]]["handler"]
                result = handler(**json_arguments)
                if inspect.isawaitable(result):
                    result = await result
                output = json.dumps(result)
            except Exception as e:
                logger.error(f"Tool '{tool.get('name')}' failed: {e}", exc_info=True)
                span.set_attribute(SpanAttr.ERROR_TYPE.value, type(e).__name__)
                span.set_attribute(SpanAttr.ERROR_MESSAGE.value, str(e))
                output = json.dumps({"error": str(e)})
                self.dispatch("conversation.tool_call.error", {"error": str(e), "tool": tool.get("name")})

        await self.realtime.send(
            "conversation.item.create",
            {
                "item": {
                    "type": "function_call_output",
                    "call_id": tool["call_id"],
                    "output": output,
                }
            },
        )
        await self.create_response()

    def is_connected(self) -> bool:
        return self.realtime.is_connected()

    async def connect(self) -> bool:
        """
        Connect to the Realtime API and push the session configuration.
        """
        if self.is_connected():
            raise RealtimeError("Already connected, use disconnect() first")
        await self.realtime.connect()
        await self.update_session()
        return True

    async def disconnect(self) -> None:
        """
        Disconnect the client and clear conversation state.
        """
        self.session_created = False
        self.conversation.clear()
        for task in list(self.tool_tasks):
            task.cancel()
        if self.realtime.is_connected():
            await self.realtime.disconnect()

    async def reset(self) -> bool:
        """
        Disconnect and return to the initial configuration and handlers.
        """
        await self.disconnect()
        self.clear_event_handlers()
        self.realtime.clear_event_handlers()
        self._reset_config()
        self._add_api_event_handlers()
        return True

    async def wait_for_session_created(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the server confirms the session.
        """
        if not self.is_connected():
            raise RealtimeError("Not connected, use connect() first")
        if not self.session_created:
            await self.realtime.wait_for_next("server.session.created", timeout=timeout)
        return True

    def get_turn_detection_type(self) -> Optional[str]:
        return (self.session_config.get("turn_detection") or {}).get("type")

    async def add_tool(self, definition: Dict[str, Any], handler: ToolHandler) -> Dict[str, Any]:
        """
        Register a tool and push the updated tool list to the session.

        Raises:
            ToolRegistrationError: If the name is missing or taken, or the handler is not callable.
        """
        if not definition.get("name"):
            raise ToolRegistrationError("Missing tool name in definition")
        name = definition["name"]
        if name in self.tools:
            raise ToolRegistrationError(f'Tool "{name}" already added. Please use remove_tool("{name}") first.')
        if not callable(handler):
            raise ToolRegistrationError(f'Tool "{name}" handler must be callable')
        self.tools[name] = {"definition": definition, "handler": handler}
        await self.update_session()
        return self.tools[name]

    def remove_tool(self, name: str) -> bool:
        if name not in self.tools:
            raise ToolRegistrationError(f'Tool "{name}" does not exist, can not be removed.')
        del self.tools[name]
        return True

    async def update_session(self, **kwargs: Any) -> bool:
        """
        Update session configuration and send it when connected.

        A new `output_audio_format` also switches the conversation's decoding
        and sample rate.
        """
        if "output_audio_format" in kwargs:
            self.conversation.set_audio_format(_format_name(kwargs["output_audio_format"]))
        self.session_config.update(kwargs)

        tool_definitions = [
            {**definition, "type": "function"} for definition in self.session_config.get("tools") or []
        ] + [{**tool["definition"], "type": "function"} for tool in self.tools.values()]
        session = {**self.session_config, "tools": tool_definitions}
        if self.realtime.is_connected():
            await self.realtime.send("session.update", {"session": session})
        return True

    async def send_user_message_content(self, content: List[Dict[str, Any]]) -> bool:
        """
        Send a user message content array, then request a response.

        Args:
            content (List[Dict[str, Any]]): Content parts; `input_audio` parts
                may carry raw samples or bytes, which are base64-encoded.
        """
        if content:
            # Encode on copies; the caller keeps its raw samples
            content = [dict(c) for c in content]
            for c in content:
                if c.get("type") == "input_audio" and isinstance(c.get("audio"), (bytes, bytearray, np.ndarray)):
                    c["audio"] = array_buffer_to_base64(c["audio"])
            await self.realtime.send(
                "conversation.item.create",
                {
                    "item": {
                        "type": "message",
                        "role": "user",
                        "content": content,
                    }
                },
            )
        await self.create_response()
        return True

    async def append_input_audio(self, array_buffer: AudioLike) -> bool:
        """
        Stream microphone samples to the server and keep a local copy.

        Args:
            array_buffer (AudioLike): Int16 or float32 samples, or raw PCM16 bytes.
        """
        if isinstance(array_buffer, np.ndarray) and array_buffer.dtype == np.float32:
            array_buffer = float_to_16bit_pcm(array_buffer)
        samples = as_int16_array(array_buffer)
        if len(samples) == 0:
            return True

        await self.realtime.send("input_audio_buffer.append", {"audio": array_buffer_to_base64(samples)})
        self.input_audio_buffer = merge_int16_arrays(self.input_audio_buffer, samples)

        if len(self.input_audio_buffer) > settings.REALTIME_MAX_INPUT_BUFFER_SAMPLES:
            if self.get_turn_detection_type() is None:
                logger.warning("Input audio buffer size exceeded threshold, flushing early.")
                await self.create_response()
            else:
                logger.warning(f"Input audio buffer holds {len(self.input_audio_buffer)} samples.")
        return True

    async def create_response(self) -> bool:
        """
        Request a response, committing buffered input audio when turn detection is off.
        """
        if self.get_turn_detection_type() is None and len(self.input_audio_buffer) > 0:
            await self.realtime.send("input_audio_buffer.commit")
            self.conversation.queue_input_audio(self.input_audio_buffer)
            self.input_audio_buffer = empty_audio()
        await self.realtime.send("response.create")
        return True

    async def cancel_response(self, item_id: Optional[str] = None, sample_count: int = 0) -> Dict[str, Any]:
        """
        Cancel the in-flight response, optionally truncating an assistant audio item.

        Args:
            item_id (Optional[str]): Assistant message whose playback stopped.
            sample_count (int): Samples already played; audio after it is dropped.

        Returns:
            Dict[str, Any]: `{"item": item}` for the truncated item, or `{"item": None}`.
        """
        if not item_id:
            await self.realtime.send("response.cancel")
            return {"item": None}

        item = self.conversation.get_item(item_id)
        if not item:
            raise RealtimeError(f'Could not find item "{item_id}"')
        if item.get("type") != "message" or item.get("role") != "assistant":
            raise RealtimeError("Can only cancel response for assistant message items.")

        await self.realtime.send("response.cancel")

        audio_index = next(
            (i for i, c in enumerate(item.get("content") or []) if c.get("type") in ("audio", "output_audio")),
            -1,
        )
        if audio_index == -1:
            raise RealtimeError("Could not find audio on item to cancel.")

        await self.realtime.send(
            "conversation.item.truncate",
            {
                "item_id": item_id,
                "content_index": audio_index,
                "audio_end_ms": sample_count_to_ms(sample_count, self.conversation.default_frequency),
            },
        )
        return {"item": item}

    async def delete_item(self, item_id: str) -> bool:
        await self.realtime.send("conversation.item.delete", {"item_id": item_id})
        return True

    async def wait_for_next_item(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        event = await self.wait_for_next("conversation.item.appended", timeout=timeout)
        return {"item": event["item"]}

    async def wait_for_next_completed_item(self, timeout: Optional[float] = None) -> Dict[str, Any]:
        event = await self.wait_for_next("conversation.item.completed", timeout=timeout)
        return {"item": event["item"]}

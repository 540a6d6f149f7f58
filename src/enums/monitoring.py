from enum import Enum


# Span attribute keys for realtime OpenTelemetry tracing
class SpanAttr(str, Enum):
    EVENT_ID = "realtime.event.id"
    EVENT_TYPE = "realtime.event.type"
    ITEM_ID = "realtime.item.id"
    ITEM_STATUS = "realtime.item.status"
    RESPONSE_ID = "realtime.response.id"
    DELTA_KIND = "realtime.delta.kind"
    TOOL_NAME = "realtime.tool.name"
    TOOL_CALL_ID = "realtime.tool.call_id"
    ERROR_TYPE = "error.type"
    ERROR_MESSAGE = "error.message"

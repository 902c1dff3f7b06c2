"""Normalized event protocol sent from the server to the client.

Each event is one JSON object framed as a single `data:` line followed by a
blank line. The stream ends with the literal `[DONE]` frame. Clients
reassemble text by concatenating `text_delta` events in arrival order and
must ignore event types they do not know.
"""

from __future__ import annotations

import enum
import json
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from forgechat.modes import Mode

DONE = "[DONE]"


class ToolStatus(str, enum.Enum):
    STARTING = "starting"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


class _Event(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


class ModeStatusEvent(_Event):
    type: Literal["mode_status"] = "mode_status"
    mode: Mode
    tools_available: int
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    conversation_id: str | None = None


class ProgressEvent(_Event):
    type: Literal["progress"] = "progress"
    stage: str
    mode: Mode


class TextDelta(BaseModel):
    text: str


class TextDeltaEvent(_Event):
    type: Literal["text_delta"] = "text_delta"
    delta: TextDelta
    mode: Mode
    restrictions: list[str] = Field(default_factory=list)


class ToolExecutionEvent(_Event):
    type: Literal["tool_execution"] = "tool_execution"
    tool: str
    status: ToolStatus
    invocation_id: str | None = None
    result: Any | None = None
    error: str | None = None
    mode: Mode


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: str
    suggestion: str | None = None
    mode: Mode | None = None
    tool: str | None = None


class CompleteEvent(_Event):
    type: Literal["complete"] = "complete"
    mode: Mode
    tools_executed: int
    message_length: int
    conversation_id: str | None = None


StreamEvent = Annotated[
    Union[ModeStatusEvent, ProgressEvent, TextDeltaEvent, ToolExecutionEvent, ErrorEvent, CompleteEvent],
    Field(discriminator="type"),
]

KNOWN_EVENT_TYPES = frozenset({"mode_status", "progress", "text_delta", "tool_execution", "error", "complete"})


class EndOfStream:
    """Sentinel yielded last by every stream."""

    _instance: EndOfStream | None = None

    def __new__(cls) -> EndOfStream:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = EndOfStream()


class UnknownEvent(BaseModel):
    """An event type this client version does not understand."""

    type: str
    payload: dict[str, Any]


_stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def encode_event(event: StreamEvent | EndOfStream) -> str:
    """Encode one event as the single-line payload of a `data:` frame."""
    if isinstance(event, EndOfStream):
        return DONE
    return event.model_dump_json(exclude_none=True)


def decode_event(data: str) -> StreamEvent | UnknownEvent | EndOfStream:
    """Decode the payload of one `data:` frame."""
    data = data.strip()
    if data == DONE:
        return END_OF_STREAM

    payload = json.loads(data)
    if not isinstance(payload, dict) or not isinstance(payload.get("type"), str):
        raise ValueError(f"Not a stream event: {data[:100]}")
    if payload["type"] not in KNOWN_EVENT_TYPES:
        return UnknownEvent(type=payload["type"], payload=payload)
    try:
        return _stream_event_adapter.validate_python(payload)
    except PydanticValidationError as e:
        raise ValueError(f"Malformed {payload['type']} event: {e}") from e


def collect_text(events: list[StreamEvent | UnknownEvent | EndOfStream]) -> str:
    return "".join(e.delta.text for e in events if isinstance(e, TextDeltaEvent))

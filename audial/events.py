"""Server-sent event framing shared by the server and stream readers."""

from __future__ import annotations

import json
import logging
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .errors import StreamError
from .extract import ParseResult, parse_output

_LOGGER = logging.getLogger("audial.events")

DONE_SENTINEL = "[DONE]"
SSE_PREFIX = "data: "
EMPTY_STREAM_MESSAGE = "Empty response from AI. The model may be overloaded - please try again."


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class DeltaText(_Event):
    text: str


class DeltaEvent(_Event):
    type: Literal["content_block_delta"] = "content_block_delta"
    delta: DeltaText

    @classmethod
    def of(cls, text: str) -> "DeltaEvent":
        return cls(delta=DeltaText(text=text))


class StatusEvent(_Event):
    type: Literal["status"] = "status"
    status: str


class ClearEvent(_Event):
    type: Literal["clear"] = "clear"


class ErrorDetail(_Event):
    message: str


class ErrorEvent(_Event):
    type: Literal["error"] = "error"
    error: ErrorDetail

    @classmethod
    def of(cls, message: str) -> "ErrorEvent":
        return cls(error=ErrorDetail(message=message))


class DoneEvent(_Event):
    """Terminal marker; framed as the bare ``[DONE]`` sentinel, not JSON."""

    type: Literal["done"] = "done"


StreamEvent = Annotated[
    Union[DeltaEvent, StatusEvent, ClearEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]
_EVENT_ADAPTER: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)


def encode_sse(event: StreamEvent) -> str:
    if isinstance(event, DoneEvent):
        return f"{SSE_PREFIX}{DONE_SENTINEL}\n\n"
    return f"{SSE_PREFIX}{event.model_dump_json()}\n\n"


def decode_sse_line(line: str) -> StreamEvent | None:
    """Decode one ``data:`` line; other lines and malformed payloads yield ``None``."""
    if not line.startswith(SSE_PREFIX):
        return None
    payload = line[len(SSE_PREFIX) :].strip()
    if payload == DONE_SENTINEL:
        return DoneEvent()
    try:
        return _EVENT_ADAPTER.validate_python(json.loads(payload))
    except (json.JSONDecodeError, ValidationError) as exc:
        _LOGGER.debug("Skipping undecodable stream line %r: %s", payload[:80], exc)
        return None


class StreamAccumulator:
    """Client-side reader that rebuilds the final model text from framed events.

    Deltas are appended, ``clear`` discards the current attempt's text, and an
    ``error`` event raises :class:`StreamError`. Chunks may split lines.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._chunks: list[str] = []
        self.status: str | None = None
        self.done = False

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    def feed(self, chunk: str) -> list[StreamEvent]:
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split("\n")
        events: list[StreamEvent] = []
        for line in lines:
            event = self.feed_line(line)
            if event is not None:
                events.append(event)
        return events

    def feed_line(self, line: str) -> StreamEvent | None:
        event = decode_sse_line(line.rstrip("\r"))
        if event is None:
            return None
        if isinstance(event, DeltaEvent):
            self._chunks.append(event.delta.text)
        elif isinstance(event, StatusEvent):
            self.status = event.status
        elif isinstance(event, ClearEvent):
            self._chunks.clear()
        elif isinstance(event, ErrorEvent):
            raise StreamError(event.error.message or "stream error")
        elif isinstance(event, DoneEvent):
            self.done = True
        return event

    def finish(self) -> ParseResult:
        if self._buffer:
            self.feed_line(self._buffer)
            self._buffer = ""
        text = self.text
        if not text.strip():
            raise StreamError(EMPTY_STREAM_MESSAGE)
        return parse_output(text)

from __future__ import annotations

import pytest

from audial.errors import StreamError
from audial.events import (
    EMPTY_STREAM_MESSAGE,
    ClearEvent,
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    StatusEvent,
    StreamAccumulator,
    decode_sse_line,
    encode_sse,
)

from .patterns import VALID_CODE, fenced


def test_encode_sse_frames() -> None:
    assert encode_sse(DeltaEvent.of("hi")) == (
        'data: {"type":"content_block_delta","delta":{"text":"hi"}}\n\n'
    )
    assert encode_sse(StatusEvent(status="simplifying...")) == (
        'data: {"type":"status","status":"simplifying..."}\n\n'
    )
    assert encode_sse(ClearEvent()) == 'data: {"type":"clear"}\n\n'
    assert encode_sse(ErrorEvent.of("boom")) == (
        'data: {"type":"error","error":{"message":"boom"}}\n\n'
    )
    assert encode_sse(DoneEvent()) == "data: [DONE]\n\n"


def test_decode_ignores_noise() -> None:
    assert decode_sse_line(": keep-alive") is None
    assert decode_sse_line("data: {broken") is None
    assert decode_sse_line('data: {"type":"unknown"}') is None
    assert isinstance(decode_sse_line("data: [DONE]"), DoneEvent)
    assert decode_sse_line('data: {"type":"clear"}') == ClearEvent()


def _frames(*events: object) -> str:
    return "".join(encode_sse(event) for event in events)  # type: ignore[arg-type]


def test_accumulator_rebuilds_text_across_split_chunks() -> None:
    body = _frames(
        DeltaEvent.of("```javascript\n"),
        DeltaEvent.of(VALID_CODE),
        DeltaEvent.of("\n```"),
        DoneEvent(),
    )
    accumulator = StreamAccumulator()

    for start in range(0, len(body), 7):
        accumulator.feed(body[start : start + 7])
    result = accumulator.finish()

    assert accumulator.done
    assert accumulator.text == fenced(VALID_CODE)
    assert result.success
    assert result.code == VALID_CODE


def test_accumulator_clear_discards_first_attempt() -> None:
    accumulator = StreamAccumulator()

    events = accumulator.feed(
        _frames(
            DeltaEvent.of("broken attempt"),
            StatusEvent(status="simplifying..."),
            ClearEvent(),
            DeltaEvent.of(fenced(VALID_CODE)),
        )
    )

    assert [type(event) for event in events] == [DeltaEvent, StatusEvent, ClearEvent, DeltaEvent]
    assert accumulator.status == "simplifying..."
    assert accumulator.text == fenced(VALID_CODE)


def test_accumulator_raises_on_error_event() -> None:
    accumulator = StreamAccumulator()

    with pytest.raises(StreamError, match="no code block found in response"):
        accumulator.feed(_frames(ErrorEvent.of("no code block found in response")))


def test_accumulator_empty_stream() -> None:
    accumulator = StreamAccumulator()
    accumulator.feed(_frames(DoneEvent()))

    with pytest.raises(StreamError) as excinfo:
        accumulator.finish()

    assert str(excinfo.value) == EMPTY_STREAM_MESSAGE


def test_accumulator_flushes_unterminated_last_line() -> None:
    accumulator = StreamAccumulator()
    accumulator.feed('data: {"type":"content_block_delta","delta":{"text":"hello"}}')

    result = accumulator.finish()

    assert accumulator.text == "hello"
    assert result.error == "no code block found in response"

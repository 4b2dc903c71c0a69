"""Tests for the SSE decoder."""

import pytest

from conduit.llm.sse import SSEConfig, SSEDecoder, SSEEventType, parse_sse_line, parse_sse_stream


STREAM = (
    'data: {"n": 1}\n\n'
    "event: ping\n"
    'data: {"n": 2, "text": "héllo"}\n\n'
    "data: not json\n\n"
    "data: [DONE]\n\n"
    'data: {"n": 3}\n\n'
).encode("utf-8")


def _decode_all(chunks):
    decoder = SSEDecoder()
    events = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
    events.extend(decoder.flush())
    return [(e.type, e.data, e.event_type) for e in events]


async def _aiter(chunks):
    for chunk in chunks:
        yield chunk


def test_parse_sse_line_variants():
    assert parse_sse_line("") is None
    assert parse_sse_line(": keep-alive") is None
    assert parse_sse_line("data: ") is None
    assert parse_sse_line('data: {"a": 1}').data == {"a": 1}
    assert parse_sse_line('data:{"a": 1}').data == {"a": 1}
    assert parse_sse_line("data: plain").data == "plain"
    assert parse_sse_line("data: [DONE]").type == SSEEventType.DONE
    assert parse_sse_line("event: message_stop").type == SSEEventType.DONE
    event = parse_sse_line("event: content_block_delta")
    assert event.type == SSEEventType.EVENT
    assert event.event_type == "content_block_delta"


def test_custom_prefix_and_marker():
    config = SSEConfig(data_prefix="chunk: ", done_marker="<END>")
    assert parse_sse_line('chunk: {"a": 1}', config).data == {"a": 1}
    assert parse_sse_line("chunk: <END>", config).type == SSEEventType.DONE
    assert parse_sse_line('data: {"a": 1}', config) is None


def test_crlf_line_endings():
    events = _decode_all([b'data: {"a": 1}\r\n\r\ndata: [DONE]\r\n'])
    assert events[0] == (SSEEventType.DATA, {"a": 1}, None)
    assert events[-1][0] == SSEEventType.DONE


def test_done_stops_decoding():
    events = _decode_all([STREAM])
    datas = [data for kind, data, _ in events if kind == SSEEventType.DATA]
    assert datas == [{"n": 1}, {"n": 2, "text": "héllo"}, "not json"]
    assert events[-1][0] == SSEEventType.DONE


@pytest.mark.parametrize("size", [1, 2, 3, 7, 64])
def test_chunk_boundaries_do_not_change_events(size):
    """Same events however the bytes are split, including inside 'é'."""
    chunks = [STREAM[i : i + size] for i in range(0, len(STREAM), size)]
    assert _decode_all(chunks) == _decode_all([STREAM])


def test_flush_emits_unterminated_last_line():
    events = _decode_all([b'data: {"a": 1}\n', b'data: {"b": 2}'])
    assert [e[1] for e in events] == [{"a": 1}, {"b": 2}]


@pytest.mark.asyncio
async def test_parse_sse_stream_stops_reading_at_done():
    consumed = []

    async def source():
        for chunk in [b'data: {"a": 1}\n\n', b"data: [DONE]\n\n", b'data: {"late": 1}\n\n']:
            consumed.append(chunk)
            yield chunk

    events = [e async for e in parse_sse_stream(source())]
    assert [e.type for e in events] == [SSEEventType.DATA, SSEEventType.DONE]
    assert len(consumed) == 2


@pytest.mark.asyncio
async def test_parse_sse_stream_read_error_yields_error_event():
    async def source():
        yield b'data: {"a": 1}\n\n'
        raise ConnectionResetError("connection reset by peer")

    events = [e async for e in parse_sse_stream(source())]
    assert events[0].data == {"a": 1}
    assert events[-1].type == SSEEventType.ERROR
    assert isinstance(events[-1].exception, ConnectionResetError)

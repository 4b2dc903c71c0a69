"""Tests for event sinks."""

import pytest

from conduit.llm.sink import CallbackSink, QueueSink


@pytest.mark.asyncio
async def test_queue_sink_relays_until_closed():
    sink = QueueSink()
    sink.send("llm:stream", {"type": "text", "content": "a"})
    sink.send("llm:done", {})
    sink.close()
    sink.close()

    received = [item async for item in sink.events()]

    assert received == [("llm:stream", {"type": "text", "content": "a"}), ("llm:done", {})]


@pytest.mark.asyncio
async def test_destroyed_queue_sink_ends_events():
    sink = QueueSink()
    assert not sink.is_destroyed()
    sink.destroy()
    assert sink.is_destroyed()
    assert [item async for item in sink.events()] == []


def test_callback_sink():
    received = []
    gone = False
    sink = CallbackSink(lambda channel, payload: received.append(channel), lambda: gone)

    sink.send("llm:stream", {})
    assert received == ["llm:stream"]
    assert not sink.is_destroyed()

    gone = True
    assert sink.is_destroyed()


def test_callback_sink_without_destroyed_check():
    assert CallbackSink(lambda c, p: None).is_destroyed() is False

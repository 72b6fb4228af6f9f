"""Tests for a single session transport: queueing, streaming and closing."""

import asyncio
from typing import (
    List,
    Tuple,
)

import pytest

from toolbridge.core.schema import ToolResult
from toolbridge.server.transport import SessionTransport
from toolbridge.tools import ToolRegistry


@pytest.mark.asyncio
async def test_drain_returns_queued_messages(registry: ToolRegistry) -> None:
    transport = SessionTransport(registry)
    transport.push({"jsonrpc": "2.0", "method": "a"})
    transport.push({"jsonrpc": "2.0", "method": "b"})

    assert [m["method"] for m in transport.drain()] == ["a", "b"]
    assert transport.drain() == []


@pytest.mark.asyncio
async def test_stream_yields_events_until_closed(registry: ToolRegistry) -> None:
    transport = SessionTransport(registry)
    transport.push({"jsonrpc": "2.0", "method": "hello"})

    events = []

    async def consume() -> None:
        async for event in transport.stream(keepalive=0.01):
            events.append(event)

    task = asyncio.create_task(consume())
    await asyncio.sleep(0.05)
    await transport.close()
    await asyncio.wait_for(task, timeout=1)

    assert events[0].startswith("event: message\ndata: ")
    assert '"hello"' in events[0]
    assert ": keepalive\n\n" in events[1:]


@pytest.mark.asyncio
async def test_close_is_idempotent(registry: ToolRegistry) -> None:
    transport = SessionTransport(registry)
    transport.bind("abc")
    calls = []

    async def on_close(session_id: str) -> None:
        calls.append(session_id)

    transport.add_close_callback(on_close)
    await transport.close()
    await transport.close()

    assert calls == ["abc"]
    transport.push({"jsonrpc": "2.0", "method": "late"})
    assert transport.drain() == []


def test_bind_twice_fails(registry: ToolRegistry) -> None:
    transport = SessionTransport(registry)
    transport.bind("one")
    with pytest.raises(RuntimeError):
        transport.bind("two")


@pytest.mark.asyncio
async def test_requests_in_one_session_run_in_order() -> None:
    events: List[Tuple[str, int]] = []
    registry = ToolRegistry()

    @registry.tool("slow", "Records when it runs")
    async def slow(n: int, delay: float) -> ToolResult:
        events.append(("start", n))
        await asyncio.sleep(delay)
        events.append(("end", n))
        return ToolResult.from_text(str(n))

    transport = SessionTransport(registry.freeze())
    payloads = [
        {
            "jsonrpc": "2.0",
            "id": n,
            "method": "tools/call",
            "params": {"name": "slow", "arguments": {"n": n, "delay": 0.05 - n * 0.01}},
        }
        for n in range(5)
    ]
    tasks = []
    for payload in payloads:
        tasks.append(asyncio.create_task(transport.handle_payload(payload)))
        # let each request reach the session before the next arrives
        await asyncio.sleep(0)
    responses = await asyncio.gather(*tasks)

    assert events == [(kind, n) for n in range(5) for kind in ("start", "end")]
    assert [r["result"]["content"][0]["text"] for r in responses] == ["0", "1", "2", "3", "4"]

"""Tests for the lock-guarded session table."""

import asyncio
import itertools
import time

import pytest

from toolbridge.server.session_table import SessionTable
from toolbridge.server.transport import SessionTransport
from toolbridge.tools import ToolRegistry


@pytest.fixture
def factory(registry: ToolRegistry):
    return lambda: SessionTransport(registry)


@pytest.mark.asyncio
async def test_create_lookup_remove(factory) -> None:
    table = SessionTable(idle_timeout=0)
    session = await table.create(factory)

    assert session.transport.session_id == session.id
    assert await table.lookup(session.id) is session
    assert await table.remove(session.id) is True
    assert await table.lookup(session.id) is None
    # idempotent
    assert await table.remove(session.id) is False
    assert await table.remove("never-existed") is False


@pytest.mark.asyncio
async def test_lookup_without_id(factory) -> None:
    table = SessionTable(idle_timeout=0)
    assert await table.lookup(None) is None
    assert await table.lookup("") is None


@pytest.mark.asyncio
async def test_ids_are_unique_under_concurrency(factory) -> None:
    table = SessionTable(idle_timeout=0)
    sessions = await asyncio.gather(*(table.create(factory) for _ in range(50)))
    ids = {session.id for session in sessions}
    assert len(ids) == 50
    assert table.count == 50
    assert all(len(session_id) == 32 for session_id in ids)


@pytest.mark.asyncio
async def test_retired_ids_are_never_reused(factory) -> None:
    ids = itertools.chain(["a", "a", "b"], (f"id-{n}" for n in itertools.count()))
    table = SessionTable(id_generator=lambda: next(ids), idle_timeout=0)

    first = await table.create(factory)
    assert first.id == "a"
    await table.remove("a")

    second = await table.create(factory)
    assert second.id == "b"


@pytest.mark.asyncio
async def test_transport_close_removes_entry(factory) -> None:
    table = SessionTable(idle_timeout=0)
    session = await table.create(factory)

    await session.transport.close()

    assert session.id not in table
    assert await table.lookup(session.id) is None


@pytest.mark.asyncio
async def test_reap_idle_closes_stale_sessions(factory) -> None:
    table = SessionTable(idle_timeout=10)
    stale = await table.create(factory)
    fresh = await table.create(factory)
    stale.last_seen -= 60

    reaped = await table.reap_idle()

    assert reaped == [stale.id]
    assert stale.transport.closed
    assert stale.id not in table
    assert fresh.id in table


@pytest.mark.asyncio
async def test_reap_idle_keeps_streaming_sessions(factory) -> None:
    table = SessionTable(idle_timeout=10)
    listener = await table.create(factory)
    listener.last_seen -= 60
    stream = listener.transport.stream(keepalive=0.01)
    assert await stream.__anext__() == ": keepalive\n\n"
    assert listener.transport.streaming

    assert await table.reap_idle() == []
    assert listener.id in table

    await stream.aclose()
    assert not listener.transport.streaming
    assert await table.reap_idle(now=time.monotonic() + 60) == [listener.id]


@pytest.mark.asyncio
async def test_reap_idle_disabled(factory) -> None:
    table = SessionTable(idle_timeout=0)
    session = await table.create(factory)
    session.last_seen -= 10_000
    assert await table.reap_idle() == []
    assert session.id in table


@pytest.mark.asyncio
async def test_close_all(factory) -> None:
    table = SessionTable(idle_timeout=0)
    sessions = [await table.create(factory) for _ in range(3)]
    await table.close_all()
    assert table.count == 0
    assert all(session.transport.closed for session in sessions)

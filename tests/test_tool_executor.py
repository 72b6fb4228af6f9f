"""
Basic sanity tests for the tool executor.

Run with:
$ pytest -q
"""

import asyncio
from typing import Annotated

import pytest
from pydantic import Field

from toolbridge.agent.tool_executor import (
    ToolExecutionError,
    execute_tool,
    invoke_tool,
)
from toolbridge.tools import ToolRegistry


@pytest.fixture
def stub_registry() -> ToolRegistry:
    registry = ToolRegistry()

    # This is a stub tool for testing purposes.
    @registry.tool("add")
    async def _add(a: int, b: int) -> str:
        """Return the sum of two integers (used only for tests)."""
        return str(a + b)

    @registry.tool("boom")
    async def _boom() -> str:
        raise ConnectionError("upstream unreachable")

    @registry.tool("slow")
    async def _slow(delay: Annotated[float, Field(description="Seconds to sleep")] = 1.0) -> str:
        await asyncio.sleep(delay)
        return "done"

    @registry.tool("wrong-type")
    async def _wrong_type() -> str:
        return 42  # type: ignore[return-value]

    return registry.freeze()


@pytest.mark.asyncio
async def test_execute_tool_success(stub_registry: ToolRegistry) -> None:
    """Executor should return the correct value when the tool is valid."""

    result = await execute_tool(stub_registry, "add", {"a": 2, "b": 3})
    assert not result.is_error
    assert result.text == "5"


@pytest.mark.asyncio
async def test_invoke_tool_missing(stub_registry: ToolRegistry) -> None:
    """Executor should raise *ToolExecutionError* for an unknown tool."""

    with pytest.raises(ToolExecutionError) as excinfo:
        await invoke_tool(stub_registry, "not_a_tool", {})
    assert "not_a_tool" in str(excinfo.value)


@pytest.mark.asyncio
async def test_execute_tool_missing_is_error_result(stub_registry: ToolRegistry) -> None:
    result = await execute_tool(stub_registry, "not_a_tool", {})
    assert result.is_error
    assert "not registered" in result.text


@pytest.mark.asyncio
async def test_execute_tool_bad_args(stub_registry: ToolRegistry) -> None:
    """Missing and mistyped arguments become an error result naming the field."""

    missing = await execute_tool(stub_registry, "add", {"a": 2})  # missing 'b'
    assert missing.is_error
    assert "Invalid arguments" in missing.text
    assert "b" in missing.text

    mistyped = await execute_tool(stub_registry, "add", {"a": "x", "b": 2})
    assert mistyped.is_error
    assert "a:" in mistyped.text


@pytest.mark.asyncio
async def test_execute_tool_rejects_unknown_args(stub_registry: ToolRegistry) -> None:
    result = await execute_tool(stub_registry, "add", {"a": 1, "b": 2, "c": 3})
    assert result.is_error


@pytest.mark.asyncio
async def test_execute_tool_handler_fault(stub_registry: ToolRegistry) -> None:
    """A handler exception is caught at the dispatch boundary."""

    result = await execute_tool(stub_registry, "boom")
    assert result.is_error
    assert "upstream unreachable" in result.text


@pytest.mark.asyncio
async def test_execute_tool_timeout(stub_registry: ToolRegistry) -> None:
    result = await execute_tool(stub_registry, "slow", {"delay": 5.0}, timeout=0.05)
    assert result.is_error
    assert "timed out" in result.text


@pytest.mark.asyncio
async def test_execute_tool_optional_default(stub_registry: ToolRegistry) -> None:
    result = await execute_tool(stub_registry, "slow", {"delay": 0})
    assert result.text == "done"


@pytest.mark.asyncio
async def test_execute_tool_bad_return_type(stub_registry: ToolRegistry) -> None:
    result = await execute_tool(stub_registry, "wrong-type")
    assert result.is_error
    assert "expected ToolResult" in result.text

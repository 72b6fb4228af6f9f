"""Tests for the tool registry and signature-derived schemas."""

from typing import (
    Annotated,
    List,
    Optional,
)

import pytest
from pydantic import (
    Field,
    ValidationError,
)

from toolbridge.core.schema import (
    ToolDescriptor,
    ToolResult,
)
from toolbridge.tools import (
    ToolNotFoundError,
    ToolRegistry,
    build_args_model,
    schema_from_signature,
)


async def _noop() -> str:
    return ""


def test_duplicate_registration_fails() -> None:
    registry = ToolRegistry()
    registry.register(ToolDescriptor(name="dup"), _noop)
    with pytest.raises(ValueError, match="already registered"):
        registry.register(ToolDescriptor(name="dup"), _noop)


def test_frozen_registry_rejects_registration() -> None:
    registry = ToolRegistry().freeze()
    with pytest.raises(RuntimeError):
        registry.register(ToolDescriptor(name="late"), _noop)


def test_sync_handler_rejected() -> None:
    registry = ToolRegistry()
    with pytest.raises(TypeError):
        registry.register(ToolDescriptor(name="sync"), lambda: ToolResult())  # type: ignore[arg-type]


def test_resolve_unknown_tool() -> None:
    with pytest.raises(ToolNotFoundError):
        ToolRegistry().resolve("nope")


def test_describe_all_is_ordered_and_stable(registry: ToolRegistry) -> None:
    first = registry.describe_all()
    second = registry.describe_all()
    assert first == second
    assert [d.name for d in first] == [
        "print-menu",
        "news-by-topic",
        "adder",
        "twitter-X-post",
        "wikipedia-search",
        "github-repo-info",
    ]


def test_schema_from_signature() -> None:
    async def handler(
        items: Annotated[List[str], Field(description="Things")],
        count: int,
        title: Annotated[Optional[str], Field(description="Heading")] = None,
    ) -> str:
        return ""

    schema = schema_from_signature(handler)
    assert schema["type"] == "object"
    assert schema["required"] == ["items", "count"]
    assert schema["properties"]["items"] == {
        "type": "array",
        "items": {"type": "string"},
        "description": "Things",
    }
    assert schema["properties"]["count"] == {"type": "integer"}
    assert schema["properties"]["title"] == {"type": "string", "description": "Heading"}


def test_adder_descriptor(registry: ToolRegistry) -> None:
    descriptor = registry.resolve("adder").descriptor
    assert descriptor.description == "Add two numbers together"
    assert descriptor.required == ["a", "b"]
    assert descriptor.parameters["a"]["type"] == "number"
    wire = descriptor.model_dump(by_alias=True)
    assert "inputSchema" in wire


def test_args_model_is_strict(registry: ToolRegistry) -> None:
    model = build_args_model(registry.resolve("adder").descriptor)
    assert model.model_validate({"a": 2, "b": 3.5}).model_dump() == {"a": 2, "b": 3.5}
    with pytest.raises(ValidationError):
        model.model_validate({"a": "2", "b": 3})
    with pytest.raises(ValidationError):
        model.model_validate({"a": 2})

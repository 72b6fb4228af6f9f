"""
Tool registry for toolbridge.

This module provides a registry that maps tool names to an advertised descriptor and an async
handler.  Descriptors are derived from the handler's signature, so a tool is declared like this:

    registry = ToolRegistry()

    @registry.tool("adder", "Add two numbers together")
    async def adder(
        a: Annotated[float, Field(description="The first number")],
        b: Annotated[float, Field(description="The second number")],
    ) -> str:
        return f"{a + b}"

The registry is populated once at startup and frozen; after that it is read-only and is shared
between sessions without locking.
"""

import inspect
import logging
from dataclasses import dataclass
from typing import (
    Annotated,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Tuple,
    Type,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    create_model,
)
from pydantic.fields import FieldInfo

from toolbridge.core.schema import (
    ToolDescriptor,
    ToolResult,
)

logger = logging.getLogger(__name__)

ToolHandler = Callable[..., Awaitable[Union[ToolResult, str]]]

_JSON_TYPES: Dict[type, str] = {
    str: "string",
    int: "integer",
    float: "number",
    bool: "boolean",
}
_PY_TYPES: Dict[str, type] = {v: k for k, v in _JSON_TYPES.items()}


class ToolNotFoundError(LookupError):
    """Raised when a tool name is not in the registry."""


@dataclass(frozen=True)
class RegisteredTool:
    """A descriptor paired with its handler."""

    descriptor: ToolDescriptor
    handler: ToolHandler

    @property
    def name(self) -> str:
        return self.descriptor.name


# ---------------------------------------------------------------------------
# Schema helpers
# ---------------------------------------------------------------------------
def _json_type(tp: Any) -> Dict[str, Any]:
    """Map a Python annotation onto a primitive JSON-Schema type."""
    origin = get_origin(tp)
    if origin is Union:
        members = [arg for arg in get_args(tp) if arg is not type(None)]
        if len(members) == 1:
            return _json_type(members[0])
    if origin in (list, List):
        (item,) = get_args(tp) or (str,)
        return {"type": "array", "items": _json_type(item)}
    if tp in _JSON_TYPES:
        return {"type": _JSON_TYPES[tp]}
    raise TypeError(f"Unsupported tool parameter type: {tp!r}")


def schema_from_signature(fn: Callable[..., Any]) -> Dict[str, Any]:
    """Extract a JSON input schema from the parameters of *fn*."""
    sig = inspect.signature(fn)
    type_hints = get_type_hints(fn, include_extras=True)
    properties: Dict[str, Any] = {}
    required: List[str] = []
    for param_name, param in sig.parameters.items():
        hint = type_hints.get(param_name, str)
        description: Optional[str] = None
        if get_origin(hint) is Annotated:
            hint, *extras = get_args(hint)
            for extra in extras:
                if isinstance(extra, FieldInfo) and extra.description:
                    description = extra.description
        prop = _json_type(hint)
        if description:
            prop["description"] = description
        properties[param_name] = prop
        if param.default is inspect.Parameter.empty:
            required.append(param_name)
    return {"type": "object", "properties": properties, "required": required}


def _py_type(prop: Mapping[str, Any]) -> Any:
    json_type = prop.get("type", "string")
    if json_type == "array":
        return List[_py_type(prop.get("items", {}))]  # type: ignore[misc]
    return _PY_TYPES.get(json_type, Any)


def build_args_model(descriptor: ToolDescriptor) -> Type[BaseModel]:
    """
    Build a pydantic model that validates arguments against *descriptor*.

    Types are strict (no string-to-number coercion) and unknown arguments are rejected.
    """
    fields: Dict[str, Tuple[Any, Any]] = {}
    required = set(descriptor.required)
    for name, prop in descriptor.parameters.items():
        tp = _py_type(prop)
        if name in required:
            fields[name] = (tp, Field(..., description=prop.get("description")))
        else:
            fields[name] = (Optional[tp], Field(None, description=prop.get("description")))
    model_name = "".join(part.capitalize() for part in descriptor.name.replace("_", "-").split("-"))
    return create_model(  # type: ignore[call-overload, no-any-return]
        f"{model_name or 'Tool'}Args",
        __config__=ConfigDict(strict=True, extra="forbid"),
        **fields,
    )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
class ToolRegistry:
    """Mapping from tool name to descriptor + async handler."""

    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}
        self._frozen = False

    def register(self, descriptor: ToolDescriptor, handler: ToolHandler) -> None:
        """
        Register *handler* under ``descriptor.name``.

        Raises
        ------
        ValueError
            If a tool with the same name is already registered.
        RuntimeError
            If the registry has been frozen.
        """
        if self._frozen:
            raise RuntimeError("Tool registry is frozen; register tools at startup.")
        if descriptor.name in self._tools:
            raise ValueError(f"Tool '{descriptor.name}' is already registered.")
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler for tool '{descriptor.name}' must be async.")
        logger.debug("Registering tool '%s'", descriptor.name)
        self._tools[descriptor.name] = RegisteredTool(descriptor, handler)

    def tool(self, name: str, description: str | None = None) -> Callable[[ToolHandler], ToolHandler]:
        """Decorator form of :meth:`register` deriving the schema from the signature."""

        def wrapper(fn: ToolHandler) -> ToolHandler:
            descriptor = ToolDescriptor(
                name=name,
                description=description or inspect.getdoc(fn) or "",
                input_schema=schema_from_signature(fn),
            )
            self.register(descriptor, fn)
            return fn

        return wrapper

    def resolve(self, name: str) -> RegisteredTool:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' is not registered.")
        return tool

    def describe_all(self) -> List[ToolDescriptor]:
        """Descriptors in registration order."""
        return [tool.descriptor for tool in self._tools.values()]

    def freeze(self) -> "ToolRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

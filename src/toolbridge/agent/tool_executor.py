"""Dispatches tool calls registered in a :class:`~toolbridge.tools.ToolRegistry` and wraps errors."""

import asyncio
import logging
from typing import (
    Any,
    Dict,
    Mapping,
)

from pydantic import ValidationError

from toolbridge.config import settings
from toolbridge.core.schema import (
    ToolDescriptor,
    ToolResult,
)
from toolbridge.tools import (
    ToolNotFoundError,
    ToolRegistry,
    build_args_model,
)

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised when a requested tool cannot run or fails."""


def _format_validation_error(name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err["loc"]) or "arguments"
        problems.append(f"{loc}: {err['msg']}")
    return f"Invalid arguments for tool '{name}': " + "; ".join(problems)


def validate_arguments(descriptor: ToolDescriptor, args: Mapping[str, Any] | None) -> Dict[str, Any]:
    """
    Validate *args* against the input schema of *descriptor*.

    Returns the validated arguments with optional parameters that were not supplied left out.

    Raises
    ------
    ToolExecutionError
        If the arguments do not match the schema.
    """
    model = build_args_model(descriptor)
    try:
        validated = model.model_validate(dict(args or {}))
    except ValidationError as exc:
        raise ToolExecutionError(_format_validation_error(descriptor.name, exc)) from exc
    return validated.model_dump(exclude_unset=True)


async def invoke_tool(
    registry: ToolRegistry,
    name: str,
    args: Mapping[str, Any] | None = None,
    timeout: float | None = None,
) -> ToolResult:
    """
    Look up *name* in the registry, validate *args* and await the handler.

    Parameters
    ----------
    registry:
        Registry holding the tool.
    name:
        The registered tool name.
    args:
        Arguments to validate and pass to the handler as keywords.  If *None*, an empty dict is
        assumed.
    timeout:
        Seconds the handler may run; defaults to ``settings.TOOL_TIMEOUT``.

    Raises
    ------
    ToolExecutionError
        If the tool is missing, the arguments are invalid, or the handler fails or times out.
    """
    try:
        tool = registry.resolve(name)
    except ToolNotFoundError as exc:
        raise ToolExecutionError(str(exc)) from exc

    kwargs = validate_arguments(tool.descriptor, args)
    limit = settings.TOOL_TIMEOUT if timeout is None else timeout

    try:
        logger.debug("Executing tool '%s' with args=%s", name, kwargs)
        result = await asyncio.wait_for(tool.handler(**kwargs), timeout=limit)
    except asyncio.TimeoutError as exc:
        logger.warning("Tool '%s' timed out after %.1fs", name, limit)
        raise ToolExecutionError(f"Tool '{name}' timed out after {limit:g} seconds.") from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled error in tool '%s'", name)
        raise ToolExecutionError(f"Tool '{name}' raised an error: {exc}") from exc

    if isinstance(result, str):
        return ToolResult.from_text(result)
    if not isinstance(result, ToolResult):
        raise ToolExecutionError(
            f"Tool '{name}' returned {type(result).__name__}, expected ToolResult."
        )
    return result


async def execute_tool(
    registry: ToolRegistry,
    name: str,
    args: Mapping[str, Any] | None = None,
    timeout: float | None = None,
) -> ToolResult:
    """Like :func:`invoke_tool`, but every failure becomes an error :class:`ToolResult`."""
    try:
        return await invoke_tool(registry, name, args, timeout)
    except ToolExecutionError as exc:
        logger.warning("Tool failure: %s", exc)
        return ToolResult.error(str(exc))

"""Main orchestration loop for toolbridge."""

from __future__ import annotations

import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
)

from toolbridge.agent.planner_interface import (
    BasePlanner,
    PlannerError,
)
from toolbridge.agent.tool_executor import (
    ToolExecutionError,
    execute_tool,
    validate_arguments,
)
from toolbridge.core.schema import (
    AnswerProposal,
    ConversationHistory,
    ToolDescriptor,
    ToolProposal,
    ToolResult,
)
from toolbridge.tools import ToolRegistry

logger = logging.getLogger(__name__)


class AgentTurnError(RuntimeError):
    """Raised when a turn cannot produce any reply."""


class ToolInvoker(Protocol):
    """Anything that can run a tool by name: the protocol client or an in-process registry."""

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> ToolResult: ...


class ToolTransportError(RuntimeError):
    """Base for invoker failures that are not tool errors (network, protocol)."""


class LocalToolInvoker:
    """Runs tools straight from a registry, without going over HTTP."""

    def __init__(self, registry: ToolRegistry, timeout: float | None = None) -> None:
        self.registry = registry
        self.timeout = timeout

    async def list_tools(self) -> List[ToolDescriptor]:
        return self.registry.describe_all()

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> ToolResult:
        return await execute_tool(self.registry, name, arguments, timeout=self.timeout)


# ---------------------------------------------------------------------------
# Agent Loop
# ---------------------------------------------------------------------------
class AgentLoop:
    """
    Drives one conversational turn at a time.

    Each successful turn appends exactly two entries to the history: the user turn and one model
    turn (either the tool result text or the planner's answer).
    """

    def __init__(
        self,
        planner: BasePlanner,
        invoker: ToolInvoker,
        tools: Sequence[ToolDescriptor],
    ) -> None:
        self.planner = planner
        self.invoker = invoker
        self.tools = list(tools)
        self._by_name: Dict[str, ToolDescriptor] = {tool.name: tool for tool in self.tools}

    async def _run_tool(self, name: str, args: Mapping[str, Any]) -> str:
        descriptor = self._by_name.get(name)
        if descriptor is None:
            logger.warning("Planner proposed unknown tool '%s'", name)
            return f"Error: Tool '{name}' is not available."
        try:
            validated = validate_arguments(descriptor, args)
        except ToolExecutionError as exc:
            logger.warning("Planner proposed invalid arguments: %s", exc)
            return f"Error: {exc}"

        try:
            result = await self.invoker.call_tool(name, validated)
        except ToolTransportError as exc:
            logger.error("Tool call '%s' failed: %s", name, exc)
            return f"Error: could not reach the tool server ({exc})."
        logger.info("Tool '%s' returned %d part(s)", name, len(result.content))
        return result.text if result.content else f"Tool '{name}' returned no content."

    async def turn(self, history: ConversationHistory, user_text: str) -> str:
        """
        Run one turn: record *user_text*, ask the planner, run a tool if proposed, and record and
        return the assistant's reply.

        Raises
        ------
        AgentTurnError
            If the planner produced neither a tool call nor an answer.
        """
        history.append_user(user_text)
        try:
            proposal = await self.planner.propose(history.snapshot(), self.tools)
        except PlannerError as exc:
            logger.error("Planner failed: %s", exc)
            raise AgentTurnError("No response from planner") from exc

        if isinstance(proposal, ToolProposal):
            logger.info("Planner proposed tool '%s' with %s", proposal.call.name, proposal.call.args)
            reply = await self._run_tool(proposal.call.name, proposal.call.args)
        elif isinstance(proposal, AnswerProposal):
            reply = proposal.text
        else:  # pragma: no cover - the union has two variants
            raise AgentTurnError("No response from planner")

        history.append_model(reply)
        return reply


async def build_agent(
    planner: BasePlanner,
    invoker: Any,
    tools: Optional[Sequence[ToolDescriptor]] = None,
) -> AgentLoop:
    """Create an :class:`AgentLoop`, discovering tools from *invoker* when not given."""
    if tools is None:
        tools = await invoker.list_tools()
    return AgentLoop(planner, invoker, tools)

"""
Planner interface for toolbridge.

This module is the only place that *directly* calls an LLM.  Everything else (agent loop, tools,
transport) stays model-agnostic.

We support these back-ends out of the box:

1. **OpenAI / Anthropic** via their SDKs, using native tool calling (requires env keys).
2. **Hugging Face Text-Generation-Inference (TGI)** for self-hosted models, using a JSON reply
   convention.
3. **Rules**: pattern matching over the latest user turn, with no model at all.

Additional providers can be added by subclassing :class:`BasePlanner` and registering via
:func:`register_planner`.  A model planner is normally wrapped in :class:`FallbackPlanner` so the
rule-based planner takes over when the model backend fails.
"""

import json
import logging
import re
from abc import (
    ABC,
    abstractmethod,
)
from typing import (
    Any,
    Callable,
    ClassVar,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Type,
)

import httpx
from pydantic import (
    BaseModel,
    Field,
    ValidationError,
)

from toolbridge.config import settings
from toolbridge.core.schema import (
    AnswerProposal,
    ChatTurn,
    PlannerProposal,
    ToolCall,
    ToolDescriptor,
    ToolProposal,
)

logger = logging.getLogger(__name__)


class PlannerError(RuntimeError):
    """Raised when a planner cannot produce a proposal."""


# ---------------------------------------------------------------------------
# Pydantic models for response validation
# ---------------------------------------------------------------------------
class JsonPlannerReply(BaseModel):
    """Validates ``{"tool": ..., "args": ...}`` / ``{"answer": ...}`` replies."""

    tool: str | None = None
    args: Dict[str, Any] = Field(default_factory=dict)
    answer: str | None = None


# ---------------------------------------------------------------------------
# Registry helpers
# ---------------------------------------------------------------------------
_PLANNER_REGISTRY: dict[str, Type["BasePlanner"]] = {}


def register_planner(name: str) -> Callable:
    """Decorator to register a planner class under *name*."""

    def wrapper(cls: Type["BasePlanner"]) -> Type["BasePlanner"]:
        _PLANNER_REGISTRY[name] = cls
        return cls

    return wrapper


def load_planner(name: str | None = None, fallback: bool | None = None) -> "BasePlanner":
    """
    Factory that returns an instantiated planner.

    Selection order:
    1. *name* arg
    2. ``settings.PLANNER`` env option

    Unless *fallback* (default ``settings.PLANNER_FALLBACK``) is false, model planners are wrapped
    in a :class:`FallbackPlanner` backed by :class:`RuleBasedPlanner`.
    """

    target = (name or settings.PLANNER).lower()
    cls = _PLANNER_REGISTRY.get(target)
    if cls is None:
        raise ValueError(f"Planner '{target}' is not registered.")
    planner = cls()
    use_fallback = settings.PLANNER_FALLBACK if fallback is None else fallback
    if use_fallback and not isinstance(planner, RuleBasedPlanner):
        return FallbackPlanner(planner, RuleBasedPlanner())
    return planner


def _proposal(call_name: str | None, args: Any, text: str | None) -> PlannerProposal:
    """Prefer a tool call over text; fail if the model gave neither."""
    if call_name:
        if args is None:
            args = {}
        if not isinstance(args, Mapping):
            raise PlannerError(
                f"Planner returned non-object arguments for '{call_name}': {type(args).__name__}"
            )
        return ToolProposal(call=ToolCall(name=call_name, args=dict(args)))
    if text and text.strip():
        return AnswerProposal(text=text.strip())
    raise PlannerError("No response from planner")


# ---------------------------------------------------------------------------
# Base class
# ---------------------------------------------------------------------------
class BasePlanner(ABC):
    """Abstract planner that converts conversation history -> tool call / answer."""

    # Common system prompt for all planners
    SYSTEM_PROMPT: ClassVar[
        str
    ] = """\
You are toolbridge, an assistant that can call tools to answer the user.
Call a tool when it helps; otherwise answer directly and concisely.
"""

    @abstractmethod
    async def propose(
        self, history: Sequence[ChatTurn], tools: Sequence[ToolDescriptor]
    ) -> PlannerProposal:
        """Return the next action for the conversation so far."""


# ---------------------------------------------------------------------------
# Concrete planners
# ---------------------------------------------------------------------------
@register_planner("openai")
class OpenAIPlanner(BasePlanner):
    """OpenAI chat-completions planner using function tools."""

    def __init__(self, client: Any = None, model: str | None = None) -> None:
        self._client = client
        self._model = model or settings.OPENAI_MODEL

    def _get_client(self) -> Any:
        if self._client is None:
            import openai  # pylint: disable=import-outside-toplevel

            self._client = openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        return self._client

    @staticmethod
    def _tool_specs(tools: Sequence[ToolDescriptor]) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]

    async def propose(
        self, history: Sequence[ChatTurn], tools: Sequence[ToolDescriptor]
    ) -> PlannerProposal:
        messages: List[Dict[str, Any]] = [{"role": "system", "content": self.SYSTEM_PROMPT}]
        messages += [
            {"role": "user" if turn.role == "user" else "assistant", "content": turn.text}
            for turn in history
        ]
        request: Dict[str, Any] = {
            "model": self._model,
            "messages": messages,
            "temperature": 0.2,
        }
        if tools:
            request["tools"] = self._tool_specs(tools)

        try:
            resp = await self._get_client().chat.completions.create(**request)
            message = resp.choices[0].message
        except Exception as e:  # pylint: disable=broad-except
            logger.error("OpenAI planner error: %s", str(e))
            raise PlannerError(f"Error calling OpenAI: {e}") from e

        logger.debug("OpenAI planner response: %s", message)
        if message.tool_calls:
            call = message.tool_calls[0].function
            try:
                args = json.loads(call.arguments or "{}")
            except json.JSONDecodeError as e:
                raise PlannerError(f"OpenAI returned malformed tool arguments: {e}") from e
            if not isinstance(args, dict):
                raise PlannerError(
                    f"OpenAI returned non-object tool arguments: {type(args).__name__}"
                )
            return _proposal(call.name, args, None)
        return _proposal(None, None, message.content)


@register_planner("anthropic")
class AnthropicPlanner(BasePlanner):
    """Anthropic Claude-based planner using native tool use."""

    def __init__(self, client: Any = None, model: str | None = None) -> None:
        self._client = client
        self._model = model or settings.ANTHROPIC_MODEL

    def _get_client(self) -> Any:
        if self._client is None:
            import anthropic  # pylint: disable=import-outside-toplevel

            self._client = anthropic.AsyncAnthropic(api_key=settings.ANTHROPIC_API_KEY)
        return self._client

    async def propose(
        self, history: Sequence[ChatTurn], tools: Sequence[ToolDescriptor]
    ) -> PlannerProposal:
        messages = [
            {"role": "user" if turn.role == "user" else "assistant", "content": turn.text}
            for turn in history
        ]
        request: Dict[str, Any] = {
            "model": self._model,
            "max_tokens": 1024,
            "system": self.SYSTEM_PROMPT,
            "messages": messages,
            "temperature": 0.2,
        }
        if tools:
            request["tools"] = [
                {"name": t.name, "description": t.description, "input_schema": t.input_schema}
                for t in tools
            ]

        try:
            response = await self._get_client().messages.create(**request)
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Anthropic planner error: %s", str(e))
            raise PlannerError(f"Error calling Anthropic: {e}") from e

        logger.debug("Anthropic planner response: %s", response.content)
        texts: List[str] = []
        for block in response.content:
            if block.type == "tool_use":
                return _proposal(block.name, block.input, None)
            if block.type == "text":
                texts.append(block.text)
        return _proposal(None, None, "\n".join(texts))


def _sanitize_json_string(content: str) -> str:
    """Clean up JSON strings returned by LLMs."""
    # Strip markdown code blocks if present
    if "```" in content:
        match = re.search(r"```(?:json)?\s*(.+?)```", content, re.DOTALL)
        if match:
            content = match.group(1).strip()

    # Remove control characters except whitespace
    content = "".join(ch for ch in content if ch >= " " or ch in "\n\r\t")

    # Find the outermost matching braces
    open_idx = content.find("{")
    if open_idx >= 0:
        brace_count = 0
        for i in range(open_idx, len(content)):
            if content[i] == "{":
                brace_count += 1
            elif content[i] == "}":
                brace_count -= 1
                if brace_count == 0:
                    return content[open_idx : i + 1]
    return content


@register_planner("tgi")
class TGIPlanner(BasePlanner):
    """TGI-based planner with httpx client and a JSON reply convention."""

    JSON_PROMPT: ClassVar[
        str
    ] = """\
When you need to use a tool, respond with JSON like:
{"tool": "<name>", "args": { ... }}
If no tool is needed, respond with:
{"answer": "<final reply to user>"}
Only one object, no extra text.
"""

    def __init__(self, endpoint: str | None = None, client: httpx.AsyncClient | None = None):
        self._endpoint = endpoint or settings.TGI_ENDPOINT
        self._client = client

    def _build_prompt(self, history: Sequence[ChatTurn], tools: Sequence[ToolDescriptor]) -> str:
        prompt = self.SYSTEM_PROMPT + self.JSON_PROMPT
        if tools:
            tools_info = []
            for tool in tools:
                param_desc = ", ".join(
                    f"{p}: {info.get('type', 'any')}" for p, info in tool.parameters.items()
                )
                tools_info.append(f"- {tool.name}({param_desc}): {tool.description}")
            prompt += "\nAvailable tools:\n" + "\n".join(tools_info)
        dialogue = "\n".join(
            f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.text}" for turn in history
        )
        return f"{prompt}\n\n{dialogue}\nAssistant:"

    def _parse_response(self, content: str) -> PlannerProposal:
        try:
            reply = JsonPlannerReply.model_validate_json(_sanitize_json_string(content))
        except ValidationError:
            logger.warning("TGI reply is not JSON, treating it as a direct answer")
            return _proposal(None, None, content)
        return _proposal(reply.tool, reply.args, reply.answer)

    async def propose(
        self, history: Sequence[ChatTurn], tools: Sequence[ToolDescriptor]
    ) -> PlannerProposal:
        payload = {
            "inputs": self._build_prompt(history, tools),
            "parameters": {"max_new_tokens": 256, "temperature": 0.2, "stop": ["User:", "</s>"]},
        }
        try:
            if self._client is not None:
                resp = await self._client.post(self._endpoint, json=payload)
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    resp = await client.post(self._endpoint, json=payload)
            resp.raise_for_status()
            content = resp.json()["generated_text"]
        except (httpx.HTTPError, KeyError, ValueError) as e:
            logger.error("TGI request error: %s", str(e))
            raise PlannerError(f"Error calling TGI endpoint: {e}") from e

        logger.debug("TGI planner response: %s", content)
        return self._parse_response(content)


@register_planner("rules")
class RuleBasedPlanner(BasePlanner):
    """
    Degraded-mode planner: simple pattern matches over the latest user turn.

    It never calls a model, so it always answers; used directly with ``PLANNER=rules`` or behind a
    model planner via :class:`FallbackPlanner`.
    """

    HELP_TEXT: ClassVar[str] = (
        "I can add numbers, look up GitHub repositories, search Wikipedia, fetch news and post "
        "to X. Try 'add 2 and 3', 'info about repo octocat/hello-world', 'news about AI', "
        "'wikipedia Python' or 'tweet: hello world'."
    )

    _NUMBER = r"(-?\d+(?:\.\d+)?)"
    # first match wins
    _RULES: ClassVar[List[tuple]] = [
        (
            "adder",
            re.compile(rf"\b(?:add|sum|plus)\b\D*?{_NUMBER}\s*(?:and|\+|,|to)\s*{_NUMBER}", re.I),
        ),
        ("adder", re.compile(rf"{_NUMBER}\s*\+\s*{_NUMBER}")),
        (
            "github-repo-info",
            re.compile(
                r"\b(?:repo|repository|github)\b.*?\b(?P<owner>[\w.-]+)/(?P<repo>[\w.-]+)", re.I
            ),
        ),
        (
            "github-repo-info",
            re.compile(
                r"\b(?:repo|repository)\s+(?:named|called)\s+(?P<repo>[\w.-]+)"
                r".*?\b(?:owned\s+by|from|by|of)\s+(?P<owner>[\w-]+)",
                re.I,
            ),
        ),
        (
            "github-repo-info",
            re.compile(
                r"\b(?P<repo>[\w.-]+)\s+(?:repo|repository)\b"
                r".*?\b(?:owned\s+by|from|by)\s+(?P<owner>[\w-]+)",
                re.I,
            ),
        ),
        ("news-by-topic", re.compile(r"\bnews\b(?:\s+(?:about|on|for|regarding))?\s+(.+)", re.I)),
        (
            "twitter-X-post",
            re.compile(r"\b(?:tweet|post)\b(?:\s+(?:to\s+x|on\s+x|this))?\s*[:\-]\s*(.+)", re.I | re.S),
        ),
        (
            "wikipedia-search",
            re.compile(r"\b(?:wikipedia|wiki)\b(?:\s+(?:for|about|on))?\s+(.+)", re.I),
        ),
        (
            "wikipedia-search",
            re.compile(r"^\s*(?:what|who)\s+(?:is|was|are|were)\s+(.+?)\??\s*$", re.I),
        ),
    ]

    @staticmethod
    def _number(text: str) -> float | int:
        value = float(text)
        return int(value) if value.is_integer() else value

    def _args_for(self, tool: str, match: "re.Match[str]") -> Dict[str, Any]:
        groups = [g.strip() for g in match.groups()]
        if tool == "adder":
            return {"a": self._number(groups[0]), "b": self._number(groups[1])}
        if tool == "github-repo-info":
            return {"owner": match.group("owner"), "repo": match.group("repo").rstrip(".")}
        if tool == "news-by-topic":
            return {"topic": groups[0].rstrip("?.!")}
        if tool == "twitter-X-post":
            return {"status": groups[0]}
        return {"query": groups[0].rstrip("?.!")}

    async def propose(
        self, history: Sequence[ChatTurn], tools: Sequence[ToolDescriptor]
    ) -> PlannerProposal:
        user_turns = [turn for turn in history if turn.role == "user"]
        query = user_turns[-1].text if user_turns else ""
        available = {tool.name for tool in tools}

        for tool, pattern in self._RULES:
            if tool not in available:
                continue
            match = pattern.search(query)
            if match:
                args = self._args_for(tool, match)
                logger.info("Rule-based planner matched '%s' with %s", tool, args)
                return ToolProposal(call=ToolCall(name=tool, args=args))

        if "print-menu" in available and re.search(r"\b(?:menu|help)\b", query, re.I):
            items = [f"{tool.name}: {tool.description}" for tool in tools if tool.name != "print-menu"]
            return ToolProposal(
                call=ToolCall(name="print-menu", args={"title": "Available tools", "items": items})
            )
        return AnswerProposal(text=self.HELP_TEXT)


class FallbackPlanner(BasePlanner):
    """Use *primary*; consult *fallback* only when *primary* raises :class:`PlannerError`."""

    def __init__(self, primary: BasePlanner, fallback: BasePlanner) -> None:
        self.primary = primary
        self.fallback = fallback

    async def propose(
        self, history: Sequence[ChatTurn], tools: Sequence[ToolDescriptor]
    ) -> PlannerProposal:
        try:
            return await self.primary.propose(history, tools)
        except PlannerError as exc:
            logger.warning(
                "%s failed (%s), falling back to %s",
                type(self.primary).__name__,
                exc,
                type(self.fallback).__name__,
            )
            return await self.fallback.propose(history, tools)


def describe_planner(planner: Optional[BasePlanner]) -> str:
    """Human-readable planner name for logs and the CLI banner."""
    if isinstance(planner, FallbackPlanner):
        return f"{describe_planner(planner.primary)} (fallback: {describe_planner(planner.fallback)})"
    return type(planner).__name__

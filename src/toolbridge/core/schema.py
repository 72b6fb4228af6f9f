"""
Schema definitions for planner <-> agent <-> tool messages.

These data models serve as the contract between the planner LLM, the orchestration loop, the
session transport and individual tools.  We keep them separate from runtime logic so they can be
imported anywhere without side-effects.
"""

from typing import (
    Annotated,
    Any,
    Dict,
    Iterator,
    List,
    Literal,
    Optional,
    Union,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)

JSONRPC_VERSION = "2.0"

# JSON-RPC error codes used across the server
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603
NO_VALID_SESSION = -32000


# ---------------------------------------------------------------------------
# Tool contract
# ---------------------------------------------------------------------------
class TextContent(BaseModel):
    """A single text part of a tool result or chat turn."""

    type: Literal["text"] = "text"
    text: str


class ToolResult(BaseModel):
    """Ordered content parts produced by a tool invocation."""

    model_config = ConfigDict(populate_by_name=True)

    content: List[TextContent] = Field(default_factory=list)
    is_error: bool = Field(False, alias="isError")

    @classmethod
    def from_text(cls, text: str) -> "ToolResult":
        return cls(content=[TextContent(text=text)])

    @classmethod
    def error(cls, text: str) -> "ToolResult":
        return cls(content=[TextContent(text=text)], is_error=True)

    @property
    def text(self) -> str:
        """All text parts joined by newlines."""
        return "\n".join(part.text for part in self.content)


class ToolDescriptor(BaseModel):
    """Name, description and JSON input schema advertised for a tool."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    name: str
    description: str = ""
    input_schema: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []},
        alias="inputSchema",
    )

    @property
    def parameters(self) -> Dict[str, Dict[str, Any]]:
        return dict(self.input_schema.get("properties", {}))

    @property
    def required(self) -> List[str]:
        return list(self.input_schema.get("required", []))


class ToolCall(BaseModel):
    """A call that the planner wants the agent to execute."""

    name: str = Field(..., description="Registered tool name")
    args: Dict[str, Any] = Field(default_factory=dict, description="Keyword arguments for the tool")


# ---------------------------------------------------------------------------
# Planner proposals
# ---------------------------------------------------------------------------
class ToolProposal(BaseModel):
    """The planner wants a tool executed."""

    kind: Literal["tool"] = "tool"
    call: ToolCall


class AnswerProposal(BaseModel):
    """The planner answered directly."""

    kind: Literal["answer"] = "answer"
    text: str = Field(..., min_length=1)


PlannerProposal = Annotated[Union[ToolProposal, AnswerProposal], Field(discriminator="kind")]


# ---------------------------------------------------------------------------
# Conversation history
# ---------------------------------------------------------------------------
class ChatTurn(BaseModel):
    """One entry of the conversation history."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "model"]
    parts: List[TextContent] = Field(..., min_length=1)

    @property
    def text(self) -> str:
        return "\n".join(part.text for part in self.parts)


class ConversationHistory:
    """Append-only sequence of chat turns owned by one chat session."""

    def __init__(self) -> None:
        self._turns: List[ChatTurn] = []

    def append_user(self, text: str) -> ChatTurn:
        return self._append(ChatTurn(role="user", parts=[TextContent(text=text)]))

    def append_model(self, text: str) -> ChatTurn:
        return self._append(ChatTurn(role="model", parts=[TextContent(text=text)]))

    def _append(self, turn: ChatTurn) -> ChatTurn:
        self._turns.append(turn)
        return turn

    def snapshot(self) -> tuple[ChatTurn, ...]:
        """Immutable view of the turns so far."""
        return tuple(self._turns)

    def last_user_text(self) -> str:
        for turn in reversed(self._turns):
            if turn.role == "user":
                return turn.text
        return ""

    def __iter__(self) -> Iterator[ChatTurn]:
        return iter(tuple(self._turns))

    def __len__(self) -> int:
        return len(self._turns)


# ---------------------------------------------------------------------------
# JSON-RPC envelopes
# ---------------------------------------------------------------------------
class JsonRpcRequest(BaseModel):
    """A JSON-RPC request or, when *id* is absent, a notification."""

    model_config = ConfigDict(extra="allow")

    jsonrpc: Literal["2.0"]
    method: str
    params: Optional[Dict[str, Any]] = None
    id: Optional[Union[int, str]] = None

    @property
    def is_notification(self) -> bool:
        return "id" not in self.model_fields_set


class JsonRpcError(BaseModel):
    """Error member of a JSON-RPC response."""

    code: int
    message: str
    data: Optional[Any] = None


class JsonRpcResponse(BaseModel):
    """A JSON-RPC response carrying either *result* or *error*."""

    jsonrpc: Literal["2.0"] = JSONRPC_VERSION
    id: Optional[Union[int, str]] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[JsonRpcError] = None

    @model_validator(mode="after")
    def _result_xor_error(self) -> "JsonRpcResponse":
        if (self.result is None) == (self.error is None):
            raise ValueError("exactly one of 'result' or 'error' must be set")
        return self

    def to_wire(self) -> Dict[str, Any]:
        """Serialise without the member that is not in use."""
        payload: Dict[str, Any] = {"jsonrpc": self.jsonrpc, "id": self.id}
        if self.error is not None:
            payload["error"] = self.error.model_dump(exclude_none=True)
        else:
            payload["result"] = self.result
        return payload


def error_envelope(code: int, message: str, request_id: Any = None) -> Dict[str, Any]:
    """Build the wire form of a JSON-RPC error response."""
    return JsonRpcResponse(
        id=request_id, error=JsonRpcError(code=code, message=message)
    ).to_wire()


def notification(method: str, params: Dict[str, Any] | None = None) -> Dict[str, Any]:
    """Build the wire form of a server-to-client notification."""
    payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        payload["params"] = params
    return payload

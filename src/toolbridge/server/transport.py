"""
Session transport: JSON-RPC framing and message handling for a single session.

A transport owns:

* a lock so requests of one session are handled in arrival order;
* an outbound queue of server-to-client messages, drained by ``GET`` requests (either as a JSON
  array or as a Server-Sent-Events stream);
* close callbacks, fired exactly once when the session ends.
"""

import asyncio
import json
import logging
from typing import (
    Any,
    AsyncIterator,
    Awaitable,
    Callable,
    Dict,
    List,
    Optional,
)

from pydantic import ValidationError

from toolbridge.agent.tool_executor import execute_tool
from toolbridge.core.schema import (
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    JsonRpcError,
    JsonRpcRequest,
    JsonRpcResponse,
    ToolResult,
    error_envelope,
    notification,
)
from toolbridge.tools import ToolRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-03-26"
SERVER_INFO = {"name": "toolbridge", "version": "0.1.0"}

CloseCallback = Callable[[str], Awaitable[None]]
_CLOSED = object()


class _RpcFault(Exception):
    """Internal: a JSON-RPC error to send back for the current request."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class SessionTransport:
    """Handles decoded JSON-RPC payloads for one session."""

    def __init__(
        self,
        registry: ToolRegistry,
        tool_timeout: Optional[float] = None,
        server_info: Optional[Dict[str, str]] = None,
    ) -> None:
        self._registry = registry
        self._tool_timeout = tool_timeout
        self._server_info = server_info or SERVER_INFO
        self._session_id: Optional[str] = None
        self._initialized = False
        self._closed = False
        self._lock = asyncio.Lock()
        self._outbox: "asyncio.Queue[Any]" = asyncio.Queue()
        self._close_callbacks: List[CloseCallback] = []
        self._active_streams = 0

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #
    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def streaming(self) -> bool:
        """True while a client is attached to the event stream."""
        return self._active_streams > 0

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, session_id: str) -> None:
        if self._session_id is not None:
            raise RuntimeError(f"Transport already bound to session {self._session_id}")
        self._session_id = session_id

    def add_close_callback(self, callback: CloseCallback) -> None:
        self._close_callbacks.append(callback)

    async def close(self) -> None:
        """Close the session.  Safe to call more than once; callbacks run on the first call."""
        if self._closed:
            return
        self._closed = True
        self._outbox.put_nowait(_CLOSED)
        logger.info("Closing transport for session: %s", self._session_id)
        for callback in self._close_callbacks:
            try:
                await callback(self._session_id or "")
            except Exception:  # pylint: disable=broad-except
                logger.exception("Close callback failed for session %s", self._session_id)

    # ------------------------------------------------------------------ #
    # Outbound queue
    # ------------------------------------------------------------------ #
    def push(self, message: Dict[str, Any]) -> None:
        """Queue a server-to-client message."""
        if not self._closed:
            self._outbox.put_nowait(message)

    def drain(self) -> List[Dict[str, Any]]:
        """Remove and return every queued message."""
        messages = []
        while not self._outbox.empty():
            message = self._outbox.get_nowait()
            if message is _CLOSED:
                # leave the marker for any stream still waiting
                self._outbox.put_nowait(_CLOSED)
                break
            messages.append(message)
        return messages

    async def stream(self, keepalive: float) -> AsyncIterator[str]:
        """Yield queued messages as Server-Sent Events until the session closes."""
        self._active_streams += 1
        try:
            while not self._closed:
                try:
                    message = await asyncio.wait_for(self._outbox.get(), timeout=keepalive)
                except asyncio.TimeoutError:
                    yield ": keepalive\n\n"
                    continue
                if message is _CLOSED:
                    self._outbox.put_nowait(_CLOSED)
                    break
                yield f"event: message\ndata: {json.dumps(message)}\n\n"
        finally:
            self._active_streams -= 1

    # ------------------------------------------------------------------ #
    # Inbound messages
    # ------------------------------------------------------------------ #
    async def handle_payload(self, payload: Any) -> Optional[Any]:
        """
        Handle a decoded request body: a single message or a batch.

        Returns the wire response (a dict, or a list for batches), or ``None`` when the payload held
        only notifications.
        """
        async with self._lock:
            if isinstance(payload, list):
                if not payload:
                    return error_envelope(INVALID_REQUEST, "Invalid Request: empty batch")
                responses = [await self._handle_message(message) for message in payload]
                batch = [response for response in responses if response is not None]
                return batch or None
            return await self._handle_message(payload)

    async def _handle_message(self, raw: Any) -> Optional[Dict[str, Any]]:
        request_id = raw.get("id") if isinstance(raw, dict) else None
        try:
            request = JsonRpcRequest.model_validate(raw)
        except ValidationError:
            logger.warning("Invalid JSON-RPC message on session %s: %r", self._session_id, raw)
            return error_envelope(INVALID_REQUEST, "Invalid Request", request_id)

        if request.is_notification:
            self._handle_notification(request)
            return None

        try:
            result = await self._dispatch(request)
        except _RpcFault as fault:
            return JsonRpcResponse(
                id=request.id, error=JsonRpcError(code=fault.code, message=fault.message)
            ).to_wire()
        return JsonRpcResponse(id=request.id, result=result).to_wire()

    def _handle_notification(self, request: JsonRpcRequest) -> None:
        if request.method == "notifications/initialized":
            logger.debug("Client confirmed initialization for session %s", self._session_id)
        else:
            logger.debug("Ignoring notification %s", request.method)

    async def _dispatch(self, request: JsonRpcRequest) -> Dict[str, Any]:
        method = request.method
        params = request.params or {}

        if method == "initialize":
            if self._initialized:
                raise _RpcFault(INVALID_REQUEST, "Invalid Request: Server already initialized")
            self._initialized = True
            return {
                "protocolVersion": params.get("protocolVersion") or PROTOCOL_VERSION,
                "capabilities": {"tools": {"listChanged": False}, "logging": {}},
                "serverInfo": self._server_info,
            }
        if method == "ping":
            return {}
        if method == "tools/list":
            return {
                "tools": [
                    descriptor.model_dump(by_alias=True)
                    for descriptor in self._registry.describe_all()
                ]
            }
        if method == "tools/call":
            return await self._call_tool(params)

        raise _RpcFault(METHOD_NOT_FOUND, f"Method not found: {method}")

    async def _call_tool(self, params: Dict[str, Any]) -> Dict[str, Any]:
        name = params.get("name")
        arguments = params.get("arguments") or {}
        if not isinstance(name, str) or not name:
            raise _RpcFault(INVALID_PARAMS, "Invalid params: 'name' must be a non-empty string")
        if not isinstance(arguments, dict):
            raise _RpcFault(INVALID_PARAMS, "Invalid params: 'arguments' must be an object")

        logger.info("Session %s calling tool '%s'", self._session_id, name)
        result: ToolResult = await execute_tool(
            self._registry, name, arguments, timeout=self._tool_timeout
        )
        if result.is_error:
            self.push(
                notification(
                    "notifications/message",
                    {"level": "error", "logger": name, "data": result.text},
                )
            )
        return result.model_dump(by_alias=True)

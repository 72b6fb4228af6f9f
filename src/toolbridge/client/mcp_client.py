"""Async HTTP client for the toolbridge session protocol."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import (
    Any,
    Dict,
    List,
    Mapping,
    Optional,
)

import httpx

from toolbridge.agent.agent_loop import ToolTransportError
from toolbridge.config import settings
from toolbridge.core.schema import (
    JSONRPC_VERSION,
    NO_VALID_SESSION,
    ToolDescriptor,
    ToolResult,
)
from toolbridge.server.router import SESSION_HEADER
from toolbridge.server.transport import PROTOCOL_VERSION

logger = logging.getLogger(__name__)

CLIENT_INFO = {"name": "toolbridge-cli", "version": "0.1.0"}


class McpClientError(ToolTransportError):
    """Raised when the server cannot be reached or answers with a protocol error."""

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class McpClient:
    """
    One client session against a toolbridge server.

    Usage::

        async with McpClient("http://localhost:3001/mcp") as client:
            tools = await client.list_tools()
            result = await client.call_tool("adder", {"a": 2, "b": 3})
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_retries: int = 5,
    ) -> None:
        self.base_url = base_url or settings.MCP_SERVER_URL
        self._http = http_client
        self._owns_http = http_client is None
        self.max_retries = max_retries
        self.session_id: Optional[str] = None
        self.server_info: Dict[str, Any] = {}
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "McpClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def connected(self) -> bool:
        return self.session_id is not None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30.0)
        return self._http

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json, text/event-stream"}
        if self.session_id:
            headers[SESSION_HEADER] = self.session_id
        return headers

    # ------------------------------------------------------------------ #
    # Wire helpers
    # ------------------------------------------------------------------ #
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        for attempt in range(self.max_retries):
            try:
                return await self._client().post(self.base_url, json=payload, headers=self._headers())
            except httpx.ConnectError as e:
                # On connection refused, retry with exponential backoff
                if attempt < self.max_retries - 1:
                    retry_delay = 0.5 * (2**attempt)  # 0.5s, 1s, 2s, 4s...
                    logger.info(
                        "Server not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                        retry_delay,
                        attempt + 1,
                        self.max_retries,
                    )
                    await asyncio.sleep(retry_delay)
                    continue
                raise McpClientError(f"Error connecting to server: {e}") from e
            except httpx.HTTPError as e:
                raise McpClientError(f"Error connecting to server: {e}") from e
        raise McpClientError(f"Failed to connect to server after {self.max_retries} attempts")

    async def _request(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if method != "initialize" and not self.connected:
            await self.connect()
        try:
            return await self._send(method, params)
        except McpClientError as e:
            if method == "initialize" or e.code != NO_VALID_SESSION:
                raise
        # Session was reaped or the server restarted: handshake again and retry once
        logger.warning("Session %s is no longer valid, reconnecting", self.session_id)
        self.session_id = None
        await self.connect()
        return await self._send(method, params)

    async def _send(self, method: str, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": next(self._ids), "method": method}
        if params is not None:
            payload["params"] = params

        response = await self._post(payload)
        try:
            body = response.json()
        except ValueError as e:
            raise McpClientError(
                f"Server returned non-JSON response ({response.status_code})"
            ) from e

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            raise McpClientError(error.get("message", "Unknown error"), code=error.get("code"))
        if response.is_error or not isinstance(body, dict) or "result" not in body:
            raise McpClientError(f"Unexpected server response ({response.status_code})")
        if method == "initialize":
            self.session_id = response.headers.get(SESSION_HEADER)
            if not self.session_id:
                raise McpClientError("Server did not assign a session ID")
        return body["result"]

    async def _notify(self, method: str) -> None:
        response = await self._post({"jsonrpc": JSONRPC_VERSION, "method": method})
        if response.is_error:
            raise McpClientError(f"Notification {method} rejected ({response.status_code})")

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    async def connect(self) -> None:
        """Perform the initialize handshake and remember the assigned session ID."""
        if self.connected:
            return
        logger.info("Connecting to server at: %s", self.base_url)
        result = await self._request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": CLIENT_INFO,
            },
        )
        self.server_info = result.get("serverInfo", {})
        await self._notify("notifications/initialized")
        logger.info("Connected with session ID: %s", self.session_id)

    async def list_tools(self) -> List[ToolDescriptor]:
        result = await self._request("tools/list")
        return [ToolDescriptor.model_validate(tool) for tool in result.get("tools", [])]

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> ToolResult:
        logger.debug("Calling tool %s with %s", name, arguments)
        result = await self._request("tools/call", {"name": name, "arguments": dict(arguments)})
        return ToolResult.model_validate(result)

    async def ping(self) -> None:
        await self._request("ping")

    async def pull_messages(self) -> List[Dict[str, Any]]:
        """Fetch server-to-client messages queued for this session."""
        if not self.connected:
            raise McpClientError("Not connected")
        try:
            response = await self._client().get(
                self.base_url, headers={SESSION_HEADER: self.session_id or ""}
            )
        except httpx.HTTPError as e:
            raise McpClientError(f"Error connecting to server: {e}") from e
        if response.is_error:
            raise McpClientError(f"Could not pull messages ({response.status_code})")
        return list(response.json())

    async def close(self) -> None:
        """Delete the server-side session and release the HTTP client."""
        if self.session_id:
            try:
                await self._client().delete(
                    self.base_url, headers={SESSION_HEADER: self.session_id}
                )
            except httpx.HTTPError as e:
                logger.warning("Failed to close session %s: %s", self.session_id, e)
            self.session_id = None
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

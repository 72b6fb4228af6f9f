"""
Request router: the session state machine in front of the session transports.

For each incoming request the router either resolves an existing session from the session table
or, for an ``initialize`` request without a session id, creates a new one.  Everything else is
rejected with a ``-32000`` error and no state change.

The router knows nothing about HTTP frameworks; it returns a :class:`RouteResult` that the API
layer turns into a response.
"""

import json
import logging
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Any,
    AsyncIterator,
    Callable,
    Dict,
    Optional,
)

from toolbridge.config import settings
from toolbridge.core.schema import (
    INTERNAL_ERROR,
    NO_VALID_SESSION,
    PARSE_ERROR,
    error_envelope,
)
from toolbridge.server.session_table import SessionTable
from toolbridge.server.transport import SessionTransport
from toolbridge.tools import ToolRegistry

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"
NO_SESSION_MESSAGE = "Bad Request: No valid session ID provided"


@dataclass
class RouteResult:
    """Outcome of routing one request."""

    status_code: int
    body: Optional[Any] = None
    headers: Dict[str, str] = field(default_factory=dict)
    stream: Optional[AsyncIterator[str]] = None


def _request_id(payload: Any) -> Any:
    if isinstance(payload, dict):
        return payload.get("id")
    return None


def is_initialize_request(payload: Any) -> bool:
    """True for a single JSON-RPC ``initialize`` request (not a notification)."""
    return (
        isinstance(payload, dict)
        and payload.get("jsonrpc") == "2.0"
        and payload.get("method") == "initialize"
        and "id" in payload
    )


class RequestRouter:
    """Binds requests to session transports held in a :class:`SessionTable`."""

    def __init__(
        self,
        table: SessionTable,
        registry: ToolRegistry,
        transport_factory: Optional[Callable[[], SessionTransport]] = None,
        sse_keepalive: Optional[float] = None,
    ) -> None:
        self.table = table
        self.registry = registry
        self._transport_factory = transport_factory or (lambda: SessionTransport(registry))
        self._sse_keepalive = settings.SSE_KEEPALIVE if sse_keepalive is None else sse_keepalive

    @staticmethod
    def _reject(request_id: Any = None) -> RouteResult:
        return RouteResult(400, error_envelope(NO_VALID_SESSION, NO_SESSION_MESSAGE, request_id))

    # ------------------------------------------------------------------ #
    # POST
    # ------------------------------------------------------------------ #
    async def route_post(self, session_id: Optional[str], raw_body: bytes) -> RouteResult:
        """Route a POSTed JSON-RPC payload."""
        try:
            payload = json.loads(raw_body) if raw_body else None
            parse_failed = payload is None
        except ValueError:
            payload, parse_failed = None, True

        if session_id:
            session = await self.table.lookup(session_id)
            if session is None:
                logger.error("Invalid request - unknown session ID: %s", session_id)
                return self._reject(_request_id(payload))
            if parse_failed:
                logger.warning("Unparseable body on session %s", session_id)
                return RouteResult(400, error_envelope(PARSE_ERROR, "Parse error"))
            logger.debug("Using existing transport for session: %s", session_id)
            return await self._handle(session.transport, payload)

        if not is_initialize_request(payload):
            logger.error("Invalid request - no session ID or not an initialize request")
            return self._reject(_request_id(payload))

        logger.info("Initializing new transport for client")
        session = await self.table.create(self._transport_factory)
        result = await self._handle(session.transport, payload)
        if result.status_code >= 400:
            # the handshake did not complete; the session never becomes routable
            await session.transport.close()
            return result
        result.headers[SESSION_HEADER] = session.id
        return result

    async def _handle(self, transport: SessionTransport, payload: Any) -> RouteResult:
        try:
            response = await transport.handle_payload(payload)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Error handling request for session %s", transport.session_id)
            return RouteResult(
                500, error_envelope(INTERNAL_ERROR, "Internal server error", _request_id(payload))
            )
        if response is None:
            return RouteResult(202)
        return RouteResult(200, response)

    # ------------------------------------------------------------------ #
    # GET / DELETE
    # ------------------------------------------------------------------ #
    async def route_get(self, session_id: Optional[str], accept: str = "") -> RouteResult:
        """Pull queued server-to-client messages, as a JSON array or an SSE stream."""
        session = await self.table.lookup(session_id)
        if session is None:
            logger.error("Invalid or missing session ID: %s", session_id)
            return self._reject()
        if "text/event-stream" in accept:
            return RouteResult(200, stream=session.transport.stream(self._sse_keepalive))
        return RouteResult(200, session.transport.drain())

    async def route_delete(self, session_id: Optional[str]) -> RouteResult:
        """Tear a session down at the client's request."""
        session = await self.table.lookup(session_id)
        if session is None:
            logger.error("Invalid or missing session ID: %s", session_id)
            return self._reject()
        await session.transport.close()
        await self.table.remove(session.id)
        return RouteResult(200)

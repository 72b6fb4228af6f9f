"""
Session table: the process-wide mapping from session id to session transport.

Uses an :class:`asyncio.Lock` so create / lookup / remove are atomic with respect to each other.
The table is created by the application and handed to the request router; nothing else holds a
reference to it.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    TYPE_CHECKING,
    Callable,
    Dict,
    List,
    Optional,
    Set,
)

from toolbridge.config import settings

if TYPE_CHECKING:
    from toolbridge.server.transport import SessionTransport

logger = logging.getLogger(__name__)

IdGenerator = Callable[[], str]


def new_session_id() -> str:
    """Random 122-bit session identifier."""
    return uuid.uuid4().hex


@dataclass
class Session:
    """A live binding between a session id and its transport."""

    id: str
    transport: "SessionTransport"
    created_at: float = field(default_factory=time.time)
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_seen = time.monotonic()


class SessionTable:
    """
    Async-safe session store.

    Session ids are never reused: a removed id is remembered and a generator that returns it again
    is asked for another one.
    """

    def __init__(
        self,
        id_generator: IdGenerator = new_session_id,
        idle_timeout: Optional[float] = None,
    ) -> None:
        self._sessions: Dict[str, Session] = {}
        self._retired: Set[str] = set()
        self._lock = asyncio.Lock()
        self._id_generator = id_generator
        self.idle_timeout = settings.SESSION_IDLE_TIMEOUT if idle_timeout is None else idle_timeout

    async def create(self, transport_factory: Callable[[], "SessionTransport"]) -> Session:
        """
        Build a transport, assign it a fresh id and publish it.

        The transport exists before its id is generated; inserting it into the table under the lock
        is the single publication point, so concurrent creates never share an id.
        """
        transport = transport_factory()
        async with self._lock:
            session_id = self._id_generator()
            while session_id in self._sessions or session_id in self._retired:
                logger.warning("Session id collision on %s, regenerating", session_id)
                session_id = self._id_generator()
            session = Session(id=session_id, transport=transport)
            transport.bind(session_id)
            transport.add_close_callback(self._on_transport_closed)
            self._sessions[session_id] = session
        logger.info("Session initialized with ID: %s", session_id)
        return session

    async def lookup(self, session_id: Optional[str]) -> Optional[Session]:
        """Return the live session for *session_id*, or ``None``."""
        if not session_id:
            return None
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                session.touch()
            return session

    async def remove(self, session_id: str) -> bool:
        """Remove a session.  Returns True if it existed; removing an absent id is a no-op."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
            if session is not None:
                self._retired.add(session_id)
        if session is not None:
            logger.info("Removed session %s", session_id)
        return session is not None

    async def _on_transport_closed(self, session_id: str) -> None:
        await self.remove(session_id)

    async def reap_idle(self, now: Optional[float] = None) -> List[str]:
        """Close every session idle for longer than ``idle_timeout``; return their ids."""
        if self.idle_timeout <= 0:
            return []
        now = time.monotonic() if now is None else now
        async with self._lock:
            for session in self._sessions.values():
                # a listener on the event stream keeps its session alive
                if session.transport.streaming:
                    session.last_seen = now
            stale = [
                session
                for session in self._sessions.values()
                if now - session.last_seen > self.idle_timeout
            ]
        for session in stale:
            logger.info("Closing idle session %s", session.id)
            await session.transport.close()
            await self.remove(session.id)
        return [session.id for session in stale]

    async def run_reaper(self, interval: float) -> None:
        """Periodically reap idle sessions until cancelled."""
        while True:
            await asyncio.sleep(interval)
            try:
                await self.reap_idle()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Idle session reaper failed")

    async def close_all(self) -> None:
        async with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            await session.transport.close()
            await self.remove(session.id)

    async def list_sessions(self) -> List[str]:
        """Return all active session IDs."""
        async with self._lock:
            return list(self._sessions.keys())

    @property
    def count(self) -> int:
        """Synchronous count, use only from non-async contexts (e.g. tests)."""
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

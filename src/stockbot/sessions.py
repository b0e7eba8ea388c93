"""Per-user conversation state.

Sessions live in process memory only and are lost on restart; a user whose
conversation disappears simply starts again from the menu.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from . import log
from .constants import FlowType, SessionState


@dataclass
class Session:
    """Current sub-state of one user plus the payload of the owning workflow.

    The payload is tagged with the workflow that stored it; reading it from
    another workflow returns ``None`` as if it were missing.
    """

    user_id: str
    state: Optional[SessionState] = None
    _payload: Any = None
    _payload_flow: Optional[FlowType] = None

    @property
    def flow(self) -> Optional[FlowType]:
        return self.state.flow if self.state is not None else None

    def set_state(self, state: SessionState) -> None:
        self.state = state

    def set_payload(self, flow: FlowType, payload: Any) -> None:
        self._payload = payload
        self._payload_flow = flow

    def get_payload(self, flow: FlowType) -> Any:
        if self._payload_flow is not flow:
            return None
        return self._payload

    def clear_all(self) -> None:
        self.state = None
        self._payload = None
        self._payload_flow = None

    @property
    def is_empty(self) -> bool:
        return self.state is None and self._payload_flow is None


class SessionStore:
    """Process-wide registry of sessions and per-user event locks.

    A user's session and lock are dropped once no event of that user is in
    flight and the session holds nothing, so the registry only keeps users
    in the middle of a conversation.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._pending: Dict[str, int] = {}

    def get(self, user_id: str) -> Session:
        session = self._sessions.get(user_id)
        if session is None:
            session = Session(user_id=user_id)
            self._sessions[user_id] = session
            log.debug("Created session for '%s'", user_id)
        return session

    def lock_for(self, user_id: str) -> asyncio.Lock:
        """Lock serializing the events of one user in arrival order."""

        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[Session]:
        """Wait for the user's earlier events, then yield the session for one event."""

        self._pending[user_id] = self._pending.get(user_id, 0) + 1
        try:
            async with self.lock_for(user_id):
                yield self.get(user_id)
        finally:
            self._pending[user_id] -= 1
            if not self._pending[user_id]:
                del self._pending[user_id]
                self._evict_if_idle(user_id)

    def _evict_if_idle(self, user_id: str) -> None:
        session = self._sessions.get(user_id)
        if session is not None and not session.is_empty:
            return
        self._sessions.pop(user_id, None)
        self._locks.pop(user_id, None)
        log.debug("Dropped idle session of '%s'", user_id)

    def __len__(self) -> int:
        return len(self._sessions)

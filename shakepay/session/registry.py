"""SessionRegistry: live sessions keyed by session id."""

from __future__ import annotations

import logging
from typing import Generic, Iterator, Protocol, TypeVar

logger = logging.getLogger(__name__)


class _HasSessionId(Protocol):
    @property
    def session_id(self) -> str: ...


S = TypeVar("S", bound=_HasSessionId)


class SessionRegistry(Generic[S]):
    """Owns every live session entry; nothing else holds per-session state."""

    def __init__(self) -> None:
        self._sessions: dict[str, S] = {}

    def add(self, session: S) -> None:
        if session.session_id in self._sessions:
            raise KeyError(f"session {session.session_id} already registered")
        self._sessions[session.session_id] = session
        logger.info("[Registry] Session %s registered. Active: %d", session.session_id, len(self._sessions))

    def get(self, session_id: str) -> S | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> S | None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info("[Registry] Session %s removed. Active: %d", session_id, len(self._sessions))
        return session

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __iter__(self) -> Iterator[S]:
        return iter(list(self._sessions.values()))

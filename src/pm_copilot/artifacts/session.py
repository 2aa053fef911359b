"""Explicit session state for derivations and Q&A.

Replaces implicit "current view" state with objects the caller owns and
passes to every orchestrator operation:

- CancellationToken: lets a caller abandon a pending call. A result that
  arrives after cancellation is discarded instead of merged.
- ConversationSession: the active meeting id plus the ordered chat log and
  the lock that keeps turns strictly sequential.
- ConversationSessions: per-application registry of open sessions, used by
  the HTTP layer. Sessions are ephemeral and never persisted.
"""

from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field

import structlog

from src.pm_copilot.meetings.schemas import ChatMessage, new_id

logger = structlog.get_logger(__name__)


class CancellationToken:
    """Cooperative cancellation flag for a pending call."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class ConversationSession:
    """Q&A session scoped to one meeting.

    Attributes:
        meeting_id: The meeting the session is grounded in.
        messages: Append-only log, alternating user/model turns.
        id: Session identifier.
    """

    meeting_id: str
    messages: list[ChatMessage] = field(default_factory=list)
    id: str = field(default_factory=new_id)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)


class ConversationSessions:
    """In-process registry of open conversation sessions.

    Holds at most ``max_sessions``; opening one more evicts the session
    used least recently.
    """

    def __init__(self, max_sessions: int = 1000) -> None:
        self._max_sessions = max_sessions
        self._sessions: OrderedDict[str, ConversationSession] = OrderedDict()

    def open(self, meeting_id: str) -> ConversationSession:
        session = ConversationSession(meeting_id=meeting_id)
        self._sessions[session.id] = session
        while len(self._sessions) > self._max_sessions:
            evicted_id, evicted = self._sessions.popitem(last=False)
            logger.info(
                "chat.session_evicted",
                session_id=evicted_id,
                meeting_id=evicted.meeting_id,
            )
        return session

    def get(self, session_id: str) -> ConversationSession | None:
        session = self._sessions.get(session_id)
        if session is not None:
            self._sessions.move_to_end(session_id)
        return session

    def close(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def __len__(self) -> int:
        return len(self._sessions)

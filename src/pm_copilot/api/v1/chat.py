"""REST endpoints for grounded Q&A sessions.

A session is opened against one meeting and holds the ordered message log
in process memory. Sessions are not persisted and disappear on restart.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from src.pm_copilot.api.deps import (
    get_meeting_store,
    get_orchestrator,
    get_sessions,
    to_http_exception,
)
from src.pm_copilot.artifacts.orchestrator import ArtifactOrchestrator
from src.pm_copilot.artifacts.session import ConversationSession, ConversationSessions
from src.pm_copilot.errors import CopilotError
from src.pm_copilot.meetings.schemas import CamelModel, ChatMessage
from src.pm_copilot.meetings.store import MeetingStore

logger = structlog.get_logger(__name__)

router = APIRouter(tags=["chat"])


class SessionResponse(CamelModel):
    id: str
    meeting_id: str
    messages: list[ChatMessage]


class QuestionRequest(CamelModel):
    question: str


def _session_to_response(session: ConversationSession) -> SessionResponse:
    return SessionResponse(
        id=session.id,
        meeting_id=session.meeting_id,
        messages=list(session.messages),
    )


def _require_session(sessions: ConversationSessions, session_id: str) -> ConversationSession:
    session = sessions.get(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chat session not found: {session_id}",
        )
    return session


@router.post(
    "/meetings/{meeting_id}/chat/sessions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def open_session(
    meeting_id: str,
    store: MeetingStore = Depends(get_meeting_store),
    sessions: ConversationSessions = Depends(get_sessions),
) -> SessionResponse:
    """Open an empty Q&A session for a meeting."""
    try:
        await store.require(meeting_id)
    except CopilotError as exc:
        raise to_http_exception(exc) from exc
    session = sessions.open(meeting_id)
    logger.info("chat.session_opened", meeting_id=meeting_id, session_id=session.id)
    return _session_to_response(session)


@router.get("/chat/sessions/{session_id}/messages", response_model=list[ChatMessage])
async def list_messages(
    session_id: str,
    sessions: ConversationSessions = Depends(get_sessions),
) -> list[ChatMessage]:
    return list(_require_session(sessions, session_id).messages)


@router.post("/chat/sessions/{session_id}/messages", response_model=ChatMessage)
async def ask_question(
    session_id: str,
    body: QuestionRequest,
    sessions: ConversationSessions = Depends(get_sessions),
    orchestrator: ArtifactOrchestrator = Depends(get_orchestrator),
) -> ChatMessage:
    """Ask a question; returns the model's answer once it is appended."""
    session = _require_session(sessions, session_id)
    try:
        return await orchestrator.answer_question(session, body.question)
    except CopilotError as exc:
        raise to_http_exception(exc) from exc


@router.delete("/chat/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def close_session(
    session_id: str,
    sessions: ConversationSessions = Depends(get_sessions),
) -> None:
    if not sessions.close(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Chat session not found: {session_id}",
        )
    logger.info("chat.session_closed", session_id=session_id)

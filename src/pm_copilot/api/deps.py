"""FastAPI dependency injection for the services wired in the lifespan.

Each dependency reads its service from ``app.state`` and responds 503 when
the service was not initialized. ``to_http_exception`` maps pipeline errors
to HTTP status codes.
"""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from src.pm_copilot.artifacts.orchestrator import ArtifactOrchestrator
from src.pm_copilot.artifacts.session import ConversationSessions
from src.pm_copilot.errors import (
    CopilotError,
    DerivationAbandonedError,
    DerivationInProgressError,
    EmptyQuestionError,
    GatewayUnavailableError,
    InvalidInputError,
    MalformedArtifactError,
    MeetingNotFoundError,
)
from src.pm_copilot.meetings.store import MeetingStore

_STATUS_BY_ERROR: list[tuple[type[CopilotError], int]] = [
    (MeetingNotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidInputError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (EmptyQuestionError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (DerivationInProgressError, status.HTTP_409_CONFLICT),
    (DerivationAbandonedError, status.HTTP_409_CONFLICT),
    (MalformedArtifactError, status.HTTP_502_BAD_GATEWAY),
    (GatewayUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def _from_state(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return value


def get_meeting_store(request: Request) -> MeetingStore:
    """Retrieve MeetingStore from app.state, 503 if not available."""
    return _from_state(request, "meeting_store", "Meeting store")


def get_orchestrator(request: Request) -> ArtifactOrchestrator:
    """Retrieve ArtifactOrchestrator from app.state, 503 if not available."""
    return _from_state(request, "orchestrator", "Artifact orchestrator")


def get_sessions(request: Request) -> ConversationSessions:
    """Retrieve the ConversationSessions registry from app.state."""
    return _from_state(request, "conversation_sessions", "Conversation sessions")


def to_http_exception(exc: CopilotError) -> HTTPException:
    """Translate a pipeline error into the matching HTTPException."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )

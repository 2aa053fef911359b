"""REST endpoints for meetings and the artifacts derived from them.

Ingestion accepts either raw notes or a base64-encoded audio recording in a
JSON body. Derivations (PRD, roadmap) are merged into the stored meeting and
returned; the stakeholder email is returned only.

Pipeline errors are translated by ``to_http_exception``: invalid input 422,
unknown meeting 404, concurrent derivation 409, malformed reply 502,
unavailable generative service 503.
"""

from __future__ import annotations

import base64
import binascii

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import model_validator

from src.pm_copilot.api.deps import (
    get_meeting_store,
    get_orchestrator,
    to_http_exception,
)
from src.pm_copilot.artifacts.orchestrator import ArtifactOrchestrator
from src.pm_copilot.errors import CopilotError
from src.pm_copilot.meetings.schemas import (
    PRD,
    CamelModel,
    EmailTone,
    Meeting,
    Roadmap,
    SourceKind,
    StakeholderEmail,
)
from src.pm_copilot.meetings.store import MeetingStore

router = APIRouter(prefix="/meetings", tags=["meetings"])


# ── Request Schemas ──────────────────────────────────────────────────────────


class CreateMeetingRequest(CamelModel):
    """Either ``content`` (notes) or ``contentBase64`` + ``mediaType`` (audio)."""

    content: str | None = None
    content_base64: str | None = None
    media_type: str | None = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> CreateMeetingRequest:
        if (self.content is None) == (self.content_base64 is None):
            raise ValueError("Provide exactly one of content or contentBase64")
        return self

    @property
    def source_kind(self) -> SourceKind:
        return SourceKind.NOTES if self.content is not None else SourceKind.AUDIO


class EmailRequest(CamelModel):
    tone: EmailTone


# ── REST Endpoints ───────────────────────────────────────────────────────────


@router.get("", response_model=list[Meeting])
async def list_meetings(
    store: MeetingStore = Depends(get_meeting_store),
) -> list[Meeting]:
    """List all meetings, newest first."""
    return await store.list()


@router.get("/{meeting_id}", response_model=Meeting)
async def get_meeting(
    meeting_id: str,
    store: MeetingStore = Depends(get_meeting_store),
) -> Meeting:
    meeting = await store.get(meeting_id)
    if meeting is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Meeting not found: {meeting_id}",
        )
    return meeting


@router.post("", response_model=Meeting, status_code=status.HTTP_201_CREATED)
async def create_meeting(
    body: CreateMeetingRequest,
    orchestrator: ArtifactOrchestrator = Depends(get_orchestrator),
) -> Meeting:
    """Ingest notes or an audio recording.

    The meeting is created even when extraction fails; it is then returned
    with status ERROR and an error message.
    """
    if body.source_kind == SourceKind.NOTES:
        content: str | bytes = body.content
    else:
        try:
            content = base64.b64decode(body.content_base64, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="contentBase64 is not valid base64",
            ) from exc

    try:
        return await orchestrator.ingest(content, body.source_kind, body.media_type)
    except CopilotError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{meeting_id}/reprocess", response_model=Meeting)
async def reprocess_meeting(
    meeting_id: str,
    orchestrator: ArtifactOrchestrator = Depends(get_orchestrator),
) -> Meeting:
    """Re-run extraction for a notes meeting in ERROR status."""
    try:
        return await orchestrator.reprocess(meeting_id)
    except CopilotError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{meeting_id}/prd", response_model=PRD)
async def derive_prd(
    meeting_id: str,
    store: MeetingStore = Depends(get_meeting_store),
    orchestrator: ArtifactOrchestrator = Depends(get_orchestrator),
) -> PRD:
    """Generate a PRD and store it on the meeting, replacing any previous one."""
    try:
        meeting = await store.require(meeting_id)
        return await orchestrator.derive_prd(meeting)
    except CopilotError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{meeting_id}/roadmap", response_model=Roadmap)
async def derive_roadmap(
    meeting_id: str,
    store: MeetingStore = Depends(get_meeting_store),
    orchestrator: ArtifactOrchestrator = Depends(get_orchestrator),
) -> Roadmap:
    """Generate a roadmap and store it on the meeting, replacing any previous one."""
    try:
        meeting = await store.require(meeting_id)
        return await orchestrator.derive_roadmap(meeting)
    except CopilotError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{meeting_id}/email", response_model=StakeholderEmail)
async def derive_email(
    meeting_id: str,
    body: EmailRequest,
    store: MeetingStore = Depends(get_meeting_store),
    orchestrator: ArtifactOrchestrator = Depends(get_orchestrator),
) -> StakeholderEmail:
    """Draft a stakeholder email in the requested tone. Not stored."""
    try:
        meeting = await store.require(meeting_id)
        return await orchestrator.derive_email(meeting, body.tone)
    except CopilotError as exc:
        raise to_http_exception(exc) from exc

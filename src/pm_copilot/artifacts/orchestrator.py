"""ArtifactOrchestrator -- one operation per derivation.

Every operation follows the same protocol: assemble context, call the
generative gateway with the relevant response model, merge the result into
the target Meeting (or, for chat, into the conversation log).

Failure semantics:
- InvalidInputError / EmptyQuestionError are raised before any outbound call.
- Gateway failures during derive_* and answer_question propagate as typed
  errors and leave stored state unchanged.
- ingest never loses the user's input: on failure it still returns (and
  stores) the meeting, flagged ERROR with empty artifacts.

Concurrency:
- Merges into a meeting happen under a per-meeting lock against the store's
  latest value, so concurrent derivations of different kinds do not drop
  each other's writes.
- Two concurrent derivations of the same kind for the same meeting are
  rejected with DerivationInProgressError.
- Chat turns of one session are serialized by the session lock.
- A result arriving after its CancellationToken was cancelled is discarded.

Exports:
    ArtifactOrchestrator: The orchestration service.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from src.pm_copilot.artifacts.context import AssembledContext, ContextAssembler
from src.pm_copilot.artifacts.schemas import ArtifactKind, ExtractedMeeting
from src.pm_copilot.artifacts.session import CancellationToken, ConversationSession
from src.pm_copilot.config import Settings, get_settings
from src.pm_copilot.errors import (
    DerivationAbandonedError,
    DerivationInProgressError,
    EmptyQuestionError,
    GatewayUnavailableError,
    InvalidInputError,
    MalformedArtifactError,
)
from src.pm_copilot.meetings.schemas import (
    PRD,
    ActionItem,
    ChatMessage,
    Decision,
    EmailTone,
    Meeting,
    MeetingStatus,
    MeetingSummary,
    Roadmap,
    SourceKind,
    StakeholderEmail,
    new_id,
)
from src.pm_copilot.meetings.store import MeetingStore
from src.pm_copilot.services.llm import GenerativeGateway

logger = structlog.get_logger(__name__)

UNTITLED_MEETING = "Untitled Meeting"
AUDIO_TRANSCRIPT_MARKER = "Audio recording processed internally for context."


class ArtifactOrchestrator:
    """Sequences context assembly, gateway calls and merges.

    Args:
        gateway: GenerativeGateway (or compatible object with ``complete``).
        store: MeetingStore owning the meeting collection.
        assembler: ContextAssembler; built from settings if None.
        settings: Application settings (input limits). Uses get_settings()
            if None.
    """

    def __init__(
        self,
        gateway: GenerativeGateway,
        store: MeetingStore,
        assembler: ContextAssembler | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._gateway = gateway
        self._store = store
        self._assembler = assembler or ContextAssembler(self._settings)
        self._merge_locks: dict[str, asyncio.Lock] = {}
        self._merge_users: dict[str, int] = {}
        self._in_flight: set[tuple[str, ArtifactKind]] = set()

    # ── Ingestion ────────────────────────────────────────────────────────────

    async def ingest(
        self,
        content: str | bytes,
        source_kind: SourceKind,
        media_type: str | None = None,
        *,
        cancel: CancellationToken | None = None,
    ) -> Meeting:
        """Create a Meeting from raw notes or an audio recording.

        Args:
            content: Notes text (Notes) or the raw audio bytes (Audio).
            source_kind: What the content is.
            media_type: Declared media type of audio content.
            cancel: Optional token to abandon the call.

        Returns:
            The stored Meeting: COMPLETED on success, ERROR otherwise.

        Raises:
            InvalidInputError: If the content is empty, oversized or of the
                wrong type. Nothing is stored in that case.
        """
        source_kind = SourceKind(source_kind)
        if source_kind == SourceKind.NOTES:
            notes = self._validate_notes(content)
            context = self._assembler.for_notes_ingestion(notes)
            shell = Meeting(
                title=UNTITLED_MEETING,
                type=SourceKind.NOTES,
                transcript=notes,
                transcript_verbatim=True,
            )
        else:
            audio = self._validate_audio(content, media_type)
            context = self._assembler.for_audio_ingestion(audio, media_type)
            shell = Meeting(
                title=UNTITLED_MEETING,
                type=SourceKind.AUDIO,
                transcript=AUDIO_TRANSCRIPT_MARKER,
                transcript_verbatim=False,
            )

        shell = await self._store.create(shell)
        logger.info("ingest.started", meeting_id=shell.id, source_kind=source_kind.value)
        return await self._extract_into(shell, context, cancel)

    async def reprocess(
        self,
        meeting_id: str,
        *,
        cancel: CancellationToken | None = None,
    ) -> Meeting:
        """Re-run extraction for a notes meeting whose ingestion failed.

        The meeting keeps its id and transcript.

        Raises:
            MeetingNotFoundError: If the meeting does not exist.
            InvalidInputError: If the meeting is not in ERROR status or was
                ingested from audio (the recording is not retained).
        """
        meeting = await self._store.require(meeting_id)
        if meeting.status != MeetingStatus.ERROR:
            raise InvalidInputError(
                f"Meeting {meeting_id} is {meeting.status.value}; only ERROR meetings can be reprocessed"
            )
        if meeting.type != SourceKind.NOTES:
            raise InvalidInputError(
                f"Meeting {meeting_id} was ingested from audio and cannot be reprocessed"
            )

        with self._guard(meeting_id, ArtifactKind.SUMMARY):
            processing = meeting.model_copy(
                update={"status": MeetingStatus.PROCESSING, "error": None}
            )
            await self._store.update(processing)
            context = self._assembler.for_notes_ingestion(meeting.transcript)
            return await self._extract_into(processing, context, cancel)

    async def _extract_into(
        self,
        shell: Meeting,
        context: AssembledContext,
        cancel: CancellationToken | None,
    ) -> Meeting:
        try:
            extracted = await self._call(context, ExtractedMeeting, ArtifactKind.SUMMARY, shell.id)
        except (GatewayUnavailableError, MalformedArtifactError) as exc:
            logger.warning(
                "ingest.extraction_failed",
                meeting_id=shell.id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return await self._mark_error(shell, str(exc))
        except asyncio.CancelledError:
            await asyncio.shield(self._mark_error(shell, "Processing was cancelled"))
            raise

        if cancel is not None and cancel.cancelled:
            logger.info("ingest.abandoned", meeting_id=shell.id)
            return await self._mark_error(shell, "Processing was abandoned")

        completed = shell.model_copy(
            update={
                "title": extracted.title or UNTITLED_MEETING,
                "participants": list(extracted.participants),
                "summary": MeetingSummary(
                    overview=extracted.overview,
                    agenda=list(extracted.agenda),
                    risks=list(extracted.risks),
                ),
                "decisions": [
                    Decision(id=new_id(), **d.model_dump()) for d in extracted.decisions
                ],
                "action_items": [
                    ActionItem(id=new_id(), **a.model_dump()) for a in extracted.action_items
                ],
                "status": MeetingStatus.COMPLETED,
                "error": None,
            }
        )
        await self._store.update(completed)
        logger.info(
            "ingest.completed",
            meeting_id=completed.id,
            decisions=len(completed.decisions),
            action_items=len(completed.action_items),
        )
        return completed

    async def _mark_error(self, shell: Meeting, reason: str) -> Meeting:
        failed = shell.model_copy(
            update={"status": MeetingStatus.ERROR, "error": reason}
        )
        return await self._store.update(failed)

    # ── Derivations ──────────────────────────────────────────────────────────

    async def derive_artifact(
        self,
        meeting: Meeting,
        kind: ArtifactKind,
        *,
        tone: EmailTone | None = None,
        cancel: CancellationToken | None = None,
    ) -> PRD | Roadmap | StakeholderEmail:
        """Derive a PRD, roadmap or stakeholder email from a meeting.

        Raises:
            InvalidInputError: If the kind is not derivable, the meeting has
                no summary, or an email is requested without a tone.
        """
        kind = ArtifactKind(kind)
        if kind == ArtifactKind.PRD:
            return await self.derive_prd(meeting, cancel=cancel)
        if kind == ArtifactKind.ROADMAP:
            return await self.derive_roadmap(meeting, cancel=cancel)
        if kind == ArtifactKind.EMAIL:
            if tone is None:
                raise InvalidInputError("An email tone is required")
            return await self.derive_email(meeting, tone, cancel=cancel)
        raise InvalidInputError(f"{kind.value} is not a derivable artifact")

    async def derive_prd(
        self, meeting: Meeting, *, cancel: CancellationToken | None = None
    ) -> PRD:
        """Derive a PRD and replace the meeting's PRD with it."""
        context = self._assembler.for_prd(meeting)
        with self._guard(meeting.id, ArtifactKind.PRD):
            prd = await self._call(context, PRD, ArtifactKind.PRD, meeting.id)
            self._check_abandoned(cancel, meeting.id, ArtifactKind.PRD)
            await self._merge(meeting.id, prd=prd)
        logger.info("derive.prd_completed", meeting_id=meeting.id, user_stories=len(prd.user_stories))
        return prd

    async def derive_roadmap(
        self, meeting: Meeting, *, cancel: CancellationToken | None = None
    ) -> Roadmap:
        """Derive a roadmap and replace the meeting's roadmap with it."""
        context = self._assembler.for_roadmap(meeting)
        with self._guard(meeting.id, ArtifactKind.ROADMAP):
            roadmap = await self._call(context, Roadmap, ArtifactKind.ROADMAP, meeting.id)
            self._check_abandoned(cancel, meeting.id, ArtifactKind.ROADMAP)
            await self._merge(meeting.id, roadmap=roadmap)
        logger.info("derive.roadmap_completed", meeting_id=meeting.id, epics=len(roadmap.epics))
        return roadmap

    async def derive_email(
        self,
        meeting: Meeting,
        tone: EmailTone,
        *,
        cancel: CancellationToken | None = None,
    ) -> StakeholderEmail:
        """Write a stakeholder email. Nothing is stored on the meeting."""
        tone = EmailTone(tone)
        context = self._assembler.for_email(meeting, tone)
        with self._guard(meeting.id, ArtifactKind.EMAIL):
            body = await self._call(context, None, ArtifactKind.EMAIL, meeting.id)
            self._check_abandoned(cancel, meeting.id, ArtifactKind.EMAIL)
        logger.info("derive.email_completed", meeting_id=meeting.id, tone=tone.value)
        return StakeholderEmail(tone=tone, body=body)

    # ── Chat ─────────────────────────────────────────────────────────────────

    async def answer_question(
        self,
        session: ConversationSession,
        question: str,
        *,
        cancel: CancellationToken | None = None,
    ) -> ChatMessage:
        """Answer a question grounded in the session's meeting.

        Turns are strictly sequential: each waits for the previous turn's
        answer to be appended before its context is assembled. On failure
        the session log is left unchanged.

        Returns:
            The appended ``model`` message.

        Raises:
            EmptyQuestionError: If the question is blank.
        """
        if not question or not question.strip():
            raise EmptyQuestionError()

        async with session.lock:
            meeting = await self._store.require(session.meeting_id)
            prior_turns = list(session.messages)
            user_message = ChatMessage(role="user", content=question.strip())
            context = self._assembler.for_chat(meeting, prior_turns, user_message.content)

            answer = await self._call(context, None, ArtifactKind.CHAT, meeting.id)
            self._check_abandoned(cancel, meeting.id, ArtifactKind.CHAT)

            model_message = ChatMessage(role="model", content=answer)
            session.messages.extend([user_message, model_message])

        logger.info(
            "chat.answered",
            meeting_id=session.meeting_id,
            session_id=session.id,
            turns=len(session.messages) // 2,
        )
        return model_message

    # ── Helpers ──────────────────────────────────────────────────────────────

    async def _call(
        self,
        context: AssembledContext,
        shape: type | None,
        kind: ArtifactKind,
        meeting_id: str,
    ):
        return await self._gateway.complete(
            context.parts,
            shape,
            model=context.model,
            system_prompt=context.system_prompt,
            history=context.history,
            metadata={"meeting_id": meeting_id, "kind": kind.value},
        )

    async def _merge(self, meeting_id: str, **changes) -> Meeting:
        """Apply whole-field replacements to the store's latest value.

        The meeting's lock is dropped once no merge holds or awaits it.
        """
        lock = self._merge_locks.setdefault(meeting_id, asyncio.Lock())
        self._merge_users[meeting_id] = self._merge_users.get(meeting_id, 0) + 1
        try:
            async with lock:
                current = await self._store.require(meeting_id)
                return await self._store.update(current.model_copy(update=changes))
        finally:
            self._merge_users[meeting_id] -= 1
            if not self._merge_users[meeting_id]:
                del self._merge_users[meeting_id]
                del self._merge_locks[meeting_id]

    @contextmanager
    def _guard(self, meeting_id: str, kind: ArtifactKind) -> Iterator[None]:
        key = (meeting_id, kind)
        if key in self._in_flight:
            raise DerivationInProgressError(meeting_id, kind.value)
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)

    @staticmethod
    def _check_abandoned(
        cancel: CancellationToken | None, meeting_id: str, kind: ArtifactKind
    ) -> None:
        if cancel is not None and cancel.cancelled:
            logger.info("derive.abandoned", meeting_id=meeting_id, kind=kind.value)
            raise DerivationAbandonedError(
                f"{kind.value} result for meeting {meeting_id} discarded after cancellation"
            )

    # ── Input Validation ─────────────────────────────────────────────────────

    def _validate_notes(self, content: str | bytes) -> str:
        if not isinstance(content, str):
            raise InvalidInputError("Notes must be provided as text")
        if not content.strip():
            raise InvalidInputError("Meeting notes are empty")
        if len(content) > self._settings.MAX_NOTES_CHARS:
            raise InvalidInputError(
                f"Meeting notes exceed {self._settings.MAX_NOTES_CHARS} characters"
            )
        return content

    def _validate_audio(self, content: str | bytes, media_type: str | None) -> bytes:
        if not isinstance(content, (bytes, bytearray)):
            raise InvalidInputError("Audio must be provided as bytes")
        if not content:
            raise InvalidInputError("Audio recording is empty")
        if len(content) > self._settings.MAX_AUDIO_BYTES:
            limit_mb = self._settings.MAX_AUDIO_BYTES // (1024 * 1024)
            raise InvalidInputError(f"Audio recording exceeds {limit_mb}MB")
        if media_type and not media_type.startswith("audio/"):
            raise InvalidInputError(f"Unsupported media type: {media_type}")
        return bytes(content)

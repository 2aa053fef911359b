"""ContextAssembler -- bounded prompt context for every derivation.

Builds what is sent to the generative gateway for each artifact kind:

- Ingestion: the notes text, or the audio payload plus a fixed instruction.
- PRD: serialized summary plus a leading transcript excerpt.
- Roadmap: serialized summary plus serialized decisions.
- Email: serialized summary plus action items, and the requested tone.
- Chat: grounding framing with summary, decisions and the leading portion
  of the transcript, the prior turns in order, then the new question.

Transcript-bearing contexts keep only the leading portion of the transcript
(no summary-aware selection). Answers about material past the cutoff are
unreliable; the cutoff is flagged on the result and logged.

Exports:
    AssembledContext: What the orchestrator passes to the gateway.
    ContextAssembler: Builder with one method per derivation.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import BaseModel

from src.pm_copilot.artifacts.prompts import (
    ARTIFACT_SYSTEM_PROMPT,
    AUDIO_EXTRACTION_INSTRUCTION,
    EXTRACTION_SYSTEM_PROMPT,
    build_chat_system_prompt,
    build_email_prompt,
    build_notes_extraction_prompt,
    build_prd_prompt,
    build_roadmap_prompt,
)
from src.pm_copilot.config import Settings, get_settings
from src.pm_copilot.errors import InvalidInputError
from src.pm_copilot.meetings.schemas import ChatMessage, EmailTone, Meeting
from src.pm_copilot.services.llm import MODEL_FAST, MODEL_REASONING, PromptPart

logger = structlog.get_logger(__name__)

DEFAULT_AUDIO_MEDIA_TYPE = "audio/mp3"


@dataclass
class AssembledContext:
    """Prompt material for a single gateway call.

    Attributes:
        parts: Ordered prompt segments for the final user turn.
        system_prompt: System instruction, if any.
        history: Prior conversation turns, oldest first.
        model: Model group to route the call to.
        truncated: True if the transcript was cut to its leading portion.
    """

    parts: list[PromptPart]
    system_prompt: str | None = None
    history: list[ChatMessage] = field(default_factory=list)
    model: str = MODEL_FAST
    truncated: bool = False


def _dump(value: Any) -> str:
    """Serialize models (or lists of models) as camelCase JSON."""
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)
    elif isinstance(value, list):
        value = [
            v.model_dump(mode="json", by_alias=True) if isinstance(v, BaseModel) else v
            for v in value
        ]
    return json.dumps(value, ensure_ascii=False)


class ContextAssembler:
    """Builds gateway input for each artifact kind.

    Args:
        settings: Application settings (context limits). Uses
            get_settings() if None.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    # ── Ingestion ────────────────────────────────────────────────────────────

    def for_notes_ingestion(self, notes: str) -> AssembledContext:
        return AssembledContext(
            parts=[PromptPart.from_text(build_notes_extraction_prompt(notes))],
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
        )

    def for_audio_ingestion(
        self, audio: bytes, media_type: str | None = None
    ) -> AssembledContext:
        return AssembledContext(
            parts=[
                PromptPart.from_bytes(audio, media_type or DEFAULT_AUDIO_MEDIA_TYPE),
                PromptPart.from_text(AUDIO_EXTRACTION_INSTRUCTION),
            ],
            system_prompt=EXTRACTION_SYSTEM_PROMPT,
        )

    # ── Derivations ──────────────────────────────────────────────────────────

    def for_prd(self, meeting: Meeting) -> AssembledContext:
        """Summary plus a leading transcript excerpt, never the full transcript."""
        summary = self._require_summary(meeting, "PRD")
        excerpt, truncated = self._leading(
            meeting, self._settings.PRD_TRANSCRIPT_EXCERPT_CHARS
        )
        context = f"{_dump(summary)}\n\nTranscript excerpt: {excerpt}"
        return AssembledContext(
            parts=[PromptPart.from_text(build_prd_prompt(context))],
            system_prompt=ARTIFACT_SYSTEM_PROMPT,
            model=MODEL_REASONING,
            truncated=truncated,
        )

    def for_roadmap(self, meeting: Meeting) -> AssembledContext:
        summary = self._require_summary(meeting, "roadmap")
        context = f"{_dump(summary)}\n\nDecisions: {_dump(meeting.decisions)}"
        return AssembledContext(
            parts=[PromptPart.from_text(build_roadmap_prompt(context))],
            system_prompt=ARTIFACT_SYSTEM_PROMPT,
            model=MODEL_REASONING,
        )

    def for_email(self, meeting: Meeting, tone: EmailTone) -> AssembledContext:
        summary = self._require_summary(meeting, "email")
        context = f"{_dump(summary)}\nActions: {_dump(meeting.action_items)}"
        return AssembledContext(
            parts=[PromptPart.from_text(build_email_prompt(context, tone))],
            system_prompt=ARTIFACT_SYSTEM_PROMPT,
        )

    # ── Chat ─────────────────────────────────────────────────────────────────

    def for_chat(
        self,
        meeting: Meeting,
        prior_turns: list[ChatMessage],
        question: str,
    ) -> AssembledContext:
        """Grounded Q&A turn.

        Works without a summary (e.g. a meeting whose extraction failed):
        the transcript alone is then the grounding context.
        """
        transcript, truncated = self._leading(
            meeting, self._settings.CHAT_TRANSCRIPT_MAX_CHARS
        )
        summary = _dump(meeting.summary) if meeting.summary else "null"
        context = (
            f"Summary: {summary}\n"
            f"Decisions: {_dump(meeting.decisions)}\n"
            f"Full Content: {transcript}"
        )
        return AssembledContext(
            parts=[PromptPart.from_text(question)],
            system_prompt=build_chat_system_prompt(context),
            history=list(prior_turns),
            truncated=truncated,
        )

    # ── Helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _require_summary(meeting: Meeting, artifact: str):
        if meeting.summary is None:
            raise InvalidInputError(
                f"Meeting {meeting.id} has no summary; cannot derive {artifact}"
            )
        return meeting.summary

    @staticmethod
    def _leading(meeting: Meeting, limit: int) -> tuple[str, bool]:
        """Return the leading ``limit`` characters of the transcript."""
        transcript = meeting.transcript
        if len(transcript) <= limit:
            return transcript, False
        logger.warning(
            "context.transcript_truncated",
            meeting_id=meeting.id,
            transcript_chars=len(transcript),
            kept_chars=limit,
        )
        return transcript[:limit], True

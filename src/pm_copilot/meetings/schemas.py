"""Pydantic v2 schemas for the meeting domain.

Defines the Meeting aggregate and everything it owns (summary, decisions,
action items, PRD, roadmap), plus the ephemeral ChatMessage used by
question-answering sessions. Field names serialize in camelCase, which is the
storage format of the meeting collection and the shape the generative
service is asked to produce.
"""

from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


def _now_ms() -> int:
    return int(time.time() * 1000)


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting either spelling."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Enums ────────────────────────────────────────────────────────────────────


class MeetingStatus(str, Enum):
    """Processing state of a meeting's ingestion.

    Values are upper case (``"PROCESSING"``, ``"COMPLETED"``, ``"ERROR"``) in
    storage and over HTTP.
    """

    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class SourceKind(str, Enum):
    """What the user supplied at ingestion."""

    AUDIO = "Audio"
    NOTES = "Notes"


class EmailTone(str, Enum):
    """Register of a stakeholder email. Never changes the facts."""

    EXECUTIVE = "Executive"
    TEAM = "Team"
    INVESTOR = "Investor"


DecisionStatus = Literal["DECIDED", "PENDING"]
"""Decision status, stored and exchanged in upper case.

Only ``"DECIDED"`` and ``"PENDING"`` are accepted. A reply using any other
casing (``"Decided"``, ``"Pending"``) fails validation as a malformed
artifact; the JSON Schema sent with every extraction call lists the exact
values.
"""
Priority = Literal["High", "Medium", "Low"]
ActionStatus = Literal["Open", "In Progress", "Done"]
Phase = Literal["Now", "Next", "Later"]


# ── Meeting-owned entities ───────────────────────────────────────────────────


class MeetingSummary(CamelModel):
    """Executive overview plus ordered agenda and risk lists."""

    overview: str
    agenda: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)


class Decision(CamelModel):
    """A decision captured at ingestion. Immutable once created."""

    id: str
    description: str
    rationale: str = ""
    owner: str = ""
    status: DecisionStatus


class ActionItem(CamelModel):
    """A follow-up task captured at ingestion. Immutable once created."""

    id: str
    task: str
    owner: str = ""
    due_date: str = ""
    priority: Priority
    status: ActionStatus


class UserStory(CamelModel):
    """As a <role>, I want <capability>, so that <outcome>."""

    role: str
    capability: str
    outcome: str
    acceptance_criteria: list[str] = Field(default_factory=list)


class PRD(CamelModel):
    """Product requirements document. Replaced whole on re-derivation."""

    problem_statement: str
    personas: list[str] = Field(default_factory=list)
    user_stories: list[UserStory]
    technical_requirements: list[str] = Field(default_factory=list)


class Epic(CamelModel):
    """A roadmap epic.

    ``dependencies`` holds free-text titles of other epics. They are not
    resolved or validated against the roadmap.
    """

    title: str
    phase: Phase
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)


class Roadmap(CamelModel):
    """Now/Next/Later roadmap proposal. Replaced whole on re-derivation."""

    strategic_theme: str
    epics: list[Epic]


class StakeholderEmail(CamelModel):
    """Generated stakeholder update. Returned to the caller, not stored."""

    tone: EmailTone
    body: str


# ── Aggregate root ───────────────────────────────────────────────────────────


class Meeting(CamelModel):
    """A processed meeting and every artifact derived from it."""

    id: str = Field(default_factory=new_id)
    title: str
    date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    participants: list[str] = Field(default_factory=list)
    type: SourceKind
    transcript: str
    transcript_verbatim: bool = True
    summary: MeetingSummary | None = None
    decisions: list[Decision] = Field(default_factory=list)
    action_items: list[ActionItem] = Field(default_factory=list)
    prd: PRD | None = None
    roadmap: Roadmap | None = None
    status: MeetingStatus = MeetingStatus.PROCESSING
    error: str | None = None


# ── Conversation ─────────────────────────────────────────────────────────────


class ChatMessage(CamelModel):
    """One turn of a question-answering session."""

    id: str = Field(default_factory=new_id)
    role: Literal["user", "model"]
    content: str
    timestamp: int = Field(default_factory=_now_ms)

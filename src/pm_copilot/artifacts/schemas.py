"""Structural contracts for generated artifacts.

Each structured artifact kind has a Pydantic response model that the
generative service is asked to fill and that its reply is validated against.
Enum fields are closed ``Literal`` sets: a value outside the set is a
validation failure, never coerced. Only the non-critical lists of the
extraction (participants, agenda, risks) may be missing from a reply and
default to empty; everything the meeting record depends on is required.

Email and chat answers use the unconstrained text contract and have no
response model.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from src.pm_copilot.meetings.schemas import (
    PRD,
    ActionStatus,
    CamelModel,
    DecisionStatus,
    Priority,
    Roadmap,
)


class ArtifactKind(str, Enum):
    """Kinds of derivation the orchestrator performs."""

    SUMMARY = "SUMMARY"
    PRD = "PRD"
    ROADMAP = "ROADMAP"
    EMAIL = "EMAIL"
    CHAT = "CHAT"


# ── Extraction ───────────────────────────────────────────────────────────────


class ExtractedDecision(CamelModel):
    """Decision as returned by the service, before an id is assigned."""

    description: str
    rationale: str = ""
    owner: str = ""
    status: DecisionStatus


class ExtractedActionItem(CamelModel):
    """Action item as returned by the service, before an id is assigned."""

    task: str
    owner: str = ""
    due_date: str = Field("", description="Due date if mentioned, free text")
    priority: Priority
    status: ActionStatus


class ExtractedMeeting(CamelModel):
    """Everything ingestion extracts from raw meeting content."""

    title: str = Field(description="A concise title for the meeting")
    participants: list[str] = Field(
        default_factory=list, description="List of people present"
    )
    overview: str = Field(description="A 2-3 sentence executive summary")
    agenda: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    decisions: list[ExtractedDecision]
    action_items: list[ExtractedActionItem]


# ── Registry ─────────────────────────────────────────────────────────────────

STRUCTURED_SHAPES: dict[ArtifactKind, type[BaseModel]] = {
    ArtifactKind.SUMMARY: ExtractedMeeting,
    ArtifactKind.PRD: PRD,
    ArtifactKind.ROADMAP: Roadmap,
}


def shape_for(kind: ArtifactKind) -> type[BaseModel] | None:
    """Return the response model for a kind, or None for free-text kinds."""
    return STRUCTURED_SHAPES.get(kind)


def response_format_for(shape: type[BaseModel]) -> dict[str, Any]:
    """Build the output-shape descriptor sent with a structured call.

    The JSON Schema uses the camelCase field names and carries the enum
    constraints and required lists of the response model.
    """
    return {
        "type": "json_schema",
        "json_schema": {
            "name": shape.__name__,
            "schema": shape.model_json_schema(by_alias=True),
        },
    }


__all__ = [
    "ArtifactKind",
    "ExtractedActionItem",
    "ExtractedDecision",
    "ExtractedMeeting",
    "STRUCTURED_SHAPES",
    "response_format_for",
    "shape_for",
]

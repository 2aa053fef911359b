"""Prompt templates for artifact derivation and meeting Q&A.

Provides the system prompts and fixed instructions for each derivation, and
the tone register guidance for stakeholder emails. The Context Assembler
combines these with serialized meeting data.

Exports:
    EXTRACTION_SYSTEM_PROMPT: PM persona for ingestion extraction.
    AUDIO_EXTRACTION_INSTRUCTION: Instruction sent after an audio payload.
    build_notes_extraction_prompt: Text prompt for notes ingestion.
    build_prd_prompt / build_roadmap_prompt / build_email_prompt: Derivations.
    build_chat_system_prompt: Grounding framing for Q&A.
"""

from __future__ import annotations

from src.pm_copilot.meetings.schemas import EmailTone


# ── System Prompts ─────────────────────────────────────────────────────────


EXTRACTION_SYSTEM_PROMPT: str = (
    "You are an expert Product Manager assistant. Analyze the meeting content "
    "to extract key product artifacts."
)

AUDIO_EXTRACTION_INSTRUCTION: str = (
    "Analyze this meeting recording and extract the structured data "
    "requested in the schema."
)

ARTIFACT_SYSTEM_PROMPT: str = (
    "You are an expert Product Manager. Work only from the meeting context "
    "you are given. Do not invent decisions, owners, dates or figures that "
    "the context does not contain."
)

CHAT_GROUNDING_RULES: str = (
    "You are a helpful PM assistant. You have access to the transcript/notes "
    "of a specific meeting. Answer the user's question based ONLY on the "
    "provided context. If the answer isn't in the context, say so explicitly "
    "instead of guessing."
)

TONE_GUIDANCE: dict[EmailTone, str] = {
    EmailTone.EXECUTIVE: (
        "Executive register: lead with outcomes and decisions, keep it short, "
        "surface risks that need leadership attention."
    ),
    EmailTone.TEAM: (
        "Team register: friendly and practical, emphasise who owns which "
        "action item and what is due next."
    ),
    EmailTone.INVESTOR: (
        "Investor register: frame progress against strategy and milestones, "
        "measured and confident, no internal jargon."
    ),
}


# ── Prompt Builders ────────────────────────────────────────────────────────


def build_notes_extraction_prompt(notes: str) -> str:
    """Build the ingestion prompt for pasted notes or a text transcript."""
    return f"Analyze these meeting notes:\n\n{notes}"


def build_prd_prompt(meeting_context: str) -> str:
    """Build the PRD derivation prompt."""
    return (
        "Based on the following meeting context, generate a detailed Product "
        "Requirement Document (PRD).\n\n"
        f"Context:\n{meeting_context}"
    )


def build_roadmap_prompt(meeting_context: str) -> str:
    """Build the roadmap derivation prompt."""
    return (
        "Based on the following meeting context, suggest a product roadmap "
        "with Epics clustered into Now, Next, and Later. Reference "
        "dependencies by the exact title of the epic they depend on.\n\n"
        f"Context:\n{meeting_context}"
    )


def build_email_prompt(meeting_context: str, tone: EmailTone) -> str:
    """Build the stakeholder email prompt.

    The tone only selects the register. The facts (decisions, owners, dates)
    must be the same whichever tone is requested.
    """
    return (
        "Write a stakeholder update email based on this meeting.\n\n"
        f"Tone: {tone.value}\n"
        f"{TONE_GUIDANCE[tone]}\n"
        "The tone changes wording and emphasis only; report exactly the facts "
        "in the meeting context.\n\n"
        f"Meeting Context:\n{meeting_context}"
    )


def build_chat_system_prompt(meeting_context: str) -> str:
    """Build the grounded system prompt for a Q&A session."""
    return f"{CHAT_GROUNDING_RULES}\n\nMEETING CONTEXT:\n{meeting_context}\n"

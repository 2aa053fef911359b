"""Shared test fixtures.

The LiteLLM Router is replaced by a MagicMock whose ``acompletion`` is an
AsyncMock, so no generative service is contacted. Meetings are stored in an
InMemoryBlobStore unless a test needs a specific backend.
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.pm_copilot.artifacts.context import ContextAssembler
from src.pm_copilot.artifacts.orchestrator import ArtifactOrchestrator
from src.pm_copilot.config import Settings, StoreBackend
from src.pm_copilot.core.blob_store import InMemoryBlobStore
from src.pm_copilot.meetings.store import MeetingStore
from src.pm_copilot.services.llm import GenerativeGateway


def _make_llm_response(content: str | dict | list) -> MagicMock:
    """Build a LiteLLM-shaped completion response."""
    if not isinstance(content, str):
        content = json.dumps(content)
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.model = "gemini/gemini-2.5-flash"
    response.usage = MagicMock()
    response.usage.prompt_tokens = 120
    response.usage.completion_tokens = 80
    return response


def _make_router(*replies) -> MagicMock:
    """Router mock returning each reply in turn.

    A reply that is an exception instance is raised instead.
    """
    router = MagicMock()
    router.acompletion = AsyncMock(
        side_effect=[
            r if isinstance(r, BaseException) else _make_llm_response(r)
            for r in replies
        ]
    )
    return router


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        GEMINI_API_KEY="",
        OPENAI_API_KEY="",
        STORE_BACKEND=StoreBackend.memory,
        LANGFUSE_PUBLIC_KEY="",
        LANGFUSE_SECRET_KEY="",
    )


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def store(blob_store) -> MeetingStore:
    return MeetingStore(blob_store)


@pytest.fixture
def build_orchestrator(settings, store):
    """Factory: orchestrator whose gateway replies with the given replies."""

    def _build(*replies) -> tuple[ArtifactOrchestrator, MagicMock]:
        router = _make_router(*replies)
        gateway = GenerativeGateway(settings, router=router)
        orchestrator = ArtifactOrchestrator(
            gateway,
            store,
            assembler=ContextAssembler(settings),
            settings=settings,
        )
        return orchestrator, router

    return _build


@pytest.fixture
def router_factory():
    """Factory for standalone router mocks (see _make_router)."""
    return _make_router


# ── Sample Replies ───────────────────────────────────────────────────────────


@pytest.fixture
def launch_notes() -> str:
    return "Decided to launch in Q3. Alice owns API. Bob to finalize pricing by Friday."


@pytest.fixture
def extraction_reply() -> dict:
    return {
        "title": "Q3 Launch Sync",
        "participants": ["Alice", "Bob"],
        "overview": "The team agreed to launch in Q3. Pricing is still being finalized.",
        "agenda": ["Launch timing", "Pricing"],
        "risks": [],
        "decisions": [
            {
                "description": "Launch in Q3",
                "rationale": "",
                "owner": "",
                "status": "DECIDED",
            }
        ],
        "actionItems": [
            {
                "task": "Finalize pricing",
                "owner": "Bob",
                "dueDate": "Friday",
                "priority": "High",
                "status": "Open",
            }
        ],
    }


@pytest.fixture
def prd_reply() -> dict:
    return {
        "problemStatement": "Teams lack a single launch plan for Q3.",
        "personas": ["Product Manager", "API Developer"],
        "userStories": [
            {
                "role": "API developer",
                "capability": "a stable pricing endpoint",
                "outcome": "I can integrate billing before launch",
                "acceptanceCriteria": ["Endpoint returns current price list"],
            }
        ],
        "technicalRequirements": ["Public pricing API"],
    }


@pytest.fixture
def roadmap_reply() -> dict:
    return {
        "strategicTheme": "Ship the Q3 launch",
        "epics": [
            {
                "title": "Pricing API",
                "phase": "Now",
                "description": "Expose pricing",
                "dependencies": [],
            },
            {
                "title": "Self-serve billing",
                "phase": "Later",
                "description": "Checkout flow",
                "dependencies": ["Pricing API"],
            },
        ],
    }

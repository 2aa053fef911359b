"""Tests for ArtifactOrchestrator ingestion and derivations.

Tests cover:
- Notes and audio ingestion, including the launch-notes worked example
- Input validation before any outbound call
- Error shells when extraction fails or is abandoned
- Reprocessing of failed notes meetings
- PRD / roadmap merges, re-derivation replacing whole artifacts
- Stakeholder email (returned, never stored)
- Concurrent derivations of different kinds keeping both results
- In-flight guard and cancellation tokens

The LiteLLM router is mocked; no generative service is contacted.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.pm_copilot.artifacts.context import ContextAssembler
from src.pm_copilot.artifacts.orchestrator import (
    AUDIO_TRANSCRIPT_MARKER,
    ArtifactOrchestrator,
)
from src.pm_copilot.artifacts.schemas import ArtifactKind
from src.pm_copilot.artifacts.session import CancellationToken
from src.pm_copilot.errors import (
    DerivationAbandonedError,
    DerivationInProgressError,
    GatewayUnavailableError,
    InvalidInputError,
    MalformedArtifactError,
    MeetingNotFoundError,
)
from src.pm_copilot.meetings.schemas import (
    EmailTone,
    Meeting,
    MeetingStatus,
    MeetingSummary,
    SourceKind,
    StakeholderEmail,
)
from src.pm_copilot.meetings.store import MeetingStore
from src.pm_copilot.services.llm import GenerativeGateway


# ── Helpers ──────────────────────────────────────────────────────────────────


def _reply(content: str) -> MagicMock:
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage = None
    return response


def _orchestrator_with(acompletion, settings, store) -> ArtifactOrchestrator:
    router = MagicMock()
    router.acompletion = acompletion
    return ArtifactOrchestrator(
        GenerativeGateway(settings, router=router),
        store,
        assembler=ContextAssembler(settings),
        settings=settings,
    )


async def _ingested(build_orchestrator, launch_notes, extraction_reply, *more_replies):
    orchestrator, router = build_orchestrator(extraction_reply, *more_replies)
    meeting = await orchestrator.ingest(launch_notes, SourceKind.NOTES)
    return orchestrator, router, meeting


# ── Ingestion ────────────────────────────────────────────────────────────────


class TestIngestNotes:
    """Notes ingestion happy path."""

    @pytest.mark.asyncio
    async def test_launch_notes_yield_one_decision_and_one_action(
        self, build_orchestrator, store, launch_notes, extraction_reply
    ):
        orchestrator, router = build_orchestrator(extraction_reply)

        meeting = await orchestrator.ingest(launch_notes, SourceKind.NOTES)

        assert meeting.status == MeetingStatus.COMPLETED
        assert meeting.type == SourceKind.NOTES
        assert meeting.transcript == launch_notes
        assert meeting.transcript_verbatim is True
        assert meeting.title == "Q3 Launch Sync"
        assert len(meeting.decisions) == 1
        assert len(meeting.action_items) == 1
        assert meeting.action_items[0].owner == "Bob"
        ids = {meeting.decisions[0].id, meeting.action_items[0].id, meeting.id}
        assert len(ids) == 3
        assert meeting.summary.agenda == ["Launch timing", "Pricing"]

        stored = await store.get(meeting.id)
        assert stored == meeting
        router.acompletion.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_new_meetings_are_listed_first(
        self, build_orchestrator, store, launch_notes, extraction_reply
    ):
        orchestrator, _ = build_orchestrator(extraction_reply, extraction_reply)

        first = await orchestrator.ingest(launch_notes, SourceKind.NOTES)
        second = await orchestrator.ingest("Second sync notes", SourceKind.NOTES)

        assert [m.id for m in await store.list()] == [second.id, first.id]

    @pytest.mark.asyncio
    async def test_same_reply_twice_gets_fresh_ids(
        self, build_orchestrator, launch_notes, extraction_reply
    ):
        orchestrator, _ = build_orchestrator(extraction_reply, extraction_reply)

        a = await orchestrator.ingest(launch_notes, SourceKind.NOTES)
        b = await orchestrator.ingest(launch_notes, SourceKind.NOTES)

        assert a.decisions[0].id != b.decisions[0].id
        assert a.action_items[0].id != b.action_items[0].id

    @pytest.mark.asyncio
    async def test_untitled_when_title_is_blank(
        self, build_orchestrator, launch_notes, extraction_reply
    ):
        extraction_reply["title"] = ""
        orchestrator, _ = build_orchestrator(extraction_reply)

        meeting = await orchestrator.ingest(launch_notes, SourceKind.NOTES)

        assert meeting.title == "Untitled Meeting"


class TestIngestAudio:
    """Audio ingestion."""

    @pytest.mark.asyncio
    async def test_audio_meeting_stores_marker_transcript(
        self, build_orchestrator, extraction_reply
    ):
        orchestrator, router = build_orchestrator(extraction_reply)

        meeting = await orchestrator.ingest(b"ID3\x00audio", SourceKind.AUDIO, "audio/mpeg")

        assert meeting.status == MeetingStatus.COMPLETED
        assert meeting.type == SourceKind.AUDIO
        assert meeting.transcript == AUDIO_TRANSCRIPT_MARKER
        assert meeting.transcript_verbatim is False
        content = router.acompletion.call_args.kwargs["messages"][-1]["content"]
        assert content[0]["type"] == "file"
        assert content[0]["file"]["file_data"].startswith("data:audio/mpeg;base64,")


class TestIngestValidation:
    """Unusable input is rejected before any outbound call or store write."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "content, kind, media_type",
        [
            ("", SourceKind.NOTES, None),
            ("   \n\t ", SourceKind.NOTES, None),
            (b"bytes-as-notes", SourceKind.NOTES, None),
            (b"", SourceKind.AUDIO, "audio/mp3"),
            ("text-as-audio", SourceKind.AUDIO, "audio/mp3"),
            (b"%PDF-1.7", SourceKind.AUDIO, "application/pdf"),
        ],
    )
    async def test_rejected(self, build_orchestrator, store, blob_store, content, kind, media_type):
        orchestrator, router = build_orchestrator()

        with pytest.raises(InvalidInputError):
            await orchestrator.ingest(content, kind, media_type)

        router.acompletion.assert_not_awaited()
        assert await store.list() == []
        assert blob_store.writes == 0

    @pytest.mark.asyncio
    async def test_oversized_notes_rejected(self, build_orchestrator, settings):
        settings.MAX_NOTES_CHARS = 10
        orchestrator, router = build_orchestrator()

        with pytest.raises(InvalidInputError):
            await orchestrator.ingest("x" * 11, SourceKind.NOTES)

        router.acompletion.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_oversized_audio_rejected(self, build_orchestrator, settings):
        settings.MAX_AUDIO_BYTES = 4
        orchestrator, router = build_orchestrator()

        with pytest.raises(InvalidInputError):
            await orchestrator.ingest(b"12345", SourceKind.AUDIO, "audio/mp3")

        router.acompletion.assert_not_awaited()


class TestIngestFailure:
    """Failed extraction still yields a stored ERROR meeting."""

    @pytest.mark.asyncio
    async def test_gateway_failure_returns_error_shell(
        self, build_orchestrator, store, launch_notes
    ):
        orchestrator, _ = build_orchestrator(RuntimeError("503 from provider"))

        meeting = await orchestrator.ingest(launch_notes, SourceKind.NOTES)

        assert meeting.status == MeetingStatus.ERROR
        assert "503 from provider" in meeting.error
        assert meeting.transcript == launch_notes
        assert meeting.summary is None
        assert meeting.decisions == []
        assert meeting.action_items == []
        assert (await store.get(meeting.id)).status == MeetingStatus.ERROR

    @pytest.mark.asyncio
    async def test_malformed_reply_returns_error_shell(
        self, build_orchestrator, launch_notes, extraction_reply
    ):
        extraction_reply["actionItems"][0]["priority"] = "Critical"
        orchestrator, _ = build_orchestrator(extraction_reply)

        meeting = await orchestrator.ingest(launch_notes, SourceKind.NOTES)

        assert meeting.status == MeetingStatus.ERROR
        assert "Malformed" in meeting.error
        assert meeting.action_items == []

    @pytest.mark.asyncio
    async def test_abandoned_ingest_is_stored_as_error(
        self, settings, store, launch_notes, extraction_reply
    ):
        token = CancellationToken()

        async def _reply_after_cancel(**kwargs):
            token.cancel()
            return _reply(json.dumps(extraction_reply))

        orchestrator = _orchestrator_with(
            AsyncMock(side_effect=_reply_after_cancel), settings, store
        )

        meeting = await orchestrator.ingest(launch_notes, SourceKind.NOTES, cancel=token)

        assert meeting.status == MeetingStatus.ERROR
        assert meeting.decisions == []

    @pytest.mark.asyncio
    async def test_task_cancellation_marks_error_and_propagates(
        self, settings, store, launch_notes
    ):
        started = asyncio.Event()

        async def _hang(**kwargs):
            started.set()
            await asyncio.Event().wait()

        orchestrator = _orchestrator_with(AsyncMock(side_effect=_hang), settings, store)

        task = asyncio.create_task(orchestrator.ingest(launch_notes, SourceKind.NOTES))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        [meeting] = await store.list()
        assert meeting.status == MeetingStatus.ERROR


class TestReprocess:
    """Re-running extraction for failed notes meetings."""

    @pytest.mark.asyncio
    async def test_failed_meeting_can_be_reprocessed(
        self, build_orchestrator, store, launch_notes, extraction_reply
    ):
        orchestrator, _ = build_orchestrator(RuntimeError("timeout"), extraction_reply)
        failed = await orchestrator.ingest(launch_notes, SourceKind.NOTES)

        meeting = await orchestrator.reprocess(failed.id)

        assert meeting.id == failed.id
        assert meeting.status == MeetingStatus.COMPLETED
        assert meeting.error is None
        assert len(meeting.decisions) == 1
        assert len(await store.list()) == 1

    @pytest.mark.asyncio
    async def test_meeting_interrupted_by_restart_can_be_reprocessed(
        self, settings, blob_store, launch_notes, extraction_reply
    ):
        shell = await MeetingStore(blob_store).create(
            Meeting(title="Untitled Meeting", type=SourceKind.NOTES, transcript=launch_notes)
        )
        restarted = MeetingStore(blob_store)
        await restarted.load()
        orchestrator = _orchestrator_with(
            AsyncMock(return_value=_reply(json.dumps(extraction_reply))), settings, restarted
        )

        meeting = await orchestrator.reprocess(shell.id)

        assert meeting.id == shell.id
        assert meeting.status == MeetingStatus.COMPLETED
        assert meeting.transcript == launch_notes
        assert (await restarted.get(shell.id)).status == MeetingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_completed_meeting_is_not_reprocessed(
        self, build_orchestrator, launch_notes, extraction_reply
    ):
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply
        )

        with pytest.raises(InvalidInputError):
            await orchestrator.reprocess(meeting.id)

    @pytest.mark.asyncio
    async def test_audio_meeting_is_not_reprocessed(self, build_orchestrator):
        orchestrator, _ = build_orchestrator(RuntimeError("down"))
        failed = await orchestrator.ingest(b"ID3", SourceKind.AUDIO, "audio/mp3")

        with pytest.raises(InvalidInputError):
            await orchestrator.reprocess(failed.id)

    @pytest.mark.asyncio
    async def test_unknown_meeting(self, build_orchestrator):
        orchestrator, _ = build_orchestrator()

        with pytest.raises(MeetingNotFoundError):
            await orchestrator.reprocess("missing")


# ── Derivations ──────────────────────────────────────────────────────────────


class TestDerivePRD:
    """PRD derivation and merge."""

    @pytest.mark.asyncio
    async def test_prd_is_stored_on_meeting(
        self, build_orchestrator, store, launch_notes, extraction_reply, prd_reply
    ):
        orchestrator, router, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply, prd_reply
        )

        prd = await orchestrator.derive_prd(meeting)

        assert prd.problem_statement == prd_reply["problemStatement"]
        stored = await store.get(meeting.id)
        assert stored.prd == prd
        assert stored.decisions == meeting.decisions
        assert router.acompletion.call_args.kwargs["model"] == "reasoning"

    @pytest.mark.asyncio
    async def test_rederivation_replaces_prd_whole(
        self, build_orchestrator, store, launch_notes, extraction_reply, prd_reply
    ):
        second = dict(prd_reply, problemStatement="Revised problem", personas=[])
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply, prd_reply, second
        )

        await orchestrator.derive_prd(meeting)
        await orchestrator.derive_prd(meeting)

        stored = await store.get(meeting.id)
        assert stored.prd.problem_statement == "Revised problem"
        assert stored.prd.personas == []

    @pytest.mark.asyncio
    async def test_malformed_prd_keeps_previous(
        self, build_orchestrator, store, launch_notes, extraction_reply, prd_reply
    ):
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply, prd_reply, "not a PRD"
        )
        first = await orchestrator.derive_prd(meeting)

        with pytest.raises(MalformedArtifactError):
            await orchestrator.derive_prd(meeting)

        assert (await store.get(meeting.id)).prd == first

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_meeting_unchanged(
        self, build_orchestrator, store, blob_store, launch_notes, extraction_reply
    ):
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply, RuntimeError("rate limited")
        )
        writes = blob_store.writes

        with pytest.raises(GatewayUnavailableError):
            await orchestrator.derive_prd(meeting)

        assert await store.get(meeting.id) == meeting
        assert blob_store.writes == writes

    @pytest.mark.asyncio
    async def test_meeting_without_summary_is_invalid(
        self, build_orchestrator, launch_notes
    ):
        orchestrator, router = build_orchestrator(RuntimeError("down"))
        failed = await orchestrator.ingest(launch_notes, SourceKind.NOTES)

        with pytest.raises(InvalidInputError):
            await orchestrator.derive_prd(failed)

        assert router.acompletion.await_count == 1


class TestDeriveRoadmap:
    """Roadmap derivation."""

    @pytest.mark.asyncio
    async def test_epic_order_and_phases_preserved(
        self, build_orchestrator, store, launch_notes, extraction_reply, roadmap_reply
    ):
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply, roadmap_reply
        )

        roadmap = await orchestrator.derive_roadmap(meeting)

        assert [(e.title, e.phase) for e in roadmap.epics] == [
            ("Pricing API", "Now"),
            ("Self-serve billing", "Later"),
        ]
        assert (await store.get(meeting.id)).roadmap == roadmap


class TestDeriveEmail:
    """Stakeholder email is returned, never stored."""

    @pytest.mark.asyncio
    async def test_email_is_not_stored(
        self, build_orchestrator, store, blob_store, launch_notes, extraction_reply
    ):
        orchestrator, router, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply, "Hi team, we launch in Q3."
        )
        writes = blob_store.writes

        email = await orchestrator.derive_email(meeting, EmailTone.TEAM)

        assert email == StakeholderEmail(tone=EmailTone.TEAM, body="Hi team, we launch in Q3.")
        assert blob_store.writes == writes
        prompt = router.acompletion.call_args.kwargs["messages"][-1]["content"]
        assert "Tone: Team" in prompt

    @pytest.mark.asyncio
    async def test_second_tone_leaves_meeting_facts_unchanged(
        self, build_orchestrator, store, launch_notes, extraction_reply
    ):
        orchestrator, router, meeting = await _ingested(
            build_orchestrator,
            launch_notes,
            extraction_reply,
            "Launch is set for Q3; pricing owner is Bob.",
            "We are on track for a Q3 launch.",
        )
        before = await store.get(meeting.id)

        executive = await orchestrator.derive_artifact(
            meeting, ArtifactKind.EMAIL, tone=EmailTone.EXECUTIVE
        )
        investor = await orchestrator.derive_artifact(
            meeting, ArtifactKind.EMAIL, tone=EmailTone.INVESTOR
        )

        assert executive.tone == EmailTone.EXECUTIVE
        assert executive.body == "Launch is set for Q3; pricing owner is Bob."
        assert investor.tone == EmailTone.INVESTOR
        assert investor.body == "We are on track for a Q3 launch."
        after = await store.get(meeting.id)
        assert after.summary == before.summary
        assert after.decisions == before.decisions
        assert after.action_items == before.action_items
        assert router.acompletion.await_count == 3


class TestDeriveArtifact:
    """Dispatch by kind."""

    @pytest.mark.asyncio
    async def test_dispatches_roadmap(
        self, build_orchestrator, launch_notes, extraction_reply, roadmap_reply
    ):
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply, roadmap_reply
        )

        result = await orchestrator.derive_artifact(meeting, ArtifactKind.ROADMAP)

        assert result.strategic_theme == "Ship the Q3 launch"

    @pytest.mark.asyncio
    async def test_email_requires_tone(self, build_orchestrator, launch_notes, extraction_reply):
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply
        )

        with pytest.raises(InvalidInputError):
            await orchestrator.derive_artifact(meeting, ArtifactKind.EMAIL)

    @pytest.mark.asyncio
    async def test_summary_is_not_derivable(
        self, build_orchestrator, launch_notes, extraction_reply
    ):
        orchestrator, _, meeting = await _ingested(
            build_orchestrator, launch_notes, extraction_reply
        )

        with pytest.raises(InvalidInputError):
            await orchestrator.derive_artifact(meeting, ArtifactKind.SUMMARY)


# ── Concurrency ──────────────────────────────────────────────────────────────


class TestConcurrentDerivations:
    """Merges against the latest stored value; same-kind guard; cancellation."""

    @staticmethod
    async def _completed_meeting(store) -> Meeting:
        meeting = Meeting(
            title="Sync",
            type=SourceKind.NOTES,
            transcript="notes",
            summary=MeetingSummary(overview="Overview"),
            status=MeetingStatus.COMPLETED,
        )
        return await store.create(meeting)

    @pytest.mark.asyncio
    async def test_prd_and_roadmap_in_parallel_both_kept(
        self, settings, store, prd_reply, roadmap_reply
    ):
        meeting = await self._completed_meeting(store)
        both_started = asyncio.Barrier(2)

        async def _by_shape(**kwargs):
            await both_started.wait()
            name = kwargs["response_format"]["json_schema"]["name"]
            return _reply(json.dumps(prd_reply if name == "PRD" else roadmap_reply))

        orchestrator = _orchestrator_with(AsyncMock(side_effect=_by_shape), settings, store)

        prd, roadmap = await asyncio.gather(
            orchestrator.derive_prd(meeting),
            orchestrator.derive_roadmap(meeting),
        )

        stored = await store.get(meeting.id)
        assert stored.prd == prd
        assert stored.roadmap == roadmap
        assert orchestrator._merge_locks == {}

    @pytest.mark.asyncio
    async def test_same_kind_in_flight_is_rejected(self, settings, store, prd_reply):
        meeting = await self._completed_meeting(store)
        started = asyncio.Event()
        release = asyncio.Event()

        async def _held(**kwargs):
            started.set()
            await release.wait()
            return _reply(json.dumps(prd_reply))

        orchestrator = _orchestrator_with(AsyncMock(side_effect=_held), settings, store)

        first = asyncio.create_task(orchestrator.derive_prd(meeting))
        await started.wait()

        with pytest.raises(DerivationInProgressError):
            await orchestrator.derive_prd(meeting)

        release.set()
        prd = await first
        assert (await store.get(meeting.id)).prd == prd

    @pytest.mark.asyncio
    async def test_cancelled_token_discards_result(self, settings, store, prd_reply):
        meeting = await self._completed_meeting(store)
        token = CancellationToken()

        async def _cancel_then_reply(**kwargs):
            token.cancel()
            return _reply(json.dumps(prd_reply))

        orchestrator = _orchestrator_with(
            AsyncMock(side_effect=_cancel_then_reply), settings, store
        )

        with pytest.raises(DerivationAbandonedError):
            await orchestrator.derive_prd(meeting, cancel=token)

        assert (await store.get(meeting.id)).prd is None

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self, build_orchestrator, store, prd_reply):
        meeting = await self._completed_meeting(store)
        orchestrator, _ = build_orchestrator(RuntimeError("down"), prd_reply)

        with pytest.raises(GatewayUnavailableError):
            await orchestrator.derive_prd(meeting)

        prd = await orchestrator.derive_prd(meeting)
        assert prd.problem_statement == prd_reply["problemStatement"]

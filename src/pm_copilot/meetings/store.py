"""MeetingStore -- owner of the meeting collection.

Holds every Meeting in memory and persists the entire collection as one
JSON blob on every mutation. A mutation builds the next collection, writes
it, and only then swaps it in, all under one lock: readers never observe a
half-written collection and a failed write leaves the store unchanged.

``update`` is a total replacement of the identified Meeting. The store does
no field-level merging; callers produce the fully merged next value. The
store does guard the record invariants: the transcript never changes after
creation, and summary/PRD/roadmap are never removed once present.

Exports:
    MeetingStore: Collection owner with create/update/get/list.
    MeetingObserver: Callback type notified after each mutation.
"""

from __future__ import annotations

import asyncio
import inspect
import json
from collections.abc import Awaitable, Callable

import structlog

from src.pm_copilot.core.blob_store import BlobStore
from src.pm_copilot.errors import MeetingNotFoundError
from src.pm_copilot.meetings.schemas import Meeting, MeetingStatus

logger = structlog.get_logger(__name__)

MeetingObserver = Callable[[Meeting], Awaitable[None] | None]

_MONOTONIC_FIELDS = ("summary", "prd", "roadmap")

INTERRUPTED_ERROR = "Processing was interrupted"


class MeetingStore:
    """Meeting collection persisted whole through a blob store.

    Meetings are kept newest first.

    Args:
        blob_store: Key-value backend for the serialized collection.
        key: Blob key the collection is stored under.
    """

    def __init__(self, blob_store: BlobStore, key: str = "pm_copilot_meetings") -> None:
        self._blob_store = blob_store
        self._key = key
        self._meetings: list[Meeting] = []
        self._lock = asyncio.Lock()
        self._observers: list[MeetingObserver] = []

    # ── Loading ──────────────────────────────────────────────────────────

    async def load(self) -> int:
        """Load the persisted collection, replacing the in-memory copy.

        A meeting still PROCESSING was cut off by a restart mid-extraction.
        It is rewritten to ERROR (and persisted) so it can be reprocessed.

        Returns:
            Number of meetings loaded.
        """
        async with self._lock:
            raw = await self._blob_store.read(self._key)
            if not raw:
                self._meetings = []
            else:
                loaded = [Meeting.model_validate(m) for m in json.loads(raw)]
                interrupted = [m.id for m in loaded if m.status == MeetingStatus.PROCESSING]
                if interrupted:
                    loaded = [
                        m.model_copy(
                            update={
                                "status": MeetingStatus.ERROR,
                                "error": INTERRUPTED_ERROR,
                            }
                        )
                        if m.status == MeetingStatus.PROCESSING
                        else m
                        for m in loaded
                    ]
                    await self._persist(loaded)
                    logger.warning(
                        "meeting_store.interrupted_meetings",
                        meeting_ids=interrupted,
                    )
                self._meetings = loaded
        logger.info("meeting_store.loaded", count=len(self._meetings), key=self._key)
        return len(self._meetings)

    # ── Reads ────────────────────────────────────────────────────────────

    async def get(self, meeting_id: str) -> Meeting | None:
        for meeting in self._meetings:
            if meeting.id == meeting_id:
                return meeting
        return None

    async def require(self, meeting_id: str) -> Meeting:
        """Get a meeting or raise MeetingNotFoundError."""
        meeting = await self.get(meeting_id)
        if meeting is None:
            raise MeetingNotFoundError(meeting_id)
        return meeting

    async def list(self) -> list[Meeting]:
        return list(self._meetings)

    # ── Mutations ────────────────────────────────────────────────────────

    async def create(self, meeting: Meeting) -> Meeting:
        """Insert a new meeting at the head of the collection.

        Raises:
            ValueError: If a meeting with the same id already exists.
        """
        async with self._lock:
            if any(m.id == meeting.id for m in self._meetings):
                raise ValueError(f"Meeting already exists: {meeting.id}")
            await self._persist([meeting, *self._meetings])

        logger.info("meeting_store.created", meeting_id=meeting.id, status=meeting.status.value)
        await self._notify(meeting)
        return meeting

    async def update(self, meeting: Meeting) -> Meeting:
        """Replace the stored meeting with the same id, keeping its position.

        Applying the same value twice leaves the collection identical.

        Raises:
            MeetingNotFoundError: If no meeting has this id.
            ValueError: If the new value changes the transcript or removes
                a derived artifact.
        """
        async with self._lock:
            index = next(
                (i for i, m in enumerate(self._meetings) if m.id == meeting.id),
                None,
            )
            if index is None:
                raise MeetingNotFoundError(meeting.id)
            _check_transition(self._meetings[index], meeting)

            next_meetings = list(self._meetings)
            next_meetings[index] = meeting
            await self._persist(next_meetings)

        logger.info("meeting_store.updated", meeting_id=meeting.id, status=meeting.status.value)
        await self._notify(meeting)
        return meeting

    # ── Observers ────────────────────────────────────────────────────────

    def subscribe(self, observer: MeetingObserver) -> Callable[[], None]:
        """Register a callback for created/updated meetings.

        Returns:
            A function that removes the observer.
        """
        self._observers.append(observer)
        return lambda: self._observers.remove(observer)

    # ── Internals ────────────────────────────────────────────────────────

    async def _persist(self, meetings: list[Meeting]) -> None:
        """Write the whole collection, then swap it in. Caller holds the lock."""
        payload = json.dumps(
            [m.model_dump(mode="json", by_alias=True) for m in meetings],
            ensure_ascii=False,
        )
        await self._blob_store.write(self._key, payload)
        self._meetings = meetings

    async def _notify(self, meeting: Meeting) -> None:
        for observer in list(self._observers):
            try:
                result = observer(meeting)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.warning(
                    "meeting_store.observer_failed",
                    meeting_id=meeting.id,
                    exc_info=True,
                )


def _check_transition(current: Meeting, new: Meeting) -> None:
    """Reject values that break the Meeting record invariants."""
    if new.transcript != current.transcript:
        raise ValueError(f"Transcript of meeting {current.id} is immutable")
    for field_name in _MONOTONIC_FIELDS:
        if getattr(current, field_name) is not None and getattr(new, field_name) is None:
            raise ValueError(
                f"Cannot remove {field_name} from meeting {current.id}"
            )

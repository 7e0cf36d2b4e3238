"""In-process note backend with live subscriptions.

``NoteRepository`` holds every user's notes and pushes a fresh snapshot to
each watcher whenever a note it can see changes.  ``LocalStore`` binds a
repository to one identity and satisfies the ``RemoteStore`` contract, so
the sync core can run against it without a network.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import aclosing
from dataclasses import replace
from typing import Callable

from .models import Note, sort_notes
from .store import NoteNotFoundError, UnauthenticatedError, UnauthorizedError

log = logging.getLogger(__name__)


def _epoch_millis() -> float:
    return float(int(time.time() * 1000))


class NoteRepository:
    """All notes, keyed by id, with per-user and per-note watchers."""

    def __init__(self, clock: Callable[[], float] = _epoch_millis) -> None:
        self._clock = clock
        self._notes: dict[str, Note] = {}
        self._list_watchers: dict[str, set[asyncio.Queue[list[Note]]]] = defaultdict(set)
        self._note_watchers: dict[str, set[asyncio.Queue[Note | None]]] = defaultdict(set)

    # ── Queries ─────────────────────────────────────────────────────

    def list_for(self, user_id: str) -> list[Note]:
        return sort_notes(n for n in self._notes.values() if n.user_id == user_id)

    def get(self, user_id: str, note_id: str) -> Note | None:
        note = self._notes.get(note_id)
        if note is None:
            return None
        if note.user_id != user_id:
            raise UnauthorizedError("Unauthorized")
        return note

    # ── Mutations ───────────────────────────────────────────────────

    def create(self, user_id: str, content: str = "") -> str:
        now = self._clock()
        note = Note(
            id=uuid.uuid4().hex,
            content=content,
            created_time=now,
            updated_time=now,
            user_id=user_id,
        )
        self._notes[note.id] = note
        log.debug("created note %s for %s", note.id, user_id)
        self._publish(user_id, note.id)
        return note.id

    def update(self, user_id: str, note_id: str, content: str) -> None:
        note = self._owned(user_id, note_id)
        updated = max(self._clock(), note.updated_time)
        self._notes[note_id] = replace(note, content=content, updated_time=updated)
        self._publish(user_id, note_id)

    def delete(self, user_id: str, note_id: str) -> None:
        self._owned(user_id, note_id)
        del self._notes[note_id]
        log.debug("deleted note %s", note_id)
        self._publish(user_id, note_id)

    def _owned(self, user_id: str, note_id: str) -> Note:
        note = self._notes.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        if note.user_id != user_id:
            raise UnauthorizedError("Unauthorized")
        return note

    # ── Subscriptions ───────────────────────────────────────────────

    def _publish(self, user_id: str, note_id: str) -> None:
        if self._list_watchers.get(user_id):
            snapshot = self.list_for(user_id)
            for queue in self._list_watchers[user_id]:
                queue.put_nowait(snapshot)
        for queue in self._note_watchers.get(note_id, ()):
            queue.put_nowait(self._notes.get(note_id))

    async def watch_list(self, user_id: str) -> AsyncIterator[list[Note]]:
        queue: asyncio.Queue[list[Note]] = asyncio.Queue()
        self._list_watchers[user_id].add(queue)
        try:
            yield self.list_for(user_id)
            while True:
                yield await queue.get()
        finally:
            self._list_watchers[user_id].discard(queue)
            if not self._list_watchers[user_id]:
                del self._list_watchers[user_id]

    async def watch_note(self, user_id: str, note_id: str) -> AsyncIterator[Note | None]:
        queue: asyncio.Queue[Note | None] = asyncio.Queue()
        self._note_watchers[note_id].add(queue)
        try:
            yield self.get(user_id, note_id)
            while True:
                yield await queue.get()
        finally:
            self._note_watchers[note_id].discard(queue)
            if not self._note_watchers[note_id]:
                del self._note_watchers[note_id]


class LocalStore:
    """``RemoteStore`` view of a repository for a single identity."""

    def __init__(self, repo: NoteRepository, user_id: str | None) -> None:
        self.repo = repo
        self.user_id = user_id

    def _require_user(self) -> str:
        if not self.user_id:
            raise UnauthenticatedError("Unauthenticated")
        return self.user_id

    async def subscribe_list(self) -> AsyncIterator[list[Note]]:
        async with aclosing(self.repo.watch_list(self._require_user())) as stream:
            async for notes in stream:
                yield notes

    async def subscribe_one(self, note_id: str) -> AsyncIterator[Note | None]:
        async with aclosing(self.repo.watch_note(self._require_user(), note_id)) as stream:
            async for note in stream:
                yield note

    async def create(self, content: str = "") -> str:
        return self.repo.create(self._require_user(), content)

    async def update(self, note_id: str, content: str) -> None:
        self.repo.update(self._require_user(), note_id, content)

    async def delete(self, note_id: str) -> None:
        self.repo.delete(self._require_user(), note_id)

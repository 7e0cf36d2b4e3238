"""Note list lifecycle: sorted view, new-note navigation, first-note creation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from enum import Enum
from typing import Callable

from .models import ListSnapshot, Note, filter_notes, sort_notes
from .settings import SyncTimings
from .store import RemoteStore
from .subscriptions import Degraded

log = logging.getLogger(__name__)


class ListEvent(Enum):
    NONE = "none"
    CREATED = "created"          # a note we asked for has shown up
    AUTO_CREATE = "auto_create"  # list stayed empty, first note requested


class ListLifecycleController:
    """Consume the list subscription and drive note creation.

    A fresh subscription can emit a transient empty list before the real
    one arrives, so an empty list only triggers auto-creation once
    ``timings.auto_create_after`` snapshots have been seen.  This narrows
    the duplicate-note race; it does not close it.
    """

    def __init__(
        self,
        store: RemoteStore,
        *,
        on_created: Callable[[str], None] | None = None,
        on_error: Callable[[str], None] | None = None,
        on_update: Callable[[ListEvent], None] | None = None,
        timings: SyncTimings | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._on_created = on_created
        self._on_error = on_error
        self._on_update = on_update
        self._timings = timings or SyncTimings()
        self._log = logger or log
        self.snapshot = ListSnapshot()
        self.creating = False
        self._background: set[asyncio.Task[object]] = set()

    @property
    def notes(self) -> list[Note]:
        return self.snapshot.notes

    @property
    def update_count(self) -> int:
        return self.snapshot.update_count

    def reset(self) -> None:
        """Restart the snapshot counter; call before re-subscribing.

        A create still waiting to show up keeps its flag, and the last list
        stays as the baseline its arrival is measured against.
        """
        if self.creating:
            self.snapshot.update_count = 0
        else:
            self.snapshot = ListSnapshot()

    # ── Snapshot handling ────────────────────────────────────────────

    def apply(self, notes: list[Note]) -> tuple[ListEvent, str | None]:
        """Fold one list snapshot into local state and classify it."""
        previous_count = len(self.snapshot.notes)
        self.snapshot.notes = sort_notes(notes)
        self.snapshot.update_count += 1

        if self.creating and len(self.snapshot.notes) > previous_count:
            self.creating = False
            return ListEvent.CREATED, self.snapshot.notes[0].id
        if (
            self.snapshot.update_count >= self._timings.auto_create_after
            and not self.snapshot.notes
            and not self.creating
        ):
            self.creating = True
            return ListEvent.AUTO_CREATE, None
        return ListEvent.NONE, None

    def handle(self, notes: list[Note]) -> ListEvent:
        event, note_id = self.apply(notes)
        if event is ListEvent.CREATED:
            self._log.info("new note %s appeared in list", note_id)
            if self._on_created is not None and note_id is not None:
                self._on_created(note_id)
        elif event is ListEvent.AUTO_CREATE:
            self._log.info(
                "no notes after %d updates, creating first note",
                self.snapshot.update_count,
            )
            self.request_create()
        if self._on_update is not None:
            self._on_update(event)
        return event

    async def run(self, stream: AsyncIterable[list[Note]]) -> None:
        """Consume list snapshots until the stream ends.

        If the stream fails, the observed list becomes empty and listeners
        are told so.  The failure does not count as a snapshot, so it can't
        trigger auto-creation.
        """
        snapshots = Degraded(stream, label="note list", logger=self._log)
        try:
            async for notes in snapshots:
                self.handle(notes)
        finally:
            await snapshots.aclose()
        if snapshots.failed:
            self.snapshot.notes = []
            if self._on_update is not None:
                self._on_update(ListEvent.NONE)

    # ── Mutations ────────────────────────────────────────────────────

    async def create_note(self, content: str = "") -> str | None:
        """Create a note; the list subscription announces it when it lands."""
        self.creating = True
        try:
            note_id = await self._store.create(content)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.creating = False
            self._log.error("error creating note: %s", exc)
            self._report(f"Error creating note: {exc}")
            return None
        self._log.debug("created note %s", note_id)
        return note_id

    def request_create(self, content: str = "") -> asyncio.Task[object]:
        """Start a create in the background, marking it in flight right away."""
        self.creating = True
        return self._spawn(self.create_note(content))

    async def delete_note(self, note_id: str) -> bool:
        try:
            await self._store.delete(note_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log.error("error deleting note %s: %s", note_id, exc)
            self._report(f"Error deleting note: {exc}")
            return False
        return True

    # ── Queries over the local view ──────────────────────────────────

    def find(self, note_id: str) -> Note | None:
        for note in self.snapshot.notes:
            if note.id == note_id:
                return note
        return None

    def successor_for(self, note_id: str) -> Note | None:
        """Most recently updated note other than *note_id*."""
        for note in self.snapshot.notes:
            if note.id != note_id:
                return note
        return None

    def neighbor_of(self, note_id: str) -> Note | None:
        """The note after *note_id* in list order, else the one before."""
        ids = [n.id for n in self.snapshot.notes]
        try:
            index = ids.index(note_id)
        except ValueError:
            return None
        if index < len(ids) - 1:
            return self.snapshot.notes[index + 1]
        if index > 0:
            return self.snapshot.notes[index - 1]
        return None

    def search(self, query: str) -> list[Note]:
        return filter_notes(self.snapshot.notes, query)

    # ── Background work ──────────────────────────────────────────────

    def _report(self, message: str) -> None:
        if self._on_error is not None:
            self._on_error(message)

    def _spawn(self, coro) -> asyncio.Task[object]:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

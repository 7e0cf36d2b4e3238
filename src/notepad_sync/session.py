"""One view's worth of sync state: list, current note, writer, auth.

``NotesSession`` is the single place where the list controller, the
per-note reconciliation engine and the debounced writer are wired
together.  A UI subclasses ``SessionView`` to follow along (show
content, move the selection, announce new notes, surface errors) and
feeds keystrokes back through ``NotesSession.edit``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from .auth import AuthState
from .lifecycle import ListEvent, ListLifecycleController
from .models import Note
from .reconcile import ReconciliationEngine
from .settings import SyncTimings
from .store import RemoteStore
from .subscriptions import SubscriptionTable
from .writer import DebouncedWriter

log = logging.getLogger(__name__)

LIST_KEY = "list"
NOTE_KEY = "note"


class SessionView:
    """Callbacks from a session into its UI.  Override what you need."""

    def show_content(self, note_id: str, content: str) -> None:
        """Remote content replaced the buffer of *note_id*."""

    def note_selected(self, note_id: str | None) -> None:
        """The current note changed (None: nothing selected)."""

    def note_created(self, note_id: str) -> None:
        """A note this session asked for has appeared."""

    def notes_changed(self, notes: list[Note]) -> None:
        """A new sorted list snapshot arrived."""

    def report_error(self, message: str) -> None:
        """A user-initiated create or delete failed."""


class NotesSession:
    """Drive the list subscription and the current note's reconciliation.

    Usage:
        session = NotesSession(store, view, auth=auth)
        session.start()
        session.edit("new text")        # on every buffer change
        await session.close()           # flushes unsaved edits
    """

    def __init__(
        self,
        store: RemoteStore,
        view: SessionView | None = None,
        *,
        auth: AuthState | None = None,
        timings: SyncTimings | None = None,
        auto_select: bool = True,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.store = store
        self.view = view or SessionView()
        self.timings = timings or SyncTimings()
        self.auto_select = auto_select
        self._auth = auth
        self._clock = clock
        self._log = logger or log
        self.writer = DebouncedWriter(
            store.update, delay=self.timings.save_delay, logger=self._log,
        )
        self.lists = ListLifecycleController(
            store,
            on_created=self._on_created,
            on_error=self.view.report_error,
            on_update=self._on_list_update,
            timings=self.timings,
            logger=self._log,
        )
        self.engine: ReconciliationEngine | None = None
        self.current_id: str | None = None
        self._deleting: str | None = None
        self._subs = SubscriptionTable(logger=self._log)
        if auth is not None:
            auth.add_listener(self._on_auth_changed)

    @property
    def content(self) -> str:
        return self.engine.content if self.engine is not None else ""

    @property
    def notes(self) -> list[Note]:
        return self.lists.notes

    # ── Lifecycle ────────────────────────────────────────────────────

    def start(self) -> None:
        """(Re)start the list subscription with fresh counters."""
        self.lists.reset()
        self._subs.replace(LIST_KEY, self.lists.run(self.store.subscribe_list()))

    def restart(self) -> None:
        """Restart every subscription, keeping the current selection."""
        current = self.current_id
        self._release_engine()
        self.current_id = None
        self.start()
        if current is not None:
            self._open(current)
            self.current_id = current

    async def close(self) -> None:
        """Flush unsaved edits and stop everything."""
        if self._auth is not None:
            self._auth.remove_listener(self._on_auth_changed)
        if self.engine is not None:
            self.engine.flush()
        await self._subs.close()
        await self.lists.close()
        await self.writer.close()

    # ── Selection ────────────────────────────────────────────────────

    def select_note(self, note_id: str | None) -> None:
        """Make *note_id* the current note.

        Unsaved edits of the previous note are written first and its
        consumer is cancelled before the new one starts.
        """
        if note_id == self.current_id and (note_id is None or self.engine is not None):
            return
        self._release_engine()
        self.current_id = note_id
        if note_id is not None:
            self._open(note_id)
        self.view.note_selected(note_id)

    def _open(self, note_id: str) -> None:
        engine = ReconciliationEngine(
            note_id,
            self.writer,
            on_replace=self.view.show_content,
            on_deleted=self._on_note_deleted,
            timings=self.timings,
            clock=self._clock,
            logger=self._log,
        )
        self.engine = engine
        self._subs.replace(NOTE_KEY, engine.run(self.store.subscribe_one(note_id)))

    def _release_engine(self, flush: bool = True) -> None:
        if self.engine is not None and flush:
            self.engine.flush()
        self.engine = None
        self._subs.cancel(NOTE_KEY)

    # ── Editing ──────────────────────────────────────────────────────

    def edit(self, content: str) -> bool:
        """Feed the current buffer content after a local change."""
        if self.engine is None:
            return False
        return self.engine.edit(content)

    async def create_note(self, content: str = "") -> str | None:
        return await self.lists.create_note(content)

    async def duplicate_note(self) -> str | None:
        """Create a new note holding the current note's content."""
        return await self.lists.create_note(self.content)

    async def delete_note(self, note_id: str | None = None) -> bool:
        """Delete *note_id* (default: the current note).

        Once the store confirms, the selection moves from a deleted current
        note to the next note in list order, or the previous one if it was
        last.  A failed delete leaves the selection and unsaved edits alone.
        """
        note_id = note_id or self.current_id
        if note_id is None:
            return False
        if note_id != self.current_id:
            return await self.lists.delete_note(note_id)

        neighbor = self.lists.neighbor_of(note_id)
        self._deleting = note_id
        try:
            deleted = await self.lists.delete_note(note_id)
        finally:
            self._deleting = None
        if not deleted:
            return False
        if self.current_id == note_id:
            self.writer.discard(note_id)
            self._release_engine(flush=False)
            self.current_id = None
            if neighbor is not None:
                self.select_note(neighbor.id)
            else:
                self.view.note_selected(None)
        return True

    def search(self, query: str) -> list[Note]:
        return self.lists.search(query)

    # ── Callbacks ────────────────────────────────────────────────────

    def _on_list_update(self, event: ListEvent) -> None:
        self.view.notes_changed(self.lists.notes)
        if (
            event is ListEvent.NONE
            and self.auto_select
            and self.current_id is None
            and self.lists.notes
        ):
            self.select_note(self.lists.notes[0].id)

    def _on_created(self, note_id: str) -> None:
        self.view.note_created(note_id)
        self.select_note(note_id)

    def _on_note_deleted(self, note_id: str) -> None:
        # Runs inside the note's own consumer; switch once it has unwound.
        asyncio.get_running_loop().call_soon(self._replace_deleted, note_id)

    def _replace_deleted(self, note_id: str) -> None:
        if self.current_id != note_id or self._deleting == note_id:
            return
        self.writer.discard(note_id)
        successor = self.lists.successor_for(note_id)
        if successor is not None:
            self._log.info("switching to note %s", successor.id)
            self.select_note(successor.id)
            return
        self._log.info("no notes available, creating new note")
        self.select_note(None)
        if not self.lists.creating:
            self.lists.request_create()

    def _on_auth_changed(self, version: int) -> None:
        self._log.info("restarting subscriptions (auth version %d)", version)
        self.restart()

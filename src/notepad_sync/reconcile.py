"""Reconcile a live single-note subscription with local, unsaved edits.

One ``ReconciliationEngine`` exists per open note identity.  Each remote
snapshot either replaces the local buffer, is ignored, or ends the engine
because the note was deleted:

- the first snapshot is always adopted verbatim;
- a snapshot equal to the buffer is a no-op;
- while the user is actively typing (last keystroke within the typing
  window) later snapshots are ignored;
- otherwise the remote content wins, and outgoing saves are suppressed
  for a short quiesce window so writing it into the buffer is not echoed
  back to the store as a local edit;
- ``None`` means the note is gone: the engine becomes terminal and the
  owner picks a successor.  A stream that fails reads as ``None`` too,
  after unsaved edits have been written out.

This is last-writer-wins on the whole content, not a merge.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterable
from enum import Enum
from typing import Callable

from .models import EditSession, Note
from .settings import SyncTimings
from .subscriptions import Degraded
from .writer import DebouncedWriter

log = logging.getLogger(__name__)

ReplaceFn = Callable[[str, str], None]
DeletedFn = Callable[[str], None]


class Phase(Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    DELETED = "deleted"


class Decision(Enum):
    """What the engine did with one snapshot."""

    LOADED = "loaded"          # first snapshot, adopted
    ADOPTED = "adopted"        # remote content replaced the buffer
    UNCHANGED = "unchanged"    # remote content equals the buffer
    IGNORED = "ignored"        # user is typing
    DELETED = "deleted"        # note removed remotely
    STALE = "stale"            # snapshot for another identity, or engine is done


class ReconciliationEngine:
    """Per-note state machine between a snapshot stream and an edit buffer.

    Args:
        note_id: Identity this engine reconciles.  Fixed for its lifetime.
        writer: Debounced writer that persists local edits.
        on_replace: Called with ``(note_id, content)`` whenever remote
            content is written into the buffer; the view mirrors it.
        on_deleted: Called with ``note_id`` once the note is gone.
        timings: Typing window and quiesce delay.
        clock: Monotonic seconds, injectable for tests.
    """

    def __init__(
        self,
        note_id: str,
        writer: DebouncedWriter,
        *,
        on_replace: ReplaceFn | None = None,
        on_deleted: DeletedFn | None = None,
        timings: SyncTimings | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.note_id = note_id
        self.session = EditSession()
        self.phase = Phase.UNINITIALIZED
        self.detached = False
        self._writer = writer
        self._on_replace = on_replace
        self._on_deleted = on_deleted
        self._timings = timings or SyncTimings()
        self._clock = clock
        self._log = logger or log

    @property
    def content(self) -> str:
        return self.session.content

    @property
    def initialized(self) -> bool:
        return self.phase is Phase.INITIALIZED

    @property
    def deleted(self) -> bool:
        return self.phase is Phase.DELETED

    def is_actively_typing(self, now: float | None = None) -> bool:
        last = self.session.last_edit_at
        if last is None:
            return False
        now = self._clock() if now is None else now
        return now - last < self._timings.typing_window

    # ── Remote side ──────────────────────────────────────────────────

    def decide(self, snapshot: Note | None, now: float | None = None) -> Decision:
        """Classify *snapshot* without touching any state."""
        if self.phase is Phase.DELETED:
            return Decision.STALE
        if snapshot is None:
            return Decision.DELETED
        if snapshot.id != self.note_id:
            return Decision.STALE
        if self.phase is Phase.UNINITIALIZED:
            return Decision.LOADED
        if snapshot.content == self.session.content:
            return Decision.UNCHANGED
        if self.is_actively_typing(now):
            return Decision.IGNORED
        return Decision.ADOPTED

    def apply(self, snapshot: Note | None, now: float | None = None) -> Decision:
        """Apply *snapshot* to the buffer and state machine.

        When content is written into the buffer, outgoing saves stay
        suppressed until ``end_quiesce()``.
        """
        decision = self.decide(snapshot, now)
        if decision is Decision.DELETED:
            self.phase = Phase.DELETED
            self.session.suppress_writes = True
            self._log.info("note %s was deleted remotely", self.note_id)
        elif decision in (Decision.LOADED, Decision.ADOPTED):
            assert snapshot is not None
            changed = snapshot.content != self.session.content
            self.phase = Phase.INITIALIZED
            self.session.initialized = True
            if changed:
                self.session.suppress_writes = True
                self.session.content = snapshot.content
            self._log.debug(
                "note %s %s remote content (%d chars)",
                self.note_id, decision.value, len(snapshot.content),
            )
        elif decision is Decision.IGNORED:
            self._log.debug("note %s: skipping remote update while typing", self.note_id)
        return decision

    def end_quiesce(self) -> None:
        if self.phase is not Phase.DELETED:
            self.session.suppress_writes = False

    async def reconcile(self, snapshot: Note | None) -> Decision:
        """Apply one snapshot and notify the owner of its effect."""
        decision = self.apply(snapshot)
        if decision is Decision.DELETED:
            if self._on_deleted is not None:
                self._on_deleted(self.note_id)
        elif decision in (Decision.LOADED, Decision.ADOPTED) and self.session.suppress_writes:
            # Buffer was just overwritten by remote content.
            try:
                if self._on_replace is not None:
                    self._on_replace(self.note_id, self.session.content)
                await asyncio.sleep(self._timings.quiesce_delay)
            finally:
                self.end_quiesce()
        return decision

    async def run(self, stream: AsyncIterable[Note | None]) -> Decision | None:
        """Consume *stream* until the note is deleted or the stream ends.

        A failing stream is logged, not raised.  The engine writes out any
        pending edit, marks itself ``detached`` and then handles the failure
        as the snapshot ``None``.
        """
        snapshots = Degraded(stream, label=f"note {self.note_id}", logger=self._log)
        last: Decision | None = None
        try:
            async for snapshot in snapshots:
                last = await self.reconcile(snapshot)
                if last is Decision.DELETED:
                    break
        finally:
            await snapshots.aclose()
        if snapshots.failed and self.phase is not Phase.DELETED:
            self.detached = True
            self.flush()
            self._log.info("note %s is unavailable, treating as deleted", self.note_id)
            last = await self.reconcile(None)
        return last

    # ── Local side ───────────────────────────────────────────────────

    def edit(self, content: str) -> bool:
        """Record a local change to the buffer.

        Returns True if a debounced save was scheduled.  Changes that come
        from applying remote content (before the first snapshot or during
        the quiesce window) only update the buffer.
        """
        if self.phase is Phase.DELETED:
            self._log.debug("note %s is deleted, dropping edit", self.note_id)
            return False
        if content == self.session.content:
            return False
        self.session.content = content
        if not self.session.initialized or self.session.suppress_writes:
            return False
        self.session.last_edit_at = self._clock()
        self._writer.schedule_save(self.note_id, content)
        return True

    def flush(self) -> asyncio.Task[None] | None:
        """Write unsaved edits now; returns the write task if one was needed."""
        if self.phase is Phase.DELETED or not self._writer.has_pending(self.note_id):
            return None
        return self._writer.save_immediately(self.note_id, self.session.content)

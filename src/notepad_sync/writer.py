"""Debounced persistence of local edits.

Rapid keystrokes for a note collapse into a single trailing write.  Only
the latest content matters under last-writer-wins, so superseded content
is dropped rather than queued, and a failed write is logged and left for
the next edit to retry.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

log = logging.getLogger(__name__)

DEFAULT_SAVE_DELAY = 0.5

SaveFn = Callable[[str, str], Awaitable[None]]


@dataclass
class PendingSave:
    note_id: str
    content: str
    handle: asyncio.TimerHandle


class DebouncedWriter:
    """Coalesce ``schedule_save`` calls into at most one write per delay.

    Usage:
        writer = DebouncedWriter(store.update)
        writer.schedule_save(note_id, text)       # on every keystroke
        await writer.save_immediately(note_id, text)  # before teardown
        await writer.close()
    """

    def __init__(
        self,
        save: SaveFn,
        delay: float = DEFAULT_SAVE_DELAY,
        logger: logging.Logger | None = None,
    ) -> None:
        self._save = save
        self.delay = delay
        self._log = logger or log
        self._pending: PendingSave | None = None
        self._in_flight: set[asyncio.Task[None]] = set()
        self._closed = False

    @property
    def pending(self) -> PendingSave | None:
        return self._pending

    def has_pending(self, note_id: str | None = None) -> bool:
        if self._pending is None:
            return False
        return note_id is None or self._pending.note_id == note_id

    def schedule_save(self, note_id: str, content: str) -> None:
        """Restart the timer with *content* as the write to perform."""
        if self._closed:
            self._log.warning("writer closed, dropping save for %s", note_id)
            return
        previous = self._take_pending()
        if previous is not None and previous.note_id != note_id:
            # One timer for all notes: don't let another note's edit
            # silently discard this one.
            self._dispatch(previous.note_id, previous.content)
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.delay, self._fire)
        self._pending = PendingSave(note_id, content, handle)

    def save_immediately(self, note_id: str, content: str) -> asyncio.Task[None]:
        """Write now, superseding any pending write for *note_id*."""
        if self.has_pending(note_id):
            self._take_pending()
        return self._dispatch(note_id, content)

    def discard(self, note_id: str) -> bool:
        """Drop the pending write for *note_id* without performing it."""
        if not self.has_pending(note_id):
            return False
        self._take_pending()
        return True

    async def flush(self) -> None:
        """Dispatch the pending write, if any, and wait for all writes."""
        pending = self._take_pending()
        if pending is not None:
            self._dispatch(pending.note_id, pending.content)
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)

    async def close(self) -> None:
        await self.flush()
        self._closed = True

    # ── internals ────────────────────────────────────────────────────

    def _take_pending(self) -> PendingSave | None:
        pending, self._pending = self._pending, None
        if pending is not None:
            pending.handle.cancel()
        return pending

    def _fire(self) -> None:
        pending, self._pending = self._pending, None
        if pending is not None:
            self._dispatch(pending.note_id, pending.content)

    def _dispatch(self, note_id: str, content: str) -> asyncio.Task[None]:
        task = asyncio.create_task(self._write(note_id, content), name=f"save-{note_id}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _write(self, note_id: str, content: str) -> None:
        try:
            await self._save(note_id, content)
            self._log.debug("saved note %s (%d chars)", note_id, len(content))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log.error("error saving note %s: %s", note_id, exc)

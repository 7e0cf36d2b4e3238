"""Note records and the client-local state derived from them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable

UNTITLED = "Untitled Note"


@dataclass(frozen=True)
class Note:
    """Immutable snapshot of a note as the store last reported it.

    Times are epoch milliseconds.  ``id`` and ``user_id`` never change
    after creation; ``updated_time`` is written only by the store.
    """

    id: str
    content: str
    created_time: float
    updated_time: float
    user_id: str

    @property
    def title(self) -> str:
        """First line of the trimmed content, or a placeholder."""
        trimmed = self.content.strip()
        if not trimmed:
            return UNTITLED
        first_line = trimmed.splitlines()[0]
        return first_line or UNTITLED

    @property
    def updated_at(self) -> datetime:
        return datetime.fromtimestamp(self.updated_time / 1000, tz=timezone.utc)

    # ── Wire conversion ─────────────────────────────────────────────

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Note:
        """Build a note from the store's camelCase record."""
        return cls(
            id=str(data.get("_id", data.get("id"))),
            content=data.get("content", ""),
            created_time=float(data["createdTime"]),
            updated_time=float(data["updatedTime"]),
            user_id=data["userId"],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "_id": self.id,
            "content": self.content,
            "createdTime": self.created_time,
            "updatedTime": self.updated_time,
            "userId": self.user_id,
        }


def sort_notes(notes: Iterable[Note]) -> list[Note]:
    """Most recently updated first; ties keep their source order."""
    return sorted(notes, key=lambda n: n.updated_time, reverse=True)


def filter_notes(notes: Iterable[Note], query: str) -> list[Note]:
    """Case-insensitive match on title or content.  Empty query keeps all."""
    if not query:
        return list(notes)
    needle = query.casefold()
    return [
        n for n in notes
        if needle in n.title.casefold() or needle in n.content.casefold()
    ]


@dataclass
class EditSession:
    """Local editing state for the note currently open in a view."""

    content: str = ""
    last_edit_at: float | None = None
    suppress_writes: bool = False
    initialized: bool = False


@dataclass
class ListSnapshot:
    """Latest sorted list plus the count of snapshots since (re)subscribe."""

    notes: list[Note] = field(default_factory=list)
    update_count: int = 0

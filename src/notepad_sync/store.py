"""The remote store contract the sync core consumes, and its errors."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol

from .models import Note

# Query and mutation names as the backend knows them.
QUERY_LIST = "notes:list"
QUERY_GET = "notes:get"
MUTATION_CREATE = "notes:create"
MUTATION_UPDATE = "notes:update"
MUTATION_DELETE = "notes:delete"


class StoreError(RuntimeError):
    """A store operation failed."""


class NoteNotFoundError(StoreError):
    def __init__(self, note_id: str) -> None:
        super().__init__(f"note not found: {note_id}")
        self.note_id = note_id


class UnauthorizedError(StoreError):
    """The note exists but belongs to another user."""


class UnauthenticatedError(StoreError):
    """No identity is attached to the request."""


# Error codes used on the wire, so clients can rebuild the right exception.
ERROR_CODES: dict[str, type[StoreError]] = {
    "not_found": NoteNotFoundError,
    "unauthorized": UnauthorizedError,
    "unauthenticated": UnauthenticatedError,
}


def error_code(exc: Exception) -> str:
    for code, cls in ERROR_CODES.items():
        if isinstance(exc, cls):
            return code
    return "error"


def error_from_code(code: str | None, message: str, note_id: str = "") -> StoreError:
    cls = ERROR_CODES.get(code or "")
    if cls is NoteNotFoundError:
        return NoteNotFoundError(note_id)
    if cls is None:
        return StoreError(message)
    return cls(message)


class RemoteStore(Protocol):
    """Reactive note store scoped to the authenticated user.

    Subscriptions yield the current value immediately and then every
    subsequent change, until the consumer stops iterating.
    """

    def subscribe_list(self) -> AsyncIterator[list[Note]]: ...

    def subscribe_one(self, note_id: str) -> AsyncIterator[Note | None]: ...

    async def create(self, content: str = "") -> str: ...

    async def update(self, note_id: str, content: str) -> None: ...

    async def delete(self, note_id: str) -> None: ...

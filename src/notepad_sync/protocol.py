"""Wire protocol between ``StoreClient`` and ``NoteServer``.

Every websocket frame holds one JSON object:

    {"type": "query.subscribe", "id": "9f2c...", "payload": {...}}

Requests get a fresh ``id``.  Replies, pushed query updates and errors
carry the id of the request they answer in ``reply_to``.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from typing import Any

# ── Message types ───────────────────────────────────────────────────

# Auth
MSG_AUTHENTICATE = "auth.authenticate"
MSG_AUTH_OK = "auth.ok"

# Live queries
MSG_SUBSCRIBE = "query.subscribe"
MSG_UNSUBSCRIBE = "query.unsubscribe"
MSG_QUERY_UPDATE = "query.update"
MSG_QUERY_ERROR = "query.error"

# Mutations
MSG_MUTATION = "mutation"
MSG_MUTATION_RESULT = "mutation.result"
MSG_MUTATION_ERROR = "mutation.error"

MSG_ERROR = "error"


class ProtocolError(ValueError):
    """A frame is not a valid message."""


def _new_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class Message:
    type: str
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=_new_id)
    reply_to: str | None = None

    def answer(self, type: str, payload: dict[str, Any] | None = None) -> Message:
        """A message of *type* answering this one."""
        return Message(type, payload or {}, reply_to=self.id)


def encode_message(msg: Message) -> str:
    data: dict[str, Any] = {"type": msg.type, "id": msg.id, "payload": msg.payload}
    if msg.reply_to is not None:
        data["reply_to"] = msg.reply_to
    return json.dumps(data, separators=(",", ":"))


_FIELDS: tuple[tuple[str, type], ...] = (("type", str), ("id", str), ("payload", dict))


def decode_message(raw: str | bytes) -> Message:
    """Parse one frame.  Raises `ProtocolError` if it is not a message."""
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ProtocolError(f"invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ProtocolError("message must be a JSON object")

    for key, kind in _FIELDS:
        if not isinstance(data.get(key), kind):
            raise ProtocolError(f"{key!r} must be a {kind.__name__}")
    reply_to = data.get("reply_to")
    if reply_to is not None and not isinstance(reply_to, str):
        raise ProtocolError("'reply_to' must be a str")

    return Message(data["type"], data["payload"], id=data["id"], reply_to=reply_to)

"""Async WebSocket client implementing the ``RemoteStore`` contract."""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import websockets
from websockets.asyncio.client import ClientConnection, connect

from .auth import AuthState
from .models import Note
from .protocol import (
    Message,
    ProtocolError,
    decode_message,
    encode_message,
    MSG_AUTHENTICATE,
    MSG_AUTH_OK,
    MSG_ERROR,
    MSG_MUTATION,
    MSG_MUTATION_ERROR,
    MSG_QUERY_ERROR,
    MSG_QUERY_UPDATE,
    MSG_SUBSCRIBE,
    MSG_UNSUBSCRIBE,
)
from .store import (
    MUTATION_CREATE,
    MUTATION_DELETE,
    MUTATION_UPDATE,
    QUERY_GET,
    QUERY_LIST,
    UnauthenticatedError,
    error_from_code,
)

log = logging.getLogger(__name__)

_STREAM_TYPES = frozenset({MSG_QUERY_UPDATE, MSG_QUERY_ERROR})


class StoreClient:
    """Async store client with background message reader.

    Each instance owns one WebSocket connection.  A background
    ``asyncio.Task`` reads all incoming messages and dispatches them to
    waiting ``Future``s (mutations, auth) or ``Queue``s (live queries).
    """

    def __init__(
        self,
        url: str,
        auth: AuthState | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = url
        self.auth = auth or AuthState()
        self._timeout = timeout
        self._client_id = f"client-{uuid.uuid4().hex[:8]}"
        self._ws: ClientConnection | None = None
        self._pending: dict[str, asyncio.Future[Message]] = {}
        self._streams: dict[str, asyncio.Queue[Message]] = {}
        self._reader_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def connected(self) -> bool:
        return self._reader_task is not None and not self._reader_task.done()

    # ── lifecycle ────────────────────────────────────────────────────

    async def connect(self) -> None:
        """Connect to the server and start the background reader."""
        self._ws = await connect(self._url)
        self._reader_task = asyncio.create_task(
            self._read_loop(), name=f"reader-{self._client_id}"
        )
        log.info("connected to %s", self._url)

    async def close(self) -> None:
        """Cancel reader and close transport."""
        if self._reader_task is not None:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None
        for task in list(self._background):
            task.cancel()
        if self._ws is not None:
            await self._ws.close()
            self._ws = None

    async def authenticate(self, token: str) -> int:
        """Present *token*; on success bump and return the auth version."""
        msg = Message(MSG_AUTHENTICATE, {"token": token})
        reply = await self._request(msg, self._timeout)
        if reply.type != MSG_AUTH_OK:
            self.auth.logged_out()
            raise UnauthenticatedError(reply.payload.get("error", "authentication failed"))
        return self.auth.logged_in(token)

    # ── RemoteStore ──────────────────────────────────────────────────

    async def subscribe_list(self) -> AsyncIterator[list[Note]]:
        async for value in self._subscribe(QUERY_LIST, {}):
            yield [Note.from_dict(d) for d in value or []]

    async def subscribe_one(self, note_id: str) -> AsyncIterator[Note | None]:
        async for value in self._subscribe(QUERY_GET, {"id": note_id}):
            yield Note.from_dict(value) if value is not None else None

    async def create(self, content: str = "") -> str:
        return await self._mutate(MUTATION_CREATE, {"content": content})

    async def update(self, note_id: str, content: str) -> None:
        await self._mutate(MUTATION_UPDATE, {"id": note_id, "content": content})

    async def delete(self, note_id: str) -> None:
        await self._mutate(MUTATION_DELETE, {"id": note_id})

    # ── internals ────────────────────────────────────────────────────

    async def _send(self, msg: Message) -> None:
        if self._ws is None:
            raise ConnectionError("not connected")
        await self._ws.send(encode_message(msg))

    async def _mutate(self, name: str, args: dict[str, Any]) -> Any:
        msg = Message(MSG_MUTATION, {"name": name, "args": args})
        reply = await self._request(msg, self._timeout)
        if reply.type in (MSG_MUTATION_ERROR, MSG_ERROR):
            raise error_from_code(
                reply.payload.get("code"),
                reply.payload.get("error", "mutation failed"),
                args.get("id", ""),
            )
        return reply.payload.get("result")

    async def _subscribe(self, query: str, args: dict[str, Any]) -> AsyncIterator[Any]:
        """Open a live query and yield each pushed value."""
        msg = Message(MSG_SUBSCRIBE, {"query": query, "args": args})
        queue: asyncio.Queue[Message] = asyncio.Queue()
        self._streams[msg.id] = queue
        try:
            await self._send(msg)
            while True:
                update = await queue.get()
                if update.type == MSG_QUERY_ERROR:
                    raise error_from_code(
                        update.payload.get("code"),
                        update.payload.get("error", "query failed"),
                        args.get("id", ""),
                    )
                if update.type == MSG_ERROR:
                    raise ConnectionError(update.payload.get("error", "server disconnected"))
                yield update.payload.get("value")
        finally:
            self._streams.pop(msg.id, None)
            if self.connected:
                self._spawn_unsubscribe(msg.id)

    def _spawn_unsubscribe(self, subscription_id: str) -> None:
        msg = Message(MSG_UNSUBSCRIBE, {"subscription": subscription_id})
        task = asyncio.create_task(self._send_quietly(msg))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_quietly(self, msg: Message) -> None:
        try:
            await self._send(msg)
        except (ConnectionError, websockets.exceptions.ConnectionClosed):
            log.debug("could not send %s, connection gone", msg.type)

    async def _request(self, msg: Message, timeout: float) -> Message:
        """Send *msg*, register a Future, and await the reply."""
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[Message] = loop.create_future()
        self._pending[msg.id] = fut
        try:
            await self._send(msg)
            return await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            raise TimeoutError(
                f"no reply to {msg.type} ({msg.id}) within {timeout}s"
            )
        finally:
            self._pending.pop(msg.id, None)

    async def _read_loop(self) -> None:
        """Background task: read messages and dispatch to waiters."""
        assert self._ws is not None
        try:
            async for raw in self._ws:
                try:
                    msg = decode_message(raw)
                except ProtocolError as exc:
                    log.warning("malformed message from server: %s", exc)
                    continue
                self._dispatch_incoming(msg)
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosed as exc:
            log.info("connection closed: %s", exc)
        except Exception:
            log.exception("reader loop error")
        finally:
            # Fail all pending futures and end live queries on disconnect
            for fut in self._pending.values():
                if not fut.done():
                    fut.set_exception(ConnectionError("server disconnected"))
            self._pending.clear()
            for key, queue in self._streams.items():
                queue.put_nowait(Message(
                    MSG_ERROR, {"error": "server disconnected"}, reply_to=key,
                ))

    def _dispatch_incoming(self, msg: Message) -> None:
        """Route an incoming message to the correct Future or Queue."""
        key = msg.reply_to
        if key is None:
            log.debug("ignoring message without reply_to: %s", msg.type)
            return

        if msg.type in _STREAM_TYPES:
            queue = self._streams.get(key)
            if queue is not None:
                queue.put_nowait(msg)
            else:
                log.debug("no live query for reply_to=%s", key)
            return

        fut = self._pending.get(key)
        if fut is not None and not fut.done():
            fut.set_result(msg)
        elif key in self._streams:
            # Error replies to a subscribe request end that query.
            self._streams[key].put_nowait(msg)
        else:
            log.debug("no waiter for reply_to=%s (%s)", key, msg.type)

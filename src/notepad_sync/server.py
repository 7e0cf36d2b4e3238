"""WebSocket server exposing a ``NoteRepository`` as a reactive store.

Each connection authenticates with a bearer token, then may open any
number of live queries (pushed as ``query.update`` messages until
unsubscribed or disconnected) and issue mutations.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import websockets
from websockets.asyncio.server import Server as WsServer, ServerConnection, serve

from .memory import NoteRepository
from .protocol import (
    Message,
    ProtocolError,
    decode_message,
    encode_message,
    MSG_AUTH_OK,
    MSG_ERROR,
    MSG_MUTATION_ERROR,
    MSG_MUTATION_RESULT,
    MSG_QUERY_ERROR,
    MSG_QUERY_UPDATE,
)
from .store import (
    StoreError,
    UnauthenticatedError,
    error_code,
)

log = logging.getLogger(__name__)

@dataclass
class ClientState:
    """Per-connection identity and live query tasks."""

    ws: ServerConnection
    user_id: str | None = None
    queries: dict[str, asyncio.Task[None]] = field(default_factory=dict)

    async def send(self, msg: Message) -> None:
        await self.ws.send(encode_message(msg))

    def cancel_queries(self) -> None:
        for task in self.queries.values():
            task.cancel()
        self.queries.clear()


class NoteServer:
    """Serve *repo* over WebSocket.  *tokens* maps bearer tokens to user ids."""

    def __init__(
        self,
        repo: NoteRepository,
        tokens: dict[str, str],
        host: str = "127.0.0.1",
        port: int = 8765,
    ) -> None:
        self._repo = repo
        self._tokens = tokens
        self._host = host
        self._port = port
        self._server: WsServer | None = None

    @property
    def port(self) -> int:
        """Bound port (useful when started with port 0)."""
        if self._server is None:
            return self._port
        return self._server.sockets[0].getsockname()[1]

    @property
    def url(self) -> str:
        return f"ws://{self._host}:{self.port}"

    async def start(self) -> None:
        self._server = await serve(self._ws_handler, self._host, self._port)
        log.info("note server listening on %s", self.url)

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def serve_forever(self) -> None:
        if self._server is None:
            raise RuntimeError("call start() first")
        await self._server.serve_forever()

    # ── Connection handling ──────────────────────────────────────────

    async def _ws_handler(self, ws: ServerConnection) -> None:
        client = ClientState(ws)
        try:
            async for raw in ws:
                try:
                    msg = decode_message(raw)
                except ProtocolError as exc:
                    log.warning("malformed message: %s", exc)
                    await client.send(Message(MSG_ERROR, {"error": str(exc)}))
                    continue

                try:
                    await self.handle(msg, client)
                except websockets.exceptions.ConnectionClosed:
                    raise
                except Exception:
                    log.exception("handler error for %s", msg.type)
        except websockets.exceptions.ConnectionClosed:
            pass
        finally:
            client.cancel_queries()

    async def handle(self, msg: Message, client: ClientState) -> None:
        """Route an incoming message by its type."""
        match msg.type:
            case "auth.authenticate":
                await self._on_authenticate(msg, client)
            case "query.subscribe":
                await self._on_subscribe(msg, client)
            case "query.unsubscribe":
                self._on_unsubscribe(msg, client)
            case "mutation":
                await self._on_mutation(msg, client)
            case _:
                await client.send(msg.answer(
                    MSG_ERROR, {"error": f"unknown message type: {msg.type}"},
                ))

    async def _on_authenticate(self, msg: Message, client: ClientState) -> None:
        user_id = self._tokens.get(msg.payload.get("token", ""))
        if user_id is None:
            log.info("rejected token from %s", client.ws.remote_address)
            await client.send(msg.answer(
                MSG_ERROR, {"error": "Unauthenticated", "code": "unauthenticated"},
            ))
            return
        client.user_id = user_id
        log.info("client %s authenticated as %s", client.ws.remote_address, user_id)
        await client.send(msg.answer(MSG_AUTH_OK, {"user_id": user_id}))

    async def _on_subscribe(self, msg: Message, client: ClientState) -> None:
        query = msg.payload.get("query")
        args = msg.payload.get("args") or {}
        try:
            user_id = self._require_user(client)
            match query:
                case "notes:list":
                    stream = self._list_values(user_id)
                case "notes:get":
                    stream = self._note_values(user_id, args["id"])
                case _:
                    raise StoreError(f"unknown query: {query}")
        except (StoreError, KeyError) as exc:
            await self._send_query_error(msg, client, exc)
            return
        client.queries[msg.id] = asyncio.create_task(
            self._pump(msg, client, stream), name=f"query-{msg.id}",
        )

    def _on_unsubscribe(self, msg: Message, client: ClientState) -> None:
        task = client.queries.pop(msg.payload.get("subscription", ""), None)
        if task is not None:
            task.cancel()

    async def _on_mutation(self, msg: Message, client: ClientState) -> None:
        name = msg.payload.get("name")
        args = msg.payload.get("args") or {}
        try:
            user_id = self._require_user(client)
            match name:
                case "notes:create":
                    result: Any = self._repo.create(user_id, args.get("content", ""))
                case "notes:update":
                    self._repo.update(user_id, args["id"], args["content"])
                    result = None
                case "notes:delete":
                    self._repo.delete(user_id, args["id"])
                    result = None
                case _:
                    raise StoreError(f"unknown mutation: {name}")
        except (StoreError, KeyError) as exc:
            await client.send(msg.answer(
                MSG_MUTATION_ERROR, {"error": str(exc), "code": error_code(exc)},
            ))
            return
        await client.send(msg.answer(MSG_MUTATION_RESULT, {"result": result}))

    # ── Live queries ─────────────────────────────────────────────────

    @staticmethod
    def _require_user(client: ClientState) -> str:
        if client.user_id is None:
            raise UnauthenticatedError("Unauthenticated")
        return client.user_id

    async def _list_values(self, user_id: str) -> AsyncIterator[Any]:
        async for notes in self._repo.watch_list(user_id):
            yield [n.to_dict() for n in notes]

    async def _note_values(self, user_id: str, note_id: str) -> AsyncIterator[Any]:
        async for note in self._repo.watch_note(user_id, note_id):
            yield note.to_dict() if note is not None else None

    async def _pump(self, msg: Message, client: ClientState, stream: AsyncIterator[Any]) -> None:
        """Forward every value of *stream* to the subscriber."""
        try:
            async for value in stream:
                await client.send(msg.answer(MSG_QUERY_UPDATE, {"value": value}))
        except asyncio.CancelledError:
            raise
        except websockets.exceptions.ConnectionClosed:
            pass
        except StoreError as exc:
            await self._send_query_error(msg, client, exc)
        except Exception:
            log.exception("query %s failed", msg.id)
        finally:
            client.queries.pop(msg.id, None)

    async def _send_query_error(self, msg: Message, client: ClientState, exc: Exception) -> None:
        await client.send(msg.answer(
            MSG_QUERY_ERROR, {"error": str(exc), "code": error_code(exc)},
        ))

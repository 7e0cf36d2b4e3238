"""Entry point for the notepad-sync command line."""

from __future__ import annotations

import argparse
import asyncio
import logging

from .client import StoreClient
from .memory import NoteRepository
from .paths import Paths
from .server import NoteServer
from .settings import Settings

log = logging.getLogger(__name__)


def parse_tokens(pairs: list[str]) -> dict[str, str]:
    """Turn ``TOKEN=USER`` arguments into a token table."""
    tokens: dict[str, str] = {}
    for pair in pairs:
        token, sep, user = pair.partition("=")
        if not sep or not token or not user:
            raise argparse.ArgumentTypeError(f"expected TOKEN=USER, got {pair!r}")
        tokens[token] = user
    return tokens


async def run_server(host: str, port: int, tokens: dict[str, str]) -> None:
    server = NoteServer(NoteRepository(), tokens, host=host, port=port)
    await server.start()
    try:
        await server.serve_forever()
    except asyncio.CancelledError:
        log.info("server shutting down")
    finally:
        await server.stop()
        log.info("server stopped")


async def run_tail(url: str, token: str) -> None:
    """Log the titles of every list snapshot until interrupted."""
    client = StoreClient(url)
    await client.connect()
    try:
        await client.authenticate(token)
        async for notes in client.subscribe_list():
            log.info("%d notes", len(notes))
            for note in notes:
                log.info("  %s  %s", note.id, note.title)
    except asyncio.CancelledError:
        log.info("tail stopped")
    finally:
        await client.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="notepad-sync note store")
    parser.add_argument(
        "--data-dir", default="data",
        help="Data directory (default: data)",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run an in-memory note server")
    serve.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8765, help="Port (default: 8765)")
    serve.add_argument(
        "--token", action="append", default=[], metavar="TOKEN=USER",
        help="Accept TOKEN as USER (repeatable)",
    )

    tail = sub.add_parser("tail", help="Follow the note list of one user")
    tail.add_argument("token", help="Bearer token to authenticate with")
    tail.add_argument("--url", default=None, help="Server URL (default: from settings)")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    settings = Settings(Paths(root=args.data_dir))
    match args.command:
        case "serve":
            try:
                tokens = parse_tokens(args.token)
            except argparse.ArgumentTypeError as exc:
                parser.error(str(exc))
            if not tokens:
                log.warning("no --token given, every client will be rejected")
            coro = run_server(args.host, args.port, tokens)
        case "tail":
            coro = run_tail(args.url or settings.get("server_url"), args.token)

    try:
        asyncio.run(coro)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()

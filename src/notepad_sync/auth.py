"""Authentication state as seen by the sync core.

Acquiring and refreshing credentials happens elsewhere; the core only
needs to know whether a bearer token is present and when it changed, so
it can restart its subscriptions cleanly under the new identity.
"""

from __future__ import annotations

import logging
from typing import Callable

log = logging.getLogger(__name__)

Listener = Callable[[int], None]


class AuthState:
    """Current bearer token plus a version bumped on every login."""

    def __init__(self) -> None:
        self.token: str | None = None
        self.is_authenticated = False
        self.version = 0
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        """Call *listener* with the new version after each (re)login."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        self._listeners = [l for l in self._listeners if l is not listener]

    def logged_in(self, token: str) -> int:
        self.token = token
        self.is_authenticated = True
        self.version += 1
        log.info("authenticated, version now %d", self.version)
        for listener in list(self._listeners):
            listener(self.version)
        return self.version

    def logged_out(self) -> None:
        self.token = None
        self.is_authenticated = False
        log.info("signed out")

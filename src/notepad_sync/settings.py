"""Settings backed by a JSON file, plus the sync timing constants."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

from .paths import Paths

DEFAULT_SERVER_URL = "ws://127.0.0.1:8765"


@dataclass(frozen=True)
class SyncTimings:
    """Heuristic constants of the sync core.

    save_delay: debounce window for local edits (seconds).
    typing_window: after a keystroke, remote snapshots are ignored for
        this long so they can't clobber in-flight typing (seconds).
    quiesce_delay: how long outgoing saves stay suppressed after remote
        content is written into the buffer (seconds).
    auto_create_after: list snapshots required before an empty list may
        trigger creation of a first note.
    """

    save_delay: float = 0.5
    typing_window: float = 2.5
    quiesce_delay: float = 0.1
    auto_create_after: int = 2


DEFAULTS: dict[str, Any] = {
    "server_url": DEFAULT_SERVER_URL,
    "save_delay": SyncTimings.save_delay,
    "typing_window": SyncTimings.typing_window,
    "quiesce_delay": SyncTimings.quiesce_delay,
    "auto_create_after": SyncTimings.auto_create_after,
}

_VALID_KEYS = set(DEFAULTS)


class Settings:
    """Settings backed by a JSON file.

    Usage:
        settings = Settings(paths)
        timings = settings.timings()
        settings.set("typing_window", 4.0)
    """

    def __init__(self, paths: Paths) -> None:
        self.paths = paths

    def load(self) -> dict[str, Any]:
        """Read settings from disk, filling missing keys from defaults."""
        settings = dict(DEFAULTS)
        try:
            raw = self.paths.settings_file.read_text(encoding="utf-8")
            stored = json.loads(raw)
            settings.update(stored)
        except (FileNotFoundError, json.JSONDecodeError):
            pass
        return settings

    def save(self, settings: dict[str, Any]) -> None:
        """Write settings to disk."""
        self.paths.settings_file.parent.mkdir(parents=True, exist_ok=True)
        self.paths.settings_file.write_text(
            json.dumps(settings, indent=4) + "\n", encoding="utf-8",
        )

    def get(self, key: str) -> Any:
        """Return a single setting value."""
        return self.load().get(key, DEFAULTS.get(key))

    def set(self, key: str, value: Any) -> None:
        """Update a single setting and persist."""
        if not self.is_valid_key(key):
            raise KeyError(f"unknown setting: {key}")
        settings = self.load()
        settings[key] = value
        self.save(settings)

    @staticmethod
    def is_valid_key(key: str) -> bool:
        """Return True if *key* is a recognised setting name."""
        return key in _VALID_KEYS

    def timings(self) -> SyncTimings:
        settings = self.load()
        return SyncTimings(
            save_delay=float(settings["save_delay"]),
            typing_window=float(settings["typing_window"]),
            quiesce_delay=float(settings["quiesce_delay"]),
            auto_create_after=int(settings["auto_create_after"]),
        )

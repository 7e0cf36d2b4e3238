"""notepad-sync: live note synchronization with local edit reconciliation."""

from .auth import AuthState
from .client import StoreClient
from .lifecycle import ListEvent, ListLifecycleController
from .memory import LocalStore, NoteRepository
from .models import Note
from .reconcile import Decision, ReconciliationEngine
from .server import NoteServer
from .session import NotesSession, SessionView
from .settings import Settings, SyncTimings
from .writer import DebouncedWriter

__all__ = [
    "AuthState",
    "DebouncedWriter",
    "Decision",
    "ListEvent",
    "ListLifecycleController",
    "LocalStore",
    "Note",
    "NoteRepository",
    "NoteServer",
    "NotesSession",
    "ReconciliationEngine",
    "SessionView",
    "Settings",
    "StoreClient",
    "SyncTimings",
]

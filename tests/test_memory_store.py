"""Tests for notepad_sync.memory."""

from __future__ import annotations

import asyncio
from contextlib import aclosing

import pytest

from notepad_sync.memory import LocalStore, NoteRepository
from notepad_sync.store import NoteNotFoundError, UnauthenticatedError, UnauthorizedError


class StepClock:
    """Epoch-millis clock that advances one second per reading."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        self.now += 1000.0
        return self.now


@pytest.fixture
def repo():
    return NoteRepository(clock=StepClock())


class TestRepository:
    def test_create_sets_times_and_owner(self, repo):
        note_id = repo.create("alice", "hello")
        note = repo.get("alice", note_id)
        assert note.content == "hello"
        assert note.user_id == "alice"
        assert note.created_time == note.updated_time

    def test_list_scoped_and_newest_first(self, repo):
        a = repo.create("alice", "a")
        repo.create("bob", "b")
        c = repo.create("alice", "c")
        assert [n.id for n in repo.list_for("alice")] == [c, a]

    def test_update_bumps_updated_time(self, repo):
        a = repo.create("alice", "a")
        repo.create("alice", "b")
        repo.update("alice", a, "a2")
        notes = repo.list_for("alice")
        assert notes[0].id == a
        assert notes[0].updated_time > notes[0].created_time

    def test_update_never_moves_time_backwards(self):
        times = iter([5000.0, 1000.0])
        repo = NoteRepository(clock=lambda: next(times))
        a = repo.create("alice", "a")
        repo.update("alice", a, "b")
        assert repo.get("alice", a).updated_time == 5000.0

    def test_get_missing_is_none(self, repo):
        assert repo.get("alice", "nope") is None

    def test_foreign_note_unauthorized(self, repo):
        a = repo.create("alice", "secret")
        with pytest.raises(UnauthorizedError):
            repo.get("bob", a)
        with pytest.raises(UnauthorizedError):
            repo.update("bob", a, "mine now")
        with pytest.raises(UnauthorizedError):
            repo.delete("bob", a)

    def test_mutating_missing_note(self, repo):
        with pytest.raises(NoteNotFoundError):
            repo.update("alice", "nope", "x")
        with pytest.raises(NoteNotFoundError):
            repo.delete("alice", "nope")


class TestWatchers:
    async def test_watch_list_yields_current_then_changes(self, repo):
        async with aclosing(repo.watch_list("alice")) as stream:
            assert await anext(stream) == []
            a = repo.create("alice", "a")
            repo.create("bob", "not mine")
            snapshot = await asyncio.wait_for(anext(stream), timeout=1.0)
            assert [n.id for n in snapshot] == [a]

    async def test_watch_note_reports_deletion(self, repo):
        a = repo.create("alice", "a")
        async with aclosing(repo.watch_note("alice", a)) as stream:
            assert (await anext(stream)).content == "a"
            repo.update("alice", a, "b")
            assert (await anext(stream)).content == "b"
            repo.delete("alice", a)
            assert await anext(stream) is None

    async def test_closed_watcher_unregisters(self, repo):
        a = repo.create("alice", "a")
        async with aclosing(repo.watch_note("alice", a)) as stream:
            await anext(stream)
        assert a not in repo._note_watchers

    async def test_closed_list_watcher_unregisters(self, repo):
        async with aclosing(repo.watch_list("alice")) as stream:
            await anext(stream)
            assert "alice" in repo._list_watchers
        assert "alice" not in repo._list_watchers


class TestLocalStore:
    async def test_round_trip(self, repo):
        store = LocalStore(repo, "alice")
        note_id = await store.create("hi")
        await store.update(note_id, "hi there")
        async with aclosing(store.subscribe_one(note_id)) as stream:
            note = await anext(stream)
        assert note.content == "hi there"
        await store.delete(note_id)
        assert repo.list_for("alice") == []

    async def test_unauthenticated(self, repo):
        store = LocalStore(repo, None)
        with pytest.raises(UnauthenticatedError):
            await store.create()
        with pytest.raises(UnauthenticatedError):
            await anext(store.subscribe_list())

    async def test_foreign_subscription_fails(self, repo):
        a = repo.create("alice", "x")
        store = LocalStore(repo, "bob")
        with pytest.raises(UnauthorizedError):
            await anext(store.subscribe_one(a))

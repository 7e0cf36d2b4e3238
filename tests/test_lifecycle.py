"""Tests for notepad_sync.lifecycle."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from notepad_sync.lifecycle import ListEvent, ListLifecycleController
from notepad_sync.models import Note
from notepad_sync.store import StoreError


def _note(id: str, updated: float) -> Note:
    return Note(id=id, content=id, created_time=0.0, updated_time=updated, user_id="u1")


async def _stream(*items):
    for item in items:
        yield item


@pytest.fixture
def store():
    s = MagicMock()
    s.create = AsyncMock(return_value="new-id")
    s.delete = AsyncMock()
    return s


@pytest.fixture
def callbacks():
    return MagicMock()


@pytest.fixture
def controller(store, callbacks):
    return ListLifecycleController(
        store,
        on_created=callbacks.created,
        on_error=callbacks.error,
        on_update=callbacks.update,
    )


class TestApply:
    def test_sorts_and_counts(self, controller):
        event, _ = controller.apply([_note("a", 1), _note("b", 3)])
        assert event is ListEvent.NONE
        assert [n.id for n in controller.notes] == ["b", "a"]
        assert controller.update_count == 1

    def test_first_empty_snapshot_does_not_create(self, controller):
        assert controller.apply([]) == (ListEvent.NONE, None)
        assert not controller.creating

    def test_second_empty_snapshot_creates(self, controller):
        controller.apply([])
        assert controller.apply([]) == (ListEvent.AUTO_CREATE, None)
        assert controller.creating

    def test_no_second_auto_create_while_creating(self, controller):
        controller.apply([])
        controller.apply([])
        assert controller.apply([]) == (ListEvent.NONE, None)

    def test_growth_while_creating_reports_newest(self, controller):
        controller.apply([_note("a", 1)])
        controller.creating = True
        event, note_id = controller.apply([_note("a", 1), _note("b", 5)])
        assert event is ListEvent.CREATED
        assert note_id == "b"
        assert not controller.creating

    def test_growth_without_creating_is_plain_update(self, controller):
        controller.apply([_note("a", 1)])
        event, _ = controller.apply([_note("a", 1), _note("b", 5)])
        assert event is ListEvent.NONE

    def test_reset_clears_counter(self, controller):
        controller.apply([])
        controller.reset()
        assert controller.update_count == 0
        assert controller.apply([]) == (ListEvent.NONE, None)

    def test_reset_without_create_forgets_list(self, controller):
        controller.apply([_note("a", 1)])
        controller.reset()
        assert controller.notes == []

    def test_reset_keeps_pending_create(self, controller):
        controller.apply([_note("a", 1)])
        controller.creating = True
        controller.reset()
        assert controller.creating
        assert controller.update_count == 0
        assert [n.id for n in controller.notes] == ["a"]
        event, note_id = controller.apply([_note("a", 1), _note("b", 5)])
        assert (event, note_id) == (ListEvent.CREATED, "b")

    def test_reset_during_first_create_does_not_create_again(self, controller):
        controller.apply([])
        controller.apply([])
        assert controller.creating
        controller.reset()
        assert controller.apply([]) == (ListEvent.NONE, None)
        assert controller.apply([]) == (ListEvent.NONE, None)
        assert controller.apply([_note("x", 1)]) == (ListEvent.CREATED, "x")


class TestHandle:
    async def test_auto_create_calls_store_once(self, controller, store):
        controller.handle([])
        controller.handle([])
        controller.handle([])
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        store.create.assert_awaited_once_with("")

    async def test_created_notifies(self, controller, callbacks):
        controller.handle([])
        controller.creating = True
        controller.handle([_note("x", 2)])
        callbacks.created.assert_called_once_with("x")
        assert callbacks.update.call_args_list[-1].args == (ListEvent.CREATED,)


class TestRun:
    async def test_run_folds_every_snapshot(self, controller, callbacks):
        await controller.run(_stream([_note("a", 1)], [_note("a", 1), _note("b", 2)]))
        assert [n.id for n in controller.notes] == ["b", "a"]
        assert callbacks.update.call_count == 2

    async def test_stream_failure_empties_list_without_counting(self, controller, store, callbacks):
        async def failing():
            yield [_note("a", 1)]
            raise StoreError("disconnected")

        await controller.run(failing())
        assert controller.notes == []
        assert controller.update_count == 1
        store.create.assert_not_called()
        assert callbacks.update.call_count == 2
        assert callbacks.update.call_args_list[-1].args == (ListEvent.NONE,)


class TestMutations:
    async def test_create_failure_reports_and_clears_flag(self, controller, store, callbacks):
        store.create.side_effect = StoreError("offline")
        assert await controller.create_note() is None
        assert not controller.creating
        callbacks.error.assert_called_once_with("Error creating note: offline")

    async def test_create_returns_id_and_stays_creating(self, controller):
        assert await controller.create_note("hello") == "new-id"
        assert controller.creating

    async def test_delete_failure_reports(self, controller, store, callbacks):
        store.delete.side_effect = StoreError("nope")
        assert await controller.delete_note("a") is False
        callbacks.error.assert_called_once_with("Error deleting note: nope")

    async def test_close_cancels_background_create(self, controller, store):
        started = asyncio.Event()

        async def slow_create(content):
            started.set()
            await asyncio.Event().wait()

        store.create.side_effect = slow_create
        controller.request_create()
        await started.wait()
        await controller.close()


class TestQueries:
    @pytest.fixture
    def filled(self, controller):
        controller.apply([_note("a", 3), _note("b", 2), _note("c", 1)])
        return controller

    def test_successor_skips_deleted(self, filled):
        assert filled.successor_for("a").id == "b"
        assert filled.successor_for("b").id == "a"

    def test_neighbor_prefers_next(self, filled):
        assert filled.neighbor_of("a").id == "b"
        assert filled.neighbor_of("b").id == "c"

    def test_neighbor_of_last_is_previous(self, filled):
        assert filled.neighbor_of("c").id == "b"

    def test_neighbor_of_only_note(self, controller):
        controller.apply([_note("solo", 1)])
        assert controller.neighbor_of("solo") is None
        assert controller.neighbor_of("missing") is None

    def test_find_and_search(self, filled):
        assert filled.find("b").id == "b"
        assert filled.find("z") is None
        assert [n.id for n in filled.search("C")] == ["c"]

    def test_successor_after_deletion_is_newest_remaining(self, controller):
        controller.apply([_note("C", 1), _note("A", 3), _note("B", 2)])
        controller.apply([_note("C", 1), _note("B", 2)])
        assert controller.successor_for("A").id == "B"

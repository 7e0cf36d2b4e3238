"""Tests for notepad_sync.subscriptions."""

from __future__ import annotations

import asyncio

import pytest

from notepad_sync.subscriptions import Degraded, SubscriptionTable


async def _forever(log: list[str], name: str) -> None:
    try:
        await asyncio.Event().wait()
    finally:
        log.append(name)


class TestSubscriptionTable:
    async def test_replace_cancels_previous(self):
        log: list[str] = []
        table = SubscriptionTable()
        first = table.replace("note", _forever(log, "first"))
        await asyncio.sleep(0)
        table.replace("note", _forever(log, "second"))
        await asyncio.sleep(0)
        assert first.cancelled()
        assert log == ["first"]
        assert "note" in table
        await table.close()
        assert log == ["first", "second"]

    async def test_keys_are_independent(self):
        log: list[str] = []
        table = SubscriptionTable()
        table.replace("list", _forever(log, "list"))
        table.replace("note", _forever(log, "note"))
        await asyncio.sleep(0)
        assert table.cancel("note") is True
        await asyncio.sleep(0)
        assert "list" in table
        assert "note" not in table
        await table.close()

    async def test_cancel_unknown_key(self):
        assert SubscriptionTable().cancel("nothing") is False

    async def test_finished_task_leaves_table(self):
        async def quick():
            return 1

        table = SubscriptionTable()
        task = table.replace("list", quick())
        await task
        await asyncio.sleep(0)
        assert table.get("list") is None

    async def test_crash_is_logged(self, caplog):
        async def boom():
            raise RuntimeError("bad")

        table = SubscriptionTable()
        task = table.replace("list", boom())
        with pytest.raises(RuntimeError):
            await task
        await asyncio.sleep(0)
        assert "subscription list crashed" in caplog.text


class TestDegraded:
    async def test_passes_values_through(self):
        async def gen():
            yield 1
            yield 2

        wrapped = Degraded(gen())
        assert [v async for v in wrapped] == [1, 2]
        assert not wrapped.failed

    async def test_error_ends_iteration(self, caplog):
        async def gen():
            yield 1
            raise ConnectionError("lost")

        wrapped = Degraded(gen(), label="note list")
        assert [v async for v in wrapped] == [1]
        assert wrapped.failed
        assert isinstance(wrapped.error, ConnectionError)
        assert "note list failed" in caplog.text

    async def test_cancellation_propagates(self):
        async def gen():
            yield 1
            await asyncio.Event().wait()
            yield 2

        async def consume(out: list[int]):
            async for v in Degraded(gen()):
                out.append(v)

        out: list[int] = []
        task = asyncio.create_task(consume(out))
        await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert out == [1]

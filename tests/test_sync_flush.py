"""Tests for flushing the favorites sync queue.

Tests:
- Successful add and remove delivery
- "Not ready" adds waiting for their message to sync
- Failure bookkeeping, backoff windows and abandonment
- Reentrancy guard and in-flight races
- Remote refresh and merge through the engine
"""

import asyncio

import pytest

from favsync.engine import compute_retry_delay_ms
from favsync.events import EventType
from favsync.types import QueueItemType, RemoteSyncError, SyncStatus


class TestRetryDelay:
    @pytest.mark.parametrize(
        "retry_count,expected",
        [(0, 2000), (1, 4000), (2, 8000), (5, 64000), (6, 120000), (10, 120000)],
    )
    def test_exponential_backoff_is_capped(self, retry_count, expected):
        assert compute_retry_delay_ms(retry_count) == expected

    def test_engine_uses_configured_bounds(self, engine):
        engine.initial_retry_delay_ms = 100
        engine.max_retry_delay_ms = 1000
        assert engine.retry_delay_ms(2) == 400
        assert engine.retry_delay_ms(8) == 1000


class TestPushAdd:
    @pytest.mark.asyncio
    async def test_add_then_sync_marks_synced(self, engine, mock_client):
        fav = engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")

        result = await engine.sync_now()

        assert result.pushed == 1
        assert result.success
        assert fav.sync_status == SyncStatus.SYNCED
        assert fav.remote_id == "remote-fav-1"
        assert fav.last_sync_at is not None
        assert engine.queue_items() == []
        mock_client.add_favorite.assert_awaited_once_with("rm-1", user_id="user-1")

    @pytest.mark.asyncio
    async def test_sync_persists_result(self, engine, store):
        engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")

        await engine.sync_now()

        favorites, queue = store.load("user-1")
        assert favorites[0].sync_status == SyncStatus.SYNCED
        assert queue == []

    @pytest.mark.asyncio
    async def test_add_without_remote_message_id_is_not_ready(self, engine, mock_client):
        fav = engine.add("msg-1", "hello", "assistant")

        result = await engine.sync_now()

        assert result.not_ready == 1
        assert result.failed == 0
        item = engine.get_queue_item(fav.local_id)
        assert item.retry_count == 0
        assert item.last_retry_at is None
        assert fav.sync_status == SyncStatus.PENDING
        mock_client.add_favorite.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remote_message_id_resolved_through_lookup(self, engine, messages, mock_client):
        fav = engine.add("msg-1", "hello", "assistant")
        messages.register("msg-1", "rm-1")

        result = await engine.sync_now()

        assert result.pushed == 1
        assert fav.remote_message_id == "rm-1"
        mock_client.add_favorite.assert_awaited_once_with("rm-1", user_id="user-1")

    @pytest.mark.asyncio
    async def test_emits_synced_event(self, engine, bus):
        received = []
        bus.subscribe(received.append, [EventType.FAVORITE_SYNCED])
        fav = engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")

        await engine.sync_now()

        assert received[0].local_id == fav.local_id
        assert received[0].remote_id == "remote-fav-1"

    @pytest.mark.asyncio
    async def test_emits_started_and_completed(self, engine, bus):
        kinds = []
        bus.subscribe(lambda e: kinds.append(e.kind))
        engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")
        kinds.clear()

        await engine.sync_now()

        assert kinds[0] == EventType.SYNC_STARTED
        assert kinds[-1] == EventType.SYNC_COMPLETED

    @pytest.mark.asyncio
    async def test_already_confirmed_favorite_skips_network(self, engine, mock_client, make_remote_record):
        engine.add("msg-1", "hello", "assistant")
        engine.merge_remote_favorites([make_remote_record("r1", "rm-1", "hello")])

        result = await engine.sync_now()

        assert result.pushed == 1
        assert engine.queue_items() == []
        mock_client.add_favorite.assert_not_awaited()


class TestPushRemove:
    @pytest.mark.asyncio
    async def test_remove_synced_favorite(self, engine, mock_client):
        engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")
        await engine.sync_now()

        engine.remove("msg-1")
        result = await engine.sync_now()

        assert result.removed == 1
        assert engine.queue_items() == []
        mock_client.remove_favorite.assert_awaited_once_with("rm-1", user_id="user-1")

    @pytest.mark.asyncio
    async def test_remove_failure_keeps_item(self, engine, mock_client):
        engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")
        await engine.sync_now()
        engine.remove("msg-1")
        mock_client.remove_favorite.side_effect = RemoteSyncError("server down", 503)

        result = await engine.sync_now()

        assert result.failed == 1
        [item] = engine.queue_items()
        assert item.type == QueueItemType.REMOVE
        assert item.retry_count == 1


class TestFailures:
    @pytest.mark.asyncio
    async def test_failure_marks_entity_failed(self, engine, mock_client, clock, bus):
        failures = []
        bus.subscribe(failures.append, [EventType.FAVORITE_SYNC_FAILED])
        mock_client.add_favorite.side_effect = RemoteSyncError("boom", 500)
        fav = engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")

        result = await engine.sync_now()

        assert result.failed == 1
        assert not result.success
        assert fav.sync_status == SyncStatus.FAILED
        assert fav.sync_error == "boom"
        item = engine.get_queue_item(fav.local_id)
        assert item.retry_count == 1
        assert item.last_retry_at == clock.now_ms
        assert failures[0].error == "boom"

    @pytest.mark.asyncio
    async def test_backoff_window_defers_retry(self, engine, mock_client, clock):
        mock_client.add_favorite.side_effect = RemoteSyncError("boom", 500)
        engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")
        await engine.sync_now()

        clock.advance(compute_retry_delay_ms(1) - 1)
        result = await engine.sync_now()
        assert result.deferred == 1
        assert mock_client.add_favorite.await_count == 1

        clock.advance(1)
        result = await engine.sync_now()
        assert result.failed == 1
        assert mock_client.add_favorite.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_succeeds_after_backoff(self, engine, mock_client, clock):
        mock_client.add_favorite.side_effect = [RemoteSyncError("boom", 500), "remote-2"]
        fav = engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")
        await engine.sync_now()

        clock.advance(compute_retry_delay_ms(1))
        await engine.sync_now()

        assert fav.sync_status == SyncStatus.SYNCED
        assert fav.remote_id == "remote-2"
        assert fav.sync_error is None
        assert engine.queue_items() == []

    @pytest.mark.asyncio
    async def test_abandoned_after_max_retries(self, engine, mock_client):
        mock_client.add_favorite.side_effect = RemoteSyncError("boom", 500)
        fav = engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")
        await engine.sync_now()
        engine.get_queue_item(fav.local_id).retry_count = 10

        result = await engine.sync_now()

        assert result.abandoned == 1
        assert engine.queue_items() == []
        assert engine.get(fav.local_id).sync_status == SyncStatus.FAILED
        assert mock_client.add_favorite.await_count == 1

    @pytest.mark.asyncio
    async def test_force_sync_ignores_backoff(self, engine, mock_client):
        mock_client.add_favorite.side_effect = [RemoteSyncError("boom", 500), "remote-2"]
        fav = engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")
        await engine.sync_now()

        result = await engine.force_sync()

        assert result.pushed == 1
        assert fav.sync_status == SyncStatus.SYNCED

    @pytest.mark.asyncio
    async def test_one_failure_does_not_block_other_items(self, engine, mock_client):
        async def add_favorite(remote_message_id, *, user_id=None):
            if remote_message_id == "rm-bad":
                raise RemoteSyncError("rejected", 400)
            return f"remote-{remote_message_id}"

        mock_client.add_favorite.side_effect = add_favorite
        bad = engine.add("msg-1", "bad", "user", remote_message_id="rm-bad")
        good = engine.add("msg-2", "good", "user", remote_message_id="rm-good")

        result = await engine.sync_now()

        assert result.failed == 1
        assert result.pushed == 1
        assert bad.sync_status == SyncStatus.FAILED
        assert good.remote_id == "remote-rm-good"


class TestReentrancy:
    @pytest.mark.asyncio
    async def test_sync_while_syncing_is_noop(self, engine, mock_client):
        gate = asyncio.Event()

        async def slow_add(remote_message_id, *, user_id=None):
            await gate.wait()
            return "remote-slow"

        mock_client.add_favorite.side_effect = slow_add
        engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")

        first = asyncio.create_task(engine.sync_now())
        await asyncio.sleep(0)
        second = await engine.sync_now()
        gate.set()
        first_result = await first

        assert second.skipped is True
        assert first_result.pushed == 1
        assert mock_client.add_favorite.await_count == 1
        assert engine.is_syncing is False

    @pytest.mark.asyncio
    async def test_remove_during_inflight_add_keeps_remove(self, engine, mock_client):
        gate = asyncio.Event()

        async def slow_add(remote_message_id, *, user_id=None):
            await gate.wait()
            return "remote-slow"

        mock_client.add_favorite.side_effect = slow_add
        fav = engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")

        flush = asyncio.create_task(engine.sync_now())
        await asyncio.sleep(0)
        engine.remove("msg-1")
        gate.set()
        await flush

        [item] = engine.queue_items()
        assert item.local_id == fav.local_id
        assert item.type == QueueItemType.REMOVE
        assert engine.get(fav.local_id) is None

        result = await engine.sync_now()
        assert result.removed == 1
        mock_client.remove_favorite.assert_awaited_once_with("rm-1", user_id="user-1")

    @pytest.mark.asyncio
    async def test_no_client_is_noop(self, local_engine):
        local_engine.add("msg-1", "hello", "assistant", remote_message_id="rm-1")

        result = await local_engine.sync_now()

        assert result.pushed == 0
        assert len(local_engine.queue_items()) == 1


class TestRefreshFromRemote:
    @pytest.mark.asyncio
    async def test_refresh_merges_snapshot(self, engine, mock_client, make_remote_record):
        mock_client.list_favorites.return_value = [make_remote_record("r1", "rm-1", "hello")]

        assert await engine.refresh_from_remote() is True

        [fav] = engine.list()
        assert fav.local_id == "fav-remote-r1"
        assert fav.sync_status == SyncStatus.SYNCED
        mock_client.list_favorites.assert_awaited_once_with(user_id="user-1")

    @pytest.mark.asyncio
    async def test_refresh_failure_keeps_local_data(self, engine, mock_client):
        fav = engine.add("msg-1", "hello", "assistant")
        mock_client.list_favorites.side_effect = RemoteSyncError("offline")

        assert await engine.refresh_from_remote() is False

        assert engine.list() == [fav]

    @pytest.mark.asyncio
    async def test_user_switch_during_fetch_discards_snapshot(
        self, engine, mock_client, make_remote_record
    ):
        async def list_favorites(*, user_id=None):
            engine.set_user_id("user-2")
            return [make_remote_record("r1", "rm-1", "hello")]

        mock_client.list_favorites.side_effect = list_favorites

        assert await engine.refresh_from_remote() is False
        assert engine.list() == []

    @pytest.mark.asyncio
    async def test_refresh_without_client(self, local_engine):
        assert await local_engine.refresh_from_remote() is False

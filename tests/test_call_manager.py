"""End-to-end call lifecycle tests over the memory cache with mocked Discord I/O."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiosqlite
import discord
import pytest

from interchat.cache.cache_store import CacheError
from interchat.datatypes.call_datatypes import CallErrorCode, CallStatus
from interchat.gateway.webhook_gateway import SendResult, WebhookError
from interchat.userphone.call_cache_manager import CallCacheManager
from interchat.userphone.call_events import CallEventBus, CallEventType, QueueTimeoutEvent
from interchat.userphone.call_manager import CallManager
from interchat.userphone.matching_engine import MatchingEngine
from interchat.userphone.queue_manager import QueueManager

from helpers import make_call, make_request


def webhook_for(channel_id):
    return f"https://discord.com/api/webhooks/{channel_id}/token"


def make_channel(channel_id, guild_id):
    channel = MagicMock()
    channel.id = channel_id
    channel.guild.id = guild_id
    return channel


@pytest.fixture
def repo():
    calls = MagicMock()
    calls.create_call = AsyncMock()
    calls.update_call_status = AsyncMock(return_value=True)
    calls.get_active_call_by_channel = AsyncMock(return_value=None)
    calls.get_call_stats = AsyncMock(return_value={"total_messages": 0})
    calls.add_user_to_participant = AsyncMock()
    calls.mark_user_left = AsyncMock(return_value=True)
    calls.add_message = AsyncMock()
    calls.report_call = AsyncMock(return_value=7)
    return calls


@pytest.fixture
def notifications():
    service = MagicMock()
    for name in (
        "notify_call_matched", "notify_call_started", "notify_call_ended", "notify_call_timeout",
        "notify_participant_joined", "notify_participant_left",
    ):
        setattr(service, name, AsyncMock(return_value=True))
    return service


@pytest.fixture
def gateway():
    webhooks = MagicMock()
    webhooks.send = AsyncMock(return_value=SendResult(message={"id": "999"}))
    return webhooks


@pytest.fixture
def bus():
    return CallEventBus()


@pytest.fixture
def cache(store, calling_settings):
    return CallCacheManager(store, calling_settings)


@pytest.fixture
def queue(store, cache, bus, calling_settings):
    return QueueManager(store, cache, bus, calling_settings)


@pytest.fixture
def manager(queue, cache, repo, notifications, gateway, bus, calling_settings):
    matching = MatchingEngine(queue, cache, repo, bus, calling_settings)
    return CallManager(queue, matching, cache, repo, notifications, gateway, bus, calling_settings)


async def start(manager, cache, channel_id, guild_id, user_id):
    await cache.cache_webhook(channel_id, webhook_for(channel_id))
    return await manager.initiate_call(make_channel(channel_id, guild_id), user_id)


class TestInitiate:

    @pytest.mark.asyncio
    async def test_two_servers_get_connected(self, manager, cache, notifications):
        first = await start(manager, cache, "A", "G1", "u1")
        assert first.success
        assert first.message == "🔍 **Looking for a match...** You're #1 in queue (1 total)."

        second = await start(manager, cache, "B", "G2", "u2")
        assert second.success
        assert second.call_id is not None
        assert second.message == "📞 **Call connected!** Say hello! 👋"

        call = await cache.get_active_call("A")
        assert call.id == second.call_id
        notified = sorted(c.args[0] for c in notifications.notify_call_matched.await_args_list)
        assert notified == ["A", "B"]
        assert notifications.notify_call_started.await_count == 2

    @pytest.mark.asyncio
    async def test_already_queued(self, manager, cache):
        await start(manager, cache, "A", "G1", "u1")
        result = await start(manager, cache, "A", "G1", "u3")
        assert not result.success
        assert result.code is CallErrorCode.CHANNEL_ALREADY_IN_QUEUE

    @pytest.mark.asyncio
    async def test_already_in_call(self, manager, cache):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")
        result = await start(manager, cache, "A", "G1", "u1")
        assert result.code is CallErrorCode.CHANNEL_ALREADY_IN_CALL

    @pytest.mark.asyncio
    async def test_thread_is_refused(self, manager):
        thread = MagicMock(spec=discord.Thread)
        result = await manager.initiate_call(thread, "u1")
        assert result.code is CallErrorCode.INVALID_CHANNEL

    @pytest.mark.asyncio
    async def test_missing_webhook(self, manager, cache):
        cache.get_or_create_webhook = AsyncMock(return_value=None)
        result = await manager.initiate_call(make_channel("A", "G1"), "u1")
        assert result.code is CallErrorCode.WEBHOOK_CREATION_FAILED

    @pytest.mark.asyncio
    async def test_cache_outage_maps_to_redis_error(self, manager, cache):
        cache.is_in_call = AsyncMock(side_effect=CacheError("connection refused"))
        result = await manager.initiate_call(make_channel("A", "G1"), "u1")
        assert not result.success
        assert result.code is CallErrorCode.REDIS_ERROR

    @pytest.mark.asyncio
    async def test_channel_stays_busy_while_its_call_is_created(
        self, manager, queue, cache, repo, bus, calling_settings,
    ):
        creating = asyncio.Event()
        release = asyncio.Event()

        async def slow_create(call):
            creating.set()
            await release.wait()

        repo.create_call = AsyncMock(side_effect=slow_create)
        await cache.cache_webhook("A", webhook_for("A"))
        await queue.enqueue(make_request("A", "G1", "u1", timestamp=1_000))
        await queue.enqueue(make_request("B", "G2", "u2", timestamp=2_000))
        sweep = asyncio.create_task(MatchingEngine(queue, cache, repo, bus, calling_settings).process_queue())
        await creating.wait()

        result = await manager.initiate_call(make_channel("A", "G1"), "u9")
        release.set()
        assert await sweep == 1

        assert result.code is CallErrorCode.CHANNEL_ALREADY_IN_CALL
        assert not await queue.is_in_queue("A")
        assert await cache.is_in_call("A")
        assert repo.create_call.await_count == 1


class TestHangup:

    @pytest.mark.asyncio
    async def test_hangup_ends_call_for_both(self, manager, cache, repo, notifications, bus):
        ended = AsyncMock()
        bus.subscribe(CallEventType.ENDED, ended)
        await start(manager, cache, "A", "G1", "u1")
        connected = await start(manager, cache, "B", "G2", "u2")

        result = await manager.hangup_call("B")

        assert result.success
        assert result.message.startswith("📞 **Call ended!** Duration: ")
        assert not await cache.is_in_call("A")
        assert not await cache.is_in_call("B")
        call_id, status, _ = repo.update_call_status.await_args.args
        assert (call_id, status) == (connected.call_id, CallStatus.ENDED)
        assert sorted(c.args[0] for c in notifications.notify_call_ended.await_args_list) == ["A", "B"]
        event = ended.await_args.args[0]
        assert event.ended_by == "B"
        assert event.call.status is CallStatus.ENDED

    @pytest.mark.asyncio
    async def test_second_hangup_finds_nothing(self, manager, cache):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")
        await manager.hangup_call("A")

        result = await manager.hangup_call("B")
        assert result.code is CallErrorCode.CALL_NOT_FOUND

    @pytest.mark.asyncio
    async def test_hangup_while_queued_leaves_queue(self, manager, cache, queue):
        await start(manager, cache, "A", "G1", "u1")

        result = await manager.hangup_call("A")

        assert result.success
        assert "Removed from queue" in result.message
        assert not await queue.is_in_queue("A")

    @pytest.mark.asyncio
    async def test_call_recovered_from_database(self, manager, cache, repo):
        stored = make_call("db-call", a=("A", "G1", "u1"), b=("B", "G2", "u2"))
        repo.get_active_call_by_channel = AsyncMock(return_value=stored)

        assert (await manager.get_active_call("A")).id == "db-call"
        assert (await cache.get_active_call("B")).id == "db-call"

    @pytest.mark.asyncio
    async def test_cache_failure_leaves_database_row_live(self, manager, cache, repo):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")
        cache.remove_active_call = AsyncMock(side_effect=CacheError("connection refused"))

        result = await manager.hangup_call("A")

        assert result.code is CallErrorCode.REDIS_ERROR
        repo.update_call_status.assert_not_awaited()
        assert await cache.is_in_call("A")

    @pytest.mark.asyncio
    async def test_database_failure_is_healed_by_retry(self, manager, cache, repo):
        await start(manager, cache, "A", "G1", "u1")
        connected = await start(manager, cache, "B", "G2", "u2")
        live = await cache.get_active_call("A")
        repo.update_call_status = AsyncMock(side_effect=aiosqlite.OperationalError("database is locked"))

        failed = await manager.hangup_call("A")

        assert failed.code is CallErrorCode.DATABASE_ERROR
        assert not await cache.is_in_call("A")

        repo.update_call_status = AsyncMock(return_value=True)
        repo.get_active_call_by_channel = AsyncMock(return_value=live)
        retried = await manager.hangup_call("A")

        assert retried.success
        call_id, status, _ = repo.update_call_status.await_args.args
        assert (call_id, status) == (connected.call_id, CallStatus.ENDED)
        assert not await cache.is_in_call("B")


class TestSkip:

    @pytest.mark.asyncio
    async def test_skip_requeues_and_never_rematches_same_partner(self, manager, cache, queue):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")

        skipped = await manager.skip_call("A", "u1")
        assert skipped.success
        assert skipped.message == "⏭️ **Call skipped!** Looking for a new match... You're #1 in queue (1 total)."
        assert await cache.has_recent_match("u1", "u2")

        again = await start(manager, cache, "B", "G2", "u2")
        assert again.call_id is None
        assert await queue.get_queue_length() == 2

        third = await start(manager, cache, "C", "G3", "u3")
        assert third.call_id is not None
        assert sorted((await cache.get_active_call("C")).channel_ids) == ["A", "C"]

    @pytest.mark.asyncio
    async def test_skip_without_call(self, manager):
        result = await manager.skip_call("A", "u1")
        assert result.code is CallErrorCode.CALL_NOT_FOUND


class TestReport:

    @pytest.mark.asyncio
    async def test_report_files_against_current_call(self, manager, cache, repo):
        await start(manager, cache, "A", "G1", "u1")
        connected = await start(manager, cache, "B", "G2", "u2")

        result = await manager.report_call("A", "u1", "x" * 600)

        assert result.success
        assert result.call_id == connected.call_id
        call_id, reporter, reason = repo.report_call.await_args.args
        assert (call_id, reporter) == (connected.call_id, "u1")
        assert len(reason) <= 500

    @pytest.mark.asyncio
    async def test_report_without_call(self, manager, repo):
        result = await manager.report_call("A", "u1", "spam")
        assert result.code is CallErrorCode.CALL_NOT_FOUND
        repo.report_call.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_report_database_failure(self, manager, cache, repo):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")
        repo.report_call.side_effect = aiosqlite.OperationalError("disk I/O error")

        result = await manager.report_call("B", "u2", "spam")
        assert result.code is CallErrorCode.DATABASE_ERROR


class TestMessages:

    @pytest.mark.asyncio
    async def test_message_is_relayed_to_other_side(self, manager, cache, gateway, repo):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")

        delivered = await manager.update_call_message("A", "u1", "alice", "hello", avatar_url="https://cdn/a.png")

        assert delivered is True
        url, payload = gateway.send.await_args.args
        assert url == webhook_for("B")
        assert payload["content"] == "hello"
        assert payload["username"] == "alice"
        assert payload["avatar_url"] == "https://cdn/a.png"
        call = await cache.get_active_call("A")
        assert [m.content for m in call.messages] == ["hello"]
        repo.add_message.assert_awaited_once()
        repo.add_user_to_participant.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_new_speaker_joins_and_other_side_is_told(self, manager, cache, notifications, repo):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")

        await manager.update_call_message("A", "u7", "bob", "hey")

        call = await cache.get_active_call("A")
        assert call.get_participant("A").users == {"u1", "u7"}
        repo.add_user_to_participant.assert_awaited_once_with(call.id, "A", "u7")
        channel_id, webhook_url, mention = notifications.notify_participant_joined.await_args.args
        assert (channel_id, webhook_url, mention) == ("B", webhook_for("B"), "<@u7>")

    @pytest.mark.asyncio
    async def test_message_log_is_capped(self, manager, cache, calling_settings):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")

        for i in range(calling_settings.max_cached_messages + 3):
            await manager.update_call_message("A", "u1", "alice", f"m{i}")

        call = await cache.get_active_call("A")
        assert len(call.messages) == calling_settings.max_cached_messages
        assert call.messages[-1].content == f"m{calling_settings.max_cached_messages + 2}"

    @pytest.mark.asyncio
    async def test_gone_webhook_is_invalidated(self, manager, cache, gateway):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")
        gateway.send.return_value = SendResult(error=WebhookError(status=404, message="Unknown Webhook", code=10015))

        assert await manager.update_call_message("A", "u1", "alice", "hello") is False
        assert await cache.get_webhook("B") is None
        assert await cache.get_webhook("A") == webhook_for("A")

    @pytest.mark.asyncio
    async def test_message_outside_call(self, manager, gateway):
        assert await manager.update_call_message("A", "u1", "alice", "hello") is False
        gateway.send.assert_not_awaited()


class TestParticipants:

    @pytest.mark.asyncio
    async def test_remove_keeps_user_in_call_record(self, manager, cache, repo, notifications):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")

        assert await manager.remove_participant("A", "u1") is True

        call = await cache.get_active_call("A")
        assert "u1" in call.get_participant("A").users
        repo.mark_user_left.assert_awaited_once_with(call.id, "A", "u1")
        notifications.notify_participant_left.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_add_participant(self, manager, cache):
        await start(manager, cache, "A", "G1", "u1")
        await start(manager, cache, "B", "G2", "u2")

        assert await manager.add_participant("B", "u9") is True
        assert "u9" in (await cache.get_active_call("A")).get_participant("B").users
        assert await manager.add_participant("Z", "u9") is False


@pytest.mark.asyncio
async def test_queue_timeout_notifies_channel(manager, bus, notifications):
    request = make_request("A")
    await bus.publish(QueueTimeoutEvent(request=request))
    notifications.notify_call_timeout.assert_awaited_once_with("A", webhook_url=request.webhook_url)

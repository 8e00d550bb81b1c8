"""Tests for call notifications and their rate limit."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from interchat.cache.cache_store import CacheError
from interchat.gateway.webhook_gateway import SendResult, WebhookError
from interchat.ui.call_embeds import HANGUP_BUTTON_ID, NEW_CALL_BUTTON_ID, SKIP_BUTTON_ID
from interchat.userphone.call_cache_manager import CallCacheManager
from interchat.userphone.notification_service import NotificationService

from helpers import make_call


@pytest.fixture
def gateway():
    webhooks = MagicMock()
    webhooks.send = AsyncMock(return_value=SendResult(message={"id": "1"}))
    return webhooks


@pytest.fixture
def cache(store, calling_settings):
    return CallCacheManager(store, calling_settings)


@pytest.fixture
def service(gateway, cache, store, calling_settings):
    return NotificationService(gateway, cache, store, calling_settings)


def custom_ids(payload):
    return [c["custom_id"] for row in payload["components"] for c in row["components"]]


class TestRateLimit:

    @pytest.mark.asyncio
    async def test_sixth_notification_in_window_is_refused(self, service):
        results = [await service.check_rate_limit("c1") for _ in range(6)]
        assert results == [True] * 5 + [False]
        assert await service.check_rate_limit("c2") is True

    @pytest.mark.asyncio
    async def test_window_resets(self, service, clock, calling_settings):
        for _ in range(6):
            await service.check_rate_limit("c1")
        clock.advance(calling_settings.notification_window_secs)
        assert await service.check_rate_limit("c1") is True

    @pytest.mark.asyncio
    async def test_cache_failure_allows(self, service, store):
        store.incr = AsyncMock(side_effect=CacheError("down"))
        assert await service.check_rate_limit("c1") is True

    @pytest.mark.asyncio
    async def test_rate_limited_notice_is_not_sent(self, service, gateway):
        for _ in range(5):
            await service.check_rate_limit("c1")
        await service.notify_call_timeout("c1", webhook_url="https://discord.com/api/webhooks/1/t")
        gateway.send.assert_not_awaited()


class TestNotices:

    @pytest.mark.asyncio
    async def test_matched_goes_to_participant_webhook_with_controls(self, service, gateway):
        call = make_call()

        await service.notify_call_matched("c2", call)

        url, payload = gateway.send.await_args.args
        assert url == call.get_participant("c2").webhook_url
        assert payload["embeds"][0]["title"] == "Call Connected!"
        assert custom_ids(payload) == [HANGUP_BUTTON_ID, SKIP_BUTTON_ID]
        assert payload["username"] == "InterChat Calls"

    @pytest.mark.asyncio
    async def test_matched_for_foreign_channel_is_ignored(self, service, gateway):
        await service.notify_call_matched("elsewhere", make_call())
        gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ended_summary(self, service, gateway):
        await service.notify_call_ended("c1", "call1", 125_000, 12, webhook_url="https://discord.com/api/webhooks/1/t")

        payload = gateway.send.await_args.args[1]
        assert payload["embeds"][0]["description"] == "Thanks for using InterChat! 🎉\n⏱️ 2m 5s • 💬 12 messages"
        assert custom_ids(payload) == [NEW_CALL_BUTTON_ID]

    @pytest.mark.asyncio
    async def test_ended_without_stats(self, service, gateway):
        await service.notify_call_ended("c1", "call1", webhook_url="https://discord.com/api/webhooks/1/t")
        payload = gateway.send.await_args.args[1]
        assert payload["embeds"][0]["description"] == "Thanks for using InterChat! 🎉"

    @pytest.mark.asyncio
    async def test_falls_back_to_cached_webhook(self, service, gateway, cache):
        await cache.cache_webhook("c1", "https://discord.com/api/webhooks/1/cached")
        await service.send_system_message("c1", "maintenance soon")
        assert gateway.send.await_args.args[0] == "https://discord.com/api/webhooks/1/cached"

    @pytest.mark.asyncio
    async def test_no_webhook_drops_notice(self, service, gateway):
        await service.notify_call_timeout("c1")
        gateway.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_send_failure_is_swallowed(self, service, gateway):
        gateway.send.return_value = SendResult(error=WebhookError(status=500, message="HTTP 500"))
        await service.notify_connection_error("c1", "relay", retryable=False, webhook_url="https://discord.com/api/webhooks/1/t")
        payload = gateway.send.await_args.args[1]
        assert "components" not in payload

    @pytest.mark.asyncio
    async def test_participant_notices(self, service, gateway):
        await service.notify_participant_joined("c1", "https://discord.com/api/webhooks/1/t", "<@42>", guild_name="Cats")
        joined = gateway.send.await_args.args[1]["embeds"][0]
        assert joined["title"] == "Participant Joined"
        assert joined["description"] == "👋 **<@42>** from **Cats** joined the call"

        await service.notify_participant_left("c1", "https://discord.com/api/webhooks/1/t", "<@42>")
        left = gateway.send.await_args.args[1]["embeds"][0]
        assert left["description"] == "🚪 **<@42>** left the call"

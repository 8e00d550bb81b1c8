"""
Tests for reaction handling and reaction row propagation.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from interchat.cache.cache_store import CacheError
from interchat.configuration.settings_sections import NetworkSettings
from interchat.datatypes.network_datatypes import Broadcast, Hub, HubMessage, OriginalMessage
from interchat.gateway.webhook_gateway import SendResult, WebhookError
from interchat.network.broadcast_service import BroadcastService
from interchat.network.reaction_service import ReactionService
from interchat.ui.reaction_buttons import reaction_custom_id


HUB_ID = "hub-1"


def webhook(channel_id: str) -> str:
    return f"https://discord.com/api/webhooks/{channel_id}/token"


def make_gateway():
    gateway = MagicMock()
    gateway.fetch_message = AsyncMock(return_value=SendResult(message={"id": "copy", "components": []}))
    gateway.edit_message = AsyncMock(return_value=SendResult(message={"id": "copy"}))
    return gateway


@pytest_asyncio.fixture
async def hub_db(database):
    await database.hubs.upsert(Hub(id=HUB_ID, name="Test Hub"))
    for channel_id in ("c1", "c2", "c3"):
        await database.connections.upsert(HUB_ID, channel_id, "g-" + channel_id, webhook(channel_id))
    original = OriginalMessage(
        id="m1", hub_id=HUB_ID, channel_id="c1", guild_id="g-c1", author_id="author",
        content="hello", created_at=1_700_000_000_000,
    )
    await database.messages.store_original(original, [
        Broadcast(message_id="copy-2", channel_id="c2", original_id="m1", hub_id=HUB_ID),
        Broadcast(message_id="copy-3", channel_id="c3", original_id="m1", hub_id=HUB_ID),
    ])
    return database


@pytest.fixture
def gateway():
    return make_gateway()


@pytest.fixture
def service(store, hub_db, gateway, network_settings):
    return ReactionService(store, hub_db.messages, hub_db.connections, hub_db.hubs, gateway, network_settings)


class TestReactionEvents:
    @pytest.mark.asyncio
    async def test_add_on_copy_updates_original(self, service, hub_db):
        assert await service.handle_reaction_add("copy-2", "u1", "👍")
        assert (await hub_db.messages.get_original("m1")).reactions == {"👍": ["u1"]}

    @pytest.mark.asyncio
    async def test_add_propagates_row_to_every_copy(self, service, gateway):
        await service.handle_reaction_add("m1", "u1", "👍")

        assert gateway.fetch_message.await_count == 2
        assert gateway.edit_message.await_count == 2
        payload = gateway.edit_message.await_args.args[2]
        row = payload["components"][-1]
        assert row["components"][0]["custom_id"] == reaction_custom_id("👍")
        assert payload["allowed_mentions"] == {"parse": []}

    @pytest.mark.asyncio
    async def test_cooldown_blocks_rapid_second_reaction(self, service, clock, hub_db):
        assert await service.handle_reaction_add("m1", "u1", "👍")
        assert not await service.handle_reaction_add("m1", "u1", "🔥")

        clock.advance(3.1)
        assert await service.handle_reaction_add("m1", "u1", "🔥")
        assert (await hub_db.messages.get_original("m1")).reactions == {"👍": ["u1"], "🔥": ["u1"]}

    @pytest.mark.asyncio
    async def test_cooldown_is_per_user(self, service):
        assert await service.handle_reaction_add("m1", "u1", "👍")
        assert await service.handle_reaction_add("m1", "u2", "👍")

    @pytest.mark.asyncio
    async def test_remove(self, service, clock, hub_db):
        await service.handle_reaction_add("m1", "u1", "👍")
        assert await service.handle_reaction_remove("copy-3", "u1", "👍")
        assert (await hub_db.messages.get_original("m1")).reactions == {}
        assert not await service.handle_reaction_remove("m1", "u1", "👍")

    @pytest.mark.asyncio
    async def test_unknown_message(self, service, gateway):
        assert not await service.handle_reaction_add("nope", "u1", "👍")
        assert await service.toggle_reaction("nope", "u1", "👍") is None
        assert await service.get_reactions("nope") == {}
        gateway.edit_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_disabled_hub_ignores_reactions(self, service, hub_db):
        await hub_db.hubs.upsert(Hub(id=HUB_ID, name="Test Hub", reactions_enabled=False))
        assert not await service.handle_reaction_add("m1", "u1", "👍")

    @pytest.mark.asyncio
    async def test_cache_failure_allows_reaction(self, hub_db, gateway, network_settings):
        store = MagicMock()
        store.set = AsyncMock(side_effect=CacheError("down"))
        service = ReactionService(store, hub_db.messages, hub_db.connections, hub_db.hubs, gateway, network_settings)

        assert await service.handle_reaction_add("m1", "u1", "👍")


class TestToggle:
    @pytest.mark.asyncio
    async def test_toggle_add_and_remove(self, service, clock):
        assert await service.toggle_reaction("copy-2", "u1", "👍") is True
        clock.advance(5)
        assert await service.toggle_reaction("copy-2", "u1", "👍") is False
        assert await service.get_reactions("m1") == {}

    @pytest.mark.asyncio
    async def test_emoji_cap(self, store, hub_db, gateway, clock):
        settings = NetworkSettings({"max_reaction_emojis": 1})
        service = ReactionService(store, hub_db.messages, hub_db.connections, hub_db.hubs, gateway, settings)

        assert await service.toggle_reaction("m1", "u1", "👍") is True
        assert await service.toggle_reaction("m1", "u2", "🔥") is None
        assert await service.get_reactions("m1") == {"👍": ["u1"]}


class TestConcurrentChanges:
    @pytest.mark.asyncio
    async def test_reactors_on_different_copies_are_both_kept(self, service, hub_db, gateway):
        added = await asyncio.gather(
            service.handle_reaction_add("copy-2", "u1", "👍"),
            service.handle_reaction_add("copy-3", "u2", "👍"),
        )

        assert added == [True, True]
        stored = (await hub_db.messages.get_original("m1")).reactions
        assert sorted(stored["👍"]) == ["u1", "u2"]
        last_row = gateway.edit_message.await_args.args[2]["components"][-1]
        assert last_row["components"][0]["label"] == "2"

    @pytest.mark.asyncio
    async def test_toggles_by_many_users_all_land(self, service, hub_db):
        users = [f"u{i}" for i in range(6)]
        outcomes = await asyncio.gather(*(service.toggle_reaction("m1", user, "🔥") for user in users))

        assert outcomes == [True] * len(users)
        reactions = await service.get_reactions("copy-2")
        assert sorted(reactions["🔥"]) == users

    @pytest.mark.asyncio
    async def test_unchanged_map_is_not_written_or_propagated(self, service, hub_db, gateway, clock):
        await service.handle_reaction_add("m1", "u1", "👍")
        gateway.edit_message.reset_mock()
        clock.advance(5)

        assert not await service.handle_reaction_add("copy-2", "u1", "👍")
        gateway.edit_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_modify_unknown_original(self, hub_db):
        assert await hub_db.messages.modify_reactions("nope", lambda r: True) == (None, None)


class TestPropagation:
    @pytest.mark.asyncio
    async def test_missing_copy_is_skipped(self, service, gateway, hub_db):
        gateway.fetch_message.side_effect = [
            SendResult(error=WebhookError(status=404, message="Unknown Message", code=10008)),
            SendResult(message={"id": "copy-3", "components": []}),
        ]
        original = await hub_db.messages.get_original("m1")

        result = await service.update_reactions(original, {"👍": ["u1"]})

        assert (result.done, result.total) == (1, 2)
        assert gateway.edit_message.await_count == 1

    @pytest.mark.asyncio
    async def test_disconnected_channel_is_skipped(self, service, gateway, hub_db):
        await hub_db.connections.mark_disconnected(["c3"])
        original = await hub_db.messages.get_original("m1")

        result = await service.update_reactions(original, {"👍": ["u1"]})

        assert (result.done, result.total) == (1, 2)
        assert [call.args[0] for call in gateway.fetch_message.await_args_list] == [webhook("c2")]

    @pytest.mark.asyncio
    async def test_existing_components_are_kept(self, service, gateway, hub_db):
        foreign_row = {"type": 1, "components": [{"type": 2, "style": 5, "label": "Link", "url": "https://example.com"}]}
        gateway.fetch_message.return_value = SendResult(message={"id": "copy", "components": [foreign_row]})
        original = await hub_db.messages.get_original("m1")

        await service.update_reactions(original, {"👍": ["u1"]})

        components = gateway.edit_message.await_args.args[2]["components"]
        assert components[0] == foreign_row
        assert len(components) == 2


@pytest.mark.asyncio
async def test_reaction_on_one_copy_updates_all_three(store, database, network_settings):
    """A hub message reaches three channels; a reaction on one copy shows on every copy."""
    await database.hubs.upsert(Hub(id=HUB_ID, name="Test Hub"))
    for channel_id in ("src", "a", "b", "c"):
        await database.connections.upsert(HUB_ID, channel_id, "g-" + channel_id, webhook(channel_id))

    sent = iter(range(1, 100))
    gateway = make_gateway()
    gateway.send = AsyncMock(side_effect=lambda url, payload, thread_id=None: SendResult(message={"id": f"copy-{next(sent)}"}))
    broadcasts = BroadcastService(store, database.messages, database.connections, database.hubs, gateway, network_settings)
    reactions = ReactionService(store, database.messages, database.connections, database.hubs, gateway, network_settings)

    result = await broadcasts.send_to_hub(HUB_ID, HubMessage(
        id="orig", channel_id="src", guild_id="g-src", author_id="author", author_username="Alice",
        content="hi all", created_at=1_700_000_000_000,
    ), exclude_channel_id="src")
    assert len(result.delivered) == 3

    assert await reactions.handle_reaction_add(result.delivered[1].message_id, "u1", "👍")

    assert gateway.edit_message.await_count == 3
    for call in gateway.edit_message.await_args_list:
        button = call.args[2]["components"][-1]["components"][0]
        assert button["label"] == "1"
        assert button["custom_id"] == reaction_custom_id("👍")

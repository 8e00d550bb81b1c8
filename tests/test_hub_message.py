"""
Tests for the compact and embed renderings of relayed hub messages.
"""

from interchat.datatypes.network_datatypes import ConnectionMode
from interchat.ui.hub_message import MAX_CONTENT_LENGTH, build_hub_payload


class TestCompact:
    def test_plain_text_with_identity(self):
        payload = build_hub_payload(
            ConnectionMode.COMPACT, "hello", username="Alice", avatar_url="https://a/alice.png",
        )
        assert payload["content"] == "hello"
        assert payload["username"] == "Alice"
        assert payload["avatar_url"] == "https://a/alice.png"
        assert "embeds" not in payload

    def test_image_link_appended(self):
        payload = build_hub_payload(ConnectionMode.COMPACT, "look", image_url="https://img/x.png")
        assert payload["content"] == "look\nhttps://img/x.png"

    def test_image_only(self):
        payload = build_hub_payload(ConnectionMode.COMPACT, "", image_url="https://img/x.png")
        assert payload["content"] == "https://img/x.png"

    def test_long_text_truncated(self):
        payload = build_hub_payload(ConnectionMode.COMPACT, "x" * 3000)
        assert len(payload["content"]) == MAX_CONTENT_LENGTH


class TestEmbed:
    def test_embed_with_footer_and_image(self):
        payload = build_hub_payload(
            ConnectionMode.EMBED, "hello", username="Alice", image_url="https://img/x.png", guild_name="Home",
        )
        assert payload["content"] == ""
        embed = payload["embeds"][0]
        assert embed["description"] == "hello"
        assert embed["image"]["url"] == "https://img/x.png"
        assert embed["footer"]["text"] == "From: Home"
        assert payload["username"] == "Alice"

    def test_edit_payload_has_no_identity(self):
        payload = build_hub_payload(ConnectionMode.EMBED, "edited")
        assert "username" not in payload
        assert "avatar_url" not in payload
        assert "footer" not in payload["embeds"][0]

    def test_mentions_disabled(self):
        for mode in ConnectionMode:
            assert build_hub_payload(mode, "@everyone")["allowed_mentions"] == {"parse": []}

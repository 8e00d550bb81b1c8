"""Rendering of relayed hub messages for the two connection modes."""

from __future__ import annotations

from typing import Any, Dict, Optional

import discord

from interchat.datatypes.network_datatypes import ConnectionMode
from interchat.gateway.webhook_gateway import build_payload
from interchat.util.format_utils import truncate

MAX_CONTENT_LENGTH = 2000
MAX_EMBED_DESCRIPTION = 4096


def build_hub_embed(content: str, image_url: Optional[str] = None, guild_name: Optional[str] = None) -> discord.Embed:
    embed = discord.Embed(description=truncate(content, MAX_EMBED_DESCRIPTION) or None, color=discord.Color.blurple())
    if image_url:
        embed.set_image(url=image_url)
    if guild_name:
        embed.set_footer(text=f"From: {guild_name}")
    return embed


def build_hub_payload(
    mode: ConnectionMode,
    content: str,
    *,
    username: Optional[str] = None,
    avatar_url: Optional[str] = None,
    image_url: Optional[str] = None,
    guild_name: Optional[str] = None,
) -> Dict[str, Any]:
    """Webhook body for one copy of a hub message.

    Compact mode sends plain text (image link appended); embed mode wraps
    the message in an embed. ``username`` and ``avatar_url`` are omitted for
    edits, which cannot change them.
    """
    if mode == ConnectionMode.COMPACT:
        text = f"{content}\n{image_url}" if image_url and content else (content or image_url or "")
        return build_payload(truncate(text, MAX_CONTENT_LENGTH), username=username, avatar_url=avatar_url)

    payload = build_payload(embeds=[build_hub_embed(content, image_url, guild_name)], username=username, avatar_url=avatar_url)
    # clear any text left from a compact rendering on edit
    payload["content"] = ""
    return payload

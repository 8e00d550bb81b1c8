"""
Embeds and button rows for userphone notifications.

Each builder returns an ``(embed, view)`` pair. Views are only used for
their components (``View.to_components()``) since notifications go out
through webhooks; button clicks arrive as interactions and are routed by
``custom_id`` in the userphone cog.

Views must be built inside a running event loop.
"""

from __future__ import annotations

import datetime
from typing import Optional, Tuple

import discord

from interchat.util.format_utils import format_duration

HANGUP_BUTTON_ID = "call:hangup"
SKIP_BUTTON_ID = "call:skip"
NEW_CALL_BUTTON_ID = "call:new-call"
RETRY_BUTTON_ID = "call:retry"

CALL_COLORS = {
    "connected": discord.Color.green(),
    "ended": discord.Color.blurple(),
    "timeout": discord.Color.gold(),
    "error": discord.Color.red(),
    "info": discord.Color.light_grey(),
}


def _base_embed(title: str, description: str, color: discord.Color) -> discord.Embed:
    return discord.Embed(
        title=title,
        description=description,
        color=color,
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )


def _button(label: str, custom_id: str, style: discord.ButtonStyle, emoji: str) -> discord.ui.Button:
    return discord.ui.Button(label=label, custom_id=custom_id, style=style, emoji=emoji)


def build_call_matched(message: str = "You're now connected to another server. Say hello! 👋") -> Tuple[discord.Embed, discord.ui.View]:
    """Connected notice with End Call and Skip controls."""
    embed = _base_embed("Call Connected!", message, CALL_COLORS["connected"])
    view = discord.ui.View(timeout=None)
    view.add_item(_button("End Call", HANGUP_BUTTON_ID, discord.ButtonStyle.danger, "📞"))
    view.add_item(_button("Skip", SKIP_BUTTON_ID, discord.ButtonStyle.secondary, "⏭️"))
    return embed, view


def build_call_ended(duration_ms: Optional[int] = None, message_count: Optional[int] = None) -> Tuple[discord.Embed, discord.ui.View]:
    """End-of-call summary with a New Call button.

    The stats line is only shown when both the duration and the message
    count are known.
    """
    description = "Thanks for using InterChat! 🎉"
    if duration_ms and message_count is not None:
        description += f"\n⏱️ {format_duration(duration_ms)} • 💬 {message_count} messages"

    embed = _base_embed("Call Ended", description, CALL_COLORS["ended"])
    view = discord.ui.View(timeout=None)
    view.add_item(_button("New Call", NEW_CALL_BUTTON_ID, discord.ButtonStyle.primary, "📞"))
    return embed, view


def build_call_timeout() -> Tuple[discord.Embed, discord.ui.View]:
    embed = _base_embed("No Match Found", "⏰ Try again or explore hubs for more connections!", CALL_COLORS["timeout"])
    view = discord.ui.View(timeout=None)
    view.add_item(_button("Try Again", RETRY_BUTTON_ID, discord.ButtonStyle.primary, "🔄"))
    return embed, view


def build_connection_error(retryable: bool = True) -> Tuple[discord.Embed, Optional[discord.ui.View]]:
    embed = _base_embed("Connection Error", "❌ Please try again", CALL_COLORS["error"])
    if not retryable:
        return embed, None
    view = discord.ui.View(timeout=None)
    view.add_item(_button("Try Again", RETRY_BUTTON_ID, discord.ButtonStyle.primary, "🔄"))
    return embed, view


def build_participant_notice(username: str, joined: bool, guild_name: Optional[str] = None) -> discord.Embed:
    """Small notice when someone starts or stops talking on the other side."""
    where = f" from **{guild_name}**" if guild_name else ""
    if joined:
        return _base_embed("Participant Joined", f"👋 **{username}**{where} joined the call", CALL_COLORS["info"])
    return _base_embed("Participant Left", f"🚪 **{username}**{where} left the call", CALL_COLORS["info"])


def build_system_message(message: str) -> discord.Embed:
    return discord.Embed(description=message, color=CALL_COLORS["info"])

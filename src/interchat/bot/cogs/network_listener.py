"""
Hub network listener: relays messages posted in connected channels, mirrors
edits and deletions of the originals, and keeps the reaction buttons of
every copy in sync.

Raw events are used for edits, deletions and reactions so messages that
fell out of the client's message cache are still handled.
"""

from typing import Any, List

import discord
from discord.ext import commands

from interchat.datatypes.network_datatypes import HubMessage
from interchat.network.broadcast_service import BroadcastService
from interchat.network.reaction_service import ReactionService
from interchat.network.reactions import sort_reactions
from interchat.ui.reaction_buttons import VIEW_ALL_SUFFIX, parse_reaction_custom_id
from interchat.util.format_utils import to_unix_ms, truncate
from interchat.util.logger import get_logger

logger = get_logger("network_listener")

AUDIT_LOG_LOOKBACK = 10


class NetworkListenerCog(commands.Cog):
    """Event listeners for hub networks."""

    def __init__(self, discord_bot_instance, broadcasts: BroadcastService, reactions: ReactionService):
        self.bot = discord_bot_instance
        self.broadcasts = broadcasts
        self.reactions = reactions
        logger.info("[NETWORK LISTENER] Network listener cog loaded")

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.webhook_id or message.guild is None:
            return
        if not message.content and not message.attachments:
            return

        hub_message = HubMessage(
            id=str(message.id),
            channel_id=str(message.channel.id),
            guild_id=str(message.guild.id),
            author_id=str(message.author.id),
            author_username=message.author.display_name,
            content=message.content,
            created_at=to_unix_ms(message.created_at),
            author_avatar_url=message.author.display_avatar.url,
            guild_name=message.guild.name,
            image_url=message.attachments[0].url if message.attachments else None,
        )
        result = await self.broadcasts.relay_message(hub_message)
        if result is not None and result.failed_channel_ids:
            logger.debug("[NETWORK LISTENER] Message %s reached %d/%d channels", message.id, len(result.delivered), result.total)

    @commands.Cog.listener(name="on_raw_message_edit")
    async def on_raw_message_edit(self, payload: discord.RawMessageUpdateEvent):
        data = payload.data or {}
        if "content" not in data:
            return
        author = data.get("author") or {}
        if author.get("bot") or data.get("webhook_id"):
            return

        attachments = data.get("attachments") or []
        image_url = attachments[0].get("url") if attachments else None
        await self.broadcasts.handle_message_edit(str(payload.message_id), str(payload.channel_id), data["content"], image_url)

    @commands.Cog.listener(name="on_raw_message_delete")
    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent):
        entries: List[Any] = []
        guild = self.bot.get_guild(payload.guild_id) if payload.guild_id else None
        if guild is not None:
            try:
                entries = [
                    entry async for entry in guild.audit_logs(
                        limit=AUDIT_LOG_LOOKBACK, action=discord.AuditLogAction.message_delete,
                    )
                ]
            except (discord.Forbidden, discord.HTTPException) as exc:
                logger.debug("[NETWORK LISTENER] Audit log unavailable in %s: %s", guild.id, exc)

        author_id = str(payload.cached_message.author.id) if payload.cached_message else None
        await self.broadcasts.handle_message_delete(
            str(payload.message_id),
            str(payload.channel_id),
            author_id=author_id,
            audit_entries=entries,
        )

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    @commands.Cog.listener(name="on_raw_reaction_add")
    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent):
        if self.bot.user is not None and payload.user_id == self.bot.user.id:
            return
        if payload.member is not None and payload.member.bot:
            return
        await self.reactions.handle_reaction_add(str(payload.message_id), str(payload.user_id), str(payload.emoji))

    @commands.Cog.listener(name="on_raw_reaction_remove")
    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent):
        if self.bot.user is not None and payload.user_id == self.bot.user.id:
            return
        await self.reactions.handle_reaction_remove(str(payload.message_id), str(payload.user_id), str(payload.emoji))

    @commands.Cog.listener(name="on_interaction")
    async def on_interaction(self, interaction: discord.Interaction):
        """Reaction buttons under relayed copies."""
        if interaction.type != discord.InteractionType.component or interaction.message is None:
            return
        emoji = parse_reaction_custom_id((interaction.data or {}).get("custom_id", ""))
        if emoji is None:
            return

        message_id = str(interaction.message.id)
        if emoji == VIEW_ALL_SUFFIX:
            reactions = await self.reactions.get_reactions(message_id)
            lines = [f"{e} **{len(users)}**: " + ", ".join(f"<@{u}>" for u in users) for e, users in sort_reactions(reactions)]
            await interaction.response.send_message(truncate("\n".join(lines) or "No reactions yet.", 2000), ephemeral=True)
            return

        await interaction.response.defer()
        outcome = await self.reactions.toggle_reaction(message_id, str(interaction.user.id), emoji)
        if outcome is None:
            await interaction.followup.send("You can't react with that right now.", ephemeral=True)


def setup(discord_bot_instance, broadcasts: BroadcastService, reactions: ReactionService) -> None:
    """Register the NetworkListenerCog with the bot."""
    discord_bot_instance.add_cog(NetworkListenerCog(discord_bot_instance, broadcasts, reactions))

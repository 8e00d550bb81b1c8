"""
Userphone cog: ``/call``, ``/hangup``, ``/skip`` and ``/report``, the call
buttons, and relaying of messages typed in a channel that is in a call.

All replies come from the ``CallResult`` the call manager returns; failures
are answered ephemerally.
"""

import discord
from discord import Option
from discord.ext import commands

from interchat.ui.call_embeds import HANGUP_BUTTON_ID, NEW_CALL_BUTTON_ID, RETRY_BUTTON_ID, SKIP_BUTTON_ID
from interchat.userphone.calling_library import CallingLibrary
from interchat.datatypes.call_datatypes import CallResult
from interchat.util.logger import get_logger

logger = get_logger("userphone_cmds")


class UserphoneCog(commands.Cog):
    """Slash commands and listeners for random calls between servers."""

    def __init__(self, discord_bot_instance, calling: CallingLibrary):
        self.bot = discord_bot_instance
        self.calling = calling
        logger.info("[USERPHONE CMDS] Userphone cog loaded")

    async def _reply(self, ctx: discord.ApplicationContext, result: CallResult) -> None:
        await ctx.respond(result.message, ephemeral=not result.success)

    @commands.slash_command(name="call", description="Start a call with a random server.")
    @commands.guild_only()
    async def call(self, ctx: discord.ApplicationContext):
        await ctx.defer()
        result = await self.calling.calls.initiate_call(ctx.channel, str(ctx.user.id))
        await self._reply(ctx, result)

    @commands.slash_command(name="hangup", description="End the current call or leave the queue.")
    @commands.guild_only()
    async def hangup(self, ctx: discord.ApplicationContext):
        await ctx.defer()
        result = await self.calling.calls.hangup_call(str(ctx.channel_id))
        await self._reply(ctx, result)

    @commands.slash_command(name="skip", description="Skip the current call and find someone new.")
    @commands.guild_only()
    async def skip(self, ctx: discord.ApplicationContext):
        await ctx.defer()
        result = await self.calling.calls.skip_call(str(ctx.channel_id), str(ctx.user.id))
        await self._reply(ctx, result)

    @commands.slash_command(name="report", description="Report the current call to the moderators.")
    @commands.guild_only()
    async def report(
        self,
        ctx: discord.ApplicationContext,
        reason: Option(str, "What happened in this call.", required=True),
    ):
        await ctx.defer(ephemeral=True)
        result = await self.calling.calls.report_call(str(ctx.channel_id), str(ctx.user.id), reason)
        await ctx.respond(result.message, ephemeral=True)

    @commands.Cog.listener(name="on_message")
    async def on_message(self, message: discord.Message):
        """Relay messages written in a channel that is in a call."""
        if message.author.bot or message.webhook_id or message.guild is None:
            return
        if not message.content and not message.attachments:
            return

        channel_id = str(message.channel.id)
        if await self.calling.cache.get_active_call(channel_id) is None:
            return

        attachment_url = message.attachments[0].url if message.attachments else None
        delivered = await self.calling.calls.update_call_message(
            channel_id,
            str(message.author.id),
            message.author.display_name,
            message.content,
            attachment_url=attachment_url,
            avatar_url=message.author.display_avatar.url,
        )
        if not delivered:
            logger.debug("[USERPHONE CMDS] Message %s in %s was not relayed", message.id, channel_id)

    @commands.Cog.listener(name="on_interaction")
    async def on_interaction(self, interaction: discord.Interaction):
        """Buttons attached to call notifications."""
        if interaction.type != discord.InteractionType.component or interaction.channel_id is None:
            return
        custom_id = (interaction.data or {}).get("custom_id")
        if custom_id not in (HANGUP_BUTTON_ID, SKIP_BUTTON_ID, NEW_CALL_BUTTON_ID, RETRY_BUTTON_ID):
            return

        channel_id = str(interaction.channel_id)
        user_id = str(interaction.user.id)
        await interaction.response.defer(ephemeral=True)

        if custom_id == HANGUP_BUTTON_ID:
            result = await self.calling.calls.hangup_call(channel_id)
        elif custom_id == SKIP_BUTTON_ID:
            result = await self.calling.calls.skip_call(channel_id, user_id)
        else:
            result = await self.calling.calls.initiate_call(interaction.channel, user_id)
        await interaction.followup.send(result.message, ephemeral=True)


def setup(discord_bot_instance, calling: CallingLibrary) -> None:
    """Register the UserphoneCog with the bot."""
    discord_bot_instance.add_cog(UserphoneCog(discord_bot_instance, calling))

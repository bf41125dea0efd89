"""
Voice protection for a configured set of users.

When a protected user is disconnected, server-muted, server-deafened or
moved, the responsible member is looked up in the audit log and gets the
same treatment back.
"""

import asyncio
import logging
import random
from typing import List, Optional

import nextcord
from nextcord.ext import commands

from audit import find_disconnect_executor, find_update_executor, find_move_executor
from config import BotConfig

logger = logging.getLogger(__name__)

# Voice channels without a user limit are treated as holding this many
UNLIMITED_CHANNEL_SIZE = 99


def find_random_voice_channel(guild: nextcord.Guild, preferred_category=None, exclude=None):
    """Pick a random voice channel with room, preferring ``preferred_category``."""
    exclude_id = getattr(exclude, "id", None)
    voice_channels = [
        channel for channel in guild.voice_channels
        if len(channel.members) < (channel.user_limit or UNLIMITED_CHANNEL_SIZE)
        and channel.id != exclude_id
    ]

    if preferred_category is not None:
        same_category = [c for c in voice_channels if c.category_id == preferred_category.id]
        if same_category:
            voice_channels = same_category

    if not voice_channels:
        return None
    return random.choice(voice_channels)


class ProtectionManager(commands.Cog):
    """Retaliates against whoever mutes, deafens, moves or disconnects a protected user."""

    DISCONNECT_LOG_LIMIT = 20
    UPDATE_LOG_LIMIT = 10

    def __init__(self, bot: commands.Bot, config: BotConfig):
        self.bot = bot
        self.config = config
        # Pause between muting and disconnecting a punished member
        self.punish_delay = 1.0

    @commands.Cog.listener()
    async def on_voice_state_update(self, member: nextcord.Member,
                                    before: nextcord.VoiceState, after: nextcord.VoiceState):
        if not self.config.is_protected(member.id):
            return

        if before.channel and not after.channel:
            logger.info(f"🚨 Protected user {member} was disconnected from voice channel!")
            await self.handle_protected_user_disconnected(member, before)
            return

        if not (before.channel and after.channel):
            return

        if not before.mute and after.mute:
            logger.info(f"🚨 Protected user {member} was server muted!")
            await self.handle_protected_user_muted(member)

        if not before.deaf and after.deaf:
            logger.info(f"🚨 Protected user {member} was server deafened!")
            await self.handle_protected_user_deafened(member)

        if before.channel.id != after.channel.id:
            logger.info(f"🚨 Protected user {member} was moved from {before.channel.name} to {after.channel.name}!")
            await self.handle_protected_user_moved(member, before, after)

    async def fetch_audit_entries(self, guild: nextcord.Guild, action: nextcord.AuditLogAction,
                                  limit: int) -> List[nextcord.AuditLogEntry]:
        logger.info(f"🔍 Checking audit logs for {action.name} actions in {guild.name}...")
        entries = [entry async for entry in guild.audit_logs(limit=limit, action=action)]
        logger.info(f"📋 Found {len(entries)} {action.name} entries")
        return entries

    async def resolve_member(self, guild: nextcord.Guild, user) -> Optional[nextcord.Member]:
        member = guild.get_member(user.id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user.id)
        except nextcord.NotFound:
            logger.warning(f"⚠️ Could not fetch member {user} - they may have left the server")
            return None

    async def handle_protected_user_disconnected(self, protected: nextcord.Member, before: nextcord.VoiceState):
        guild = protected.guild
        try:
            try:
                entries = await self.fetch_audit_entries(
                    guild, nextcord.AuditLogAction.member_disconnect, self.DISCONNECT_LOG_LIMIT)
            except nextcord.HTTPException as e:
                logger.error(f"❌ Error fetching member_disconnect audit logs: {e}")
                entries = []

            entry = find_disconnect_executor(entries, protected.id)
            if entry is None:
                logger.warning("⚠️ Could not identify who disconnected the protected user via audit logs")
                return

            executor = entry.user
            logger.info(f"🎯 CONFIRMED: {executor} ({executor.id}) disconnected protected user in {guild.name}")

            if executor.id == protected.id:
                logger.info("ℹ️ Protected user disconnected themselves - no punishment needed")
                return
            if executor.bot:
                logger.info("ℹ️ Executor is a bot - no punishment needed")
                return

            member = await self.resolve_member(guild, executor)
            if member is None:
                return

            logger.info(f"⚖️ Taking action against {executor} for disconnecting protected user...")
            await self.punish_user(member, f"Disconnected protected user: {protected}")
        except nextcord.HTTPException as e:
            logger.error(f"❌ Error in protection system: {e}")

    async def punish_user(self, member: nextcord.Member, reason: str) -> bool:
        """Mute, then disconnect, a member who is in voice."""
        try:
            logger.info(f"🛡️ Starting punishment process for {member}...")
            if not (member.voice and member.voice.channel):
                logger.warning(f"⚠️ {member} is not in voice channel, cannot punish")
                return False

            logger.info(f"🎯 {member} is in voice channel: {member.voice.channel.name}")
            logger.info(f"🔇 Step 1: Muting {member}...")
            await member.edit(mute=True, reason=reason)
            logger.info(f"✅ Successfully voice muted {member}")

            await asyncio.sleep(self.punish_delay)

            logger.info(f"⚡ Step 2: Disconnecting {member}...")
            await member.move_to(None, reason=reason)
            logger.info(f"✅ Successfully disconnected {member} from voice channel")
            logger.info(f"🎉 Punishment completed for {member}!")
            return True
        except nextcord.HTTPException as e:
            logger.error(f"❌ Failed to punish {member}: {e}")
            return False

    async def _in_voice_executor(self, guild: nextcord.Guild, entry, protected: nextcord.Member):
        """Resolve an audit entry's executor to a member who is currently in voice."""
        if entry is None or entry.user.id == protected.id:
            return None
        executor = entry.user
        member = await self.resolve_member(guild, executor)
        if member is None or not (member.voice and member.voice.channel):
            logger.warning(f"⚠️ {executor} is not in voice channel, cannot retaliate")
            return None
        return member

    async def handle_protected_user_muted(self, protected: nextcord.Member):
        guild = protected.guild
        try:
            entries = await self.fetch_audit_entries(
                guild, nextcord.AuditLogAction.member_update, self.UPDATE_LOG_LIMIT)
            entry = find_update_executor(entries, protected.id, "mute")
            member = await self._in_voice_executor(guild, entry, protected)
            if member is None:
                return

            logger.info(f"🔇 Retaliating: Muting {member} for muting protected user")
            await member.edit(mute=True, reason=f"Muted protected user: {protected}")
            logger.info(f"✅ Successfully muted {member} in retaliation")
        except nextcord.HTTPException as e:
            logger.error(f"❌ Error handling protected user mute: {e}")

    async def handle_protected_user_deafened(self, protected: nextcord.Member):
        guild = protected.guild
        try:
            entries = await self.fetch_audit_entries(
                guild, nextcord.AuditLogAction.member_update, self.UPDATE_LOG_LIMIT)
            entry = find_update_executor(entries, protected.id, "deaf")
            member = await self._in_voice_executor(guild, entry, protected)
            if member is None:
                return

            logger.info(f"🔇 Retaliating: Deafening {member} for deafening protected user")
            await member.edit(deafen=True, reason=f"Deafened protected user: {protected}")
            logger.info(f"✅ Successfully deafened {member} in retaliation")
        except nextcord.HTTPException as e:
            logger.error(f"❌ Error handling protected user deafen: {e}")

    async def handle_protected_user_moved(self, protected: nextcord.Member,
                                          before: nextcord.VoiceState, after: nextcord.VoiceState):
        guild = protected.guild
        reason = f"Moved protected user: {protected}"
        try:
            entries = await self.fetch_audit_entries(
                guild, nextcord.AuditLogAction.member_move, self.UPDATE_LOG_LIMIT)
            entry = find_move_executor(entries, protected.id, after.channel.id)
            member = await self._in_voice_executor(guild, entry, protected)
            if member is None:
                return

            target = find_random_voice_channel(guild, before.channel.category, exclude=member.voice.channel)
            if target is not None:
                logger.info(f"🎲 Moving {member} to random channel: {target.name}")
                await member.move_to(target, reason=reason)
                logger.info(f"✅ Successfully moved {member} to {target.name} in retaliation")
            else:
                logger.warning(f"⚠️ No suitable random voice channel found, disconnecting {member} instead")
                await member.move_to(None, reason=reason)
                logger.info(f"✅ Successfully disconnected {member} as retaliation")
        except nextcord.HTTPException as e:
            logger.error(f"❌ Error handling protected user move: {e}")

"""
Keeps the bot parked in one voice channel and renames users who were moved out of it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

import nextcord
from nextcord.ext import commands

from config import BotConfig

logger = logging.getLogger(__name__)


class VoiceManager(commands.Cog):
    """24/7 voice presence plus temporary nicknames after forced moves."""

    JOIN_RETRY_DELAY = 30
    REJOIN_RETRY_DELAY = 10
    MOVED_REJOIN_DELAY = 3
    DISCONNECTED_REJOIN_DELAY = 2
    NICKNAME_RESET_DELAY = 5 * 60

    def __init__(self, bot: commands.Bot, config: BotConfig):
        self.bot = bot
        self.config = config
        self.original_nicknames: Dict[int, Optional[str]] = {}
        self.nickname_timers: Dict[int, asyncio.Task] = {}
        self.moved_users: Set[int] = set()
        self.original_bot_nickname: Optional[str] = None
        self.bot_nickname_timer: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()
        self._ready_seen = False

    def schedule(self, delay: float, callback: Callable[[], Awaitable[None]]) -> asyncio.Task:
        """Run ``callback`` after ``delay`` seconds in the background."""
        async def runner():
            await asyncio.sleep(delay)
            await callback()

        task = asyncio.create_task(runner())
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def cancel_timers(self) -> None:
        """Cancel every pending rejoin and nickname timer."""
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()
        self.nickname_timers.clear()
        self.bot_nickname_timer = None

    def designated_channel(self) -> Optional[nextcord.abc.GuildChannel]:
        if not self.config.voice_channel_id:
            return None
        return self.bot.get_channel(self.config.voice_channel_id)

    @commands.Cog.listener()
    async def on_ready(self):
        channel = self.designated_channel()
        if channel is None:
            return

        # READY fires again after a re-identify; keep the nickname seen on the first one.
        if not self._ready_seen:
            self._ready_seen = True
            self.original_bot_nickname = channel.guild.me.nick
            logger.info(f"💾 Stored original nickname: {self.original_bot_nickname or channel.guild.me.name}")
            logger.info("🎵 Voice channel ID provided - will maintain 24/7 voice presence")
        await self.join_voice_channel()

    async def join_voice_channel(self, retry: bool = True) -> bool:
        """Connect to the designated channel, or move there if connected elsewhere.

        Returns whether the bot ended up in the channel. On a gateway failure a
        new attempt is scheduled after ``JOIN_RETRY_DELAY`` unless ``retry`` is off.
        """
        if not self.config.voice_channel_id:
            return False

        channel = self.designated_channel()
        if not isinstance(channel, nextcord.VoiceChannel):
            logger.error("❌ Voice channel not found or is not a voice channel")
            return False

        try:
            voice_client = channel.guild.voice_client
            if voice_client and voice_client.is_connected():
                if voice_client.channel.id != channel.id:
                    await voice_client.move_to(channel)
            else:
                await channel.connect(reconnect=True)
        except (asyncio.TimeoutError, nextcord.ClientException, nextcord.HTTPException) as e:
            logger.error(f"❌ Failed to join voice channel: {e}")
            if retry:
                self.schedule(self.JOIN_RETRY_DELAY, self.join_voice_channel)
            return False

        logger.info("✅ Successfully connected to voice channel for 24/7 presence")
        return True

    async def rejoin_designated_channel(self) -> None:
        if not isinstance(self.designated_channel(), nextcord.VoiceChannel):
            return

        if await self.join_voice_channel(retry=False):
            logger.info("✅ Successfully returned to designated voice channel")
        else:
            logger.error("❌ Error rejoining designated channel")
            self.schedule(self.REJOIN_RETRY_DELAY, self.rejoin_designated_channel)

    @commands.Cog.listener()
    async def on_voice_state_update(self, member: nextcord.Member,
                                    before: nextcord.VoiceState, after: nextcord.VoiceState):
        if self.bot.user and member.id == self.bot.user.id:
            await self.handle_bot_voice_change(before, after)

        if self.config.is_protected(member.id) and before.channel and not after.channel:
            # Renamed once they come back to the designated channel
            self.moved_users.add(member.id)

        if member.id in self.moved_users and after.channel and after.channel.id == self.config.voice_channel_id:
            logger.info(f"🔄 User {member} rejoined their designated voice channel")
            await self.handle_user_rejoin(member)

    async def handle_bot_voice_change(self, before: nextcord.VoiceState, after: nextcord.VoiceState) -> None:
        if not self.config.voice_channel_id:
            return

        if after.channel and after.channel.id != self.config.voice_channel_id:
            logger.info(f"🔄 Bot was moved to channel {after.channel.name}, returning to designated "
                        f"channel in {self.MOVED_REJOIN_DELAY} seconds...")

            async def return_and_rename():
                await self.rejoin_designated_channel()
                await self.change_bot_nickname()

            self.schedule(self.MOVED_REJOIN_DELAY, return_and_rename)

        if before.channel and not after.channel:
            logger.info("🔄 Bot was disconnected from voice, reconnecting to designated channel...")
            self.schedule(self.DISCONNECTED_REJOIN_DELAY, self.rejoin_designated_channel)

    async def handle_user_rejoin(self, member: nextcord.Member) -> None:
        try:
            if member.id not in self.original_nicknames:
                self.original_nicknames[member.id] = member.nick

            await member.edit(nick=self.config.rename_nickname, reason="User rejoined after being moved")
            logger.info(f"🏷️ Changed display name for {member} to \"{self.config.rename_nickname}\"")
        except nextcord.HTTPException as e:
            logger.error(f"❌ Failed to change display name for {member}: {e}")
            return

        previous = self.nickname_timers.pop(member.id, None)
        if previous:
            previous.cancel()

        async def restore():
            try:
                await member.edit(nick=self.original_nicknames.get(member.id),
                                  reason="Restoring original display name")
                logger.info(f"🏷️ Restored original display name for {member}")
            except nextcord.HTTPException as e:
                logger.error(f"❌ Failed to restore display name for {member}: {e}")
                return
            self.original_nicknames.pop(member.id, None)
            self.nickname_timers.pop(member.id, None)
            self.moved_users.discard(member.id)

        self.nickname_timers[member.id] = self.schedule(self.NICKNAME_RESET_DELAY, restore)

    async def change_bot_nickname(self) -> None:
        channel = self.designated_channel()
        if channel is None:
            return
        me = channel.guild.me

        try:
            await me.edit(nick=self.config.rename_nickname)
            logger.info(f"🏷️ Changed own nickname to \"{self.config.rename_nickname}\" in {channel.guild.name}")
        except nextcord.HTTPException as e:
            logger.error(f"❌ Failed to change own nickname: {e}")
            return

        if self.bot_nickname_timer:
            self.bot_nickname_timer.cancel()

        async def restore():
            try:
                await me.edit(nick=self.original_bot_nickname)
                logger.info(f"🏷️ Restored original nickname: {self.original_bot_nickname or me.name}")
            except nextcord.HTTPException as e:
                logger.error(f"❌ Failed to restore original nickname: {e}")
            self.bot_nickname_timer = None

        self.bot_nickname_timer = self.schedule(self.NICKNAME_RESET_DELAY, restore)

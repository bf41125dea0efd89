#!/usr/bin/env python3
"""
GuardRelay - Discord message forwarder and voice protection bot.
Forwards a source channel to a webhook, keeps a 24/7 voice presence, retaliates
against whoever mutes, deafens, moves or disconnects protected users, and
answers purchase report requests.
"""

import sys
import asyncio
import logging
import signal
from typing import Optional

import aiohttp
import nextcord
from nextcord.ext import commands
import uvicorn
from dotenv import load_dotenv

from config import BotConfig, ConfigError, load_config
from forwarder import MessageForwarder
from protection import ProtectionManager
from report import COMMAND_PREFIX, ReportManager
from voice_presence import VoiceManager
from webhook import WebhookSender
import web_main

# Configure logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


class GuardRelayBot:
    """Owns the gateway client, the HTTP session and the keep-alive server."""

    def __init__(self):
        self.config: Optional[BotConfig] = None
        self.bot: Optional[commands.Bot] = None
        self.session: Optional[aiohttp.ClientSession] = None
        self.webhook: Optional[WebhookSender] = None
        self.voice_manager: Optional[VoiceManager] = None
        self.web_server: Optional[uvicorn.Server] = None
        self.web_task: Optional[asyncio.Task] = None

        # Graceful shutdown
        self.shutdown_event = asyncio.Event()

    def load_config(self) -> BotConfig:
        self.config = load_config()
        logging.getLogger().setLevel(self.config.log_level)
        return self.config

    def log_ready_banner(self) -> None:
        config = self.config
        logger.info(f"✅ Connected as: {self.bot.user}")
        logger.info(f"📡 Monitoring channel: {config.source_channel_id}")
        if config.webhook_url:
            logger.info("📤 Forwarding to webhook")
        else:
            logger.info(f"📤 Forwarding to channel: {config.destination_channel_id}")
        protected = ', '.join(str(uid) for uid in sorted(config.protected_users)) or "none"
        logger.info(f"🛡️ Enhanced protection enabled for users: {protected}")
        logger.info("🌍 Monitoring voice activities across ALL servers and channels:")
        logger.info("   🔇 Mute protection - Retaliates when protected users are muted")
        logger.info("   🔊 Deafen protection - Retaliates when protected users are deafened")
        logger.info("   🎯 Move protection - Moves attackers to random channels")
        logger.info("   ⚡ Disconnect protection - Punishes those who disconnect protected users")
        if config.voice_channel_id:
            logger.info(f"🎵 Voice channel: {config.voice_channel_id}")
            logger.info("🔄 Auto-rejoin enabled - bot will return to designated voice channel if moved")
            logger.info("🏷️ Display name change system enabled for moved users")
        logger.info(f"📊 Purchase reports read channel: {config.history_channel_id}")
        logger.info("🔄 Ready to forward messages and provide enhanced voice protection across all servers...")

    def create_bot(self) -> commands.Bot:
        """Create the gateway client and register every listener."""
        intents = nextcord.Intents.default()
        intents.message_content = True
        intents.members = True
        intents.voice_states = True

        bot = commands.Bot(command_prefix=COMMAND_PREFIX, intents=intents, help_command=None)
        self.bot = bot

        @bot.event
        async def on_ready():
            self.log_ready_banner()

        @bot.event
        async def on_error(event, *args, **kwargs):
            logger.exception(f"❌ Discord client error in event {event}")

        @bot.event
        async def on_command_error(ctx, error):
            # Any other "!" chatter in the channel is not a command for this bot
            if isinstance(error, commands.CommandNotFound):
                return
            logger.error(f"❌ Command {ctx.command} failed: {error}")

        self.voice_manager = VoiceManager(bot, self.config)
        bot.add_cog(MessageForwarder(bot, self.config, self.webhook))
        bot.add_cog(self.voice_manager)
        bot.add_cog(ProtectionManager(bot, self.config))
        bot.add_cog(ReportManager(bot, self.config))

        return bot

    async def setup_session(self):
        """Setup HTTP session used for webhook delivery."""
        timeout = aiohttp.ClientTimeout(total=30, connect=10)
        self.session = aiohttp.ClientSession(
            timeout=timeout,
            headers={'User-Agent': 'GuardRelay/1.0'}
        )
        logger.info("HTTP session initialized")

        if self.config.webhook_url:
            self.webhook = WebhookSender(self.session, self.config.webhook_url)

    async def start_web_server(self):
        """Serve the keep-alive endpoints in the same event loop."""
        web_main.set_bot_instance(self)
        server_config = uvicorn.Config(web_main.app, host="0.0.0.0", port=self.config.port, log_level="warning")
        self.web_server = uvicorn.Server(server_config)
        self.web_task = asyncio.create_task(self.web_server.serve())
        logger.info(f"🌐 Web server listening on 0.0.0.0:{self.config.port}")

    async def cleanup(self):
        """Cleanup resources."""
        logger.info("Cleaning up resources...")

        if self.web_server:
            self.web_server.should_exit = True
            if self.web_task:
                await asyncio.gather(self.web_task, return_exceptions=True)

        if self.bot:
            for voice_client in list(self.bot.voice_clients):
                await voice_client.disconnect(force=True)
            await self.bot.close()
        if self.voice_manager:
            self.voice_manager.cancel_timers()
        if self.session:
            await self.session.close()
        logger.info("Cleanup completed")

    def signal_handler(self, signum, frame):
        """Handle shutdown signals."""
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.shutdown_event.set()

    async def run(self) -> int:
        """Run the bot until a shutdown signal or a fatal gateway error."""
        try:
            signal.signal(signal.SIGINT, self.signal_handler)
            signal.signal(signal.SIGTERM, self.signal_handler)

            self.load_config()
            await self.setup_session()
            self.create_bot()
            await self.start_web_server()

            bot_task = asyncio.create_task(self.bot.start(self.config.token))
            shutdown_task = asyncio.create_task(self.shutdown_event.wait())

            done, _ = await asyncio.wait({bot_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)

            exit_code = 0
            if bot_task in done:
                shutdown_task.cancel()
                error = bot_task.exception()
                if isinstance(error, nextcord.LoginFailure):
                    logger.error(f"❌ Failed to login: {error}")
                    logger.error("💡 Make sure your Discord token is valid and properly set in environment variables")
                    exit_code = 1
                elif error is not None:
                    logger.error(f"❌ Discord client stopped: {error}")
                    exit_code = 1
            else:
                logger.info("Initiating graceful shutdown...")

            await self.cleanup()
            return exit_code

        except ConfigError as e:
            logger.error(f"❌ {e}")
            await self.cleanup()
            return 1
        except Exception as e:
            logger.error(f"Failed to start bot: {e}")
            await self.cleanup()
            raise


async def main() -> int:
    """Main entry point."""
    logger.info("🚀 Starting GuardRelay...")
    bot = GuardRelayBot()
    return await bot.run()


def cli() -> None:
    load_dotenv()
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()

"""
Relays text posted in the source channel to a webhook (or a destination channel).
"""

import re
import logging
from typing import Optional

import nextcord
from nextcord.ext import commands

from config import BotConfig
from webhook import WebhookSender, WebhookError

logger = logging.getLogger(__name__)

APP_SUFFIX = " APP"

# Transaction log lines that should carry the author's name
LOG_PATTERNS = [
    re.compile(r"^Withdrawn\s+", re.IGNORECASE),
    re.compile(r"^Deposited\s+", re.IGNORECASE),
    re.compile(r"^Gozashtan\s+Pool", re.IGNORECASE),
    re.compile(r"^Bardashtan\s+Pool", re.IGNORECASE),
]


def extract_username(display_name: Optional[str]) -> str:
    """Strip the ' APP' suffix Discord shows on application accounts."""
    if not display_name:
        return "Unknown"
    if display_name.endswith(APP_SUFFIX):
        return display_name[:-len(APP_SUFFIX)]
    return display_name


def format_log_message(content: str, username: str) -> str:
    """Append the username to transaction log lines, leave everything else alone."""
    stripped = content.strip()
    if any(pattern.search(stripped) for pattern in LOG_PATTERNS):
        return f"{content} - {username}"
    return content


def preview(text: str, limit: int = 50) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


class MessageForwarder(commands.Cog):
    """Forwards every non-empty message from the source channel."""

    def __init__(self, bot: commands.Bot, config: BotConfig, webhook: Optional[WebhookSender] = None):
        self.bot = bot
        self.config = config
        self.webhook = webhook

    async def deliver(self, content: str, username: str) -> None:
        if self.webhook:
            await self.webhook.send(content, username)
            return

        channel = self.bot.get_channel(self.config.destination_channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(self.config.destination_channel_id)
        await channel.send(content)

    @commands.Cog.listener()
    async def on_message(self, message: nextcord.Message):
        # Ignore our own messages to prevent loops
        if message.author.id == self.bot.user.id:
            return
        if message.channel.id != self.config.source_channel_id:
            return
        if not message.content or not message.content.strip():
            return

        try:
            author = message.author
            username = extract_username(getattr(author, "display_name", None) or author.name)
            content = format_log_message(message.content, username)

            await self.deliver(content, username)
            logger.info(f"✅ Message sent from {username}: \"{preview(content)}\"")
        except (WebhookError, nextcord.HTTPException) as e:
            logger.error(f"❌ Error sending message: {e}")
        except Exception as e:
            logger.error(f"❌ Unexpected error forwarding message {message.id}: {e}")

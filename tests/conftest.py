"""Shared fixtures and fakes for gateway objects."""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import nextcord
import pytest

from config import BotConfig

BOT_ID = 1000
SOURCE_CHANNEL_ID = 111
DESTINATION_CHANNEL_ID = 222
VOICE_CHANNEL_ID = 333
PROTECTED_ID = 42
WEBHOOK_URL = "https://discord.com/api/webhooks/123/abc"


def not_found():
    return nextcord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Member")


def make_entry(seconds_ago, executor=None, target=None, after=None, extra=None, now=None):
    """Audit log entry created ``seconds_ago`` before ``now``."""
    now = now or datetime.now(timezone.utc)
    return SimpleNamespace(
        user=executor,
        target=target,
        created_at=now - timedelta(seconds=seconds_ago),
        after=after or SimpleNamespace(),
        extra=extra,
    )


def make_user(user_id, bot=False, name=None):
    return SimpleNamespace(id=user_id, bot=bot, name=name or f"user{user_id}")


def make_voice_channel(channel_id, name=None, members=0, user_limit=0, category_id=None):
    return SimpleNamespace(
        id=channel_id,
        name=name or f"voice{channel_id}",
        members=[object()] * members,
        user_limit=user_limit,
        category_id=category_id,
        category=SimpleNamespace(id=category_id) if category_id else None,
    )


def make_member(user_id, guild=None, channel=None, nick=None, bot=False):
    """Member with awaitable moderation methods."""
    return SimpleNamespace(
        id=user_id,
        bot=bot,
        name=f"user{user_id}",
        nick=nick,
        guild=guild,
        voice=SimpleNamespace(channel=channel) if channel else None,
        edit=AsyncMock(),
        move_to=AsyncMock(),
    )


class FakeGuild:
    """Guild whose audit log and member cache are plain lists/dicts."""

    def __init__(self, entries=(), members=None, voice_channels=()):
        self.id = 9000
        self.name = "Test Guild"
        self.entries = list(entries)
        self.members = dict(members or {})
        self.voice_channels = list(voice_channels)
        self.audit_requests = []

    def audit_logs(self, limit=100, action=None):
        self.audit_requests.append((action, limit))

        async def iterate():
            for entry in self.entries[:limit]:
                yield entry

        return iterate()

    def get_member(self, user_id):
        return self.members.get(user_id)

    async def fetch_member(self, user_id):
        raise not_found()


class FakeHistoryChannel:
    def __init__(self, channel_id, messages, name="shop-log"):
        self.id = channel_id
        self.name = name
        self.messages = list(messages)
        self.history_kwargs = None

    def history(self, **kwargs):
        self.history_kwargs = kwargs

        async def iterate():
            for message in self.messages:
                yield message

        return iterate()


@pytest.fixture
def config():
    return BotConfig(
        token="x" * 60,
        source_channel_id=SOURCE_CHANNEL_ID,
        webhook_url=WEBHOOK_URL,
        destination_channel_id=DESTINATION_CHANNEL_ID,
        voice_channel_id=VOICE_CHANNEL_ID,
        protected_users={PROTECTED_ID},
    )


@pytest.fixture
def fake_bot():
    channels = {}
    return SimpleNamespace(
        user=SimpleNamespace(id=BOT_ID),
        channels=channels,
        get_channel=lambda channel_id: channels.get(channel_id),
        fetch_channel=AsyncMock(),
    )

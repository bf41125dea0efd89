"""
Configuration loading for GuardRelay.
All settings come from environment variables (optionally from a .env file).
"""

import os
import logging
from typing import Mapping, Optional, Set
from dataclasses import dataclass, field
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

ENV_PREFIX = "guardrelay_"
DEFAULT_RENAME_NICKNAME = "Engadr Move Nade Pesar"
DEFAULT_PORT = 5000


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable configuration."""


@dataclass
class BotConfig:
    """Static configuration shared by every listener."""
    token: str
    source_channel_id: int
    webhook_url: Optional[str] = None
    destination_channel_id: Optional[int] = None
    voice_channel_id: Optional[int] = None
    protected_users: Set[int] = field(default_factory=set)
    report_channel_id: Optional[int] = None
    authorized_users: Set[int] = field(default_factory=set)
    rename_nickname: str = DEFAULT_RENAME_NICKNAME
    port: int = DEFAULT_PORT
    log_level: str = "INFO"

    @property
    def history_channel_id(self) -> int:
        """Channel scanned by the purchase report."""
        return self.report_channel_id or self.source_channel_id

    def is_protected(self, user_id: int) -> bool:
        return user_id in self.protected_users


def validate_webhook_url(url: str) -> bool:
    """Validate that a webhook URL is properly formatted."""
    try:
        parsed = urlparse(url)
        return (
            parsed.scheme in ['http', 'https'] and
            ('discord.com' in parsed.netloc or 'discordapp.com' in parsed.netloc) and
            '/api/webhooks/' in parsed.path
        )
    except ValueError:
        return False


def parse_id_list(raw: Optional[str], name: str) -> Set[int]:
    """Parse a comma-separated list of Discord IDs, skipping malformed ones."""
    ids: Set[int] = set()
    if not raw:
        return ids
    for part in raw.split(','):
        part = part.strip()
        if not part:
            continue
        try:
            ids.add(int(part))
        except ValueError:
            logger.warning(f"Invalid user ID format in {name}: {part}")
    return ids


def _parse_id(environ: Mapping[str, str], name: str) -> Optional[int]:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be a numeric Discord ID, got {raw!r}")


def load_config(environ: Optional[Mapping[str, str]] = None) -> BotConfig:
    """Load configuration from environment variables."""
    if environ is None:
        environ = os.environ
    logger.info("Loading configuration from environment variables...")

    token_var = f"{ENV_PREFIX}discord_token"
    source_var = f"{ENV_PREFIX}source_channel_id"

    missing = [var for var in (token_var, source_var) if not (environ.get(var) or "").strip()]

    webhook_url = (environ.get(f"{ENV_PREFIX}webhook_url") or "").strip() or None
    if webhook_url and not validate_webhook_url(webhook_url):
        logger.warning(f"Invalid webhook URL format: {webhook_url[:50]}...")
        webhook_url = None

    destination_channel_id = _parse_id(environ, f"{ENV_PREFIX}destination_channel_id")
    if not webhook_url and destination_channel_id is None:
        missing.append(f"{ENV_PREFIX}webhook_url or {ENV_PREFIX}destination_channel_id")

    if missing:
        raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    token = environ[token_var].strip()
    if len(token) < 50:
        logger.warning("Discord token format looks suspicious")

    try:
        port = int(environ.get("PORT") or DEFAULT_PORT)
    except ValueError:
        raise ConfigError(f"PORT must be a number, got {environ.get('PORT')!r}")

    config = BotConfig(
        token=token,
        source_channel_id=_parse_id(environ, source_var),
        webhook_url=webhook_url,
        destination_channel_id=destination_channel_id,
        voice_channel_id=_parse_id(environ, f"{ENV_PREFIX}voice_channel_id"),
        protected_users=parse_id_list(environ.get(f"{ENV_PREFIX}protected_users"), "protected users"),
        report_channel_id=_parse_id(environ, f"{ENV_PREFIX}report_channel_id"),
        authorized_users=parse_id_list(environ.get(f"{ENV_PREFIX}authorized_users"), "authorized users"),
        rename_nickname=(environ.get(f"{ENV_PREFIX}rename_nickname") or "").strip() or DEFAULT_RENAME_NICKNAME,
        port=port,
        log_level=(environ.get(f"{ENV_PREFIX}log_level") or "INFO").strip().upper(),
    )

    logger.info(f"Monitoring source channel: {config.source_channel_id}")
    if config.webhook_url:
        logger.info(f"Webhook URL ready: {config.webhook_url[:50]}...")
    else:
        logger.info(f"No webhook configured, forwarding to channel {config.destination_channel_id}")
    if config.voice_channel_id:
        logger.info(f"Voice channel {config.voice_channel_id} provided - will maintain 24/7 voice presence")
    if config.protected_users:
        logger.info(f"Loaded {len(config.protected_users)} protected users")
    else:
        logger.warning("No protected users configured. Voice protection will never trigger.")
    if config.authorized_users:
        logger.info(f"Loaded {len(config.authorized_users)} users authorized to run reports")
    else:
        logger.info("No authorized users configured. Anyone may run reports.")

    return config

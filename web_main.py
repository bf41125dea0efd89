#!/usr/bin/env python3
"""
Keep-alive web server for GuardRelay.
Hosting platforms ping these endpoints to keep the process up and check health.
"""

import os
import logging
from fastapi import FastAPI, HTTPException
from fastapi.responses import PlainTextResponse

from config import ENV_PREFIX, ConfigError, load_config

logger = logging.getLogger(__name__)

app = FastAPI(title="GuardRelay", version="1.0.0")

REQUIRED_VARS = [
    f"{ENV_PREFIX}discord_token",
    f"{ENV_PREFIX}source_channel_id",
]

# Set by main.GuardRelayBot once it is running
bot_instance = None


def set_bot_instance(instance) -> None:
    global bot_instance
    bot_instance = instance


@app.get("/", response_class=PlainTextResponse)
async def root():
    """Root endpoint."""
    return "✅ GuardRelay is running"


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    missing = [var for var in REQUIRED_VARS if not os.environ.get(var)]
    if missing:
        raise HTTPException(status_code=500, detail=f"Missing environment variables: {', '.join(missing)}")

    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "status": "healthy",
        "protected_users": len(config.protected_users),
        "voice_presence": config.voice_channel_id is not None,
        "webhook": config.webhook_url is not None,
    }


@app.get("/status")
async def bot_status():
    """Get bot status."""
    bot = bot_instance.bot if bot_instance else None
    if bot and bot.is_ready():
        return {
            "status": "running",
            "user": str(bot.user),
            "guilds": len(bot.guilds),
        }
    return {"status": "stopped"}

#!/usr/bin/env python3
"""
Simple health check for deployment.
"""

import sys

from dotenv import load_dotenv

from config import ConfigError, load_config


def check_health() -> bool:
    """Check if the bot can start up properly."""
    try:
        config = load_config()
    except ConfigError as e:
        print(f"Health check failed: {e}")
        return False

    print(f"Health check passed! Source channel {config.source_channel_id}, "
          f"{len(config.protected_users)} protected users.")
    return True


if __name__ == "__main__":
    load_dotenv()
    success = check_health()
    sys.exit(0 if success else 1)

"""
Audit log correlation.

Discord does not say who caused a voice state change, so the executor is
guessed from recent audit log entries. Disconnect and move entries usually
carry no target, so timing is the main signal. These helpers only look at
already-fetched entries; fetching is left to the caller.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

DISCONNECT_WINDOW = 15.0
UNTARGETED_WINDOW = 10.0
UPDATE_WINDOW = 10.0


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def entry_age(entry, now: datetime) -> float:
    """Seconds elapsed since the entry was created."""
    return (now - entry.created_at).total_seconds()


def _has_executor(entry) -> bool:
    return entry.user is not None and getattr(entry.user, "id", None) is not None


def _target_id(entry) -> Optional[int]:
    return getattr(entry.target, "id", None) if entry.target is not None else None


def _executor_is_bot(entry) -> bool:
    return bool(getattr(entry.user, "bot", False))


def find_disconnect_executor(entries: Iterable, protected_user_id: int, now: Optional[datetime] = None):
    """Pick the member_disconnect entry most likely to concern the protected user."""
    now = now or utcnow()
    entries = list(entries)

    candidates: List = []
    for entry in entries:
        age = entry_age(entry, now)
        if age >= DISCONNECT_WINDOW or not _has_executor(entry):
            continue

        target_id = _target_id(entry)
        if target_id == protected_user_id:
            logger.info(f"🎯 Direct match: {entry.user} disconnected protected user")
            candidates.append(entry)
        elif target_id is None and age < UNTARGETED_WINDOW:
            logger.info(f"🎯 Timing match: {entry.user} disconnected someone "
                        f"(likely protected user) {int(age)}s ago")
            candidates.append(entry)

    if candidates:
        best = max(candidates, key=lambda e: e.created_at)
        logger.info(f"🎯 TARGET IDENTIFIED: {best.user} ({best.user.id})")
        return best

    # Fall back to the newest entry if it is recent enough
    if entries:
        newest = max(entries, key=lambda e: e.created_at)
        if _has_executor(newest) and entry_age(newest, now) < DISCONNECT_WINDOW:
            logger.info(f"🎯 USING MOST RECENT: {newest.user} ({newest.user.id})")
            return newest

    return None


def _changed(entry, key: str) -> bool:
    after = getattr(entry, "after", None)
    return getattr(after, key, None) is not None


def find_update_executor(entries: Iterable, protected_user_id: int, key: str,
                         now: Optional[datetime] = None):
    """First recent member_update entry on the protected user that changed ``key``."""
    now = now or utcnow()
    for entry in entries:
        if (entry_age(entry, now) < UPDATE_WINDOW
                and _target_id(entry) == protected_user_id
                and _changed(entry, key)
                and _has_executor(entry)
                and not _executor_is_bot(entry)):
            return entry
    return None


def find_move_executor(entries: Iterable, protected_user_id: int, channel_id: Optional[int],
                       now: Optional[datetime] = None):
    """First recent member_move entry that targets the protected user or moved people into ``channel_id``."""
    now = now or utcnow()
    for entry in entries:
        if entry_age(entry, now) >= UPDATE_WINDOW or not _has_executor(entry) or _executor_is_bot(entry):
            continue

        target_id = _target_id(entry)
        if target_id == protected_user_id:
            return entry

        extra_channel = getattr(getattr(entry, "extra", None), "channel", None)
        if target_id is None and channel_id is not None and getattr(extra_channel, "id", None) == channel_id:
            return entry
    return None

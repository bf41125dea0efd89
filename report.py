"""
Purchase report command.

``!sum YYYY-MM-DD YYYY-MM-DD`` scans the report channel's history between
the two dates (UTC, inclusive) and posts per-user purchase totals parsed
from shop log lines such as::

    some_user 2x Medkit Gheymat 10,000$ Kharid
"""

import re
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import nextcord
from nextcord.ext import commands

from config import BotConfig

logger = logging.getLogger(__name__)

COMMAND_PREFIX = "!"
COMMAND_NAME = "sum"
MAX_MESSAGE_LENGTH = 1900

PERSIAN_DIGITS = "۰۱۲۳۴۵۶۷۸۹"
_DIGIT = "[\\d\u06f0-\u06f9]"
_PRICE = "[\\d\u06f0-\u06f9,.]"

PURCHASE_PATTERNS = [
    re.compile(
        rf"^(?P<user>[^\n]+?)\s+(?P<qty>{_DIGIT}+)\s*[xX]\s+.+?\bGheymat\b\s+\$?\s*"
        rf"(?P<price>{_PRICE}+)\s*\$?\s+\bKharid\b",
        re.IGNORECASE,
    ),
    re.compile(
        rf"^(?P<user>[^\n]+?)\s+(?P<qty>{_DIGIT}+)\s*[xX]\s+.+?\bقیمت\b\s+\$?\s*"
        rf"(?P<price>{_PRICE}+)\s*\$?\s+\bخرید\b",
        re.IGNORECASE,
    ),
]

_THOUSANDS_SEPARATOR = re.compile(r"(?<=\d)[.,](?=\d{3}(\b|\D))")
_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass
class PurchaseSummary:
    totals: List[Tuple[str, int]] = field(default_factory=list)
    scanned: int = 0
    matched: int = 0

    @property
    def grand_total(self) -> int:
        return sum(total for _, total in self.totals)


def to_english_digits(text: str) -> str:
    return "".join(str(PERSIAN_DIGITS.index(c)) if c in PERSIAN_DIGITS else c for c in text)


def leading_int(text: str) -> int:
    """Integer value of the leading digits, 0 when there are none."""
    match = re.match(r"\d+", text)
    return int(match.group()) if match else 0


def parse_date(value: str, end_of_day: bool = False) -> Optional[datetime]:
    if not _DATE.match(value):
        return None
    try:
        day = datetime.strptime(value, "%Y-%m-%d").replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    if end_of_day:
        return day + timedelta(days=1) - timedelta(milliseconds=1)
    return day


def parse_range(args: Sequence[str]) -> Optional[Tuple[datetime, datetime]]:
    """Return the (start, end) range for exactly two ``YYYY-MM-DD`` arguments, or None."""
    if len(args) != 2:
        return None
    start = parse_date(args[0])
    end = parse_date(args[1], end_of_day=True)
    if not start or not end or start > end:
        return None
    return start, end


def format_date(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def format_number(n: int) -> str:
    return f"{n:,}"


def normalize_message(raw: str) -> str:
    """Strip markdown and invisible characters, unify separators."""
    text = re.sub(r"^```[a-zA-Z0-9]*\n?|```$", "", raw)
    text = text.replace("```", "").replace("`", "")
    text = re.sub("[\u200b-\u200d\ufeff]", "", text)
    text = re.sub(r"[*_]", "", text)
    text = re.sub("[\u066c\u060c]", ",", text)
    text = _THOUSANDS_SEPARATOR.sub(",", text)
    text = re.sub(r"[^\S\n]+", " ", text)
    return text.strip()


def normalize_username(username: str) -> str:
    username = re.sub(r"\s*_[\s_]*", "_", username)
    username = re.sub(r"\s+", " ", username)
    return username.strip().lower()


def match_purchase(line: str):
    for pattern in PURCHASE_PATTERNS:
        match = pattern.search(line)
        if match:
            return match
    return None


def aggregate_purchases(contents: Iterable[Optional[str]]) -> PurchaseSummary:
    """Total purchase prices per user over the given message contents."""
    totals: Dict[str, int] = {}
    display_names: Dict[str, str] = {}
    summary = PurchaseSummary()

    for raw in contents:
        raw = (raw or "").strip()
        if not raw:
            continue
        text = normalize_message(raw)
        if not text:
            continue

        lines = [line.strip() for line in re.split(r"\r?\n", text) if line.strip()]
        for line in lines:
            summary.scanned += 1
            match = match_purchase(line)
            if not match:
                continue
            summary.matched += 1

            username = re.sub(r"[\-–—:,|]+\s*$", "", match.group("user").strip()).strip()
            qty = leading_int(to_english_digits(match.group("qty")))
            price_text = to_english_digits(match.group("price"))
            price_text = _THOUSANDS_SEPARATOR.sub("", price_text).replace(",", "")
            # The logged price already covers the quantity
            price = leading_int(price_text)

            if not username or qty <= 0 or price <= 0:
                continue

            key = normalize_username(username)
            totals[key] = totals.get(key, 0) + price
            display_names.setdefault(key, username)

    summary.totals = sorted(
        ((display_names.get(key, key), total) for key, total in totals.items()),
        key=lambda item: item[1],
        reverse=True,
    )
    return summary


def chunk_lines_with_header_footer(lines: List[str], header: str, footer: str,
                                   max_len: int = MAX_MESSAGE_LENGTH) -> List[str]:
    chunks: List[str] = []
    current = header + "\n\n"
    for line in lines:
        line = line + "\n"
        if len(current + line + footer) > max_len:
            chunks.append(current.rstrip())
            current = f"… Continued ({len(chunks) + 1})\n\n"
        current += line
    current += footer
    chunks.append(current)
    return chunks


async def fetch_messages_between(channel, start: datetime, end: datetime) -> List[nextcord.Message]:
    """Messages created inside [start, end], oldest first."""
    messages = []
    async for message in channel.history(limit=None, after=start - timedelta(milliseconds=1),
                                         before=end + timedelta(milliseconds=1), oldest_first=True):
        if start <= message.created_at <= end:
            messages.append(message)
    messages.sort(key=lambda m: m.created_at)
    return messages


def build_report(summary: PurchaseSummary, start: datetime, end: datetime, source_name: str) -> List[str]:
    lines = [f"{i}) {username}: ${format_number(total)}"
             for i, (username, total) in enumerate(summary.totals, start=1)]
    header = (f"📊 Purchases from {format_date(start)} to {format_date(end)} (source: {source_name})\n"
              f"🔎 scanned: {summary.scanned} | matched: {summary.matched}")
    footer = f"\n—\nTotal: ${format_number(summary.grand_total)}"
    return chunk_lines_with_header_footer(lines, header, footer)


class ReportManager(commands.Cog):
    """Answers ``!sum`` with a purchase ranking for a date range."""

    def __init__(self, bot: commands.Bot, config: BotConfig):
        self.bot = bot
        self.config = config

    def is_authorized_user(self, user_id: int) -> bool:
        return not self.config.authorized_users or user_id in self.config.authorized_users

    @commands.command(name=COMMAND_NAME)
    async def sum_command(self, ctx: commands.Context, *args: str):
        parsed = parse_range(args)
        if not parsed:
            return
        if not self.is_authorized_user(ctx.author.id):
            logger.warning(f"Unauthorized report request from {ctx.author} ({ctx.author.id})")
            return

        start, end = parsed
        logger.info(f"📊 Report requested by {ctx.author} for {format_date(start)} - {format_date(end)}")
        try:
            await self.send_report(ctx, start, end)
        except Exception as e:
            logger.error(f"❌ Error creating report: {e}")
            try:
                await ctx.send(f"❌ Error creating report: {e}")
            except nextcord.HTTPException as send_error:
                logger.error(f"❌ Could not report the error back: {send_error}")

    async def send_report(self, reply_channel, start: datetime, end: datetime) -> None:
        await reply_channel.send(
            f"⏳ Collecting messages between {format_date(start)} and {format_date(end)} from the source channel..."
        )

        channel_id = self.config.history_channel_id
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            await reply_channel.send(f"❌ Source channel not found: {channel_id}")
            return

        messages = await fetch_messages_between(channel, start, end)
        summary = aggregate_purchases(m.content for m in messages)
        logger.info(f"📊 Scanned {summary.scanned} lines, matched {summary.matched}, "
                    f"{len(summary.totals)} buyers")

        if not summary.totals:
            await reply_channel.send(
                f"ℹ️ No purchases found in this range. (scanned: {summary.scanned} | matched: {summary.matched})\n"
                "If you believe there are purchases, send a sample message to refine the pattern."
            )
            return

        source_name = getattr(channel, "name", None) or str(channel.id)
        for content in build_report(summary, start, end, source_name):
            await reply_channel.send(content)

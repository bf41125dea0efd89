"""Tests for the purchase report."""

from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from report import (
    ReportManager,
    aggregate_purchases,
    chunk_lines_with_header_footer,
    fetch_messages_between,
    format_number,
    normalize_message,
    parse_range,
    to_english_digits,
)
from tests.conftest import SOURCE_CHANNEL_ID, FakeHistoryChannel


def at(day, hour=12):
    return datetime(2024, 3, day, hour, tzinfo=timezone.utc)


def message(content, created_at):
    return SimpleNamespace(content=content, created_at=created_at)


class TestParseRange:
    def test_valid_range(self):
        start, end = parse_range(["2024-03-01", "2024-03-05"])

        assert start == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 5, 23, 59, 59, 999000, tzinfo=timezone.utc)

    def test_same_day(self):
        start, end = parse_range(("2024-03-01", "2024-03-01"))
        assert start < end

    @pytest.mark.parametrize("args", [
        [],
        ["2024-03-01"],
        ["2024-03-01", "2024-03-05", "extra"],
        ["2024-3-1", "2024-03-05"],
        ["2024-02-30", "2024-03-05"],
        ["2024-03-05", "2024-03-01"],
    ])
    def test_rejected(self, args):
        assert parse_range(args) is None


class TestAggregatePurchases:
    def test_totals_per_user_sorted_descending(self):
        summary = aggregate_purchases([
            "Ali 1x Medkit Gheymat 5,000$ Kharid",
            "ali 2x Bandage Gheymat 1,000 $ Kharid",
            "bob 1x Ammo Gheymat $1,500 Kharid",
            "**Dana** 1x Car Gheymat 2.500.000$ Kharid",
        ])

        assert summary.totals == [("Dana", 2_500_000), ("Ali", 6_000), ("bob", 1_500)]
        assert summary.grand_total == 2_507_500
        assert summary.scanned == 4
        assert summary.matched == 4

    def test_multi_line_message_and_noise(self):
        summary = aggregate_purchases([
            "Ali 1x Medkit Gheymat 5,000$ Kharid\nhello there\nbob 3 x Ammo Gheymat 900$ Kharid",
            "",
            None,
        ])

        assert summary.scanned == 3
        assert summary.matched == 2
        assert dict(summary.totals) == {"Ali": 5_000, "bob": 900}

    def test_persian_markers_and_digits(self):
        summary = aggregate_purchases(["رضا ۲x آیتم قیمت ۱۰,۰۰۰$ خرید"])

        assert summary.totals == [("رضا", 10_000)]

    def test_code_fences_and_separators(self):
        summary = aggregate_purchases([
            "```\nCarl 1x Gun Gheymat 100,000$ Kharid\n```",
            "Frank - 1x Rope Gheymat 250$ Kharid",
        ])

        assert dict(summary.totals) == {"Carl": 100_000, "Frank": 250}

    def test_zero_quantity_is_matched_but_not_counted(self):
        summary = aggregate_purchases(["Eve 0x Thing Gheymat 100$ Kharid"])

        assert summary.matched == 1
        assert summary.totals == []

    def test_unrelated_messages(self):
        summary = aggregate_purchases(["Withdrawn 500$ - Bank", "gg"])

        assert summary.scanned == 2
        assert summary.matched == 0
        assert summary.totals == []


def test_normalize_message_keeps_lines():
    assert normalize_message("a\u200b  b\n`c`  d") == "a b\nc d"


def test_to_english_digits():
    assert to_english_digits("۱۲۳x") == "123x"


@pytest.mark.parametrize("value,expected", [(0, "0"), (999, "999"), (1000, "1,000"), (2500000, "2,500,000")])
def test_format_number(value, expected):
    assert format_number(value) == expected


class TestChunking:
    def test_single_chunk(self):
        chunks = chunk_lines_with_header_footer(["1) a: $1"], "Header", "\nTotal")

        assert chunks == ["Header\n\n1) a: $1\n\nTotal"]

    def test_splits_long_reports(self):
        lines = [f"{i}) user{i:02d}: $1,000" for i in range(1, 21)]
        chunks = chunk_lines_with_header_footer(lines, "Header", "\nTotal: $20,000", max_len=120)

        assert len(chunks) > 1
        assert all(len(chunk) <= 120 for chunk in chunks)
        assert chunks[0].startswith("Header")
        assert chunks[1].startswith("… Continued (2)")
        assert chunks[-1].endswith("Total: $20,000")
        joined = "\n".join(chunks)
        assert all(line in joined for line in lines)


@pytest.mark.asyncio
async def test_fetch_messages_between_filters_range():
    start, end = parse_range(["2024-03-02", "2024-03-03"])
    channel = FakeHistoryChannel(SOURCE_CHANNEL_ID, [
        message("late", at(3, 20)),
        message("early", at(2, 0)),
        message("outside", at(4)),
    ])

    messages = await fetch_messages_between(channel, start, end)

    assert [m.content for m in messages] == ["early", "late"]
    assert channel.history_kwargs["oldest_first"] is True


class TestReportCommand:
    @pytest.fixture
    def ctx(self):
        return SimpleNamespace(author=SimpleNamespace(id=5), send=AsyncMock())

    async def run(self, manager, ctx, *args):
        await ReportManager.sum_command.callback(manager, ctx, *args)

    def sent(self, ctx):
        return [call.args[0] for call in ctx.send.await_args_list]

    def test_registered_as_prefixed_command(self):
        assert ReportManager.sum_command.name == "sum"

    @pytest.mark.asyncio
    async def test_posts_ranking(self, fake_bot, config, ctx):
        fake_bot.channels[SOURCE_CHANNEL_ID] = FakeHistoryChannel(SOURCE_CHANNEL_ID, [
            message("Ali 1x Medkit Gheymat 5,000$ Kharid", at(2)),
            message("bob 1x Ammo Gheymat 1,500$ Kharid", at(3)),
        ])
        manager = ReportManager(fake_bot, config)

        await self.run(manager, ctx, "2024-03-01", "2024-03-31")

        sent = self.sent(ctx)
        assert sent[0].startswith("⏳ Collecting messages between 2024-03-01 and 2024-03-31")
        assert "(source: shop-log)" in sent[1]
        assert "1) Ali: $5,000" in sent[1]
        assert "2) bob: $1,500" in sent[1]
        assert sent[-1].endswith("Total: $6,500")

    @pytest.mark.asyncio
    async def test_no_purchases(self, fake_bot, config, ctx):
        fake_bot.channels[SOURCE_CHANNEL_ID] = FakeHistoryChannel(SOURCE_CHANNEL_ID, [message("hi", at(2))])
        manager = ReportManager(fake_bot, config)

        await self.run(manager, ctx, "2024-03-01", "2024-03-31")

        assert self.sent(ctx)[-1].startswith("ℹ️ No purchases found in this range. (scanned: 1 | matched: 0)")

    @pytest.mark.asyncio
    async def test_missing_source_channel(self, fake_bot, config, ctx):
        manager = ReportManager(fake_bot, config)

        await self.run(manager, ctx, "2024-03-01", "2024-03-31")

        assert self.sent(ctx)[-1] == f"❌ Source channel not found: {SOURCE_CHANNEL_ID}"

    @pytest.mark.asyncio
    async def test_errors_are_reported_back(self, fake_bot, config, ctx):
        def history(**kwargs):
            raise RuntimeError("history unavailable")

        broken = FakeHistoryChannel(SOURCE_CHANNEL_ID, [])
        broken.history = history
        fake_bot.channels[SOURCE_CHANNEL_ID] = broken
        manager = ReportManager(fake_bot, config)

        await self.run(manager, ctx, "2024-03-01", "2024-03-31")

        assert self.sent(ctx)[-1] == "❌ Error creating report: history unavailable"

    @pytest.mark.asyncio
    async def test_unauthorized_users_are_ignored(self, fake_bot, config, ctx):
        config.authorized_users = {1}
        manager = ReportManager(fake_bot, config)

        await self.run(manager, ctx, "2024-03-01", "2024-03-31")

        ctx.send.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("args", [
        (),
        ("2024-03-01",),
        ("2024-03-01", "2024-03-31", "extra"),
        ("march", "april"),
    ])
    async def test_bad_arguments_are_ignored(self, fake_bot, config, ctx, args):
        manager = ReportManager(fake_bot, config)

        await self.run(manager, ctx, *args)

        ctx.send.assert_not_awaited()

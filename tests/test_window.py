"""Tests for TimeWindow and duration/time parsing."""

from datetime import datetime, timedelta, timezone

import pytest

from chtop.live.window import (
    TimeWindow,
    WindowMode,
    format_duration,
    parse_duration,
    parse_time_bound,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class TestParseDuration:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("10m", timedelta(minutes=10)),
            ("1h30m", timedelta(hours=1, minutes=30)),
            ("90s", timedelta(seconds=90)),
            ("-90s", timedelta(seconds=-90)),
            ("1.5h", timedelta(minutes=90)),
            ("2d", timedelta(days=2)),
            ("500ms", timedelta(milliseconds=500)),
            ("5 min", timedelta(minutes=5)),
            ("3hrs", timedelta(hours=3)),
        ],
    )
    def test_valid(self, text, expected):
        assert parse_duration(text) == expected

    @pytest.mark.parametrize("text", ["", "-", "abc", "10", "10x", "1h foo"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            parse_duration(text)

    def test_format_duration(self):
        assert format_duration(timedelta(hours=1, minutes=30)) == "1h30m"
        assert format_duration(timedelta(seconds=45)) == "45s"
        assert format_duration(timedelta(0)) == "0s"
        assert format_duration(-timedelta(minutes=10)) == "-10m"


class TestTimeWindow:
    def test_live_resolves_against_now(self):
        window = TimeWindow.live(timedelta(minutes=5))
        assert window.resolve(NOW) == (NOW - timedelta(minutes=5), NOW)

    def test_historical_is_used_verbatim(self):
        start = NOW - timedelta(hours=2)
        end = NOW - timedelta(hours=1)
        window = TimeWindow.historical(start, end)

        assert window.mode is WindowMode.HISTORICAL
        assert window.span == timedelta(hours=1)
        assert window.resolve(NOW + timedelta(days=1)) == (start, end)

    def test_historical_rejects_empty_range(self):
        with pytest.raises(ValueError):
            TimeWindow.historical(NOW, NOW)

    def test_shift_from_live_anchors_at_now(self):
        window = TimeWindow.live(timedelta(hours=1)).shifted(-timedelta(minutes=10), NOW)

        assert window.mode is WindowMode.HISTORICAL
        assert window.end == NOW - timedelta(minutes=10)
        assert window.start == NOW - timedelta(minutes=70)

    def test_repeated_shifts_accumulate(self):
        window = TimeWindow.live(timedelta(hours=1))
        window = window.shifted(-timedelta(minutes=10), NOW)
        window = window.shifted(-timedelta(minutes=10), NOW)
        assert window.end == NOW - timedelta(minutes=20)

    def test_shift_never_passes_now(self):
        window = TimeWindow.live(timedelta(hours=1)).shifted(-timedelta(minutes=10), NOW)
        window = window.shifted(timedelta(hours=5), NOW)

        assert window.end == NOW
        assert window.start == NOW - timedelta(hours=1)

    def test_with_span_keeps_historical_end(self):
        window = TimeWindow.historical(NOW - timedelta(hours=1), NOW)
        narrowed = window.with_span(timedelta(minutes=30))

        assert narrowed.end == NOW
        assert narrowed.start == NOW - timedelta(minutes=30)

    def test_with_span_rejects_non_positive(self):
        with pytest.raises(ValueError):
            TimeWindow.live().with_span(timedelta(0))

    def test_as_live_keeps_span(self):
        window = TimeWindow.historical(NOW - timedelta(minutes=15), NOW).as_live()
        assert window.is_live
        assert window.span == timedelta(minutes=15)

    def test_describe(self):
        assert TimeWindow.live(timedelta(hours=1)).describe() == "live (last 1h)"


class TestParseTimeBound:
    def test_empty_is_now(self):
        assert parse_time_bound("", NOW) == NOW

    def test_relative_is_subtracted(self):
        assert parse_time_bound("10m", NOW) == NOW - timedelta(minutes=10)
        assert parse_time_bound("-10m", NOW) == NOW - timedelta(minutes=10)

    def test_absolute_datetime(self):
        assert parse_time_bound("2024-04-30T10:00:00+00:00", NOW) == datetime(
            2024, 4, 30, 10, 0, tzinfo=timezone.utc
        )

    def test_date_is_aware(self):
        assert parse_time_bound("2024-04-30", NOW).tzinfo is not None

    def test_garbage_raises(self):
        with pytest.raises(ValueError):
            parse_time_bound("yesterday-ish", NOW)

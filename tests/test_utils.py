"""Tests for time helpers."""

from datetime import UTC, datetime, timedelta

import pytest

from duckling.utils import format_duration, from_millis, hours_between, to_millis


def test_millis_round_trip():
    moment = datetime(2026, 1, 1, 12, 0, 0, 123000, tzinfo=UTC)
    assert from_millis(to_millis(moment)) == moment


def test_hours_between_can_be_negative():
    start = datetime(2026, 1, 1, tzinfo=UTC)
    assert hours_between(start, start + timedelta(minutes=90)) == 1.5
    assert hours_between(start, start - timedelta(hours=2)) == -2.0


@pytest.mark.parametrize(
    "duration, text",
    [
        (timedelta(hours=2, minutes=5, seconds=3), "2h 5m 3s"),
        (timedelta(minutes=5, seconds=3), "5m 3s"),
        (timedelta(seconds=3), "3s"),
        (timedelta(0), "0s"),
        (timedelta(seconds=-10), "0s"),
    ],
)
def test_format_duration(duration, text):
    assert format_duration(duration) == text

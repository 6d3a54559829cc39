"""Tests for UTC parsing helpers."""

from datetime import datetime, timedelta, timezone

from peoplemap.timeutil import ensure_utc, parse_iso_utc


def test_parse_graph_seven_digit_fraction():
    assert parse_iso_utc("2024-05-01T10:20:30.1234567Z") == datetime(
        2024, 5, 1, 10, 20, 30, 123456, tzinfo=timezone.utc
    )


def test_parse_short_fraction_and_offset():
    assert parse_iso_utc("2024-05-01T12:20:30.5+02:00") == datetime(
        2024, 5, 1, 10, 20, 30, 500000, tzinfo=timezone.utc
    )


def test_parse_without_fraction():
    assert parse_iso_utc("2024-05-01T10:20:30Z") == datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc)


def test_parse_rejects_garbage():
    assert parse_iso_utc("yesterday") is None
    assert parse_iso_utc("") is None
    assert parse_iso_utc(None) is None


def test_ensure_utc():
    naive = datetime(2024, 1, 1, 8, 0)
    assert ensure_utc(naive) == datetime(2024, 1, 1, 8, 0, tzinfo=timezone.utc)
    aware = datetime(2024, 1, 1, 9, 0, tzinfo=timezone(timedelta(hours=1)))
    assert ensure_utc(aware).tzinfo == timezone.utc
    assert ensure_utc(aware).hour == 8

"""Tests for the Home Assistant history track service (httpx MockTransport, no network)."""

from datetime import datetime, timezone

import httpx
import pytest

from peoplemap.history.service import (
    HistoryTrackService,
    build_history_url,
    format_history_timestamp,
    normalize_entities,
    parse_tracks,
)
from peoplemap.http import HttpClients

FROM = datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)
TO = datetime(2024, 5, 2, 0, 0, tzinfo=timezone.utc)


def _state(entity_id, lat, lon, ts, **attrs):
    return {
        "entity_id": entity_id,
        "state": "home",
        "attributes": {"latitude": lat, "longitude": lon, **attrs},
        "last_updated": ts,
    }


def _service(settings_factory, handler, **overrides):
    settings = settings_factory(supervisor_token="sup-token", **overrides)
    http = HttpClients(lambda: settings, transport=httpx.MockTransport(handler))
    return HistoryTrackService(http, lambda: settings)


def test_normalize_entities_trims_and_dedupes_case_insensitively():
    assert normalize_entities([" person.a ", "", "PERSON.A", "person.b", "  "]) == ["person.a", "person.b"]


def test_format_history_timestamp_has_milliseconds():
    ts = datetime(2024, 5, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert format_history_timestamp(ts) == "2024-05-01T10:00:00.123Z"


def test_build_history_url():
    url = build_history_url("http://supervisor/core/api/history/period", ["person.a", "person.b"], FROM, TO)
    assert url.startswith("http://supervisor/core/api/history/period/2024-05-01T00%3A00%3A00.000Z?")
    assert "end_time=2024-05-02T00%3A00%3A00.000Z" in url
    assert "filter_entity_id=person.a%2Cperson.b" in url
    assert url.endswith("&significant_changes_only=0")


def test_parse_tracks_accepts_numeric_strings_and_skips_malformed():
    payload = [
        [
            _state("person.b", "48.2", "16.3", "2024-05-01T10:00:00+00:00", gps_accuracy=12),
            _state("person.b", None, 16.3, "2024-05-01T10:05:00+00:00"),
            {"entity_id": "person.b", "attributes": "oops"},
            "not-an-object",
        ],
        [
            {
                "entity_id": "Person.A",
                "state": "away",
                "attributes": {"latitude": 47.0, "longitude": 15.4},
                "last_changed": "2024-05-01T09:00:00Z",
            }
        ],
        "not-a-list",
    ]
    tracks = parse_tracks(payload, max_points=100, min_distance_m=0)
    assert [t.entity_id for t in tracks] == ["Person.A", "person.b"]
    b = tracks[1].points
    assert len(b) == 1
    assert b[0].lat == 48.2 and b[0].lon == 16.3
    assert b[0].accuracy == 12
    assert b[0].state == "home"


@pytest.mark.asyncio
async def test_query_tracks_ok(settings_factory):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["path"] = request.url.path
        return httpx.Response(
            200,
            json=[
                [
                    _state("person.a", 48.0, 16.0, "2024-05-01T10:00:00+00:00"),
                    _state("person.a", 48.01, 16.0, "2024-05-01T10:10:00+00:00"),
                ]
            ],
        )

    service = _service(settings_factory, handler)
    result = await service.query_tracks(["person.a"], FROM, TO, max_points=100, min_distance_m=0)
    assert result.success is True
    assert result.status == "ok"
    assert result.total_points == 2
    assert result.message == "Loaded tracks for 1 entities."
    assert seen["auth"] == "Bearer sup-token"


@pytest.mark.asyncio
async def test_query_tracks_invalid_entities(settings_factory):
    def handler(request):
        raise AssertionError("no request expected")

    result = await _service(settings_factory, handler).query_tracks([" ", ""], FROM, TO, 10, 0)
    assert result.status == "invalid_entities"
    assert result.success is False


@pytest.mark.asyncio
async def test_query_tracks_missing_supervisor_token(settings_factory):
    def handler(request):
        raise AssertionError("no request expected")

    settings = settings_factory(supervisor_token="")
    http = HttpClients(lambda: settings, transport=httpx.MockTransport(handler))
    result = await HistoryTrackService(http, lambda: settings).query_tracks(["person.a"], FROM, TO, 10, 0)
    assert result.status == "missing_supervisor_token"


@pytest.mark.asyncio
async def test_query_tracks_history_error(settings_factory):
    result = await _service(settings_factory, lambda r: httpx.Response(401, text="unauthorized")).query_tracks(
        ["person.a"], FROM, TO, 10, 0
    )
    assert result.status == "history_error"
    assert "401" in result.message


@pytest.mark.asyncio
async def test_query_tracks_transport_error_is_exception_status(settings_factory):
    def handler(request):
        raise httpx.ConnectError("supervisor unreachable", request=request)

    result = await _service(settings_factory, handler).query_tracks(["person.a"], FROM, TO, 10, 0)
    assert result.status == "exception"
    assert result.message.startswith("History query failed:")

"""Location tracks from the Home Assistant history API (through the Supervisor proxy)."""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote

from peoplemap.config import Settings, get_settings
from peoplemap.history.models import EntityTrack, TrackPoint, TracksQueryResult
from peoplemap.history.simplify import simplify_points
from peoplemap.http import HttpClients, truncate
from peoplemap.timeutil import ensure_utc, parse_iso_utc

log = logging.getLogger(__name__)


def normalize_entities(entities: Iterable[str]) -> List[str]:
    """Trim, drop blanks, de-duplicate case-insensitively (first spelling wins)."""
    seen = set()
    out: List[str] = []
    for entity in entities:
        if not isinstance(entity, str) or not entity.strip():
            continue
        entity = entity.strip()
        if entity.lower() in seen:
            continue
        seen.add(entity.lower())
        out.append(entity)
    return out


def format_history_timestamp(value: datetime) -> str:
    """UTC with millisecond precision, e.g. 2024-05-01T10:00:00.000Z."""
    value = ensure_utc(value)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def build_history_url(base_url: str, entities: List[str], from_utc: datetime, to_utc: datetime) -> str:
    from_part = quote(format_history_timestamp(from_utc), safe="")
    to_part = quote(format_history_timestamp(to_utc), safe="")
    entity_part = quote(",".join(entities), safe="")
    return (
        f"{base_url.rstrip('/')}/{from_part}"
        f"?end_time={to_part}&filter_entity_id={entity_part}&significant_changes_only=0"
    )


def _read_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def _read_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_state(state: Any) -> Optional[Tuple[str, TrackPoint]]:
    """One history state object to (entity_id, point); None if it carries no usable position."""
    if not isinstance(state, dict):
        return None
    entity_id = state.get("entity_id")
    attributes = state.get("attributes")
    if not isinstance(entity_id, str) or not entity_id.strip() or not isinstance(attributes, dict):
        return None
    lat = _read_float(attributes.get("latitude"))
    lon = _read_float(attributes.get("longitude"))
    if lat is None or lon is None:
        return None
    ts = parse_iso_utc(state.get("last_updated")) or parse_iso_utc(state.get("last_changed"))
    if ts is None:
        return None
    raw_state = state.get("state")
    return entity_id, TrackPoint(
        lat=lat,
        lon=lon,
        ts=ts,
        accuracy=_read_int(attributes.get("gps_accuracy")),
        state=raw_state if isinstance(raw_state, str) else None,
    )


def parse_tracks(payload: Any, max_points: int, min_distance_m: float) -> List[EntityTrack]:
    """History payload is a list of per-entity lists of state objects."""
    if not isinstance(payload, list):
        return []
    # lower-cased id -> (first-seen id, points)
    by_entity: Dict[str, Tuple[str, List[TrackPoint]]] = {}
    for bucket in payload:
        if not isinstance(bucket, list):
            continue
        for state in bucket:
            parsed = parse_state(state)
            if parsed is None:
                continue
            entity_id, point = parsed
            by_entity.setdefault(entity_id.lower(), (entity_id, []))[1].append(point)

    tracks: List[EntityTrack] = []
    for key in sorted(by_entity):
        entity_id, points = by_entity[key]
        simplified = simplify_points(points, max_points, min_distance_m)
        if simplified:
            tracks.append(EntityTrack(entity_id=entity_id, points=simplified))
    return tracks


class HistoryTrackService:
    def __init__(self, http: HttpClients, settings_provider: Callable[[], Settings] = get_settings) -> None:
        self._http = http
        self._settings_provider = settings_provider

    async def query_tracks(
        self,
        entities: Iterable[str],
        from_utc: datetime,
        to_utc: datetime,
        max_points: int,
        min_distance_m: float,
    ) -> TracksQueryResult:
        """Simplified tracks per entity in [from_utc, to_utc]. Failures come back as a result status."""
        from_utc, to_utc = ensure_utc(from_utc), ensure_utc(to_utc)

        def failed(status: str, message: str) -> TracksQueryResult:
            return TracksQueryResult(success=False, status=status, message=message, from_utc=from_utc, to_utc=to_utc)

        normalized = normalize_entities(entities)
        if not normalized:
            return failed("invalid_entities", "No entities provided.")
        settings = self._settings_provider()
        if not settings.supervisor_token:
            return failed("missing_supervisor_token", "SUPERVISOR_TOKEN is not available in add-on environment.")

        url = build_history_url(settings.history_base_url, normalized, from_utc, to_utc)
        try:
            async with self._http.history() as client:
                r = await client.get(url, headers={"Authorization": f"Bearer {settings.supervisor_token}"})
            if not r.is_success:
                log.warning(
                    "History request failed status=%s url=%s body=%s", r.status_code, url, truncate(r.text, 450)
                )
                return failed("history_error", f"Home Assistant history API failed with status {r.status_code}.")
            tracks = parse_tracks(r.json(), max_points, min_distance_m)
        except Exception as e:
            log.warning("Track history query failed: %s", e)
            return failed("exception", f"History query failed: {truncate(str(e), 300)}")

        return TracksQueryResult(
            success=True,
            status="ok",
            message=f"Loaded tracks for {len(tracks)} entities.",
            from_utc=from_utc,
            to_utc=to_utc,
            tracks=tracks,
            total_points=sum(len(t.points) for t in tracks),
        )

"""Track query route for the map card."""

import logging
from datetime import datetime, timedelta
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse

from peoplemap.dependencies import get_history_service
from peoplemap.history.service import HistoryTrackService
from peoplemap.timeutil import parse_iso_utc, utc_now

router = APIRouter(prefix="/api/people_map_plus", tags=["history"])
log = logging.getLogger(__name__)

DEFAULT_WINDOW_HOURS = 24
DEFAULT_MAX_POINTS = 1500

# Result status -> HTTP status; anything else not successful is an upstream failure
_CLIENT_ERRORS = {"invalid_entities"}


def parse_time_param(value: Optional[str], name: str) -> Optional[datetime]:
    """ISO 8601 query parameter; 400 if present but unparseable."""
    if value is None or not value.strip():
        return None
    parsed = parse_iso_utc(value)
    if parsed is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid '{name}' timestamp")
    return parsed


def split_entities(values: List[str]) -> List[str]:
    """Accept repeated ?entities= and comma-separated lists."""
    out: List[str] = []
    for value in values:
        out.extend(value.split(","))
    return out


@router.get("/tracks")
async def get_tracks(
    service: Annotated[HistoryTrackService, Depends(get_history_service)],
    entities: Annotated[List[str], Query()] = [],
    from_: Annotated[Optional[str], Query(alias="from")] = None,
    to: Optional[str] = None,
    hours: Annotated[int, Query(ge=1, le=24 * 90)] = DEFAULT_WINDOW_HOURS,
    max_points: Annotated[int, Query(ge=1, le=20000)] = DEFAULT_MAX_POINTS,
    min_distance_m: Annotated[float, Query(ge=0)] = 0.0,
) -> JSONResponse:
    """Simplified location tracks. Window defaults to the last `hours` before `to` (or now)."""
    to_utc = parse_time_param(to, "to") or utc_now()
    from_utc = parse_time_param(from_, "from") or to_utc - timedelta(hours=hours)
    if from_utc > to_utc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="'from' must not be after 'to'")

    result = await service.query_tracks(split_entities(entities), from_utc, to_utc, max_points, min_distance_m)
    if result.success:
        code = 200
    elif result.status in _CLIENT_ERRORS:
        code = 400
    else:
        code = 502
    return JSONResponse(content=result.model_dump(mode="json"), status_code=code)

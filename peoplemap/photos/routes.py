"""Photo index query route for the map card."""

import logging
from datetime import timedelta
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from peoplemap.db.session import get_db
from peoplemap.history.routes import parse_time_param
from peoplemap.photos.index_store import BoundingBox, query_photos
from peoplemap.photos.models import PhotoQueryResult, PhotoResponse
from peoplemap.timeutil import utc_now

router = APIRouter(prefix="/api/people_map_plus", tags=["photos"])
log = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30


def parse_bbox(value: Optional[str]) -> Optional[BoundingBox]:
    """'min_lat,min_lon,max_lat,max_lon' to a tuple; 400 on malformed input."""
    if value is None or not value.strip():
        return None
    try:
        parts = [float(p) for p in value.split(",")]
    except ValueError:
        parts = []
    if len(parts) != 4 or parts[0] > parts[2] or parts[1] > parts[3]:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="bbox must be min_lat,min_lon,max_lat,max_lon",
        )
    return parts[0], parts[1], parts[2], parts[3]


@router.get("/photos", response_model=PhotoQueryResult)
async def get_photos(
    session: Annotated[AsyncSession, Depends(get_db)],
    from_: Annotated[Optional[str], Query(alias="from")] = None,
    to: Optional[str] = None,
    bbox: Optional[str] = None,
    has_gps: Optional[bool] = None,
    limit: Annotated[int, Query(ge=1, le=5000)] = 500,
) -> PhotoQueryResult:
    """Indexed photos captured in the window (default: last 30 days), oldest first."""
    to_utc = parse_time_param(to, "to") or utc_now()
    from_utc = parse_time_param(from_, "from") or to_utc - timedelta(days=DEFAULT_WINDOW_DAYS)
    rows = await query_photos(session, from_utc, to_utc, bbox=parse_bbox(bbox), has_gps=has_gps, limit=limit)
    photos = [PhotoResponse.model_validate(r) for r in rows]
    return PhotoQueryResult(
        success=True,
        status="ok",
        message=f"Found {len(photos)} photo(s).",
        photos=photos,
        count=len(photos),
    )

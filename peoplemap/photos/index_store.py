"""Photo index storage and range queries. Writers must run inside get_session() (caller commits)."""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from peoplemap.geo import is_valid_coordinate
from peoplemap.photos.models import PhotoIndex
from peoplemap.timeutil import utc_now

log = logging.getLogger(__name__)

# (min_lat, min_lon, max_lat, max_lon)
BoundingBox = Tuple[float, float, float, float]


async def get_photo(session: AsyncSession, item_id: str) -> Optional[PhotoIndex]:
    """Return the index row for a drive item, or None."""
    return await session.get(PhotoIndex, item_id)


async def upsert_photo(
    session: AsyncSession,
    item_id: str,
    etag: Optional[str],
    local_path: str,
    thumbnail_path: Optional[str],
    capture_utc: datetime,
    latitude: Optional[float],
    longitude: Optional[float],
    width_px: Optional[int],
    height_px: Optional[int],
    source_last_modified_utc: Optional[datetime],
) -> PhotoIndex:
    """Create or overwrite the index row. A half or invalid coordinate pair is stored as no GPS."""
    if not is_valid_coordinate(latitude, longitude):
        latitude = longitude = None
    has_gps = latitude is not None and longitude is not None

    row = await session.get(PhotoIndex, item_id)
    if row is None:
        row = PhotoIndex(item_id=item_id)
        session.add(row)
    row.etag = etag
    row.local_path = local_path
    row.thumbnail_path = thumbnail_path
    row.capture_utc = capture_utc
    row.latitude = latitude
    row.longitude = longitude
    row.width_px = width_px
    row.height_px = height_px
    row.has_gps = has_gps
    row.source_last_modified_utc = source_last_modified_utc
    row.indexed_at_utc = utc_now()
    log.debug("Indexed photo item_id=%s has_gps=%s", item_id, has_gps)
    return row


async def query_photos(
    session: AsyncSession,
    from_utc: datetime,
    to_utc: datetime,
    bbox: Optional[BoundingBox] = None,
    has_gps: Optional[bool] = None,
    limit: int = 500,
) -> List[PhotoIndex]:
    """Photos captured in [from_utc, to_utc], oldest first. A bbox only matches photos with GPS."""
    stmt = select(PhotoIndex).where(
        PhotoIndex.capture_utc >= from_utc,
        PhotoIndex.capture_utc <= to_utc,
    )
    if bbox is not None:
        min_lat, min_lon, max_lat, max_lon = bbox
        stmt = stmt.where(
            PhotoIndex.has_gps.is_(True),
            PhotoIndex.latitude >= min_lat,
            PhotoIndex.latitude <= max_lat,
            PhotoIndex.longitude >= min_lon,
            PhotoIndex.longitude <= max_lon,
        )
    elif has_gps is not None:
        stmt = stmt.where(PhotoIndex.has_gps.is_(has_gps))
    stmt = stmt.order_by(PhotoIndex.capture_utc, PhotoIndex.item_id).limit(max(1, limit))
    result = await session.execute(stmt)
    return list(result.scalars().all())

"""Pydantic schemas for location-history tracks."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class TrackPoint(BaseModel):
    lat: float
    lon: float
    ts: datetime
    accuracy: Optional[int] = None
    state: Optional[str] = None


class EntityTrack(BaseModel):
    entity_id: str
    points: List[TrackPoint]


class TracksQueryResult(BaseModel):
    """Response for a track query. total_points is the sum over all returned tracks."""

    success: bool
    status: str
    message: str
    from_utc: datetime
    to_utc: datetime
    tracks: List[EntityTrack] = []
    total_points: int = 0

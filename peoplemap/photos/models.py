"""Photo index: SQLAlchemy model and Pydantic schemas for the map card."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, Float, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from peoplemap.db.session import Base
from peoplemap.db.types import UtcDateTime
from peoplemap.timeutil import utc_now


class PhotoIndex(Base):
    """One row per synced drive item. latitude/longitude are both set or both null."""

    __tablename__ = "photo_index"

    item_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    etag: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    local_path: Mapped[str] = mapped_column(Text, nullable=False)
    thumbnail_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    capture_utc: Mapped[datetime] = mapped_column(UtcDateTime, nullable=False, index=True)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    width_px: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    height_px: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    has_gps: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    source_last_modified_utc: Mapped[Optional[datetime]] = mapped_column(UtcDateTime, nullable=True)
    indexed_at_utc: Mapped[datetime] = mapped_column(UtcDateTime, default=utc_now, nullable=False)


# Pydantic schemas for API
class PhotoResponse(BaseModel):
    """Index row as returned to the map card."""

    model_config = ConfigDict(from_attributes=True)

    item_id: str
    local_path: str
    thumbnail_path: Optional[str] = None
    capture_utc: datetime
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    width_px: Optional[int] = None
    height_px: Optional[int] = None
    has_gps: bool


class PhotoQueryResult(BaseModel):
    success: bool
    status: str
    message: str
    photos: List[PhotoResponse] = []
    count: int = 0

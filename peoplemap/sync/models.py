"""Sync bookkeeping: SQLAlchemy models (key/value state, downloaded files) and Pydantic result schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel
from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from peoplemap.db.session import Base
from peoplemap.db.types import UtcDateTime
from peoplemap.timeutil import utc_now


class SyncState(Base):
    """Single string value per key (e.g. last sync marker per drive/folder)."""

    __tablename__ = "sync_state"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at_utc: Mapped[datetime] = mapped_column(UtcDateTime, default=utc_now, nullable=False)


class DownloadedFile(Base):
    """Last successful download per drive item. Basis for skip-if-unchanged decisions."""

    __tablename__ = "downloaded_files"

    item_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    etag: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    size_bytes: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    last_modified_utc: Mapped[Optional[datetime]] = mapped_column(UtcDateTime, nullable=True)
    local_path: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at_utc: Mapped[datetime] = mapped_column(UtcDateTime, default=utc_now, nullable=False)


# Pydantic schemas for API
class SyncResult(BaseModel):
    """Outcome of one sync run. Counters reflect work done before the run ended."""

    success: bool
    status: str
    message: str
    examined: int = 0
    downloaded: int = 0
    skipped: int = 0
    started_at_utc: datetime
    finished_at_utc: datetime


class DriveFolder(BaseModel):
    """Direct child folder of a drive path."""

    id: str
    name: str
    path: str
    child_count: Optional[int] = None


class FolderListResult(BaseModel):
    """Folder picker response."""

    success: bool
    status: str
    message: str
    path: str
    folders: List[DriveFolder] = []

"""Sync state and downloaded-file records. Caller commits (use within get_session())."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from peoplemap.sync.models import DownloadedFile, SyncState
from peoplemap.timeutil import utc_now

log = logging.getLogger(__name__)


async def get_state(session: AsyncSession, key: str) -> Optional[str]:
    """Return stored value for key, or None."""
    row = await session.get(SyncState, key)
    return row.value if row else None


async def set_state(session: AsyncSession, key: str, value: str) -> None:
    """Store or overwrite value for key."""
    row = await session.get(SyncState, key)
    if row:
        row.value = value
        row.updated_at_utc = utc_now()
    else:
        session.add(SyncState(key=key, value=value, updated_at_utc=utc_now()))


async def get_file_record(session: AsyncSession, item_id: str) -> Optional[DownloadedFile]:
    """Return the download record for a drive item, or None."""
    return await session.get(DownloadedFile, item_id)


async def upsert_file(
    session: AsyncSession,
    item_id: str,
    etag: Optional[str],
    size_bytes: Optional[int],
    last_modified_utc: Optional[datetime],
    local_path: str,
) -> None:
    """Create or overwrite the download record for a drive item."""
    row = await session.get(DownloadedFile, item_id)
    if row:
        row.etag = etag
        row.size_bytes = size_bytes
        row.last_modified_utc = last_modified_utc
        row.local_path = local_path
        row.updated_at_utc = utc_now()
    else:
        session.add(
            DownloadedFile(
                item_id=item_id,
                etag=etag,
                size_bytes=size_bytes,
                last_modified_utc=last_modified_utc,
                local_path=local_path,
                updated_at_utc=utc_now(),
            )
        )
    log.debug("Upserted download record item_id=%s path=%s", item_id, local_path)

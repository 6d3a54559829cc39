"""
Per-item processing for synced photos: filter, change detection, staged download,
resize, thumbnail, EXIF indexing.
"""

import asyncio
import logging
import os
import re
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

import httpx
from sqlalchemy.exc import SQLAlchemyError

from peoplemap.config import Settings
from peoplemap.db.session import get_session
from peoplemap.http import HttpClients
from peoplemap.photos import index_store
from peoplemap.photos.exif import extract_photo_metadata
from peoplemap.photos.imaging import ensure_thumbnail, read_dimensions, resize_in_place
from peoplemap.sync import state_store
from peoplemap.sync.crawler import RemoteFile

log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".heic", ".heif", ".webp"})
MAX_NAME_LENGTH = 80
DOWNLOAD_CHUNK_SIZE = 64 * 1024

_INVALID_NAME_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
_WHITESPACE = re.compile(r"\s")


class ItemOutcome(str, Enum):
    DOWNLOADED = "downloaded"
    SKIPPED = "skipped"


def is_supported_image(file_name: str) -> bool:
    return Path(file_name).suffix.lower() in SUPPORTED_EXTENSIONS


def sanitize_file_name(value: str) -> str:
    """Drop path-unsafe characters, whitespace to '_', trim '_' and '.'; empty result -> 'photo'."""
    cleaned = _WHITESPACE.sub("_", _INVALID_NAME_CHARS.sub("", value)).strip("_.")
    return cleaned or "photo"


def build_local_path(destination_root: Path, remote: RemoteFile) -> Path:
    """
    destination_root/YYYY/MM/YYYYMMDD_HHMMSS_{id[:8]}_{name}{ext}, bucketed by remote
    last-modified time. A numeric suffix is added when the name is taken.
    """
    ts = remote.last_modified_utc
    folder = destination_root / f"{ts:%Y}" / f"{ts:%m}"
    folder.mkdir(parents=True, exist_ok=True)

    name = Path(remote.file_name)
    safe_name = sanitize_file_name(name.stem)[:MAX_NAME_LENGTH]
    base = f"{ts:%Y%m%d_%H%M%S}_{remote.item_id[:8]}_{safe_name}"
    candidate = folder / f"{base}{name.suffix}"
    counter = 1
    while candidate.exists():
        candidate = folder / f"{base}_{counter}{name.suffix}"
        counter += 1
    return candidate


def staging_path_for(destination: Path) -> Path:
    return destination.with_name(destination.name + ".tmp")


class PhotoPipeline:
    """Decides, downloads and indexes one RemoteFile at a time."""

    def __init__(self, http: HttpClients) -> None:
        self._http = http

    async def process(self, remote: RemoteFile, cutoff_utc: datetime, settings: Settings) -> ItemOutcome:
        if not is_supported_image(remote.file_name):
            log.debug("Skip %s: unsupported type", remote.file_name)
            return ItemOutcome.SKIPPED
        if remote.last_modified_utc < cutoff_utc:
            log.debug("Skip %s: modified before cutoff", remote.file_name)
            return ItemOutcome.SKIPPED

        async with get_session() as session:
            record = await state_store.get_file_record(session, remote.item_id)
            existing_path: Optional[Path] = Path(record.local_path) if record else None
            unchanged = record is not None and record.etag == remote.etag and existing_path.is_file()

        if unchanged:
            await self._refresh_existing(remote, existing_path, settings)
            return ItemOutcome.SKIPPED

        try:
            if existing_path is not None:
                destination = existing_path
                destination.parent.mkdir(parents=True, exist_ok=True)
            else:
                destination = build_local_path(settings.destination_root, remote)
        except OSError as e:
            log.warning("Cannot prepare local path for %s (%s): %s", remote.item_id, remote.file_name, e)
            return ItemOutcome.SKIPPED

        try:
            await self._download(remote.download_url, destination, settings.max_size)
        except (httpx.HTTPError, OSError) as e:
            log.warning("Failed downloading %s (%s): %s", remote.item_id, remote.file_name, e)
            return ItemOutcome.SKIPPED

        try:
            async with get_session() as session:
                await state_store.upsert_file(
                    session,
                    item_id=remote.item_id,
                    etag=remote.etag,
                    size_bytes=remote.size_bytes,
                    last_modified_utc=remote.last_modified_utc,
                    local_path=str(destination),
                )
        except SQLAlchemyError as e:
            log.warning("Cannot record download of %s: %s", remote.item_id, e)
            # A new file without a download record would be orphaned
            if existing_path is None:
                destination.unlink(missing_ok=True)
            return ItemOutcome.SKIPPED
        log.info("Downloaded %s -> %s", remote.file_name, destination)

        thumbnail = await asyncio.to_thread(ensure_thumbnail, destination)
        await self._index(remote, destination, thumbnail)
        return ItemOutcome.DOWNLOADED

    async def _download(self, url: str, destination: Path, max_size: int) -> None:
        """Stream into a staging file, resize it, then move it under its final name."""
        staged = staging_path_for(destination)
        try:
            async with self._http.graph() as client:
                async with client.stream("GET", url) as r:
                    r.raise_for_status()
                    with open(staged, "wb") as f:
                        async for chunk in r.aiter_bytes(DOWNLOAD_CHUNK_SIZE):
                            f.write(chunk)
            await asyncio.to_thread(resize_in_place, staged, max_size)
            os.replace(staged, destination)
        except BaseException:
            staged.unlink(missing_ok=True)
            raise

    async def _refresh_existing(self, remote: RemoteFile, path: Path, settings: Settings) -> None:
        """Unchanged item already on disk: enforce size bound, thumbnail and index."""
        await asyncio.to_thread(resize_in_place, path, settings.max_size)
        thumbnail = await asyncio.to_thread(ensure_thumbnail, path)
        async with get_session() as session:
            row = await index_store.get_photo(session, remote.item_id)
            stale = (
                row is None
                or row.etag != remote.etag
                or row.local_path != str(path)
                or (thumbnail is not None and row.thumbnail_path != str(thumbnail))
            )
        if stale:
            await self._index(remote, path, thumbnail)

    async def _index(self, remote: RemoteFile, path: Path, thumbnail: Optional[Path]) -> None:
        """Index failures are logged; the downloaded file stays."""
        try:
            metadata = await asyncio.to_thread(extract_photo_metadata, path)
            size = await asyncio.to_thread(read_dimensions, path)
            async with get_session() as session:
                await index_store.upsert_photo(
                    session,
                    item_id=remote.item_id,
                    etag=remote.etag,
                    local_path=str(path),
                    thumbnail_path=str(thumbnail) if thumbnail else None,
                    capture_utc=metadata.capture_utc or remote.last_modified_utc,
                    latitude=metadata.latitude,
                    longitude=metadata.longitude,
                    width_px=size[0] if size else None,
                    height_px=size[1] if size else None,
                    source_last_modified_utc=remote.last_modified_utc,
                )
        except Exception:
            log.exception("Indexing failed for %s", path)

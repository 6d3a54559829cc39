"""Tests for per-item photo processing: filters, staged download, resize, thumbnail, index."""

import io
from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import pytest
from PIL import Image
from sqlalchemy.exc import SQLAlchemyError

from peoplemap.http import HttpClients
from peoplemap.photos import index_store
from peoplemap.sync import state_store
from peoplemap.sync.crawler import RemoteFile
from peoplemap.sync.pipeline import (
    ItemOutcome,
    PhotoPipeline,
    build_local_path,
    is_supported_image,
    sanitize_file_name,
)

MODIFIED = datetime(2024, 5, 1, 10, 20, 30, tzinfo=timezone.utc)
CUTOFF = MODIFIED - timedelta(days=5)


def _jpeg_bytes(size=(1200, 900)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (200, 30, 30)).save(buf, format="JPEG")
    return buf.getvalue()


def _remote(item_id="ABCDEFGH1234", name="IMG 0001.jpg", etag="e1", modified=MODIFIED):
    return RemoteFile(
        item_id=item_id,
        file_name=name,
        download_url=f"https://download.example/{item_id}",
        etag=etag,
        size_bytes=100,
        last_modified_utc=modified,
    )


def _pipeline(settings, handler=None):
    requests = []

    def default_handler(request):
        return httpx.Response(200, content=_jpeg_bytes())

    def recording(request):
        requests.append(str(request.url))
        return (handler or default_handler)(request)

    http = HttpClients(lambda: settings, transport=httpx.MockTransport(recording))
    return PhotoPipeline(http), requests


def test_supported_extensions_case_insensitive():
    assert is_supported_image("a.JPG")
    assert is_supported_image("b.heic")
    assert is_supported_image("c.WebP")
    assert not is_supported_image("clip.mp4")
    assert not is_supported_image("noext")


def test_sanitize_file_name():
    assert sanitize_file_name("My Trip: day 1") == "My_Trip_day_1"
    assert sanitize_file_name("..__") == "photo"
    assert sanitize_file_name("a/b\\c") == "abc"


def test_build_local_path_layout_and_collision(tmp_path):
    remote = _remote()
    first = build_local_path(tmp_path, remote)
    assert first == tmp_path / "2024" / "05" / "20240501_102030_ABCDEFGH_IMG_0001.jpg"
    first.write_bytes(b"x")
    second = build_local_path(tmp_path, remote)
    assert second.name == "20240501_102030_ABCDEFGH_IMG_0001_1.jpg"


def test_build_local_path_truncates_long_names(tmp_path):
    path = build_local_path(tmp_path, _remote(name="n" * 200 + ".png"))
    assert path.name == "20240501_102030_ABCDEFGH_" + "n" * 80 + ".png"


@pytest.mark.asyncio
async def test_unsupported_extension_skips_without_download(db, settings_factory):
    pipeline, requests = _pipeline(settings_factory())
    outcome = await pipeline.process(_remote(name="clip.mp4"), CUTOFF, settings_factory())
    assert outcome == ItemOutcome.SKIPPED
    assert requests == []


@pytest.mark.asyncio
async def test_old_file_skips_without_download(db, settings_factory):
    settings = settings_factory()
    pipeline, requests = _pipeline(settings)
    old = _remote(modified=CUTOFF - timedelta(seconds=1))
    assert await pipeline.process(old, CUTOFF, settings) == ItemOutcome.SKIPPED
    assert requests == []


@pytest.mark.asyncio
async def test_download_resize_thumbnail_and_index(db, settings_factory):
    settings = settings_factory(max_size=600)
    pipeline, requests = _pipeline(settings)
    remote = _remote()

    assert await pipeline.process(remote, CUTOFF, settings) == ItemOutcome.DOWNLOADED
    assert requests == ["https://download.example/ABCDEFGH1234"]

    async with db() as session:
        record = await state_store.get_file_record(session, remote.item_id)
        photo = await index_store.get_photo(session, remote.item_id)
    assert record is not None and record.etag == "e1"
    dest = settings.destination_root / "2024" / "05" / "20240501_102030_ABCDEFGH_IMG_0001.jpg"
    assert record.local_path == str(dest)
    with Image.open(dest) as img:
        assert img.size == (600, 450)
    assert not dest.with_name(dest.name + ".tmp").exists()
    assert (dest.parent / "thumb_20240501_102030_ABCDEFGH_IMG_0001.jpg").is_file()

    assert photo is not None
    assert photo.thumbnail_path == str(dest.parent / "thumb_20240501_102030_ABCDEFGH_IMG_0001.jpg")
    # no EXIF: capture time falls back to the remote modification time
    assert photo.capture_utc == MODIFIED
    assert (photo.width_px, photo.height_px) == (600, 450)
    assert photo.has_gps is False


@pytest.mark.asyncio
async def test_unchanged_item_is_skipped_without_download(db, settings_factory):
    settings = settings_factory()
    pipeline, requests = _pipeline(settings)
    remote = _remote()
    assert await pipeline.process(remote, CUTOFF, settings) == ItemOutcome.DOWNLOADED
    assert await pipeline.process(remote, CUTOFF, settings) == ItemOutcome.SKIPPED
    assert len(requests) == 1


@pytest.mark.asyncio
async def test_changed_item_reuses_local_path(db, settings_factory):
    settings = settings_factory()
    pipeline, requests = _pipeline(settings)
    await pipeline.process(_remote(etag="e1"), CUTOFF, settings)
    async with db() as session:
        first_path = (await state_store.get_file_record(session, "ABCDEFGH1234")).local_path

    assert await pipeline.process(_remote(etag="e2"), CUTOFF, settings) == ItemOutcome.DOWNLOADED
    async with db() as session:
        record = await state_store.get_file_record(session, "ABCDEFGH1234")
        photo = await index_store.get_photo(session, "ABCDEFGH1234")
    assert record.local_path == first_path
    assert record.etag == "e2"
    assert photo.etag == "e2"
    assert len(requests) == 2


@pytest.mark.asyncio
async def test_missing_local_file_is_downloaded_again(db, settings_factory):
    settings = settings_factory()
    pipeline, requests = _pipeline(settings)
    remote = _remote()
    await pipeline.process(remote, CUTOFF, settings)
    async with db() as session:
        path = (await state_store.get_file_record(session, remote.item_id)).local_path
    Path(path).unlink()
    assert await pipeline.process(remote, CUTOFF, settings) == ItemOutcome.DOWNLOADED
    assert Path(path).is_file()


@pytest.mark.asyncio
async def test_download_failure_counts_as_skipped_and_leaves_no_file(db, settings_factory):
    settings = settings_factory()
    pipeline, _ = _pipeline(settings, handler=lambda r: httpx.Response(500, text="boom"))
    remote = _remote()
    assert await pipeline.process(remote, CUTOFF, settings) == ItemOutcome.SKIPPED
    month_dir = settings.destination_root / "2024" / "05"
    assert list(month_dir.iterdir()) == []
    async with db() as session:
        assert await state_store.get_file_record(session, remote.item_id) is None


@pytest.mark.asyncio
async def test_unchanged_item_is_resized_thumbnailed_and_reindexed(db, settings_factory):
    """An item already on disk gets the current size bound, a thumbnail and its index row back."""
    remote = _remote()
    pipeline, requests = _pipeline(settings_factory(max_size=2000))
    assert await pipeline.process(remote, CUTOFF, settings_factory(max_size=2000)) == ItemOutcome.DOWNLOADED

    async with db() as session:
        path = Path((await state_store.get_file_record(session, remote.item_id)).local_path)
        await session.delete(await index_store.get_photo(session, remote.item_id))
    with Image.open(path) as img:
        assert img.size == (1200, 900)
    thumb = path.parent / f"thumb_{path.stem}.jpg"
    thumb.unlink()

    smaller = settings_factory(max_size=600)
    assert await pipeline.process(remote, CUTOFF, smaller) == ItemOutcome.SKIPPED
    assert len(requests) == 1
    with Image.open(path) as img:
        assert img.size == (600, 450)
    assert thumb.is_file()
    async with db() as session:
        photo = await index_store.get_photo(session, remote.item_id)
    assert photo is not None
    assert photo.local_path == str(path)
    assert photo.thumbnail_path == str(thumb)


@pytest.mark.asyncio
async def test_unwritable_destination_counts_as_skipped(db, settings_factory, tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x")
    settings = settings_factory(media_root=blocker)
    pipeline, requests = _pipeline(settings)
    assert await pipeline.process(_remote(), CUTOFF, settings) == ItemOutcome.SKIPPED
    assert requests == []


@pytest.mark.asyncio
async def test_record_failure_counts_as_skipped_and_removes_file(db, settings_factory, monkeypatch):
    async def failing_upsert(session, **kwargs):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(state_store, "upsert_file", failing_upsert)
    settings = settings_factory()
    pipeline, requests = _pipeline(settings)
    remote = _remote()
    assert await pipeline.process(remote, CUTOFF, settings) == ItemOutcome.SKIPPED
    assert len(requests) == 1
    assert list((settings.destination_root / "2024" / "05").iterdir()) == []
    async with db() as session:
        assert await index_store.get_photo(session, remote.item_id) is None

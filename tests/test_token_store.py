"""Tests for the refresh-token file store."""

import json

import pytest

from peoplemap.auth.token_store import TokenStore


@pytest.fixture
def store(settings_factory):
    settings = settings_factory()
    return TokenStore(lambda: settings), settings.token_file


@pytest.mark.asyncio
async def test_missing_file_means_no_token(store):
    token_store, _ = store
    assert await token_store.get_refresh_token() is None
    assert await token_store.has_refresh_token() is False


@pytest.mark.asyncio
async def test_set_trims_and_persists_camel_case(store):
    token_store, path = store
    await token_store.set_refresh_token("  rt-1  ")
    assert await token_store.get_refresh_token() == "rt-1"
    data = json.loads(path.read_text(encoding="utf-8"))
    assert data["refreshToken"] == "rt-1"
    assert "updatedAtUtc" in data


@pytest.mark.asyncio
async def test_blank_token_is_ignored(store):
    token_store, path = store
    await token_store.set_refresh_token("rt-1")
    await token_store.set_refresh_token("   ")
    await token_store.set_refresh_token(None)
    assert await token_store.get_refresh_token() == "rt-1"


@pytest.mark.asyncio
async def test_invalid_file_is_treated_as_empty(store):
    token_store, path = store
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{not json", encoding="utf-8")
    assert await token_store.get_refresh_token() is None
    await token_store.set_refresh_token("rt-2")
    assert await token_store.get_refresh_token() == "rt-2"


@pytest.mark.asyncio
async def test_overwrite_keeps_single_slot(store):
    token_store, path = store
    await token_store.set_refresh_token("old")
    await token_store.set_refresh_token("new")
    assert json.loads(path.read_text(encoding="utf-8"))["refreshToken"] == "new"
    assert not path.with_name(path.name + ".tmp").exists()

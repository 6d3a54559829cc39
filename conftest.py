"""Pytest configuration: set test env before any peoplemap imports so DB, options and tokens use temp paths."""

import os
import tempfile

import pytest
import pytest_asyncio

# Set before peoplemap.db.session or peoplemap.config are used so engine and settings use test paths
_tmp = tempfile.mkdtemp(prefix="peoplemap_test_")
os.environ.setdefault("PEOPLEMAP_DB_PATH", os.path.join(_tmp, "test.db"))
os.environ.setdefault("PEOPLEMAP_DATA_DIR", _tmp)
os.environ.setdefault("PEOPLEMAP_TOKEN_FILE", os.path.join(_tmp, "onedrive_tokens.json"))
os.environ.setdefault("PEOPLEMAP_MEDIA_ROOT", os.path.join(_tmp, "media"))
# No add-on options file in tests: defaults + env only
os.environ.setdefault("PEOPLEMAP_OPTIONS_FILE", os.path.join(_tmp, "options.json"))
os.environ.setdefault("PEOPLEMAP_RUN_SYNC_ON_STARTUP", "false")


@pytest_asyncio.fixture
async def db():
    """Create tables and empty them so each test starts from a clean record store."""
    from peoplemap.db.session import Base, get_session, init_db

    await init_db()
    async with get_session() as session:
        for table in reversed(Base.metadata.sorted_tables):
            await session.execute(table.delete())
    return get_session


@pytest.fixture
def settings_factory(tmp_path):
    """Build Settings with test paths; keyword overrides win."""
    from peoplemap.config import Settings

    def make(**overrides):
        values = {
            "media_root": tmp_path / "media",
            "data_dir": tmp_path / "data",
            "token_file": tmp_path / "data" / "onedrive_tokens.json",
        }
        values.update(overrides)
        return Settings(**values)

    return make

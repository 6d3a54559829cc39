"""Durable slot for the OneDrive refresh token (JSON file in the add-on data directory)."""

import asyncio
import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from peoplemap.config import Settings, get_settings

log = logging.getLogger(__name__)


class TokenStore:
    """
    Holds at most one refresh token. File layout: {"refreshToken": ..., "updatedAtUtc": ...}.
    All reads and writes go through one asyncio.Lock; an unreadable file counts as empty.
    """

    def __init__(self, settings_provider: Callable[[], Settings] = get_settings) -> None:
        self._settings_provider = settings_provider
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._settings_provider().token_file

    async def get_refresh_token(self) -> Optional[str]:
        """Return the stored refresh token, or None if missing or blank."""
        async with self._lock:
            snapshot = self._read()
        token = snapshot.get("refreshToken")
        if not isinstance(token, str) or not token.strip():
            return None
        return token

    async def has_refresh_token(self) -> bool:
        return await self.get_refresh_token() is not None

    async def set_refresh_token(self, refresh_token: Optional[str]) -> None:
        """Persist a new refresh token (trimmed). Blank input is ignored."""
        if not refresh_token or not refresh_token.strip():
            return
        async with self._lock:
            snapshot = self._read()
            snapshot["refreshToken"] = refresh_token.strip()
            snapshot["updatedAtUtc"] = datetime.now(timezone.utc).isoformat()
            self._write(snapshot)
        log.info("Stored OneDrive refresh token in %s", self.path)

    def _read(self) -> Dict[str, Any]:
        path = self.path
        if not path.is_file():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log.warning("Failed to read token file %s, ignoring invalid file: %s", path, e)
            return {}
        if not isinstance(data, dict):
            log.warning("Token file %s does not hold an object, ignoring", path)
            return {}
        return data

    def _write(self, snapshot: Dict[str, Any]) -> None:
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        tmp.write_text(json.dumps(snapshot), encoding="utf-8")
        os.replace(tmp, path)

"""One OneDrive sync run at a time: authenticate, crawl, process, record, report."""

import asyncio
import logging
from contextlib import aclosing
from datetime import timedelta
from typing import Callable, Optional

from peoplemap.auth.broker import TokenBroker
from peoplemap.auth.token_store import TokenStore
from peoplemap.config import Settings, get_settings
from peoplemap.db.session import get_session
from peoplemap.http import truncate
from peoplemap.sync import state_store
from peoplemap.sync.crawler import DriveCrawler, GraphError
from peoplemap.sync.models import FolderListResult, SyncResult
from peoplemap.sync.pipeline import ItemOutcome, PhotoPipeline
from peoplemap.timeutil import utc_now

log = logging.getLogger(__name__)

MSG_DISABLED = "OneDrive sync is disabled."
MSG_INVALID_CONFIG = "Missing OneDrive client_id or refresh_token."
MSG_BUSY = "Sync already in progress."
MSG_AUTH_FAILED = "Unable to refresh OneDrive access token."
MSG_EMPTY_TOKEN = "Received empty access token from OneDrive."


def state_key_prefix(settings: Settings) -> str:
    drive = settings.onedrive_drive_id or "me"
    return f"onedrive:{drive}:{settings.onedrive_folder_path}"


class _AuthFailure(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class SyncOrchestrator:
    """Owns the run lock and the last-result slot."""

    def __init__(
        self,
        broker: TokenBroker,
        token_store: TokenStore,
        crawler: DriveCrawler,
        pipeline: PhotoPipeline,
        settings_provider: Callable[[], Settings] = get_settings,
    ) -> None:
        self._broker = broker
        self._token_store = token_store
        self._crawler = crawler
        self._pipeline = pipeline
        self._settings_provider = settings_provider
        self._run_lock = asyncio.Lock()
        self._last_result: Optional[SyncResult] = None

    def get_last_result(self) -> Optional[SyncResult]:
        return self._last_result

    @property
    def is_running(self) -> bool:
        return self._run_lock.locked()

    def _remember(self, result: SyncResult) -> SyncResult:
        self._last_result = result
        return result

    def _immediate(self, success: bool, status: str, message: str) -> SyncResult:
        now = utc_now()
        return self._remember(
            SyncResult(success=success, status=status, message=message, started_at_utc=now, finished_at_utc=now)
        )

    async def _has_credentials(self, settings: Settings) -> bool:
        if not settings.has_client_id:
            return False
        return settings.config_refresh_token is not None or await self._token_store.has_refresh_token()

    async def _access_token(self, settings: Settings) -> str:
        """Raises _AuthFailure with a user-facing message."""
        try:
            token = await self._broker.get_access_token(settings)
        except Exception:
            log.exception("Unable to refresh OneDrive access token")
            raise _AuthFailure(MSG_AUTH_FAILED)
        if not token or not token.strip():
            raise _AuthFailure(MSG_EMPTY_TOKEN)
        return token

    async def run_once(self, reason: str) -> SyncResult:
        """Run one sync. Returns immediately with 'busy' if a run is in progress."""
        settings = self._settings_provider()
        if not settings.onedrive_enabled:
            return self._immediate(True, "skipped", MSG_DISABLED)
        if not await self._has_credentials(settings):
            return self._immediate(False, "invalid_config", MSG_INVALID_CONFIG)
        if self._run_lock.locked():
            log.info("Sync requested (%s) while another run is active", reason)
            return self._immediate(True, "busy", MSG_BUSY)
        async with self._run_lock:
            return self._remember(await self._run(settings, reason))

    async def _run(self, settings: Settings, reason: str) -> SyncResult:
        started = utc_now()
        cutoff = started - timedelta(days=settings.lookback_days)
        log.info(
            "Starting OneDrive sync reason=%s lookback_days=%s destination=%s",
            reason,
            settings.lookback_days,
            settings.destination_root,
        )

        try:
            access_token = await self._access_token(settings)
        except _AuthFailure as e:
            return SyncResult(
                success=False,
                status="auth_error",
                message=e.message,
                started_at_utc=started,
                finished_at_utc=utc_now(),
            )

        examined = downloaded = skipped = 0

        def under_cap() -> bool:
            return downloaded < settings.max_files_per_run

        status, success, message = "ok", True, "Sync completed."
        try:
            async with aclosing(self._crawler.iter_files(access_token, settings, under_cap)) as files:
                async for remote in files:
                    if not under_cap():
                        break
                    examined += 1
                    outcome = await self._pipeline.process(remote, cutoff, settings)
                    if outcome == ItemOutcome.DOWNLOADED:
                        downloaded += 1
                    else:
                        skipped += 1
        except GraphError as e:
            status, success = "graph_error", False
            message = f"Graph request failed with status {e.status_code}: {e.message}"
        except Exception as e:
            log.exception("OneDrive sync crashed")
            status, success = "exception", False
            message = f"Sync failed: {truncate(str(e), 300)}"

        try:
            async with get_session() as session:
                await state_store.set_state(
                    session, f"{state_key_prefix(settings)}:last_sync_utc", utc_now().isoformat()
                )
        except Exception:
            log.exception("Could not record last sync time")

        log.info(
            "OneDrive sync finished status=%s examined=%s downloaded=%s skipped=%s",
            status,
            examined,
            downloaded,
            skipped,
        )
        return SyncResult(
            success=success,
            status=status,
            message=message,
            examined=examined,
            downloaded=downloaded,
            skipped=skipped,
            started_at_utc=started,
            finished_at_utc=utc_now(),
        )

    async def list_folders(self, path: Optional[str]) -> FolderListResult:
        """Direct child folders of path for the folder picker."""
        settings = self._settings_provider()
        path = path or "/"
        if not await self._has_credentials(settings):
            return FolderListResult(success=False, status="invalid_config", message=MSG_INVALID_CONFIG, path=path)
        try:
            access_token = await self._access_token(settings)
        except _AuthFailure as e:
            return FolderListResult(success=False, status="auth_error", message=e.message, path=path)
        try:
            folders = await self._crawler.list_folders(access_token, settings, path)
        except GraphError as e:
            return FolderListResult(
                success=False,
                status="graph_error",
                message=f"Graph request failed with status {e.status_code}: {e.message}",
                path=path,
            )
        except Exception as e:
            log.exception("Folder listing crashed")
            return FolderListResult(
                success=False,
                status="exception",
                message=f"Folder listing failed: {truncate(str(e), 300)}",
                path=path,
            )
        return FolderListResult(
            success=True,
            status="ok",
            message=f"Found {len(folders)} folder(s).",
            path=path,
            folders=folders,
        )

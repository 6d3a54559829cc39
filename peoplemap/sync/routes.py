"""Sync routes: status, manual run, OneDrive folder picker."""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from peoplemap.config import get_settings
from peoplemap.dependencies import get_orchestrator
from peoplemap.limiter import limiter
from peoplemap.sync.orchestrator import SyncOrchestrator

router = APIRouter(prefix="/api/people_map_plus", tags=["sync"])
log = logging.getLogger(__name__)


@router.get("/sync/status")
async def sync_status(orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)]) -> dict:
    """Effective options (no secrets) and the last run result."""
    settings = get_settings()
    last = orchestrator.get_last_result()
    return {
        "enabled": settings.onedrive_enabled,
        "running": orchestrator.is_running,
        "folder_path": settings.onedrive_folder_path,
        "drive_id": settings.onedrive_drive_id or None,
        "destination": str(settings.destination_root),
        "lookback_days": settings.lookback_days,
        "sync_interval_hours": settings.sync_interval_hours,
        "max_files_per_run": settings.max_files_per_run,
        "max_size": settings.max_size,
        "last_result": last.model_dump(mode="json") if last else None,
    }


@router.post("/sync/run")
@limiter.limit("6/minute")
async def run_sync(
    request: Request,
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
) -> JSONResponse:
    """Run one sync now. 500 if the run failed."""
    result = await orchestrator.run_once("manual")
    log.info("Manual sync: %s", result.status)
    return JSONResponse(content=result.model_dump(mode="json"), status_code=200 if result.success else 500)


@router.get("/onedrive/folders")
async def list_folders(
    orchestrator: Annotated[SyncOrchestrator, Depends(get_orchestrator)],
    path: Optional[str] = None,
) -> JSONResponse:
    """Direct child folders of path (default: drive root)."""
    result = await orchestrator.list_folders(path)
    return JSONResponse(content=result.model_dump(mode="json"), status_code=200 if result.success else 400)

"""Background loop hosted by the application lifespan: optional startup run, then periodic runs."""

import asyncio
import logging
from typing import Awaitable, Callable

from peoplemap.config import Settings, get_settings
from peoplemap.sync.orchestrator import SyncOrchestrator

log = logging.getLogger(__name__)

DEFAULT_INTERVAL_HOURS = 24


async def _run_logged(orchestrator: SyncOrchestrator, reason: str) -> None:
    try:
        result = await orchestrator.run_once(reason)
        log.info("Scheduled sync (%s) result: %s - %s", reason, result.status, result.message)
    except Exception:
        log.exception("Scheduled sync (%s) failed", reason)


async def run_sync_schedule(
    orchestrator: SyncOrchestrator,
    settings_provider: Callable[[], Settings] = get_settings,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Runs until cancelled. The interval is re-read from settings before every wait."""
    try:
        on_startup = settings_provider().run_sync_on_startup
    except Exception:
        log.exception("Could not load settings, skipping startup sync")
        on_startup = False
    if on_startup:
        await _run_logged(orchestrator, "startup")
    while True:
        try:
            hours = settings_provider().sync_interval_hours
        except Exception:
            log.exception("Could not load settings, using default interval")
            hours = DEFAULT_INTERVAL_HOURS
        await sleep(hours * 3600)
        await _run_logged(orchestrator, "schedule")

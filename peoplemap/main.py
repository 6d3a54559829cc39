"""FastAPI application entry point."""

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from peoplemap import __version__
from peoplemap.auth.broker import TokenBroker
from peoplemap.auth.device_flow import DeviceAuthFlow
from peoplemap.auth.routes import router as device_router
from peoplemap.auth.token_store import TokenStore
from peoplemap.config import get_settings
from peoplemap.db.session import init_db
from peoplemap.history.routes import router as history_router
from peoplemap.history.service import HistoryTrackService
from peoplemap.http import HttpClients
from peoplemap.limiter import limiter
from peoplemap.photos.routes import router as photos_router
from peoplemap.sync.crawler import DriveCrawler
from peoplemap.sync.orchestrator import SyncOrchestrator
from peoplemap.sync.pipeline import PhotoPipeline
from peoplemap.sync.routes import router as sync_router
from peoplemap.sync.scheduler import run_sync_schedule

log = logging.getLogger(__name__)

# Add-on log levels -> stdlib levels
_LOG_LEVELS = {
    "trace": logging.DEBUG,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "notice": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "fatal": logging.CRITICAL,
}


def _setup_logging() -> None:
    """Configure logging from settings (stderr always; optional file)."""
    settings = get_settings()
    level = _LOG_LEVELS.get(settings.log_level, logging.INFO)
    fmt = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    root = logging.getLogger("peoplemap")
    root.setLevel(level)
    root.handlers.clear()
    sh = logging.StreamHandler()
    sh.setLevel(level)
    sh.setFormatter(fmt)
    root.addHandler(sh)
    if settings.log_file and str(settings.log_file).strip():
        try:
            fh = logging.FileHandler(settings.log_file, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(fmt)
            root.addHandler(fh)
            root.info("Logging to file %s", settings.log_file)
        except OSError as e:
            root.warning("Could not open log file %s: %s", settings.log_file, e)
    # Request lines from httpx would log every Graph page and download at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))


_setup_logging()


def build_services(app: FastAPI, http: HttpClients) -> None:
    """Wire the long-lived services onto app.state."""
    token_store = TokenStore()
    broker = TokenBroker(token_store, http)
    app.state.token_store = token_store
    app.state.device_flow = DeviceAuthFlow(token_store, http)
    app.state.orchestrator = SyncOrchestrator(
        broker=broker,
        token_store=token_store,
        crawler=DriveCrawler(http),
        pipeline=PhotoPipeline(http),
    )
    app.state.history_service = HistoryTrackService(http)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, wire services and start the sync scheduler; cancel it on shutdown."""
    log.info("Startup: initializing database")
    await init_db()
    if not hasattr(app.state, "orchestrator"):
        build_services(app, HttpClients())
    scheduler = asyncio.create_task(run_sync_schedule(app.state.orchestrator), name="sync-scheduler")
    log.info("Startup complete")
    yield
    log.info("Shutdown")
    scheduler.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await scheduler


app = FastAPI(title="People Map Plus", version=__version__, lifespan=lifespan)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Return generic 500 without leaking stack trace or internals."""
    if isinstance(exc, HTTPException):
        raise exc
    log.exception("Unhandled exception: %s", exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

app.include_router(sync_router)
app.include_router(device_router)
app.include_router(history_router)
app.include_router(photos_router)


@app.get("/health")
@app.get("/api/people_map_plus/health")
@limiter.exempt
def health(request: Request) -> JSONResponse:
    """Liveness for the Supervisor watchdog, with the last sync result."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    last = orchestrator.get_last_result() if orchestrator else None
    return JSONResponse(
        content={
            "status": "ok",
            "version": __version__,
            "last_sync": last.model_dump(mode="json") if last else None,
        }
    )


def run() -> None:
    """Console entry point: serve on all interfaces (ingress and direct port)."""
    uvicorn.run(app, host="0.0.0.0", port=get_settings().port, log_config=None)


if __name__ == "__main__":
    run()

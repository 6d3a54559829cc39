"""FastAPI dependencies: services created in the lifespan and kept on app.state."""

from fastapi import Request

from peoplemap.auth.device_flow import DeviceAuthFlow
from peoplemap.history.service import HistoryTrackService
from peoplemap.sync.orchestrator import SyncOrchestrator


def get_orchestrator(request: Request) -> SyncOrchestrator:
    return request.app.state.orchestrator


def get_device_flow(request: Request) -> DeviceAuthFlow:
    return request.app.state.device_flow


def get_history_service(request: Request) -> HistoryTrackService:
    return request.app.state.history_service

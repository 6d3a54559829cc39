"""OneDrive device-code connect routes used by the add-on UI."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from peoplemap.auth.device_flow import DeviceAuthFlow
from peoplemap.auth.models import DeviceAuthStatus
from peoplemap.dependencies import get_device_flow
from peoplemap.limiter import limiter

router = APIRouter(prefix="/api/people_map_plus/onedrive/device", tags=["onedrive-auth"])
log = logging.getLogger(__name__)


@router.get("/status", response_model=DeviceAuthStatus)
async def device_status(flow: Annotated[DeviceAuthFlow, Depends(get_device_flow)]) -> DeviceAuthStatus:
    return await flow.get_status()


@router.post("/start")
@limiter.limit("10/minute")
async def device_start(
    request: Request,
    flow: Annotated[DeviceAuthFlow, Depends(get_device_flow)],
) -> JSONResponse:
    """Begin device authorization; response carries the user code and verification URL."""
    result = await flow.start()
    return JSONResponse(content=result.model_dump(mode="json"), status_code=200 if result.success else 400)


@router.post("/poll")
@limiter.limit("30/minute")
async def device_poll(
    request: Request,
    flow: Annotated[DeviceAuthFlow, Depends(get_device_flow)],
) -> JSONResponse:
    """Check once whether the user confirmed the code. 'pending' is a success."""
    result = await flow.poll()
    if result.status == "connected":
        log.info("Device auth completed")
    return JSONResponse(content=result.model_dump(mode="json"), status_code=200 if result.success else 400)

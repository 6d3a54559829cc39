"""Device-code session state and Pydantic schemas for the OneDrive connect flow."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


@dataclass(frozen=True)
class DeviceAuthSession:
    """Pending device-code authorization. Lives in memory only."""

    device_code: str
    user_code: str
    verification_uri: str
    verification_uri_complete: Optional[str]
    message: str
    expires_in_seconds: int
    interval_seconds: int
    created_at_utc: datetime
    expires_at_utc: datetime


class DeviceCodeStartResult(BaseModel):
    """Outcome of starting device authorization."""

    success: bool
    status: str
    message: str
    user_code: Optional[str] = None
    verification_uri: Optional[str] = None
    verification_uri_complete: Optional[str] = None
    expires_in_seconds: Optional[int] = None
    interval_seconds: Optional[int] = None


class DeviceCodePollResult(BaseModel):
    """Outcome of one poll against the token endpoint."""

    success: bool
    status: str
    message: str


class ActiveDeviceSession(BaseModel):
    """Public view of the pending session (device code withheld)."""

    user_code: str
    verification_uri: str
    verification_uri_complete: Optional[str] = None
    expires_at_utc: datetime
    interval_seconds: int
    created_at_utc: datetime


class DeviceAuthStatus(BaseModel):
    """Connection status shown in the add-on UI."""

    mode: str = "device_code"
    has_stored_refresh_token: bool
    has_config_refresh_token: bool
    active_session: Optional[ActiveDeviceSession] = None

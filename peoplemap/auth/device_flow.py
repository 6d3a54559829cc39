"""
OAuth 2.0 device authorization grant against the Microsoft identity platform.

The user starts the flow in the add-on UI, confirms the code on another device,
then the UI polls until a refresh token arrives. Retry timing is left to the caller.
"""

import asyncio
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional

from peoplemap.auth.broker import device_code_endpoint, token_endpoint
from peoplemap.auth.models import (
    ActiveDeviceSession,
    DeviceAuthSession,
    DeviceAuthStatus,
    DeviceCodePollResult,
    DeviceCodeStartResult,
)
from peoplemap.auth.token_store import TokenStore
from peoplemap.config import Settings, get_settings
from peoplemap.http import HttpClients, truncate
from peoplemap.timeutil import utc_now

log = logging.getLogger(__name__)

DEVICE_CODE_GRANT = "urn:ietf:params:oauth:grant-type:device_code"

MSG_NO_SESSION = "No active device auth session. Start auth first."
MSG_EXPIRED = "Device auth session expired. Start again."


def _parse_json_object(body: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(body)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def extract_error_description(body: str) -> Optional[str]:
    """error_description, else error, else the raw body (None if blank)."""
    data = _parse_json_object(body)
    if data is not None:
        if "error_description" in data:
            return str(data["error_description"])
        if "error" in data:
            return str(data["error"])
    return body if body.strip() else None


def _non_empty_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value
    return None


def _int_value(data: Dict[str, Any], key: str) -> Optional[int]:
    value = data.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value


class DeviceAuthFlow:
    """Owns the single pending device-code session; the slot is guarded by its own lock."""

    def __init__(
        self,
        token_store: TokenStore,
        http: HttpClients,
        settings_provider: Callable[[], Settings] = get_settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._token_store = token_store
        self._http = http
        self._settings_provider = settings_provider
        self._clock = clock
        self._lock = asyncio.Lock()
        self._session: Optional[DeviceAuthSession] = None

    async def get_status(self) -> DeviceAuthStatus:
        settings = self._settings_provider()
        has_stored = await self._token_store.has_refresh_token()
        async with self._lock:
            session = self._session
        active = None
        if session is not None:
            active = ActiveDeviceSession(
                user_code=session.user_code,
                verification_uri=session.verification_uri,
                verification_uri_complete=session.verification_uri_complete,
                expires_at_utc=session.expires_at_utc,
                interval_seconds=session.interval_seconds,
                created_at_utc=session.created_at_utc,
            )
        return DeviceAuthStatus(
            has_stored_refresh_token=has_stored,
            has_config_refresh_token=settings.config_refresh_token is not None,
            active_session=active,
        )

    async def start(self) -> DeviceCodeStartResult:
        """Request a device code and user code. Replaces any pending session."""
        try:
            settings = self._settings_provider()
            if not settings.has_client_id:
                return DeviceCodeStartResult(
                    success=False,
                    status="invalid_config",
                    message="Set onedrive_client_id in add-on Configuration first.",
                )

            payload = {"client_id": settings.onedrive_client_id, "scope": settings.onedrive_scope}
            async with self._http.auth() as client:
                r = await client.post(device_code_endpoint(settings.onedrive_tenant), data=payload)
            body = r.text
            if not r.is_success:
                details = extract_error_description(body) or f"HTTP {r.status_code}"
                log.warning("Device code start failed status=%s body=%s", r.status_code, truncate(body, 600))
                return DeviceCodeStartResult(
                    success=False,
                    status="request_failed",
                    message=f"Cannot start device auth: {truncate(details, 220)}",
                )

            session = self._read_session(_parse_json_object(body))
            if session is None:
                return DeviceCodeStartResult(
                    success=False,
                    status="invalid_response",
                    message="Unexpected device auth response from Microsoft.",
                )

            async with self._lock:
                self._session = session
            log.info("Device auth started, code expires in %ss", session.expires_in_seconds)
            return DeviceCodeStartResult(
                success=True,
                status="verification_required",
                message=session.message,
                user_code=session.user_code,
                verification_uri=session.verification_uri,
                verification_uri_complete=session.verification_uri_complete,
                expires_in_seconds=session.expires_in_seconds,
                interval_seconds=session.interval_seconds,
            )
        except Exception as e:
            log.exception("Device code start crashed")
            return DeviceCodeStartResult(
                success=False,
                status="exception",
                message=f"Device auth crashed: {truncate(str(e), 300)}",
            )

    async def poll(self) -> DeviceCodePollResult:
        """Ask the token endpoint once whether the user has confirmed the code."""
        try:
            settings = self._settings_provider()
            async with self._lock:
                session = self._session
            if session is None:
                return DeviceCodePollResult(success=False, status="no_session", message=MSG_NO_SESSION)
            if self._clock() > session.expires_at_utc:
                await self._clear()
                return DeviceCodePollResult(success=False, status="expired", message=MSG_EXPIRED)

            payload = {
                "grant_type": DEVICE_CODE_GRANT,
                "client_id": settings.onedrive_client_id,
                "device_code": session.device_code,
            }
            if settings.onedrive_client_secret:
                payload["client_secret"] = settings.onedrive_client_secret

            async with self._http.auth() as client:
                r = await client.post(token_endpoint(settings.onedrive_tenant), data=payload)
            data = r.json()
            if not isinstance(data, dict):
                data = {}

            if r.is_success:
                refresh_token = _non_empty_str(data, "refresh_token")
                if refresh_token is None:
                    return DeviceCodePollResult(
                        success=False,
                        status="invalid_response",
                        message="Token response has no refresh_token.",
                    )
                await self._token_store.set_refresh_token(refresh_token)
                await self._clear()
                log.info("OneDrive connected via device auth")
                return DeviceCodePollResult(
                    success=True,
                    status="connected",
                    message="OneDrive connected. Refresh token saved.",
                )

            error = data.get("error")
            if error == "authorization_pending":
                return DeviceCodePollResult(
                    success=True,
                    status="pending",
                    message="Waiting for confirmation in Microsoft account.",
                )
            if error == "slow_down":
                return DeviceCodePollResult(
                    success=True,
                    status="pending",
                    message="Too frequent polling. Wait a few seconds and retry.",
                )
            if error == "expired_token":
                await self._clear()
                return DeviceCodePollResult(success=False, status="expired", message=MSG_EXPIRED)

            description = data.get("error_description")
            log.warning("Device auth poll failed status=%s error=%s", r.status_code, error)
            return DeviceCodePollResult(
                success=False,
                status="token_error",
                message=truncate(description, 300)
                if isinstance(description, str) and description.strip()
                else "Device auth failed.",
            )
        except Exception as e:
            log.exception("Device code poll crashed")
            return DeviceCodePollResult(
                success=False,
                status="exception",
                message=f"Device poll crashed: {truncate(str(e), 300)}",
            )

    async def _clear(self) -> None:
        async with self._lock:
            self._session = None

    def _read_session(self, data: Optional[Dict[str, Any]]) -> Optional[DeviceAuthSession]:
        if data is None:
            return None
        device_code = _non_empty_str(data, "device_code")
        user_code = _non_empty_str(data, "user_code")
        verification_uri = _non_empty_str(data, "verification_uri")
        expires_in = _int_value(data, "expires_in")
        interval = _int_value(data, "interval")
        if not device_code or not user_code or not verification_uri or expires_in is None or interval is None:
            return None

        complete = data.get("verification_uri_complete")
        message = _non_empty_str(data, "message") or f"Open {verification_uri} and enter code {user_code}."
        now = self._clock()
        return DeviceAuthSession(
            device_code=device_code,
            user_code=user_code,
            verification_uri=verification_uri,
            verification_uri_complete=complete if isinstance(complete, str) else None,
            message=message,
            expires_in_seconds=expires_in,
            interval_seconds=interval,
            created_at_utc=now,
            expires_at_utc=now + timedelta(seconds=expires_in),
        )

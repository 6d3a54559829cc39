"""Exchange the long-lived refresh token for a short-lived Graph access token."""

import logging
from typing import Optional

from peoplemap.auth.token_store import TokenStore
from peoplemap.config import Settings
from peoplemap.http import HttpClients, truncate

log = logging.getLogger(__name__)

AUTHORITY = "https://login.microsoftonline.com"


def token_endpoint(tenant: str) -> str:
    return f"{AUTHORITY}/{tenant}/oauth2/v2.0/token"


def device_code_endpoint(tenant: str) -> str:
    return f"{AUTHORITY}/{tenant}/oauth2/v2.0/devicecode"


class TokenBroker:
    """Refresh-token grant against the Microsoft identity platform. Rotated refresh tokens are persisted."""

    def __init__(self, token_store: TokenStore, http: HttpClients) -> None:
        self._token_store = token_store
        self._http = http

    async def resolve_refresh_token(self, settings: Settings) -> Optional[str]:
        """Configured refresh token wins over the stored one."""
        return settings.config_refresh_token or await self._token_store.get_refresh_token()

    async def get_access_token(self, settings: Settings) -> Optional[str]:
        """
        Return an access token, or None when there is no refresh token or the provider
        rejected the grant. Transport errors (httpx.HTTPError) propagate to the caller.
        """
        refresh_token = await self.resolve_refresh_token(settings)
        if not refresh_token:
            log.warning("No OneDrive refresh token configured or stored")
            return None

        payload = {
            "client_id": settings.onedrive_client_id,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "scope": settings.onedrive_scope,
        }
        if settings.onedrive_client_secret:
            payload["client_secret"] = settings.onedrive_client_secret

        async with self._http.auth() as client:
            r = await client.post(token_endpoint(settings.onedrive_tenant), data=payload)
        if not r.is_success:
            log.warning("Token refresh failed status=%s body=%s", r.status_code, truncate(r.text, 300))
            return None
        try:
            data = r.json()
        except ValueError:
            log.warning("Token refresh returned non-JSON body: %s", truncate(r.text, 300))
            return None
        if not isinstance(data, dict):
            return None

        rotated = data.get("refresh_token")
        if isinstance(rotated, str) and rotated.strip() and rotated != refresh_token:
            await self._token_store.set_refresh_token(rotated)
            log.debug("Refresh token rotated by provider")

        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            log.warning("Token refresh response has no access_token")
            return None
        return access_token

"""httpx client factory: one logical client per remote, each with its own timeout."""

from typing import Callable, Optional

import httpx

from peoplemap.config import Settings, get_settings


def truncate(text: str, max_length: int) -> str:
    """Shorten text for logs and user-facing messages."""
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."


class HttpClients:
    """
    Builds short-lived httpx.AsyncClient instances for Graph/downloads, the identity
    endpoints and the Home Assistant history API. Tests pass a MockTransport.
    """

    def __init__(
        self,
        settings_provider: Callable[[], Settings] = get_settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings_provider = settings_provider
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=self._transport,
            follow_redirects=True,
        )

    def graph(self) -> httpx.AsyncClient:
        """Bulk Graph listing and file download traffic."""
        return self._client(self._settings_provider().graph_timeout_seconds)

    def auth(self) -> httpx.AsyncClient:
        """Token and device-code endpoints."""
        return self._client(self._settings_provider().auth_timeout_seconds)

    def history(self) -> httpx.AsyncClient:
        """Home Assistant history API."""
        return self._client(self._settings_provider().history_timeout_seconds)

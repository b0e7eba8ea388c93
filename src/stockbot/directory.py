"""Display-name resolution for chat users."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from . import log
from .data_manager import LineSettings
from .ledger import LedgerStore


class ProfileLookupError(RuntimeError):
    """Raised when the messaging platform cannot return a user profile."""


class LineProfileClient:
    """Client for the messaging platform's user profile endpoint."""

    def __init__(
        self,
        channel_access_token: Optional[str],
        *,
        api_base: str = "https://api.line.me",
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._token = channel_access_token
        self._api_base = api_base.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    @classmethod
    def from_settings(cls, settings: LineSettings, *, http_client: httpx.AsyncClient | None = None) -> "LineProfileClient":
        return cls(
            settings.channel_access_token,
            api_base=settings.api_base,
            timeout=settings.timeout,
            http_client=http_client,
        )

    async def fetch_display_name(self, user_id: str) -> str:
        if not self._token:
            raise ProfileLookupError("No channel access token configured")

        url = f"{self._api_base}/v2/bot/profile/{user_id}"
        headers = {"Authorization": f"Bearer {self._token}"}
        try:
            response = await self._client.get(url, headers=headers)
            response.raise_for_status()
            payload: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ProfileLookupError(f"Profile lookup failed for '{user_id}': {exc}") from exc

        name = payload.get("displayName")
        if not isinstance(name, str) or not name.strip():
            raise ProfileLookupError(f"Profile for '{user_id}' has no display name")
        return name.strip()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class UserDirectory:
    """Map platform user ids to the display names recorded in the ledger.

    Known users are served from the directory sheet. Unknown users are looked
    up on the platform once and registered; when the lookup fails the
    configured fallback name is used and nothing is registered, so the next
    event retries the lookup.
    """

    def __init__(self, store: LedgerStore, client: Optional[LineProfileClient], *, fallback_name: str) -> None:
        self.store = store
        self.client = client
        self.fallback_name = fallback_name

    async def display_name(self, user_id: str) -> str:
        users = await self.store.users_map()
        if users.ok and user_id in users.value:
            return users.value[user_id]
        if self.client is None:
            return self.fallback_name

        try:
            name = await self.client.fetch_display_name(user_id)
        except ProfileLookupError as exc:
            log.warning("%s; using '%s'", exc, self.fallback_name)
            return self.fallback_name

        registered = await self.store.register_user(user_id, name)
        if not registered.ok:
            log.warning("Could not register '%s' in the user directory: %s", user_id, registered.error)
        return name

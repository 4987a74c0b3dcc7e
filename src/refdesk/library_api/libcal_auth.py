"""
Bearer-token provider for the LibCal API.

Tools pull the current token with :meth:`LibcalTokenProvider.get_current_token`; the provider
refreshes it shortly before it expires.  Refreshes are single-flight: callers that arrive while a
refresh is running wait for that refresh instead of starting their own.
"""

import asyncio
import logging
import time
from typing import (
    Any,
    Callable,
    Mapping,
)

import httpx

from refdesk.config import settings
from refdesk.core.errors import ValidationError

logger = logging.getLogger(__name__)

TOKEN_REFRESH_BUFFER_S = 5 * 60
AUTH_REJECTED = (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN)


class LibcalTokenProvider:
    """OAuth client-credentials token cache."""

    def __init__(
        self,
        oauth_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        grant_type: str | None = None,
        refresh_buffer_s: float = TOKEN_REFRESH_BUFFER_S,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.oauth_url = oauth_url or settings.LIBCAL_OAUTH_URL
        self.client_id = client_id or settings.LIBCAL_CLIENT_ID
        self.client_secret = client_secret or settings.LIBCAL_CLIENT_SECRET
        self.grant_type = grant_type or settings.LIBCAL_GRANT_TYPE
        self.refresh_buffer_s = refresh_buffer_s
        self._transport = transport
        self._clock = clock

        self._token = ""
        self._expires_at = 0.0
        self._generation = 0
        self._lock = asyncio.Lock()

    def is_token_expired(self) -> bool:
        return self._clock() >= self._expires_at

    def _expiring_soon(self) -> bool:
        return not self._token or self._clock() >= self._expires_at - self.refresh_buffer_s

    async def get_current_token(self) -> str:
        """Return a valid token, refreshing first if it is missing or about to expire."""
        if self._expiring_soon():
            await self.refresh_token()
        return self._token

    async def refresh_token(self) -> None:
        """
        Fetch a new token.

        Raises
        ------
        ValidationError
            If the OAuth endpoint is not configured.
        httpx.HTTPError
            If the token request fails.
        """
        seen_generation = self._generation
        async with self._lock:
            if self._generation != seen_generation:
                # Someone else refreshed while we were waiting for the lock
                return

            if not self.oauth_url:
                raise ValidationError("LIBCAL_OAUTH_URL is not configured")

            logger.info("Refreshing LibCal access token...")
            async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
                resp = await client.post(
                    self.oauth_url,
                    json={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "grant_type": self.grant_type,
                    },
                )
                resp.raise_for_status()
                data = resp.json()

            self._token = data["access_token"]
            self._expires_at = self._clock() + float(data.get("expires_in", 0))
            self._generation += 1
            logger.info("LibCal token refreshed; expires in %ss", data.get("expires_in"))

    async def authorized_get(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: Mapping[str, Any],
        max_refreshes: int = 1,
    ) -> httpx.Response:
        """
        GET *url* with the current bearer token.

        A 401 or 403 answer forces a token refresh and a retry, at most *max_refreshes* times.  The
        last response is returned as is; callers decide what a non-2xx status means.
        """
        refreshes = 0
        while True:
            token = await self.get_current_token()
            resp = await client.get(
                url, params=params, headers={"Authorization": f"Bearer {token}"}
            )
            if resp.status_code not in AUTH_REJECTED or refreshes >= max_refreshes:
                return resp
            refreshes += 1
            logger.info("LibCal token rejected (%d); refreshing and retrying", resp.status_code)
            await self.refresh_token()


_shared_provider: LibcalTokenProvider | None = None


def get_token_provider() -> LibcalTokenProvider:
    """Process-wide provider shared by every LibCal tool."""
    global _shared_provider  # pylint: disable=global-statement
    if _shared_provider is None:
        _shared_provider = LibcalTokenProvider()
    return _shared_provider

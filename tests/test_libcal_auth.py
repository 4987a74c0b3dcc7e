"""
Tests for the LibCal bearer-token provider.

Run with:
$ pytest -q
"""

import asyncio
import json

import httpx
import pytest
from fakes import FakeClock

from refdesk.config import settings
from refdesk.core.errors import ValidationError
from refdesk.library_api.libcal_auth import LibcalTokenProvider


class TokenEndpoint:
    """OAuth endpoint issuing tok-1, tok-2, ... and counting requests."""

    def __init__(self, expires_in: int = 3600, status: int = 200) -> None:
        self.expires_in = expires_in
        self.status = status
        self.requests = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(json.loads(request.content))
        await asyncio.sleep(0)
        if self.status != 200:
            return httpx.Response(self.status, json={"error": "nope"})
        return httpx.Response(
            200,
            json={"access_token": f"tok-{len(self.requests)}", "expires_in": self.expires_in},
        )


def _provider(endpoint: TokenEndpoint, clock: FakeClock | None = None) -> LibcalTokenProvider:
    return LibcalTokenProvider(
        oauth_url="https://libcal.test/oauth/token",
        client_id="client",
        client_secret="secret",
        transport=httpx.MockTransport(endpoint),
        clock=clock or FakeClock(),
    )


async def test_token_is_fetched_once_and_cached() -> None:
    """The first call fetches; later calls reuse the cached token."""

    endpoint = TokenEndpoint()
    provider = _provider(endpoint)

    assert await provider.get_current_token() == "tok-1"
    assert await provider.get_current_token() == "tok-1"

    assert endpoint.requests == [
        {"client_id": "client", "client_secret": "secret", "grant_type": "client_credentials"}
    ]


async def test_token_is_refreshed_shortly_before_expiry() -> None:
    """Within the refresh buffer the token is renewed."""

    clock = FakeClock()
    endpoint = TokenEndpoint(expires_in=3600)
    provider = _provider(endpoint, clock)
    await provider.get_current_token()

    clock.advance(3600 - 301)
    assert await provider.get_current_token() == "tok-1"
    clock.advance(2)
    assert await provider.get_current_token() == "tok-2"
    assert provider.is_token_expired() is False


async def test_concurrent_callers_share_one_refresh() -> None:
    """Callers arriving during a refresh wait for it instead of starting their own."""

    endpoint = TokenEndpoint()
    provider = _provider(endpoint)

    tokens = await asyncio.gather(*(provider.get_current_token() for _ in range(5)))

    assert tokens == ["tok-1"] * 5
    assert len(endpoint.requests) == 1


async def test_explicit_refresh_replaces_token() -> None:
    """refresh_token always fetches when nobody else just did."""

    endpoint = TokenEndpoint()
    provider = _provider(endpoint)
    await provider.get_current_token()

    await provider.refresh_token()

    assert await provider.get_current_token() == "tok-2"


async def test_missing_oauth_url_is_a_configuration_error(monkeypatch) -> None:
    """Without an OAuth endpoint no request is attempted."""

    monkeypatch.setattr(settings, "LIBCAL_OAUTH_URL", None)
    provider = LibcalTokenProvider(transport=httpx.MockTransport(TokenEndpoint()))

    with pytest.raises(ValidationError):
        await provider.get_current_token()


async def test_http_errors_propagate() -> None:
    """A failed token request raises and leaves no token behind."""

    provider = _provider(TokenEndpoint(status=500))

    with pytest.raises(httpx.HTTPStatusError):
        await provider.get_current_token()
    assert provider.is_token_expired() is True

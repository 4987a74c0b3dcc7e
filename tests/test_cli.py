"""
Tests for the CLI client's API helper.

Run with:
$ pytest -q
"""

import httpx

from refdesk.client.cli import call_api


def test_call_api_returns_json() -> None:
    """Successful calls return the decoded body."""

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/agent"
        return httpx.Response(200, json={"reply": "hi", "session_id": "s"})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        assert call_api("/agent", {"message": "hello"}, client=client) == {
            "reply": "hi",
            "session_id": "s",
        }


def test_call_api_reports_api_errors() -> None:
    """HTTP errors become a reply carrying the API's detail."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"detail": "Please provide a valid message."})

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = call_api("/agent", {"message": ""}, client=client)

    assert result == {"reply": "API error: Please provide a valid message."}


def test_call_api_gives_up_when_unreachable(monkeypatch) -> None:
    """Connection failures are retried, then reported."""

    monkeypatch.setattr("refdesk.client.cli.time.sleep", lambda seconds: None)
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("refused", request=request)

    with httpx.Client(transport=httpx.MockTransport(handler)) as client:
        result = call_api("/sessions", {}, max_retries=3, client=client)

    assert len(attempts) == 3
    assert result["reply"].startswith("Error connecting to API")

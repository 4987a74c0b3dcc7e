"""CLI client for the refdesk API."""

from __future__ import annotations

import logging
import time
from typing import (
    Any,
    Dict,
    Tuple,
    cast,
)

import httpx

from refdesk.common import (
    AnsiColors,
    colored_print,
)
from refdesk.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def _error_detail(response: httpx.Response | None, exc: Exception) -> str:
    if response is not None:
        try:
            body = response.json()
        except ValueError:
            body = None
        detail = body.get("detail") if isinstance(body, dict) else None
        if detail:
            return f"API error: {detail}"
    return f"Error connecting to API: {exc}"


def call_api(
    endpoint: str,
    data: Dict[str, Any],
    max_retries: int = 5,
    client: httpx.Client | None = None,
) -> Dict[str, Any]:
    """POST *data* to *endpoint*, retrying with exponential backoff while the API is starting."""
    api_url = f"http://localhost:{settings.API_PORT}{endpoint}"
    http = client or httpx.Client(timeout=30.0)

    try:
        for attempt in range(max_retries):
            response: httpx.Response | None = None
            try:
                response = http.post(api_url, json=data)
                response.raise_for_status()
                return cast(Dict[str, Any], response.json())
            except httpx.ConnectError as e:
                if attempt < max_retries - 1:
                    retry_delay = 0.5 * (2**attempt)  # 0.5s, 1s, 2s, 4s...
                    logger.info(
                        "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                        retry_delay,
                        attempt + 1,
                        max_retries,
                    )
                    time.sleep(retry_delay)
                    continue
                error_msg = _error_detail(None, e)
            except httpx.HTTPError as e:
                logger.error("API request error: %s", str(e))
                error_msg = _error_detail(response, e)

            colored_print(error_msg, AnsiColors.RED)
            return {"reply": error_msg}
    finally:
        if client is None:
            http.close()

    error_msg = f"Failed to connect to API after {max_retries} attempts"
    colored_print(error_msg, AnsiColors.RED)
    return {"reply": error_msg}


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    session_response = call_api("/sessions", {})
    session_id = session_response.get("session_id")

    if not session_id:
        colored_print("Failed to create a session", AnsiColors.RED)
        return

    colored_print(
        "\nrefdesk shell - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN
    )
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break
        if user_msg.lower() in {"exit", "quit"}:
            break

        response = call_api("/agent", {"message": user_msg, "session_id": session_id})

        if response.get("tools_used"):
            colored_print(f"[tools: {', '.join(response['tools_used'])}]", AnsiColors.GREEN)

        colored_print(response.get("reply", "No response from API"), AnsiColors.YELLOW)


if __name__ == "__main__":
    run_cli()

"""Library opening hours from the LibCal hours API."""

import datetime as dt
import json
import logging
from typing import (
    Any,
    Dict,
    List,
)

import httpx

from refdesk.config import settings
from refdesk.library_api.libcal_auth import (
    LibcalTokenProvider,
    get_token_provider,
)
from refdesk.tools import (
    BaseTool,
    ToolInput,
    register_tool,
)

logger = logging.getLogger(__name__)

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def week_of(date: dt.date) -> List[dt.date]:
    """Monday..Sunday of the week containing *date*."""
    monday = date - dt.timedelta(days=date.weekday())
    return [monday + dt.timedelta(days=offset) for offset in range(7)]


@register_tool("CheckOpenHourTool")
class CheckOpenHourTool(BaseTool):
    """Looks up the opening hours for the week around a given date."""

    description = "This tool is for checking the open hours of the library."
    parameters = {"date": "string [REQUIRED][format YYYY-MM-DD]"}

    def __init__(
        self,
        token_provider: LibcalTokenProvider | None = None,
        hour_url: str | None = None,
        location_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider or get_token_provider()
        self.hour_url = hour_url or settings.LIBCAL_HOUR_URL
        self.location_id = location_id or settings.LIBCAL_LOCATION_ID
        self._transport = transport

    async def run(self, tool_input: ToolInput) -> str:
        raw_date = (tool_input.get("date") or "").strip()
        if raw_date.lower() in {"", "null", "undefined"}:
            return (
                "Cannot check the building hour without a date. "
                "Ask the customer to provide the date before checking.\n"
            )
        try:
            date = dt.date.fromisoformat(raw_date)
        except ValueError:
            return f"'{raw_date}' is not a date in YYYY-MM-DD format. Ask the customer again.\n"

        try:
            week = await self.fetch_week(date)
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as exc:
            logger.error("LibCal hours request failed: %s", exc)
            return "The opening hours service is unavailable right now. Tell the customer.\n"

        return (
            f"Open hours of the requested week:\n{json.dumps(week)}.\n"
            "If any day does not exist in the list, the library does not open that day. "
            "Always answer with both open hour and close hour to the customer.\n"
        )

    async def fetch_week(self, date: dt.date) -> Dict[str, Any]:
        """Hours per weekday name for the week containing *date*."""
        days = week_of(date)
        url = f"{self.hour_url}/{self.location_id}"
        params = {"from": days[0].isoformat(), "to": days[-1].isoformat()}

        async with httpx.AsyncClient(transport=self._transport, timeout=15.0) as client:
            resp = await self._token_provider.authorized_get(client, url, params)
            resp.raise_for_status()
            dates = resp.json()[0]["dates"]

        week: Dict[str, Any] = {}
        for name, day in zip(WEEKDAYS, days):
            entry = dates.get(day.isoformat())
            if entry is not None:
                week[name] = entry.get("hours")
        return week

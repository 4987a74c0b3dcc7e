"""Study-room availability from the LibCal space search API."""

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

REQUIRED_FIELDS = ("date", "startTime", "endTime")
LARGEST_CAPACITY_RANGE = 3
MAX_ROOMS_REPORTED = 5
MAX_TOKEN_REFRESHES = 2


def capacity_range(capacity: int | None) -> int:
    """LibCal's capacity bucket: 1 for up to 4 people, 2 for up to 8, 3 for more."""
    if capacity is None or capacity <= 4:
        return 1
    if capacity <= 8:
        return 2
    return LARGEST_CAPACITY_RANGE


def _is_missing(value: Any) -> bool:
    return value is None or str(value).strip().lower() in {"", "null", "undefined"}


@register_tool("CheckRoomAvailabilityTool")
class CheckRoomAvailabilityTool(BaseTool):
    """Searches for study rooms free over a time slot, trying bigger rooms when none fit."""

    description = (
        "This tool is for checking the availability of study rooms in the library "
        "for a given date and time slot."
    )
    parameters = {
        "date": "string [REQUIRED][format YYYY-MM-DD]",
        "startTime": "string [REQUIRED][format HH-MM ranging from 00:00 to 23:59]",
        "endTime": "string [REQUIRED][format HH-MM ranging from 00:00 to 23:59]",
        "roomCapacity": "string [OPTIONAL][number of people the room must hold]",
    }

    def __init__(
        self,
        token_provider: LibcalTokenProvider | None = None,
        search_url: str | None = None,
        building_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_provider = token_provider or get_token_provider()
        self.search_url = search_url or settings.LIBCAL_SEARCH_AVAILABLE_URL
        self.building_id = building_id or settings.LIBCAL_BUILDING_ID
        self._transport = transport

    async def run(self, tool_input: ToolInput) -> str:
        missing = [name for name in REQUIRED_FIELDS if _is_missing(tool_input.get(name))]
        if missing:
            return (
                f"Cannot use this tool because of missing parameters {missing}. "
                "Ask the customer to provide these data.\n"
            )

        capacity = None
        if not _is_missing(tool_input.get("roomCapacity")):
            try:
                capacity = int(str(tool_input["roomCapacity"]).strip())
            except ValueError:
                return (
                    f"'{tool_input['roomCapacity']}' is not a number of people. "
                    "Ask the customer how many people will use the room.\n"
                )

        try:
            rooms = await self.fetch_available_rooms(
                str(tool_input["date"]).strip(),
                str(tool_input["startTime"]).strip(),
                str(tool_input["endTime"]).strip(),
                capacity,
            )
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            logger.error("LibCal room search failed: %s", exc)
            return "The room booking service is unavailable right now. Tell the customer.\n"

        if not rooms:
            return "No room available for the input at that time.\n"

        rooms = sorted(rooms, key=lambda room: room["capacity"])[:MAX_ROOMS_REPORTED]
        return (
            f"Some rooms satisfy the input conditions:\n{json.dumps(rooms)}.\n"
            "Tell the customer all the room numbers with according capacities.\n"
        )

    async def fetch_available_rooms(
        self, date: str, start_time: str, end_time: str, capacity: int | None
    ) -> List[Dict[str, Any]]:
        """Rooms free for the whole slot, from the smallest capacity bucket that has any."""
        url = f"{self.search_url}/{self.building_id}"
        matches: List[Dict[str, Any]] = []

        async with httpx.AsyncClient(transport=self._transport, timeout=15.0) as client:
            for bucket in range(capacity_range(capacity), LARGEST_CAPACITY_RANGE + 1):
                params = {
                    "date": date,
                    "time_start": start_time.replace("-", ":"),
                    "time_end": end_time.replace("-", ":"),
                    "type": "space",
                    "capacity": bucket,
                }
                resp = await self._token_provider.authorized_get(
                    client, url, params, max_refreshes=MAX_TOKEN_REFRESHES
                )
                resp.raise_for_status()
                matches = resp.json()["exact_matches"]
                if matches:
                    break
                logger.debug("No rooms in capacity range %d, trying a bigger one", bucket)

        return [
            {"roomName": match["space"]["name"], "capacity": match["space"]["capacity"]}
            for match in matches
        ]

"""Weenect API client with retry logic and token authentication."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import TypeAdapter, ValidationError

from tracksync.exceptions import AuthenticationError, UpstreamError
from tracksync.schemas.weenect import WeenectPosition, WeenectTracker, WeenectTrackerList

logger = logging.getLogger(__name__)

_positions_adapter = TypeAdapter(list[WeenectPosition])


def _format_time(value: datetime) -> str:
    """Format a timestamp the way the Weenect API expects (UTC, millisecond Z)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.000Z")


class WeenectClient:
    """
    Client for the Weenect GPS tracker API.

    Features:
    - JWT login, token reused for subsequent calls
    - Exponential backoff retry on network errors, 5xx and 429
    - Position queries for a single bounded time range
    """

    def __init__(
        self,
        username: str,
        password: str,
        base_url: str = "https://apiv4.weenect.com/v4",
        max_retries: int = 3,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.username = username
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self._transport = transport
        self._token: str | None = None

    @property
    def is_authenticated(self) -> bool:
        return self._token is not None

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"JWT {self._token}"
        return headers

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        """Make HTTP request with exponential backoff retry."""
        url = f"{self.base_url}{path}"
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.request(
                        method, url, headers=self._headers(), params=params, json=json
                    )
                    response.raise_for_status()
                    return response.json()

            except httpx.HTTPStatusError as e:
                last_error = e
                status = e.response.status_code
                if status == 429:  # Rate limited
                    wait_time = 2**attempt * 10  # 10s, 20s, 40s
                    logger.warning(f"Rate limited, waiting {wait_time}s before retry")
                    await asyncio.sleep(wait_time)
                elif status >= 500:
                    wait_time = 2**attempt
                    logger.warning(f"Server error {status}, retry in {wait_time}s")
                    await asyncio.sleep(wait_time)
                elif status in (401, 403):
                    raise AuthenticationError(f"{method} {path} unauthorized: HTTP {status}") from e
                else:
                    raise UpstreamError(f"HTTP error: {e}") from e

            except httpx.RequestError as e:
                last_error = e
                wait_time = 2**attempt
                logger.warning(f"Request error: {e}, retry in {wait_time}s")
                await asyncio.sleep(wait_time)

            except ValueError as e:
                raise UpstreamError(f"Invalid JSON from {method} {path}: {e}") from e

        raise UpstreamError(f"Failed after {self.max_retries} retries: {last_error}")

    async def login(self) -> None:
        """Authenticate and keep the access token for later calls."""
        logger.debug("API request: login")
        self._token = None
        try:
            data = await self._request_with_retry(
                "POST",
                "/user/login",
                json={"username": self.username, "password": self.password},
            )
        except UpstreamError as e:
            if isinstance(e, AuthenticationError):
                raise
            raise AuthenticationError(f"login failed: {e}") from e

        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise AuthenticationError("login failed: no access token in response")

        self._token = token
        logger.debug("API response: login successful")

    async def get_trackers(self) -> list[WeenectTracker]:
        """List all trackers on the account."""
        logger.debug("API request: get trackers")
        data = await self._request_with_retry("GET", "/mytracker")
        try:
            trackers = WeenectTrackerList.model_validate(data).items
        except ValidationError as e:
            raise UpstreamError(f"Unexpected tracker list payload: {e}") from e

        logger.debug(f"API response: got {len(trackers)} trackers")
        return trackers

    async def get_positions(
        self,
        tracker_id: int,
        start: datetime,
        end: datetime,
    ) -> list[WeenectPosition]:
        """
        Fetch positions for one tracker within [start, end).

        The range must not exceed 24 hours; callers split longer ranges.
        """
        params = {"start": _format_time(start), "end": _format_time(end)}
        logger.debug(
            f"API request: get positions tracker_id={tracker_id} "
            f"start={params['start']} end={params['end']}"
        )
        data = await self._request_with_retry(
            "GET", f"/mytracker/{tracker_id}/position", params=params
        )
        if isinstance(data, dict):
            data = data.get("items", [])

        try:
            positions = _positions_adapter.validate_python(data)
        except ValidationError as e:
            raise UpstreamError(f"Unexpected position payload for tracker {tracker_id}: {e}") from e

        logger.debug(f"API response: got {len(positions)} positions")
        return positions

"""SureHub pet flap client and cached inside/outside presence lookup."""

import asyncio
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from tracksync.exceptions import AuthenticationError, UpstreamError

logger = logging.getLogger(__name__)

# SureHub reports pet position "where" as 1 (inside) or 2 (outside)
PET_POSITION_INSIDE = 1


@dataclass
class PetPresence:
    """Inside/outside state reported by the pet flap."""

    is_inside: bool
    since: datetime | None = None


class SureHubClient:
    """Minimal client for the SureHub (Sure Petcare) API."""

    def __init__(
        self,
        email: str,
        password: str,
        base_url: str = "https://app.api.surehub.io",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.email = email
        self.password = password
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._device_id = str(uuid.uuid4().int)[:10]
        self._token: str | None = None

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method, f"{self.base_url}{path}", headers=headers, json=json
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                self._token = None
                raise AuthenticationError(f"SureHub {path} unauthorized") from e
            raise UpstreamError(f"SureHub HTTP error: {e}") from e
        except (httpx.RequestError, ValueError) as e:
            raise UpstreamError(f"SureHub request failed: {e}") from e

    async def login(self) -> None:
        data = await self._request(
            "POST",
            "/api/auth/login",
            json={
                "email_address": self.email,
                "password": self.password,
                "device_id": self._device_id,
            },
        )
        token = (data.get("data") or {}).get("token")
        if not token:
            raise AuthenticationError("SureHub login returned no token")
        self._token = token

    async def get_dashboard(self) -> dict[str, Any]:
        """Fetch the household dashboard, logging in first if needed."""
        if self._token is None:
            await self.login()
        try:
            data = await self._request("GET", "/api/me/start")
        except AuthenticationError:
            # Token expired; log in once more
            await self.login()
            data = await self._request("GET", "/api/me/start")
        return data.get("data") or {}


def parse_pet_presence(dashboard: dict[str, Any]) -> dict[str, PetPresence]:
    """Map lower-cased pet name to presence from a dashboard payload."""
    result: dict[str, PetPresence] = {}
    for pet in dashboard.get("pets") or []:
        name = (pet.get("name") or "").lower()
        if not name:
            continue

        status = PetPresence(is_inside=False)
        position = pet.get("position") or {}
        if position.get("where") is not None:
            status.is_inside = position["where"] == PET_POSITION_INSIDE
            if since := position.get("since"):
                try:
                    status.since = datetime.fromisoformat(since)
                except ValueError:
                    logger.debug(f"Unparseable flap time for {name}: {since}")
        result[name] = status
    return result


class PresenceService:
    """
    Read-through cache over the pet flap dashboard.

    Results are reused for `ttl`. When a refresh fails the last good result is
    returned (or an empty mapping if there never was one); errors are logged,
    never raised to the caller.
    """

    def __init__(
        self,
        client: SureHubClient,
        ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.client = client
        self.ttl = ttl
        self._clock = clock
        self._cache: dict[str, PetPresence] | None = None
        self._cached_at: datetime | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self) -> bool:
        return (
            self._cache is not None
            and self._cached_at is not None
            and self._clock() - self._cached_at < self.ttl
        )

    async def get_status(self) -> dict[str, PetPresence]:
        async with self._lock:
            if self._is_fresh():
                logger.debug("Using cached pet status")
                return self._cache

            try:
                dashboard = await self.client.get_dashboard()
            except UpstreamError as e:
                logger.error(f"Failed to fetch SureHub dashboard: {e}")
                if self._cache is not None:
                    logger.debug("Returning stale pet status cache due to error")
                    return self._cache
                return {}

            self._cache = parse_pet_presence(dashboard)
            self._cached_at = self._clock()
            logger.debug(f"Fetched pet status from SureHub: {len(self._cache)} pets")
            return self._cache

"""Directions provider client and the per-build gateway in front of it.

The gateway is the only thing the planner talks to. It applies the query
timeout, maps every failure to ProviderError and memoizes identical queries
for the lifetime of one build.
"""

import asyncio
import logging
from datetime import datetime
from typing import Optional, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field

from hybridroute import config
from hybridroute.cancellation import CancellationToken
from hybridroute.errors import ProviderError, ProviderErrorReason
from hybridroute.models import Coordinate, TravelMode

logger = logging.getLogger("hybridroute.directions")


class DirectionsRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: Coordinate
    destination: Coordinate
    travel_mode: TravelMode
    waypoints: tuple[Coordinate, ...] = Field(default_factory=tuple)
    alternatives: bool = False
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    label: str = ""  # diagnostics only

    @property
    def cache_key(self) -> tuple:
        return (
            self.travel_mode.value,
            self.origin.key(),
            self.destination.key(),
            tuple(w.key() for w in self.waypoints),
            self.alternatives,
            self.departure_time.timestamp() if self.departure_time else None,
            self.arrival_time.timestamp() if self.arrival_time else None,
        )

    def describe(self) -> str:
        return (
            f"{self.travel_mode.value} {self.origin.key()} -> {self.destination.key()}"
            + (f" via {len(self.waypoints)}" if self.waypoints else "")
            + (f" [{self.label}]" if self.label else "")
        )


class RouteProvider(Protocol):
    async def route(self, request: DirectionsRequest) -> dict:
        ...


class GoogleDirectionsClient:
    """Directions JSON web service over a shared httpx client."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.http_client = http_client
        self.api_key = api_key if api_key is not None else config.get_api_key()
        self.base_url = base_url or config.get_directions_url()

    def build_params(self, request: DirectionsRequest) -> dict:
        params = {
            "origin": f"{request.origin.lat},{request.origin.lng}",
            "destination": f"{request.destination.lat},{request.destination.lng}",
            "mode": request.travel_mode.value.lower(),
            "alternatives": "true" if request.alternatives else "false",
            "key": self.api_key,
        }
        if request.waypoints:
            # via: points shape the path without becoming stopovers
            params["waypoints"] = "|".join(f"via:{w.lat},{w.lng}" for w in request.waypoints)
        if request.arrival_time is not None:
            params["arrival_time"] = str(int(request.arrival_time.timestamp()))
        elif request.departure_time is not None:
            params["departure_time"] = str(int(request.departure_time.timestamp()))
        return params

    async def route(self, request: DirectionsRequest) -> dict:
        params = self.build_params(request)
        try:
            if self.http_client:
                resp = await self.http_client.get(self.base_url, params=params)
            else:
                async with httpx.AsyncClient(timeout=config.get_directions_timeout_sec()) as client:
                    resp = await client.get(self.base_url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            raise ProviderError(ProviderErrorReason.TIMEOUT, label=request.label) from e
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                ProviderErrorReason.STATUS,
                f"HTTP_{e.response.status_code}",
                label=request.label,
            ) from e
        except httpx.RequestError as e:
            logger.warning(f"Directions request failed ({request.describe()}): {type(e).__name__}: {e}")
            raise ProviderError(ProviderErrorReason.STATUS, "REQUEST_FAILED", label=request.label) from e

        status = data.get("status", "UNKNOWN_ERROR")
        if status != "OK":
            logger.warning(f"Directions status {status} for {request.describe()}")
            raise ProviderError(ProviderErrorReason.STATUS, status, label=request.label)
        return data


class DirectionsGateway:
    """Memoizing, timeout-bounded front for a RouteProvider.

    One instance per build; close() drops the cache when the build ends.
    Identical in-flight queries share a single task.
    """

    def __init__(
        self,
        provider: RouteProvider,
        timeout_sec: Optional[float] = None,
        token: Optional[CancellationToken] = None,
    ):
        self.provider = provider
        self.timeout_sec = timeout_sec if timeout_sec is not None else config.get_directions_timeout_sec()
        self.token = token
        self.issued = 0
        self._cache: dict[tuple, asyncio.Task] = {}

    async def route(self, request: DirectionsRequest) -> dict:
        key = request.cache_key
        task = self._cache.get(key)
        if task is None:
            task = asyncio.ensure_future(self._issue(request))
            self._cache[key] = task
        else:
            logger.debug(f"Directions cache hit: {request.describe()}")

        try:
            result = await asyncio.shield(task)
        except ProviderError:
            self._check_token()
            raise
        self._check_token()
        return result

    async def first_route(self, request: DirectionsRequest) -> Optional[dict]:
        """First route of a query, or None when the query fails."""
        try:
            data = await self.route(request)
        except ProviderError as e:
            logger.info(f"{e} ({request.describe()})")
            return None
        routes = data.get("routes") or []
        return routes[0] if routes else None

    async def _issue(self, request: DirectionsRequest) -> dict:
        self.issued += 1
        try:
            return await asyncio.wait_for(self.provider.route(request), timeout=self.timeout_sec)
        except asyncio.TimeoutError as e:
            logger.warning(f"Directions query timed out after {self.timeout_sec}s: {request.describe()}")
            raise ProviderError(ProviderErrorReason.TIMEOUT, label=request.label) from e

    def _check_token(self) -> None:
        if self.token is not None:
            self.token.raise_if_stale()

    def close(self) -> None:
        for task in self._cache.values():
            if not task.done():
                task.cancel()
        self._cache.clear()

"""Elevation-aware skate timing.

Skate legs are first timed at a flat speed. Once a route is selected, the
skate path is sampled for elevation and each segment is re-timed by its
grade: uphill slows toward walking pace, downhill speeds up toward a cap.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

import httpx
import polyline

from hybridroute import config
from hybridroute.config import (
    ELEVATION_MAX_SAMPLES,
    ELEVATION_MIN_SAMPLES,
    SKATE_MPS_CAP,
    SKATE_MPS_FLAT,
    SKATE_UPHILL_COLLAPSE_DEG,
    WALK_MPS,
)
from hybridroute.errors import ProviderError, ProviderErrorReason
from hybridroute.models import Itinerary, LegMode, MoveLeg, TimePreference
from hybridroute.timeline import find_missed_connection, rebuild_itinerary

logger = logging.getLogger("hybridroute.elevation")


@dataclass
class ElevationSample:
    lat: float
    lng: float
    elevation: float  # meters


class ElevationProvider(Protocol):
    async def sample_path(self, path: list[tuple[float, float]], samples: int) -> list[ElevationSample]:
        ...


class GoogleElevationClient:
    """Elevation JSON web service, sampled along an encoded path."""

    def __init__(
        self,
        http_client: Optional[httpx.AsyncClient] = None,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        self.http_client = http_client
        self.api_key = api_key if api_key is not None else config.get_api_key()
        self.base_url = base_url or config.get_elevation_url()

    async def sample_path(self, path: list[tuple[float, float]], samples: int) -> list[ElevationSample]:
        params = {
            "path": f"enc:{polyline.encode(path)}",
            "samples": str(samples),
            "key": self.api_key,
        }
        try:
            if self.http_client:
                resp = await self.http_client.get(self.base_url, params=params)
            else:
                async with httpx.AsyncClient(timeout=config.get_directions_timeout_sec()) as client:
                    resp = await client.get(self.base_url, params=params)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            raise ProviderError(ProviderErrorReason.TIMEOUT, label="elevation") from e
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                ProviderErrorReason.STATUS, f"HTTP_{e.response.status_code}", label="elevation",
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(ProviderErrorReason.STATUS, "REQUEST_FAILED", label="elevation") from e

        status = data.get("status", "UNKNOWN_ERROR")
        if status != "OK":
            raise ProviderError(ProviderErrorReason.STATUS, status, label="elevation")

        out = []
        for r in data.get("results") or []:
            loc = r.get("location") or {}
            if r.get("elevation") is None or loc.get("lat") is None or loc.get("lng") is None:
                continue
            out.append(ElevationSample(lat=float(loc["lat"]), lng=float(loc["lng"]), elevation=float(r["elevation"])))
        return out


def _haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Haversine distance in meters."""
    R = 6371000
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def sample_count(path_len: int) -> int:
    return min(ELEVATION_MAX_SAMPLES, max(ELEVATION_MIN_SAMPLES, round(path_len / 2)))


def skate_speed_for_grade(grade_deg: float) -> float:
    """Skate speed in m/s for a segment grade in degrees (positive = uphill)."""
    t = min(1.0, abs(grade_deg) / SKATE_UPHILL_COLLAPSE_DEG)
    if grade_deg > 0:
        return SKATE_MPS_FLAT + (WALK_MPS - SKATE_MPS_FLAT) * t
    return SKATE_MPS_FLAT + (SKATE_MPS_CAP - SKATE_MPS_FLAT) * t


def skate_seconds_for_profile(samples: list[ElevationSample]) -> Optional[float]:
    """Travel time over consecutive samples, or None when there is no distance to time."""
    seconds = 0.0
    covered = 0.0
    for a, b in zip(samples, samples[1:]):
        dist = _haversine_m(a.lat, a.lng, b.lat, b.lng)
        if dist <= 0:
            continue
        grade_deg = math.degrees(math.atan2(b.elevation - a.elevation, dist))
        seconds += dist / max(0.1, skate_speed_for_grade(grade_deg))
        covered += dist
    return seconds if covered > 0 else None


def leg_path(leg: MoveLeg) -> list[tuple[float, float]]:
    geometry = leg.geometry
    if geometry is None:
        return []
    if geometry.polyline:
        return polyline.decode(geometry.polyline)
    if geometry.start and geometry.end:
        return [(geometry.start.lat, geometry.start.lng), (geometry.end.lat, geometry.end.lng)]
    return []


async def _refined_leg(leg: MoveLeg, elevation: ElevationProvider) -> MoveLeg:
    path = leg_path(leg)
    if len(path) < 2:
        return leg
    try:
        samples = await elevation.sample_path(path, sample_count(len(path)))
    except ProviderError as e:
        logger.warning(f"Elevation lookup failed, keeping flat skate timing: {e}")
        return leg

    seconds = skate_seconds_for_profile(samples)
    if seconds is None:
        return leg
    return leg.model_copy(update={"duration_sec": seconds})


async def refine_skate_legs(
    itinerary: Itinerary,
    elevation: ElevationProvider,
    time_pref: TimePreference,
    now: datetime,
) -> Itinerary:
    """Re-time every skate leg by grade and re-stitch the itinerary.

    Raises MissedDepartureError when the slower timing no longer makes a
    scheduled connection.
    """
    skate_idx = [
        i for i, leg in enumerate(itinerary.legs)
        if isinstance(leg, MoveLeg) and leg.mode == LegMode.SKATE
    ]
    if not skate_idx:
        return itinerary

    refined = await asyncio.gather(*[_refined_leg(itinerary.legs[i], elevation) for i in skate_idx])
    legs = list(itinerary.legs)
    for i, leg in zip(skate_idx, refined):
        legs[i] = leg

    updated = rebuild_itinerary(itinerary, legs, time_pref, now)
    missed = find_missed_connection(updated.legs)
    if missed is not None:
        raise missed
    logger.info(
        f"Elevation refined {len(skate_idx)} skate legs on {itinerary.id}: "
        f"{itinerary.total_duration_sec:.0f}s -> {updated.total_duration_sec:.0f}s"
    )
    return updated

"""Micro-leg selection: replace a walking connection with the best of walk/bike/skate.

Bike and walk keep provider durations. Skate has no provider mode, so its
time is derived from whichever geometry (walking or cycling) converts to
the shorter skate time at the assumed flat speeds.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from hybridroute.combos import is_skate_on
from hybridroute.config import (
    BIKE_MPH_ASSUMED,
    HILL_WEIGHT_BIKE_PENALTY,
    MICRO_QUERY_MIN_DISTANCE_M,
    SKATE_MPH_FLAT,
    WALK_MPH,
)
from hybridroute.directions_gateway import DirectionsGateway, DirectionsRequest
from hybridroute.errors import MissedDepartureError
from hybridroute.models import (
    Coordinate,
    LegGeometry,
    LegMode,
    ModeCombo,
    MoveLeg,
    TravelMode,
)
from hybridroute.route_parsing import route_geometry, route_totals

logger = logging.getLogger("hybridroute.micro_leg")


def skate_seconds_from_bike(bike_sec: float) -> float:
    return bike_sec * (BIKE_MPH_ASSUMED / SKATE_MPH_FLAT)


def skate_seconds_from_walk(walk_sec: float) -> float:
    return walk_sec * (WALK_MPH / SKATE_MPH_FLAT)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@dataclass
class _Candidate:
    leg: MoveLeg
    score: float
    tie_rank: int  # lower wins ties; bike geometry first


class MicroLegSelector:
    def __init__(self, gateway: DirectionsGateway, hill_weight: float = 0.0):
        self.gateway = gateway
        self.hill_weight = hill_weight

    async def choose(
        self,
        origin: Coordinate,
        destination: Coordinate,
        combo: ModeCombo,
        max_allowed_sec: Optional[float] = None,
        approx_distance_m: Optional[float] = None,
        fallback_walk_sec: Optional[float] = None,
        waypoints: Sequence[Coordinate] = (),
    ) -> Optional[MoveLeg]:
        """Best micro-leg between two points for the combo, or None if nothing routed.

        Raises MissedDepartureError when max_allowed_sec rules out every candidate.
        """
        too_short = approx_distance_m is not None and 0 < approx_distance_m < MICRO_QUERY_MIN_DISTANCE_M
        want_bike = combo != ModeCombo.TRANSIT and not too_short

        queries = [self.gateway.first_route(DirectionsRequest(
            origin=origin,
            destination=destination,
            travel_mode=TravelMode.WALKING,
            waypoints=tuple(waypoints),
            label="micro-walk",
        ))]
        if want_bike:
            queries.append(self.gateway.first_route(DirectionsRequest(
                origin=origin,
                destination=destination,
                travel_mode=TravelMode.BICYCLING,
                waypoints=tuple(waypoints),
                label="micro-bike",
            )))
        results = await asyncio.gather(*queries)
        walk_route = results[0]
        bike_route = results[1] if len(results) > 1 else None

        candidates = []
        walk = self._walk_candidate(
            walk_route, combo, origin, destination, waypoints, approx_distance_m, fallback_walk_sec
        )
        if walk:
            candidates.append(walk)
        if bike_route:
            candidates.append(self._bike_candidate(bike_route, combo, waypoints))

        if not candidates:
            logger.info(f"No micro-leg routed for {origin.key()} -> {destination.key()}")
            return None

        feasible = candidates
        if max_allowed_sec is not None:
            feasible = [c for c in candidates if c.leg.duration_sec <= max_allowed_sec]
            if not feasible:
                fastest = min(c.leg.duration_sec for c in candidates)
                raise MissedDepartureError(required_sec=fastest, allowed_sec=max_allowed_sec)

        best = min(feasible, key=lambda c: (c.score, c.tie_rank))
        return best.leg

    def _walk_candidate(
        self,
        route: Optional[dict],
        combo: ModeCombo,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate],
        approx_distance_m: Optional[float],
        fallback_walk_sec: Optional[float],
    ) -> Optional[_Candidate]:
        if route:
            dist, dur = route_totals(route)
            geometry = route_geometry(route, TravelMode.WALKING, list(waypoints))
        elif fallback_walk_sec is not None:
            dist, dur = approx_distance_m or 0.0, fallback_walk_sec
            geometry = LegGeometry(source_mode=TravelMode.WALKING, start=origin, end=destination)
        else:
            return None

        if is_skate_on(combo):
            seconds = skate_seconds_from_walk(dur)
            leg = MoveLeg(
                mode=LegMode.SKATE,
                duration_sec=seconds,
                distance_meters=dist,
                geometry=geometry,
                skate_geometry_mode=TravelMode.WALKING,
            )
            return _Candidate(leg=leg, score=seconds, tie_rank=1)

        leg = MoveLeg(mode=LegMode.WALK, duration_sec=dur, distance_meters=dist, geometry=geometry)
        return _Candidate(leg=leg, score=dur, tie_rank=1)

    def _bike_candidate(
        self,
        route: dict,
        combo: ModeCombo,
        waypoints: Sequence[Coordinate],
    ) -> _Candidate:
        dist, dur = route_totals(route)
        geometry = route_geometry(route, TravelMode.BICYCLING, list(waypoints))
        penalty = 1 + _clamp(self.hill_weight, 0.0, 1.0) * HILL_WEIGHT_BIKE_PENALTY

        if is_skate_on(combo):
            seconds = skate_seconds_from_bike(dur)
            leg = MoveLeg(
                mode=LegMode.SKATE,
                duration_sec=seconds,
                distance_meters=dist,
                geometry=geometry,
                skate_geometry_mode=TravelMode.BICYCLING,
            )
            return _Candidate(leg=leg, score=seconds * penalty, tie_rank=0)

        leg = MoveLeg(mode=LegMode.BIKE, duration_sec=dur, distance_meters=dist, geometry=geometry)
        return _Candidate(leg=leg, score=dur * penalty, tie_rank=0)

    async def access_seconds(
        self,
        origin: Coordinate,
        stop: Coordinate,
        combo: ModeCombo,
    ) -> Optional[float]:
        """Micro-mobility time from origin to a boarding stop (bike first, walk fallback)."""
        bike = await self.gateway.first_route(DirectionsRequest(
            origin=origin, destination=stop, travel_mode=TravelMode.BICYCLING, label="access-bike",
        ))
        if bike:
            _, dur = route_totals(bike)
            return skate_seconds_from_bike(dur) if is_skate_on(combo) else dur

        walk = await self.gateway.first_route(DirectionsRequest(
            origin=origin, destination=stop, travel_mode=TravelMode.WALKING, label="access-walk",
        ))
        if walk:
            _, dur = route_totals(walk)
            return skate_seconds_from_walk(dur) if is_skate_on(combo) else dur
        return None

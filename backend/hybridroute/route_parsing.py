"""Helpers for reading Directions-shaped JSON routes.

Only the documented fields are read: routes[].legs[].steps[] with
travel_mode, duration.value, distance.value, start/end_location, polyline
and, for transit steps, transit_details.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from hybridroute.models import (
    Coordinate,
    LegGeometry,
    StopRef,
    TransitDetails,
    TravelMode,
)

logger = logging.getLogger("hybridroute.parsing")


def coerce_datetime(value) -> Optional[datetime]:
    """Best-effort conversion of provider time values to an aware datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, dict):
        return coerce_datetime(value.get("value"))
    if isinstance(value, (int, float)):
        # Seconds since epoch unless it is clearly milliseconds
        seconds = value / 1000 if value >= 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return coerce_datetime(datetime.fromisoformat(value.replace("Z", "+00:00")))
        except ValueError:
            logger.debug(f"Unparseable provider time: {value!r}")
            return None
    return None


def to_coordinate(value) -> Optional[Coordinate]:
    if not isinstance(value, dict):
        return None
    lat = value.get("lat")
    lng = value.get("lng")
    if lat is None or lng is None:
        return None
    return Coordinate(lat=float(lat), lng=float(lng))


def step_duration(step: dict) -> float:
    return float((step.get("duration") or {}).get("value") or 0)


def step_distance(step: dict) -> float:
    return float((step.get("distance") or {}).get("value") or 0)


def route_steps(route: Optional[dict]) -> list[dict]:
    """Steps of the first leg (the provider returns one leg without stopovers)."""
    legs = (route or {}).get("legs") or []
    if not legs:
        return []
    return legs[0].get("steps") or []


def route_totals(route: Optional[dict]) -> tuple[float, float]:
    """(distance_m, duration_sec) summed over legs."""
    legs = (route or {}).get("legs") or []
    dist = sum(float((leg.get("distance") or {}).get("value") or 0) for leg in legs)
    dur = sum(float((leg.get("duration") or {}).get("value") or 0) for leg in legs)
    return dist, dur


def leg_departure(route: Optional[dict]) -> Optional[datetime]:
    legs = (route or {}).get("legs") or []
    if not legs:
        return None
    return coerce_datetime(legs[0].get("departure_time"))


def _stop_ref(stop: Optional[dict]) -> StopRef:
    stop = stop or {}
    return StopRef(name=stop.get("name") or "", location=to_coordinate(stop.get("location")))


def transit_details_from_step(step: dict) -> Optional[TransitDetails]:
    td = step.get("transit_details") or step.get("transit")
    if not td:
        return None
    line = td.get("line") or {}
    vehicle = line.get("vehicle") or {}
    return TransitDetails(
        line_name=line.get("short_name") or line.get("name") or "",
        vehicle_type=vehicle.get("type") or "",
        headsign=td.get("headsign") or "",
        color=line.get("color"),
        departure_stop=_stop_ref(td.get("departure_stop")),
        arrival_stop=_stop_ref(td.get("arrival_stop")),
        departure_time=coerce_datetime(td.get("departure_time")),
        arrival_time=coerce_datetime(td.get("arrival_time")),
        num_stops=int(td.get("num_stops") or 0),
    )


def transit_step_duration(step: dict, details: Optional[TransitDetails]) -> float:
    """Provider duration, or the scheduled span when the step omits one."""
    if (step.get("duration") or {}).get("value") is not None:
        return step_duration(step)
    if details and details.departure_time and details.arrival_time:
        return max(0.0, (details.arrival_time - details.departure_time).total_seconds())
    return 0.0


def first_transit_step(route: Optional[dict]) -> tuple[Optional[dict], int]:
    for idx, step in enumerate(route_steps(route)):
        if step.get("travel_mode") == "TRANSIT":
            return step, idx
    return None, -1


def walk_access_seconds(route: Optional[dict]) -> float:
    """Provider time spent reaching the first transit stop."""
    _, index = first_transit_step(route)
    if index <= 0:
        return 0.0
    return sum(step_duration(s) for s in route_steps(route)[:index])


def route_signature(route: Optional[dict]) -> str:
    """Identity of a transit route: line|boarding stop|departure epoch ms per ride."""
    parts = []
    for step in route_steps(route):
        if step.get("travel_mode") != "TRANSIT":
            continue
        details = transit_details_from_step(step)
        if details is None:
            continue
        dep_ms = ""
        if details.departure_time:
            dep_ms = str(int(details.departure_time.timestamp() * 1000))
        parts.append(f"{details.line_name}|{details.departure_stop.name}|{dep_ms}")
    return ">".join(parts) or (route or {}).get("summary", "")


def extract_via_points(route: Optional[dict]) -> list[Coordinate]:
    """Pass-through waypoints of a route, de-duplicated at ~0.1 m."""
    points = []
    for leg in (route or {}).get("legs") or []:
        for via in leg.get("via_waypoint") or leg.get("via_waypoints") or []:
            point = to_coordinate(via.get("location") if "location" in via else via)
            if point:
                points.append(point)

    seen = set()
    out = []
    for p in points:
        key = p.key(6)
        if key in seen:
            continue
        seen.add(key)
        out.append(p)
    return out


def step_geometry(step: dict, source_mode: Optional[TravelMode]) -> LegGeometry:
    return LegGeometry(
        source_mode=source_mode,
        polyline=(step.get("polyline") or {}).get("points", ""),
        start=to_coordinate(step.get("start_location")),
        end=to_coordinate(step.get("end_location")),
    )


def route_geometry(
    route: dict,
    source_mode: TravelMode,
    waypoints: Optional[list[Coordinate]] = None,
) -> LegGeometry:
    legs = route.get("legs") or [{}]
    return LegGeometry(
        source_mode=source_mode,
        polyline=(route.get("overview_polyline") or {}).get("points", ""),
        start=to_coordinate(legs[0].get("start_location")),
        end=to_coordinate(legs[-1].get("end_location")),
        waypoints=list(waypoints or []),
    )

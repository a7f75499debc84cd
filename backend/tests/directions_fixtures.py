"""
Scripted providers and Directions-shaped payload builders shared by the tests.

Routes are keyed by (travel mode, origin, destination). A script is either a
list of routes or a callable taking the DirectionsRequest and returning one.
Unscripted queries fail the way the real client does on ZERO_RESULTS.
"""

from datetime import datetime, timedelta, timezone

from hybridroute.elevation import ElevationSample
from hybridroute.errors import ProviderError, ProviderErrorReason
from hybridroute.models import Coordinate

T0 = datetime(2026, 3, 2, 17, 0, tzinfo=timezone.utc)

ORIGIN = Coordinate(lat=43.6500, lng=-79.3800)
STOP_A = Coordinate(lat=43.6550, lng=-79.3800)
STOP_B = Coordinate(lat=43.6800, lng=-79.3800)
DEST = Coordinate(lat=43.7050, lng=-79.3800)


def _loc(c: Coordinate) -> dict:
    return {"lat": c.lat, "lng": c.lng}


def make_step(mode, duration, start, end, distance=None, points=""):
    return {
        "travel_mode": mode,
        "duration": {"value": duration},
        "distance": {"value": distance if distance is not None else duration * 1.4},
        "start_location": _loc(start),
        "end_location": _loc(end),
        "polyline": {"points": points},
    }


def make_transit_step(line, departure, duration, start, end, start_name, end_name, distance=3000):
    step = make_step("TRANSIT", duration, start, end, distance)
    step["transit_details"] = {
        "line": {"short_name": line, "color": "#da251d", "vehicle": {"type": "BUS"}},
        "headsign": f"{line} Northbound",
        "departure_stop": {"name": start_name, "location": _loc(start)},
        "arrival_stop": {"name": end_name, "location": _loc(end)},
        "departure_time": {"value": int(departure.timestamp())},
        "arrival_time": {"value": int((departure + timedelta(seconds=duration)).timestamp())},
        "num_stops": 4,
    }
    return step


def make_route(steps, summary="", departure_time=None, via=()):
    leg = {
        "steps": steps,
        "duration": {"value": sum(s["duration"]["value"] for s in steps)},
        "distance": {"value": sum(s["distance"]["value"] for s in steps)},
        "start_location": steps[0]["start_location"],
        "end_location": steps[-1]["end_location"],
    }
    if departure_time is not None:
        leg["departure_time"] = {"value": int(departure_time.timestamp())}
    if via:
        leg["via_waypoint"] = [{"location": _loc(p)} for p in via]
    return {"summary": summary, "legs": [leg], "overview_polyline": {"points": ""}}


def make_direct_route(mode, duration, start, end, distance=None, summary="", via=()):
    return make_route([make_step(mode, duration, start, end, distance)], summary, via=via)


class FakeDirections:
    """RouteProvider that answers from scripted routes and records every request."""

    def __init__(self):
        self.scripts = {}
        self.calls = []

    def add(self, mode, origin, destination, routes):
        self.scripts[(mode, origin.key(), destination.key())] = routes

    async def route(self, request):
        self.calls.append(request)
        script = self.scripts.get(
            (request.travel_mode, request.origin.key(), request.destination.key())
        )
        routes = script(request) if callable(script) else script
        if not routes:
            raise ProviderError(ProviderErrorReason.STATUS, "ZERO_RESULTS", label=request.label)
        return {"status": "OK", "routes": routes}

    def calls_for(self, mode):
        return [c for c in self.calls if c.travel_mode == mode]


class FakeElevation:
    """Two-sample profile rising by `rise` meters from the path's start to its end."""

    def __init__(self, rise=0.0, fail=False):
        self.rise = rise
        self.fail = fail
        self.calls = []

    async def sample_path(self, path, samples):
        self.calls.append((path, samples))
        if self.fail:
            raise ProviderError(ProviderErrorReason.TIMEOUT, label="elevation")
        (lat0, lng0), (lat1, lng1) = path[0], path[-1]
        return [
            ElevationSample(lat=lat0, lng=lng0, elevation=0.0),
            ElevationSample(lat=lat1, lng=lng1, elevation=self.rise),
        ]

"""Timeline stitching: turn an ordered list of move legs into a timed itinerary.

Everything here is pure. The running clock starts at the departure time;
a scheduled transit leg that departs later than the clock gets an explicit
WAIT in front of it (waits of WAIT_SUPPRESS_SEC or less are absorbed).
A transit leg reached after its scheduled departure is boarded as-is;
there is no lookup of the next departure.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Sequence, Union

from hybridroute.config import MISSED_DEPARTURE_BUFFER_SEC, WAIT_SUPPRESS_SEC
from hybridroute.errors import MissedDepartureError
from hybridroute.models import (
    Coordinate,
    Itinerary,
    ItineraryKind,
    LegMode,
    MoveLeg,
    TimeKind,
    TimePreference,
    TransitRouteView,
    TransitStepView,
    VariantKind,
    WaitLeg,
)

AnyLeg = Union[MoveLeg, WaitLeg]


@dataclass
class StitchResult:
    legs: list[AnyLeg]
    total_duration_sec: float
    total_distance_meters: float
    arrive_time: datetime


def scheduled_departure(leg: AnyLeg) -> Optional[datetime]:
    if isinstance(leg, MoveLeg) and leg.mode == LegMode.TRANSIT and leg.transit_details:
        return leg.transit_details.departure_time
    return None


def stitch(depart_time: datetime, legs: Sequence[AnyLeg]) -> StitchResult:
    clock = depart_time
    out: list[AnyLeg] = []
    total_sec = 0.0
    total_dist = 0.0

    for leg in legs:
        if isinstance(leg, WaitLeg):
            continue  # recomputed below

        dep = scheduled_departure(leg)
        if dep is not None and clock < dep:
            wait_sec = (dep - clock).total_seconds()
            if wait_sec > WAIT_SUPPRESS_SEC:
                out.append(WaitLeg(
                    duration_sec=wait_sec,
                    at_stop_name=leg.transit_details.departure_stop.name or None,
                    start_time=clock,
                    end_time=dep,
                ))
                total_sec += wait_sec
            clock = dep

        start = clock
        clock = clock + timedelta(seconds=leg.duration_sec)
        out.append(leg.model_copy(update={"start_time": start, "end_time": clock}))
        total_sec += leg.duration_sec
        total_dist += leg.distance_meters

    return StitchResult(
        legs=out,
        total_duration_sec=total_sec,
        total_distance_meters=total_dist,
        arrive_time=clock,
    )


def min_departure(time_pref: TimePreference, now: datetime) -> datetime:
    """Earliest departure the traveler accepts."""
    if time_pref.kind == TimeKind.DEPART_AT and time_pref.at is not None:
        return time_pref.at
    return now


def access_seconds(legs: Sequence[AnyLeg]) -> float:
    """Movement time before the first transit leg, waits excluded."""
    total = 0.0
    for leg in legs:
        if isinstance(leg, WaitLeg):
            continue
        if leg.mode == LegMode.TRANSIT:
            break
        total += leg.duration_sec
    return total


def compress_first_stop(
    legs: Sequence[AnyLeg],
    time_pref: TimePreference,
    now: datetime,
    fallback_depart: datetime,
) -> tuple[datetime, StitchResult]:
    """Leave as late as the first scheduled departure allows.

    Returns the recommended departure and the re-stitched timeline.
    """
    first_dep = None
    for leg in legs:
        first_dep = scheduled_departure(leg)
        if first_dep is not None:
            break
    if first_dep is None:
        return fallback_depart, stitch(fallback_depart, legs)

    recommended = first_dep - timedelta(seconds=access_seconds(legs))
    depart = max(recommended, min_departure(time_pref, now))
    return depart, stitch(depart, legs)


def find_missed_connection(
    legs: Sequence[AnyLeg],
    buffer_sec: float = MISSED_DEPARTURE_BUFFER_SEC,
) -> Optional[MissedDepartureError]:
    """First transit leg reached more than buffer_sec after it left, if any."""
    for idx, leg in enumerate(legs):
        dep = scheduled_departure(leg)
        if dep is None or leg.start_time is None:
            continue
        late = (leg.start_time - dep).total_seconds()
        if late > buffer_sec:
            return MissedDepartureError(leg_index=idx, late_sec=late)
    return None


def direct_start_time(time_pref: TimePreference, duration_sec: float, now: datetime) -> datetime:
    if time_pref.kind == TimeKind.ARRIVE_BY and time_pref.at is not None:
        return time_pref.at - timedelta(seconds=duration_sec)
    if time_pref.kind == TimeKind.DEPART_AT and time_pref.at is not None:
        return time_pref.at
    return now


def make_itinerary(
    kind: ItineraryKind,
    depart_time: datetime,
    stitched: StitchResult,
    summary: str,
    route_ref: Optional[TransitRouteView] = None,
    cut_kind: Optional[VariantKind] = None,
    via_points: Optional[list[Coordinate]] = None,
) -> Itinerary:
    return Itinerary(
        id=str(uuid.uuid4())[:8],
        legs=stitched.legs,
        depart_time=depart_time,
        arrive_time=stitched.arrive_time,
        total_duration_sec=stitched.total_duration_sec,
        total_distance_meters=stitched.total_distance_meters,
        summary_label=summary,
        origin_kind=kind,
        provider_route_ref=route_ref,
        cut_kind=cut_kind,
        via_points=list(via_points or []),
    )


def rebuild_itinerary(
    itinerary: Itinerary,
    legs: Sequence[AnyLeg],
    time_pref: TimePreference,
    now: datetime,
) -> Itinerary:
    """New itinerary value from edited legs, keeping the original's metadata."""
    has_transit = any(scheduled_departure(leg) is not None for leg in legs)
    if has_transit:
        depart, stitched = compress_first_stop(legs, time_pref, now, itinerary.depart_time)
    else:
        duration = sum(leg.duration_sec for leg in legs if isinstance(leg, MoveLeg))
        depart = direct_start_time(time_pref, duration, now)
        stitched = stitch(depart, legs)

    return itinerary.model_copy(update={
        "legs": stitched.legs,
        "depart_time": depart,
        "arrive_time": stitched.arrive_time,
        "total_duration_sec": stitched.total_duration_sec,
        "total_distance_meters": stitched.total_distance_meters,
    })


def transit_route_view(summary: str, legs: Sequence[AnyLeg]) -> Optional[TransitRouteView]:
    """Reduced route for the renderer, built from the transit legs actually kept."""
    rides = [
        leg for leg in legs
        if isinstance(leg, MoveLeg) and leg.mode == LegMode.TRANSIT and leg.transit_details
    ]
    if not rides:
        return None

    steps = [
        TransitStepView(
            line_name=leg.transit_details.line_name,
            vehicle_type=leg.transit_details.vehicle_type,
            color=leg.transit_details.color,
            departure_stop=leg.transit_details.departure_stop,
            arrival_stop=leg.transit_details.arrival_stop,
            polyline=leg.geometry.polyline if leg.geometry else "",
            distance_meters=leg.distance_meters,
            duration_sec=leg.duration_sec,
        )
        for leg in rides
    ]
    first, last = rides[0], rides[-1]
    return TransitRouteView(
        summary=summary,
        start_location=(first.geometry.start if first.geometry else None)
        or first.transit_details.departure_stop.location,
        end_location=(last.geometry.end if last.geometry else None)
        or last.transit_details.arrival_stop.location,
        distance_meters=sum(s.distance_meters for s in steps),
        duration_sec=sum(s.duration_sec for s in steps),
        transit_steps=steps,
    )

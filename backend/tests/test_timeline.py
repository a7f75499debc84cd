"""
Test: timeline stitching: waits, monotonic times, additivity, first-stop
compression and missed-connection detection.
"""

from datetime import timedelta

from directions_fixtures import DEST, ORIGIN, STOP_A, T0
from hybridroute.models import (
    ItineraryKind,
    LegGeometry,
    LegMode,
    MoveLeg,
    StopRef,
    TimeKind,
    TimePreference,
    TransitDetails,
    WaitLeg,
)
from hybridroute.timeline import (
    compress_first_stop,
    direct_start_time,
    find_missed_connection,
    make_itinerary,
    rebuild_itinerary,
    stitch,
    transit_route_view,
)

NOW = TimePreference()


# ─── Fixtures ──────────────────────────────────────────────────────────


def _bike(duration, start=ORIGIN, end=STOP_A):
    return MoveLeg(
        mode=LegMode.BIKE,
        duration_sec=duration,
        distance_meters=duration * 4,
        geometry=LegGeometry(start=start, end=end),
    )


def _ride(departure, duration=600, line="504"):
    return MoveLeg(
        mode=LegMode.TRANSIT,
        duration_sec=duration,
        distance_meters=3000,
        transit_details=TransitDetails(
            line_name=line,
            departure_stop=StopRef(name="King St", location=STOP_A),
            arrival_stop=StopRef(name="Union", location=DEST),
            departure_time=departure,
            arrival_time=departure + timedelta(seconds=duration),
        ),
    )


# ─── Tests ─────────────────────────────────────────────────────────────


def test_wait_of_twenty_seconds_is_absorbed():
    result = stitch(T0, [_bike(100), _ride(T0 + timedelta(seconds=120))])

    assert [type(leg) for leg in result.legs] == [MoveLeg, MoveLeg]
    assert result.legs[1].start_time == T0 + timedelta(seconds=120)
    assert result.total_duration_sec == 700
    assert result.arrive_time == T0 + timedelta(seconds=720)


def test_wait_over_twenty_seconds_is_inserted():
    result = stitch(T0, [_bike(100), _ride(T0 + timedelta(seconds=121))])

    assert isinstance(result.legs[1], WaitLeg)
    assert result.legs[1].duration_sec == 21
    assert result.legs[1].at_stop_name == "King St"
    assert result.total_duration_sec == 721


def test_times_are_monotonic_and_durations_add_up():
    legs = [_bike(100), _ride(T0 + timedelta(seconds=400)), _bike(200, STOP_A, DEST)]
    result = stitch(T0, legs)

    previous_end = T0
    for leg in result.legs:
        assert leg.start_time >= previous_end
        assert leg.end_time >= leg.start_time
        previous_end = leg.end_time
    assert result.total_duration_sec == sum(leg.duration_sec for leg in result.legs)
    assert result.arrive_time == T0 + timedelta(seconds=result.total_duration_sec)


def test_restitch_drops_previous_waits():
    first = stitch(T0, [_bike(100), _ride(T0 + timedelta(seconds=400))])
    again = stitch(T0 + timedelta(seconds=250), first.legs)

    waits = [leg for leg in again.legs if isinstance(leg, WaitLeg)]
    assert len(waits) == 1
    assert waits[0].duration_sec == 50


def test_late_transit_is_boarded_as_is():
    result = stitch(T0, [_bike(300), _ride(T0 + timedelta(seconds=100))])

    assert result.legs[1].start_time == T0 + timedelta(seconds=300)
    assert find_missed_connection(result.legs).leg_index == 1


def test_small_lateness_is_within_buffer():
    result = stitch(T0, [_bike(120), _ride(T0 + timedelta(seconds=100))])

    assert find_missed_connection(result.legs) is None


def test_compress_first_stop_leaves_as_late_as_possible():
    legs = [_bike(150), _ride(T0 + timedelta(seconds=300))]

    depart, result = compress_first_stop(legs, NOW, T0 - timedelta(hours=1), T0)

    assert depart == T0 + timedelta(seconds=150)
    assert not any(isinstance(leg, WaitLeg) for leg in result.legs)


def test_compress_first_stop_respects_depart_at():
    legs = [_bike(150), _ride(T0 + timedelta(seconds=300))]
    pref = TimePreference(kind=TimeKind.DEPART_AT, at=T0 + timedelta(seconds=200))

    depart, result = compress_first_stop(legs, pref, T0 - timedelta(hours=1), T0)

    assert depart == T0 + timedelta(seconds=200)
    missed = find_missed_connection(result.legs)
    assert missed is not None
    assert missed.late_sec == 50


def test_direct_start_time():
    arrive_by = TimePreference(kind=TimeKind.ARRIVE_BY, at=T0)
    depart_at = TimePreference(kind=TimeKind.DEPART_AT, at=T0)
    now = T0 - timedelta(minutes=5)

    assert direct_start_time(arrive_by, 600, now) == T0 - timedelta(seconds=600)
    assert direct_start_time(depart_at, 600, now) == T0
    assert direct_start_time(NOW, 600, now) == now


def test_rebuild_keeps_metadata():
    legs = [_bike(150), _ride(T0 + timedelta(seconds=300))]
    depart, stitched = compress_first_stop(legs, NOW, T0 - timedelta(hours=1), T0)
    original = make_itinerary(
        ItineraryKind.HYBRID_TRANSIT, depart, stitched, "504 King",
        route_ref=transit_route_view("504 King", stitched.legs),
    )

    slower = [_bike(250), stitched.legs[1]]
    rebuilt = rebuild_itinerary(original, slower, NOW, T0 - timedelta(hours=1))

    assert rebuilt.id == original.id
    assert rebuilt.summary_label == "504 King"
    assert rebuilt.depart_time == T0 + timedelta(seconds=50)
    assert rebuilt.total_duration_sec == 850
    assert rebuilt.provider_route_ref.transit_steps[0].line_name == "504"

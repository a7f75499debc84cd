"""Ordering and capping of candidate itineraries."""

from typing import Sequence

from hybridroute.models import Itinerary, TimeKind, TimePreference


def _arrive_by_key(target):
    def key(it: Itinerary):
        feasible = it.arrive_time <= target
        return (
            0 if feasible else 1,
            -it.depart_time.timestamp(),  # leave as late as possible
            it.total_duration_sec,
            -it.arrive_time.timestamp(),  # closest to the deadline
        )
    return key


def _depart_key(it: Itinerary):
    return (
        it.arrive_time.timestamp(),
        -it.depart_time.timestamp(),
        it.total_duration_sec,
    )


def rank(
    candidates: Sequence[Itinerary],
    time_pref: TimePreference,
    max_options: int = 6,
) -> list[Itinerary]:
    """Sort candidates for the time preference, then cap the list.

    Truncation happens after sorting so weak candidates only drop at the end.
    """
    if time_pref.kind == TimeKind.ARRIVE_BY and time_pref.at is not None:
        ordered = sorted(candidates, key=_arrive_by_key(time_pref.at))
    else:
        ordered = sorted(candidates, key=_depart_key)
    return ordered[:max(1, max_options)]

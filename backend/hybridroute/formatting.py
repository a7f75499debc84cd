"""Display strings for route options and the sidebar."""

from datetime import datetime
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from hybridroute import config
from hybridroute.config import METERS_PER_MILE
from hybridroute.models import Itinerary, MoveLeg, RouteOptionSummary, SidebarSegment


def format_duration_sec(seconds: float) -> str:
    minutes = max(0, round(seconds / 60))
    if minutes < 60:
        return f"{minutes} min"
    hours, mins = divmod(minutes, 60)
    if mins == 0:
        return f"{hours} hr"
    return f"{hours} hr {mins} min"


def format_distance_meters(meters: float) -> str:
    miles = meters / METERS_PER_MILE
    if miles < 0.1:
        return f"{round(meters)} m"
    if miles < 10:
        return f"{miles:.1f} mi"
    return f"{round(miles)} mi"


def format_time(value: datetime, tz: Optional[str] = None) -> str:
    """12-hour clock time in the display timezone, e.g. '9:05 AM'."""
    local = value.astimezone(ZoneInfo(tz or config.get_display_timezone()))
    hour = local.hour % 12 or 12
    return f"{hour}:{local.minute:02d} {'AM' if local.hour < 12 else 'PM'}"


def time_range_text(depart: datetime, arrive: datetime, tz: Optional[str] = None) -> str:
    return f"{format_time(depart, tz)}–{format_time(arrive, tz)}"


def sidebar_segments(itinerary: Optional[Itinerary]) -> list[SidebarSegment]:
    if itinerary is None:
        return []
    return [
        SidebarSegment(mode=leg.mode, duration_text=format_duration_sec(leg.duration_sec))
        for leg in itinerary.legs
        if isinstance(leg, MoveLeg)
    ]


def summarize_itineraries(itineraries: Sequence[Itinerary], tz: Optional[str] = None) -> list[RouteOptionSummary]:
    return [
        RouteOptionSummary(
            index=i,
            duration_text=format_duration_sec(it.total_duration_sec),
            distance_text=format_distance_meters(it.total_distance_meters),
            summary=it.summary_label,
            time_range_text=time_range_text(it.depart_time, it.arrive_time, tz),
            origin_kind=it.origin_kind,
            provider_route_ref=it.provider_route_ref,
        )
        for i, it in enumerate(itineraries)
    ]

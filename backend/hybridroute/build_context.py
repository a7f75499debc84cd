"""Per-build planning context shared by the composer and the variant generator."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from hybridroute.cancellation import CancellationToken
from hybridroute.config import TRANSFER_BUFFER_SEC
from hybridroute.directions_gateway import DirectionsGateway, DirectionsRequest
from hybridroute.errors import MissedDepartureError
from hybridroute.micro_leg import MicroLegSelector
from hybridroute.models import (
    Coordinate,
    LegMode,
    ModeCombo,
    MoveLeg,
    TimeKind,
    TimePreference,
    TravelMode,
)
from hybridroute.route_parsing import (
    step_distance,
    step_duration,
    step_geometry,
    to_coordinate,
    transit_details_from_step,
    transit_step_duration,
)

logger = logging.getLogger("hybridroute.context")

_PROVIDER_STEP_MODES = {
    "WALKING": (LegMode.WALK, TravelMode.WALKING),
    "BICYCLING": (LegMode.BIKE, TravelMode.BICYCLING),
}


def provider_step_leg(step: dict) -> MoveLeg:
    """Non-transit provider step carried verbatim."""
    mode, source = _PROVIDER_STEP_MODES.get(step.get("travel_mode"), (LegMode.OTHER, None))
    return MoveLeg(
        mode=mode,
        duration_sec=step_duration(step),
        distance_meters=step_distance(step),
        geometry=step_geometry(step, source),
    )


def transit_step_leg(step: dict) -> MoveLeg:
    details = transit_details_from_step(step)
    return MoveLeg(
        mode=LegMode.TRANSIT,
        duration_sec=transit_step_duration(step, details),
        distance_meters=step_distance(step),
        geometry=step_geometry(step, TravelMode.TRANSIT),
        transit_details=details,
    )


@dataclass
class BuildContext:
    origin: Coordinate
    destination: Coordinate
    time_pref: TimePreference
    combo: ModeCombo
    gateway: DirectionsGateway
    selector: MicroLegSelector
    now: datetime
    token: Optional[CancellationToken] = None
    via_points: list[Coordinate] = field(default_factory=list)

    def check(self) -> None:
        if self.token is not None:
            self.token.raise_if_stale()

    def transit_request(
        self,
        origin: Optional[Coordinate] = None,
        departure_time: Optional[datetime] = None,
        arrival_time: Optional[datetime] = None,
        label: str = "transit",
    ) -> DirectionsRequest:
        """Transit alternatives to the destination; defaults to the build's time preference."""
        if departure_time is None and arrival_time is None:
            if self.time_pref.kind == TimeKind.ARRIVE_BY:
                arrival_time = self.time_pref.at
            elif self.time_pref.kind == TimeKind.DEPART_AT:
                departure_time = self.time_pref.at
        return DirectionsRequest(
            origin=origin or self.origin,
            destination=self.destination,
            travel_mode=TravelMode.TRANSIT,
            alternatives=True,
            departure_time=departure_time,
            arrival_time=arrival_time,
            label=label,
        )

    async def micro_leg(
        self,
        origin: Coordinate,
        destination: Coordinate,
        waypoints: Sequence[Coordinate] = (),
    ) -> Optional[MoveLeg]:
        return await self.selector.choose(origin, destination, self.combo, waypoints=waypoints)

    async def expand_steps(
        self,
        steps: list[dict],
        start_time: datetime,
        substitute: bool = True,
    ) -> list[MoveLeg]:
        """Provider steps to move legs, swapping walking steps for micro-legs.

        A walking transfer between two rides must still make the next
        scheduled departure (less the transfer buffer). When no micro-leg
        fits, the provider's own walking step is kept, since the provider
        scheduled it.
        """
        clock = start_time
        ridden = False
        legs = []

        for idx, step in enumerate(steps):
            mode = step.get("travel_mode")
            if mode == "TRANSIT":
                leg = transit_step_leg(step)
                dep = leg.transit_details.departure_time if leg.transit_details else None
                if dep is not None and clock < dep:
                    clock = dep
                ridden = True
            elif mode == "WALKING" and substitute:
                next_step = steps[idx + 1] if idx + 1 < len(steps) else None
                leg = await self._walking_step_leg(step, next_step, clock, ridden)
            else:
                leg = provider_step_leg(step)

            legs.append(leg)
            clock = clock + timedelta(seconds=leg.duration_sec)

        return legs

    async def _walking_step_leg(
        self,
        step: dict,
        next_step: Optional[dict],
        clock: datetime,
        is_transfer: bool,
    ) -> MoveLeg:
        start = to_coordinate(step.get("start_location"))
        end = to_coordinate(step.get("end_location"))
        if start is None or end is None:
            return provider_step_leg(step)

        max_allowed = None
        if is_transfer and next_step and next_step.get("travel_mode") == "TRANSIT":
            details = transit_details_from_step(next_step)
            if details and details.departure_time:
                slack = (details.departure_time - clock).total_seconds()
                max_allowed = max(0.0, slack - TRANSFER_BUFFER_SEC)

        try:
            leg = await self.selector.choose(
                start,
                end,
                self.combo,
                max_allowed_sec=max_allowed,
                approx_distance_m=step_distance(step),
                fallback_walk_sec=step_duration(step),
            )
        except MissedDepartureError as e:
            logger.info(f"Transfer micro-leg would miss the connection, keeping provider walk: {e}")
            return provider_step_leg(step)

        return leg or provider_step_leg(step)

"""Planner sessions: the interactive state behind one map view.

Handles building candidates, selection, manual leg repair, detours and
debounced elevation refinement. Every build or repair takes a new request
token; results that arrive after a newer request started are dropped.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from hybridroute.cancellation import CancellationToken, RequestSequence
from hybridroute.composer import compose
from hybridroute.config import ELEVATION_DEBOUNCE_SEC, get_max_options
from hybridroute.directions_gateway import DirectionsGateway, DirectionsRequest, RouteProvider
from hybridroute.elevation import ElevationProvider, refine_skate_legs
from hybridroute.errors import MissedDepartureError, NoFeasibleCandidateError, StaleRequest
from hybridroute.formatting import sidebar_segments, summarize_itineraries
from hybridroute.micro_leg import skate_seconds_from_bike, skate_seconds_from_walk
from hybridroute.models import (
    Coordinate,
    Itinerary,
    ItineraryKind,
    LegMode,
    ModeCombo,
    MoveLeg,
    PlannerStateResponse,
    RouteOptionSummary,
    SidebarSegment,
    TimeKind,
    TimePreference,
    TravelMode,
)
from hybridroute.route_parsing import route_geometry, route_totals
from hybridroute.timeline import find_missed_connection, rebuild_itinerary

logger = logging.getLogger("hybridroute.session")

_REPAIRABLE_MODES = {
    LegMode.WALK: TravelMode.WALKING,
    LegMode.BIKE: TravelMode.BICYCLING,
    LegMode.SKATE: TravelMode.BICYCLING,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PlannerSession:
    """State for one planning view."""
    session_id: str
    provider: RouteProvider
    elevation: Optional[ElevationProvider] = None
    origin: Optional[Coordinate] = None
    destination: Optional[Coordinate] = None
    time_pref: TimePreference = field(default_factory=TimePreference)
    combo: ModeCombo = ModeCombo.TRANSIT
    max_options: int = 6
    hill_weight: float = 0.0
    via_points: list[Coordinate] = field(default_factory=list)
    timeout_sec: Optional[float] = None
    debounce_sec: float = ELEVATION_DEBOUNCE_SEC
    clock: Callable[[], datetime] = _utcnow

    # Current state
    candidates: list[Itinerary] = field(default_factory=list)
    selected_index: int = 0
    no_routes: bool = False
    fit_to_routes: bool = False
    replan_count: int = 0
    sequence: RequestSequence = field(default_factory=RequestSequence)
    created_at: float = field(default_factory=time.time)
    _elevation_task: Optional[asyncio.Task] = field(default=None, repr=False)

    # ── Read-only outputs ──────────────────────────────────────────────

    @property
    def selected_itinerary(self) -> Optional[Itinerary]:
        if not self.candidates:
            return None
        return self.candidates[self.selected_index]

    @property
    def route_options(self) -> list[RouteOptionSummary]:
        return summarize_itineraries(self.candidates)

    @property
    def sidebar_segments(self) -> list[SidebarSegment]:
        return sidebar_segments(self.selected_itinerary)

    def to_state(self) -> PlannerStateResponse:
        return PlannerStateResponse(
            session_id=self.session_id,
            combo=self.combo,
            route_options=self.route_options,
            selected_index=self.selected_index,
            selected_itinerary=self.selected_itinerary,
            sidebar_segments=self.sidebar_segments,
            via_points=self.via_points,
            no_routes=self.no_routes,
            fit_to_routes=self.fit_to_routes,
            replan_count=self.replan_count,
        )

    # ── Build / select / clear ─────────────────────────────────────────

    async def build_route(
        self,
        origin_override: Optional[Coordinate] = None,
        destination_override: Optional[Coordinate] = None,
        via_points_override: Optional[Sequence[Coordinate]] = None,
        alternatives: bool = True,
        fit_to_routes: bool = True,
    ) -> None:
        """Compose candidates for the current endpoints and replace the list.

        Superseded builds change nothing.
        """
        if origin_override is not None:
            self.origin = origin_override
        if destination_override is not None:
            self.destination = destination_override
        if via_points_override is not None:
            self.via_points = list(via_points_override)
        if self.origin is None or self.destination is None:
            logger.info(f"Session {self.session_id}: build skipped, endpoints not set")
            return

        token = self.sequence.next_token()
        self._cancel_elevation()
        try:
            itineraries = await compose(
                self.provider,
                self.origin,
                self.destination,
                self.time_pref,
                self.combo,
                max_options=self.max_options if alternatives else 1,
                via_points=self.via_points,
                hill_weight=self.hill_weight,
                token=token,
                now=self.clock(),
                timeout_sec=self.timeout_sec,
            )
        except StaleRequest as e:
            logger.debug(f"Session {self.session_id}: dropped stale build ({e})")
            return
        except NoFeasibleCandidateError as e:
            if token.is_stale():
                return
            logger.info(f"Session {self.session_id}: {e}")
            self.candidates = []
            self.selected_index = 0
            self.no_routes = True
            return

        if token.is_stale():
            logger.debug(f"Session {self.session_id}: dropped stale build {token.number}")
            return
        self.candidates = itineraries
        self.selected_index = 0
        self.no_routes = False
        self.fit_to_routes = fit_to_routes
        self.schedule_elevation_refine()

    def select_route(self, index: int) -> None:
        if not self.candidates:
            self.selected_index = 0
            return
        self.selected_index = max(0, min(len(self.candidates) - 1, index))
        self.schedule_elevation_refine()

    def clear_route(self) -> None:
        self.sequence.invalidate()
        self._cancel_elevation()
        self.candidates = []
        self.selected_index = 0
        self.no_routes = False
        self.via_points = []

    async def set_via_points(self, points: Sequence[Coordinate]) -> None:
        self.via_points = list(points)
        await self.build_route()

    # ── Manual repair ──────────────────────────────────────────────────

    async def repair_leg(self, leg_index: int, waypoints: Sequence[Coordinate]) -> None:
        """Re-route one micro-leg through dragged waypoints.

        A repair that no longer makes its connection replans from the
        itinerary's departure. Provider failures leave the state as it was.
        """
        itinerary = self.selected_itinerary
        if itinerary is None or not 0 <= leg_index < len(itinerary.legs):
            logger.warning(f"Session {self.session_id}: no leg {leg_index} to repair")
            return
        leg = itinerary.legs[leg_index]
        if not isinstance(leg, MoveLeg) or leg.mode not in _REPAIRABLE_MODES:
            logger.warning(f"Session {self.session_id}: leg {leg_index} is not a micro-leg")
            return
        if leg.geometry is None or leg.geometry.start is None or leg.geometry.end is None:
            logger.warning(f"Session {self.session_id}: leg {leg_index} has no endpoints")
            return

        index = self.selected_index
        token = self.sequence.next_token()
        self._cancel_elevation()
        gateway = DirectionsGateway(self.provider, timeout_sec=self.timeout_sec, token=token)
        try:
            repaired = await self._requery_leg(gateway, leg, list(waypoints))
        except StaleRequest as e:
            logger.debug(f"Session {self.session_id}: dropped stale repair ({e})")
            return
        finally:
            gateway.close()

        if token.is_stale():
            logger.debug(f"Session {self.session_id}: dropped stale repair {token.number}")
            return
        # The repaired slot must still hold the itinerary the drag started from
        if index >= len(self.candidates) or self.candidates[index] is not itinerary:
            logger.debug(f"Session {self.session_id}: candidate {index} changed during repair, dropped")
            return
        if repaired is None:
            logger.warning(f"Session {self.session_id}: repair of leg {leg_index} failed, keeping route")
            return

        legs = list(itinerary.legs)
        legs[leg_index] = repaired
        now = self.clock()
        updated = rebuild_itinerary(itinerary, legs, self.time_pref, now)
        if itinerary.origin_kind in (ItineraryKind.DIRECT_BIKE, ItineraryKind.DIRECT_SKATE):
            updated = updated.model_copy(update={"via_points": list(waypoints)})

        missed = find_missed_connection(updated.legs)
        if missed is not None:
            logger.info(f"Session {self.session_id}: repair misses a connection ({missed}), replanning")
            await self._replan(itinerary, now)
            return

        self.candidates[index] = updated
        self.schedule_elevation_refine()

    async def _requery_leg(
        self,
        gateway: DirectionsGateway,
        leg: MoveLeg,
        waypoints: list[Coordinate],
    ) -> Optional[MoveLeg]:
        source = leg.skate_geometry_mode or (leg.geometry.source_mode if leg.geometry else None)
        if source not in (TravelMode.WALKING, TravelMode.BICYCLING):
            source = _REPAIRABLE_MODES[leg.mode]

        route = await gateway.first_route(DirectionsRequest(
            origin=leg.geometry.start,
            destination=leg.geometry.end,
            travel_mode=source,
            waypoints=tuple(waypoints),
            label="repair",
        ))
        if route is None:
            return None

        dist, dur = route_totals(route)
        if leg.mode == LegMode.SKATE:
            dur = skate_seconds_from_bike(dur) if source == TravelMode.BICYCLING else skate_seconds_from_walk(dur)
        return leg.model_copy(update={
            "duration_sec": dur,
            "distance_meters": dist,
            "geometry": route_geometry(route, source, waypoints),
        })

    async def _replan(self, itinerary: Itinerary, now: datetime) -> None:
        target = TimePreference(kind=TimeKind.DEPART_AT, at=max(itinerary.depart_time, now))
        if target == self.time_pref:
            logger.warning(f"Session {self.session_id}: already replanned from {target.at}, keeping route")
            return
        self.time_pref = target
        self.replan_count += 1
        await self.build_route(fit_to_routes=self.fit_to_routes)

    # ── Elevation ──────────────────────────────────────────────────────

    async def refine_selected_elevation(self, token: Optional[CancellationToken] = None) -> None:
        itinerary = self.selected_itinerary
        if itinerary is None or self.elevation is None:
            return
        token = token or self.sequence.current_token()
        index = self.selected_index
        now = self.clock()

        try:
            refined = await refine_skate_legs(itinerary, self.elevation, self.time_pref, now)
        except MissedDepartureError as e:
            if token.is_stale():
                return
            logger.info(f"Session {self.session_id}: hills make {itinerary.id} miss a connection ({e}), replanning")
            await self._replan(itinerary, now)
            return

        if token.is_stale() or index >= len(self.candidates) or self.candidates[index] is not itinerary:
            logger.debug(f"Session {self.session_id}: dropped stale elevation refinement")
            return
        self.candidates[index] = refined

    def schedule_elevation_refine(self) -> None:
        """Refine the selection after a short settle delay; a newer edit restarts the timer."""
        if self.elevation is None:
            return
        self._cancel_elevation()
        token = self.sequence.current_token()
        self._elevation_task = asyncio.create_task(self._debounced_refine(token))

    async def _debounced_refine(self, token: CancellationToken) -> None:
        await asyncio.sleep(self.debounce_sec)
        if token.is_stale():
            logger.debug(f"Session {self.session_id}: elevation timer expired for stale request")
            return
        try:
            await self.refine_selected_elevation(token)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Session {self.session_id}: elevation refinement failed: {type(e).__name__}: {e}")

    def _cancel_elevation(self) -> None:
        task = self._elevation_task
        self._elevation_task = None
        # Never cancel the running refinement from inside its own replan
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def close(self) -> None:
        self.sequence.invalidate()
        self._cancel_elevation()


class PlannerSessionManager:
    """Manages all active planner sessions."""

    def __init__(
        self,
        provider: RouteProvider,
        elevation: Optional[ElevationProvider] = None,
        timeout_sec: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.provider = provider
        self.elevation = elevation
        self.timeout_sec = timeout_sec
        self.clock = clock
        self.sessions: dict[str, PlannerSession] = {}

    def create_session(
        self,
        origin: Optional[Coordinate] = None,
        destination: Optional[Coordinate] = None,
        time_pref: Optional[TimePreference] = None,
        combo: ModeCombo = ModeCombo.TRANSIT,
        max_options: Optional[int] = None,
        hill_weight: float = 0.0,
    ) -> PlannerSession:
        session_id = str(uuid.uuid4())[:12]
        session = PlannerSession(
            session_id=session_id,
            provider=self.provider,
            elevation=self.elevation,
            origin=origin,
            destination=destination,
            time_pref=time_pref or TimePreference(),
            combo=combo,
            max_options=max_options or get_max_options(),
            hill_weight=hill_weight,
            timeout_sec=self.timeout_sec,
            clock=self.clock,
        )
        self.sessions[session_id] = session
        logger.info(f"Planner session created: {session_id}")
        return session

    def get_session(self, session_id: str) -> Optional[PlannerSession]:
        return self.sessions.get(session_id)

    def end_session(self, session_id: str) -> bool:
        session = self.sessions.pop(session_id, None)
        if session:
            session.close()
            logger.info(f"Planner session ended: {session_id}")
            return True
        return False

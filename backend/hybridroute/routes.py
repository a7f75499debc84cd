import logging

from fastapi import APIRouter, HTTPException

from hybridroute.models import (
    BuildRouteRequest,
    CreateSessionRequest,
    NextComboRequest,
    NextComboResponse,
    PlannerStateResponse,
    PlanRequest,
    PlanResponse,
    RepairLegRequest,
    SelectRouteRequest,
    ViaPointsRequest,
)

logger = logging.getLogger("hybridroute.routes")

router = APIRouter()


def _get_state():
    from hybridroute.main import app_state
    return app_state


def _get_manager():
    manager = _get_state().get("sessions")
    if manager is None:
        raise HTTPException(status_code=503, detail="Planner sessions not initialized")
    return manager


def _get_session(session_id: str):
    session = _get_manager().get_session(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


@router.get("/health")
async def health():
    return {"status": "ok", "service": "HybridRoute API"}


@router.post("/plan", response_model=PlanResponse)
async def plan(request: PlanRequest):
    """Compose ranked itineraries without a session."""
    from hybridroute.composer import compose
    from hybridroute.errors import NoFeasibleCandidateError
    from hybridroute.formatting import summarize_itineraries

    state = _get_state()
    provider = state.get("directions_provider")
    if provider is None:
        raise HTTPException(status_code=503, detail="Directions provider not initialized")

    try:
        itineraries = await compose(
            provider,
            request.origin,
            request.destination,
            request.time_preference,
            request.combo,
            max_options=request.max_options,
            via_points=request.via_points,
            hill_weight=request.hill_weight,
        )
    except NoFeasibleCandidateError as e:
        logger.info(f"Plan request found no routes: {e}")
        return PlanResponse(itineraries=[], route_options=[], no_routes=True)

    return PlanResponse(
        itineraries=itineraries,
        route_options=summarize_itineraries(itineraries),
    )


@router.post("/combos/next", response_model=NextComboResponse)
async def combos_next(request: NextComboRequest):
    from hybridroute.combos import is_bike_on, is_skate_on, is_transit_on, next_combo

    combo = next_combo(request.current, request.clicked)
    return NextComboResponse(
        combo=combo,
        transit=is_transit_on(combo),
        bike=is_bike_on(combo),
        skate=is_skate_on(combo),
    )


# ── Planner sessions ───────────────────────────────────────────────────


@router.post("/sessions", response_model=PlannerStateResponse)
async def create_session(request: CreateSessionRequest):
    session = _get_manager().create_session(
        origin=request.origin,
        destination=request.destination,
        time_pref=request.time_preference,
        combo=request.combo,
        max_options=request.max_options,
        hill_weight=request.hill_weight,
    )
    return session.to_state()


@router.get("/sessions/{session_id}", response_model=PlannerStateResponse)
async def get_session(session_id: str):
    return _get_session(session_id).to_state()


@router.delete("/sessions/{session_id}")
async def end_session(session_id: str):
    if not _get_manager().end_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return {"status": "ended", "session_id": session_id}


@router.post("/sessions/{session_id}/build", response_model=PlannerStateResponse)
async def build_route(session_id: str, request: BuildRouteRequest):
    session = _get_session(session_id)
    if request.time_preference is not None:
        session.time_pref = request.time_preference
    if request.combo is not None:
        session.combo = request.combo
    await session.build_route(
        origin_override=request.origin,
        destination_override=request.destination,
        via_points_override=request.via_points,
        alternatives=request.alternatives,
        fit_to_routes=request.fit_to_routes,
    )
    return session.to_state()


@router.post("/sessions/{session_id}/select", response_model=PlannerStateResponse)
async def select_route(session_id: str, request: SelectRouteRequest):
    session = _get_session(session_id)
    session.select_route(request.index)
    return session.to_state()


@router.post("/sessions/{session_id}/clear", response_model=PlannerStateResponse)
async def clear_route(session_id: str):
    session = _get_session(session_id)
    session.clear_route()
    return session.to_state()


@router.post("/sessions/{session_id}/legs/repair", response_model=PlannerStateResponse)
async def repair_leg(session_id: str, request: RepairLegRequest):
    session = _get_session(session_id)
    await session.repair_leg(request.leg_index, request.waypoints)
    return session.to_state()


@router.post("/sessions/{session_id}/via-points", response_model=PlannerStateResponse)
async def set_via_points(session_id: str, request: ViaPointsRequest):
    session = _get_session(session_id)
    await session.set_via_points(request.via_points)
    return session.to_state()


@router.post("/sessions/{session_id}/elevation", response_model=PlannerStateResponse)
async def refine_elevation(session_id: str):
    session = _get_session(session_id)
    if session.elevation is None:
        raise HTTPException(status_code=503, detail="Elevation provider not initialized")
    await session.refine_selected_elevation()
    return session.to_state()

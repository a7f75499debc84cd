"""Itinerary composer: provider queries in, ranked hybrid itineraries out."""

import asyncio
import logging
import math
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from hybridroute.build_context import BuildContext
from hybridroute.cancellation import CancellationToken
from hybridroute.combos import is_bike_on, is_hybrid, is_skate_on
from hybridroute.config import (
    DEPART_SHIFT_BUFFER_SEC,
    DEPART_SHIFT_CAP_SEC,
    DEPART_SHIFT_MIN_DELTA_SEC,
    MAX_DIRECT_BIKE_ROUTES,
    MAX_TRANSIT_EXPANSIONS,
    TAXING_DISTANCE_M,
    TAXING_DURATION_SEC,
)
from hybridroute.directions_gateway import DirectionsGateway, DirectionsRequest, RouteProvider
from hybridroute.errors import NoFeasibleCandidateError, ProviderError, StaleRequest
from hybridroute.micro_leg import MicroLegSelector, skate_seconds_from_bike, skate_seconds_from_walk
from hybridroute.models import (
    Coordinate,
    Itinerary,
    ItineraryKind,
    LegMode,
    ModeCombo,
    MoveLeg,
    TimeKind,
    TimePreference,
    TravelMode,
)
from hybridroute.ranking import rank
from hybridroute.route_parsing import (
    extract_via_points,
    first_transit_step,
    leg_departure,
    route_geometry,
    route_signature,
    route_steps,
    route_totals,
    to_coordinate,
    walk_access_seconds,
)
from hybridroute.timeline import (
    compress_first_stop,
    direct_start_time,
    make_itinerary,
    min_departure,
    stitch,
    transit_route_view,
)
from hybridroute.variants import VariantGenerator

logger = logging.getLogger("hybridroute.composer")


def is_taxing_direct(distance_m: float, duration_sec: float) -> bool:
    """Too long to offer as a no-transit option unless the list needs filling."""
    return duration_sec > TAXING_DURATION_SEC or distance_m > TAXING_DISTANCE_M


async def compose(
    provider: RouteProvider,
    origin: Coordinate,
    destination: Coordinate,
    time_pref: TimePreference,
    combo: ModeCombo,
    max_options: int = 6,
    via_points: Optional[Sequence[Coordinate]] = None,
    hill_weight: float = 0.0,
    token: Optional[CancellationToken] = None,
    now: Optional[datetime] = None,
    timeout_sec: Optional[float] = None,
) -> list[Itinerary]:
    """Build, rank and cap the itineraries for one request.

    Raises NoFeasibleCandidateError when nothing survives, and StaleRequest
    if the token is superseded while provider queries are in flight.
    """
    gateway = DirectionsGateway(provider, timeout_sec=timeout_sec, token=token)
    ctx = BuildContext(
        origin=origin,
        destination=destination,
        time_pref=time_pref,
        combo=combo,
        gateway=gateway,
        selector=MicroLegSelector(gateway, hill_weight=hill_weight),
        now=now or datetime.now(timezone.utc),
        token=token,
        via_points=list(via_points or []),
    )

    try:
        if combo == ModeCombo.BIKE:
            candidates = await _direct_bike_only(ctx)
        elif combo == ModeCombo.SKATE:
            candidates = await _direct_skate_only(ctx)
        elif combo == ModeCombo.TRANSIT:
            candidates = await _transit_passthrough(ctx)
        else:
            candidates = await _hybrid_options(ctx, max_options)
    finally:
        gateway.close()

    ranked = rank(candidates, time_pref, max_options)
    if not ranked:
        raise NoFeasibleCandidateError(
            f"No {combo.value} itineraries from {origin.key()} to {destination.key()}"
        )
    logger.info(
        f"Composed {len(ranked)}/{len(candidates)} {combo.value} itineraries "
        f"({gateway.issued} provider queries)"
    )
    return ranked


# ── Direct (no transit) ────────────────────────────────────────────────


def _direct_itinerary(
    ctx: BuildContext,
    kind: ItineraryKind,
    leg: MoveLeg,
    summary: str,
    via_points: Optional[list[Coordinate]] = None,
) -> Itinerary:
    depart = direct_start_time(ctx.time_pref, leg.duration_sec, ctx.now)
    return make_itinerary(
        kind, depart, stitch(depart, [leg]), summary,
        via_points=via_points if via_points is not None else ctx.via_points,
    )


def _bike_leg(route: dict, ctx: BuildContext) -> MoveLeg:
    dist, dur = route_totals(route)
    return MoveLeg(
        mode=LegMode.BIKE,
        duration_sec=dur,
        distance_meters=dist,
        geometry=route_geometry(route, TravelMode.BICYCLING, ctx.via_points),
    )


def _direct_bike(ctx: BuildContext, route: dict) -> Itinerary:
    return _direct_itinerary(
        ctx, ItineraryKind.DIRECT_BIKE, _bike_leg(route, ctx),
        route.get("summary") or "Bike",
        via_points=extract_via_points(route) or ctx.via_points,
    )


async def _direct_bike_only(ctx: BuildContext) -> list[Itinerary]:
    route = await ctx.gateway.first_route(DirectionsRequest(
        origin=ctx.origin,
        destination=ctx.destination,
        travel_mode=TravelMode.BICYCLING,
        waypoints=tuple(ctx.via_points),
        label="direct-bike",
    ))
    if route is None:
        return []
    return [_direct_bike(ctx, route)]


async def _direct_skate_only(ctx: BuildContext) -> list[Itinerary]:
    leg = await ctx.micro_leg(ctx.origin, ctx.destination, waypoints=ctx.via_points)
    if leg is None:
        return []
    return [_direct_itinerary(ctx, ItineraryKind.DIRECT_SKATE, leg, "Skate")]


def _direct_skate_from_routes(
    ctx: BuildContext,
    bike_route: Optional[dict],
    walk_route: Optional[dict],
) -> Optional[Itinerary]:
    """Faster skate-equivalent of the top bike and walk geometries."""
    options = []
    if bike_route:
        dist, dur = route_totals(bike_route)
        options.append((skate_seconds_from_bike(dur), 0, dist, bike_route, TravelMode.BICYCLING))
    if walk_route:
        dist, dur = route_totals(walk_route)
        options.append((skate_seconds_from_walk(dur), 1, dist, walk_route, TravelMode.WALKING))
    if not options:
        return None

    seconds, _, dist, route, source = min(options, key=lambda o: (o[0], o[1]))
    leg = MoveLeg(
        mode=LegMode.SKATE,
        duration_sec=seconds,
        distance_meters=dist,
        geometry=route_geometry(route, source, ctx.via_points),
        skate_geometry_mode=source,
    )
    return _direct_itinerary(ctx, ItineraryKind.DIRECT_SKATE, leg, "Skate")


# ── Transit only ───────────────────────────────────────────────────────


async def _transit_passthrough(ctx: BuildContext) -> list[Itinerary]:
    try:
        data = await ctx.gateway.route(ctx.transit_request())
    except ProviderError as e:
        logger.warning(f"Transit query failed: {e}")
        return []

    options = []
    for route in data.get("routes") or []:
        steps = route_steps(route)
        if not steps:
            continue
        start = leg_departure(route) or min_departure(ctx.time_pref, ctx.now)
        legs = await ctx.expand_steps(steps, start, substitute=False)
        summary = route.get("summary") or "Transit"
        options.append(make_itinerary(
            ItineraryKind.TRANSIT, start, stitch(start, legs), summary,
            route_ref=transit_route_view(summary, legs),
        ))
    return options


# ── Hybrid (transit + micro-mobility) ──────────────────────────────────


async def _depart_shift_seconds(ctx: BuildContext, routes: list[dict]) -> float:
    """How much earlier to re-query transit so faster access can catch earlier rides."""

    async def delta_for(route: dict) -> float:
        walk_sec = walk_access_seconds(route)
        step, _ = first_transit_step(route)
        stop = to_coordinate((step or {}).get("start_location"))
        if stop is None or walk_sec <= 0:
            return 0.0
        micro_sec = await ctx.selector.access_seconds(ctx.origin, stop, ctx.combo)
        if not micro_sec or micro_sec <= 0:
            return 0.0
        return walk_sec - micro_sec

    deltas = await asyncio.gather(*[delta_for(r) for r in routes[:MAX_TRANSIT_EXPANSIONS]])
    max_delta = max([0.0, *deltas])
    if max_delta < DEPART_SHIFT_MIN_DELTA_SEC:
        return 0.0
    return min(DEPART_SHIFT_CAP_SEC, math.ceil(max_delta + DEPART_SHIFT_BUFFER_SEC))


async def _transit_alternatives(ctx: BuildContext) -> list[dict]:
    try:
        data = await ctx.gateway.route(ctx.transit_request())
        routes = list(data.get("routes") or [])
    except ProviderError as e:
        # Direct bike/skate options can still be offered
        logger.warning(f"Transit query failed, continuing with direct options: {e}")
        return []

    if ctx.time_pref.kind != TimeKind.DEPART_AT or not is_hybrid(ctx.combo) or not routes:
        return routes

    shift_sec = await _depart_shift_seconds(ctx, routes)
    if not shift_sec:
        return routes

    earlier = max(ctx.time_pref.at - timedelta(seconds=shift_sec), ctx.now)
    try:
        data = await ctx.gateway.route(ctx.transit_request(departure_time=earlier, label="transit-shifted"))
    except ProviderError as e:
        logger.info(f"Shifted transit query failed, keeping first pass: {e}")
        return routes

    seen = {route_signature(r) for r in routes}
    earlier_routes = []
    for route in data.get("routes") or []:
        sig = route_signature(route)
        if sig in seen:
            continue
        seen.add(sig)
        earlier_routes.append(route)

    if earlier_routes:
        logger.info(f"Shifted transit query (-{shift_sec:.0f}s) surfaced {len(earlier_routes)} new routes")
    # Earlier routes go first so they are among those expanded
    return earlier_routes + routes


async def _expand_alternative(ctx: BuildContext, route: dict) -> list[Itinerary]:
    steps = route_steps(route)
    if not steps:
        return []

    trip_start = leg_departure(route) or min_departure(ctx.time_pref, ctx.now)
    legs = await ctx.expand_steps(steps, trip_start)
    depart, stitched = compress_first_stop(legs, ctx.time_pref, ctx.now, trip_start)
    summary = route.get("summary") or "Transit"
    base = make_itinerary(
        ItineraryKind.HYBRID_TRANSIT, depart, stitched, summary,
        route_ref=transit_route_view(summary, stitched.legs),
    )

    variants = await VariantGenerator(ctx).generate(base)
    options = [] if variants.drop_original else [base]
    options.extend(variants.variants)
    return options


async def _safe_routes(ctx: BuildContext, request: DirectionsRequest) -> list[dict]:
    try:
        data = await ctx.gateway.route(request)
    except ProviderError as e:
        logger.info(f"{request.describe()} unavailable: {e}")
        return []
    return list(data.get("routes") or [])


async def _hybrid_options(ctx: BuildContext, max_options: int) -> list[Itinerary]:
    transit_routes = await _transit_alternatives(ctx)

    bike_routes, walk_routes = await asyncio.gather(
        _safe_routes(ctx, DirectionsRequest(
            origin=ctx.origin,
            destination=ctx.destination,
            travel_mode=TravelMode.BICYCLING,
            waypoints=tuple(ctx.via_points),
            alternatives=True,
            label="direct-bike",
        )),
        _safe_routes(ctx, DirectionsRequest(
            origin=ctx.origin,
            destination=ctx.destination,
            travel_mode=TravelMode.WALKING,
            waypoints=tuple(ctx.via_points),
            label="direct-walk",
        )),
    )

    expanded = transit_routes[:MAX_TRANSIT_EXPANSIONS]
    results = await asyncio.gather(
        *[_expand_alternative(ctx, route) for route in expanded],
        return_exceptions=True,
    )

    options: list[Itinerary] = []
    for route, result in zip(expanded, results):
        if isinstance(result, (StaleRequest, asyncio.CancelledError)):
            raise result
        if isinstance(result, Exception):
            logger.warning(
                f"Skipping transit alternative '{route.get('summary', '')}': "
                f"{type(result).__name__}: {result}"
            )
            continue
        options.extend(result)
    ctx.check()

    if is_bike_on(ctx.combo):
        for route in bike_routes[:MAX_DIRECT_BIKE_ROUTES]:
            candidate = _direct_bike(ctx, route)
            taxing = is_taxing_direct(candidate.total_distance_meters, candidate.total_duration_sec)
            if not taxing or len(options) < max_options - 1:
                options.append(candidate)
            if len(options) >= max_options:
                break
    elif is_skate_on(ctx.combo):
        candidate = _direct_skate_from_routes(
            ctx,
            bike_routes[0] if bike_routes else None,
            walk_routes[0] if walk_routes else None,
        )
        if candidate is not None:
            taxing = is_taxing_direct(candidate.total_distance_meters, candidate.total_duration_sec)
            if not taxing or len(options) < max_options - 1:
                options.append(candidate)

    return options

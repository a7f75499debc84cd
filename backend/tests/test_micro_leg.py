"""
Test: micro-leg selection: skate conversion, bike/walk choice, hill weight,
the short-transfer shortcut and the connection deadline.
"""

import pytest

from directions_fixtures import ORIGIN, STOP_A, FakeDirections, make_direct_route
from hybridroute.directions_gateway import DirectionsGateway
from hybridroute.errors import MissedDepartureError
from hybridroute.micro_leg import MicroLegSelector, skate_seconds_from_bike, skate_seconds_from_walk
from hybridroute.models import LegMode, ModeCombo, TravelMode


# ─── Fixtures ──────────────────────────────────────────────────────────


def _make_selector(walk_sec=None, bike_sec=None, hill_weight=0.0):
    provider = FakeDirections()
    if walk_sec is not None:
        provider.add(TravelMode.WALKING, ORIGIN, STOP_A, [make_direct_route("WALKING", walk_sec, ORIGIN, STOP_A)])
    if bike_sec is not None:
        provider.add(TravelMode.BICYCLING, ORIGIN, STOP_A, [make_direct_route("BICYCLING", bike_sec, ORIGIN, STOP_A)])
    selector = MicroLegSelector(DirectionsGateway(provider, timeout_sec=1.0), hill_weight=hill_weight)
    return selector, provider


# ─── Tests ─────────────────────────────────────────────────────────────


def test_skate_conversion_factors():
    assert skate_seconds_from_bike(600) == pytest.approx(1000)
    assert skate_seconds_from_walk(600) == pytest.approx(300)


@pytest.mark.asyncio
async def test_skate_uses_the_faster_converted_geometry():
    selector, _ = _make_selector(walk_sec=600, bike_sec=600)

    leg = await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_SKATE)

    assert leg.mode == LegMode.SKATE
    assert leg.duration_sec == pytest.approx(300)
    assert leg.skate_geometry_mode == TravelMode.WALKING


@pytest.mark.asyncio
async def test_bike_wins_when_faster():
    selector, _ = _make_selector(walk_sec=300, bike_sec=150)

    leg = await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE)

    assert leg.mode == LegMode.BIKE
    assert leg.duration_sec == 150
    assert leg.geometry.source_mode == TravelMode.BICYCLING


@pytest.mark.asyncio
async def test_ties_go_to_bike():
    selector, _ = _make_selector(walk_sec=300, bike_sec=300)

    leg = await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE)

    assert leg.mode == LegMode.BIKE


@pytest.mark.asyncio
async def test_hill_weight_penalizes_bike():
    selector, _ = _make_selector(walk_sec=320, bike_sec=300, hill_weight=1.0)

    leg = await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE)

    assert leg.mode == LegMode.WALK
    assert leg.duration_sec == 320


@pytest.mark.asyncio
async def test_short_transfer_skips_bike_query():
    selector, provider = _make_selector(walk_sec=25, bike_sec=10)

    leg = await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE, approx_distance_m=20)

    assert leg.mode == LegMode.WALK
    assert provider.calls_for(TravelMode.BICYCLING) == []


@pytest.mark.asyncio
async def test_deadline_rules_out_every_candidate():
    selector, _ = _make_selector(walk_sec=300, bike_sec=150)

    with pytest.raises(MissedDepartureError) as exc:
        await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE, max_allowed_sec=100)

    assert exc.value.required_sec == 150
    assert exc.value.allowed_sec == 100


@pytest.mark.asyncio
async def test_deadline_keeps_feasible_candidate():
    selector, _ = _make_selector(walk_sec=300, bike_sec=150)

    leg = await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE, max_allowed_sec=200)

    assert leg.mode == LegMode.BIKE


@pytest.mark.asyncio
async def test_falls_back_to_provider_walk_time():
    selector, _ = _make_selector()

    leg = await selector.choose(
        ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE, approx_distance_m=150, fallback_walk_sec=120,
    )

    assert leg.mode == LegMode.WALK
    assert leg.duration_sec == 120
    assert leg.geometry.start == ORIGIN
    assert leg.geometry.end == STOP_A


@pytest.mark.asyncio
async def test_nothing_routed_returns_none():
    selector, _ = _make_selector()

    assert await selector.choose(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE) is None


@pytest.mark.asyncio
async def test_access_seconds_prefers_bike_and_converts_for_skate():
    selector, _ = _make_selector(walk_sec=900, bike_sec=300)

    assert await selector.access_seconds(ORIGIN, STOP_A, ModeCombo.TRANSIT_BIKE) == 300
    assert await selector.access_seconds(ORIGIN, STOP_A, ModeCombo.TRANSIT_SKATE) == pytest.approx(500)

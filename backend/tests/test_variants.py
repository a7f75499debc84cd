"""
Test: cut variants: the keep/drop rule, tail cuts after a short final ride
and skipping a short first ride.
"""

from datetime import timedelta

import pytest

from directions_fixtures import (
    DEST,
    ORIGIN,
    STOP_A,
    STOP_B,
    T0,
    FakeDirections,
    make_direct_route,
    make_route,
    make_transit_step,
)
from hybridroute.build_context import BuildContext, transit_step_leg
from hybridroute.directions_gateway import DirectionsGateway
from hybridroute.micro_leg import MicroLegSelector
from hybridroute.models import (
    ItineraryKind,
    LegGeometry,
    LegMode,
    ModeCombo,
    MoveLeg,
    TimePreference,
    TravelMode,
    VariantKind,
)
from hybridroute.timeline import compress_first_stop, make_itinerary
from hybridroute.variants import CutVerdict, VariantGenerator, judge_cut

NOW = T0 - timedelta(minutes=10)


# ─── Fixtures ──────────────────────────────────────────────────────────


def _make_context(provider):
    gateway = DirectionsGateway(provider, timeout_sec=1.0)
    return BuildContext(
        origin=ORIGIN,
        destination=DEST,
        time_pref=TimePreference(),
        combo=ModeCombo.TRANSIT_BIKE,
        gateway=gateway,
        selector=MicroLegSelector(gateway),
        now=NOW,
    )


def _bike(duration, start, end):
    return MoveLeg(
        mode=LegMode.BIKE,
        duration_sec=duration,
        distance_meters=duration * 4,
        geometry=LegGeometry(source_mode=TravelMode.BICYCLING, start=start, end=end),
    )


def _ride(line, departure, duration, start, end, start_name, end_name):
    return transit_step_leg(make_transit_step(line, departure, duration, start, end, start_name, end_name))


def _make_base(legs):
    depart, stitched = compress_first_stop(legs, TimePreference(), NOW, T0)
    return make_itinerary(ItineraryKind.HYBRID_TRANSIT, depart, stitched, "504 King")


# ─── Keep/drop rule ────────────────────────────────────────────────────


@pytest.mark.parametrize("replacement, verdict", [
    (700, CutVerdict.DISCARD),
    (660, CutVerdict.KEEP_BOTH),
    (500, CutVerdict.KEEP_BOTH),
    (480, CutVerdict.DROP_ORIGINAL),
    (300, CutVerdict.DROP_ORIGINAL),
])
def test_judge_cut(replacement, verdict):
    assert judge_cut(600, replacement) == verdict


# ─── Tail cut ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_short_final_ride_is_replaced_by_micro_leg():
    provider = FakeDirections()
    provider.add(TravelMode.BICYCLING, STOP_B, DEST, [make_direct_route("BICYCLING", 200, STOP_B, DEST)])
    provider.add(TravelMode.WALKING, STOP_B, DEST, [make_direct_route("WALKING", 600, STOP_B, DEST)])
    base = _make_base([
        _bike(100, ORIGIN, STOP_A),
        _ride("504", T0 + timedelta(seconds=100), 600, STOP_A, STOP_B, "King St", "Spadina"),
        _ride("510", T0 + timedelta(seconds=700), 300, STOP_B, DEST, "Spadina", "Union"),
    ])

    result = await VariantGenerator(_make_context(provider)).tail_cuts(base)

    assert result.drop_original is True
    assert len(result.variants) == 1
    variant = result.variants[0]
    assert variant.cut_kind == VariantKind.TAIL_CUT
    assert [leg.mode for leg in variant.move_legs] == [LegMode.BIKE, LegMode.TRANSIT, LegMode.BIKE]
    assert variant.move_legs[-1].cut_from_stop == "Spadina"
    assert variant.total_duration_sec == 900
    assert [s.line_name for s in variant.provider_route_ref.transit_steps] == ["504"]
    assert result.cuts[0].original_stretch_sec == 300
    assert result.cuts[0].replacement_stretch_sec == 200


@pytest.mark.asyncio
async def test_slow_tail_replacement_is_discarded():
    provider = FakeDirections()
    provider.add(TravelMode.BICYCLING, STOP_B, DEST, [make_direct_route("BICYCLING", 400, STOP_B, DEST)])
    base = _make_base([
        _bike(100, ORIGIN, STOP_A),
        _ride("504", T0 + timedelta(seconds=100), 600, STOP_A, STOP_B, "King St", "Spadina"),
        _ride("510", T0 + timedelta(seconds=700), 300, STOP_B, DEST, "Spadina", "Union"),
    ])

    result = await VariantGenerator(_make_context(provider)).tail_cuts(base)

    assert result.variants == []
    assert result.drop_original is False


@pytest.mark.asyncio
async def test_long_transfer_wait_triggers_tail_cut():
    provider = FakeDirections()
    provider.add(TravelMode.BICYCLING, STOP_B, DEST, [make_direct_route("BICYCLING", 1500, STOP_B, DEST)])
    base = _make_base([
        _bike(100, ORIGIN, STOP_A),
        _ride("504", T0 + timedelta(seconds=100), 600, STOP_A, STOP_B, "King St", "Spadina"),
        _ride("510", T0 + timedelta(seconds=1400), 900, STOP_B, DEST, "Spadina", "Union"),
    ])

    result = await VariantGenerator(_make_context(provider)).tail_cuts(base)

    # 700s wait + 900s ride replaced by a 1500s ride: between 80% and 110%
    assert result.drop_original is False
    assert len(result.variants) == 1
    assert result.cuts[0].original_stretch_sec == 1600


# ─── First-leg skip ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_short_first_ride_is_skipped():
    provider = FakeDirections()
    provider.add(TravelMode.BICYCLING, ORIGIN, STOP_B, [make_direct_route("BICYCLING", 250, ORIGIN, STOP_B)])
    provider.add(TravelMode.WALKING, ORIGIN, STOP_B, [make_direct_route("WALKING", 1200, ORIGIN, STOP_B)])
    provider.add(TravelMode.TRANSIT, STOP_B, DEST, [make_route([
        make_transit_step("510", T0 + timedelta(seconds=400), 1200, STOP_B, DEST, "Spadina", "Union"),
    ], summary="510 Spadina")])
    base = _make_base([
        _bike(100, ORIGIN, STOP_A),
        _ride("504", T0 + timedelta(seconds=100), 300, STOP_A, STOP_B, "King St", "Spadina"),
        _ride("510", T0 + timedelta(seconds=400), 1200, STOP_B, DEST, "Spadina", "Union"),
    ])

    result = await VariantGenerator(_make_context(provider)).first_leg_skip(base)

    assert result.drop_original is True
    variant = result.variants[0]
    assert variant.cut_kind == VariantKind.FIRST_LEG_SKIP
    assert [leg.mode for leg in variant.move_legs] == [LegMode.BIKE, LegMode.TRANSIT]
    assert variant.move_legs[0].cut_to_stop == "Spadina"
    assert variant.depart_time == T0 + timedelta(seconds=150)
    assert result.cuts[0].original_stretch_sec == 400
    assert result.cuts[0].replacement_stretch_sec == 250


@pytest.mark.asyncio
async def test_first_leg_skip_falls_back_to_direct_ride():
    provider = FakeDirections()
    provider.add(TravelMode.BICYCLING, ORIGIN, STOP_B, [make_direct_route("BICYCLING", 250, ORIGIN, STOP_B)])
    provider.add(TravelMode.BICYCLING, ORIGIN, DEST, [make_direct_route("BICYCLING", 380, ORIGIN, DEST)])
    base = _make_base([
        _bike(100, ORIGIN, STOP_A),
        _ride("504", T0 + timedelta(seconds=100), 300, STOP_A, STOP_B, "King St", "Spadina"),
        _ride("510", T0 + timedelta(seconds=400), 1200, STOP_B, DEST, "Spadina", "Union"),
    ])

    result = await VariantGenerator(_make_context(provider)).first_leg_skip(base)

    variant = result.variants[0]
    assert [leg.mode for leg in variant.move_legs] == [LegMode.BIKE]
    assert variant.provider_route_ref is None
    assert result.cuts[0].replacement_stretch_sec == 380


@pytest.mark.asyncio
async def test_long_first_ride_is_kept():
    provider = FakeDirections()
    base = _make_base([
        _bike(100, ORIGIN, STOP_A),
        _ride("504", T0 + timedelta(seconds=100), 900, STOP_A, STOP_B, "King St", "Spadina"),
        _ride("510", T0 + timedelta(seconds=1000), 1200, STOP_B, DEST, "Spadina", "Union"),
    ])

    result = await VariantGenerator(_make_context(provider)).first_leg_skip(base)

    assert result.variants == []
    assert provider.calls == []


@pytest.mark.asyncio
async def test_ride_without_stop_details_is_not_a_cut_point():
    provider = FakeDirections()
    base = _make_base([
        _bike(100, ORIGIN, STOP_A),
        MoveLeg(mode=LegMode.TRANSIT, duration_sec=900),
        _ride("510", T0 + timedelta(seconds=1000), 300, STOP_B, DEST, "Spadina", "Union"),
    ])

    result = await VariantGenerator(_make_context(provider)).generate(base)

    assert result.variants == []
    assert result.drop_original is False
    assert provider.calls == []

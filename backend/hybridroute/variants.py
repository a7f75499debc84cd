"""Cut variants of a hybrid itinerary.

Two strategies look for transit that is not worth riding:

- first-leg skip: a short first ride followed by a second ride. Go
  straight from the origin to the second boarding stop by micro-leg,
  then re-query transit from there.
- tail cut: a short later ride, or a long transfer wait before another
  ride. Get off at the previous ride's arrival stop and finish by micro-leg.

Both are judged with the same rule against the stretch they replace.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import Optional

from hybridroute.build_context import BuildContext
from hybridroute.config import (
    DROP_ORIGINAL_RATIO,
    KEEP_VARIANT_RATIO,
    LONG_TRANSFER_WAIT_SEC,
    MAX_REMAINDER_ROUTES,
    SHORT_TRANSIT_LEG_SEC,
    STOP_KEY_PRECISION,
)
from hybridroute.errors import ProviderError
from hybridroute.models import (
    Itinerary,
    ItineraryKind,
    LegMode,
    MoveLeg,
    StopRef,
    TimeKind,
    VariantCut,
    VariantKind,
    WaitLeg,
)
from hybridroute.route_parsing import route_signature, route_steps
from hybridroute.timeline import compress_first_stop, make_itinerary, transit_route_view

logger = logging.getLogger("hybridroute.variants")


class CutVerdict(str, Enum):
    DISCARD = "DISCARD"
    KEEP_BOTH = "KEEP_BOTH"
    DROP_ORIGINAL = "DROP_ORIGINAL"


def judge_cut(original_sec: float, replacement_sec: float) -> CutVerdict:
    """Decide what a cut is worth relative to the stretch it replaces.

    Over 110% of the original: discard. At or under 80%: the variant wins
    outright. Anything between keeps both for ranking to sort out.
    """
    if replacement_sec > original_sec * KEEP_VARIANT_RATIO:
        return CutVerdict.DISCARD
    if replacement_sec <= original_sec * DROP_ORIGINAL_RATIO:
        return CutVerdict.DROP_ORIGINAL
    return CutVerdict.KEEP_BOTH


@dataclass
class VariantResult:
    variants: list[Itinerary] = field(default_factory=list)
    drop_original: bool = False
    cuts: list[VariantCut] = field(default_factory=list)

    def add(self, cut: VariantCut, verdict: CutVerdict) -> None:
        if verdict == CutVerdict.DISCARD:
            return
        if verdict == CutVerdict.DROP_ORIGINAL:
            self.drop_original = True
        self.cuts.append(cut)
        self.variants.append(cut.resulting_itinerary)

    def merge(self, other: "VariantResult") -> None:
        self.variants.extend(other.variants)
        self.cuts.extend(other.cuts)
        self.drop_original = self.drop_original or other.drop_original


def _transit_indexes(legs) -> list[int]:
    """Rides with stop details; a ride without them cannot be cut at."""
    return [
        i for i, leg in enumerate(legs)
        if isinstance(leg, MoveLeg) and leg.mode == LegMode.TRANSIT and leg.transit_details is not None
    ]


def _seconds_before(legs, end: int) -> float:
    return sum(leg.duration_sec for leg in legs[:end])


class VariantGenerator:
    def __init__(self, ctx: BuildContext):
        self.ctx = ctx

    async def generate(self, base: Itinerary) -> VariantResult:
        first_skip, tail = await asyncio.gather(
            self.first_leg_skip(base),
            self.tail_cuts(base),
        )
        result = VariantResult()
        result.merge(first_skip)
        result.merge(tail)
        if result.variants:
            logger.debug(
                f"Itinerary {base.id}: {len(result.variants)} variants, "
                f"drop_original={result.drop_original}"
            )
        return result

    # ── first-leg skip ────────────────────────────────────────────────

    async def first_leg_skip(self, base: Itinerary) -> VariantResult:
        ctx = self.ctx
        result = VariantResult()
        legs = base.legs
        rides = _transit_indexes(legs)
        if len(rides) < 2:
            return result
        if legs[rides[0]].duration_sec > SHORT_TRANSIT_LEG_SEC:
            return result

        stop = legs[rides[1]].transit_details.departure_stop
        if stop.location is None:
            return result

        original_stretch = _seconds_before(legs, rides[1])
        if original_stretch <= 0:
            return result

        access = await ctx.micro_leg(ctx.origin, stop.location)
        if access is None:
            return result
        access = access.model_copy(update={"cut_to_stop": stop.name or None})

        at_stop = base.depart_time + timedelta(seconds=access.duration_sec)
        if ctx.time_pref.kind == TimeKind.ARRIVE_BY:
            request = ctx.transit_request(
                origin=stop.location, arrival_time=ctx.time_pref.at, label="remainder",
            )
        else:
            request = ctx.transit_request(
                origin=stop.location, departure_time=max(at_stop, ctx.now), label="remainder",
            )

        try:
            data = await ctx.gateway.route(request)
            remainders = (data.get("routes") or [])[:MAX_REMAINDER_ROUTES]
        except ProviderError as e:
            logger.info(f"Remainder transit unavailable from {stop.name or stop.location.key()}: {e}")
            remainders = []

        seen = set()
        for remainder in remainders or [None]:
            if remainder is not None:
                sig = route_signature(remainder)
                if sig and sig in seen:
                    continue
                seen.add(sig)
            cut = await self._skip_variant(base, stop, access, at_stop, remainder, original_stretch)
            if cut is not None:
                result.add(cut, judge_cut(cut.original_stretch_sec, cut.replacement_stretch_sec))
        return result

    async def _skip_variant(
        self,
        base: Itinerary,
        stop: StopRef,
        access: MoveLeg,
        at_stop,
        remainder: Optional[dict],
        original_stretch: float,
    ) -> Optional[VariantCut]:
        ctx = self.ctx
        remainder_legs = []
        if remainder is not None and route_steps(remainder):
            remainder_legs = await ctx.expand_steps(route_steps(remainder), at_stop)

        if not remainder_legs:
            # No transit onward: ride the whole way instead
            direct = await ctx.micro_leg(ctx.origin, ctx.destination)
            if direct is None:
                return None
            direct = direct.model_copy(update={"cut_to_stop": stop.name or None})
            depart, stitched = compress_first_stop([direct], ctx.time_pref, ctx.now, base.depart_time)
            itinerary = make_itinerary(
                ItineraryKind.HYBRID_TRANSIT, depart, stitched, base.summary_label,
                route_ref=None, cut_kind=VariantKind.FIRST_LEG_SKIP,
            )
            replacement = itinerary.total_duration_sec
        else:
            legs = [access] + remainder_legs
            depart, stitched = compress_first_stop(legs, ctx.time_pref, ctx.now, base.depart_time)
            summary = remainder.get("summary") or base.summary_label
            itinerary = make_itinerary(
                ItineraryKind.HYBRID_TRANSIT, depart, stitched, base.summary_label,
                route_ref=transit_route_view(summary, remainder_legs),
                cut_kind=VariantKind.FIRST_LEG_SKIP,
            )
            first_ride = _transit_indexes(itinerary.legs)
            replacement = (
                _seconds_before(itinerary.legs, first_ride[0])
                if first_ride else itinerary.total_duration_sec
            )

        return VariantCut(
            kind=VariantKind.FIRST_LEG_SKIP,
            cut_stop_ref=stop,
            original_stretch_sec=original_stretch,
            replacement_stretch_sec=replacement,
            resulting_itinerary=itinerary,
        )

    # ── tail cut ──────────────────────────────────────────────────────

    def _tail_cut_points(self, legs) -> list[int]:
        """Indexes of rides whose arrival stop is worth cutting at, in trigger order."""
        rides = _transit_indexes(legs)
        if len(rides) < 2:
            return []

        points = []
        for n, idx in enumerate(rides):
            if n == 0:
                continue  # handled by first-leg skip
            if legs[idx].duration_sec <= SHORT_TRANSIT_LEG_SEC:
                points.append(rides[n - 1])

        for idx, leg in enumerate(legs):
            if not isinstance(leg, WaitLeg) or leg.duration_sec < LONG_TRANSFER_WAIT_SEC:
                continue
            later = [r for r in rides if r > idx]
            earlier = [r for r in rides if r < idx]
            if later and earlier:
                points.append(earlier[-1])
        return points

    async def tail_cuts(self, base: Itinerary) -> VariantResult:
        ctx = self.ctx
        result = VariantResult()
        legs = base.legs

        seen = set()
        targets = []
        for prev_idx in self._tail_cut_points(legs):
            stop = legs[prev_idx].transit_details.arrival_stop
            if stop.location is None:
                continue
            dedupe_key = f"tail:{stop.location.key(STOP_KEY_PRECISION)}"
            if dedupe_key in seen:
                continue
            seen.add(dedupe_key)

            original_stretch = base.total_duration_sec - _seconds_before(legs, prev_idx + 1)
            if original_stretch <= 0:
                continue
            targets.append((prev_idx, stop, original_stretch))

        micro_legs = await asyncio.gather(*[
            ctx.micro_leg(stop.location, ctx.destination) for _, stop, _ in targets
        ])

        for (prev_idx, stop, original_stretch), micro in zip(targets, micro_legs):
            if micro is None:
                continue
            verdict = judge_cut(original_stretch, micro.duration_sec)
            if verdict == CutVerdict.DISCARD:
                continue

            kept = legs[:prev_idx + 1]
            tail = micro.model_copy(update={"cut_from_stop": stop.name or None})
            depart, stitched = compress_first_stop(
                list(kept) + [tail], ctx.time_pref, ctx.now, base.depart_time
            )
            itinerary = make_itinerary(
                ItineraryKind.HYBRID_TRANSIT, depart, stitched, base.summary_label,
                route_ref=transit_route_view(base.summary_label, kept),
                cut_kind=VariantKind.TAIL_CUT,
            )
            result.add(VariantCut(
                kind=VariantKind.TAIL_CUT,
                cut_stop_ref=stop,
                original_stretch_sec=original_stretch,
                replacement_stretch_sec=micro.duration_sec,
                resulting_itinerary=itinerary,
            ), verdict)
        return result

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ModeCombo(str, Enum):
    TRANSIT = "TRANSIT"
    BIKE = "BIKE"
    SKATE = "SKATE"
    TRANSIT_BIKE = "TRANSIT_BIKE"
    TRANSIT_SKATE = "TRANSIT_SKATE"


class ComboToggle(str, Enum):
    TRANSIT = "TRANSIT"
    BIKE = "BIKE"
    SKATE = "SKATE"


class TravelMode(str, Enum):
    """Provider query modes."""
    WALKING = "WALKING"
    BICYCLING = "BICYCLING"
    TRANSIT = "TRANSIT"


class LegMode(str, Enum):
    WALK = "WALK"
    BIKE = "BIKE"
    SKATE = "SKATE"
    TRANSIT = "TRANSIT"
    OTHER = "OTHER"  # provider step kept verbatim


class TimeKind(str, Enum):
    NOW = "NOW"
    DEPART_AT = "DEPART_AT"
    ARRIVE_BY = "ARRIVE_BY"


class ItineraryKind(str, Enum):
    DIRECT_BIKE = "DIRECT_BIKE"
    DIRECT_SKATE = "DIRECT_SKATE"
    HYBRID_TRANSIT = "HYBRID_TRANSIT"
    TRANSIT = "TRANSIT"


class VariantKind(str, Enum):
    FIRST_LEG_SKIP = "FIRST_LEG_SKIP"
    TAIL_CUT = "TAIL_CUT"


class Coordinate(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float

    def key(self, precision: int = 5) -> str:
        return f"{self.lat:.{precision}f},{self.lng:.{precision}f}"


class TimePreference(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: TimeKind = TimeKind.NOW
    at: Optional[datetime] = None

    @model_validator(mode="after")
    def require_time(self):
        if self.kind != TimeKind.NOW and self.at is None:
            raise ValueError(f"{self.kind.value} requires 'at'")
        return self


class StopRef(BaseModel):
    name: str = ""
    location: Optional[Coordinate] = None


class TransitDetails(BaseModel):
    line_name: str = ""
    vehicle_type: str = ""
    headsign: str = ""
    color: Optional[str] = None
    departure_stop: StopRef = Field(default_factory=StopRef)
    arrival_stop: StopRef = Field(default_factory=StopRef)
    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    num_stops: int = 0


class LegGeometry(BaseModel):
    source_mode: Optional[TravelMode] = None
    polyline: str = ""  # encoded
    start: Optional[Coordinate] = None
    end: Optional[Coordinate] = None
    waypoints: list[Coordinate] = Field(default_factory=list)


class MoveLeg(BaseModel):
    kind: Literal["MOVE"] = "MOVE"
    mode: LegMode
    duration_sec: float = Field(ge=0)
    distance_meters: float = 0.0
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    geometry: Optional[LegGeometry] = None
    transit_details: Optional[TransitDetails] = None
    skate_geometry_mode: Optional[TravelMode] = None
    cut_from_stop: Optional[str] = None  # tail cut starts here
    cut_to_stop: Optional[str] = None  # first-leg skip rides to here


class WaitLeg(BaseModel):
    kind: Literal["WAIT"] = "WAIT"
    duration_sec: float = Field(ge=0)
    at_stop_name: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


Leg = Annotated[Union[MoveLeg, WaitLeg], Field(discriminator="kind")]


class TransitStepView(BaseModel):
    line_name: str = ""
    vehicle_type: str = ""
    color: Optional[str] = None
    departure_stop: StopRef = Field(default_factory=StopRef)
    arrival_stop: StopRef = Field(default_factory=StopRef)
    polyline: str = ""
    distance_meters: float = 0.0
    duration_sec: float = 0.0


class TransitRouteView(BaseModel):
    """Reduced provider route carrying only the transit steps kept in an itinerary."""
    summary: str = ""
    start_location: Optional[Coordinate] = None
    end_location: Optional[Coordinate] = None
    distance_meters: float = 0.0
    duration_sec: float = 0.0
    transit_steps: list[TransitStepView] = Field(default_factory=list)


class Itinerary(BaseModel):
    id: str
    legs: list[Leg]
    depart_time: datetime
    arrive_time: datetime
    total_duration_sec: float
    total_distance_meters: float
    summary_label: str = ""
    origin_kind: ItineraryKind
    provider_route_ref: Optional[TransitRouteView] = None
    cut_kind: Optional[VariantKind] = None
    via_points: list[Coordinate] = Field(default_factory=list)

    @property
    def move_legs(self) -> list[MoveLeg]:
        return [leg for leg in self.legs if isinstance(leg, MoveLeg)]


class VariantCut(BaseModel):
    kind: VariantKind
    cut_stop_ref: StopRef
    original_stretch_sec: float
    replacement_stretch_sec: float
    resulting_itinerary: Itinerary


# ── API payloads ───────────────────────────────────────────────────────


class SidebarSegment(BaseModel):
    mode: LegMode
    duration_text: str


class RouteOptionSummary(BaseModel):
    index: int
    duration_text: str
    distance_text: str
    summary: str
    time_range_text: str
    origin_kind: ItineraryKind
    provider_route_ref: Optional[TransitRouteView] = None


class PlanRequest(BaseModel):
    origin: Coordinate
    destination: Coordinate
    time_preference: TimePreference = Field(default_factory=TimePreference)
    combo: ModeCombo = ModeCombo.TRANSIT_BIKE
    via_points: list[Coordinate] = Field(default_factory=list)
    max_options: int = Field(default=6, ge=1, le=12)
    hill_weight: float = 0.0  # 0 = ignore hills, 1 = max bike penalty


class PlanResponse(BaseModel):
    itineraries: list[Itinerary]
    route_options: list[RouteOptionSummary]
    no_routes: bool = False


class CreateSessionRequest(BaseModel):
    origin: Optional[Coordinate] = None
    destination: Optional[Coordinate] = None
    time_preference: TimePreference = Field(default_factory=TimePreference)
    combo: ModeCombo = ModeCombo.TRANSIT
    max_options: int = Field(default=6, ge=1, le=12)
    hill_weight: float = 0.0


class BuildRouteRequest(BaseModel):
    origin: Optional[Coordinate] = None
    destination: Optional[Coordinate] = None
    via_points: Optional[list[Coordinate]] = None
    time_preference: Optional[TimePreference] = None
    combo: Optional[ModeCombo] = None
    alternatives: bool = True
    fit_to_routes: bool = True


class SelectRouteRequest(BaseModel):
    index: int


class RepairLegRequest(BaseModel):
    leg_index: int
    waypoints: list[Coordinate] = Field(default_factory=list)


class ViaPointsRequest(BaseModel):
    via_points: list[Coordinate] = Field(default_factory=list)


class PlannerStateResponse(BaseModel):
    session_id: str
    combo: ModeCombo
    route_options: list[RouteOptionSummary]
    selected_index: int
    selected_itinerary: Optional[Itinerary] = None
    sidebar_segments: list[SidebarSegment] = Field(default_factory=list)
    via_points: list[Coordinate] = Field(default_factory=list)
    no_routes: bool = False
    fit_to_routes: bool = False
    replan_count: int = 0


class NextComboRequest(BaseModel):
    current: ModeCombo
    clicked: ComboToggle


class NextComboResponse(BaseModel):
    combo: ModeCombo
    transit: bool
    bike: bool
    skate: bool

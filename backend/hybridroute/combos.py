"""Mode-combination toggles.

Transit is an independent toggle; bike and skate are the last-mile choice
and exclude each other. At least one mode always stays on.
"""

from hybridroute.models import ComboToggle, ModeCombo


def is_transit_on(combo: ModeCombo) -> bool:
    return combo in (ModeCombo.TRANSIT, ModeCombo.TRANSIT_BIKE, ModeCombo.TRANSIT_SKATE)


def is_bike_on(combo: ModeCombo) -> bool:
    return combo in (ModeCombo.BIKE, ModeCombo.TRANSIT_BIKE)


def is_skate_on(combo: ModeCombo) -> bool:
    return combo in (ModeCombo.SKATE, ModeCombo.TRANSIT_SKATE)


def is_hybrid(combo: ModeCombo) -> bool:
    return combo in (ModeCombo.TRANSIT_BIKE, ModeCombo.TRANSIT_SKATE)


def _resolve(transit: bool, bike: bool, skate: bool) -> ModeCombo:
    if bike and skate:
        skate = False
    if transit:
        if bike:
            return ModeCombo.TRANSIT_BIKE
        if skate:
            return ModeCombo.TRANSIT_SKATE
        return ModeCombo.TRANSIT
    if bike:
        return ModeCombo.BIKE
    if skate:
        return ModeCombo.SKATE
    return ModeCombo.TRANSIT  # never "no mode"


def next_combo(current: ModeCombo, clicked: ComboToggle) -> ModeCombo:
    """Combo after the user clicks one of the mode buttons."""
    transit = is_transit_on(current)
    bike = is_bike_on(current)
    skate = is_skate_on(current)

    if clicked == ComboToggle.TRANSIT:
        if transit and not bike and not skate:
            return ModeCombo.TRANSIT
        return _resolve(not transit, bike, skate)

    if clicked == ComboToggle.BIKE:
        if not transit and bike:
            return ModeCombo.BIKE
        return _resolve(transit, not bike, False)

    if clicked == ComboToggle.SKATE:
        if not transit and skate:
            return ModeCombo.SKATE
        return _resolve(transit, False, not skate)

    return current

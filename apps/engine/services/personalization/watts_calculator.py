"""
Equivalent power for hospital mobility activities.

Puts walking, sitting out of bed and cycling on one watts scale so that a
day's mobility can be compared against the cycling dose targets.

    Watts = METs x 3.5 x weight_kg / 200
"""
from typing import Optional

from services.personalization.device_adapter import round_half_up

# Conservative MET values for hospital patients
ACTIVITY_METS = {
    "walk_slow": 2.3,       # ~2 mph with assistance
    "sit_chair": 1.3,       # vs 1.0 lying in bed
    "transfer": 3.0,        # brief bed-to-chair exertion
    "cycle_light": 3.5,
    "cycle_moderate": 5.0,
}

# Cycling resistance 1..10 maps linearly onto this range
CYCLING_MIN_WATTS = 15
CYCLING_MAX_WATTS = 60
# Resistance at or above this counts as moderate cycling
CYCLING_MODERATE_RESISTANCE = 5
DEFAULT_CYCLING_RESISTANCE = 3

LBS_PER_KG = 0.453592


def _mets_to_watts(mets: float, weight_kg: float) -> int:
    return int(round_half_up(mets * 3.5 * weight_kg / 200))


def calculate_walking_watts(weight_kg: float) -> int:
    return _mets_to_watts(ACTIVITY_METS["walk_slow"], weight_kg)


def calculate_sitting_watts(weight_kg: float) -> int:
    return _mets_to_watts(ACTIVITY_METS["sit_chair"], weight_kg)


def calculate_cycling_watts(resistance: float) -> int:
    """Approximate cycling watts: R1 = 15W ... R10 = 60W."""
    r = max(1, min(10, resistance))
    return int(round_half_up(CYCLING_MIN_WATTS + (r - 1) / 9 * (CYCLING_MAX_WATTS - CYCLING_MIN_WATTS)))


def get_activity_mets(activity_type: str, resistance: Optional[float] = None) -> float:
    if activity_type == "walk":
        return ACTIVITY_METS["walk_slow"]
    if activity_type == "sit":
        return ACTIVITY_METS["sit_chair"]
    if activity_type == "transfer":
        return ACTIVITY_METS["transfer"]
    if activity_type == "ride":
        if resistance and resistance >= CYCLING_MODERATE_RESISTANCE:
            return ACTIVITY_METS["cycle_moderate"]
        return ACTIVITY_METS["cycle_light"]
    return 1.0


def calculate_equivalent_watts(activity_type: str, weight_kg: float, resistance: Optional[float] = None) -> int:
    """Equivalent watts for an activity. Transfers are events, not durations: 0."""
    if activity_type == "walk":
        return calculate_walking_watts(weight_kg)
    if activity_type == "sit":
        return calculate_sitting_watts(weight_kg)
    if activity_type == "ride":
        return calculate_cycling_watts(resistance if resistance else DEFAULT_CYCLING_RESISTANCE)
    return 0


def lbs_to_kg(lbs: float) -> float:
    return round_half_up(lbs * LBS_PER_KG, 1)


def kg_to_lbs(kg: float) -> int:
    return int(round_half_up(kg / LBS_PER_KG))

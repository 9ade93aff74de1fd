"""Personalized, literature-anchored mobility benefit projections.

Consumes a completed risk-assessment payload and appends dose-aware
"with goal" projections for:
    - length of stay (days)
    - discharge destination (probability of discharge home)
    - 30-day all-cause readmission

Personalization:
    severity index   0..1  how immobile/impaired the patient is at baseline
    adherence factor 0..1  share of the daily mobility dose the patient is
                           observed (or expected) to complete

LOS shrinks by a care-level percentage scaled by both, inside an absolute
floor/cap. Probabilities move through odds multipliers so they stay inside
(0, 1); every probability returned is clamped into a safe band.

Effect sizes are tunable through `overrides`; baseline defaults (used when
the payload carries no prior LOS/discharge/readmission estimate) are fixed
lookup tables.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace, asdict
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, FiniteFloat, TypeAdapter, ValidationError

from core.exceptions import InvalidOverrideError
from services.personalization.intake import PatientFeatureFlags, flags_from_echo

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EffectSizes:
    """Literature effect sizes. Override any field at the call boundary."""
    # LOS % reduction at goal, before personalization
    los_reduction_pct: Dict[str, float] = field(default_factory=lambda: {
        "icu": 0.13,       # ~10-15%
        "stepdown": 0.18,  # ~15-20%
        "ward": 0.20,      # ~18-22%
        "rehab": 0.10,
    })
    # strong programs save ~2-2.5 days
    los_abs_cap_days: float = 2.4
    los_abs_floor_days: float = 0.8
    los_min_days: float = 1.0

    # odds multiplier on discharge HOME at goal
    home_odds_mult: Dict[str, float] = field(default_factory=lambda: {
        "icu": 1.15,
        "stepdown": 1.25,
        "ward": 1.35,
        "rehab": 1.20,
    })
    home_prob_floor: float = 0.01
    home_prob_ceil: float = 0.995

    # odds multiplier on 30-day readmission at goal (<1 is good)
    readmit_odds_mult_at_goal: float = 0.90
    readmit_mult_floor: float = 0.75
    readmit_mult_ceil: float = 0.98

    # daily dose at which benefit saturates
    dose_targets: Dict[str, float] = field(default_factory=lambda: {
        "steps_per_day": 275,
        "cycle_watt_minutes_per_day": 300,  # 20W x 15min x 1 session
    })

    # 0 = no personalization, 1 = full
    severity_weight: float = 0.6
    adherence_weight: float = 0.7
    adherence_base: float = 0.5
    home_severity_base: float = 0.7
    home_severity_slope: float = 0.6
    readmit_severity_base: float = 0.6
    readmit_severity_slope: float = 0.6

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_EFFECT_SIZES = EffectSizes()

_EFFECT_SIZE_FIELDS = frozenset(f.name for f in fields(EffectSizes))
_TABLE_FIELDS = frozenset(
    f.name for f in fields(EffectSizes) if isinstance(getattr(DEFAULT_EFFECT_SIZES, f.name), dict)
)

_finite_float = TypeAdapter(FiniteFloat)
_finite_table = TypeAdapter(Dict[str, FiniteFloat])


def _validated_override(name: str, value: Any) -> Any:
    """Coerce one override value; tables are merged onto the default table."""
    try:
        if name in _TABLE_FIELDS:
            return {**getattr(DEFAULT_EFFECT_SIZES, name), **_finite_table.validate_python(value)}
        return _finite_float.validate_python(value)
    except ValidationError as e:
        raise InvalidOverrideError(name, reason=e.errors()[0]["msg"]) from e


def resolve_effect_sizes(overrides: Union[EffectSizes, Mapping[str, Any], None] = None) -> EffectSizes:
    """Merge overrides onto the defaults.

    Scalars replace the default; a nested table is merged key by key, so
    a partial table keeps the default entries it does not mention. Numeric
    strings are coerced.

    Raises:
        InvalidOverrideError: an override names an unknown field or its
            value is not a finite number (or table of finite numbers).
    """
    if overrides is None:
        return DEFAULT_EFFECT_SIZES
    if isinstance(overrides, EffectSizes):
        return overrides
    validated = {}
    for name, value in overrides.items():
        if name not in _EFFECT_SIZE_FIELDS:
            raise InvalidOverrideError(name)
        validated[name] = _validated_override(name, value)
    return replace(DEFAULT_EFFECT_SIZES, **validated)


def _table_value(table: Mapping[str, float], default_table: Mapping[str, float], key: str, fallback: str) -> float:
    """Look up key, then fallback, in a possibly partial table, then in the defaults."""
    for candidate in (table, default_table):
        if key in candidate:
            return candidate[key]
        if fallback in candidate:
            return candidate[fallback]
    return 0.0


# Severity index contributions
SEVERITY_MOBILITY = {
    "bedbound": 1.0,
    "chair_bound": 0.8,
    "standing_assist": 0.6,
    "walking_assist": 0.3,
    "independent": 0.0,
}
SEVERITY_MOBILITY_UNKNOWN = 0.6
SEVERITY_LOC = {"icu": 0.6, "stepdown": 0.3}
SEVERITY_COG = {"mild_impairment": 0.3, "delirium_dementia": 0.6}
SEVERITY_IMMOBILE_GE3 = 0.3
SEVERITY_NEURO_OR_TRAUMA = 0.2
SEVERITY_NUTRITION = 0.2
SEVERITY_NORMALIZER = 2.5

# Heuristic adherence when nothing was observed
ADHERENCE_DEFAULT = 0.75
ADHERENCE_PENALTY_ICU = 0.15
ADHERENCE_PENALTY_LOW_MOBILITY = 0.10
ADHERENCE_PENALTY_DELIRIUM = 0.20
ADHERENCE_PENALTY_SEDATING = 0.05
ADHERENCE_PENALTY_DEVICES = 0.05
ADHERENCE_MIN = 0.2
ADHERENCE_MAX = 0.95

LOW_MOBILITY = ("bedbound", "chair_bound")

# Default baselines when the payload has no prior estimate
BASE_LOS_DAYS = {"icu": 7.5, "stepdown": 6.5, "ward": 5.5, "rehab": 9.0}
BASE_LOS_DEFAULT = 5.5
LOS_MOBILITY_ADJ = {
    "bedbound": 1.5,
    "chair_bound": 1.0,
    "standing_assist": 0.5,
    "walking_assist": 0.2,
    "independent": 0.0,
}
LOS_MOBILITY_ADJ_UNKNOWN = 0.5
LOS_AGE70_ADJ = 0.4
LOS_AGE80_ADJ = 0.4

BASE_HOME_PROB = {"ward": 0.78, "stepdown": 0.60, "icu": 0.45}
BASE_HOME_PROB_DEFAULT = 0.55
HOME_MOBILITY_ADJ = {
    "bedbound": -0.20,
    "chair_bound": -0.12,
    "standing_assist": -0.06,
    "walking_assist": -0.02,
}
HOME_COG_ADJ = {"delirium_dementia": -0.15, "mild_impairment": -0.05}
HOME_PROB_BOUNDS = (0.05, 0.95)

BASE_READMIT_PROB = {"ward": 0.15, "stepdown": 0.18, "icu": 0.22}
BASE_READMIT_PROB_DEFAULT = 0.16
READMIT_LOW_MOBILITY_ADJ = 0.04
READMIT_COG_ADJ = {"delirium_dementia": 0.05, "mild_impairment": 0.02}
READMIT_IMMOBILE_GE3_ADJ = 0.02
READMIT_PROB_BOUNDS = (0.03, 0.5)

# Readmission output band; the odds transform alone cannot reach 0 or 1
# except from a degenerate baseline
READMIT_OUTPUT_BOUNDS = (1e-4, 1 - 1e-4)


# ---------------------------------------------------------------------------
# Inputs / outputs
# ---------------------------------------------------------------------------

class ObservedActivity(BaseModel):
    """Observed daily mobility dose."""
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    steps_per_day: Optional[float] = None
    cycle_watts: Optional[float] = None
    minutes_per_session: Optional[float] = None
    sessions_per_day: Optional[float] = None

    def has_dose(self) -> bool:
        return bool(self.steps_per_day) or bool(self.cycle_watts and self.minutes_per_session)


@dataclass
class ProjectionExplain:
    severity_index: float
    adherence_factor: float
    narrative: str


@dataclass
class OutcomeProjection:
    baseline: float
    with_goal: float
    absolute_delta: float
    relative_delta_pct: float
    explain: ProjectionExplain

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PersonalizedProjections:
    flags: PatientFeatureFlags
    severity_index: float
    adherence_factor: float
    los: OutcomeProjection
    discharge: OutcomeProjection
    readmission: OutcomeProjection


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _clamp(lo: float, hi: float, value: float) -> float:
    """Clamp value to [lo, hi]."""
    return max(lo, min(hi, value))


def _to_odds(p: float) -> float:
    p = _clamp(0.0, 1.0, p)
    return p / max(1e-9, 1 - p)


def _from_odds(odds: float) -> float:
    return odds / (1 + odds)


def _pct_of(delta: float, base: float) -> float:
    if base == 0:
        return 0.0
    return delta / base * 100


def _positive_float(value: Any) -> Optional[float]:
    """Parse a prior estimate; zero, missing or garbage means 'no prior'."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if parsed != parsed or parsed == 0:
        return None
    return parsed


def _leading_int(value: Any, default: int) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


# ---------------------------------------------------------------------------
# Personalization knobs
# ---------------------------------------------------------------------------

def severity_index(flags: PatientFeatureFlags) -> float:
    """0..1 severity from mobility, care level, cognition, immobility, dx."""
    s = SEVERITY_MOBILITY.get(flags.mob, SEVERITY_MOBILITY_UNKNOWN)
    s += SEVERITY_LOC.get(flags.loc, 0.0)
    s += SEVERITY_COG.get(flags.cog, 0.0)
    if flags.days_immobile >= 3:
        s += SEVERITY_IMMOBILE_GE3
    if flags.neuro or flags.trauma:
        s += SEVERITY_NEURO_OR_TRAUMA
    if flags.malnutrition or flags.albumin_low:
        s += SEVERITY_NUTRITION
    return min(1.0, s / SEVERITY_NORMALIZER)


def estimate_adherence(flags: PatientFeatureFlags) -> float:
    """Expected adherence when no activity was observed."""
    base = ADHERENCE_DEFAULT
    if flags.loc == "icu":
        base -= ADHERENCE_PENALTY_ICU
    if flags.mob in LOW_MOBILITY:
        base -= ADHERENCE_PENALTY_LOW_MOBILITY
    if flags.cog == "delirium_dementia":
        base -= ADHERENCE_PENALTY_DELIRIUM
    if flags.sedating:
        base -= ADHERENCE_PENALTY_SEDATING
    if flags.devices:
        base -= ADHERENCE_PENALTY_DEVICES
    return _clamp(ADHERENCE_MIN, ADHERENCE_MAX, base)


def observed_adherence(observed: ObservedActivity, effect_sizes: Optional[EffectSizes] = None) -> float:
    """Fraction of the daily dose target met: best of steps and watt-minutes."""
    cfg = effect_sizes or DEFAULT_EFFECT_SIZES
    step_target = _table_value(cfg.dose_targets, DEFAULT_EFFECT_SIZES.dose_targets, "steps_per_day", "steps_per_day")
    wm_target = _table_value(
        cfg.dose_targets, DEFAULT_EFFECT_SIZES.dose_targets, "cycle_watt_minutes_per_day", "cycle_watt_minutes_per_day"
    )

    frac_steps = _clamp(0.0, 1.0, (observed.steps_per_day or 0) / step_target) if step_target > 0 else 0.0

    watt_minutes = 0.0
    if observed.cycle_watts and observed.minutes_per_session:
        sessions = max(1, _leading_int(observed.sessions_per_day or 1, 1))
        watt_minutes = observed.cycle_watts * observed.minutes_per_session * sessions
    frac_wm = _clamp(0.0, 1.0, watt_minutes / wm_target) if watt_minutes > 0 and wm_target > 0 else 0.0

    return max(frac_steps, frac_wm)


def adherence_factor(
    observed: Optional[ObservedActivity],
    flags: PatientFeatureFlags,
    effect_sizes: Optional[EffectSizes] = None,
) -> float:
    if observed is not None and observed.has_dose():
        return observed_adherence(observed, effect_sizes)
    return estimate_adherence(flags)


def cycle_goal_to_watt_minutes(recommendation: Optional[Mapping[str, Any]]) -> float:
    """Daily watt-minutes implied by a cycling goal recommendation."""
    if not recommendation:
        return 0.0
    try:
        watts = float(recommendation.get("watt_goal") or 0)
    except (TypeError, ValueError):
        watts = 0.0
    minutes = _leading_int(recommendation.get("duration_min_per_session") or 0, 0)
    sessions = _leading_int(recommendation.get("sessions_per_day") or 0, 0)
    return max(0.0, watts * minutes * sessions)


def observed_activity_from_summaries(summaries: Iterable[Any], days: float = 1.0) -> Optional[ObservedActivity]:
    """Turn completed bike SessionSummaries into an ObservedActivity.

    Sessions without data points are skipped. Returns None when nothing
    usable remains.
    """
    usable = [s for s in summaries if s is not None and s.data_points > 0]
    if not usable or days <= 0:
        return None
    return ObservedActivity(
        cycle_watts=sum(s.avg_power for s in usable) / len(usable),
        minutes_per_session=sum(s.duration for s in usable) / len(usable) / 60.0,
        sessions_per_day=len(usable) / days,
    )


# ---------------------------------------------------------------------------
# Core transforms
# ---------------------------------------------------------------------------

def apply_personalized_los(
    base_days: float,
    flags: PatientFeatureFlags,
    adherence: float,
    effect_sizes: Optional[EffectSizes] = None,
) -> Tuple[float, float]:
    """Return (with_goal_days, absolute_reduction_days)."""
    cfg = effect_sizes or DEFAULT_EFFECT_SIZES
    base_pct = _table_value(cfg.los_reduction_pct, DEFAULT_EFFECT_SIZES.los_reduction_pct, flags.loc, "ward")
    sev = severity_index(flags)

    personalized_pct = (
        base_pct
        * (1.0 + cfg.severity_weight * sev)
        * (cfg.adherence_base + cfg.adherence_weight * adherence)
    )
    abs_reduction = _clamp(cfg.los_abs_floor_days, cfg.los_abs_cap_days, base_days * personalized_pct)
    with_goal = max(cfg.los_min_days, base_days - abs_reduction)
    return with_goal, abs_reduction


def apply_personalized_home_prob(
    p_home: float,
    flags: PatientFeatureFlags,
    adherence: float,
    effect_sizes: Optional[EffectSizes] = None,
) -> Tuple[float, float]:
    """Return (with_goal_home_probability, absolute_increase)."""
    cfg = effect_sizes or DEFAULT_EFFECT_SIZES
    base_mult = _table_value(cfg.home_odds_mult, DEFAULT_EFFECT_SIZES.home_odds_mult, flags.loc, "ward")
    sev = severity_index(flags)

    # steeper effect for more severe patients
    mult = base_mult ** (cfg.home_severity_base + cfg.home_severity_slope * sev)
    mult = mult ** (cfg.adherence_base + cfg.adherence_weight * adherence)

    p_new = _from_odds(_to_odds(p_home) * mult)
    p_new = _clamp(cfg.home_prob_floor, cfg.home_prob_ceil, p_new)
    return p_new, p_new - p_home


def apply_personalized_readmit(
    p_readmit: float,
    flags: PatientFeatureFlags,
    adherence: float,
    effect_sizes: Optional[EffectSizes] = None,
) -> Tuple[float, float]:
    """Return (with_goal_probability, absolute_reduction)."""
    cfg = effect_sizes or DEFAULT_EFFECT_SIZES
    sev = severity_index(flags)

    mult = 1.0 - (
        (1.0 - cfg.readmit_odds_mult_at_goal)
        * (cfg.readmit_severity_base + cfg.readmit_severity_slope * sev)
        * (cfg.adherence_base + cfg.adherence_weight * adherence)
    )
    mult = _clamp(cfg.readmit_mult_floor, cfg.readmit_mult_ceil, mult)

    p_new = _clamp(*READMIT_OUTPUT_BOUNDS, _from_odds(_to_odds(p_readmit) * mult))
    return p_new, p_readmit - p_new


# ---------------------------------------------------------------------------
# Baselines
# ---------------------------------------------------------------------------

def default_los_days(flags: PatientFeatureFlags) -> float:
    days = BASE_LOS_DAYS.get(flags.loc, BASE_LOS_DEFAULT)
    days += LOS_MOBILITY_ADJ.get(flags.mob, LOS_MOBILITY_ADJ_UNKNOWN)
    if flags.age70:
        days += LOS_AGE70_ADJ
    if flags.age80:
        days += LOS_AGE80_ADJ
    return days


def default_home_probability(flags: PatientFeatureFlags) -> float:
    p = BASE_HOME_PROB.get(flags.loc, BASE_HOME_PROB_DEFAULT)
    p += HOME_MOBILITY_ADJ.get(flags.mob, 0.0)
    p += HOME_COG_ADJ.get(flags.cog, 0.0)
    return _clamp(*HOME_PROB_BOUNDS, p)


def default_readmit_probability(flags: PatientFeatureFlags) -> float:
    p = BASE_READMIT_PROB.get(flags.loc, BASE_READMIT_PROB_DEFAULT)
    if flags.mob in LOW_MOBILITY:
        p += READMIT_LOW_MOBILITY_ADJ
    p += READMIT_COG_ADJ.get(flags.cog, 0.0)
    if flags.days_immobile >= 3:
        p += READMIT_IMMOBILE_GE3_ADJ
    return _clamp(*READMIT_PROB_BOUNDS, p)


def _prior(payload: Mapping[str, Any], section: str, key: str) -> Optional[float]:
    block = payload.get(section)
    if not isinstance(block, Mapping):
        return None
    return _positive_float(block.get(key))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def _coerce_observed(observed: Union[ObservedActivity, Mapping[str, Any], None]) -> Optional[ObservedActivity]:
    if observed is None or isinstance(observed, ObservedActivity):
        return observed
    try:
        return ObservedActivity.model_validate(dict(observed))
    except (ValidationError, TypeError, ValueError) as e:
        logger.debug(f"Ignoring unusable observed activity: {e}")
        return None


def project_outcomes(
    previous_results: Mapping[str, Any],
    observed_activity: Union[ObservedActivity, Mapping[str, Any], None] = None,
    overrides: Union[EffectSizes, Mapping[str, Any], None] = None,
) -> PersonalizedProjections:
    """Typed projections for LOS, discharge home and 30-day readmission."""
    cfg = resolve_effect_sizes(overrides)
    flags = flags_from_echo(previous_results.get("input_echo"))
    observed = _coerce_observed(observed_activity)

    sev = severity_index(flags)
    adherence = adherence_factor(observed, flags, cfg)

    base_los = _prior(previous_results, "los", "predicted_days") or default_los_days(flags)
    base_home = _prior(previous_results, "discharge", "home_probability") or default_home_probability(flags)
    base_readmit = _prior(previous_results, "readmission_30d", "probability") or default_readmit_probability(flags)

    with_goal_los, los_reduction = apply_personalized_los(base_los, flags, adherence, cfg)
    with_goal_home, home_increase = apply_personalized_home_prob(base_home, flags, adherence, cfg)
    with_goal_readmit, readmit_reduction = apply_personalized_readmit(base_readmit, flags, adherence, cfg)

    los_pct = _pct_of(los_reduction, base_los)
    home_pct = _pct_of(home_increase, base_home)
    readmit_pct = _pct_of(readmit_reduction, base_readmit)

    return PersonalizedProjections(
        flags=flags,
        severity_index=sev,
        adherence_factor=adherence,
        los=OutcomeProjection(
            baseline=base_los,
            with_goal=with_goal_los,
            absolute_delta=los_reduction,
            relative_delta_pct=los_pct,
            explain=ProjectionExplain(sev, adherence, f"{los_pct:.1f}% reduction ({los_reduction:.1f} days)"),
        ),
        discharge=OutcomeProjection(
            baseline=base_home,
            with_goal=with_goal_home,
            absolute_delta=home_increase,
            relative_delta_pct=home_pct,
            explain=ProjectionExplain(sev, adherence, f"{home_increase * 100:.1f}% point increase in home discharge"),
        ),
        readmission=OutcomeProjection(
            baseline=base_readmit,
            with_goal=with_goal_readmit,
            absolute_delta=readmit_reduction,
            relative_delta_pct=readmit_pct,
            explain=ProjectionExplain(sev, adherence, f"{readmit_pct:.1f}% relative reduction"),
        ),
    )


def _explain_payload(explain: ProjectionExplain) -> Dict[str, Any]:
    return {
        "severity_index": explain.severity_index,
        "adherence_factor": explain.adherence_factor,
        "personalized_effect": explain.narrative,
    }


def add_personalized_benefit(
    previous_results: Mapping[str, Any],
    observed_activity: Union[ObservedActivity, Mapping[str, Any], None] = None,
    overrides: Union[EffectSizes, Mapping[str, Any], None] = None,
) -> Dict[str, Any]:
    """Return a copy of the risk-assessment payload with personalized
    `los`, `discharge` and `readmission_30d` sections.

    The input payload is not modified.

    Raises:
        InvalidOverrideError: `overrides` names an unknown effect-size field.
    """
    projections = project_outcomes(previous_results, observed_activity, overrides)
    out = dict(previous_results)

    los = projections.los
    out["los"] = {
        "predicted_days": los.baseline,
        "with_goal_days": los.with_goal,
        "absolute_reduction_days": los.absolute_delta,
        "relative_reduction_pct": los.relative_delta_pct,
        "explain": _explain_payload(los.explain),
    }

    home = projections.discharge
    out["discharge"] = {
        "home_probability": home.baseline,
        "with_goal_home_probability": home.with_goal,
        "absolute_increase": home.absolute_delta,
        "relative_improvement_pct": home.relative_delta_pct,
        "explain": _explain_payload(home.explain),
    }

    readmit = projections.readmission
    out["readmission_30d"] = {
        "probability": readmit.baseline,
        "with_goal_probability": readmit.with_goal,
        "absolute_reduction": readmit.absolute_delta,
        "relative_reduction_pct": readmit.relative_delta_pct,
        "explain": _explain_payload(readmit.explain),
    }

    return out

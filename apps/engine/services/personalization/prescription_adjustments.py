"""
Diagnosis-specific protocol adjustments.

Takes the baseline cycling prescription produced by the risk calculator
and reshapes it for the admitting diagnosis while holding the total power
dose (power x duration x sessions/day) constant, subject to per-category
duration safety caps/floors.

Category matching is substring-based and ordered; the first match wins:
    ROM focus (ortho) → cardio-pulmonary strength → deconditioning → neuro
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from services.personalization.device_adapter import round_half_up

logger = logging.getLogger(__name__)


class DiagnosisCategory(str, Enum):
    rom = "rom"
    strength = "strength"
    deconditioning = "deconditioning"
    neurological = "neurological"
    default = "default"


@dataclass(frozen=True)
class CategoryRule:
    keywords: Tuple[str, ...]
    resistance_factor: float
    power_factor: float
    rpm_min: int
    rpm_max: int
    resistance_floor: Optional[int] = None
    resistance_ceil: Optional[int] = None
    duration_cap: Optional[int] = None
    duration_floor: Optional[int] = None
    rationale: str = ""


@dataclass(frozen=True)
class ProtocolRules:
    """Diagnosis-category multipliers. Ordered: first match wins."""
    rules: Tuple[Tuple[DiagnosisCategory, CategoryRule], ...] = (
        (DiagnosisCategory.rom, CategoryRule(
            keywords=("hip fracture", "knee", "tka", "tha", "arthroplasty"),
            resistance_factor=0.6,
            # 40% less resistance ≈ 30% less power
            power_factor=0.7,
            rpm_min=40,
            rpm_max=70,
            resistance_floor=0,
            duration_cap=25,
            rationale=(
                "ROM-focused protocol: Lower resistance, higher cadence to improve joint "
                "range of motion while maintaining energy expenditure"
            ),
        )),
        (DiagnosisCategory.strength, CategoryRule(
            keywords=("heart failure", "chf", "copd", "respiratory"),
            resistance_factor=1.3,
            power_factor=1.25,
            rpm_min=20,
            rpm_max=40,
            resistance_ceil=6,
            duration_floor=5,
            rationale=(
                "Strength-focused protocol: Higher resistance, lower cadence to build leg "
                "strength (prognostic for cardiac/pulmonary patients) while avoiding aerobic stress"
            ),
        )),
        (DiagnosisCategory.deconditioning, CategoryRule(
            keywords=("icu", "critical illness", "deconditioning"),
            resistance_factor=0.4,
            power_factor=0.5,
            rpm_min=25,
            rpm_max=45,
            resistance_floor=0,
            duration_cap=20,
            rationale="Deconditioning protocol: Minimal resistance, focus on active movement and circulation",
        )),
        (DiagnosisCategory.neurological, CategoryRule(
            keywords=("stroke", "cva", "parkinson"),
            resistance_factor=0.75,
            power_factor=0.8,
            rpm_min=30,
            rpm_max=50,
            resistance_floor=1,
            rationale=(
                "Neurological protocol: Moderate intensity with focus on bilateral "
                "coordination and rhythmic movement"
            ),
        )),
    )
    default_rpm: Tuple[int, int] = (30, 50)
    default_rationale: str = "Standard protocol based on patient risk profile"


DEFAULT_PROTOCOL_RULES = ProtocolRules()

CATEGORY_LABELS = (
    (("hip", "knee", "arthroplasty"), "Orthopedic/ROM Focus"),
    (("heart", "chf", "copd"), "Cardiac/Pulmonary/Strength Focus"),
    (("icu", "critical"), "Critical Illness/Deconditioning"),
    (("stroke", "cva", "parkinson"), "Neurological"),
)
DEFAULT_CATEGORY_LABEL = "General Medical/Surgical"


@dataclass
class BaselinePrescription:
    power: float  # watts
    duration: float  # minutes per session
    resistance: float  # 0-6 (or 0-10) scale
    sessions_per_day: int

    @property
    def total_dose(self) -> float:
        return self.power * self.duration * self.sessions_per_day


@dataclass
class AdjustedPrescription:
    power: float
    duration: float
    resistance: float
    sessions_per_day: int
    target_rpm: Dict[str, int]
    rationale: str
    adjustments: List[str] = field(default_factory=list)
    category: str = DiagnosisCategory.default.value

    @property
    def total_dose(self) -> float:
        return self.power * self.duration * self.sessions_per_day

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def classify_diagnosis(diagnosis: Optional[str], rules: Optional[ProtocolRules] = None) -> DiagnosisCategory:
    rules = rules or DEFAULT_PROTOCOL_RULES
    text = (diagnosis or "").lower()
    for category, rule in rules.rules:
        if any(k in text for k in rule.keywords):
            return category
    return DiagnosisCategory.default


def get_diagnosis_category(diagnosis: Optional[str]) -> str:
    """Display grouping for a diagnosis (coarser keywords than the protocol rules)."""
    text = (diagnosis or "").lower()
    for keywords, label in CATEGORY_LABELS:
        if any(k in text for k in keywords):
            return label
    return DEFAULT_CATEGORY_LABEL


def _bounded(value: float, floor: Optional[float], ceil: Optional[float]) -> float:
    if floor is not None:
        value = max(floor, value)
    if ceil is not None:
        value = min(ceil, value)
    return value


def _fmt(value: float) -> str:
    return f"{value:g}"


def _describe(
    category: DiagnosisCategory,
    baseline: BaselinePrescription,
    resistance: float,
    power: float,
    dose_duration: float,
    rpm: Tuple[int, int],
) -> List[str]:
    total_dose = _fmt(baseline.total_dose)
    old_r, new_r = _fmt(baseline.resistance), _fmt(resistance)
    minutes = _fmt(dose_duration)

    if category == DiagnosisCategory.rom:
        pct = round_half_up((1 - resistance / baseline.resistance) * 100) if baseline.resistance else 0
        return [
            f"Resistance reduced from {old_r} to {new_r} ({pct:.0f}% reduction)",
            f"RPM increased to {rpm[0]}-{rpm[1]} for ROM focus",
            f"Duration adjusted to {minutes} minutes to maintain {total_dose} watt-min total dose",
        ]
    if category == DiagnosisCategory.strength:
        pct = round_half_up((resistance / baseline.resistance - 1) * 100) if baseline.resistance else 0
        return [
            f"Resistance increased from {old_r} to {new_r} ({pct:.0f}% increase)",
            f"RPM reduced to {rpm[0]}-{rpm[1]} to minimize aerobic demand",
            f"Duration adjusted to {minutes} minutes to maintain {total_dose} watt-min total dose",
        ]
    if category == DiagnosisCategory.deconditioning:
        return [
            f"Resistance reduced to {new_r} for patient safety",
            f"Power reduced to {_fmt(power)}W for deconditioned state",
            f"Duration adjusted to {minutes} minutes to maintain energy expenditure",
        ]
    return [
        f"Resistance reduced to {new_r} for better motor control",
        f"Steady cadence {rpm[0]}-{rpm[1]} RPM for coordination",
        f"Duration {minutes} minutes to maintain therapeutic dose",
    ]


def apply_diagnosis_adjustments(
    baseline: BaselinePrescription,
    diagnosis: Optional[str],
    rules: Optional[ProtocolRules] = None,
) -> AdjustedPrescription:
    """
    Adjust a baseline prescription for the admitting diagnosis.

    Power and resistance are rescaled by the category factors; duration is
    recomputed as total_dose / (new_power x sessions) and then capped or
    floored for safety. Unmatched diagnoses return the baseline unchanged.
    """
    rules = rules or DEFAULT_PROTOCOL_RULES
    category = classify_diagnosis(diagnosis, rules)

    unchanged = AdjustedPrescription(
        power=baseline.power,
        duration=baseline.duration,
        resistance=baseline.resistance,
        sessions_per_day=baseline.sessions_per_day,
        target_rpm={"min": rules.default_rpm[0], "max": rules.default_rpm[1]},
        rationale=rules.default_rationale,
    )

    if category == DiagnosisCategory.default:
        logger.debug(f"No protocol category for diagnosis {diagnosis!r}; using baseline")
        return unchanged

    rule = dict(rules.rules)[category]
    rpm = (rule.rpm_min, rule.rpm_max)

    new_power = round_half_up(baseline.power * rule.power_factor)
    if new_power <= 0 or baseline.sessions_per_day <= 0:
        # no dose to redistribute; only the cadence band changes
        unchanged.target_rpm = {"min": rpm[0], "max": rpm[1]}
        unchanged.rationale = rule.rationale
        unchanged.category = category.value
        return unchanged

    new_resistance = _bounded(
        round_half_up(baseline.resistance * rule.resistance_factor),
        rule.resistance_floor,
        rule.resistance_ceil,
    )
    dose_duration = round_half_up(baseline.total_dose / (new_power * baseline.sessions_per_day))
    new_duration = _bounded(dose_duration, rule.duration_floor, rule.duration_cap)

    return AdjustedPrescription(
        power=new_power,
        duration=new_duration,
        resistance=new_resistance,
        sessions_per_day=baseline.sessions_per_day,
        target_rpm={"min": rpm[0], "max": rpm[1]},
        rationale=rule.rationale,
        adjustments=_describe(category, baseline, new_resistance, new_power, dose_duration, rpm),
        category=category.value,
    )

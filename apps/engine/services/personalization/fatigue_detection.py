"""Fatigue & asymmetry detection over a sliding window of bike metrics.

Stateless: the caller hands in an ordered window of StandardizedMetric
(oldest first) and receives a FatigueAssessment. Nothing is stored.

Method:
    1. Split the window at the integer midpoint into early/late halves
       (the late half takes the extra sample when the length is odd).
    2. power decline %  = (early avg power - late avg power) / early avg power
    3. cadence CV %     = population stddev(cadence) / mean(cadence)
    4. asymmetry change = late avg |asymmetry| - early avg |asymmetry|

Classification is first-match in a fixed priority order:
    power_decline → cadence_variability → asymmetry → none
Indicators are never combined into a single score; recorded sessions
replay to the same labels only under this precedence.
"""
from __future__ import annotations

import statistics
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from services.personalization.device_adapter import StandardizedMetric, round_half_up


class FatigueType(str, Enum):
    power_decline = "power_decline"
    cadence_variability = "cadence_variability"
    asymmetry = "asymmetry"
    none = "none"


class FatigueSeverity(str, Enum):
    none = "none"
    mild = "mild"
    moderate = "moderate"
    severe = "severe"


@dataclass(frozen=True)
class FatigueConfig:
    """Detection thresholds. Fixed design constants."""
    # Nominal window; at least half of it must be present to assess
    window_size: int = 30

    power_decline_threshold: float = 20.0
    power_decline_moderate: float = 25.0
    power_decline_severe: float = 35.0
    power_confidence_base: float = 0.6
    power_confidence_cap: float = 0.95

    cadence_cv_threshold: float = 20.0
    cadence_cv_moderate: float = 25.0
    cadence_cv_severe: float = 35.0
    cadence_confidence_base: float = 0.5
    cadence_confidence_cap: float = 0.90

    asymmetry_change_threshold: float = 10.0
    asymmetry_change_moderate: float = 15.0
    asymmetry_change_severe: float = 25.0
    asymmetry_confidence_base: float = 0.4
    asymmetry_confidence_divisor: float = 50.0
    asymmetry_confidence_cap: float = 0.85


DEFAULT_FATIGUE_CONFIG = FatigueConfig()


@dataclass
class FatigueAssessment:
    is_fatigued: bool = False
    fatigue_type: str = FatigueType.none.value
    severity: str = FatigueSeverity.none.value
    confidence: float = 0.0
    # power_decline / cadence_cv / asymmetry_change, one decimal; empty when
    # the window was too short to assess
    details: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _grade(value: float, moderate: float, severe: float) -> str:
    if value > severe:
        return FatigueSeverity.severe.value
    if value > moderate:
        return FatigueSeverity.moderate.value
    return FatigueSeverity.mild.value


def compute_power_decline(early: Sequence[StandardizedMetric], late: Sequence[StandardizedMetric]) -> float:
    """Percent drop in mean power from the early half to the late half."""
    if not early or not late:
        return 0.0
    early_avg = statistics.fmean(m.power for m in early)
    if early_avg <= 0:
        return 0.0
    late_avg = statistics.fmean(m.power for m in late)
    return (early_avg - late_avg) / early_avg * 100


def compute_cadence_cv(window: Sequence[StandardizedMetric]) -> float:
    """Coefficient of variation of cadence across the whole window, in %."""
    cadences = [m.cadence for m in window]
    if not cadences:
        return 0.0
    avg = statistics.fmean(cadences)
    if avg <= 0:
        return 0.0
    return statistics.pstdev(cadences, mu=avg) / avg * 100


def _half_abs_asymmetry(half: Sequence[StandardizedMetric]) -> float:
    # samples without asymmetry add nothing but still count in the denominator
    total = sum(abs(m.bilateral_asymmetry) for m in half if m.bilateral_asymmetry is not None)
    return total / (len(half) or 1)


def compute_asymmetry_change(early: Sequence[StandardizedMetric], late: Sequence[StandardizedMetric]) -> float:
    return _half_abs_asymmetry(late) - _half_abs_asymmetry(early)


def detect_fatigue(
    recent_metrics: Sequence[StandardizedMetric],
    config: Optional[FatigueConfig] = None,
) -> FatigueAssessment:
    """Classify fatigue over an ordered window of metrics (oldest first).

    Windows shorter than half of config.window_size return an unfatigued
    assessment with confidence 0.
    """
    if config is None:
        config = DEFAULT_FATIGUE_CONFIG

    if len(recent_metrics) < config.window_size / 2:
        return FatigueAssessment()

    window: List[StandardizedMetric] = list(recent_metrics)
    midpoint = len(window) // 2
    early = window[:midpoint]
    late = window[midpoint:]

    power_decline = compute_power_decline(early, late)
    cadence_cv = compute_cadence_cv(window)
    asymmetry_change = compute_asymmetry_change(early, late)

    fatigue_type = FatigueType.none.value
    severity = FatigueSeverity.none.value
    confidence = 0.0

    if power_decline > config.power_decline_threshold:
        fatigue_type = FatigueType.power_decline.value
        severity = _grade(power_decline, config.power_decline_moderate, config.power_decline_severe)
        confidence = min(config.power_confidence_cap, config.power_confidence_base + power_decline / 100)
    elif cadence_cv > config.cadence_cv_threshold:
        fatigue_type = FatigueType.cadence_variability.value
        severity = _grade(cadence_cv, config.cadence_cv_moderate, config.cadence_cv_severe)
        confidence = min(config.cadence_confidence_cap, config.cadence_confidence_base + cadence_cv / 100)
    elif asymmetry_change > config.asymmetry_change_threshold:
        fatigue_type = FatigueType.asymmetry.value
        severity = _grade(asymmetry_change, config.asymmetry_change_moderate, config.asymmetry_change_severe)
        confidence = min(
            config.asymmetry_confidence_cap,
            config.asymmetry_confidence_base + asymmetry_change / config.asymmetry_confidence_divisor,
        )

    return FatigueAssessment(
        is_fatigued=fatigue_type != FatigueType.none.value,
        fatigue_type=fatigue_type,
        severity=severity,
        confidence=confidence,
        details={
            "power_decline": round_half_up(power_decline, 1),
            "cadence_cv": round_half_up(cadence_cv, 1),
            "asymmetry_change": round_half_up(asymmetry_change, 1),
        },
    )

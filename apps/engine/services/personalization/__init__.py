"""
Personalization & Mobility Analytics Engine

Bedside-bike telemetry and clinical personalization:
- Telemetry normalization (raw device samples → watts, RPM, 0-10 resistance)
- Streaming session aggregation with bounded buffers and live alerts
- Fatigue & bilateral-asymmetry detection over sliding windows
- Personalized LOS / discharge / readmission projections
- Diagnosis-specific, dose-preserving protocol adjustment
- Equivalent watts for walking, sitting and cycling

Design Principles:
- Pure computation: no DB, no network, no disk
- Degrade to safe defaults on bad numbers, never crash the caller
- Stream state lives in an explicitly owned StreamRegistry
"""

from .device_adapter import (
    RawPedalingSample,
    RawDeviceSample,
    StandardizedMetric,
    normalize_resistance,
    calculate_power,
    calculate_distance,
    calculate_bilateral_asymmetry,
    convert_pedaling_data,
    convert_device_data,
    parse_raw_sample,
)
from .fatigue_detection import FatigueAssessment, detect_fatigue
from .session_stream import DeviceDataStream, SessionSummary, StreamAlert, aggregate_session_data
from .registry import StreamRegistry
from .intake import PatientFeatureFlags, flags_from_echo
from .personalized_benefit import (
    EffectSizes,
    ObservedActivity,
    add_personalized_benefit,
    project_outcomes,
)
from .prescription_adjustments import (
    BaselinePrescription,
    AdjustedPrescription,
    apply_diagnosis_adjustments,
    get_diagnosis_category,
)
from .watts_calculator import (
    calculate_equivalent_watts,
    calculate_cycling_watts,
    get_activity_mets,
    lbs_to_kg,
    kg_to_lbs,
)

__all__ = [
    'RawPedalingSample',
    'RawDeviceSample',
    'StandardizedMetric',
    'normalize_resistance',
    'calculate_power',
    'calculate_distance',
    'calculate_bilateral_asymmetry',
    'convert_pedaling_data',
    'convert_device_data',
    'parse_raw_sample',
    'FatigueAssessment',
    'detect_fatigue',
    'DeviceDataStream',
    'SessionSummary',
    'StreamAlert',
    'aggregate_session_data',
    'StreamRegistry',
    'PatientFeatureFlags',
    'flags_from_echo',
    'EffectSizes',
    'ObservedActivity',
    'add_personalized_benefit',
    'project_outcomes',
    'BaselinePrescription',
    'AdjustedPrescription',
    'apply_diagnosis_adjustments',
    'get_diagnosis_category',
    'calculate_equivalent_watts',
    'calculate_cycling_watts',
    'get_activity_mets',
    'lbs_to_kg',
    'kg_to_lbs',
]

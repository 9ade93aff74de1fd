"""Device Data Adapter: raw bedside-bike telemetry to physical units.

Converts the two device wire formats into StandardizedMetric values the
streaming and detection layers consume:

    pedaling_data: device_id, timestamp, resistance_level (0-255),
                   flywheel_rpm, battery_voltage
    device_data:   device_mac, timestamp, resistance (0-255),
                   legs_rpm, arms_rpm

Power model:
    P = (RPM x base_power_factor) x (1 + resistance_fraction x
        resistance_power_multiplier x 10)

This is a calibrated model of typical bedside-bike output, not a physical
simulation:
    - 50 RPM at level 128 (50%): 6.3W
    - 60 RPM at level 200 (78%): 8.4W

Known accuracy gap: the bike has no per-leg force sensors. Device-format
samples split leg RPM evenly between sides, so bilateral asymmetry from a
single sample is always 0 and left/right power is an equal split. Genuine
imbalance cannot be detected from this hardware.

No state, no IO. Pure functions.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from core.exceptions import TelemetryFormatError


@dataclass(frozen=True)
class BikeConstants:
    """Calibration constants for the bedside bike."""
    # Flywheel inertia (kg·m²), typical for magnetic resistance bikes
    flywheel_inertia: float = 0.5
    # Virtual wheel circumference in meters (1:1 gear ratio assumed)
    virtual_wheel_circumference: float = 2.0
    max_resistance_level: int = 255
    # Below this cadence the patient is not pedaling
    min_active_rpm: float = 10.0
    # Watts per RPM at zero resistance
    base_power_factor: float = 0.1
    resistance_power_multiplier: float = 0.05
    max_power_watts: float = 200.0


BIKE_CONSTANTS = BikeConstants()


# ---------------------------------------------------------------------------
# Wire formats
# ---------------------------------------------------------------------------

class RawPedalingSample(BaseModel):
    """Single-channel sample from the pedaling_data feed."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    device_id: str = Field(alias="deviceId")
    timestamp: datetime
    resistance_level: float = Field(alias="resistanceLevel", ge=0, le=255)
    flywheel_rpm: float = Field(alias="flywheelRpm", ge=0)
    battery_voltage: Optional[float] = Field(default=None, alias="batteryVoltage")


class RawDeviceSample(BaseModel):
    """Bilateral-capable sample from the device_data feed."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    device_mac: str = Field(alias="deviceMac")
    timestamp: datetime
    resistance: float = Field(ge=0, le=255)
    legs_rpm: float = Field(alias="legsRpm", ge=0)
    arms_rpm: float = Field(default=0.0, alias="armsRpm", ge=0)


RawTelemetrySample = Union[RawPedalingSample, RawDeviceSample]


@dataclass(frozen=True)
class StandardizedMetric:
    timestamp: datetime
    device_id: str
    power: float  # watts
    cadence: float  # RPM
    resistance: float  # 0-10
    distance: float  # meters
    left_power: Optional[float] = None
    right_power: Optional[float] = None
    bilateral_asymmetry: Optional[float] = None  # %, positive = right-dominant

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves toward +inf, as the device firmware does.

    Python's round() is banker's rounding; replayed sessions must match
    the values recorded by the bike, so every engine rounding goes here.
    """
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


# ---------------------------------------------------------------------------
# Unit conversions
# ---------------------------------------------------------------------------

def normalize_resistance(raw_resistance: float) -> float:
    """Convert resistance level (0-255) to the 0-10 scale, one decimal."""
    return round_half_up(raw_resistance / BIKE_CONSTANTS.max_resistance_level * 10, 1)


def calculate_power(rpm: float, resistance_level: float) -> float:
    """Estimate watts from cadence and raw resistance level.

    Returns 0 below the active-pedaling cadence; result is clamped to
    [0, 200] W and rounded to one decimal.
    """
    if rpm < BIKE_CONSTANTS.min_active_rpm:
        return 0.0

    resistance_fraction = resistance_level / BIKE_CONSTANTS.max_resistance_level
    base_power = rpm * BIKE_CONSTANTS.base_power_factor
    resistance_bonus = 1 + resistance_fraction * BIKE_CONSTANTS.resistance_power_multiplier * 10

    power = round_half_up(base_power * resistance_bonus, 1)
    return min(max(power, 0.0), BIKE_CONSTANTS.max_power_watts)


def calculate_distance(rpm: float, duration_seconds: float) -> float:
    """Virtual distance in meters for a cadence held over a duration."""
    revolutions = rpm * duration_seconds / 60
    return round_half_up(revolutions * BIKE_CONSTANTS.virtual_wheel_circumference, 1)


def calculate_bilateral_asymmetry(left_rpm: float, right_rpm: float) -> float:
    """Percent asymmetry. Positive = right side stronger."""
    total = left_rpm + right_rpm
    if total == 0:
        return 0.0
    return round_half_up((right_rpm - left_rpm) / total * 100, 1)


# ---------------------------------------------------------------------------
# Wire format → StandardizedMetric
# ---------------------------------------------------------------------------

def convert_pedaling_data(data: RawPedalingSample) -> StandardizedMetric:
    # distance needs a duration; the session summary derives it
    return StandardizedMetric(
        timestamp=data.timestamp,
        device_id=data.device_id.strip(),
        power=calculate_power(data.flywheel_rpm, data.resistance_level),
        cadence=data.flywheel_rpm,
        resistance=normalize_resistance(data.resistance_level),
        distance=0.0,
    )


def convert_device_data(data: RawDeviceSample) -> StandardizedMetric:
    """Convert a bilateral-capable sample.

    Left and right are each assumed to carry half of legs_rpm, so the
    asymmetry is 0 by construction and side power is an equal split.
    """
    power = calculate_power(data.legs_rpm, data.resistance)
    asymmetry = calculate_bilateral_asymmetry(data.legs_rpm / 2, data.legs_rpm / 2)

    return StandardizedMetric(
        timestamp=data.timestamp,
        device_id=data.device_mac.replace(":", "").strip(),
        power=power,
        cadence=data.legs_rpm,
        resistance=normalize_resistance(data.resistance),
        distance=0.0,
        left_power=power / 2,
        right_power=power / 2,
        bilateral_asymmetry=asymmetry,
    )


def convert_sample(data: RawTelemetrySample) -> StandardizedMetric:
    """Dispatch on wire format."""
    if isinstance(data, RawPedalingSample):
        return convert_pedaling_data(data)
    return convert_device_data(data)


def parse_raw_sample(payload: Union[Mapping[str, Any], RawPedalingSample, RawDeviceSample]) -> RawTelemetrySample:
    """Validate a raw mapping into one of the two wire formats.

    Discriminates on the RPM field: flywheel_rpm → pedaling_data,
    legs_rpm → device_data.

    Raises:
        TelemetryFormatError: payload matches neither format or fails validation.
    """
    if isinstance(payload, (RawPedalingSample, RawDeviceSample)):
        return payload
    if not isinstance(payload, Mapping):
        raise TelemetryFormatError(f"Telemetry sample must be a mapping, got {type(payload).__name__}")

    if "flywheel_rpm" in payload or "flywheelRpm" in payload:
        model = RawPedalingSample
    elif "legs_rpm" in payload or "legsRpm" in payload:
        model = RawDeviceSample
    else:
        raise TelemetryFormatError("Telemetry sample has neither flywheel_rpm nor legs_rpm")

    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise TelemetryFormatError(f"Invalid {model.__name__}: {e.error_count()} validation error(s)") from e

"""Streaming session aggregation for one bike session.

A DeviceDataStream owns a bounded FIFO buffer of StandardizedMetric for a
single (device_id, session_id). Each incoming raw sample is normalized,
appended (evicting the oldest once capacity is exceeded) and only then run
through the alert checks, so detection always sees the triggering sample.

Lifecycle:
    Active: created on first sample, accepts add_data_point()
    Ended: summary frozen, buffer cleared, removed from the registry
Pause/resume is a caller concern: callers simply stop sending samples.
"""
from __future__ import annotations

import logging
import math
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Union

from core.config import settings
from services.personalization.device_adapter import (
    BIKE_CONSTANTS,
    RawTelemetrySample,
    StandardizedMetric,
    calculate_distance,
    convert_sample,
    parse_raw_sample,
    round_half_up,
)
from services.personalization.fatigue_detection import detect_fatigue

logger = logging.getLogger(__name__)

# |asymmetry| above this counts as a significant event in the summary
ASYMMETRY_EVENT_PCT = 15.0
# |asymmetry| above this on a single sample raises an alert
ASYMMETRY_ALERT_PCT = 25.0
ASYMMETRY_SEVERE_PCT = 40.0


class AlertType(str, Enum):
    fatigue = "fatigue"
    asymmetry = "asymmetry"
    inactivity = "inactivity"


@dataclass
class StreamAlert:
    type: str  # AlertType value
    severity: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DataPointResult:
    metrics: StandardizedMetric
    alerts: List[StreamAlert] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "metrics": self.metrics.to_dict(),
            "alerts": [a.to_dict() for a in self.alerts],
        }


@dataclass
class SessionSummary:
    session_id: Union[int, str]
    patient_id: Union[int, str, None]
    device_id: str
    start_time: datetime
    end_time: datetime
    duration: int  # seconds, wall clock
    avg_power: float = 0.0
    max_power: float = 0.0
    avg_cadence: float = 0.0
    max_cadence: float = 0.0
    avg_resistance: float = 0.0
    total_distance: float = 0.0
    data_points: int = 0
    avg_asymmetry: Optional[float] = None
    asymmetry_events: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _as_utc(dt: datetime) -> datetime:
    # naive timestamps from the device are UTC
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def aggregate_session_data(
    data_points: Sequence[StandardizedMetric],
    session_id: Union[int, str],
    patient_id: Union[int, str, None],
    start_time: datetime,
    end_time: datetime,
) -> SessionSummary:
    """Aggregate buffered metrics into a SessionSummary.

    Empty input yields all-zero aggregates with data_points == 0.
    Distance is derived from the average cadence held over the wall-clock
    duration, since individual samples carry no duration of their own.
    """
    if not data_points:
        return SessionSummary(
            session_id=session_id,
            patient_id=patient_id,
            device_id="",
            start_time=start_time,
            end_time=end_time,
            duration=0,
        )

    duration_s = max(0, math.floor((_as_utc(end_time) - _as_utc(start_time)).total_seconds()))

    n = len(data_points)
    total_power = sum(p.power for p in data_points)
    total_cadence = sum(p.cadence for p in data_points)
    total_resistance = sum(p.resistance for p in data_points)

    asymmetries = [abs(p.bilateral_asymmetry) for p in data_points if p.bilateral_asymmetry is not None]
    events = sum(1 for a in asymmetries if a > ASYMMETRY_EVENT_PCT)

    avg_cadence = round_half_up(total_cadence / n, 1)

    return SessionSummary(
        session_id=session_id,
        patient_id=patient_id,
        device_id=data_points[0].device_id,
        start_time=start_time,
        end_time=end_time,
        duration=duration_s,
        avg_power=round_half_up(total_power / n, 1),
        max_power=max(p.power for p in data_points),
        avg_cadence=avg_cadence,
        max_cadence=max(p.cadence for p in data_points),
        avg_resistance=round_half_up(total_resistance / n, 1),
        total_distance=calculate_distance(avg_cadence, duration_s),
        data_points=n,
        avg_asymmetry=round_half_up(sum(asymmetries) / len(asymmetries), 1) if asymmetries else None,
        asymmetry_events=events if events > 0 else None,
    )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceDataStream:
    """
    Bounded, per-session buffer of normalized bike metrics.

    add_data_point() is serialized by an instance lock; concurrent samples
    for the same session cannot interleave inside the buffer.
    """

    def __init__(
        self,
        device_id: str,
        patient_id: Union[int, str, None],
        session_id: Union[int, str],
        capacity: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.device_id = device_id
        self.patient_id = patient_id
        self.session_id = session_id
        self.capacity = capacity or settings.STREAM_BUFFER_CAPACITY
        self._clock = clock or _utcnow
        self._buffer: Deque[StandardizedMetric] = deque(maxlen=self.capacity)
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._buffer)

    def add_data_point(self, data: Union[RawTelemetrySample, Mapping[str, Any]]) -> DataPointResult:
        """
        Normalize a raw sample, buffer it and return any alerts.

        Raises:
            TelemetryFormatError: the sample matches neither wire format.
        """
        metrics = convert_sample(parse_raw_sample(data))

        with self._lock:
            # deque(maxlen) drops the oldest sample on overflow
            self._buffer.append(metrics)
            alerts = self._check_alerts(metrics)

        for alert in alerts:
            logger.info(
                f"Stream alert: {alert.type} ({alert.severity})",
                extra={"extra_fields": {
                    "device_id": self.device_id,
                    "session_id": self.session_id,
                    "alert_type": alert.type,
                    "severity": alert.severity,
                }},
            )

        return DataPointResult(metrics=metrics, alerts=alerts)

    def _check_alerts(self, metrics: StandardizedMetric) -> List[StreamAlert]:
        alerts: List[StreamAlert] = []
        buffered = list(self._buffer)

        if len(buffered) >= settings.STREAM_FATIGUE_MIN_POINTS:
            fatigue = detect_fatigue(buffered[-settings.STREAM_FATIGUE_LOOKBACK:])
            if fatigue.is_fatigued and fatigue.severity != "none":
                label = fatigue.fatigue_type.replace("_", " ", 1)
                alerts.append(StreamAlert(
                    type=AlertType.fatigue.value,
                    severity=fatigue.severity,
                    message=f"Fatigue detected: {label} ({int(round_half_up(fatigue.confidence * 100))}% confidence)",
                ))

        asymmetry = metrics.bilateral_asymmetry
        if asymmetry and abs(asymmetry) > ASYMMETRY_ALERT_PCT:
            side = "Right" if asymmetry > 0 else "Left"
            alerts.append(StreamAlert(
                type=AlertType.asymmetry.value,
                severity="severe" if abs(asymmetry) > ASYMMETRY_SEVERE_PCT else "moderate",
                message=f"Bilateral asymmetry: {side} side {abs(asymmetry):g}% stronger",
            ))

        trailing = buffered[-settings.STREAM_INACTIVITY_WINDOW:]
        if all(m.cadence < BIKE_CONSTANTS.min_active_rpm for m in trailing):
            alerts.append(StreamAlert(
                type=AlertType.inactivity.value,
                severity="mild",
                message="Patient has stopped pedaling",
            ))

        return alerts

    def get_summary(self) -> SessionSummary:
        """Recompute the running summary from the live buffer."""
        with self._lock:
            buffered = list(self._buffer)
        now = self._clock()
        start_time = buffered[0].timestamp if buffered else now
        return aggregate_session_data(
            buffered,
            session_id=self.session_id,
            patient_id=self.patient_id,
            start_time=start_time,
            end_time=now,
        )

    def get_recent_metrics(self, count: int = 10) -> List[StandardizedMetric]:
        """Last `count` buffered metrics, most recent last."""
        if count <= 0:
            return []
        with self._lock:
            buffered = list(self._buffer)
        return buffered[-count:]

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()

"""
Tests for streaming session aggregation

Covers the bounded FIFO buffer, live alerts raised per sample and the
session summary arithmetic.
"""
from datetime import datetime, timedelta

import pytest

from core.exceptions import TelemetryFormatError
from fixtures.telemetry_fixtures import (
    BASE_TIME,
    linear,
    make_device_samples,
    make_idle_samples,
    make_metrics,
    make_pedaling_samples,
)


def _stream(clock=None, capacity=None):
    from services.personalization.session_stream import DeviceDataStream

    return DeviceDataStream("AABBCCDDEE01", patient_id=7, session_id=42, capacity=capacity, clock=clock)


class TestBuffer:

    def test_fifo_eviction(self, clock):
        """350 samples into a 300 buffer keep samples 50..349"""
        stream = _stream(clock, capacity=300)
        for raw in make_pedaling_samples([60] * 350):
            stream.add_data_point(raw)

        assert len(stream) == 300
        recent = stream.get_recent_metrics(300)
        assert recent[0].timestamp == BASE_TIME + timedelta(seconds=50)
        assert recent[-1].timestamp == BASE_TIME + timedelta(seconds=349)

    def test_default_capacity_from_settings(self):
        from core.config import settings

        assert _stream().capacity == settings.STREAM_BUFFER_CAPACITY

    def test_recent_metrics(self, clock):
        stream = _stream(clock)
        for raw in make_pedaling_samples([40, 50, 60]):
            stream.add_data_point(raw)

        assert [m.cadence for m in stream.get_recent_metrics(2)] == [50, 60]
        assert stream.get_recent_metrics(0) == []
        assert len(stream.get_recent_metrics()) == 3

    def test_bad_sample_is_not_buffered(self, clock):
        stream = _stream(clock)
        with pytest.raises(TelemetryFormatError):
            stream.add_data_point({"device_id": "x"})
        assert len(stream) == 0

    def test_clear(self, clock):
        stream = _stream(clock)
        stream.add_data_point(make_pedaling_samples([60])[0])
        stream.clear()
        assert len(stream) == 0


class TestAlerts:

    def test_fatigue_alert_on_fading_session(self, clock):
        """Cadence 80 → 40 RPM at full resistance: power fades ≈29%"""
        stream = _stream(clock)
        results = [stream.add_data_point(raw) for raw in make_device_samples(linear(80, 40, 40))]

        final = results[-1]
        fatigue = [a for a in final.alerts if a.type == "fatigue"]
        assert len(fatigue) == 1
        assert fatigue[0].severity == "moderate"
        assert fatigue[0].message.startswith("Fatigue detected: power decline (")
        assert fatigue[0].message.endswith("% confidence)")

    def test_no_fatigue_before_min_points(self, clock):
        stream = _stream(clock)
        results = [stream.add_data_point(raw) for raw in make_device_samples(linear(80, 40, 29))]

        assert all(a.type != "fatigue" for r in results for a in r.alerts)

    def test_inactivity_alert(self, clock):
        stream = _stream(clock)
        results = [stream.add_data_point(raw) for raw in make_idle_samples()]

        alert = results[-1].alerts[-1]
        assert alert.type == "inactivity"
        assert alert.severity == "mild"
        assert alert.message == "Patient has stopped pedaling"

    def test_one_active_sample_clears_inactivity(self, clock):
        stream = _stream(clock)
        for raw in make_idle_samples(4):
            stream.add_data_point(raw)
        result = stream.add_data_point(make_pedaling_samples([60], start=BASE_TIME + timedelta(seconds=4))[0])

        assert result.alerts == []

    def test_asymmetry_alert_grades(self, clock):
        stream = _stream(clock)
        for raw in make_pedaling_samples([60] * 5):
            stream.add_data_point(raw)
        left_heavy, right_severe = make_metrics([40.0, 40.0], asymmetries=[-30.0, 45.0])

        alerts = stream._check_alerts(left_heavy)
        assert [(a.type, a.severity) for a in alerts] == [("asymmetry", "moderate")]
        assert alerts[0].message == "Bilateral asymmetry: Left side 30% stronger"

        alerts = stream._check_alerts(right_severe)
        assert alerts[0].severity == "severe"
        assert alerts[0].message == "Bilateral asymmetry: Right side 45% stronger"

    def test_steady_session_is_quiet(self, clock):
        stream = _stream(clock)
        results = [stream.add_data_point(raw) for raw in make_device_samples([60] * 40)]

        assert all(r.alerts == [] for r in results)


class TestSummary:

    def test_running_summary_uses_clock(self, clock):
        stream = _stream(clock)
        for raw in make_device_samples(linear(80, 40, 40)):
            stream.add_data_point(raw)
        clock.advance(120)

        summary = stream.get_summary()

        assert summary.duration == 120
        assert summary.data_points == 40
        assert summary.device_id == "AABBCCDDEE01"
        assert summary.avg_cadence == 60.0
        assert summary.max_cadence == 80
        assert summary.total_distance == 240.0
        assert summary.max_power == 12.0
        assert summary.avg_resistance == 10.0
        assert summary.avg_asymmetry == 0.0
        assert summary.asymmetry_events is None

    def test_empty_stream_summary(self, clock):
        summary = _stream(clock).get_summary()

        assert summary.data_points == 0
        assert summary.duration == 0
        assert summary.avg_power == 0
        assert summary.total_distance == 0
        assert summary.avg_asymmetry is None


class TestAggregateSessionData:

    def test_asymmetry_aggregates(self):
        from services.personalization.session_stream import aggregate_session_data

        points = make_metrics([30.0, 40.0, 50.0, 60.0], asymmetries=[20.0, -10.0, None, 30.0])
        summary = aggregate_session_data(points, 1, 2, BASE_TIME, BASE_TIME + timedelta(seconds=90.9))

        assert summary.duration == 90
        assert summary.avg_power == 45.0
        assert summary.max_power == 60.0
        assert summary.avg_asymmetry == 20.0
        assert summary.asymmetry_events == 2

    def test_empty_input(self):
        from services.personalization.session_stream import aggregate_session_data

        summary = aggregate_session_data([], 1, 2, BASE_TIME, BASE_TIME + timedelta(minutes=5))

        assert summary.data_points == 0
        assert summary.duration == 0
        assert summary.max_cadence == 0

    def test_naive_start_time_treated_as_utc(self):
        from services.personalization.session_stream import aggregate_session_data

        naive_start = datetime(2026, 3, 2, 9, 0, 0)
        summary = aggregate_session_data(make_metrics([40.0]), 1, 2, naive_start, BASE_TIME + timedelta(seconds=30))

        assert summary.duration == 30

    def test_end_before_start_clamps_to_zero(self):
        from services.personalization.session_stream import aggregate_session_data

        summary = aggregate_session_data(make_metrics([40.0]), 1, 2, BASE_TIME, BASE_TIME - timedelta(seconds=5))

        assert summary.duration == 0
        assert summary.total_distance == 0.0

    def test_to_dict(self):
        from services.personalization.session_stream import aggregate_session_data

        d = aggregate_session_data(make_metrics([40.0]), 1, 2, BASE_TIME, BASE_TIME).to_dict()
        assert d["session_id"] == 1
        assert d["patient_id"] == 2

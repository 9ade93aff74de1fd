"""
Tests for the stream registry

Lifecycle of live bike sessions and thread safety of creation,
ingestion and removal.
"""
import threading
from datetime import timedelta

from fixtures.telemetry_fixtures import BASE_TIME, make_pedaling_samples


class TestLifecycle:

    def test_get_or_create_is_idempotent(self, registry):
        first = registry.get_or_create("BB-01", patient_id=7, session_id=42)
        second = registry.get_or_create("BB-01", patient_id=7, session_id="42")

        assert first is second
        assert registry.active_count() == 1
        assert ("BB-01", 42) in registry

    def test_distinct_sessions_on_one_device(self, registry):
        a = registry.get_or_create("BB-01", 7, 1)
        b = registry.get_or_create("BB-01", 7, 2)

        assert a is not b
        assert sorted(registry.active_keys()) == [("BB-01", "1"), ("BB-01", "2")]

    def test_get_does_not_create(self, registry):
        assert registry.get("BB-01", 1) is None
        assert registry.active_count() == 0

    def test_end_stream_returns_summary_and_removes(self, registry, clock):
        stream = registry.get_or_create("BB-01", 7, 42)
        for raw in make_pedaling_samples([60] * 10):
            stream.add_data_point(raw)
        clock.advance(60)

        summary = registry.end_stream("BB-01", 42)

        assert summary.data_points == 10
        assert summary.duration == 60
        assert summary.patient_id == 7
        assert len(stream) == 0
        assert registry.get("BB-01", 42) is None
        assert registry.get_summary("BB-01", 42) is None

    def test_end_unknown_stream(self, registry):
        assert registry.end_stream("nope", 1) is None

    def test_get_summary_for_live_stream(self, registry, clock):
        stream = registry.get_or_create("BB-01", 7, 42)
        stream.add_data_point(make_pedaling_samples([50])[0])

        summary = registry.get_summary("BB-01", 42)

        assert summary.data_points == 1
        assert registry.active_count() == 1

    def test_end_all(self, registry):
        for session_id in range(3):
            registry.get_or_create("BB-01", 7, session_id)

        summaries = registry.end_all()

        assert len(summaries) == 3
        assert registry.active_count() == 0

    def test_registries_are_independent(self, clock):
        from services.personalization.registry import StreamRegistry

        r1, r2 = StreamRegistry(clock=clock), StreamRegistry(clock=clock)
        r1.get_or_create("BB-01", 7, 42)

        assert r2.get("BB-01", 42) is None


class TestConcurrency:

    def test_racing_creators_share_one_stream(self, registry):
        barrier = threading.Barrier(8)
        seen = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            stream = registry.get_or_create("BB-01", 7, 42)
            with lock:
                seen.append(stream)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({id(s) for s in seen}) == 1
        assert registry.active_count() == 1

    def test_concurrent_ingestion_loses_no_samples(self, clock):
        from services.personalization.registry import StreamRegistry

        registry = StreamRegistry(capacity=1000, clock=clock)
        per_thread = 50
        barrier = threading.Barrier(8)

        def worker(offset):
            samples = make_pedaling_samples(
                [60] * per_thread, start=BASE_TIME + timedelta(seconds=offset * per_thread)
            )
            barrier.wait()
            for raw in samples:
                registry.get_or_create("BB-01", 7, 42).add_data_point(raw)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        summary = registry.end_stream("BB-01", 42)
        assert summary.data_points == 8 * per_thread
        assert registry.active_count() == 0

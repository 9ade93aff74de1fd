"""
Stream Registry

Owns the active DeviceDataStream instances, keyed by (device_id, session_id).
Construct one at startup and hand it to whatever ingests telemetry; tests
build as many independent registries as they need.

Creation and removal are atomic with respect to each other: two callers
racing on get_or_create() for the same key always receive the same stream,
and end_stream() never loses a stream created concurrently.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple, Union
import logging
import threading

from services.personalization.session_stream import DeviceDataStream, SessionSummary

logger = logging.getLogger(__name__)

StreamKey = Tuple[str, str]


def stream_key(device_id: str, session_id: Union[int, str]) -> StreamKey:
    return (str(device_id), str(session_id))


class StreamRegistry:
    """
    Registry of live bike sessions.

    Usage:
        registry = StreamRegistry()
        stream = registry.get_or_create("BB-01", patient_id=7, session_id=42)
        result = stream.add_data_point(sample)
        ...
        summary = registry.end_stream("BB-01", 42)
    """

    def __init__(
        self,
        capacity: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._capacity = capacity
        self._clock = clock
        self._streams: Dict[StreamKey, DeviceDataStream] = {}
        self._lock = threading.Lock()

    def get_or_create(
        self,
        device_id: str,
        patient_id: Union[int, str, None],
        session_id: Union[int, str],
    ) -> DeviceDataStream:
        """Return the stream for this key, creating it on first use."""
        key = stream_key(device_id, session_id)
        with self._lock:
            stream = self._streams.get(key)
            if stream is None:
                stream = DeviceDataStream(
                    device_id,
                    patient_id,
                    session_id,
                    capacity=self._capacity,
                    clock=self._clock,
                )
                self._streams[key] = stream
                logger.info(f"Opened bike stream {key[0]}/{key[1]} (patient {patient_id})")
        return stream

    def get(self, device_id: str, session_id: Union[int, str]) -> Optional[DeviceDataStream]:
        """Get a live stream without creating one."""
        with self._lock:
            return self._streams.get(stream_key(device_id, session_id))

    def get_summary(self, device_id: str, session_id: Union[int, str]) -> Optional[SessionSummary]:
        """Running summary for a live stream; None when the key is unknown."""
        stream = self.get(device_id, session_id)
        if stream is None:
            return None
        return stream.get_summary()

    def end_stream(self, device_id: str, session_id: Union[int, str]) -> Optional[SessionSummary]:
        """
        Finalize a session: compute its summary, clear it and drop it.

        Unknown keys return None; a session may legitimately end without
        ever having produced a sample.
        """
        key = stream_key(device_id, session_id)
        with self._lock:
            stream = self._streams.pop(key, None)
        if stream is None:
            logger.debug(f"end_stream for unknown bike stream {key[0]}/{key[1]}")
            return None

        summary = stream.get_summary()
        stream.clear()
        logger.info(
            f"Closed bike stream {key[0]}/{key[1]}",
            extra={"extra_fields": {
                "device_id": key[0],
                "session_id": key[1],
                "data_points": summary.data_points,
                "duration_s": summary.duration,
            }},
        )
        return summary

    def end_all(self) -> List[SessionSummary]:
        """Finalize every live stream (process teardown)."""
        with self._lock:
            keys = list(self._streams.keys())
        summaries = []
        for device_id, session_id in keys:
            summary = self.end_stream(device_id, session_id)
            if summary is not None:
                summaries.append(summary)
        return summaries

    def active_count(self) -> int:
        with self._lock:
            return len(self._streams)

    def active_keys(self) -> List[StreamKey]:
        with self._lock:
            return list(self._streams.keys())

    def __contains__(self, key: StreamKey) -> bool:
        with self._lock:
            return stream_key(*key) in self._streams

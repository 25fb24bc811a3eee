"""
Sensor history: append-only time series, written best-effort next to the
live state update.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_MEMORY_LIMIT = 720
DEFAULT_QUERY_LIMIT = 1000


@dataclass(frozen=True)
class SensorSample:
    device_id: str
    timestamp: datetime
    temperature: Optional[float]
    humidity: Optional[float]
    soil_moisture: Optional[int]
    pump_active: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "temperature": self.temperature,
            "humidity": self.humidity,
            "soilMoisture": self.soil_moisture,
        }


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def select_window(
    samples: List[SensorSample],
    limit: int = DEFAULT_QUERY_LIMIT,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> List[SensorSample]:
    """Samples within [start, end], newest `limit` of them, oldest first"""
    start, end = _as_utc(start), _as_utc(end)
    selected = [
        s for s in samples
        if (start is None or s.timestamp >= start) and (end is None or s.timestamp <= end)
    ]
    selected.sort(key=lambda s: s.timestamp)
    if limit <= 0:
        return []
    return selected[-limit:]


class MemoryHistory:
    """Bounded per-device sample buffers"""

    def __init__(self, limit: int = DEFAULT_MEMORY_LIMIT):
        self.limit = limit
        self._samples: Dict[str, Deque[SensorSample]] = {}
        self._lock = threading.Lock()

    def append(self, sample: SensorSample):
        with self._lock:
            buffer = self._samples.get(sample.device_id)
            if buffer is None:
                buffer = self._samples[sample.device_id] = deque(maxlen=self.limit)
            buffer.append(sample)

    def query(self, device_id: str, limit: int = DEFAULT_QUERY_LIMIT,
              start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[SensorSample]:
        with self._lock:
            samples = list(self._samples.get(device_id, ()))
        return select_window(samples, limit, start, end)

    def drop(self, device_id: str):
        with self._lock:
            self._samples.pop(device_id, None)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(b) for b in self._samples.values())


class HistoryRecorder:
    """Writes samples to the store, falling back to memory when it fails"""

    def __init__(self, store, memory_limit: int = DEFAULT_MEMORY_LIMIT):
        self.store = store
        self.fallback = MemoryHistory(memory_limit)

    def record(self, sample: SensorSample) -> Dict[str, Any]:
        try:
            self.store.insert_sensor_sample(sample)
            return {"success": True, "device_id": sample.device_id, "backend": "store"}
        except Exception as e:
            logger.warning(f"History write for {sample.device_id} failed, keeping it in memory: {e}")
            self.fallback.append(sample)
            return {"success": False, "device_id": sample.device_id, "backend": "memory", "error": str(e)}

    def on_change(self, event):
        """Notifier observer: a deleted device takes its buffered samples with it"""
        if event.kind == "deleted":
            self.fallback.drop(event.device.id)

    def query(self, device_id: str, limit: int = DEFAULT_QUERY_LIMIT,
              start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[SensorSample]:
        buffered = self.fallback.query(device_id, limit, start, end)
        try:
            stored = self.store.query_sensor_history(device_id, limit=limit, start=start, end=end)
        except Exception as e:
            logger.warning(f"History query for {device_id} failed, answering from memory: {e}")
            return buffered
        if not buffered:
            return stored
        # samples kept in memory while the store was down never reached it
        return select_window(stored + buffered, limit, start, end)

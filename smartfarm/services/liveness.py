"""
Offline detection: a device that stops sending telemetry is demoted to
offline after a timeout.

Devices that never reported since the gateway started have no last-seen
entry and are left alone by the sweep. Devices loaded from storage start
offline; a device created at runtime keeps its registration status until
its first message.
"""
import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from smartfarm.database import get_utc_datetime
from smartfarm.exceptions import DeviceNotFound
from smartfarm.services.notifier import ChangeEvent
from smartfarm.services.registry import Device, DeviceRegistry, DeviceStatus

logger = logging.getLogger(__name__)

OFFLINE_TIMEOUT_SECONDS = 20


class LastSeenTracker:
    """Device id -> time of the latest accepted telemetry (process lifetime only)"""

    def __init__(self):
        self._seen: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def touch(self, device_id: str, when: datetime):
        with self._lock:
            self._seen[device_id] = when

    def get(self, device_id: str) -> Optional[datetime]:
        with self._lock:
            return self._seen.get(device_id)

    def discard(self, device_id: str):
        with self._lock:
            self._seen.pop(device_id, None)

    def on_change(self, event: ChangeEvent):
        """Notifier observer: forget deregistered devices"""
        if event.kind == "deleted":
            self.discard(event.device.id)

    def __contains__(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


class LivenessMonitor:
    def __init__(
        self,
        registry: DeviceRegistry,
        last_seen: LastSeenTracker,
        timeout_seconds: float = OFFLINE_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = get_utc_datetime,
    ):
        self.registry = registry
        self.last_seen = last_seen
        self.timeout = timedelta(seconds=timeout_seconds)
        self._clock = clock
        self._sweep_lock = threading.Lock()

    def is_stale(self, device_id: str, now: datetime) -> bool:
        seen = self.last_seen.get(device_id)
        return seen is not None and now - seen > self.timeout

    def sweep(self) -> List[str]:
        """Mark silent devices offline; returns the ids that transitioned"""
        if not self._sweep_lock.acquire(blocking=False):
            logger.info("Liveness sweep already running, skipping this tick")
            return []
        try:
            return self._sweep()
        finally:
            self._sweep_lock.release()

    def _sweep(self) -> List[str]:
        now = self._clock()
        transitioned: List[str] = []

        for device in self.registry.list():
            if device.status == DeviceStatus.OFFLINE or not self.is_stale(device.id, now):
                continue

            def still_silent(current: Device, device_id=device.id) -> bool:
                # telemetry may have landed between list() and update()
                return current.status != DeviceStatus.OFFLINE and self.is_stale(device_id, now)

            try:
                updated = self.registry.update(device.id, {"status": DeviceStatus.OFFLINE}, only_if=still_silent)
            except DeviceNotFound:
                logger.debug(f"Device {device.id} deleted during liveness sweep")
                continue

            if updated is not None:
                seen = self.last_seen.get(device.id)
                silent_for = int((now - seen).total_seconds()) if seen else 0
                logger.warning(f"Device {device.id} marked as OFFLINE (no data for {silent_for}s)")
                transitioned.append(device.id)

        return transitioned

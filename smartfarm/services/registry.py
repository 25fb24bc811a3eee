"""
Device registry: the authoritative in-process snapshot of every device.

All mutations run under one lock and enqueue their ChangeEvent on the
notifier before the lock is released, so observers see events in the
order mutations were applied. Delivery itself happens after the lock is
released.
"""
import copy
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from smartfarm.database import get_utc_datetime
from smartfarm.exceptions import DeviceNotFound, DuplicateDevice
from smartfarm.services.notifier import ChangeEvent, ChangeNotifier, Observer

logger = logging.getLogger(__name__)


class DeviceStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    WATERING = "watering"


class DeviceMode(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"


ZONE_LABELS = {
    "garden": "🌳 Garden",
    "balcony": "🏠 Balcony",
    "greenhouse": "🏡 Greenhouse",
    "indoor": "🪴 Indoor",
}
DEFAULT_ZONE = "garden"

LOW_SOIL_MOISTURE = 30

UPDATABLE_FIELDS = frozenset({
    "name", "zone", "zone_label", "ip", "status",
    "temperature", "humidity", "soil_moisture", "pump_active", "mode",
})


def zone_label_for(zone: Optional[str]) -> str:
    return ZONE_LABELS.get(zone or DEFAULT_ZONE, ZONE_LABELS[DEFAULT_ZONE])


def status_for_pump(pump_active: bool) -> DeviceStatus:
    """Status implied by the actuator flag"""
    return DeviceStatus.WATERING if pump_active else DeviceStatus.ONLINE


@dataclass
class Device:
    id: str
    name: str
    zone: str = DEFAULT_ZONE
    zone_label: str = ZONE_LABELS[DEFAULT_ZONE]
    ip: Optional[str] = None
    status: DeviceStatus = DeviceStatus.OFFLINE
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    soil_moisture: Optional[int] = None
    pump_active: bool = False
    mode: DeviceMode = DeviceMode.AUTO
    last_update: Optional[datetime] = field(default=None)

    def __post_init__(self):
        self.status = DeviceStatus(self.status)
        self.mode = DeviceMode(self.mode)

    def to_dict(self) -> Dict[str, Any]:
        """Wire (camelCase) representation used by HTTP and SSE"""
        return {
            "id": self.id,
            "name": self.name,
            "zone": self.zone,
            "zoneLabel": self.zone_label,
            "ip": self.ip,
            "status": self.status.value,
            "temperature": self.temperature,
            "humidity": self.humidity,
            "soilMoisture": self.soil_moisture,
            "pumpActive": self.pump_active,
            "mode": self.mode.value,
            "lastUpdate": self.last_update.isoformat() if self.last_update else None,
        }

    def fields(self) -> Dict[str, Any]:
        return asdict(self)


def new_device(name: str, ip: Optional[str], zone: Optional[str] = None, device_id: Optional[str] = None) -> Device:
    """A freshly registered device: offline, auto mode, no readings yet"""
    zone = zone or DEFAULT_ZONE
    if not device_id:
        device_id = f"device_{int(time.time() * 1000)}"
    return Device(id=device_id, name=name, zone=zone, zone_label=zone_label_for(zone), ip=ip)


def _normalize_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(patch) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Fields cannot be updated: {sorted(unknown)}")

    normalized = dict(patch)
    if "status" in normalized:
        normalized["status"] = DeviceStatus(normalized["status"])
    if "mode" in normalized:
        normalized["mode"] = DeviceMode(normalized["mode"])
    if "pump_active" in normalized:
        normalized["pump_active"] = bool(normalized["pump_active"])
    return normalized


class DeviceRegistry:
    """Owns the canonical Device records; hands out copies only"""

    def __init__(self, notifier: ChangeNotifier, clock: Callable[[], datetime] = get_utc_datetime):
        self._notifier = notifier
        self._clock = clock
        self._devices: "OrderedDict[str, Device]" = OrderedDict()
        self._lock = threading.Lock()

    def load(self, devices: Iterable[Device]) -> int:
        """
        Replace the registry contents without emitting events (startup).
        Loaded devices start offline; their next reading brings them back.
        """
        loaded: "OrderedDict[str, Device]" = OrderedDict()
        for d in devices:
            device = copy.deepcopy(d)
            device.status = DeviceStatus.OFFLINE
            loaded[device.id] = device
        with self._lock:
            self._devices = loaded
            count = len(self._devices)
        logger.info(f"Registry loaded with {count} devices")
        return count

    def get(self, device_id: str) -> Optional[Device]:
        with self._lock:
            device = self._devices.get(device_id)
            return copy.deepcopy(device) if device else None

    def list(self) -> List[Device]:
        with self._lock:
            return [copy.deepcopy(d) for d in self._devices.values()]

    def __contains__(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def create(self, device: Device) -> Device:
        with self._lock:
            if device.id in self._devices:
                raise DuplicateDevice(device.id)
            stored = copy.deepcopy(device)
            stored.last_update = self._clock()
            self._devices[stored.id] = stored
            snapshot = copy.deepcopy(stored)
            self._notifier.publish(ChangeEvent("added", copy.deepcopy(stored), stored.fields()))
        logger.info(f"Device {snapshot.id} registered ({snapshot.name})")
        self._notifier.flush()
        return snapshot

    def update(
        self,
        device_id: str,
        patch: Dict[str, Any],
        only_if: Optional[Callable[[Device], bool]] = None,
    ) -> Optional[Device]:
        """
        Merge the fields present in patch into the device.
        last_update is always refreshed. When only_if is given it is
        evaluated against the current record under the lock; a false
        result skips the update and returns None.
        """
        changes = _normalize_patch(patch)
        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                raise DeviceNotFound(device_id)
            if only_if is not None and not only_if(copy.deepcopy(device)):
                return None
            changes["last_update"] = self._clock()
            for key, value in changes.items():
                setattr(device, key, value)
            snapshot = copy.deepcopy(device)
            self._notifier.publish(ChangeEvent("updated", copy.deepcopy(device), changes))
        self._notifier.flush()
        return snapshot

    def delete(self, device_id: str) -> Device:
        with self._lock:
            device = self._devices.pop(device_id, None)
            if device is None:
                raise DeviceNotFound(device_id)
            self._notifier.publish(ChangeEvent("deleted", device, {}))
        logger.info(f"Device {device_id} removed")
        self._notifier.flush()
        return copy.deepcopy(device)

    def subscribe_with_snapshot(self, observer: Observer) -> Tuple[List[Device], Callable[[], None]]:
        """
        Register an observer and return the current devices in one step.
        The observer receives every event produced after the snapshot and
        none produced before it.
        """
        with self._lock:
            unsubscribe = self._notifier.subscribe(observer)
            devices = [copy.deepcopy(d) for d in self._devices.values()]
        return devices, unsubscribe


def device_stats(devices: List[Device]) -> Dict[str, int]:
    """Dashboard counters"""
    return {
        "total": len(devices),
        "online": sum(1 for d in devices if d.status != DeviceStatus.OFFLINE),
        "watering": sum(1 for d in devices if d.status == DeviceStatus.WATERING or d.pump_active),
        "alerts": sum(
            1 for d in devices
            if d.status != DeviceStatus.OFFLINE
            and d.soil_moisture is not None
            and d.soil_moisture < LOW_SOIL_MOISTURE
        ),
    }

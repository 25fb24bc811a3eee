"""Shared fixtures for the gateway tests."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

import pytest

from smartfarm.database import Settings
from smartfarm.services.commands import CommandDispatcher
from smartfarm.services.gateway import Gateway
from smartfarm.services.history import HistoryRecorder
from smartfarm.services.ingest import TelemetryIngest
from smartfarm.services.liveness import LastSeenTracker, LivenessMonitor
from smartfarm.services.notifier import ChangeEvent, ChangeNotifier
from smartfarm.services.registry import DeviceRegistry, new_device
from smartfarm.services.storage import MemoryDeviceStore


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now = self.now + timedelta(seconds=seconds)


class RecordingObserver:
    """Observer that keeps every event it receives."""

    def __init__(self):
        self.events: List[ChangeEvent] = []

    def __call__(self, event: ChangeEvent):
        self.events.append(event)

    def kinds(self) -> List[str]:
        return [e.kind for e in self.events]

    def clear(self):
        self.events.clear()


class FakeTransport:
    """In-process stand-in for the MQTT provider."""

    def __init__(self, connected: bool = True, raises: bool = False):
        self.connected = connected
        self.raises = raises
        self.sent: List[tuple] = []
        self.ingest = None
        self.connect_calls = 0
        self.disconnect_calls = 0

    def set_ingest(self, ingest):
        self.ingest = ingest

    def connect(self) -> bool:
        self.connect_calls += 1
        return True

    def disconnect(self):
        self.disconnect_calls += 1

    def publish_command(self, device_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self.raises:
            raise ConnectionError("broker exploded")
        if not self.connected:
            return {"success": False, "error": "not connected"}
        self.sent.append((device_id, payload))
        return {"success": True, "payload": payload}

    def health_check(self) -> Dict[str, Any]:
        return {"provider": "FakeTransport", "connected": self.connected}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> ChangeNotifier:
    return ChangeNotifier()


@pytest.fixture
def registry(notifier, clock) -> DeviceRegistry:
    return DeviceRegistry(notifier, clock=clock)


@pytest.fixture
def events(notifier) -> RecordingObserver:
    observer = RecordingObserver()
    notifier.subscribe(observer)
    return observer


@pytest.fixture
def store() -> MemoryDeviceStore:
    return MemoryDeviceStore()


@pytest.fixture
def history(store) -> HistoryRecorder:
    return HistoryRecorder(store)


@pytest.fixture
def last_seen() -> LastSeenTracker:
    return LastSeenTracker()


@pytest.fixture
def ingest(registry, last_seen, history, clock) -> TelemetryIngest:
    return TelemetryIngest(registry, last_seen, history, clock=clock)


@pytest.fixture
def monitor(registry, last_seen, clock) -> LivenessMonitor:
    return LivenessMonitor(registry, last_seen, timeout_seconds=20, clock=clock)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def commands(registry, transport) -> CommandDispatcher:
    return CommandDispatcher(registry, transport)


@pytest.fixture
def d1(registry):
    """A registered, never-reported device."""
    return registry.create(new_device("Front Garden", "192.168.0.110", zone="garden", device_id="d1"))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="",
        mqtt_broker="",
        seed_default_device=False,
        offline_timeout_seconds=20,
        liveness_interval_seconds=30,
    )


@pytest.fixture
def gateway(test_settings, clock) -> Gateway:
    return Gateway(test_settings, store=MemoryDeviceStore(), transport=FakeTransport(), clock=clock)


def telemetry(temperature=22.5, humidity=60.0, soil=50, pump=False) -> Dict[str, Any]:
    return {"temperature": temperature, "humidity": humidity, "soilPercent": soil, "pumpActive": pump}

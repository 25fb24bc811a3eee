"""Storage, history and persistence sync tests.

Run:
    pytest tests/test_storage.py -v
"""

from datetime import datetime, timedelta, timezone

import pytest

from smartfarm.database import Settings
from smartfarm.exceptions import DuplicateDevice
from smartfarm.services.history import HistoryRecorder, MemoryHistory, SensorSample, select_window
from smartfarm.services.notifier import ChangeNotifier
from smartfarm.services.registry import DeviceMode, DeviceRegistry, DeviceStatus, new_device
from smartfarm.services.storage import MemoryDeviceStore, SqlDeviceStore, StorageSync, build_store

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def sample(device_id="d1", minutes=0, soil=40) -> SensorSample:
    return SensorSample(
        device_id=device_id,
        timestamp=T0 + timedelta(minutes=minutes),
        temperature=20.0,
        humidity=55.0,
        soil_moisture=soil,
    )


@pytest.fixture
def sql_store() -> SqlDeviceStore:
    store = SqlDeviceStore("sqlite://")
    store.ping()
    return store


@pytest.fixture(params=["sql", "memory"])
def any_store(request):
    if request.param == "sql":
        store = SqlDeviceStore("sqlite://")
        store.ping()
        return store
    return MemoryDeviceStore()


# =============================================================================
# DEVICE ROWS
# =============================================================================

class TestDeviceRows:
    def test_insert_and_select(self, any_store):
        any_store.insert_device(new_device("Front Garden", "192.168.0.110", zone="greenhouse", device_id="d1"))
        any_store.insert_device(new_device("Back", None, device_id="d2"))

        devices = any_store.select_all_devices()
        assert [d.id for d in devices] == ["d1", "d2"]
        assert devices[0].zone == "greenhouse"
        assert devices[0].status == DeviceStatus.OFFLINE

    def test_duplicate_insert(self, any_store):
        any_store.insert_device(new_device("A", None, device_id="d1"))
        with pytest.raises(DuplicateDevice):
            any_store.insert_device(new_device("B", None, device_id="d1"))

    def test_update_fields(self, any_store):
        any_store.insert_device(new_device("A", None, device_id="d1"))

        assert any_store.update_device_fields("d1", {
            "status": DeviceStatus.WATERING,
            "mode": DeviceMode.MANUAL,
            "pump_active": True,
            "soil_moisture": 12,
            "last_update": T0,
        })

        device = any_store.select_device_by_id("d1")
        assert device.status == DeviceStatus.WATERING
        assert device.mode == DeviceMode.MANUAL
        assert device.pump_active is True
        assert device.soil_moisture == 12
        assert device.last_update == T0

    def test_update_missing_row(self, any_store):
        assert any_store.update_device_fields("ghost", {"temperature": 1.0}) is False

    def test_update_unknown_column(self, any_store):
        any_store.insert_device(new_device("A", None, device_id="d1"))
        with pytest.raises(ValueError):
            any_store.update_device_fields("d1", {"battery": 3.1})

    def test_delete_removes_history(self, any_store):
        any_store.insert_device(new_device("A", None, device_id="d1"))
        any_store.insert_sensor_sample(sample())

        assert any_store.delete_device("d1") is True
        assert any_store.select_device_by_id("d1") is None
        assert any_store.query_sensor_history("d1") == []
        assert any_store.delete_device("d1") is False


# =============================================================================
# HISTORY
# =============================================================================

class TestHistoryQueries:
    def test_window_limit_and_order(self, any_store):
        any_store.insert_device(new_device("A", None, device_id="d1"))
        for minute in (5, 0, 10, 15, 20):
            any_store.insert_sensor_sample(sample(minutes=minute, soil=minute))

        everything = any_store.query_sensor_history("d1")
        assert [s.soil_moisture for s in everything] == [0, 5, 10, 15, 20]

        window = any_store.query_sensor_history(
            "d1", start=T0 + timedelta(minutes=5), end=T0 + timedelta(minutes=15)
        )
        assert [s.soil_moisture for s in window] == [5, 10, 15]

        newest = any_store.query_sensor_history("d1", limit=2)
        assert [s.soil_moisture for s in newest] == [15, 20]

    def test_timestamps_come_back_as_utc(self, any_store):
        any_store.insert_device(new_device("A", None, device_id="d1"))
        any_store.insert_sensor_sample(sample(minutes=1))
        assert any_store.query_sensor_history("d1")[0].timestamp == T0 + timedelta(minutes=1)

    def test_other_devices_not_mixed_in(self, any_store):
        any_store.insert_sensor_sample(sample("d1"))
        any_store.insert_sensor_sample(sample("d2"))
        assert {s.device_id for s in any_store.query_sensor_history("d1")} == {"d1"}

    def test_memory_buffer_is_bounded(self):
        history = MemoryHistory()
        for n in range(725):
            history.append(sample(minutes=n, soil=n % 100))

        kept = history.query("d1", limit=10000)
        assert len(kept) == 720
        assert kept[0].timestamp == T0 + timedelta(minutes=5)

    def test_select_window_accepts_naive_bounds(self):
        samples = [sample(minutes=m) for m in range(3)]
        naive_start = (T0 + timedelta(minutes=1)).replace(tzinfo=None)
        assert len(select_window(samples, start=naive_start)) == 2

    def test_zero_limit(self):
        assert select_window([sample()], limit=0) == []


class BrokenStore:
    def insert_sensor_sample(self, sample):
        raise ConnectionError("down")

    def query_sensor_history(self, device_id, limit=1000, start=None, end=None):
        raise ConnectionError("down")


class FlakyStore(MemoryDeviceStore):
    """Memory store whose sample writes fail while `down` is set."""

    def __init__(self):
        super().__init__()
        self.down = False

    def insert_sensor_sample(self, sample):
        if self.down:
            raise ConnectionError("down")
        super().insert_sensor_sample(sample)


class TestHistoryRecorder:
    def test_records_to_store(self):
        store = MemoryDeviceStore()
        recorder = HistoryRecorder(store)
        result = recorder.record(sample())
        assert result["success"] is True
        assert len(recorder.query("d1")) == 1

    def test_falls_back_to_memory(self):
        recorder = HistoryRecorder(BrokenStore(), memory_limit=2)
        for minute in range(3):
            result = recorder.record(sample(minutes=minute, soil=minute))
            assert result["success"] is False
            assert result["backend"] == "memory"

        assert [s.soil_moisture for s in recorder.query("d1")] == [1, 2]

    def test_buffered_samples_visible_after_store_recovers(self):
        store = FlakyStore()
        recorder = HistoryRecorder(store)

        recorder.record(sample(minutes=0, soil=10))
        store.down = True
        assert recorder.record(sample(minutes=1, soil=11))["backend"] == "memory"
        store.down = False
        recorder.record(sample(minutes=2, soil=12))

        assert [s.soil_moisture for s in recorder.query("d1")] == [10, 11, 12]
        assert [s.soil_moisture for s in recorder.query("d1", limit=2)] == [11, 12]
        window = recorder.query("d1", start=T0 + timedelta(minutes=1), end=T0 + timedelta(minutes=1))
        assert [s.soil_moisture for s in window] == [11]

    def test_deleted_device_drops_buffer(self):
        store = FlakyStore()
        recorder = HistoryRecorder(store)
        notifier = ChangeNotifier()
        registry = DeviceRegistry(notifier)
        notifier.subscribe(recorder.on_change)
        registry.create(new_device("A", None, device_id="d1"))

        store.down = True
        recorder.record(sample(soil=5))
        store.down = False
        registry.delete("d1")

        assert recorder.query("d1") == []


# =============================================================================
# STORE SELECTION AND SYNC
# =============================================================================

class TestBuildStore:
    def test_no_url_means_memory(self):
        store = build_store(Settings(database_url=""))
        assert store.backend == "memory"

    def test_unreachable_database_falls_back(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing' / 'dir' / 'farm.db'}"
        store = build_store(Settings(database_url=url))
        assert store.backend == "memory"

    def test_sqlite_file(self, tmp_path):
        store = build_store(Settings(database_url=f"sqlite:///{tmp_path / 'farm.db'}"))
        assert store.backend == "sql"


class TestStorageSync:
    def test_registry_mutations_reach_the_store(self, any_store):
        notifier = ChangeNotifier()
        registry = DeviceRegistry(notifier)
        notifier.subscribe(StorageSync(any_store))

        registry.create(new_device("A", None, device_id="d1"))
        registry.create(new_device("B", None, device_id="d2"))
        registry.update("d1", {"soil_moisture": 42, "status": DeviceStatus.ONLINE})
        registry.delete("d2")

        stored = any_store.select_all_devices()
        assert [d.id for d in stored] == ["d1"]
        assert stored[0].soil_moisture == 42
        assert stored[0].status == DeviceStatus.ONLINE

    def test_reload_reproduces_registry(self, any_store):
        notifier = ChangeNotifier()
        registry = DeviceRegistry(notifier)
        notifier.subscribe(StorageSync(any_store))
        registry.create(new_device("A", "10.0.0.1", zone="indoor", device_id="d1"))
        registry.update("d1", {"temperature": 23.5, "mode": DeviceMode.MANUAL})

        reloaded = DeviceRegistry(ChangeNotifier())
        reloaded.load(any_store.select_all_devices())

        assert reloaded.list() == registry.list()

    def test_store_failure_is_logged_not_raised(self):
        class ExplodingStore:
            def insert_device(self, device):
                raise ConnectionError("down")

        notifier = ChangeNotifier()
        registry = DeviceRegistry(notifier)
        notifier.subscribe(StorageSync(ExplodingStore()))

        registry.create(new_device("A", None, device_id="d1"))
        assert registry.get("d1") is not None

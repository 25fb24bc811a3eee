"""
Durable storage for devices and sensor history.

The registry and history recorder speak in domain objects; rows on disk
use snake_case columns. SqlDeviceStore is the durable backend,
MemoryDeviceStore the non-durable fallback used when no database is
configured or the configured one cannot be reached.
"""
import copy
import logging
import threading
from collections import OrderedDict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from smartfarm.database import Base, make_session_factory, get_utc_datetime
from smartfarm.exceptions import DuplicateDevice, StorageUnavailable
from smartfarm.models.device import DeviceRecord
from smartfarm.models.sensor import SensorHistoryRecord
from smartfarm.services.history import (
    DEFAULT_MEMORY_LIMIT,
    DEFAULT_QUERY_LIMIT,
    MemoryHistory,
    SensorSample,
)
from smartfarm.services.registry import Device, zone_label_for

logger = logging.getLogger(__name__)

DEVICE_COLUMNS = (
    "id", "name", "zone", "zone_label", "ip", "status", "temperature",
    "humidity", "soil_moisture", "pump_active", "mode", "last_update",
)


def _to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    # stored as naive UTC so SQLite and Postgres compare the same way
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _to_db_time(value)
    return value


def device_to_row(device: Device) -> Dict[str, Any]:
    fields = device.fields()
    return {column: _to_db_value(fields[column]) for column in DEVICE_COLUMNS}


def fields_to_row(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - set(DEVICE_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown device columns: {sorted(unknown)}")
    return {key: _to_db_value(value) for key, value in fields.items()}


def device_from_row(row: Dict[str, Any]) -> Device:
    return Device(
        id=row["id"],
        name=row["name"],
        zone=row.get("zone") or "garden",
        zone_label=row.get("zone_label") or zone_label_for(row.get("zone")),
        ip=row.get("ip"),
        status=row.get("status") or "offline",
        temperature=row.get("temperature"),
        humidity=row.get("humidity"),
        soil_moisture=row.get("soil_moisture"),
        pump_active=bool(row.get("pump_active")),
        mode=row.get("mode") or "auto",
        last_update=_from_db_time(row.get("last_update")),
    )


def _record_to_row(record: DeviceRecord) -> Dict[str, Any]:
    return {column: getattr(record, column) for column in DEVICE_COLUMNS}


def _record_to_sample(record: SensorHistoryRecord) -> SensorSample:
    return SensorSample(
        device_id=record.device_id,
        timestamp=_from_db_time(record.recorded_at),
        temperature=record.temperature,
        humidity=record.humidity,
        soil_moisture=record.soil_moisture,
        pump_active=bool(record.pump_active),
    )


class SqlDeviceStore:
    backend = "sql"

    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine, self.SessionLocal = make_session_factory(database_url)

    def ping(self):
        """Create tables if needed and check the connection"""
        try:
            Base.metadata.create_all(bind=self.engine)
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise StorageUnavailable(str(e)) from e

    def insert_device(self, device: Device) -> Device:
        db = self.SessionLocal()
        try:
            row = device_to_row(device)
            db.add(DeviceRecord(**row, created_at=_to_db_time(get_utc_datetime())))
            db.commit()
            return device
        except IntegrityError:
            db.rollback()
            raise DuplicateDevice(device.id)
        finally:
            db.close()

    def select_all_devices(self) -> List[Device]:
        db = self.SessionLocal()
        try:
            records = db.query(DeviceRecord).order_by(DeviceRecord.created_at.asc()).all()
            return [device_from_row(_record_to_row(r)) for r in records]
        finally:
            db.close()

    def select_device_by_id(self, device_id: str) -> Optional[Device]:
        db = self.SessionLocal()
        try:
            record = db.query(DeviceRecord).filter(DeviceRecord.id == device_id).first()
            return device_from_row(_record_to_row(record)) if record else None
        finally:
            db.close()

    def update_device_fields(self, device_id: str, fields: Dict[str, Any]) -> bool:
        row = fields_to_row(fields)
        db = self.SessionLocal()
        try:
            updated = db.query(DeviceRecord).filter(DeviceRecord.id == device_id).update(row)
            db.commit()
            return updated > 0
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def delete_device(self, device_id: str) -> bool:
        db = self.SessionLocal()
        try:
            db.query(SensorHistoryRecord).filter(SensorHistoryRecord.device_id == device_id).delete()
            deleted = db.query(DeviceRecord).filter(DeviceRecord.id == device_id).delete()
            db.commit()
            return deleted > 0
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def insert_sensor_sample(self, sample: SensorSample):
        db = self.SessionLocal()
        try:
            db.add(SensorHistoryRecord(
                device_id=sample.device_id,
                temperature=sample.temperature,
                humidity=sample.humidity,
                soil_moisture=sample.soil_moisture,
                pump_active=sample.pump_active,
                recorded_at=_to_db_time(sample.timestamp),
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()

    def query_sensor_history(
        self,
        device_id: str,
        limit: int = DEFAULT_QUERY_LIMIT,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[SensorSample]:
        db = self.SessionLocal()
        try:
            query = db.query(SensorHistoryRecord).filter(SensorHistoryRecord.device_id == device_id)
            if start is not None:
                query = query.filter(SensorHistoryRecord.recorded_at >= _to_db_time(start))
            if end is not None:
                query = query.filter(SensorHistoryRecord.recorded_at <= _to_db_time(end))
            records = (
                query.order_by(SensorHistoryRecord.recorded_at.desc(), SensorHistoryRecord.id.desc())
                .limit(max(limit, 0))
                .all()
            )
            # newest-first from the database, chronological for callers
            return [_record_to_sample(r) for r in reversed(records)]
        finally:
            db.close()


class MemoryDeviceStore:
    backend = "memory"

    def __init__(self, history_limit: int = DEFAULT_MEMORY_LIMIT):
        self._rows: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        self._history = MemoryHistory(history_limit)
        self._lock = threading.Lock()

    def ping(self):
        return None

    def insert_device(self, device: Device) -> Device:
        with self._lock:
            if device.id in self._rows:
                raise DuplicateDevice(device.id)
            self._rows[device.id] = device_to_row(device)
        return device

    def select_all_devices(self) -> List[Device]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._rows.values()]
        return [device_from_row(r) for r in rows]

    def select_device_by_id(self, device_id: str) -> Optional[Device]:
        with self._lock:
            row = copy.deepcopy(self._rows.get(device_id))
        return device_from_row(row) if row else None

    def update_device_fields(self, device_id: str, fields: Dict[str, Any]) -> bool:
        row = fields_to_row(fields)
        with self._lock:
            current = self._rows.get(device_id)
            if current is None:
                return False
            current.update(row)
        return True

    def delete_device(self, device_id: str) -> bool:
        with self._lock:
            existed = self._rows.pop(device_id, None) is not None
        self._history.drop(device_id)
        return existed

    def insert_sensor_sample(self, sample: SensorSample):
        self._history.append(sample)

    def query_sensor_history(
        self,
        device_id: str,
        limit: int = DEFAULT_QUERY_LIMIT,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[SensorSample]:
        return self._history.query(device_id, limit, start, end)


def build_store(settings):
    """SQL store when configured and reachable, memory store otherwise"""
    if not settings.database_url:
        logger.warning("DATABASE_URL not configured - using in-memory storage")
        return MemoryDeviceStore(settings.history_memory_limit)

    try:
        store = SqlDeviceStore(settings.database_url)
        store.ping()
    except (StorageUnavailable, SQLAlchemyError, ImportError) as e:
        logger.warning(f"Database unavailable ({e}) - falling back to in-memory storage")
        return MemoryDeviceStore(settings.history_memory_limit)

    logger.info(f"Database connected: {store.engine.url.render_as_string(hide_password=True)}")
    return store


class StorageSync:
    """Notifier observer that mirrors registry mutations into the store"""

    def __init__(self, store):
        self.store = store

    def __call__(self, event):
        try:
            if event.kind == "added":
                self.store.insert_device(event.device)
            elif event.kind == "updated":
                if not self.store.update_device_fields(event.device.id, event.changes):
                    logger.warning(f"Store has no row for {event.device.id}, update not persisted")
            elif event.kind == "deleted":
                self.store.delete_device(event.device.id)
        except Exception as e:
            logger.error(f"Persisting {event.kind} for {event.device.id} failed: {e}")

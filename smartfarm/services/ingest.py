"""
Telemetry ingest: device message -> validated reading -> registry update
-> history sample.

Each reading is treated as the latest observation of the device, so
duplicate or reordered deliveries simply overwrite each other.
"""
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional, Union

from pydantic import ValidationError

from smartfarm.database import get_utc_datetime
from smartfarm.exceptions import DeviceNotFound, MalformedMessage
from smartfarm.schemas.sensor import StatusPayload, TelemetryPayload
from smartfarm.services.history import HistoryRecorder, SensorSample
from smartfarm.services.liveness import LastSeenTracker
from smartfarm.services.registry import Device, DeviceRegistry, DeviceStatus, status_for_pump

logger = logging.getLogger(__name__)

RawPayload = Union[bytes, str, Dict[str, Any]]


def decode_payload(raw: RawPayload) -> Dict[str, Any]:
    if isinstance(raw, dict):
        return raw
    try:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        data = json.loads(raw)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedMessage(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedMessage(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_telemetry(raw: RawPayload) -> TelemetryPayload:
    try:
        return TelemetryPayload.model_validate(decode_payload(raw))
    except ValidationError as e:
        raise MalformedMessage(str(e)) from e


class TelemetryIngest:
    def __init__(
        self,
        registry: DeviceRegistry,
        last_seen: LastSeenTracker,
        history: HistoryRecorder,
        clock: Callable[[], datetime] = get_utc_datetime,
    ):
        self.registry = registry
        self.last_seen = last_seen
        self.history = history
        self._clock = clock

    def handle_telemetry(self, device_id: str, raw: RawPayload) -> Optional[Device]:
        """Apply one reading; returns the updated device or None when discarded"""
        try:
            reading = parse_telemetry(raw)
        except MalformedMessage as e:
            logger.warning(f"Discarding malformed telemetry from {device_id}: {e}")
            return None

        if device_id not in self.registry:
            logger.debug(f"Telemetry for unregistered device {device_id} ignored")
            return None

        now = self._clock()
        self.last_seen.touch(device_id, now)

        pump_active = bool(reading.pump_active)
        soil_moisture = int(round(reading.soil_percent))
        try:
            device = self.registry.update(device_id, {
                "temperature": reading.temperature,
                "humidity": reading.humidity,
                "soil_moisture": soil_moisture,
                "pump_active": pump_active,
                "status": status_for_pump(pump_active),
            })
        except DeviceNotFound:
            # deleted after the membership check
            self.last_seen.discard(device_id)
            logger.debug(f"Telemetry for unregistered device {device_id} ignored")
            return None

        result = self.history.record(SensorSample(
            device_id=device_id,
            timestamp=now,
            temperature=reading.temperature,
            humidity=reading.humidity,
            soil_moisture=soil_moisture,
            pump_active=pump_active,
        ))
        if not result.get("success"):
            logger.debug(f"History sample for {device_id} kept in {result.get('backend')}")

        return device

    def handle_status(self, device_id: str, raw: RawPayload) -> Optional[Device]:
        """Apply a device's self-reported status"""
        try:
            payload = StatusPayload.model_validate(decode_payload(raw))
        except (MalformedMessage, ValidationError) as e:
            logger.warning(f"Discarding malformed status from {device_id}: {e}")
            return None

        patch: Dict[str, Any] = {"status": payload.status}
        if payload.status == DeviceStatus.WATERING:
            patch["pump_active"] = True
        elif payload.status == DeviceStatus.ONLINE:
            patch["pump_active"] = False

        try:
            return self.registry.update(device_id, patch)
        except DeviceNotFound:
            logger.debug(f"Status for unregistered device {device_id} ignored")
            return None

"""
Operator commands: send to the device, then record the intent in the
registry whether or not the device received it. A device that missed the
command corrects its state with its next reading.
"""
import logging
from typing import Any, Dict

from smartfarm.exceptions import DeviceNotFound
from smartfarm.services.registry import Device, DeviceMode, DeviceRegistry, status_for_pump

logger = logging.getLogger(__name__)


class CommandDispatcher:
    def __init__(self, registry: DeviceRegistry, transport):
        self.registry = registry
        self.transport = transport

    def set_pump(self, device_id: str, on: bool) -> Device:
        device = self._require(device_id)
        self._send(device, {"pump": bool(on)})
        logger.info(f"Pump {'on' if on else 'off'} for {device.name} ({device_id})")
        return self.registry.update(device_id, {
            "pump_active": bool(on),
            "status": status_for_pump(bool(on)),
        })

    def set_mode(self, device_id: str, mode) -> Device:
        mode = DeviceMode(mode)
        device = self._require(device_id)
        self._send(device, {"mode": mode.value})
        logger.info(f"Mode {mode.value} for {device.name} ({device_id})")
        return self.registry.update(device_id, {"mode": mode})

    def _require(self, device_id: str) -> Device:
        device = self.registry.get(device_id)
        if device is None:
            raise DeviceNotFound(device_id)
        return device

    def _send(self, device: Device, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            result = self.transport.publish_command(device.id, payload)
        except Exception as e:
            logger.error(f"Command {payload} to {device.id} failed: {e}")
            return {"success": False, "error": str(e)}
        if not result.get("success"):
            logger.warning(f"Command {payload} to {device.id} not delivered: {result.get('error')}")
        return result

from .device import DeviceCreate, DeviceUpdate, PumpCommand, ModeCommand
from .sensor import TelemetryPayload, StatusPayload

__all__ = [
    "DeviceCreate",
    "DeviceUpdate",
    "PumpCommand",
    "ModeCommand",
    "TelemetryPayload",
    "StatusPayload",
]

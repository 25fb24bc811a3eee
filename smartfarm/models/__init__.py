from smartfarm.database import Base
from .device import DeviceRecord
from .sensor import SensorHistoryRecord

__all__ = [
    "Base",
    "DeviceRecord",
    "SensorHistoryRecord",
]

"""
Initial data
Registers the default device when the registry is empty
"""
import logging

from smartfarm.exceptions import DuplicateDevice
from smartfarm.services.registry import Device, DeviceRegistry, DeviceStatus, zone_label_for

logger = logging.getLogger(__name__)

DEFAULT_DEVICE_ID = "device_001"

def init_database(registry: DeviceRegistry):
    """Seed the default device on first start"""
    if len(registry) > 0:
        logger.info("Registry already initialized")
        return None

    device = Device(
        id=DEFAULT_DEVICE_ID,
        name="Front Garden",
        zone="garden",
        zone_label=zone_label_for("garden"),
        ip="192.168.0.110",
        status=DeviceStatus.OFFLINE,
    )
    try:
        created = registry.create(device)
    except DuplicateDevice:
        return None
    logger.info(f"Default device {created.id} registered")
    return created

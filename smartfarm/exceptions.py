class GatewayError(Exception):
    """Base class for gateway errors"""


class DeviceNotFound(GatewayError):
    def __init__(self, device_id: str):
        super().__init__(f"Device not found: {device_id}")
        self.device_id = device_id


class DuplicateDevice(GatewayError):
    def __init__(self, device_id: str):
        super().__init__(f"Device already exists: {device_id}")
        self.device_id = device_id


class MalformedMessage(GatewayError):
    """Inbound device message that cannot be decoded or validated"""


class StorageUnavailable(GatewayError):
    """Durable store cannot be reached"""


class TransportUnavailable(GatewayError):
    """Device transport (MQTT broker) cannot be reached"""

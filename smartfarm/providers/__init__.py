from .mqtt_provider import MqttProvider

__all__ = [
    "MqttProvider"
]

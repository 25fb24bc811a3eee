import json
import logging
import time
from typing import Dict, Any, Optional
from urllib.parse import urlparse

import paho.mqtt.client as mqtt

from smartfarm.database import get_utc_datetime
from smartfarm.exceptions import TransportUnavailable

logger = logging.getLogger(__name__)

DATA_TOPIC = "data"
STATUS_TOPIC = "status"
COMMAND_TOPIC = "command"

class MqttProvider:
    """Device transport over MQTT using paho-mqtt"""

    def __init__(
        self,
        broker_url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        topic_prefix: str = "smartfarm",
        client_id: str = "smartfarm-gateway",
    ):
        self.broker_url = broker_url
        self.username = username
        self.password = password
        self.topic_prefix = topic_prefix.strip("/")
        self.client_id = f"{client_id}-{int(time.time())}"

        self._client: Optional[mqtt.Client] = None
        self._connected = False
        self._ingest = None

        self.mock_mode = not broker_url

        if self.mock_mode:
            logger.warning("MQTT provider running in MOCK MODE - broker not configured")
        else:
            parsed = urlparse(broker_url if "://" in broker_url else f"mqtt://{broker_url}")
            self.tls = parsed.scheme in ("mqtts", "ssl")
            self.host = parsed.hostname or "localhost"
            self.port = parsed.port or (8883 if self.tls else 1883)

    def set_ingest(self, ingest):
        """Inbound messages are handed to this TelemetryIngest"""
        self._ingest = ingest

    def topic_for(self, device_id: str, kind: str) -> str:
        return f"{self.topic_prefix}/{device_id}/{kind}"

    def parse_topic(self, topic: str):
        """'<prefix>/<device-id>/<kind>' -> (device_id, kind), or None"""
        prefix = f"{self.topic_prefix}/"
        if not topic.startswith(prefix):
            return None
        parts = topic[len(prefix):].split("/")
        if len(parts) != 2 or not parts[0]:
            return None
        return parts[0], parts[1]

    def connect(self) -> bool:
        """Start the network loop; connection and reconnection happen in the background"""
        if self.mock_mode:
            return False

        try:
            self._client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=self.client_id,
                protocol=mqtt.MQTTv311,
            )
            self._client.on_connect = self._on_connect
            self._client.on_disconnect = self._on_disconnect
            self._client.on_message = self._on_message

            if self.username:
                self._client.username_pw_set(self.username, self.password or None)
            if self.tls:
                self._client.tls_set()

            self._client.reconnect_delay_set(min_delay=1, max_delay=30)
            logger.info(f"Connecting to MQTT broker {self.host}:{self.port}")
            self._client.connect_async(self.host, self.port, keepalive=60)
            self._client.loop_start()
            return True

        except Exception as e:
            logger.error(f"MQTT connection setup failed: {str(e)}")
            return False

    def disconnect(self):
        if self._client:
            try:
                self._client.disconnect()
                self._client.loop_stop()
            except Exception as e:
                logger.warning(f"MQTT disconnect error: {str(e)}")
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    def publish_command(self, device_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Fire-and-forget command to one device"""
        topic = self.topic_for(device_id, COMMAND_TOPIC)

        if self.mock_mode:
            logger.info(f"MOCK: would publish {payload} to {topic}")
            return {
                "success": True,
                "mock": True,
                "topic": topic,
                "payload": payload,
                "timestamp": get_utc_datetime().isoformat()
            }

        try:
            self._ensure_connected()
            info = self._client.publish(topic, json.dumps(payload), qos=0)
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                return {"success": False, "topic": topic, "error": mqtt.error_string(info.rc)}
            logger.info(f"MQTT: sent {payload} to {topic}")
            return {
                "success": True,
                "topic": topic,
                "payload": payload,
                "timestamp": get_utc_datetime().isoformat()
            }

        except TransportUnavailable as e:
            return {"success": False, "topic": topic, "error": str(e)}
        except Exception as e:
            logger.error(f"Error publishing to {topic}: {str(e)}")
            return {"success": False, "topic": topic, "error": str(e)}

    def dispatch(self, topic: str, payload: bytes):
        """Route one inbound message to the ingest pipeline"""
        route = self.parse_topic(topic)
        if route is None:
            logger.debug(f"Ignoring message on unexpected topic {topic}")
            return
        if self._ingest is None:
            logger.warning(f"No ingest pipeline bound, dropping message on {topic}")
            return

        device_id, kind = route
        if kind == DATA_TOPIC:
            self._ingest.handle_telemetry(device_id, payload)
        elif kind == STATUS_TOPIC:
            self._ingest.handle_status(device_id, payload)
        else:
            logger.debug(f"Ignoring {kind} message from {device_id}")

    def health_check(self) -> Dict[str, Any]:
        return {
            "provider": "MqttProvider",
            "mock_mode": self.mock_mode,
            "connected": self._connected,
            "broker": None if self.mock_mode else f"{self.host}:{self.port}",
            "timestamp": get_utc_datetime().isoformat()
        }

    def _ensure_connected(self):
        if self._client is None or not self._connected:
            raise TransportUnavailable("not connected to MQTT broker")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code.is_failure:
            self._connected = False
            logger.error(f"MQTT connection refused: {reason_code}")
            return

        self._connected = True
        logger.info("MQTT connected")
        # subscriptions do not survive a reconnect with a clean session
        for kind in (DATA_TOPIC, STATUS_TOPIC):
            topic = self.topic_for("+", kind)
            client.subscribe(topic, qos=0)
            logger.info(f"Subscribed to {topic}")

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self._connected = False
        logger.warning(f"MQTT disconnected ({reason_code})")

    def _on_message(self, client, userdata, msg):
        try:
            self.dispatch(msg.topic, msg.payload)
        except Exception as e:
            logger.exception(f"Error handling MQTT message on {msg.topic}: {e}")

"""
Real-time fan-out to dashboard clients (Server-Sent Events).

Each connected client is one notifier observer. It starts with a full
snapshot of the registry and then receives every later change; a client
that was not connected when a change happened never sees it.
"""
import asyncio
import json
import logging
import threading
from typing import Any, Dict, List, Optional

from smartfarm.services.notifier import ChangeEvent
from smartfarm.services.registry import Device, DeviceRegistry

logger = logging.getLogger(__name__)

EVENT_NAMES = {
    "added": "deviceAdded",
    "updated": "deviceUpdate",
    "deleted": "deviceDeleted",
}
INITIAL_SNAPSHOT = "initialData"
MAX_PENDING_MESSAGES = 1000


def event_message(event: ChangeEvent) -> Dict[str, Any]:
    if event.kind == "deleted":
        data = {"id": event.device.id}
    else:
        data = event.device.to_dict()
    return {"type": EVENT_NAMES[event.kind], "data": data}


def snapshot_message(devices: List[Device]) -> Dict[str, Any]:
    return {"type": INITIAL_SNAPSHOT, "data": {"devices": [d.to_dict() for d in devices]}}


def format_sse(message: Dict[str, Any]) -> str:
    return f"data: {json.dumps(message)}\n\n"


class RealtimeClient:
    def __init__(self, loop: asyncio.AbstractEventLoop, max_pending: int = MAX_PENDING_MESSAGES):
        self.loop = loop
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.unsubscribe = None

    def __call__(self, event: ChangeEvent):
        self.send(event_message(event))

    def send(self, message: Dict[str, Any]):
        """Thread-safe hand-off into the client's event loop"""
        try:
            self.loop.call_soon_threadsafe(self._put, message)
        except RuntimeError:
            logger.debug("Realtime client loop closed, message dropped")

    def _put(self, message: Dict[str, Any]):
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(f"Realtime client too slow, dropping {message.get('type')}")


class RealtimeHub:
    def __init__(self, registry: DeviceRegistry):
        self.registry = registry
        self._clients = set()
        self._lock = threading.Lock()

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def connect(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> RealtimeClient:
        """Register a client; its queue already holds the initial snapshot"""
        client = RealtimeClient(loop or asyncio.get_running_loop())
        devices, client.unsubscribe = self.registry.subscribe_with_snapshot(client)
        client.queue.put_nowait(snapshot_message(devices))
        with self._lock:
            self._clients.add(client)
        logger.info(f"Realtime client connected ({self.client_count} total)")
        return client

    def disconnect(self, client: RealtimeClient):
        if client.unsubscribe:
            client.unsubscribe()
        with self._lock:
            self._clients.discard(client)
        logger.info(f"Realtime client disconnected ({self.client_count} total)")

"""
Wiring of the state reconciliation engine: one instance of every
component, passed explicitly to whatever needs it.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict

from apscheduler.schedulers.background import BackgroundScheduler

from smartfarm.database import Settings, get_utc_datetime
from smartfarm.init_db import init_database
from smartfarm.providers.mqtt_provider import MqttProvider
from smartfarm.services.commands import CommandDispatcher
from smartfarm.services.history import HistoryRecorder
from smartfarm.services.ingest import TelemetryIngest
from smartfarm.services.liveness import LastSeenTracker, LivenessMonitor
from smartfarm.services.notifier import ChangeNotifier
from smartfarm.services.realtime import RealtimeHub
from smartfarm.services.registry import DeviceRegistry
from smartfarm.services.scheduler import start_scheduler, stop_scheduler
from smartfarm.services.storage import StorageSync, build_store

logger = logging.getLogger(__name__)


class Gateway:
    def __init__(
        self,
        settings: Settings,
        store=None,
        transport=None,
        clock: Callable[[], datetime] = get_utc_datetime,
    ):
        self.settings = settings
        self.store = store if store is not None else build_store(settings)
        self.transport = transport if transport is not None else MqttProvider(
            settings.mqtt_broker,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            topic_prefix=settings.mqtt_topic_prefix,
        )

        self.notifier = ChangeNotifier()
        self.registry = DeviceRegistry(self.notifier, clock=clock)
        self.registry.load(self.store.select_all_devices())
        self.notifier.subscribe(StorageSync(self.store))

        self.last_seen = LastSeenTracker()
        self.notifier.subscribe(self.last_seen.on_change)
        self.history = HistoryRecorder(self.store, memory_limit=settings.history_memory_limit)
        self.notifier.subscribe(self.history.on_change)
        self.ingest = TelemetryIngest(self.registry, self.last_seen, self.history, clock=clock)
        self.commands = CommandDispatcher(self.registry, self.transport)
        self.liveness = LivenessMonitor(
            self.registry,
            self.last_seen,
            timeout_seconds=settings.offline_timeout_seconds,
            clock=clock,
        )
        self.realtime = RealtimeHub(self.registry)
        self.scheduler = BackgroundScheduler()

        self.transport.set_ingest(self.ingest)

    def start(self):
        if self.settings.seed_default_device:
            init_database(self.registry)
        self.transport.connect()
        start_scheduler(self.scheduler, self.liveness, self.settings.liveness_interval_seconds)
        logger.info(f"Gateway started (storage: {self.store.backend}, devices: {len(self.registry)})")

    def stop(self):
        stop_scheduler(self.scheduler)
        self.transport.disconnect()
        logger.info("Gateway stopped")

    def health(self) -> Dict[str, Any]:
        return {
            "storage": self.store.backend,
            "devices": len(self.registry),
            "realtime_clients": self.realtime.client_count,
            "scheduler_running": self.scheduler.running,
            "transport": self.transport.health_check(),
        }

"""
Change fan-out: every registry mutation reaches every observer that was
connected when the mutation happened, once, in mutation order.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable, Deque, Dict, List, Tuple

if TYPE_CHECKING:
    from smartfarm.services.registry import Device

logger = logging.getLogger(__name__)

EVENT_KINDS = ("added", "updated", "deleted")


@dataclass
class ChangeEvent:
    kind: str
    device: "Device"
    changes: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.kind not in EVENT_KINDS:
            raise ValueError(f"Unknown event kind: {self.kind}")


Observer = Callable[[ChangeEvent], None]


class ChangeNotifier:
    def __init__(self):
        self._observers: List[Observer] = []
        self._observers_lock = threading.Lock()
        self._pending: Deque[Tuple[ChangeEvent, Tuple[Observer, ...]]] = deque()
        self._dispatch_lock = threading.Lock()

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        with self._observers_lock:
            self._observers.append(observer)
        return lambda: self.unsubscribe(observer)

    def unsubscribe(self, observer: Observer):
        with self._observers_lock:
            if observer in self._observers:
                self._observers.remove(observer)

    @property
    def observer_count(self) -> int:
        with self._observers_lock:
            return len(self._observers)

    def publish(self, event: ChangeEvent):
        """Queue an event for the observers connected right now (never blocks on I/O)"""
        with self._observers_lock:
            audience = tuple(self._observers)
        self._pending.append((event, audience))

    def flush(self):
        """
        Deliver queued events. Only one thread drains at a time; a caller
        that finds the queue already being drained returns immediately and
        the active drainer picks its events up.
        """
        while True:
            if not self._dispatch_lock.acquire(blocking=False):
                return
            try:
                while self._pending:
                    event, audience = self._pending.popleft()
                    self._deliver(event, audience)
            finally:
                self._dispatch_lock.release()
            # an event queued between the last popleft and the release
            if not self._pending:
                return

    def _deliver(self, event: ChangeEvent, audience: Tuple[Observer, ...]):
        for observer in audience:
            try:
                observer(event)
            except Exception as e:
                logger.exception(f"Observer {observer!r} failed on {event.kind} for {event.device.id}: {e}")

"""
Observer registry for driver events (presentations, accepts, toasts, ...).
"""
import logging
from typing import Callable, Generic, Optional, TypeVar

from dispatch_client.schemas.schemas import DriverEvent, EventType

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Subscription:
    def __init__(self, on_cancel: Callable[[], None]) -> None:
        self._on_cancel: Optional[Callable[[], None]] = on_cancel

    @property
    def active(self) -> bool:
        return self._on_cancel is not None

    def unsubscribe(self) -> None:
        on_cancel, self._on_cancel = self._on_cancel, None
        if on_cancel is not None:
            on_cancel()


class Observers(Generic[T]):
    """Ordered callback list with deterministic unsubscribe."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._callbacks: list[tuple[int, Callable[[T], None]]] = []
        self._next_id = 0

    def __len__(self) -> int:
        return len(self._callbacks)

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        key = self._next_id
        self._next_id += 1
        self._callbacks.append((key, callback))
        return Subscription(lambda: self._remove(key))

    def _remove(self, key: int) -> None:
        self._callbacks = [(k, cb) for k, cb in self._callbacks if k != key]

    def notify(self, value: T) -> None:
        # Snapshot so callbacks may unsubscribe while being notified
        for _, callback in list(self._callbacks):
            try:
                callback(value)
            except Exception:
                logger.exception("%s observer failed", self.name)


class EventBus(Observers[DriverEvent]):
    def __init__(self) -> None:
        super().__init__("event")

    def publish(self, event: DriverEvent) -> None:
        logger.debug("Event %s driver=%s request=%s", event.type.value, event.driver_id, event.request_id)
        self.notify(event)

    def toast(self, driver_id: str, message: str, kind: str = "info") -> None:
        self.publish(
            DriverEvent(type=EventType.toast, driver_id=driver_id, message=message, payload={"kind": kind})
        )

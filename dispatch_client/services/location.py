"""
Device location access.

The source is whatever feeds positions to the client (the app shell, a GPS
bridge, a simulator); LocationService wraps it with permission checks and
observer subscriptions and has an explicit initialize/teardown lifecycle.
"""
import logging
from typing import Callable, Optional, Protocol

from dispatch_client.schemas.schemas import Location
from dispatch_client.services.events import Observers, Subscription
from dispatch_client.services.exceptions import LocationUnavailable, PermissionDenied

logger = logging.getLogger(__name__)

LocationCallback = Callable[[Location], None]


class LocationSource(Protocol):
    async def request_permission(self) -> bool: ...

    async def current_position(self) -> Location: ...

    def start_watch(self, callback: LocationCallback) -> None: ...

    def stop_watch(self) -> None: ...


class PushLocationSource:
    """Source fed by the presentation layer, one sample at a time."""

    def __init__(self, permission_granted: bool = True, initial: Optional[Location] = None) -> None:
        self.permission_granted = permission_granted
        self._latest = initial
        self._callback: Optional[LocationCallback] = None

    async def request_permission(self) -> bool:
        return self.permission_granted

    async def current_position(self) -> Location:
        if self._latest is None:
            raise LocationUnavailable("No position reported yet; share your location and try again.")
        return self._latest

    def start_watch(self, callback: LocationCallback) -> None:
        self._callback = callback

    def stop_watch(self) -> None:
        self._callback = None

    @property
    def watching(self) -> bool:
        return self._callback is not None

    def push(self, sample: Location) -> None:
        self._latest = sample
        if self._callback is not None:
            self._callback(sample)


class LocationService:
    def __init__(self, source: LocationSource) -> None:
        self.source = source
        self.current_location: Optional[Location] = None
        self._observers: Observers[Location] = Observers("location")
        self._initialized = False

    def initialize(self) -> None:
        self._initialized = True

    def teardown(self) -> None:
        if self._observers:
            self.source.stop_watch()
        self._observers = Observers("location")
        self._initialized = False

    @property
    def watching(self) -> bool:
        return len(self._observers) > 0

    async def ensure_permission(self) -> None:
        if not await self.source.request_permission():
            logger.warning("Location permission denied")
            raise PermissionDenied("Location permission is required to go online.")

    async def get_current_position(self) -> Location:
        await self.ensure_permission()
        self.current_location = await self.source.current_position()
        return self.current_location

    def watch(self, callback: LocationCallback) -> Subscription:
        if not self._initialized:
            self.initialize()
        first = not self._observers
        inner = self._observers.subscribe(callback)
        if first:
            self.source.start_watch(self._on_sample)
            logger.info("Location tracking started")

        def _cancel() -> None:
            inner.unsubscribe()
            if not self._observers:
                self.source.stop_watch()
                logger.info("Location tracking stopped")

        return Subscription(_cancel)

    def _on_sample(self, sample: Location) -> None:
        self.current_location = sample
        self._observers.notify(sample)

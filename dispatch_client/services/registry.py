"""
One SessionController per driver for the lifetime of the process.
"""
import logging
from typing import Optional

from dispatch_client.config import Settings, get_settings
from dispatch_client.services.backend import BackendAPI
from dispatch_client.services.declines import DeclineLedger, InMemoryDeclineLedger
from dispatch_client.services.events import EventBus
from dispatch_client.services.location import LocationService, PushLocationSource
from dispatch_client.services.session import SessionController
from dispatch_client.services.timers import Clock, SystemClock

logger = logging.getLogger(__name__)


class DriverRegistry:
    def __init__(
        self,
        backend: BackendAPI,
        *,
        settings: Optional[Settings] = None,
        clock: Optional[Clock] = None,
        ledger: Optional[DeclineLedger] = None,
        events: Optional[EventBus] = None,
    ) -> None:
        self.backend = backend
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.ledger = ledger or InMemoryDeclineLedger(self.clock, self.settings.decline_dedup_seconds)
        self.events = events or EventBus()
        self._controllers: dict[str, SessionController] = {}
        self._sources: dict[str, PushLocationSource] = {}

    def __len__(self) -> int:
        return len(self._controllers)

    def get(self, driver_id: str) -> SessionController:
        controller = self._controllers.get(driver_id)
        if controller is None:
            source = PushLocationSource()
            location = LocationService(source)
            location.initialize()
            controller = SessionController(
                driver_id,
                self.backend,
                location,
                clock=self.clock,
                settings=self.settings,
                events=self.events,
                ledger=self.ledger,
            )
            self._controllers[driver_id] = controller
            self._sources[driver_id] = source
            logger.info("Created session controller for driver=%s", driver_id)
        return controller

    def source(self, driver_id: str) -> PushLocationSource:
        self.get(driver_id)
        return self._sources[driver_id]

    async def teardown(self) -> None:
        for controller in self._controllers.values():
            await controller.teardown()
            controller.location.teardown()
        self._controllers.clear()
        self._sources.clear()

"""
Periodic retrieval of available pickup requests while the driver is online.
"""
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from dispatch_client.config import Settings
from dispatch_client.schemas.schemas import PickupRequest
from dispatch_client.services.backend import BackendAPI
from dispatch_client.services.exceptions import NotOnline
from dispatch_client.services.timers import Clock, PeriodicTimer

if TYPE_CHECKING:
    from dispatch_client.services.session import SessionController

logger = logging.getLogger(__name__)


class RequestPoller:
    def __init__(
        self,
        session: "SessionController",
        backend: BackendAPI,
        clock: Clock,
        settings: Settings,
    ) -> None:
        self._session = session
        self._backend = backend
        self._clock = clock
        self._settings = settings
        self._timer: Optional[PeriodicTimer] = None
        self.last_refresh_at: Optional[datetime] = None
        self.refresh_error: Optional[str] = None

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.running

    def start(self) -> None:
        """Run one cycle right away, then every poll_interval_seconds."""
        if self.running:
            return
        self._timer = PeriodicTimer(
            self._clock,
            self._settings.poll_interval_seconds,
            self.run_cycle,
            name=f"poller:{self._session.driver_id}",
            immediate=True,
        )
        self._timer.start()
        logger.info("Request polling started for driver=%s", self._session.driver_id)

    def stop(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        logger.info("Request polling stopped for driver=%s", self._session.driver_id)

    async def sweep_expired(self) -> int:
        """Advisory expiry sweep; failures are logged and reported as 0."""
        try:
            expired = await self._backend.check_expired_requests()
        except Exception as exc:
            logger.error("Error checking expired requests: %s", exc)
            return 0
        if expired > 0:
            logger.info("Reset %d expired requests", expired)
        return expired

    async def poll_once(self) -> list[PickupRequest]:
        """
        Fetches available requests and replaces the candidate queue with them.
        Raises on backend failure; the queue is left untouched in that case.
        """
        if not self._session.is_online:
            raise NotOnline(f"Driver {self._session.driver_id} is offline")
        session_id = self._session.session_id
        requests = await self._backend.get_available_requests()
        await self._session.replace_candidates(requests, session_id)
        self.last_refresh_at = datetime.now(timezone.utc)
        self.refresh_error = None
        logger.info("Loaded %d available requests", len(requests))
        return requests

    async def run_cycle(self) -> None:
        if not self._session.is_online:
            logger.warning("Skipping poll for offline driver=%s", self._session.driver_id)
            return
        session_id = self._session.session_id
        await self.sweep_expired()
        if self._session.session_id != session_id:
            return
        try:
            await self.poll_once()
        except Exception as exc:
            logger.error("Error loading requests: %s", exc)
            self.refresh_error = "Could not load available requests"

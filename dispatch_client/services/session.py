"""
Driver session controller.

Single owner of a driver's DriverSession and candidate queue. Going online
is the only thing that starts the location watch and the request poller;
going offline stops both along with any presentation, relay and job monitor.
"""
import asyncio
import logging
from typing import Optional

from dispatch_client.config import Settings, get_settings
from dispatch_client.schemas.schemas import (
    DriverEvent,
    DriverSession,
    DriverStateResponse,
    EventType,
    Location,
    PickupRequest,
    RequestStatusEnum,
)
from dispatch_client.services.backend import BackendAPI
from dispatch_client.services.declines import DeclineLedger, InMemoryDeclineLedger
from dispatch_client.services.events import EventBus, Subscription
from dispatch_client.services.exceptions import LocationUnavailable, NotOnline, PermissionDenied
from dispatch_client.services.geo import should_emit_heartbeat
from dispatch_client.services.job_monitor import JobStatusMonitor
from dispatch_client.services.location import LocationService
from dispatch_client.services.poller import RequestPoller
from dispatch_client.services.presenter import IncomingRequestPresenter
from dispatch_client.services.relay import ActiveJobRelay
from dispatch_client.services.timers import BackgroundTasks, Clock, SystemClock

logger = logging.getLogger(__name__)


class SessionController:
    def __init__(
        self,
        driver_id: str,
        backend: BackendAPI,
        location: LocationService,
        *,
        clock: Optional[Clock] = None,
        settings: Optional[Settings] = None,
        events: Optional[EventBus] = None,
        ledger: Optional[DeclineLedger] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.clock = clock or SystemClock()
        self.backend = backend
        self.location = location
        self.events = events or EventBus()
        self.ledger = ledger or InMemoryDeclineLedger(self.clock, self.settings.decline_dedup_seconds)

        self.session = DriverSession(driver_id=driver_id)
        self.loading = False
        self.error: Optional[str] = None
        self._candidates: list[PickupRequest] = []
        self._watch: Optional[Subscription] = None
        self._heartbeats = BackgroundTasks()
        self._online_lock = asyncio.Lock()
        # bumped by every go_offline; a registration started under an older value is discarded
        self._generation = 0

        self.relay = ActiveJobRelay(backend)
        self.poller = RequestPoller(self, backend, self.clock, self.settings)
        self.presenter = IncomingRequestPresenter(
            self, backend, self.clock, self.settings, self.events, self.ledger
        )
        self.job_monitor = JobStatusMonitor(backend, self.clock, self.settings, self._on_job_ended)

    # ------------------------------------------------------------------
    # Session state
    # ------------------------------------------------------------------

    @property
    def driver_id(self) -> str:
        return self.session.driver_id

    @property
    def session_id(self) -> Optional[str]:
        return self.session.session_id

    @property
    def is_online(self) -> bool:
        return self.session.is_online

    @property
    def has_active_job(self) -> bool:
        return self.relay.active

    @property
    def watching_location(self) -> bool:
        return self._watch is not None

    def snapshot(self) -> DriverStateResponse:
        return DriverStateResponse(
            driver_id=self.driver_id,
            is_online=self.is_online,
            session_id=self.session_id,
            loading=self.loading,
            error=self.error,
            refresh_error=self.poller.refresh_error,
            last_refresh_at=self.poller.last_refresh_at,
            candidate_count=len(self._candidates),
            presentation=self.presenter.view(),
            active_job_id=self.relay.job_id,
        )

    # ------------------------------------------------------------------
    # Online / offline
    # ------------------------------------------------------------------

    async def go_online(self) -> str:
        """
        Registers the driver with the backend and starts tracking + polling.
        PermissionDenied and backend errors propagate; state stays offline.

        Concurrent calls are serialized; a caller that finds the driver
        already online gets the existing session. A go_offline issued while
        registration is in flight wins: the new session is deregistered and
        NotOnline is raised.
        """
        generation = self._generation
        async with self._online_lock:
            if self.is_online:
                return self.session.session_id
            self._check_not_superseded(generation)
            self.loading = True
            self.error = None
            try:
                position = await self.location.get_current_position()
                self._check_not_superseded(generation)
                session_id = await self.backend.set_driver_online(self.driver_id, position)
            except NotOnline:
                raise
            except (PermissionDenied, LocationUnavailable) as exc:
                self.error = str(exc)
                raise
            except Exception as exc:
                logger.error("Error going online driver=%s: %s", self.driver_id, exc)
                self.error = "Could not go online. Please try again."
                raise
            finally:
                self.loading = False

            if generation != self._generation:
                logger.info(
                    "Driver %s went offline during registration; discarding session %s",
                    self.driver_id, session_id,
                )
                await self._deregister_quietly()
                raise NotOnline("Went offline before the session was registered")

            self.session.session_id = session_id
            self.session.is_online = True
            self.session.last_location = position
            self.session.last_heartbeat_at = None
            self._start_tracking()
            logger.info("Driver %s is now online with session %s", self.driver_id, session_id)
            self.events.publish(
                DriverEvent(type=EventType.went_online, driver_id=self.driver_id, payload={"session_id": session_id})
            )
            return session_id

    def _check_not_superseded(self, generation: int) -> None:
        if generation != self._generation:
            raise NotOnline("Went offline before the session was registered")

    async def _deregister_quietly(self) -> None:
        try:
            await self.backend.set_driver_offline(self.driver_id)
        except Exception as exc:
            logger.error("Error discarding session for driver=%s: %s", self.driver_id, exc)

    async def go_offline(self) -> None:
        """
        Offline is locally authoritative: a failed backend deregistration is
        logged and recorded in `error` but the driver still ends up offline.
        """
        self._generation += 1
        if not self.is_online:
            self._stop_tracking()
            return
        self.loading = True
        # Stop everything first so no tick runs while we wait on the backend
        self.session.is_online = False
        self.session.session_id = None
        self._stop_tracking()
        try:
            await self.backend.set_driver_offline(self.driver_id)
            self.error = None
        except Exception as exc:
            logger.error("Error going offline driver=%s: %s", self.driver_id, exc)
            self.error = "Could not reach the server; you are offline on this device."
        finally:
            self.loading = False
        if self.is_online:
            # a newer session started while deregistering; its state is not ours to clear
            logger.info("Driver %s went online again before offline completed", self.driver_id)
            return
        self._candidates = []
        try:
            await self.ledger.clear(self.driver_id)
        except Exception as exc:
            logger.error("Failed to clear declines for driver=%s: %s", self.driver_id, exc)
        logger.info("Driver %s is now offline", self.driver_id)
        self.events.publish(DriverEvent(type=EventType.went_offline, driver_id=self.driver_id))

    def _start_tracking(self) -> None:
        if self._watch is None:
            self._watch = self.location.watch(self.on_location_sample)
        self.poller.start()

    def _stop_tracking(self) -> None:
        if self._watch is not None:
            self._watch.unsubscribe()
            self._watch = None
        self.poller.stop()
        self.presenter.stop()
        self.job_monitor.stop()
        self.relay.stop()
        self._heartbeats.cancel_all()

    async def teardown(self) -> None:
        """Local shutdown without talking to the backend."""
        self._generation += 1
        self.session.is_online = False
        self.session.session_id = None
        self._stop_tracking()
        self._candidates = []

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    def on_location_sample(self, location: Location) -> None:
        """
        Applied synchronously in arrival order, so each heartbeat decision
        compares against the sample applied just before it.
        """
        previous = self.session.last_location
        self.session.last_location = location
        if self.is_online:
            now = self.clock.now_ms()
            if should_emit_heartbeat(
                previous,
                location,
                self.session.last_heartbeat_at,
                now,
                interval_ms=self.settings.heartbeat_interval_ms,
                min_move_meters=self.settings.heartbeat_min_move_meters,
            ):
                self.session.last_heartbeat_at = now
                self._heartbeats.spawn(self._send_heartbeat(location), name=f"heartbeat:{self.driver_id}")
        self.relay.on_location_sample(self.relay.job_id, location)

    async def _send_heartbeat(self, location: Location) -> None:
        try:
            await self.backend.update_driver_heartbeat(self.driver_id, location)
        except Exception as exc:
            logger.error("Error updating heartbeat for driver=%s: %s", self.driver_id, exc)

    # ------------------------------------------------------------------
    # Candidate queue
    # ------------------------------------------------------------------

    @property
    def candidates(self) -> list[PickupRequest]:
        return list(self._candidates)

    @property
    def head(self) -> Optional[PickupRequest]:
        return self._candidates[0] if self._candidates else None

    def find_candidate(self, request_id: str) -> Optional[PickupRequest]:
        return next((r for r in self._candidates if r.id == request_id), None)

    async def replace_candidates(self, requests: list[PickupRequest], session_id: Optional[str]) -> bool:
        """
        Replaces the queue wholesale with a poll result, dropping requests
        this driver declined. Results from a stale session are discarded.
        """
        if session_id is None or session_id != self.session_id:
            logger.warning("Discarding poll result for stale session of driver=%s", self.driver_id)
            return False
        fresh = []
        for request in requests:
            if await self.ledger.is_suppressed(self.driver_id, request.id):
                continue
            fresh.append(request)
        if session_id != self.session_id:
            return False
        self._candidates = fresh
        self.presenter.on_queue_changed()
        return True

    def remove_candidate(self, request_id: str) -> None:
        self._candidates = [r for r in self._candidates if r.id != request_id]

    # ------------------------------------------------------------------
    # Active job
    # ------------------------------------------------------------------

    def start_job(self, request: PickupRequest) -> None:
        self.presenter.stop()
        self.relay.start(request.id)
        self.job_monitor.start(request.id)

    async def finish_job(self) -> Optional[str]:
        job_id = self.relay.job_id
        if job_id is None:
            return None
        self.job_monitor.stop()
        self.relay.stop()
        logger.info("Driver %s finished job %s", self.driver_id, job_id)
        self.events.publish(DriverEvent(type=EventType.job_finished, driver_id=self.driver_id, request_id=job_id))
        self.presenter.on_queue_changed()
        return job_id

    async def _on_job_ended(self, job_id: str, request: PickupRequest) -> None:
        if self.relay.job_id != job_id:
            return
        self.relay.stop()
        if request.status == RequestStatusEnum.cancelled:
            logger.info("Order %s was cancelled by the customer", job_id)
            self.events.publish(
                DriverEvent(type=EventType.job_cancelled, driver_id=self.driver_id, request_id=job_id)
            )
            self.events.toast(self.driver_id, "The customer has cancelled this order.", kind="warning")
        else:
            self.events.publish(
                DriverEvent(
                    type=EventType.job_finished,
                    driver_id=self.driver_id,
                    request_id=job_id,
                    payload={"status": request.status.value},
                )
            )
        self.presenter.on_queue_changed()

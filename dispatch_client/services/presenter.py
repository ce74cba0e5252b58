"""
Incoming request presenter.

Shows one candidate at a time with a countdown, Uber style:

    idle --(queue non-empty, online, 1s debounce)--> presenting(head, 120)
    presenting --(tick)--> presenting(t - 1)
    presenting --(t == 0 | decline)--> idle --(2s)--> presenting(next head)
    presenting --(accept)--> idle, job handed to the location relay

Only one countdown exists at a time and poll results never interrupt the
request currently on screen.
"""
import logging
from typing import TYPE_CHECKING, Optional

from dispatch_client.config import Settings
from dispatch_client.schemas.schemas import (
    AcceptRideResponse,
    DeclineReason,
    DriverEvent,
    EventType,
    PickupRequest,
    PresentationView,
    PresenterStateEnum,
)
from dispatch_client.services.backend import BackendAPI
from dispatch_client.services.declines import DeclineLedger
from dispatch_client.services.events import EventBus
from dispatch_client.services.exceptions import (
    AlreadyTaken,
    NoActivePresentation,
    NotOnline,
    RequestNotFound,
)
from dispatch_client.services.timers import Clock, DelayedCall, PeriodicTimer

if TYPE_CHECKING:
    from dispatch_client.services.session import SessionController

logger = logging.getLogger(__name__)

_DEBOUNCE = "debounce"
_NEXT_AFTER_DECLINE = "next"


class IncomingRequestPresenter:
    def __init__(
        self,
        session: "SessionController",
        backend: BackendAPI,
        clock: Clock,
        settings: Settings,
        events: EventBus,
        ledger: DeclineLedger,
    ) -> None:
        self._session = session
        self._backend = backend
        self._clock = clock
        self._settings = settings
        self._events = events
        self._ledger = ledger

        self.current: Optional[PickupRequest] = None
        self.time_remaining: Optional[int] = None
        self.accepting = False

        self._countdown: Optional[PeriodicTimer] = None
        self._pending: Optional[DelayedCall] = None
        self._pending_kind: Optional[str] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> PresenterStateEnum:
        return PresenterStateEnum.presenting if self.current is not None else PresenterStateEnum.idle

    @property
    def countdown_running(self) -> bool:
        return self._countdown is not None and self._countdown.running

    @property
    def show_pending(self) -> bool:
        return self._pending is not None and self._pending.running

    def view(self) -> PresentationView:
        return PresentationView(
            state=self.state,
            request=self.current,
            time_remaining=self.time_remaining,
            accepting=self.accepting,
        )

    def _can_present(self) -> bool:
        return (
            self._session.is_online
            and self.current is None
            and not self.accepting
            and not self._session.has_active_job
            and self._session.head is not None
        )

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def on_queue_changed(self) -> None:
        """Called by the session whenever the candidate queue is replaced."""
        if self.current is not None or self.accepting:
            return
        if self._pending_kind == _NEXT_AFTER_DECLINE and self.show_pending:
            return
        if not self._can_present():
            return
        self._schedule_show(self._settings.presentation_debounce_seconds, _DEBOUNCE)

    def _schedule_show(self, delay: float, kind: str) -> None:
        self._cancel_pending()
        self._pending_kind = kind
        self._pending = DelayedCall(
            self._clock, delay, self._show_head, name=f"present-{kind}:{self._session.driver_id}"
        )
        self._pending.start()

    def _cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
        self._pending = None
        self._pending_kind = None

    async def _show_head(self) -> None:
        self._pending = None
        self._pending_kind = None
        if not self._can_present():
            return
        self._present(self._session.head)

    def _present(self, request: PickupRequest) -> None:
        self._cancel_countdown()
        self.current = request
        self.time_remaining = self._settings.countdown_seconds
        self._countdown = PeriodicTimer(
            self._clock,
            self._settings.countdown_tick_seconds,
            self._tick,
            name=f"countdown:{request.id}",
        )
        self._countdown.start()
        logger.info("Presenting request=%s to driver=%s", request.id, self._session.driver_id)
        self._events.publish(
            DriverEvent(
                type=EventType.presentation_started,
                driver_id=self._session.driver_id,
                request_id=request.id,
                payload={"time_remaining": self.time_remaining},
            )
        )

    def _cancel_countdown(self) -> None:
        if self._countdown is not None:
            self._countdown.cancel()
        self._countdown = None

    async def _tick(self) -> None:
        if self.current is None or not self._session.is_online:
            self._cancel_countdown()
            return
        self.time_remaining = max(0, (self.time_remaining or 0) - 1)
        if self.time_remaining == 0:
            logger.info("Auto-declining request=%s due to timeout", self.current.id)
            await self.decline(DeclineReason.timeout)

    def _clear_current(self) -> Optional[PickupRequest]:
        self._cancel_countdown()
        request, self.current = self.current, None
        self.time_remaining = None
        return request

    def stop(self) -> None:
        """Drop the presentation and every pending timer. Idempotent."""
        self._cancel_pending()
        request = self._clear_current()
        if request is not None:
            logger.info("Presentation of request=%s stopped", request.id)

    # ------------------------------------------------------------------
    # Driver actions
    # ------------------------------------------------------------------

    async def decline(self, reason: DeclineReason = DeclineReason.manual) -> PickupRequest:
        """
        Removes the current request from this driver's queue. The backend is
        not told; the decline ledger keeps the request from being re-offered.
        """
        request = self._clear_current()
        if request is None:
            raise NoActivePresentation("No request is being presented")

        self._session.remove_candidate(request.id)
        await self._record_decline(request.id)
        logger.info("Driver=%s declined request=%s (%s)", self._session.driver_id, request.id, reason.value)
        self._events.publish(
            DriverEvent(
                type=EventType.presentation_ended,
                driver_id=self._session.driver_id,
                request_id=request.id,
                payload={"reason": reason.value},
            )
        )
        if self._session.is_online:
            self._schedule_show(self._settings.next_request_delay_seconds, _NEXT_AFTER_DECLINE)
        return request

    async def _record_decline(self, request_id: str) -> None:
        try:
            await self._ledger.record(self._session.driver_id, request_id)
        except Exception as exc:
            logger.error("Failed to record decline of request=%s: %s", request_id, exc)

    def _resolve(self, request_id: Optional[str]) -> PickupRequest:
        if request_id is None or (self.current is not None and self.current.id == request_id):
            if self.current is None:
                raise NoActivePresentation("No request is being presented")
            return self.current
        request = self._session.find_candidate(request_id)
        if request is None:
            raise RequestNotFound(f"Request {request_id} is not available")
        return request

    async def accept(self, request_id: Optional[str] = None) -> AcceptRideResponse:
        """
        Accepts the presented request, or any queued candidate by id. The
        countdown and presentation are torn down before the backend call so
        no tick or second accept can act on the same request.
        """
        if not self._session.is_online:
            raise NotOnline("Go online to accept requests")
        if self.accepting:
            raise NoActivePresentation("An accept is already in progress")
        request = self._resolve(request_id)

        self._cancel_pending()
        self._clear_current()
        self.accepting = True
        driver_id = self._session.driver_id
        try:
            await self._backend.accept_request(request.id, driver_id)
        except Exception as exc:
            self.accepting = False
            self._session.remove_candidate(request.id)
            if isinstance(exc, AlreadyTaken):
                await self._record_decline(request.id)
                message = "This request was already taken by another driver."
            else:
                message = "Could not accept request. Please try again."
            logger.error("Error accepting request=%s: %s", request.id, exc)
            self._session.error = message
            self._events.publish(
                DriverEvent(
                    type=EventType.accept_failed,
                    driver_id=driver_id,
                    request_id=request.id,
                    message=message,
                )
            )
            self._events.toast(driver_id, message, kind="error")
            self.on_queue_changed()
            raise
        self.accepting = False

        self._session.remove_candidate(request.id)
        logger.info("Driver=%s accepted request=%s", driver_id, request.id)
        if self._session.is_online:
            self._session.start_job(request)
        else:
            logger.warning("Driver=%s went offline while accepting request=%s", driver_id, request.id)
        self._events.publish(
            DriverEvent(type=EventType.request_accepted, driver_id=driver_id, request_id=request.id)
        )
        self._events.publish(
            DriverEvent(
                type=EventType.navigate_to_pickup,
                driver_id=driver_id,
                request_id=request.id,
                payload={"pickup": request.pickup.model_dump(mode="json")},
            )
        )
        return AcceptRideResponse(job_id=request.id, request=request)

"""
Watches an accepted job for customer-side cancellation or completion.
"""
import logging
from typing import Awaitable, Callable, Optional

from dispatch_client.config import Settings
from dispatch_client.schemas.schemas import PickupRequest, RequestStatusEnum
from dispatch_client.services.backend import BackendAPI
from dispatch_client.services.exceptions import NetworkError
from dispatch_client.services.timers import Clock, PeriodicTimer

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = {
    RequestStatusEnum.cancelled,
    RequestStatusEnum.completed,
    RequestStatusEnum.delivered,
}

JobEndedCallback = Callable[[str, PickupRequest], Awaitable[None]]


class JobStatusMonitor:
    def __init__(
        self,
        backend: BackendAPI,
        clock: Clock,
        settings: Settings,
        on_job_ended: JobEndedCallback,
    ) -> None:
        self._backend = backend
        self._clock = clock
        self._settings = settings
        self._on_job_ended = on_job_ended
        self.job_id: Optional[str] = None
        self.last_status: Optional[RequestStatusEnum] = None
        self._timer: Optional[PeriodicTimer] = None

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.running

    def start(self, job_id: str) -> None:
        self.stop()
        self.job_id = job_id
        self.last_status = None
        self._timer = PeriodicTimer(
            self._clock,
            self._settings.job_status_poll_seconds,
            self.check_once,
            name=f"job-monitor:{job_id}",
        )
        self._timer.start()

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self.job_id = None

    async def fetch_status(self, job_id: str) -> PickupRequest:
        """
        Looks the job up with up to `job_status_max_retries` attempts,
        waiting retry_delay * attempt between them.
        """
        retries = max(1, self._settings.job_status_max_retries)
        attempt = 1
        while True:
            try:
                return await self._backend.get_request(job_id)
            except NetworkError as exc:
                logger.warning("Status check attempt %d for job=%s failed: %s", attempt, job_id, exc)
                if attempt >= retries:
                    raise
                await self._clock.sleep(self._settings.job_status_retry_delay_seconds * attempt)
                attempt += 1

    async def check_once(self) -> None:
        job_id = self.job_id
        if job_id is None:
            return
        try:
            request = await self.fetch_status(job_id)
        except Exception as exc:
            logger.error("Failed to check status of job=%s: %s", job_id, exc)
            return
        if self.job_id != job_id:
            return
        if request.status != self.last_status:
            logger.info("Job %s status %s", job_id, request.status.value)
            self.last_status = request.status
        if request.status in TERMINAL_STATUSES:
            self.stop()
            await self._on_job_ended(job_id, request)

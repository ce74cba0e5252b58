"""
Active-job location relay: streams every driver sample for the accepted job.
"""
import logging
from typing import Optional

from dispatch_client.schemas.schemas import Location
from dispatch_client.services.backend import BackendAPI
from dispatch_client.services.timers import BackgroundTasks

logger = logging.getLogger(__name__)


class ActiveJobRelay:
    def __init__(self, backend: BackendAPI) -> None:
        self._backend = backend
        self._tasks = BackgroundTasks()
        self.job_id: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.job_id is not None

    def start(self, job_id: str) -> None:
        if self.job_id == job_id:
            return
        if self.job_id is not None:
            self.stop()
        self.job_id = job_id
        logger.info("Location relay started for job=%s", job_id)

    def stop(self) -> None:
        if self.job_id is None:
            return
        logger.info("Location relay stopped for job=%s", self.job_id)
        self.job_id = None
        self._tasks.cancel_all()

    def on_location_sample(self, job_id: Optional[str], location: Location) -> None:
        """Forward one sample; no throttling while a job is active."""
        if job_id is None or job_id != self.job_id:
            if job_id is not None:
                logger.warning("Dropping sample for inactive job=%s", job_id)
            return
        self._tasks.spawn(self._send(job_id, location), name=f"relay:{job_id}")

    async def _send(self, job_id: str, location: Location) -> None:
        try:
            await self._backend.update_driver_location(job_id, location)
        except Exception as exc:
            logger.error("Failed to relay location for job=%s: %s", job_id, exc)

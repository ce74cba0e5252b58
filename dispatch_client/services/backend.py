"""
Backend API adapter.

The dispatch core only depends on the BackendAPI protocol; HttpBackend is
the httpx implementation used by the driver console.
"""
import logging
from typing import Any, Optional, Protocol

import httpx

from dispatch_client.config import Settings, get_settings
from dispatch_client.schemas.schemas import Location, PickupRequest
from dispatch_client.services.exceptions import AlreadyTaken, NetworkError, RequestNotFound

logger = logging.getLogger(__name__)


class BackendAPI(Protocol):
    async def set_driver_online(self, driver_id: str, location: Location) -> str: ...

    async def set_driver_offline(self, driver_id: str) -> None: ...

    async def update_driver_heartbeat(self, driver_id: str, location: Location) -> None: ...

    async def get_available_requests(self) -> list[PickupRequest]: ...

    async def check_expired_requests(self) -> int: ...

    async def accept_request(self, request_id: str, driver_id: str) -> None: ...

    async def update_driver_location(self, job_id: str, location: Location) -> None: ...

    async def get_request(self, request_id: str) -> PickupRequest: ...


class HttpBackend:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = settings or get_settings()
        headers = {}
        if settings.backend_api_key:
            headers["Authorization"] = f"Bearer {settings.backend_api_key}"
        self._client = httpx.AsyncClient(
            base_url=settings.backend_base_url,
            headers=headers,
            timeout=settings.backend_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("Backend %s %s transport error: %s", method, path, exc)
            raise NetworkError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 500:
            logger.error("Backend %s %s returned %d", method, path, resp.status_code)
            raise NetworkError(f"Backend error {resp.status_code} on {method} {path}")
        return resp

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code >= 400:
            raise NetworkError(f"Backend rejected {resp.request.method} {resp.request.url.path}: {resp.status_code}")

    async def set_driver_online(self, driver_id: str, location: Location) -> str:
        resp = await self._request("POST", f"/drivers/{driver_id}/online", json=location.coords())
        self._raise_for_status(resp)
        body = resp.json()
        return body.get("session_id") or body["sessionId"]

    async def set_driver_offline(self, driver_id: str) -> None:
        resp = await self._request("POST", f"/drivers/{driver_id}/offline")
        self._raise_for_status(resp)

    async def update_driver_heartbeat(self, driver_id: str, location: Location) -> None:
        resp = await self._request("POST", f"/drivers/{driver_id}/heartbeat", json=location.coords())
        self._raise_for_status(resp)

    async def get_available_requests(self) -> list[PickupRequest]:
        resp = await self._request("GET", "/requests/available")
        self._raise_for_status(resp)
        return [PickupRequest.model_validate(item) for item in resp.json()]

    async def check_expired_requests(self) -> int:
        resp = await self._request("POST", "/requests/expire")
        self._raise_for_status(resp)
        return int(resp.json().get("expired", 0))

    async def accept_request(self, request_id: str, driver_id: str) -> None:
        resp = await self._request("POST", f"/requests/{request_id}/accept", json={"driver_id": driver_id})
        if resp.status_code == 409:
            raise AlreadyTaken(f"Request {request_id} is no longer available")
        if resp.status_code == 404:
            raise RequestNotFound(f"Request {request_id} not found")
        self._raise_for_status(resp)

    async def update_driver_location(self, job_id: str, location: Location) -> None:
        resp = await self._request("POST", f"/jobs/{job_id}/location", json=location.coords())
        self._raise_for_status(resp)

    async def get_request(self, request_id: str) -> PickupRequest:
        resp = await self._request("GET", f"/requests/{request_id}")
        if resp.status_code == 404:
            raise RequestNotFound(f"Request {request_id} not found")
        self._raise_for_status(resp)
        return PickupRequest.model_validate(resp.json())

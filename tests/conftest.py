"""
Shared fixtures: a virtual clock that drives every timer deterministically,
a mocked backend, and request factories.
"""
import asyncio
import heapq
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from dispatch_client.config import Settings
from dispatch_client.schemas.schemas import Location, PickupRequest, RequestStatusEnum
from dispatch_client.services.location import LocationService, PushLocationSource
from dispatch_client.services.session import SessionController

ATLANTA = Location(latitude=33.7490, longitude=-84.3880)


class VirtualClock:
    """Clock whose sleeps only complete when the test advances time."""

    def __init__(self) -> None:
        self.now = 0.0
        self._seq = 0
        self._sleepers: list = []

    def now_ms(self) -> float:
        return self.now * 1000

    async def sleep(self, seconds: float) -> None:
        fut = asyncio.get_running_loop().create_future()
        self._seq += 1
        heapq.heappush(self._sleepers, (self.now + seconds, self._seq, fut))
        await fut

    async def settle(self, rounds: int = 50) -> None:
        """Let every ready task run until the loop is quiet."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, seconds: float) -> None:
        target = self.now + seconds
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            wake, _, fut = heapq.heappop(self._sleepers)
            self.now = max(self.now, wake)
            if not fut.done():
                fut.set_result(None)
            await self.settle()
        self.now = target
        await self.settle()


def _make_request(request_id: str, status: RequestStatusEnum = RequestStatusEnum.available) -> PickupRequest:
    return PickupRequest.model_validate(
        {
            "id": request_id,
            "pickup": {
                "address": "123 Main St, Atlanta, GA",
                "coordinates": {"latitude": 33.7490, "longitude": -84.3880},
                "time": "15 min",
                "distance": "2.3 mi",
            },
            "dropoff": {
                "address": "456 Peachtree St, Atlanta, GA",
                "coordinates": {"latitude": 33.7590, "longitude": -84.3920},
            },
            "price": "$35.00",
            "item": {"description": "Medium-sized package, fragile", "type": "Package", "needsHelp": False},
            "customer": {"name": "John D.", "rating": 4.8},
            "status": status.value,
        }
    )


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def backend():
    mock = AsyncMock()
    mock.set_driver_online = AsyncMock(return_value="session-1")
    mock.set_driver_offline = AsyncMock(return_value=None)
    mock.update_driver_heartbeat = AsyncMock(return_value=None)
    mock.get_available_requests = AsyncMock(return_value=[])
    mock.check_expired_requests = AsyncMock(return_value=0)
    mock.accept_request = AsyncMock(return_value=None)
    mock.update_driver_location = AsyncMock(return_value=None)
    mock.get_request = AsyncMock(side_effect=lambda request_id: _make_request(request_id, RequestStatusEnum.accepted))
    return mock


@pytest.fixture
def source():
    return PushLocationSource(permission_granted=True, initial=ATLANTA)


@pytest_asyncio.fixture
async def controller(backend, source, clock, settings):
    location = LocationService(source)
    location.initialize()
    ctrl = SessionController("driver-1", backend, location, clock=clock, settings=settings)
    yield ctrl
    await ctrl.teardown()
    await clock.settle()


@pytest.fixture
def make_request():
    return _make_request


@pytest.fixture
def origin():
    return ATLANTA

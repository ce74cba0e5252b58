"""
Unit tests for the session controller — online/offline lifecycle and heartbeats.
"""
import asyncio

import pytest

from dispatch_client.schemas.schemas import EventType, Location
from dispatch_client.services.exceptions import LocationUnavailable, NetworkError, NotOnline, PermissionDenied


def north_of(loc: Location, meters: float) -> Location:
    return Location(latitude=loc.latitude + meters / 111_320, longitude=loc.longitude)


def assert_session_invariant(controller):
    assert (controller.session_id is not None) == controller.is_online


@pytest.mark.asyncio
class TestGoOnline:
    async def test_go_online_registers_session(self, controller, backend, source, origin):
        session_id = await controller.go_online()

        assert session_id == "session-1"
        assert controller.is_online
        assert controller.session.last_location == origin
        backend.set_driver_online.assert_awaited_once_with("driver-1", origin)
        assert controller.watching_location
        assert source.watching
        assert controller.poller.running
        assert_session_invariant(controller)

    async def test_permission_denied_keeps_driver_offline(self, controller, backend, source):
        source.permission_granted = False

        with pytest.raises(PermissionDenied):
            await controller.go_online()

        assert not controller.is_online
        assert controller.error is not None
        backend.set_driver_online.assert_not_awaited()
        assert not controller.poller.running
        assert not source.watching
        assert_session_invariant(controller)

    async def test_backend_failure_surfaces_and_stays_offline(self, controller, backend, source):
        backend.set_driver_online.side_effect = NetworkError("timeout")

        with pytest.raises(NetworkError):
            await controller.go_online()

        assert not controller.is_online
        assert not controller.loading
        assert controller.error == "Could not go online. Please try again."
        assert not source.watching
        assert not controller.poller.running
        backend.set_driver_online.assert_awaited_once()  # no automatic retry

    async def test_go_online_twice_is_noop(self, controller, backend):
        await controller.go_online()
        assert await controller.go_online() == "session-1"
        backend.set_driver_online.assert_awaited_once()

    async def test_publishes_went_online(self, controller):
        seen = []
        controller.events.subscribe(seen.append)
        await controller.go_online()
        assert [e.type for e in seen] == [EventType.went_online]


@pytest.mark.asyncio
class TestGoOffline:
    async def test_go_offline_tears_everything_down(self, controller, backend, source, clock):
        await controller.go_online()
        await clock.settle()

        await controller.go_offline()

        assert not controller.is_online
        assert controller.session_id is None
        assert not controller.watching_location
        assert not source.watching
        assert not controller.poller.running
        backend.set_driver_offline.assert_awaited_once_with("driver-1")
        assert_session_invariant(controller)

    async def test_backend_failure_still_goes_offline(self, controller, backend, source):
        backend.set_driver_offline.side_effect = NetworkError("unreachable")
        await controller.go_online()

        await controller.go_offline()  # does not raise

        assert not controller.is_online
        assert controller.session_id is None
        assert not source.watching
        assert not controller.poller.running
        assert controller.error is not None

    async def test_go_offline_is_idempotent(self, controller, backend):
        await controller.go_online()
        await controller.go_offline()
        await controller.go_offline()
        backend.set_driver_offline.assert_awaited_once()

    async def test_no_polls_after_offline(self, controller, backend, clock):
        await controller.go_online()
        await clock.settle()
        polls = backend.get_available_requests.await_count

        await controller.go_offline()
        await clock.advance(60)

        assert backend.get_available_requests.await_count == polls

    async def test_can_go_online_again(self, controller, backend):
        await controller.go_online()
        await controller.go_offline()
        backend.set_driver_online.return_value = "session-2"

        assert await controller.go_online() == "session-2"
        assert controller.poller.running


@pytest.mark.asyncio
class TestHeartbeat:
    async def test_first_significant_move_sends_heartbeat(self, controller, backend, source, origin, clock):
        await controller.go_online()
        sample = north_of(origin, 200)

        source.push(sample)
        await clock.settle()

        backend.update_driver_heartbeat.assert_awaited_once_with("driver-1", sample)
        assert controller.session.last_location == sample

    async def test_throttled_by_time(self, controller, backend, source, origin, clock):
        await controller.go_online()
        source.push(north_of(origin, 200))
        await clock.advance(5)
        source.push(north_of(origin, 400))
        await clock.settle()

        assert backend.update_driver_heartbeat.await_count == 1

        await clock.advance(20)
        source.push(north_of(origin, 600))
        await clock.settle()

        assert backend.update_driver_heartbeat.await_count == 2

    async def test_throttled_by_distance(self, controller, backend, source, origin, clock):
        await controller.go_online()
        await clock.advance(30)
        source.push(north_of(origin, 30))
        await clock.settle()

        backend.update_driver_heartbeat.assert_not_awaited()

    async def test_compares_against_latest_applied_sample(self, controller, backend, source, origin, clock):
        await controller.go_online()
        source.push(north_of(origin, 200))  # heartbeat #1
        await clock.advance(5)
        source.push(north_of(origin, 260))  # too soon, but becomes last_location
        await clock.advance(20)
        source.push(north_of(origin, 300))  # only 40 m from the previous sample
        await clock.settle()

        assert backend.update_driver_heartbeat.await_count == 1
        assert controller.session.last_location == north_of(origin, 300)

    async def test_heartbeat_errors_are_swallowed(self, controller, backend, source, origin, clock):
        backend.update_driver_heartbeat.side_effect = NetworkError("flaky")
        await controller.go_online()

        source.push(north_of(origin, 200))
        await clock.settle()

        assert controller.is_online
        backend.update_driver_heartbeat.assert_awaited_once()

    async def test_no_heartbeat_while_offline(self, controller, backend, origin, clock):
        controller.on_location_sample(north_of(origin, 500))
        await clock.settle()

        backend.update_driver_heartbeat.assert_not_awaited()
        assert controller.session.last_location == north_of(origin, 500)


@pytest.mark.asyncio
class TestConcurrentTransitions:
    async def test_offline_during_registration_wins(self, controller, backend, source, clock):
        registered = asyncio.Event()

        async def slow_online(driver_id, location):
            await registered.wait()
            return "session-1"

        backend.set_driver_online.side_effect = slow_online
        attempt = asyncio.create_task(controller.go_online())
        await clock.settle()

        await controller.go_offline()
        registered.set()

        with pytest.raises(NotOnline):
            await attempt
        await clock.advance(30)

        assert not controller.is_online
        assert controller.session_id is None
        assert not controller.poller.running
        assert not source.watching
        backend.set_driver_offline.assert_awaited_once_with("driver-1")
        backend.get_available_requests.assert_not_awaited()
        assert_session_invariant(controller)

    async def test_concurrent_go_online_registers_once(self, controller, backend, clock):
        registered = asyncio.Event()

        async def slow_online(driver_id, location):
            await registered.wait()
            return "session-1"

        backend.set_driver_online.side_effect = slow_online
        first = asyncio.create_task(controller.go_online())
        second = asyncio.create_task(controller.go_online())
        await clock.settle()
        registered.set()

        assert await first == "session-1"
        assert await second == "session-1"
        backend.set_driver_online.assert_awaited_once()

    async def test_queued_go_online_dropped_after_offline(self, controller, backend, clock):
        registered = asyncio.Event()

        async def slow_online(driver_id, location):
            await registered.wait()
            return "session-1"

        backend.set_driver_online.side_effect = slow_online
        first = asyncio.create_task(controller.go_online())
        second = asyncio.create_task(controller.go_online())
        await clock.settle()
        await controller.go_offline()
        registered.set()

        for attempt in (first, second):
            with pytest.raises(NotOnline):
                await attempt
        assert not controller.is_online
        backend.set_driver_online.assert_awaited_once()

    async def test_online_during_deregistration_keeps_new_session(self, controller, backend, clock, make_request):
        await controller.go_online()
        deregistered = asyncio.Event()

        async def slow_offline(driver_id):
            await deregistered.wait()

        backend.set_driver_offline.side_effect = slow_offline
        offline = asyncio.create_task(controller.go_offline())
        await clock.settle()
        assert not controller.is_online

        backend.set_driver_online.return_value = "session-2"
        backend.get_available_requests.return_value = [make_request("r1")]
        assert await controller.go_online() == "session-2"
        await clock.settle()
        seen = []
        controller.events.subscribe(seen.append)

        deregistered.set()
        await offline

        assert controller.is_online
        assert controller.session_id == "session-2"
        assert [r.id for r in controller.candidates] == ["r1"]
        assert EventType.went_offline not in [e.type for e in seen]

    async def test_missing_position_sets_error(self, controller, backend, source):
        source._latest = None

        with pytest.raises(LocationUnavailable):
            await controller.go_online()

        assert not controller.is_online
        assert controller.error is not None
        backend.set_driver_online.assert_not_awaited()

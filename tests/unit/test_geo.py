"""
Unit tests for the heartbeat throttle — haversine distance and emit decision.
"""
import pytest

from dispatch_client.schemas.schemas import Location
from dispatch_client.services.geo import distance_meters, haversine_miles, should_emit_heartbeat

ATLANTA = Location(latitude=33.7490, longitude=-84.3880)
MIDTOWN = Location(latitude=33.7590, longitude=-84.3920)
NEW_YORK = Location(latitude=40.7128, longitude=-74.0060)


def north_of(loc: Location, meters: float) -> Location:
    # ~111,320 m per degree of latitude
    return Location(latitude=loc.latitude + meters / 111_320, longitude=loc.longitude)


class TestDistance:
    @pytest.mark.parametrize("a,b", [(ATLANTA, MIDTOWN), (ATLANTA, NEW_YORK), (MIDTOWN, NEW_YORK)])
    def test_symmetric(self, a, b):
        assert distance_meters(a, b) == pytest.approx(distance_meters(b, a))

    @pytest.mark.parametrize("loc", [ATLANTA, NEW_YORK, Location(latitude=0, longitude=0)])
    def test_zero_for_same_point(self, loc):
        assert distance_meters(loc, loc) == 0

    def test_atlanta_to_new_york(self):
        # Roughly 746 miles as the crow flies
        assert haversine_miles(ATLANTA, NEW_YORK) == pytest.approx(746, rel=0.02)

    def test_meters_use_miles_conversion(self):
        assert distance_meters(ATLANTA, MIDTOWN) == pytest.approx(haversine_miles(ATLANTA, MIDTOWN) * 1609.34)

    def test_small_offset(self):
        assert distance_meters(ATLANTA, north_of(ATLANTA, 150)) == pytest.approx(150, rel=0.01)


class TestShouldEmitHeartbeat:
    def test_first_sample_always_emits(self):
        assert should_emit_heartbeat(None, ATLANTA, 0, 0)
        assert should_emit_heartbeat(None, ATLANTA, 1_000_000, 1_000_001)

    def test_too_soon_regardless_of_distance(self):
        assert not should_emit_heartbeat(ATLANTA, NEW_YORK, 0, 19_999)

    def test_too_close_regardless_of_time(self):
        near = north_of(ATLANTA, 50)
        assert not should_emit_heartbeat(ATLANTA, near, 0, 10_000_000)

    def test_emits_when_both_thresholds_met(self):
        far = north_of(ATLANTA, 150)
        assert should_emit_heartbeat(ATLANTA, far, 0, 20_000)

    def test_exact_interval_boundary(self):
        far = north_of(ATLANTA, 150)
        assert should_emit_heartbeat(ATLANTA, far, 5_000, 25_000)
        assert not should_emit_heartbeat(ATLANTA, far, 5_000, 24_999)

    def test_never_sent_counts_as_elapsed(self):
        far = north_of(ATLANTA, 150)
        assert should_emit_heartbeat(ATLANTA, far, None, 0)

    def test_custom_thresholds(self):
        near = north_of(ATLANTA, 50)
        assert should_emit_heartbeat(ATLANTA, near, 0, 1_000, interval_ms=500, min_move_meters=25)

    def test_deterministic(self):
        far = north_of(ATLANTA, 150)
        results = {should_emit_heartbeat(ATLANTA, far, 0, 30_000) for _ in range(5)}
        assert results == {True}

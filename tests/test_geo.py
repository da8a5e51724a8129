"""
Tests for geographic helpers
"""
import pytest

from pharmadispatch.core.geo import estimate_delivery_minutes, has_coordinates, haversine_km


class TestHaversine:

    @pytest.mark.unit
    def test_one_degree_of_latitude(self):
        assert haversine_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.195, abs=0.01)

    @pytest.mark.unit
    def test_same_point(self):
        assert haversine_km(5.32, -4.02, 5.32, -4.02) == 0

    @pytest.mark.unit
    def test_symmetric(self):
        there = haversine_km(5.32, -4.02, 5.36, -3.98)
        back = haversine_km(5.36, -3.98, 5.32, -4.02)

        assert there == pytest.approx(back)


@pytest.mark.unit
@pytest.mark.parametrize(
    "latitude,longitude,expected",
    [(5.3, -4.0, True), (0.0, 0.0, True), (None, -4.0, False), (5.3, None, False)],
)
def test_has_coordinates(latitude, longitude, expected):
    assert has_coordinates(latitude, longitude) is expected


class TestDeliveryEstimate:

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "vehicle,minutes",
        [("motorcycle", 22), ("bicycle", 34), ("car", 25), ("walking", 82)],
    )
    def test_vehicle_speeds(self, vehicle, minutes):
        assert estimate_delivery_minutes(6, vehicle) == minutes

    @pytest.mark.unit
    def test_unknown_vehicle_uses_default_speed(self):
        assert estimate_delivery_minutes(6, "scooter") == estimate_delivery_minutes(6, "car")

    @pytest.mark.unit
    def test_zero_distance_is_preparation_only(self):
        assert estimate_delivery_minutes(0) == 10

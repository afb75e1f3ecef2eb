"""Unit tests for the fare estimator."""

import pytest

from lastmile.domain.distance import planar_distance_km
from lastmile.domain.entities import Location
from lastmile.domain.enums import PackageWeight
from lastmile.domain.errors import ValidationError
from lastmile.domain.pricing import (
    DEFAULT_BASE_FARE,
    FareEstimator,
    WeightedFare,
    round_half_up,
)

PICKUP = Location(9.0820, 8.6753)
DROPOFF = Location(9.0579, 7.4951)


class TestFareStrategies:
    def test_light_is_unscaled(self):
        strategy = WeightedFare(PackageWeight.LIGHT)
        assert strategy.calculate(10.0, 500, 100.0) == 1500.0  # 500 + 10*100

    def test_medium_scales_base_and_distance(self):
        strategy = WeightedFare(PackageWeight.MEDIUM)
        assert strategy.calculate(10.0, 500, 100.0) == pytest.approx(1950.0)

    def test_heavy_scales_base_and_distance(self):
        strategy = WeightedFare(PackageWeight.HEAVY)
        assert strategy.calculate(10.0, 500, 100.0) == pytest.approx(2400.0)


class TestRounding:
    def test_half_rounds_up(self):
        assert round_half_up(1234.5) == 1235

    def test_below_half_rounds_down(self):
        assert round_half_up(1234.49) == 1234

    def test_whole_numbers_unchanged(self):
        assert round_half_up(500.0) == 500


class TestDistance:
    def test_same_point_is_zero(self):
        assert planar_distance_km(9.0, 7.0, 9.0, 7.0) == 0.0

    def test_one_degree_of_latitude(self):
        assert planar_distance_km(0.0, 0.0, 1.0, 0.0) == pytest.approx(111.0)

    def test_symmetric(self):
        there = planar_distance_km(9.0820, 8.6753, 9.0579, 7.4951)
        back = planar_distance_km(9.0579, 7.4951, 9.0820, 8.6753)
        assert there == pytest.approx(back)


class TestFareEstimator:
    def setup_method(self):
        self.estimator = FareEstimator()

    def test_reference_trip_light(self):
        quote = self.estimator.quote(PICKUP, DROPOFF, PackageWeight.LIGHT)
        assert quote.distance_km == pytest.approx(131.0295, abs=1e-3)
        assert quote.base_price == DEFAULT_BASE_FARE
        assert quote.total == 13603

    def test_reference_trip_medium(self):
        assert self.estimator.estimate(PICKUP, DROPOFF, PackageWeight.MEDIUM) == 17684

    def test_reference_trip_heavy(self):
        assert self.estimator.estimate(PICKUP, DROPOFF, PackageWeight.HEAVY) == 21765

    def test_tier_base_price_replaces_default(self):
        fare = self.estimator.estimate(PICKUP, DROPOFF, PackageWeight.LIGHT, 1000)
        assert fare == 14103

    def test_same_point_pays_base_only(self):
        assert self.estimator.estimate(PICKUP, PICKUP, PackageWeight.LIGHT) == 500

    def test_same_point_heavy_scales_base(self):
        assert self.estimator.estimate(PICKUP, PICKUP, PackageWeight.HEAVY) == 800

    def test_weight_accepts_plain_strings(self):
        assert self.estimator.estimate(PICKUP, PICKUP, "medium") == 650

    def test_unknown_weight_rejected(self):
        with pytest.raises(ValidationError):
            self.estimator.estimate(PICKUP, DROPOFF, "feather")

    def test_fare_is_never_below_base(self):
        for weight in PackageWeight:
            quote = self.estimator.quote(PICKUP, DROPOFF, weight, 250)
            assert quote.total >= 250

    def test_custom_rate(self):
        estimator = FareEstimator(default_base_fare=0, rate_per_km=1.0)
        fare = estimator.estimate(Location(0, 0), Location(1, 0), PackageWeight.LIGHT)
        assert fare == 111

"""
Fare Estimator  (Strategy Pattern)
==================================

Formula
-------
Fare = round_half_up((Base_Price + Distance x Rate_Per_KM) x Weight_Multiplier)

* **Distance** = planar distance between pickup and dropoff (see
  ``distance.py``), never negative; a same-point booking pays the base only.
* **Base_Price** comes from the selected service tier; without a tier the
  default base fare applies.
* **Weight_Multiplier**: light 1.0, medium 1.3, heavy 1.6, applied to the
  *sum* of base and distance fare.

The constants are part of the pricing contract.  Complexity: O(1).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from .distance import DEGREES_TO_KM, planar_distance_km
from .entities import Location
from .enums import PackageWeight
from .errors import ValidationError

DEFAULT_BASE_FARE = 500
RATE_PER_KM = 100.0

WEIGHT_MULTIPLIERS: dict[PackageWeight, float] = {
    PackageWeight.LIGHT: 1.0,
    PackageWeight.MEDIUM: 1.3,
    PackageWeight.HEAVY: 1.6,
}


def round_half_up(amount: float) -> int:
    """Round to the nearest currency unit, halves away from zero."""
    return int(Decimal(repr(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


# ── Strategy hierarchy ────────────────────────────────────────────────


class FareStrategy(ABC):
    @abstractmethod
    def calculate(
        self, distance_km: float, base_price: float, rate_per_km: float
    ) -> float: ...


class WeightedFare(FareStrategy):
    """Distance fare plus base, scaled by the package weight class."""

    def __init__(self, weight: PackageWeight):
        self.multiplier = WEIGHT_MULTIPLIERS[weight]

    def calculate(
        self, distance_km: float, base_price: float, rate_per_km: float
    ) -> float:
        return (base_price + distance_km * rate_per_km) * self.multiplier


# ── Engine facade ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class FareQuote:
    distance_km: float
    base_price: float
    distance_fare: float
    weight_multiplier: float
    total: int


class FareEstimator:
    """High-level API used by the lifecycle controller and the booking preview."""

    def __init__(
        self,
        default_base_fare: float = DEFAULT_BASE_FARE,
        degrees_to_km: float = DEGREES_TO_KM,
        rate_per_km: float = RATE_PER_KM,
    ):
        self.default_base_fare = default_base_fare
        self.degrees_to_km = degrees_to_km
        self.rate_per_km = rate_per_km

    def quote(
        self,
        pickup: Location,
        dropoff: Location,
        weight: PackageWeight | str,
        base_price: Optional[float] = None,
    ) -> FareQuote:
        try:
            weight = PackageWeight(weight)
        except ValueError:
            raise ValidationError(f"Unknown package weight: {weight!r}") from None
        base = self.default_base_fare if base_price is None else float(base_price)
        distance = planar_distance_km(
            pickup.latitude, pickup.longitude,
            dropoff.latitude, dropoff.longitude,
            self.degrees_to_km,
        )
        strategy = WeightedFare(weight)
        raw = strategy.calculate(distance, base, self.rate_per_km)
        return FareQuote(
            distance_km=distance,
            base_price=base,
            distance_fare=distance * self.rate_per_km,
            weight_multiplier=strategy.multiplier,
            total=round_half_up(raw),
        )

    def estimate(
        self,
        pickup: Location,
        dropoff: Location,
        weight: PackageWeight | str,
        base_price: Optional[float] = None,
    ) -> int:
        return self.quote(pickup, dropoff, weight, base_price).total

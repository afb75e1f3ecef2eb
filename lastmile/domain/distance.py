"""
Distance approximation used by the fare estimator.

Assumption
----------
Coordinates are treated as a flat plane: the Euclidean distance in degrees
is scaled by ~111 km per degree (one degree of latitude).  This is not a
routing engine and drifts at high latitudes.  Quoted fares must be
reproducible for disputes, so the scale factor is fixed.

Complexity: O(1) per call.
"""

import math

DEGREES_TO_KM = 111.0


def planar_distance_km(
    lat1: float, lng1: float, lat2: float, lng2: float,
    degrees_to_km: float = DEGREES_TO_KM,
) -> float:
    """Return the planar distance in **km** between two points."""
    return math.sqrt((lat2 - lat1) ** 2 + (lng2 - lng1) ** 2) * degrees_to_km

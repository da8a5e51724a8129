"""
Geographic helpers - great-circle distance and travel time estimates
"""
import math
from typing import Optional

EARTH_RADIUS_KM = 6371.0

# Average speed per vehicle type, km/h
VEHICLE_SPEEDS_KMH = {
    "motorcycle": 30,
    "bicycle": 15,
    "car": 25,
    "walking": 5,
}
DEFAULT_SPEED_KMH = 25
PREPARATION_MINUTES = 10


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two coordinates, in kilometres"""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def has_coordinates(latitude: Optional[float], longitude: Optional[float]) -> bool:
    return latitude is not None and longitude is not None


def estimate_delivery_minutes(distance_km: float, vehicle_type: str = "motorcycle") -> int:
    """Travel time at the vehicle's average speed plus a fixed preparation time"""
    speed = VEHICLE_SPEEDS_KMH.get(vehicle_type, DEFAULT_SPEED_KMH)
    return math.ceil(distance_km / speed * 60) + PREPARATION_MINUTES

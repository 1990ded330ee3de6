"""Great-circle distance and walking-time helpers."""

from __future__ import annotations

import math

import numpy as np

from .models import Coordinate

EARTH_RADIUS_KM = 6371.0
WALKING_SPEED_KMH = 5.0


def distance_km(a: Coordinate, b: Coordinate) -> float:
    """Haversine distance between two coordinates in kilometers."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    dlat = lat2 - lat1
    dlng = math.radians(b.lng - a.lng)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    # Rounding can push h a hair past 1.0 for antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distances_km(origin: Coordinate, lats: np.ndarray, lngs: np.ndarray) -> np.ndarray:
    """Vectorised :func:`distance_km` from one origin to many points."""
    lat1 = np.radians(origin.lat)
    lat2 = np.radians(np.asarray(lats, dtype=float))
    dlat = lat2 - lat1
    dlng = np.radians(np.asarray(lngs, dtype=float) - origin.lng)
    h = np.sin(dlat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(dlng / 2) ** 2
    h = np.clip(h, 0.0, 1.0)
    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def walking_minutes(km: float) -> float:
    return km / WALKING_SPEED_KMH * 60


def walking_km(minutes: float) -> float:
    """Inverse of :func:`walking_minutes`."""
    return minutes / 60 * WALKING_SPEED_KMH


def within_walking_distance(a: Coordinate, b: Coordinate, max_minutes: float = 20.0) -> bool:
    return walking_minutes(distance_km(a, b)) <= max_minutes

"""Classify a GPS fix as on-site or off-site relative to the staff member's premises."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from attendance_portal.common.constants import DeviceClass, Direction, LocationKind
from attendance_portal.geofence.geomath import Coordinate, distance_meters, within_radius
from attendance_portal.geofence.proximity import DeviceProximityPolicy


@dataclass(frozen=True)
class Classification:
    kind: LocationKind
    distance_m: Optional[float]
    radius_m: float

    @property
    def on_site(self) -> bool:
        return self.kind == LocationKind.on_site


class LocationResolver:

    @staticmethod
    def classify(
        assigned_location: Optional[Coordinate],
        sample: Coordinate,
        device_class: DeviceClass,
        direction: Direction,
        policy: DeviceProximityPolicy,
    ) -> Classification:
        """On-site iff the haversine distance is within the device threshold.

        Staff without an assigned location are always off-site, so every
        check-in they make goes through supervisor approval.
        """
        radius = policy.threshold_for(device_class, direction)
        if assigned_location is None:
            return Classification(LocationKind.off_site, None, radius)

        distance = distance_meters(sample, assigned_location)
        on_site = within_radius(sample, assigned_location, radius)
        kind = LocationKind.on_site if on_site else LocationKind.off_site
        return Classification(kind, distance, radius)

"""Core HR module — staff profiles, departments and geofenced locations."""

from attendance_portal.core_hr.models import Department, GeofenceLocation, StaffProfile

__all__ = ["StaffProfile", "Department", "GeofenceLocation"]

"""Shared FastAPI dependencies: process-wide coordinators and the per-request outbox."""

from attendance_portal.attendance.admission import CheckInDeduplicator, check_in_deduplicator
from attendance_portal.database import async_session_factory
from attendance_portal.geofence.batcher import LocationBatcherRegistry, LocationStatusTracker
from attendance_portal.notifications.service import NotificationOutbox

location_tracker = LocationStatusTracker(async_session_factory)
location_registry = LocationBatcherRegistry(
    location_tracker.consumer_for, on_evict=location_tracker.forget,
)


def get_deduplicator() -> CheckInDeduplicator:
    return check_in_deduplicator


def get_location_registry() -> LocationBatcherRegistry:
    return location_registry


def get_location_tracker() -> LocationStatusTracker:
    return location_tracker


def get_notification_outbox() -> NotificationOutbox:
    """A fresh outbox per request; routers dispatch it after the response."""
    return NotificationOutbox(session_factory=async_session_factory)

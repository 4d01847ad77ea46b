"""Device-class proximity policy and the admin service that maintains it.

The radius a staff member must be within depends on the device they use:
phone GPS is precise, desktop geolocation is IP/Wi-Fi based and coarse.
Admins may override the defaults per device class; reads go through a
short-lived process-local cache that is dropped on every write.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Generic, Iterable, Mapping, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from attendance_portal.common.audit import create_audit_entry
from attendance_portal.common.constants import (
    MAX_DEVICE_RADIUS_METERS,
    MIN_DEVICE_RADIUS_METERS,
    DeviceClass,
    Direction,
)
from attendance_portal.common.exceptions import ValidationException
from attendance_portal.config import settings
from attendance_portal.geofence.models import DeviceRadiusSetting

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (check-in radius, check-out radius) in meters
DEFAULT_DEVICE_RADII: dict[DeviceClass, tuple[int, int]] = {
    DeviceClass.mobile: (400, 400),
    DeviceClass.tablet: (400, 400),
    DeviceClass.laptop: (700, 700),
    DeviceClass.desktop: (2000, 1000),
}

# Audit rows need an entity id; the settings table is keyed by device class
DEVICE_RADIUS_ENTITY_ID = uuid.uuid5(uuid.NAMESPACE_URL, "attendance-portal:device-radius-settings")


# ── Policy snapshot ─────────────────────────────────────────────────

@dataclass(frozen=True)
class DeviceProximityPolicy:
    """Immutable device-class → (check-in, check-out) radius mapping."""

    radii: Mapping[DeviceClass, tuple[int, int]] = field(
        default_factory=lambda: dict(DEFAULT_DEVICE_RADII),
    )

    def threshold_for(self, device_class: DeviceClass, direction: Direction) -> float:
        check_in, check_out = self.radii.get(
            device_class, DEFAULT_DEVICE_RADII[device_class],
        )
        return float(check_in if direction == Direction.check_in else check_out)

    @classmethod
    def from_rows(cls, rows: Iterable[DeviceRadiusSetting]) -> DeviceProximityPolicy:
        radii = dict(DEFAULT_DEVICE_RADII)
        for row in rows:
            radii[DeviceClass(row.device_class)] = (
                row.check_in_radius_meters,
                row.check_out_radius_meters,
            )
        return cls(radii=radii)


# ── TTL cache ───────────────────────────────────────────────────────

class TTLCache(Generic[T]):
    """Single-value cache that expires *ttl* seconds after it was filled.

    ``clear`` bumps ``generation``. A loader that read its value before a
    clear passes the generation it started under to ``set`` and the stale
    value is discarded.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._value: Optional[T] = None
        self._expires_at = 0.0
        self.generation = 0

    def get(self) -> Optional[T]:
        if self._value is not None and self._clock() < self._expires_at:
            return self._value
        return None

    def set(self, value: T, *, generation: Optional[int] = None) -> bool:
        if generation is not None and generation != self.generation:
            return False
        self._value = value
        self._expires_at = self._clock() + self.ttl
        return True

    def clear(self) -> None:
        self.generation += 1
        self._value = None
        self._expires_at = 0.0


_policy_cache: TTLCache[DeviceProximityPolicy] = TTLCache(
    settings.DEVICE_RADIUS_CACHE_TTL_SECONDS,
)


# ═════════════════════════════════════════════════════════════════════
# DeviceRadiusService
# ═════════════════════════════════════════════════════════════════════


class DeviceRadiusService:

    @staticmethod
    def invalidate_cache() -> None:
        _policy_cache.clear()

    @staticmethod
    async def get_policy(db: AsyncSession) -> DeviceProximityPolicy:
        """Return the effective policy, served from cache while it is fresh."""
        cached = _policy_cache.get()
        if cached is not None:
            return cached

        generation = _policy_cache.generation
        rows = (await db.execute(select(DeviceRadiusSetting))).scalars().all()
        policy = DeviceProximityPolicy.from_rows(rows)
        if not _policy_cache.set(policy, generation=generation):
            logger.debug("Radius settings changed during read; not caching")
        return policy

    @staticmethod
    def _validate_entries(entries: list) -> None:
        """Reject the whole batch if any entry is out of range or repeated."""
        errors: dict[str, list[str]] = {}
        seen: set[DeviceClass] = set()

        for entry in entries:
            device_class = DeviceClass(entry.device_class)
            key = device_class.value
            if device_class in seen:
                errors.setdefault(key, []).append("Device class appears more than once.")
            seen.add(device_class)

            for attr in ("check_in_radius_meters", "check_out_radius_meters"):
                value = getattr(entry, attr)
                if not MIN_DEVICE_RADIUS_METERS <= value <= MAX_DEVICE_RADIUS_METERS:
                    errors.setdefault(f"{key}.{attr}", []).append(
                        f"Must be between {MIN_DEVICE_RADIUS_METERS} and "
                        f"{MAX_DEVICE_RADIUS_METERS} meters (got {value}).",
                    )

        if not entries:
            errors["entries"] = ["At least one device class is required."]
        if errors:
            raise ValidationException(errors)

    @staticmethod
    async def replace_settings(
        db: AsyncSession,
        entries: list,
        actor_id: uuid.UUID,
        *,
        ip_address: Optional[str] = None,
    ) -> DeviceProximityPolicy:
        """Upsert radius overrides for the given device classes, all-or-nothing.

        Classes absent from *entries* keep their current values. The write is
        committed here so the cache can be dropped right after it lands.
        """
        DeviceRadiusService._validate_entries(entries)

        rows = {
            DeviceClass(row.device_class): row
            for row in (await db.execute(select(DeviceRadiusSetting))).scalars().all()
        }
        before = DeviceProximityPolicy.from_rows(rows.values())

        for entry in entries:
            device_class = DeviceClass(entry.device_class)
            row = rows.get(device_class)
            if row is None:
                row = DeviceRadiusSetting(device_class=device_class)
                db.add(row)
            row.check_in_radius_meters = entry.check_in_radius_meters
            row.check_out_radius_meters = entry.check_out_radius_meters
            row.updated_by = actor_id
        await db.flush()

        after = DeviceProximityPolicy(
            radii={
                **before.radii,
                **{
                    DeviceClass(e.device_class): (
                        e.check_in_radius_meters,
                        e.check_out_radius_meters,
                    )
                    for e in entries
                },
            },
        )

        await create_audit_entry(
            db,
            action="update_device_radius",
            entity_type="device_radius_settings",
            entity_id=DEVICE_RADIUS_ENTITY_ID,
            actor_id=actor_id,
            old_values=_policy_to_dict(before),
            new_values=_policy_to_dict(after),
            ip_address=ip_address,
        )
        await db.commit()
        DeviceRadiusService.invalidate_cache()

        logger.info(
            "Device radius settings updated by %s for %s",
            actor_id,
            ", ".join(DeviceClass(e.device_class).value for e in entries),
        )
        return after


def _policy_to_dict(policy: DeviceProximityPolicy) -> dict[str, dict[str, int]]:
    return {
        device_class.value: {
            "check_in_radius_meters": check_in,
            "check_out_radius_meters": check_out,
        }
        for device_class, (check_in, check_out) in sorted(
            policy.radii.items(), key=lambda item: item[0].value,
        )
    }

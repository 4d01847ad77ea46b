"""Device radius policy, its TTL cache and the admin update service."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from attendance_portal.common.audit import AuditTrail
from attendance_portal.common.constants import DeviceClass, Direction
from attendance_portal.common.exceptions import ValidationException
from attendance_portal.geofence.models import DeviceRadiusSetting
from attendance_portal.geofence.proximity import (
    DEFAULT_DEVICE_RADII,
    DEVICE_RADIUS_ENTITY_ID,
    DeviceProximityPolicy,
    DeviceRadiusService,
    TTLCache,
)
from attendance_portal.geofence.schemas import DeviceRadiusEntry
from tests.conftest import TestSessionFactory


def _entry(device_class: DeviceClass, check_in: int, check_out: int) -> DeviceRadiusEntry:
    return DeviceRadiusEntry(
        device_class=device_class,
        check_in_radius_meters=check_in,
        check_out_radius_meters=check_out,
    )


async def _stored_rows() -> dict[DeviceClass, tuple[int, int]]:
    async with TestSessionFactory() as session:
        rows = (await session.execute(select(DeviceRadiusSetting))).scalars().all()
        return {
            DeviceClass(r.device_class): (r.check_in_radius_meters, r.check_out_radius_meters)
            for r in rows
        }


# ═════════════════════════════════════════════════════════════════════
# Policy + cache
# ═════════════════════════════════════════════════════════════════════


class TestDeviceProximityPolicy:

    def test_defaults(self):
        policy = DeviceProximityPolicy()
        assert policy.threshold_for(DeviceClass.mobile, Direction.check_in) == 400
        assert policy.threshold_for(DeviceClass.tablet, Direction.check_out) == 400
        assert policy.threshold_for(DeviceClass.laptop, Direction.check_in) == 700
        assert policy.threshold_for(DeviceClass.desktop, Direction.check_in) == 2000
        assert policy.threshold_for(DeviceClass.desktop, Direction.check_out) == 1000

    def test_from_rows_merges_onto_defaults(self):
        row = DeviceRadiusSetting(
            device_class=DeviceClass.laptop,
            check_in_radius_meters=900,
            check_out_radius_meters=800,
        )
        policy = DeviceProximityPolicy.from_rows([row])
        assert policy.radii[DeviceClass.laptop] == (900, 800)
        assert policy.radii[DeviceClass.mobile] == DEFAULT_DEVICE_RADII[DeviceClass.mobile]


class TestTTLCache:

    def test_expires_after_ttl(self):
        now = [100.0]
        cache: TTLCache[str] = TTLCache(30, clock=lambda: now[0])
        cache.set("policy")
        now[0] = 129.9
        assert cache.get() == "policy"
        now[0] = 130.0
        assert cache.get() is None

    def test_clear(self):
        cache: TTLCache[str] = TTLCache(30)
        cache.set("policy")
        cache.clear()
        assert cache.get() is None

    def test_value_loaded_before_clear_is_not_stored(self):
        cache: TTLCache[str] = TTLCache(30)
        started_under = cache.generation
        cache.clear()

        assert cache.set("stale", generation=started_under) is False
        assert cache.get() is None
        assert cache.set("fresh", generation=cache.generation) is True
        assert cache.get() == "fresh"


# ═════════════════════════════════════════════════════════════════════
# DeviceRadiusService
# ═════════════════════════════════════════════════════════════════════


class TestDeviceRadiusService:

    async def test_get_policy_without_rows_returns_defaults(self, db):
        policy = await DeviceRadiusService.get_policy(db)
        assert dict(policy.radii) == DEFAULT_DEVICE_RADII

    async def test_get_policy_is_cached_until_invalidated(self, db):
        first = await DeviceRadiusService.get_policy(db)

        db.add(DeviceRadiusSetting(
            device_class=DeviceClass.mobile,
            check_in_radius_meters=150,
            check_out_radius_meters=150,
        ))
        await db.commit()

        assert await DeviceRadiusService.get_policy(db) is first

        DeviceRadiusService.invalidate_cache()
        fresh = await DeviceRadiusService.get_policy(db)
        assert fresh.radii[DeviceClass.mobile] == (150, 150)

    async def test_read_in_flight_during_invalidation_is_not_cached(self, db):
        entered = asyncio.Event()
        release = asyncio.Event()

        class _SlowSession:
            async def execute(self, _query):
                entered.set()
                await release.wait()
                return SimpleNamespace(scalars=lambda: SimpleNamespace(all=lambda: []))

        slow_read = asyncio.create_task(DeviceRadiusService.get_policy(_SlowSession()))
        await entered.wait()

        # An admin update lands while the slow read still holds the old rows
        db.add(DeviceRadiusSetting(
            device_class=DeviceClass.mobile,
            check_in_radius_meters=150,
            check_out_radius_meters=150,
        ))
        await db.commit()
        DeviceRadiusService.invalidate_cache()

        release.set()
        stale = await slow_read
        assert stale.radii[DeviceClass.mobile] == (400, 400)

        current = await DeviceRadiusService.get_policy(db)
        assert current.radii[DeviceClass.mobile] == (150, 150)

    async def test_replace_settings_upserts_and_audits(self, db, admin):
        policy = await DeviceRadiusService.replace_settings(
            db,
            [_entry(DeviceClass.mobile, 250, 300), _entry(DeviceClass.desktop, 3000, 1500)],
            admin.id,
            ip_address="10.0.0.7",
        )

        assert policy.radii[DeviceClass.mobile] == (250, 300)
        assert policy.radii[DeviceClass.desktop] == (3000, 1500)
        assert policy.radii[DeviceClass.laptop] == (700, 700)
        assert await _stored_rows() == {
            DeviceClass.mobile: (250, 300),
            DeviceClass.desktop: (3000, 1500),
        }

        async with TestSessionFactory() as session:
            audit = (await session.execute(
                select(AuditTrail).where(AuditTrail.action == "update_device_radius")
            )).scalars().one()
        assert audit.actor_id == admin.id
        assert audit.entity_id == DEVICE_RADIUS_ENTITY_ID
        assert audit.old_values["mobile"]["check_in_radius_meters"] == 400
        assert audit.new_values["mobile"]["check_in_radius_meters"] == 250

    async def test_replace_settings_is_visible_immediately(self, db, admin):
        await DeviceRadiusService.get_policy(db)  # warm the cache
        await DeviceRadiusService.replace_settings(
            db, [_entry(DeviceClass.tablet, 600, 500)], admin.id,
        )
        policy = await DeviceRadiusService.get_policy(db)
        assert policy.radii[DeviceClass.tablet] == (600, 500)

    async def test_second_update_overwrites_existing_row(self, db, admin):
        await DeviceRadiusService.replace_settings(db, [_entry(DeviceClass.mobile, 250, 250)], admin.id)
        await DeviceRadiusService.replace_settings(db, [_entry(DeviceClass.mobile, 450, 350)], admin.id)
        assert await _stored_rows() == {DeviceClass.mobile: (450, 350)}

    async def test_out_of_range_batch_is_rejected_whole(self, db, admin):
        await DeviceRadiusService.replace_settings(db, [_entry(DeviceClass.mobile, 250, 250)], admin.id)

        with pytest.raises(ValidationException) as exc_info:
            await DeviceRadiusService.replace_settings(
                db,
                [_entry(DeviceClass.mobile, 300, 300), _entry(DeviceClass.desktop, 6000, 1000)],
                admin.id,
            )

        assert "desktop.check_in_radius_meters" in exc_info.value.errors
        assert await _stored_rows() == {DeviceClass.mobile: (250, 250)}

    @pytest.mark.parametrize("value", [49, 5001, 0, -10])
    async def test_bounds(self, db, admin, value):
        with pytest.raises(ValidationException):
            await DeviceRadiusService.replace_settings(
                db, [_entry(DeviceClass.laptop, 700, value)], admin.id,
            )
        assert await _stored_rows() == {}

    async def test_bounds_are_inclusive(self, db, admin):
        policy = await DeviceRadiusService.replace_settings(
            db, [_entry(DeviceClass.laptop, 50, 5000)], admin.id,
        )
        assert policy.radii[DeviceClass.laptop] == (50, 5000)

    async def test_duplicate_device_class_rejected(self, db, admin):
        with pytest.raises(ValidationException) as exc_info:
            await DeviceRadiusService.replace_settings(
                db,
                [_entry(DeviceClass.mobile, 300, 300), _entry(DeviceClass.mobile, 350, 350)],
                admin.id,
            )
        assert "mobile" in exc_info.value.errors

    async def test_empty_batch_rejected(self, db, admin):
        with pytest.raises(ValidationException):
            await DeviceRadiusService.replace_settings(db, [], admin.id)

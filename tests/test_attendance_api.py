"""Attendance API: geofenced check-in / check-out, today's state, GPS samples."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from attendance_portal.attendance.ledger import AttendanceLedger
from attendance_portal.attendance.models import AttendanceRecord
from attendance_portal.common.audit import AuditTrail
from attendance_portal.common.constants import DeviceClass, UserRole
from attendance_portal.geofence.geomath import Coordinate
from tests.conftest import (
    HQ_LAT,
    HQ_LON,
    TestSessionFactory,
    _make_staff,
    auth_for,
    create_access_token,
    fix,
)

pytestmark = pytest.mark.usefixtures("clock")

BASE = "/api/v1/attendance"


async def _records(user_id) -> list[AttendanceRecord]:
    async with TestSessionFactory() as session:
        result = await session.execute(
            select(AttendanceRecord).where(AttendanceRecord.user_id == user_id)
        )
        return list(result.scalars().all())


# ═════════════════════════════════════════════════════════════════════
# Auth
# ═════════════════════════════════════════════════════════════════════


class TestAuthentication:

    async def test_missing_token(self, client):
        resp = await client.get(f"{BASE}/today")
        assert resp.status_code == 401

    async def test_expired_token(self, client, staff):
        token = create_access_token(staff.id, expired=True)
        resp = await client.get(f"{BASE}/today", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401
        assert "expired" in resp.json()["detail"].lower()

    async def test_inactive_profile(self, client, db):
        profile = await _make_staff(db, is_active=False)
        resp = await client.get(f"{BASE}/today", headers=auth_for(profile))
        assert resp.status_code == 401

    async def test_unknown_role_claim_is_treated_as_staff(self, client, staff):
        from jose import jwt

        from attendance_portal.config import settings

        token = jwt.encode(
            {
                "sub": str(staff.id),
                "role": "superuser",
                "exp": datetime.now(timezone.utc) + timedelta(hours=1),
            },
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM,
        )
        resp = await client.get(f"{BASE}/today", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200


# ═════════════════════════════════════════════════════════════════════
# Check in
# ═════════════════════════════════════════════════════════════════════


class TestCheckIn:

    async def test_on_site_check_in(self, client, staff):
        resp = await client.post(f"{BASE}/checkin", json=fix(120), headers=auth_for(staff))

        assert resp.status_code == 201
        body = resp.json()
        assert body["record"]["attendance_date"] == "2026-03-02"
        assert body["record"]["approval_status"] == "normal"
        assert body["record"]["is_countable"] is True
        assert body["record"]["check_in_location_name"] == "Mumbai HQ"
        assert body["distance_m"] == pytest.approx(120, abs=0.1)
        assert body["radius_m"] == 400
        assert body["warning"] is None

        async with TestSessionFactory() as session:
            audit = (await session.execute(
                select(AuditTrail).where(AuditTrail.action == "check_in")
            )).scalars().one()
        assert audit.actor_id == staff.id
        assert audit.new_values["device_class"] == "mobile"

    async def test_second_check_in_same_day_is_conflict(self, client, staff, clock):
        headers = auth_for(staff)
        first = await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)
        assert first.status_code == 201

        clock.advance(minutes=1)
        second = await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)

        assert second.status_code == 409
        assert second.json()["kind"] == "duplicate-session"
        assert second.headers["content-type"].startswith("application/problem+json")
        assert len(await _records(staff.id)) == 1

    async def test_check_in_after_checkout_is_conflict(self, client, staff, clock):
        headers = auth_for(staff)
        await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)
        clock.advance(hours=8)
        await client.post(f"{BASE}/checkout", json=fix(50), headers=headers)

        clock.advance(minutes=5)
        resp = await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)

        assert resp.status_code == 409
        assert "completed your attendance" in resp.json()["detail"]

    async def test_retry_from_off_site_reports_duplicate(self, client, staff, clock):
        headers = auth_for(staff)
        await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)

        clock.advance(minutes=30)
        resp = await client.post(f"{BASE}/checkin", json=fix(800), headers=headers)

        assert resp.status_code == 409
        assert resp.json()["kind"] == "duplicate-session"

    async def test_off_site_check_in_is_rejected(self, client, staff):
        resp = await client.post(f"{BASE}/checkin", json=fix(800), headers=auth_for(staff))

        assert resp.status_code == 422
        body = resp.json()
        assert body["kind"] == "off-site"
        assert body["errors"]["radius_m"] == ["400"]
        assert await _records(staff.id) == []

    async def test_desktop_radius_is_wider(self, client, staff):
        resp = await client.post(
            f"{BASE}/checkin",
            json=fix(1500, device_class="desktop"),
            headers=auth_for(staff),
        )
        assert resp.status_code == 201
        assert resp.json()["radius_m"] == 2000

    async def test_staff_without_location_is_off_site(self, client, db):
        profile = await _make_staff(db)
        resp = await client.post(f"{BASE}/checkin", json=fix(0), headers=auth_for(profile))

        assert resp.status_code == 422
        assert resp.json()["kind"] == "off-site"

    async def test_late_check_in_requires_reason(self, client, staff, clock):
        clock.now = datetime(2026, 3, 2, 10, 15, tzinfo=timezone.utc)

        resp = await client.post(f"{BASE}/checkin", json=fix(50), headers=auth_for(staff))
        assert resp.status_code == 422
        assert "lateness_reason" in resp.json()["errors"]
        assert await _records(staff.id) == []

        resp = await client.post(
            f"{BASE}/checkin",
            json=fix(50, lateness_reason="Train delayed"),
            headers=auth_for(staff),
        )
        assert resp.status_code == 201
        record = resp.json()["record"]
        assert record["is_late"] is True
        assert record["lateness_reason"] == "Train delayed"

    async def test_invalid_coordinates_are_rejected(self, client, staff):
        resp = await client.post(
            f"{BASE}/checkin",
            json={"latitude": 95.0, "longitude": HQ_LON},
            headers=auth_for(staff),
        )
        assert resp.status_code == 422
        assert "latitude" in resp.json()["errors"]

    async def test_missed_checkout_is_auto_closed(self, client, staff, db):
        await AttendanceLedger.open_session(
            db,
            user_id=staff.id,
            check_in_time=datetime(2026, 2, 27, 8, 45, tzinfo=timezone.utc),
            location=Coordinate(HQ_LAT, HQ_LON),
            device_class=DeviceClass.mobile,
        )
        await db.commit()

        resp = await client.post(f"{BASE}/checkin", json=fix(50), headers=auth_for(staff))

        assert resp.status_code == 201
        body = resp.json()
        assert body["missed_checkouts"] == ["2026-02-27"]
        assert "2026-02-27" in body["warning"]

        records = {r.attendance_date: r for r in await _records(staff.id)}
        assert records[date(2026, 2, 27)].check_out_time is not None
        assert records[date(2026, 3, 2)].check_out_time is None


# ═════════════════════════════════════════════════════════════════════
# Check out
# ═════════════════════════════════════════════════════════════════════


class TestCheckOut:

    async def test_check_out_computes_work_hours(self, client, staff, clock):
        headers = auth_for(staff)
        await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)

        clock.advance(hours=8, minutes=30)
        resp = await client.post(f"{BASE}/checkout", json=fix(80), headers=headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["work_hours"] == 8.5
        assert body["record"]["check_out_time"] is not None
        assert body["radius_m"] == 400

    async def test_check_out_without_check_in(self, client, staff):
        resp = await client.post(f"{BASE}/checkout", json=fix(50), headers=auth_for(staff))
        assert resp.status_code == 409
        assert resp.json()["kind"] == "no-open-session"

    async def test_double_check_out(self, client, staff, clock):
        headers = auth_for(staff)
        await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)
        clock.advance(hours=4)
        assert (await client.post(f"{BASE}/checkout", json=fix(50), headers=headers)).status_code == 200

        clock.advance(minutes=1)
        resp = await client.post(f"{BASE}/checkout", json=fix(50), headers=headers)
        assert resp.status_code == 409
        assert resp.json()["kind"] == "no-open-session"

    async def test_off_site_check_out_is_rejected(self, client, staff, clock):
        headers = auth_for(staff)
        await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)
        clock.advance(hours=8)

        resp = await client.post(f"{BASE}/checkout", json=fix(1200), headers=headers)

        assert resp.status_code == 422
        assert resp.json()["kind"] == "off-site"
        [record] = await _records(staff.id)
        assert record.check_out_time is None

    async def test_desktop_check_out_uses_check_out_radius(self, client, staff, clock):
        headers = auth_for(staff)
        await client.post(f"{BASE}/checkin", json=fix(1500, device_class="desktop"), headers=headers)
        clock.advance(hours=8)

        resp = await client.post(f"{BASE}/checkout", json=fix(1500, device_class="desktop"), headers=headers)
        assert resp.status_code == 422
        assert resp.json()["errors"]["radius_m"] == ["1000"]


# ═════════════════════════════════════════════════════════════════════
# Today
# ═════════════════════════════════════════════════════════════════════


class TestToday:

    async def test_status_progression(self, client, staff, clock):
        headers = auth_for(staff)

        resp = await client.get(f"{BASE}/today", headers=headers)
        assert resp.json()["status"] == "not_checked_in"
        assert resp.json()["can_check_in"] is True

        await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)
        resp = await client.get(f"{BASE}/today", headers=headers)
        assert resp.json()["status"] == "checked_in"
        assert resp.json()["can_check_out"] is True

        clock.advance(hours=8)
        await client.post(f"{BASE}/checkout", json=fix(50), headers=headers)
        resp = await client.get(f"{BASE}/today", headers=headers)
        body = resp.json()
        assert body["status"] == "checked_out"
        assert body["can_check_in"] is False
        assert body["can_check_out"] is False
        assert body["attendance_date"] == "2026-03-02"


# ═════════════════════════════════════════════════════════════════════
# GPS samples
# ═════════════════════════════════════════════════════════════════════


class TestLocationSamples:

    def _samples(self, *meters: float) -> list[dict]:
        start = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
        return [
            {
                "latitude": fix(m)["latitude"],
                "longitude": HQ_LON,
                "accuracy": 8.0,
                "timestamp": (start + timedelta(seconds=i * 2)).isoformat(),
            }
            for i, m in enumerate(meters)
        ]

    async def test_status_unknown_before_first_batch(self, client, staff):
        resp = await client.get(f"{BASE}/location-status", headers=auth_for(staff))
        assert resp.status_code == 404

    async def test_full_batch_updates_status(self, client, staff):
        headers = auth_for(staff)
        resp = await client.post(
            f"{BASE}/location-samples",
            json={"device_class": "mobile", "samples": self._samples(0, 100, 200)},
            headers=headers,
        )
        assert resp.status_code == 202
        assert resp.json() == {"accepted": 3, "dropped": 0, "pending": 0}

        resp = await client.get(f"{BASE}/location-status", headers=headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["kind"] == "on_site"
        assert body["distance_m"] == pytest.approx(200, abs=0.1)
        assert body["samples_in_batch"] == 3

    async def test_jitter_is_dropped(self, client, staff):
        resp = await client.post(
            f"{BASE}/location-samples",
            json={"samples": self._samples(0, 2, 4)},
            headers=auth_for(staff),
        )
        assert resp.json() == {"accepted": 1, "dropped": 2, "pending": 1}

    async def test_off_site_stream(self, client, staff):
        headers = auth_for(staff)
        await client.post(
            f"{BASE}/location-samples",
            json={"samples": self._samples(900, 950, 1000)},
            headers=headers,
        )
        resp = await client.get(f"{BASE}/location-status", headers=headers)
        assert resp.json()["kind"] == "off_site"

    async def test_checkout_stops_tracking(self, client, staff, clock, location_registry):
        headers = auth_for(staff)
        await client.post(f"{BASE}/checkin", json=fix(50), headers=headers)
        await client.post(
            f"{BASE}/location-samples",
            json={"samples": self._samples(0, 100, 200, 300)},
            headers=headers,
        )
        assert staff.id in location_registry

        clock.advance(hours=8)
        resp = await client.post(f"{BASE}/checkout", json=fix(50), headers=headers)

        assert resp.status_code == 200
        assert staff.id not in location_registry
        resp = await client.get(f"{BASE}/location-status", headers=headers)
        assert resp.status_code == 404

    async def test_empty_sample_list_rejected(self, client, staff):
        resp = await client.post(
            f"{BASE}/location-samples", json={"samples": []}, headers=auth_for(staff),
        )
        assert resp.status_code == 422


class TestHealth:

    async def test_health(self, client):
        resp = await client.get("/api/v1/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


@pytest.mark.parametrize("role", [UserRole.staff, UserRole.admin])
async def test_any_role_can_read_today(client, db, role):
    profile = await _make_staff(db, role=role)
    resp = await client.get(f"{BASE}/today", headers=auth_for(profile))
    assert resp.status_code == 200
    assert resp.json()["record"] is None
    assert resp.json()["status"] == "not_checked_in"

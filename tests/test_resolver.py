"""Device-aware on-site / off-site classification."""

from __future__ import annotations

import pytest

from attendance_portal.common.constants import DeviceClass, Direction, LocationKind
from attendance_portal.geofence.geomath import Coordinate, within_radius
from attendance_portal.geofence.proximity import DEFAULT_DEVICE_RADII, DeviceProximityPolicy
from attendance_portal.geofence.resolver import LocationResolver
from tests.conftest import HQ_LAT, HQ_LON, north_of

HQ = Coordinate(HQ_LAT, HQ_LON)


def _at(meters: float) -> Coordinate:
    return Coordinate(north_of(HQ_LAT, meters), HQ_LON)


class TestClassify:

    def test_mobile_350m_is_on_site(self):
        result = LocationResolver.classify(
            HQ, _at(350), DeviceClass.mobile, Direction.check_in, DeviceProximityPolicy(),
        )
        assert result.kind == LocationKind.on_site
        assert result.on_site
        assert result.distance_m == pytest.approx(350, abs=0.01)
        assert result.radius_m == 400

    def test_mobile_800m_is_off_site(self):
        result = LocationResolver.classify(
            HQ, _at(800), DeviceClass.mobile, Direction.check_in, DeviceProximityPolicy(),
        )
        assert result.kind == LocationKind.off_site
        assert result.distance_m == pytest.approx(800, abs=0.01)

    def test_laptop_uses_wider_radius(self):
        result = LocationResolver.classify(
            HQ, _at(650), DeviceClass.laptop, Direction.check_in, DeviceProximityPolicy(),
        )
        assert result.on_site
        assert result.radius_m == 700

    def test_desktop_check_out_radius_is_tighter(self):
        policy = DeviceProximityPolicy()
        check_in = LocationResolver.classify(
            HQ, _at(1500), DeviceClass.desktop, Direction.check_in, policy,
        )
        check_out = LocationResolver.classify(
            HQ, _at(1500), DeviceClass.desktop, Direction.check_out, policy,
        )
        assert check_in.on_site
        assert not check_out.on_site
        assert check_out.radius_m == 1000

    def test_just_inside_radius_is_on_site(self):
        policy = DeviceProximityPolicy(radii={**DEFAULT_DEVICE_RADII, DeviceClass.mobile: (500, 500)})
        sample = _at(499.999)
        assert LocationResolver.classify(
            HQ, sample, DeviceClass.mobile, Direction.check_in, policy,
        ).on_site

    @pytest.mark.parametrize("meters", [0, 399.9, 400.1, 2500])
    def test_agrees_with_within_radius(self, meters):
        result = LocationResolver.classify(
            HQ, _at(meters), DeviceClass.tablet, Direction.check_out, DeviceProximityPolicy(),
        )
        assert result.on_site == within_radius(_at(meters), HQ, 400)

    def test_no_assigned_location_is_off_site(self):
        result = LocationResolver.classify(
            None, HQ, DeviceClass.mobile, Direction.check_in, DeviceProximityPolicy(),
        )
        assert result.kind == LocationKind.off_site
        assert result.distance_m is None
        assert result.radius_m == 400

    def test_policy_override_applies(self):
        policy = DeviceProximityPolicy(
            radii={**DEFAULT_DEVICE_RADII, DeviceClass.mobile: (1000, 200)},
        )
        assert LocationResolver.classify(
            HQ, _at(800), DeviceClass.mobile, Direction.check_in, policy,
        ).on_site
        assert not LocationResolver.classify(
            HQ, _at(800), DeviceClass.mobile, Direction.check_out, policy,
        ).on_site

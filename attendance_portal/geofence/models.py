"""Geofence ORM model: per-device-class check-in / check-out radius overrides."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from attendance_portal.common.constants import DeviceClass
from attendance_portal.database import Base


class DeviceRadiusSetting(Base):
    __tablename__ = "device_radius_settings"
    __table_args__ = (
        sa.CheckConstraint(
            "check_in_radius_meters BETWEEN 50 AND 5000",
            name="ck_device_radius_check_in_range",
        ),
        sa.CheckConstraint(
            "check_out_radius_meters BETWEEN 50 AND 5000",
            name="ck_device_radius_check_out_range",
        ),
    )

    device_class: Mapped[DeviceClass] = mapped_column(
        sa.Enum(DeviceClass, name="device_class", native_enum=False, length=16),
        primary_key=True,
    )
    check_in_radius_meters: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    check_out_radius_meters: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
    updated_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("user_profiles.id"),
    )

    def __repr__(self) -> str:
        return (
            f"<DeviceRadiusSetting {self.device_class.value} "
            f"in={self.check_in_radius_meters} out={self.check_out_radius_meters}>"
        )

"""Attendance ORM model: one AttendanceRecord per staff member per calendar day."""

from __future__ import annotations

import enum
import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_portal.common.constants import ApprovalStatus, CheckMethod, DeviceClass
from attendance_portal.core_hr.models import StaffProfile
from attendance_portal.database import Base


def _one_of(column: str, values: type[enum.Enum]) -> sa.CheckConstraint:
    """Same VARCHAR + CHECK rule the migration puts on enum-valued columns."""
    allowed = ", ".join(f"'{v.value}'" for v in values)
    return sa.CheckConstraint(
        f"{column} IN ({allowed})", name=f"ck_attendance_records_{column}",
    )


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "attendance_date", name="uq_attendance_user_date"
        ),
        # A skewed checkout keeps its raw time; only work_hours is clamped
        sa.CheckConstraint(
            "work_hours IS NULL OR work_hours >= 0",
            name="ck_attendance_work_hours_non_negative",
        ),
        _one_of("approval_status", ApprovalStatus),
        _one_of("check_in_method", CheckMethod),
        _one_of("check_out_method", CheckMethod),
        _one_of("device_class", DeviceClass),
        sa.Index("ix_attendance_records_offpremises_request", "off_premises_request_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("user_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attendance_date: Mapped[date] = mapped_column(sa.Date, nullable=False)

    # Check-in
    check_in_time: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False
    )
    check_in_latitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    check_in_longitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    check_in_location_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    check_in_location_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("geofence_locations.id")
    )
    check_in_method: Mapped[CheckMethod] = mapped_column(
        sa.Enum(CheckMethod, name="check_method", native_enum=False, length=32),
        default=CheckMethod.gps,
    )

    # Check-out
    check_out_time: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    check_out_latitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    check_out_longitude: Mapped[Optional[float]] = mapped_column(sa.Float)
    check_out_location_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    check_out_method: Mapped[Optional[CheckMethod]] = mapped_column(
        sa.Enum(CheckMethod, name="check_method", native_enum=False, length=32),
    )
    work_hours: Mapped[Optional[float]] = mapped_column(sa.Numeric(5, 2, asdecimal=False))

    # Approval / classification
    approval_status: Mapped[ApprovalStatus] = mapped_column(
        sa.Enum(ApprovalStatus, name="approval_status", native_enum=False, length=40),
        default=ApprovalStatus.normal,
        nullable=False,
    )
    on_official_duty_outside_premises: Mapped[bool] = mapped_column(
        sa.Boolean, default=False
    )
    off_premises_request_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True)
    )
    supervisor_approval_remarks: Mapped[Optional[str]] = mapped_column(sa.Text)
    device_class: Mapped[Optional[DeviceClass]] = mapped_column(
        sa.Enum(DeviceClass, name="device_class", native_enum=False, length=16),
    )
    is_late: Mapped[bool] = mapped_column(sa.Boolean, default=False)
    lateness_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    clock_skew_flagged: Mapped[bool] = mapped_column(sa.Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    user: Mapped[StaffProfile] = relationship()

    @property
    def is_open(self) -> bool:
        return self.check_out_time is None

    @property
    def is_countable(self) -> bool:
        """Counts as present: not awaiting or denied supervisor approval."""
        return self.approval_status in (
            ApprovalStatus.normal,
            ApprovalStatus.approved_offpremises,
        )

    def __repr__(self) -> str:
        return (
            f"<AttendanceRecord {self.user_id} {self.attendance_date} "
            f"{self.approval_status.value}>"
        )

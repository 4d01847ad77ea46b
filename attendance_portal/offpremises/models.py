"""Off-premises check-in request: staff outside their geofence asking to be credited."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from attendance_portal.common.constants import DeviceClass, OffPremisesStatus
from attendance_portal.core_hr.models import StaffProfile
from attendance_portal.database import Base


class OffPremisesRequest(Base):
    __tablename__ = "pending_offpremises_checkins"
    __table_args__ = (
        sa.Index("ix_offpremises_status_created", "status", "created_at"),
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
    latitude: Mapped[float] = mapped_column(sa.Float, nullable=False)
    longitude: Mapped[float] = mapped_column(sa.Float, nullable=False)
    accuracy: Mapped[Optional[float]] = mapped_column(sa.Float)
    location_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    google_maps_name: Mapped[Optional[str]] = mapped_column(sa.String(255))
    device_info = mapped_column(JSONB, nullable=True)
    device_class: Mapped[DeviceClass] = mapped_column(
        sa.Enum(DeviceClass, name="device_class", native_enum=False, length=16),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)

    status: Mapped[OffPremisesStatus] = mapped_column(
        sa.Enum(OffPremisesStatus, name="offpremises_status", native_enum=False, length=16),
        default=OffPremisesStatus.pending,
        nullable=False,
    )
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("user_profiles.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True)
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    linked_attendance_record_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("attendance_records.id", ondelete="SET NULL"),
    )

    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    requester: Mapped[StaffProfile] = relationship(foreign_keys=[user_id])
    approved_by: Mapped[Optional[StaffProfile]] = relationship(
        foreign_keys=[approved_by_id]
    )

    def __repr__(self) -> str:
        return f"<OffPremisesRequest {self.id} {self.status.value} user={self.user_id}>"

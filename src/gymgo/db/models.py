from __future__ import annotations

import uuid
from datetime import UTC, date, datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(200))
    # IANA name; NULL means "use the configured default".
    timezone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

    class_templates: Mapped[list[ClassTemplate]] = relationship(back_populates="organization")


class ClassTemplate(Base):
    __tablename__ = "class_templates"
    __table_args__ = (
        CheckConstraint(
            "day_of_week >= 0 AND day_of_week <= 6", name="ck_class_templates_day_of_week"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("organizations.id"), index=True)

    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    class_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # 0 = Sunday, 1 = Monday, ..., 6 = Saturday
    day_of_week: Mapped[int] = mapped_column(Integer)
    # Wall-clock "HH:MM" in the organization's timezone
    start_time: Mapped[str] = mapped_column(String(8))
    end_time: Mapped[str] = mapped_column(String(8))

    max_capacity: Mapped[int] = mapped_column(Integer, default=20)
    waitlist_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    max_waitlist: Mapped[int] = mapped_column(Integer, default=5)

    instructor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    instructor_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    booking_opens_hours: Mapped[int] = mapped_column(Integer, default=168)
    booking_closes_minutes: Mapped[int] = mapped_column(Integer, default=60)
    cancellation_deadline_hours: Mapped[int] = mapped_column(Integer, default=2)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    organization: Mapped[Organization] = relationship(back_populates="class_templates")


class GymClass(Base):
    __tablename__ = "classes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("organizations.id"), index=True)
    template_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("class_templates.id", ondelete="SET NULL"), nullable=True, index=True
    )

    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    class_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    max_capacity: Mapped[int] = mapped_column(Integer, default=20)
    current_bookings: Mapped[int] = mapped_column(Integer, default=0)
    waitlist_enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    max_waitlist: Mapped[int] = mapped_column(Integer, default=5)

    instructor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    instructor_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    booking_opens_hours: Mapped[int] = mapped_column(Integer, default=168)
    booking_closes_minutes: Mapped[int] = mapped_column(Integer, default=60)
    cancellation_deadline_hours: Mapped[int] = mapped_column(Integer, default=2)

    is_cancelled: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )


class ClassGenerationLog(Base):
    __tablename__ = "class_generation_log"
    __table_args__ = (
        # One class per template per calendar date. Concurrent generation runs
        # rely on this constraint, not on a read-before-write check.
        UniqueConstraint(
            "template_id", "generated_date", name="uq_class_generation_log_template_date"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("organizations.id"), index=True)
    template_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("class_templates.id", ondelete="CASCADE"), index=True
    )
    generated_class_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("classes.id", ondelete="CASCADE")
    )
    generated_date: Mapped[date] = mapped_column(Date, index=True)

    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC)
    )

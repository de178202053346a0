from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_attendance.db import Base


class EventType(str, enum.Enum):
    ENTER = "ENTER"
    EXIT = "EXIT"


class TriggerMethod(str, enum.Enum):
    GPS = "GPS"
    MANUAL = "MANUAL"
    QR = "QR"
    BEACON = "BEACON"
    NFC = "NFC"


class AttendanceStatus(str, enum.Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    BELOW_TARGET = "BELOW_TARGET"
    ABSENT = "ABSENT"
    INCOMPLETE = "INCOMPLETE"


class NotificationType(str, enum.Enum):
    PUSH = "PUSH"
    EMAIL = "EMAIL"
    SMS = "SMS"


class NotificationReason(str, enum.Enum):
    MISSING_SPA = "MISSING_SPA"


class AuditActorType(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    SYSTEM = "SYSTEM"


class Site(Base):
    __tablename__ = "sites"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    geofence_radius_m: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False, default="", server_default=text("''"))
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class AttendanceSettings(Base):
    __tablename__ = "attendance_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    expected_hours_per_day: Mapped[Decimal] = mapped_column(Numeric(4, 2), nullable=False)
    geofence_radius_m: Mapped[int] = mapped_column(Integer, nullable=False)
    noise_threshold_m: Mapped[int] = mapped_column(Integer, nullable=False)
    spa_grace_period_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    include_saturday: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    include_sunday: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    enable_push_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    enable_email_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    enable_sms_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    notification_title: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        default="Site Photo Attendance Required",
        server_default=text("'Site Photo Attendance Required'"),
    )
    notification_message: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
        default="Please submit your site photo attendance for today.",
        server_default=text("'Please submit your site photo attendance for today.'"),
    )


class DeviceRegistration(Base):
    __tablename__ = "device_registrations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    employee_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    device_identifier: Mapped[str] = mapped_column(String(200), nullable=False)
    device_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "device_identifier", name="uq_device_registrations_tenant_identifier"),
    )


class AttendanceEvent(Base):
    __tablename__ = "attendance_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False)
    event_type: Mapped[EventType] = mapped_column(
        Enum(EventType, name="attendance_event_type"),
        nullable=False,
    )
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    trigger_method: Mapped[TriggerMethod] = mapped_column(
        Enum(TriggerMethod, name="attendance_trigger_method"),
        nullable=False,
        default=TriggerMethod.GPS,
    )
    device_registration_id: Mapped[int | None] = mapped_column(
        ForeignKey("device_registrations.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_noise: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    distance_to_site_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        Index("ix_attendance_events_tenant_processed_ts", "tenant_id", "processed", "ts_utc"),
        Index("ix_attendance_events_tenant_employee_site_ts", "tenant_id", "employee_id", "site_id", "ts_utc"),
    )


class AttendanceSummary(Base):
    __tablename__ = "attendance_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False)
    summary_date: Mapped[date] = mapped_column(Date, nullable=False)
    expected_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    first_entry_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_exit_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    total_minutes: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    utilization_percent: Mapped[Decimal] = mapped_column(
        Numeric(7, 2), nullable=False, default=Decimal("0"), server_default=text("0")
    )
    entry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    exit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    has_spa: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_summary_status"),
        nullable=False,
        default=AttendanceStatus.ABSENT,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee | None] = relationship(lazy="joined")
    site: Mapped[Site | None] = relationship(lazy="joined")

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "employee_id",
            "site_id",
            "summary_date",
            name="uq_attendance_summaries_tenant_employee_site_date",
        ),
        Index("ix_attendance_summaries_tenant_date", "tenant_id", "summary_date"),
    )


class SitePhotoAttendance(Base):
    __tablename__ = "site_photo_attendances"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False)
    site_id: Mapped[int] = mapped_column(ForeignKey("sites.id", ondelete="RESTRICT"), nullable=False)
    event_date: Mapped[date] = mapped_column(Date, nullable=False)
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    distance_to_site_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    weather_conditions: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "employee_id",
            "site_id",
            "event_date",
            name="uq_site_photo_attendances_tenant_employee_site_date",
        ),
    )


class BankHoliday(Base):
    __tablename__ = "bank_holidays"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)


class AttendanceNotification(Base):
    __tablename__ = "attendance_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="RESTRICT"), nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="attendance_notification_type"),
        nullable=False,
    )
    reason: Mapped[NotificationReason] = mapped_column(
        Enum(NotificationReason, name="attendance_notification_reason"),
        nullable=False,
    )
    message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    error_message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    related_event_id: Mapped[int | None] = mapped_column(
        ForeignKey("attendance_events.id", ondelete="SET NULL"),
        nullable=True,
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    tenant_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    entity_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

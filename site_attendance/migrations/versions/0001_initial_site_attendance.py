"""Initial site attendance schema

Revision ID: 0001_initial_site_attendance
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial_site_attendance"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

attendance_event_type = postgresql.ENUM("ENTER", "EXIT", name="attendance_event_type", create_type=False)
attendance_trigger_method = postgresql.ENUM(
    "GPS",
    "MANUAL",
    "QR",
    "BEACON",
    "NFC",
    name="attendance_trigger_method",
    create_type=False,
)
attendance_summary_status = postgresql.ENUM(
    "EXCELLENT",
    "GOOD",
    "BELOW_TARGET",
    "ABSENT",
    "INCOMPLETE",
    name="attendance_summary_status",
    create_type=False,
)
attendance_notification_type = postgresql.ENUM(
    "PUSH",
    "EMAIL",
    "SMS",
    name="attendance_notification_type",
    create_type=False,
)
attendance_notification_reason = postgresql.ENUM(
    "MISSING_SPA",
    name="attendance_notification_reason",
    create_type=False,
)
audit_actor_type = postgresql.ENUM("EMPLOYEE", "SYSTEM", name="audit_actor_type", create_type=False)

ENUM_TYPES = (
    attendance_event_type,
    attendance_trigger_method,
    attendance_summary_status,
    attendance_notification_type,
    attendance_notification_reason,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUM_TYPES:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "sites",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("geofence_radius_m", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_sites_tenant_id", "sites", ["tenant_id"])

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False, server_default=sa.text("''")),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
    )
    op.create_index("ix_employees_tenant_id", "employees", ["tenant_id"])

    op.create_table(
        "attendance_settings",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("expected_hours_per_day", sa.Numeric(4, 2), nullable=False),
        sa.Column("geofence_radius_m", sa.Integer(), nullable=False),
        sa.Column("noise_threshold_m", sa.Integer(), nullable=False),
        sa.Column("spa_grace_period_minutes", sa.Integer(), nullable=False),
        sa.Column("include_saturday", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("include_sunday", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("enable_push_notifications", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("enable_email_notifications", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("enable_sms_notifications", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "notification_title",
            sa.String(length=200),
            nullable=False,
            server_default=sa.text("'Site Photo Attendance Required'"),
        ),
        sa.Column(
            "notification_message",
            sa.String(length=500),
            nullable=False,
            server_default=sa.text("'Please submit your site photo attendance for today.'"),
        ),
        sa.UniqueConstraint("tenant_id", name="uq_attendance_settings_tenant_id"),
        sa.CheckConstraint(
            "geofence_radius_m BETWEEN 10 AND 10000",
            name="ck_attendance_settings_geofence_radius_m",
        ),
        sa.CheckConstraint(
            "noise_threshold_m BETWEEN 10 AND 10000",
            name="ck_attendance_settings_noise_threshold_m",
        ),
    )

    op.create_table(
        "device_registrations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("device_identifier", sa.String(length=200), nullable=False),
        sa.Column("device_name", sa.String(length=200), nullable=True),
        sa.Column("platform", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "registered_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("tenant_id", "device_identifier", name="uq_device_registrations_tenant_identifier"),
    )
    op.create_index("ix_device_registrations_tenant_id", "device_registrations", ["tenant_id"])

    op.create_table(
        "attendance_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("event_type", attendance_event_type, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("trigger_method", attendance_trigger_method, nullable=False),
        sa.Column("device_registration_id", sa.Integer(), nullable=True),
        sa.Column("is_noise", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("distance_to_site_m", sa.Float(), nullable=True),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        _created_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["device_registration_id"], ["device_registrations.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_attendance_events_tenant_processed_ts",
        "attendance_events",
        ["tenant_id", "processed", "ts_utc"],
    )
    op.create_index(
        "ix_attendance_events_tenant_employee_site_ts",
        "attendance_events",
        ["tenant_id", "employee_id", "site_id", "ts_utc"],
    )

    op.create_table(
        "attendance_summaries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("summary_date", sa.Date(), nullable=False),
        sa.Column("expected_hours", sa.Numeric(5, 2), nullable=False),
        sa.Column("first_entry_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_exit_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_minutes", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("utilization_percent", sa.Numeric(7, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("entry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("exit_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("has_spa", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("status", attendance_summary_status, nullable=False),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint(
            "tenant_id",
            "employee_id",
            "site_id",
            "summary_date",
            name="uq_attendance_summaries_tenant_employee_site_date",
        ),
    )
    op.create_index("ix_attendance_summaries_tenant_date", "attendance_summaries", ["tenant_id", "summary_date"])

    op.create_table(
        "site_photo_attendances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("distance_to_site_m", sa.Float(), nullable=True),
        sa.Column("weather_conditions", sa.String(length=100), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["site_id"], ["sites.id"], ondelete="RESTRICT"),
        sa.UniqueConstraint(
            "tenant_id",
            "employee_id",
            "site_id",
            "event_date",
            name="uq_site_photo_attendances_tenant_employee_site_date",
        ),
    )

    op.create_table(
        "bank_holidays",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("holiday_date", sa.Date(), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
    )
    op.create_index("ix_bank_holidays_tenant_id", "bank_holidays", ["tenant_id"])

    op.create_table(
        "attendance_notifications",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("notification_type", attendance_notification_type, nullable=False),
        sa.Column("reason", attendance_notification_reason, nullable=False),
        sa.Column("message", sa.String(length=500), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("delivered", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("error_message", sa.String(length=500), nullable=True),
        sa.Column("related_event_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["related_event_id"], ["attendance_events.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_attendance_notifications_tenant_id", "attendance_notifications", ["tenant_id"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=True),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])
    op.create_index("ix_audit_logs_tenant_id", "audit_logs", ["tenant_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_tenant_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_attendance_notifications_tenant_id", table_name="attendance_notifications")
    op.drop_table("attendance_notifications")
    op.drop_index("ix_bank_holidays_tenant_id", table_name="bank_holidays")
    op.drop_table("bank_holidays")
    op.drop_table("site_photo_attendances")
    op.drop_index("ix_attendance_summaries_tenant_date", table_name="attendance_summaries")
    op.drop_table("attendance_summaries")
    op.drop_index("ix_attendance_events_tenant_employee_site_ts", table_name="attendance_events")
    op.drop_index("ix_attendance_events_tenant_processed_ts", table_name="attendance_events")
    op.drop_table("attendance_events")
    op.drop_index("ix_device_registrations_tenant_id", table_name="device_registrations")
    op.drop_table("device_registrations")
    op.drop_table("attendance_settings")
    op.drop_index("ix_employees_tenant_id", table_name="employees")
    op.drop_table("employees")
    op.drop_index("ix_sites_tenant_id", table_name="sites")
    op.drop_table("sites")

    bind = op.get_bind()
    for enum_type in reversed(ENUM_TYPES):
        enum_type.drop(bind, checkfirst=True)

"""Time-clock attendance: punch log, device mappings, schedules, records, watermark

Revision ID: 001_time_clock_attendance
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001_time_clock_attendance"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "attendancestatus": (
        "PRESENT", "LATE", "EARLY_LEAVE", "LATE_AND_EARLY", "OVERTIME",
        "NON_COMPLIANT", "INCOMPLETE", "ABSENT", "NO_SHIFT",
    ),
    "checkinstatus": ("ON_TIME", "LATE", "MISSED", "PENDING"),
    "checkoutstatus": ("ON_TIME", "EARLY", "OVERTIME", "MISSED", "PENDING"),
    "attendancesource": ("DEVICE", "MANUAL", "WEB"),
    "attendanceeventtype": ("CHECK_IN", "CHECK_OUT"),
}


def _enum(name: str, is_pg: bool):
    # attendancesource is shared by two tables; on PostgreSQL the types are created once up front
    if is_pg:
        return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)
    return sa.Enum(*ENUMS[name], name=name)


def upgrade() -> None:
    bind = op.get_bind()
    is_pg = bind.dialect.name == "postgresql"
    ts_default = sa.text("now()") if is_pg else sa.text("CURRENT_TIMESTAMP")

    if is_pg:
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("emp_code", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_employees_id"), "employees", ["id"], unique=False)
    op.create_index(op.f("ix_employees_emp_code"), "employees", ["emp_code"], unique=True)

    op.create_table(
        "attendance_machine_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("epoch", sa.BigInteger(), nullable=False),
        sa.Column("device_code", sa.String(), nullable=False),
        sa.Column("device_user_code", sa.String(), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("epoch_ms", sa.BigInteger(), nullable=False),
        sa.Column("machine_id", sa.Integer(), nullable=True),
        sa.Column("device_ip", sa.String(), nullable=True),
        sa.Column("user_sn", sa.Integer(), nullable=True),
        sa.Column("verify_type", sa.String(), nullable=True),
        sa.Column("in_out", sa.String(), nullable=True),
        sa.Column("dedupe_key", sa.String(), nullable=False),
        sa.Column("raw", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("dedupe_key"),
    )
    op.create_index(op.f("ix_attendance_machine_events_id"), "attendance_machine_events", ["id"], unique=False)
    op.create_index(op.f("ix_attendance_machine_events_epoch"), "attendance_machine_events", ["epoch"], unique=True)
    op.create_index(op.f("ix_attendance_machine_events_occurred_at"), "attendance_machine_events", ["occurred_at"], unique=False)
    op.create_index("ix_machine_events_device_user", "attendance_machine_events", ["device_code", "device_user_code"], unique=False)

    op.create_table(
        "attendance_device_user_mappings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("device_code", sa.String(), nullable=False),
        sa.Column("device_user_code", sa.String(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("device_code", "device_user_code", name="uq_device_user_mapping"),
    )
    op.create_index(op.f("ix_attendance_device_user_mappings_id"), "attendance_device_user_mappings", ["id"], unique=False)
    op.create_index(op.f("ix_attendance_device_user_mappings_device_code"), "attendance_device_user_mappings", ["device_code"], unique=False)
    op.create_index(op.f("ix_attendance_device_user_mappings_employee_id"), "attendance_device_user_mappings", ["employee_id"], unique=False)

    op.create_table(
        "work_schedules",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("planned_start", sa.String(length=5), nullable=False),
        sa.Column("planned_end", sa.String(length=5), nullable=False),
        sa.Column("planned_break_minutes", sa.Integer(), nullable=True),
        sa.Column("planned_late_grace_minutes", sa.Integer(), nullable=True),
        sa.Column("planned_early_grace_minutes", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_work_schedule_employee_date"),
    )
    op.create_index(op.f("ix_work_schedules_id"), "work_schedules", ["id"], unique=False)
    op.create_index(op.f("ix_work_schedules_employee_id"), "work_schedules", ["employee_id"], unique=False)
    op.create_index(op.f("ix_work_schedules_work_date"), "work_schedules", ["work_date"], unique=False)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("schedule_id", sa.Integer(), nullable=True),
        sa.Column("check_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("check_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", _enum("attendancestatus", is_pg), nullable=False, server_default="INCOMPLETE"),
        sa.Column("check_in_status", _enum("checkinstatus", is_pg), nullable=True),
        sa.Column("check_out_status", _enum("checkoutstatus", is_pg), nullable=True),
        sa.Column("planned_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("work_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("break_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("early_leave_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("overtime_minutes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("forced_auto_checkout", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("source", _enum("attendancesource", is_pg), nullable=False, server_default="DEVICE"),
        sa.Column("is_adjusted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("adjusted_by", sa.Integer(), nullable=True),
        sa.Column("adjusted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("adjust_note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.ForeignKeyConstraint(["schedule_id"], ["work_schedules.id"]),
        sa.ForeignKeyConstraint(["adjusted_by"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_attendance_record_employee_date"),
    )
    op.create_index(op.f("ix_attendance_records_id"), "attendance_records", ["id"], unique=False)
    op.create_index(op.f("ix_attendance_records_employee_id"), "attendance_records", ["employee_id"], unique=False)
    op.create_index(op.f("ix_attendance_records_work_date"), "attendance_records", ["work_date"], unique=False)

    op.create_table(
        "attendance_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("record_id", sa.Integer(), nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("event_type", _enum("attendanceeventtype", is_pg), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("source", _enum("attendancesource", is_pg), nullable=False, server_default="DEVICE"),
        sa.Column("meta_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.ForeignKeyConstraint(["record_id"], ["attendance_records.id"]),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("employee_id", "work_date", "event_type", name="uq_attendance_event_employee_date_type"),
    )
    op.create_index(op.f("ix_attendance_events_id"), "attendance_events", ["id"], unique=False)
    op.create_index(op.f("ix_attendance_events_record_id"), "attendance_events", ["record_id"], unique=False)
    op.create_index(op.f("ix_attendance_events_employee_id"), "attendance_events", ["employee_id"], unique=False)

    op.create_table(
        "system_state",
        sa.Column("key", sa.String(), nullable=False),
        sa.Column("value", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=ts_default, nullable=False),
        sa.PrimaryKeyConstraint("key"),
    )


def downgrade() -> None:
    op.drop_table("system_state")
    op.drop_index(op.f("ix_attendance_events_employee_id"), table_name="attendance_events")
    op.drop_index(op.f("ix_attendance_events_record_id"), table_name="attendance_events")
    op.drop_index(op.f("ix_attendance_events_id"), table_name="attendance_events")
    op.drop_table("attendance_events")
    op.drop_index(op.f("ix_attendance_records_work_date"), table_name="attendance_records")
    op.drop_index(op.f("ix_attendance_records_employee_id"), table_name="attendance_records")
    op.drop_index(op.f("ix_attendance_records_id"), table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index(op.f("ix_work_schedules_work_date"), table_name="work_schedules")
    op.drop_index(op.f("ix_work_schedules_employee_id"), table_name="work_schedules")
    op.drop_index(op.f("ix_work_schedules_id"), table_name="work_schedules")
    op.drop_table("work_schedules")
    op.drop_index(op.f("ix_attendance_device_user_mappings_employee_id"), table_name="attendance_device_user_mappings")
    op.drop_index(op.f("ix_attendance_device_user_mappings_device_code"), table_name="attendance_device_user_mappings")
    op.drop_index(op.f("ix_attendance_device_user_mappings_id"), table_name="attendance_device_user_mappings")
    op.drop_table("attendance_device_user_mappings")
    op.drop_index("ix_machine_events_device_user", table_name="attendance_machine_events")
    op.drop_index(op.f("ix_attendance_machine_events_occurred_at"), table_name="attendance_machine_events")
    op.drop_index(op.f("ix_attendance_machine_events_epoch"), table_name="attendance_machine_events")
    op.drop_index(op.f("ix_attendance_machine_events_id"), table_name="attendance_machine_events")
    op.drop_table("attendance_machine_events")
    op.drop_index(op.f("ix_employees_emp_code"), table_name="employees")
    op.drop_index(op.f("ix_employees_id"), table_name="employees")
    op.drop_table("employees")

    bind = op.get_bind()
    if bind.dialect.name == "postgresql":
        for name, values in ENUMS.items():
            postgresql.ENUM(*values, name=name).drop(bind, checkfirst=True)

"""Organizations, class templates, classes and generation log

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("timezone", sa.String(length=50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "class_templates",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("class_type", sa.String(length=50), nullable=True),
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("start_time", sa.String(length=8), nullable=False),
        sa.Column("end_time", sa.String(length=8), nullable=False),
        sa.Column("max_capacity", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("waitlist_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_waitlist", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("instructor_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("instructor_name", sa.String(length=100), nullable=True),
        sa.Column("location", sa.String(length=100), nullable=True),
        sa.Column("booking_opens_hours", sa.Integer(), nullable=False, server_default="168"),
        sa.Column("booking_closes_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column(
            "cancellation_deadline_hours", sa.Integer(), nullable=False, server_default="2"
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], name="fk_class_templates_organization"
        ),
        sa.CheckConstraint(
            "day_of_week >= 0 AND day_of_week <= 6", name="ck_class_templates_day_of_week"
        ),
    )
    op.create_index(
        "ix_class_templates_organization_id", "class_templates", ["organization_id"], unique=False
    )
    op.create_index("ix_class_templates_is_active", "class_templates", ["is_active"], unique=False)

    op.create_table(
        "classes",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("template_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("class_type", sa.String(length=50), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_capacity", sa.Integer(), nullable=False, server_default="20"),
        sa.Column("current_bookings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("waitlist_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("max_waitlist", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("instructor_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("instructor_name", sa.String(length=100), nullable=True),
        sa.Column("location", sa.String(length=100), nullable=True),
        sa.Column("booking_opens_hours", sa.Integer(), nullable=False, server_default="168"),
        sa.Column("booking_closes_minutes", sa.Integer(), nullable=False, server_default="60"),
        sa.Column(
            "cancellation_deadline_hours", sa.Integer(), nullable=False, server_default="2"
        ),
        sa.Column("is_cancelled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], name="fk_classes_organization"
        ),
        sa.ForeignKeyConstraint(
            ["template_id"],
            ["class_templates.id"],
            name="fk_classes_template",
            ondelete="SET NULL",
        ),
    )
    op.create_index("ix_classes_organization_id", "classes", ["organization_id"], unique=False)
    op.create_index("ix_classes_template_id", "classes", ["template_id"], unique=False)
    op.create_index("ix_classes_start_time", "classes", ["start_time"], unique=False)

    op.create_table(
        "class_generation_log",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("organization_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("template_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("generated_class_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("generated_date", sa.Date(), nullable=False),
        sa.Column("generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(
            ["organization_id"], ["organizations.id"], name="fk_generation_log_organization"
        ),
        sa.ForeignKeyConstraint(
            ["template_id"],
            ["class_templates.id"],
            name="fk_generation_log_template",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["generated_class_id"],
            ["classes.id"],
            name="fk_generation_log_class",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "template_id", "generated_date", name="uq_class_generation_log_template_date"
        ),
    )
    op.create_index(
        "ix_class_generation_log_organization_id",
        "class_generation_log",
        ["organization_id"],
        unique=False,
    )
    op.create_index(
        "ix_class_generation_log_template_id",
        "class_generation_log",
        ["template_id"],
        unique=False,
    )
    op.create_index(
        "ix_class_generation_log_generated_date",
        "class_generation_log",
        ["generated_date"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_class_generation_log_generated_date", table_name="class_generation_log")
    op.drop_index("ix_class_generation_log_template_id", table_name="class_generation_log")
    op.drop_index("ix_class_generation_log_organization_id", table_name="class_generation_log")
    op.drop_table("class_generation_log")

    op.drop_index("ix_classes_start_time", table_name="classes")
    op.drop_index("ix_classes_template_id", table_name="classes")
    op.drop_index("ix_classes_organization_id", table_name="classes")
    op.drop_table("classes")

    op.drop_index("ix_class_templates_is_active", table_name="class_templates")
    op.drop_index("ix_class_templates_organization_id", table_name="class_templates")
    op.drop_table("class_templates")

    op.drop_table("organizations")

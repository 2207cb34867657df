"""availability slots and bookings

Revision ID: 0001
Revises:
Create Date: 2025-10-01
"""
from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "availability_slots",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("day_of_week", sa.Integer()),
        sa.Column("date", sa.Date()),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("is_booked", sa.Boolean(), nullable=False),
        sa.Column("booking_id", sa.String(32)),
        sa.Column("max_bookings", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("cancellation_reason", sa.Text()),
        sa.Column("template_id", sa.String(32)),
        sa.Column("week_of", sa.Date()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_availability_slots_provider_date", "availability_slots", ["provider_id", "date"])
    op.create_index("ix_availability_slots_provider_dow", "availability_slots", ["provider_id", "day_of_week"])
    op.create_index("ix_availability_slots_template", "availability_slots", ["template_id"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("provider_id", sa.String(64), nullable=False),
        sa.Column(
            "availability_id",
            sa.String(32),
            sa.ForeignKey("availability_slots.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("guest_id", sa.String(64), nullable=False),
        sa.Column("guest_name", sa.Text(), nullable=False),
        sa.Column("guest_email", sa.Text(), nullable=False),
        sa.Column("guest_phone", sa.Text()),
        sa.Column("start_time", sa.DateTime(), nullable=False),
        sa.Column("end_time", sa.DateTime(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("serial_key", sa.String(32), nullable=False, unique=True),
        sa.Column("notes", sa.Text()),
        sa.Column("cancel_reason", sa.Text()),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("idempotency_key", sa.String(128), unique=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_bookings_provider_start", "bookings", ["provider_id", "start_time"])


def downgrade():
    op.drop_index("ix_bookings_provider_start", table_name="bookings")
    op.drop_table("bookings")
    op.drop_index("ix_availability_slots_template", table_name="availability_slots")
    op.drop_index("ix_availability_slots_provider_dow", table_name="availability_slots")
    op.drop_index("ix_availability_slots_provider_date", table_name="availability_slots")
    op.drop_table("availability_slots")

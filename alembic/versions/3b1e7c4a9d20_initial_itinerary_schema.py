"""initial itinerary schema

Revision ID: 3b1e7c4a9d20
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b1e7c4a9d20"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "identity_profile",
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("full_name", sa.String(length=200), nullable=True),
        sa.Column("forwarding_token", sa.String(length=64), nullable=False),
        sa.Column("push_token", sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_identity_profile_email"), "identity_profile", ["email"])
    op.create_index(
        op.f("ix_identity_profile_forwarding_token"),
        "identity_profile",
        ["forwarding_token"],
        unique=True,
    )

    op.create_table(
        "trips_trip",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("destination", sa.String(length=200), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("UPCOMING", "ACTIVE", "COMPLETED", name="tripstatus", native_enum=False),
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["identity_profile.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_trips_trip_user_id"), "trips_trip", ["user_id"])
    op.create_index(op.f("ix_trips_trip_destination"), "trips_trip", ["destination"])
    op.create_index(op.f("ix_trips_trip_start_date"), "trips_trip", ["start_date"])
    op.create_index(op.f("ix_trips_trip_end_date"), "trips_trip", ["end_date"])

    op.create_table(
        "trips_reservation",
        sa.Column("trip_id", sa.Uuid(), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "FLIGHT",
                "HOTEL",
                "CAR",
                "TRAIN",
                "MEETING",
                "EVENT",
                name="reservationtype",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column("title", sa.String(length=300), nullable=False),
        sa.Column("subtitle", sa.String(length=300), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("location", sa.String(length=300), nullable=True),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("confirmation_number", sa.String(length=100), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "CONFIRMED",
                "CANCELLED",
                "DELAYED",
                name="reservationstatus",
                native_enum=False,
            ),
            nullable=False,
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["trip_id"], ["trips_trip.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_trips_reservation_trip_id"), "trips_reservation", ["trip_id"])
    op.create_index(op.f("ix_trips_reservation_type"), "trips_reservation", ["type"])
    op.create_index(op.f("ix_trips_reservation_start_time"), "trips_reservation", ["start_time"])
    op.create_index(
        op.f("ix_trips_reservation_confirmation_number"),
        "trips_reservation",
        ["confirmation_number"],
    )

    op.create_table(
        "trips_deleted_trip",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("destination", sa.String(length=200), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("original_trip_name", sa.String(length=200), nullable=True),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["identity_profile.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_trips_deleted_trip_user_id"), "trips_deleted_trip", ["user_id"])
    op.create_index(
        op.f("ix_trips_deleted_trip_deleted_at"), "trips_deleted_trip", ["deleted_at"]
    )

    op.create_table(
        "ingestion_processed_message",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("message_hash", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "PROCESSING",
                "PROCESSED",
                "FAILED",
                name="messagestatus",
                native_enum=False,
            ),
            nullable=False,
        ),
        sa.Column(
            "source",
            sa.Enum("FORWARD", "SCAN", name="ingestsource", native_enum=False),
            nullable=False,
        ),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["identity_profile.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "message_hash", name="uq_processed_message_user_hash"),
    )
    op.create_index(
        op.f("ix_ingestion_processed_message_user_id"),
        "ingestion_processed_message",
        ["user_id"],
    )
    op.create_index(
        op.f("ix_ingestion_processed_message_status"),
        "ingestion_processed_message",
        ["status"],
    )

    op.create_table(
        "notifications_notification",
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("trip_id", sa.Uuid(), nullable=True),
        sa.Column("type", sa.String(length=50), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("read", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["identity_profile.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_notifications_notification_user_id"), "notifications_notification", ["user_id"]
    )
    op.create_index(
        op.f("ix_notifications_notification_type"), "notifications_notification", ["type"]
    )


def downgrade() -> None:
    op.drop_table("notifications_notification")
    op.drop_table("ingestion_processed_message")
    op.drop_table("trips_deleted_trip")
    op.drop_table("trips_reservation")
    op.drop_table("trips_trip")
    op.drop_table("identity_profile")

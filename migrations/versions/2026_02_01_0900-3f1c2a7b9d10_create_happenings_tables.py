"""create_happenings_tables

Revision ID: 3f1c2a7b9d10
Revises:
Create Date: 2026-02-01 09:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "3f1c2a7b9d10"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "events",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("event_date", sa.Date(), nullable=True),
        sa.Column("day_of_week", sa.SmallInteger(), nullable=True),
        sa.Column("recurrence_rule", sa.String(length=255), nullable=True),
        sa.Column("recurrence_end_date", sa.Date(), nullable=True),
        sa.Column("max_occurrences", sa.Integer(), nullable=True),
        sa.Column("capacity", sa.Integer(), nullable=True),
        sa.Column("has_timeslots", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("venue_name", sa.String(length=255), nullable=True),
        sa.Column("venue_address", sa.String(length=500), nullable=True),
        sa.Column("cover_image_url", sa.String(length=1000), nullable=True),
        sa.Column("host_notes", sa.Text(), nullable=True),
        sa.Column("is_published", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_events_day_of_week"),
        sa.PrimaryKeyConstraint("uuid"),
    )
    op.create_index("ix_events_is_published", "events", ["is_published"])

    op.create_table(
        "occurrence_overrides",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column("date_key", sa.String(length=10), nullable=False),
        sa.Column(
            "status",
            sa.Enum("normal", "cancelled", name="override_status_enum"),
            nullable=False,
            server_default="normal",
        ),
        sa.Column("override_start_time", sa.Time(), nullable=True),
        sa.Column("override_cover_image_url", sa.String(length=1000), nullable=True),
        sa.Column("override_notes", sa.Text(), nullable=True),
        sa.Column("override_patch", sa.JSON(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(["event_id"], ["events.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
        sa.UniqueConstraint("event_id", "date_key", name="uq_occurrence_overrides_event_date"),
    )
    op.create_index("ix_occurrence_overrides_event_id", "occurrence_overrides", ["event_id"])
    op.create_index("ix_occurrence_overrides_date_key", "occurrence_overrides", ["date_key"])

    op.create_table(
        "signups",
        sa.Column("uuid", sa.UUID(), nullable=False),
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column("date_key", sa.String(length=10), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("rsvp", "timeslot", name="signup_kind_enum"),
            nullable=False,
            server_default="rsvp",
        ),
        sa.Column("member_id", sa.UUID(), nullable=True),
        sa.Column("guest_name", sa.String(length=255), nullable=True),
        sa.Column("guest_email", sa.String(length=255), nullable=True),
        sa.Column(
            "status",
            sa.Enum("confirmed", "waitlist", "cancelled", name="signup_status_enum"),
            nullable=False,
        ),
        sa.Column("waitlist_position", sa.Integer(), nullable=True),
        sa.Column("slot_index", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "member_id IS NOT NULL OR guest_name IS NOT NULL", name="ck_signups_participant"
        ),
        sa.ForeignKeyConstraint(["event_id"], ["events.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("uuid"),
    )
    op.create_index("ix_signups_member_id", "signups", ["member_id"])
    op.create_index("ix_signups_occurrence_status", "signups", ["event_id", "date_key", "status"])

    op.create_table(
        "occurrence_locks",
        sa.Column("event_id", sa.UUID(), nullable=False),
        sa.Column("date_key", sa.String(length=10), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.ForeignKeyConstraint(["event_id"], ["events.uuid"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("event_id", "date_key"),
    )


def downgrade() -> None:
    op.drop_table("occurrence_locks")
    op.drop_index("ix_signups_occurrence_status", table_name="signups")
    op.drop_index("ix_signups_member_id", table_name="signups")
    op.drop_table("signups")
    op.drop_index("ix_occurrence_overrides_date_key", table_name="occurrence_overrides")
    op.drop_index("ix_occurrence_overrides_event_id", table_name="occurrence_overrides")
    op.drop_table("occurrence_overrides")
    op.drop_index("ix_events_is_published", table_name="events")
    op.drop_table("events")
    op.execute("DROP TYPE signup_status_enum")
    op.execute("DROP TYPE signup_kind_enum")
    op.execute("DROP TYPE override_status_enum")

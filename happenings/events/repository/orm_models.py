from datetime import date, datetime, time
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    Text,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from happenings.config.table_names import TableNames
from happenings.events.dtos import SignupKind, SignupStatus
from happenings.models.base import Base, BaseModel, TimeStamp
from happenings.occurrences.overrides import OverrideStatus


def _enum_values(enum_cls):
    return [e.value for e in enum_cls]


class Event(Base, TimeStamp):
    __tablename__ = TableNames.EVENTS.value
    __table_args__ = (
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_events_day_of_week"),
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)

    # Anchor date: the one-off date, or the first occurrence of a series
    event_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    # 0 = Sunday ... 6 = Saturday
    day_of_week: Mapped[int | None] = mapped_column(SmallInteger, nullable=True)
    recurrence_rule: Mapped[str | None] = mapped_column(String(255), nullable=True)
    recurrence_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    max_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # None means unlimited
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    has_timeslots: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    venue_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    venue_address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cover_image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    host_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_published: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    overrides: Mapped[list["OccurrenceOverride"]] = relationship(
        back_populates="event", cascade="all, delete-orphan", passive_deletes=True
    )
    signups: Mapped[list["Signup"]] = relationship(
        back_populates="event", cascade="all, delete-orphan", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<Event {self.title}>"


class OccurrenceOverride(Base, TimeStamp):
    __tablename__ = TableNames.OCCURRENCE_OVERRIDES.value
    __table_args__ = (
        UniqueConstraint("event_id", "date_key", name="uq_occurrence_overrides_event_date"),
    )

    event_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.EVENTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    date_key: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    status: Mapped[OverrideStatus] = mapped_column(
        Enum(OverrideStatus, name="override_status_enum", values_callable=_enum_values),
        default=OverrideStatus.NORMAL,
        nullable=False,
    )

    # Legacy single-field overrides; override_patch wins where both are set
    override_start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    override_cover_image_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    override_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    override_patch: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    event: Mapped[Event] = relationship(back_populates="overrides")

    def __repr__(self) -> str:
        return f"<OccurrenceOverride {self.event_id} {self.date_key} {self.status}>"


class Signup(Base, TimeStamp):
    __tablename__ = TableNames.SIGNUPS.value
    __table_args__ = (
        CheckConstraint(
            "member_id IS NOT NULL OR guest_name IS NOT NULL", name="ck_signups_participant"
        ),
        Index("ix_signups_occurrence_status", "event_id", "date_key", "status"),
    )

    event_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.EVENTS.value}.uuid", ondelete="CASCADE"),
        nullable=False,
    )
    # Natural occurrence date, also for rescheduled occurrences
    date_key: Mapped[str] = mapped_column(String(10), nullable=False)
    kind: Mapped[SignupKind] = mapped_column(
        Enum(SignupKind, name="signup_kind_enum", values_callable=_enum_values),
        default=SignupKind.RSVP,
        nullable=False,
    )

    member_id: Mapped[UUID | None] = mapped_column(nullable=True, index=True)
    guest_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    guest_email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    status: Mapped[SignupStatus] = mapped_column(
        Enum(SignupStatus, name="signup_status_enum", values_callable=_enum_values),
        nullable=False,
    )
    waitlist_position: Mapped[int | None] = mapped_column(Integer, nullable=True)
    slot_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, default=None
    )

    event: Mapped[Event] = relationship(back_populates="signups")

    def __repr__(self) -> str:
        return f"<Signup {self.event_id} {self.date_key} {self.status}>"


class OccurrenceLock(BaseModel):
    """Marker row locked FOR UPDATE to serialise writers of one occurrence."""

    __tablename__ = TableNames.OCCURRENCE_LOCKS.value

    event_id: Mapped[UUID] = mapped_column(
        ForeignKey(f"{TableNames.EVENTS.value}.uuid", ondelete="CASCADE"),
        primary_key=True,
    )
    date_key: Mapped[str] = mapped_column(String(10), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.current_timestamp(),
        nullable=False,
    )

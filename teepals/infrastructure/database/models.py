"""SQLAlchemy ORM models for the rounds database."""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from teepals.shared.utils.datetime_utils import utcnow


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class RoundRecord(Base):
    """A scheduled round. ``accepted_count`` includes the host."""

    __tablename__ = "rounds"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    host_uid: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    course: Mapped[str | None] = mapped_column(String(255))
    tee_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="open")
    join_policy: Mapped[str] = mapped_column(String(20), nullable=False, default="approval")
    visibility: Mapped[str] = mapped_column(String(20), nullable=False, default="public")
    max_players: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    accepted_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    request_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    memberships: Mapped[list["RoundMembershipRecord"]] = relationship(
        back_populates="round", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('open', 'closed', 'canceled', 'completed')",
            name="valid_round_status",
        ),
        CheckConstraint("join_policy IN ('instant', 'approval')", name="valid_join_policy"),
        CheckConstraint("visibility IN ('public', 'friends_only')", name="valid_round_visibility"),
        CheckConstraint("max_players >= 1", name="positive_max_players"),
        CheckConstraint(
            "accepted_count >= 1 AND accepted_count <= max_players",
            name="accepted_within_capacity",
        ),
        Index("idx_rounds_status", "status"),
        Index("idx_rounds_host", "host_uid"),
        Index("idx_rounds_tee_time", "tee_time"),
    )


class RoundMembershipRecord(Base):
    """One row per (round, user); the host never has a row."""

    __tablename__ = "round_memberships"

    round_id: Mapped[str] = mapped_column(
        ForeignKey("rounds.id", ondelete="CASCADE"), primary_key=True
    )
    uid: Mapped[str] = mapped_column(String(128), primary_key=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    invited_by: Mapped[str | None] = mapped_column(String(128))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    round: Mapped["RoundRecord"] = relationship(back_populates="memberships")

    __table_args__ = (
        CheckConstraint(
            "status IN ('requested', 'invited', 'accepted', 'declined', 'removed', 'left')",
            name="valid_member_status",
        ),
        CheckConstraint(
            "invited_by IS NULL OR status = 'invited'",
            name="invited_by_only_when_invited",
        ),
        Index("idx_round_memberships_status", "round_id", "status"),
        Index("idx_round_memberships_uid", "uid", "status"),
    )

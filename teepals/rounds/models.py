"""Domain models for rounds and round memberships.

A ``Round`` is only mutated through the coordinator: scheduling fields by a
host edit, ``status`` by the lifecycle and ``accepted_count`` by the capacity
allocator. ``accepted_count`` counts the host, who never has a ``Membership``
record of their own.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from teepals.rounds.exceptions import InvalidRoundError
from teepals.shared.utils.datetime_utils import ensure_utc, utcnow


class RoundStatus(str, Enum):
    """Lifecycle status of a round."""

    OPEN = "open"
    CLOSED = "closed"
    CANCELED = "canceled"
    COMPLETED = "completed"


TERMINAL_STATUSES = frozenset({RoundStatus.CANCELED, RoundStatus.COMPLETED})


class JoinPolicy(str, Enum):
    """How a join attempt is resolved."""

    INSTANT = "instant"
    APPROVAL = "approval"


class Visibility(str, Enum):
    """Who may attempt to join a round."""

    PUBLIC = "public"
    FRIENDS_ONLY = "friends_only"

    @property
    def default_join_policy(self) -> JoinPolicy:
        if self is Visibility.FRIENDS_ONLY:
            return JoinPolicy.INSTANT
        return JoinPolicy.APPROVAL


class MemberStatus(str, Enum):
    """Status of a (round, user) membership record."""

    REQUESTED = "requested"
    INVITED = "invited"
    ACCEPTED = "accepted"
    DECLINED = "declined"
    REMOVED = "removed"
    LEFT = "left"


# Statuses from which a user may request, join or be invited again.
REENTRY_STATUSES = frozenset({MemberStatus.DECLINED, MemberStatus.REMOVED, MemberStatus.LEFT})


def coerce_enum(enum_cls: type[Enum], value: Any, field_name: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as exc:
        valid = ", ".join(m.value for m in enum_cls)
        raise InvalidRoundError(f"Invalid {field_name} '{value}'. Valid: {valid}") from exc


def validate_max_players(max_players: int, limit: int) -> int:
    if isinstance(max_players, bool) or not isinstance(max_players, int):
        raise InvalidRoundError("max_players must be an integer")
    if max_players < 1:
        raise InvalidRoundError("max_players must be at least 1")
    if max_players > limit:
        raise InvalidRoundError(f"max_players cannot exceed {limit}")
    return max_players


def new_round_id() -> str:
    return uuid4().hex


@dataclass
class Round:
    """A scheduled tee-time event with a host and a capacity."""

    id: str
    host_uid: str
    title: str
    max_players: int
    join_policy: JoinPolicy
    visibility: Visibility
    status: RoundStatus = RoundStatus.OPEN
    accepted_count: int = 1
    request_count: int = 0
    description: str | None = None
    course: str | None = None
    tee_time: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    canceled_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def create(
        cls,
        host_uid: str,
        title: str,
        max_players: int,
        join_policy: JoinPolicy | str | None = None,
        visibility: Visibility | str = Visibility.PUBLIC,
        description: str | None = None,
        course: str | None = None,
        tee_time: datetime | None = None,
        max_players_limit: int = 16,
        round_id: str | None = None,
    ) -> Round:
        """Validate creation attributes and build an open round."""
        if not host_uid or not str(host_uid).strip():
            raise InvalidRoundError("host_uid is required")
        validate_max_players(max_players, max_players_limit)
        visibility = coerce_enum(Visibility, visibility, "visibility")
        if join_policy is None:
            join_policy = visibility.default_join_policy
        join_policy = coerce_enum(JoinPolicy, join_policy, "join_policy")

        now = utcnow()
        round_ = cls(
            id=round_id or new_round_id(),
            host_uid=str(host_uid),
            title=title.strip() if title else "Golf Round",
            max_players=max_players,
            join_policy=join_policy,
            visibility=visibility,
            description=description,
            course=course,
            tee_time=ensure_utc(tee_time) if tee_time else None,
            created_at=now,
            updated_at=now,
        )
        # A single-player round is full the moment the host creates it.
        if round_.is_full:
            round_.status = RoundStatus.CLOSED
        return round_

    @property
    def spots_remaining(self) -> int:
        return max(0, self.max_players - self.accepted_count)

    @property
    def is_full(self) -> bool:
        return self.accepted_count >= self.max_players

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_host(self, uid: str) -> bool:
        return str(uid) == self.host_uid

    def copy(self) -> Round:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "host_uid": self.host_uid,
            "title": self.title,
            "description": self.description,
            "course": self.course,
            "tee_time": self.tee_time,
            "status": self.status.value,
            "join_policy": self.join_policy.value,
            "visibility": self.visibility.value,
            "max_players": self.max_players,
            "accepted_count": self.accepted_count,
            "request_count": self.request_count,
            "spots_remaining": self.spots_remaining,
            "is_full": self.is_full,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "canceled_at": self.canceled_at,
            "completed_at": self.completed_at,
        }


@dataclass
class Membership:
    """Current status of one user in one round."""

    round_id: str
    uid: str
    status: MemberStatus
    invited_by: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def copy(self) -> Membership:
        return replace(self)

    def to_dict(self) -> dict[str, Any]:
        return {
            "round_id": self.round_id,
            "uid": self.uid,
            "status": self.status.value,
            "role": "member",
            "invited_by": self.invited_by,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def host_member_dict(round_: Round) -> dict[str, Any]:
    """Synthesized roster entry for the host, who has no stored record."""
    return {
        "round_id": round_.id,
        "uid": round_.host_uid,
        "status": MemberStatus.ACCEPTED.value,
        "role": "host",
        "invited_by": None,
        "created_at": round_.created_at,
        "updated_at": round_.created_at,
    }

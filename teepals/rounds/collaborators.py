"""External collaborators of the round coordinator.

The coordinator only depends on the three protocols below. In-memory
implementations back tests and the single-process deployment; the event
publisher for the running app routes into the platform event fan-out.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Protocol, runtime_checkable

from teepals.shared.utils.datetime_utils import utcnow
from teepals.shared.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class RoundEvent:
    """Something that happened to a round, emitted after it was committed."""

    event_type: str
    round_id: str
    actor_uid: str
    recipients: tuple[str, ...] = ()
    data: dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=utcnow)

    @property
    def topic(self) -> str:
        if self.event_type.startswith("round."):
            return "rounds.lifecycle"
        return "rounds.membership"

    def to_payload(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "round_id": self.round_id,
            "actor_uid": self.actor_uid,
            "recipients": list(self.recipients),
            "occurred_at": self.occurred_at.isoformat(),
            "data": dict(self.data),
        }


@runtime_checkable
class SocialGraph(Protocol):
    async def is_friend_of(self, host_uid: str, uid: str) -> bool: ...


@runtime_checkable
class ProfileGate(Protocol):
    async def has_minimum_profile(self, uid: str) -> bool: ...


@runtime_checkable
class EventPublisher(Protocol):
    def publish(self, event: RoundEvent) -> None: ...


# ===========================================
# SOCIAL GRAPH
# ===========================================


class InMemorySocialGraph:
    """Follow graph where a friend is a mutual follow."""

    def __init__(self) -> None:
        self._following: dict[str, set[str]] = {}

    def follow(self, follower_uid: str, target_uid: str) -> None:
        if follower_uid == target_uid:
            return
        self._following.setdefault(follower_uid, set()).add(target_uid)

    def unfollow(self, follower_uid: str, target_uid: str) -> None:
        self._following.get(follower_uid, set()).discard(target_uid)

    def befriend(self, a: str, b: str) -> None:
        self.follow(a, b)
        self.follow(b, a)

    def is_following(self, follower_uid: str, target_uid: str) -> bool:
        return target_uid in self._following.get(follower_uid, set())

    async def is_friend_of(self, host_uid: str, uid: str) -> bool:
        return self.is_following(host_uid, uid) and self.is_following(uid, host_uid)


# ===========================================
# PROFILE GATE
# ===========================================


@dataclass
class ProfileSnapshot:
    """The profile fields the join gate looks at."""

    uid: str
    nickname: str | None = None
    primary_city: str | None = None
    primary_location: tuple[float, float] | None = None
    birth_date: date | None = None
    gender: str | None = None

    def missing_tier1_fields(self) -> list[str]:
        missing = []
        if not (self.nickname or "").strip():
            missing.append("nickname")
        if not (self.primary_city or "").strip() or self.primary_location is None:
            missing.append("primary_location")
        if self.birth_date is None:
            missing.append("birth_date")
        if not self.gender:
            missing.append("gender")
        return missing

    @property
    def is_tier1_complete(self) -> bool:
        return not self.missing_tier1_fields()


class InMemoryProfileDirectory:
    """Profile lookup that gates round participation on a tier-1 profile."""

    def __init__(self) -> None:
        self._profiles: dict[str, ProfileSnapshot] = {}

    def upsert(self, profile: ProfileSnapshot) -> None:
        self._profiles[profile.uid] = profile

    def get(self, uid: str) -> ProfileSnapshot | None:
        return self._profiles.get(uid)

    async def has_minimum_profile(self, uid: str) -> bool:
        profile = self._profiles.get(uid)
        if profile is None:
            return False
        missing = profile.missing_tier1_fields()
        if missing:
            logger.debug("profile_gate_blocked", uid=uid, missing=missing)
            return False
        return True


class AllowAllProfileGate:
    """Profile gate for deployments where profiles live elsewhere."""

    async def has_minimum_profile(self, uid: str) -> bool:
        return True


# ===========================================
# EVENT PUBLISHERS
# ===========================================


class RecordingEventPublisher:
    """Keeps published events in order."""

    def __init__(self) -> None:
        self.events: list[RoundEvent] = []

    def publish(self, event: RoundEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]

    def clear(self) -> None:
        self.events.clear()


class PlatformEventPublisher:
    """Hands events to the platform fan-out without waiting for handlers."""

    def publish(self, event: RoundEvent) -> None:
        from teepals.infrastructure.events import emit_platform_event

        emit_platform_event(event.topic, event.to_payload())

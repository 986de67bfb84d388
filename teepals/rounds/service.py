"""Round coordinator: lifecycle, membership and capacity in one place.

Every mutation runs as a single critical section on its round:

    resolve round -> lifecycle gate -> authorization -> join gates
    -> transition check -> seat reservation -> commit -> publish

Nothing is published until the store commit has returned.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from teepals.rounds.allocator import CapacityAllocator
from teepals.rounds.collaborators import (
    EventPublisher,
    PlatformEventPublisher,
    ProfileGate,
    RoundEvent,
    SocialGraph,
)
from teepals.rounds.config import RoundSettings, get_round_settings
from teepals.rounds.exceptions import (
    AlreadyHostError,
    CapacityBelowAcceptedError,
    InvalidRoundError,
    NotAllowedError,
    NotHostError,
    ProfileIncompleteError,
    RoundNotFoundError,
    TransientFailureError,
)
from teepals.rounds.models import (
    REENTRY_STATUSES,
    JoinPolicy,
    Membership,
    MemberStatus,
    Round,
    RoundStatus,
    Visibility,
    coerce_enum,
    host_member_dict,
    validate_max_players,
)
from teepals.rounds.repository import RoundStore
from teepals.rounds.state_machine import (
    MEMBER_TRANSITIONS,
    Actor,
    MemberOperation,
    ensure_mutable,
    sync_capacity_status,
    transition_round,
    validate_member_transition,
)
from teepals.shared.utils.datetime_utils import ensure_utc, utcnow
from teepals.shared.utils.logging import get_logger

logger = get_logger(__name__)

EDITABLE_FIELDS = frozenset(
    {"title", "description", "course", "tee_time", "visibility", "join_policy", "max_players"}
)

# operation -> (event type, who hears about it)
_MEMBER_EVENTS: dict[MemberOperation, tuple[str, str]] = {
    MemberOperation.REQUEST_TO_JOIN: ("member.requested", "host"),
    MemberOperation.JOIN_INSTANT: ("member.joined", "host"),
    MemberOperation.INVITE_MEMBER: ("member.invited", "target"),
    MemberOperation.ACCEPT_MEMBER: ("member.accepted", "target"),
    MemberOperation.DECLINE_MEMBER: ("member.declined", "target"),
    MemberOperation.CANCEL_REQUEST: ("request.canceled", "host"),
    MemberOperation.ACCEPT_INVITE: ("invite.accepted", "host"),
    MemberOperation.DECLINE_INVITE: ("invite.declined", "host"),
    MemberOperation.LEAVE_ROUND: ("member.left", "host"),
    MemberOperation.REMOVE_MEMBER: ("member.removed", "target"),
}

_FRIEND_GATED = frozenset({MemberOperation.REQUEST_TO_JOIN, MemberOperation.JOIN_INSTANT})
_PROFILE_GATED = frozenset(
    {MemberOperation.REQUEST_TO_JOIN, MemberOperation.JOIN_INSTANT, MemberOperation.ACCEPT_INVITE}
)


class RoundService:
    """Coordinates round lifecycle and membership operations."""

    def __init__(
        self,
        store: RoundStore,
        allocator: CapacityAllocator | None = None,
        social_graph: SocialGraph | None = None,
        profile_gate: ProfileGate | None = None,
        publisher: EventPublisher | None = None,
        settings: RoundSettings | None = None,
    ):
        self.settings = settings or get_round_settings()
        self.store = store
        self.allocator = allocator or CapacityAllocator(self.settings.lock_timeout_seconds)
        self.social_graph = social_graph
        self.profile_gate = profile_gate
        self.publisher = publisher or PlatformEventPublisher()

    # ==========================================
    # ROUND CRUD
    # ==========================================

    async def create_round(
        self,
        host_uid: str,
        title: str,
        max_players: int | None = None,
        join_policy: JoinPolicy | str | None = None,
        visibility: Visibility | str = Visibility.PUBLIC,
        description: str | None = None,
        course: str | None = None,
        tee_time: datetime | None = None,
    ) -> dict[str, Any]:
        """Create a round hosted by ``host_uid``. The host must have a minimum profile."""
        await self._check_profile(host_uid)

        round_ = Round.create(
            host_uid=host_uid,
            title=title,
            max_players=self.settings.default_max_players if max_players is None else max_players,
            join_policy=join_policy,
            visibility=visibility,
            description=description,
            course=course,
            tee_time=tee_time,
            max_players_limit=self.settings.max_players_limit,
        )
        try:
            round_ = await self.store.create_round(round_)
        except Exception as exc:
            logger.error("round_create_failed", host_uid=host_uid, error=str(exc))
            raise TransientFailureError() from exc

        logger.info(
            "round_created",
            round_id=round_.id,
            host_uid=host_uid,
            max_players=round_.max_players,
            join_policy=round_.join_policy.value,
            visibility=round_.visibility.value,
        )
        self._publish(RoundEvent("round.created", round_.id, host_uid, data={"title": round_.title}))
        return round_.to_dict()

    async def get_round(self, round_id: str) -> dict[str, Any]:
        """Get round by id."""
        return (await self._get_round_or_raise(round_id)).to_dict()

    async def list_rounds(
        self,
        status: RoundStatus | str | None = None,
        visibility: Visibility | str | None = None,
        host_uid: str | None = None,
        exclude_full: bool = False,
        offset: int = 0,
        limit: int | None = None,
    ) -> dict[str, Any]:
        """List rounds, newest first."""
        if status is not None:
            status = coerce_enum(RoundStatus, status, "status")
        if visibility is not None:
            visibility = coerce_enum(Visibility, visibility, "visibility")
        limit = min(limit or self.settings.default_page_size, self.settings.max_page_size)
        offset = max(0, offset)

        rounds, total = await self.store.list_rounds(
            status=status,
            visibility=visibility,
            host_uid=host_uid,
            exclude_full=exclude_full,
            offset=offset,
            limit=limit,
        )
        return {
            "rounds": [r.to_dict() for r in rounds],
            "total": total,
            "offset": offset,
            "limit": limit,
            "has_more": offset + len(rounds) < total,
        }

    async def edit_round(self, round_id: str, acting_uid: str, **changes: Any) -> dict[str, Any]:
        """Edit scheduling attributes of a round. Host only, non-terminal rounds only.

        Shrinking ``max_players`` below the current accepted count fails with
        CapacityBelowAcceptedError and leaves the round untouched.
        """
        async with self.allocator.serialize(round_id), self.store.unit_of_work():
            round_ = await self._lock_round_or_raise(round_id)
            ensure_mutable(round_)
            self._check_host(round_, acting_uid, "edit the round")

            unknown = set(changes) - EDITABLE_FIELDS
            if unknown:
                raise InvalidRoundError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

            if "max_players" in changes:
                max_players = validate_max_players(
                    changes["max_players"], self.settings.max_players_limit
                )
                if max_players < round_.accepted_count:
                    raise CapacityBelowAcceptedError(max_players, round_.accepted_count)
                changes["max_players"] = max_players
            if "visibility" in changes:
                changes["visibility"] = coerce_enum(Visibility, changes["visibility"], "visibility")
            if "join_policy" in changes:
                changes["join_policy"] = coerce_enum(JoinPolicy, changes["join_policy"], "join_policy")
            if "title" in changes:
                title = (changes["title"] or "").strip()
                if not title:
                    raise InvalidRoundError("title cannot be empty")
                changes["title"] = title
            if changes.get("tee_time") is not None:
                changes["tee_time"] = ensure_utc(changes["tee_time"])

            changed = [name for name, value in changes.items() if getattr(round_, name) != value]
            for name in changed:
                setattr(round_, name, changes[name])
            sync_capacity_status(round_)

            if changed:
                await self._commit(round_)
            schedule_changed = bool({"tee_time", "course"} & set(changed))
            recipients = await self._member_uids(round_id, MemberStatus.ACCEPTED) if schedule_changed else []

        logger.info("round_edited", round_id=round_id, host_uid=acting_uid, fields=changed)
        if schedule_changed:
            self._publish(
                RoundEvent(
                    "round.updated",
                    round_id,
                    acting_uid,
                    tuple(recipients),
                    {"title": round_.title, "fields": changed},
                )
            )
        return round_.to_dict()

    # ==========================================
    # ROUND LIFECYCLE
    # ==========================================

    async def cancel_round(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        """Cancel a round. Terminal; everyone involved is told."""
        async with self.allocator.serialize(round_id), self.store.unit_of_work():
            round_ = await self._lock_round_or_raise(round_id)
            ensure_mutable(round_)
            self._check_host(round_, acting_uid, "cancel the round")

            recipients: list[str] = []
            for member_status in (MemberStatus.ACCEPTED, MemberStatus.REQUESTED, MemberStatus.INVITED):
                recipients.extend(await self._member_uids(round_id, member_status))

            transition_round(round_, RoundStatus.CANCELED)
            round_.canceled_at = utcnow()
            await self._commit(round_)

        logger.info("round_canceled", round_id=round_id, host_uid=acting_uid, notified=len(recipients))
        self._publish(
            RoundEvent("round.canceled", round_id, acting_uid, tuple(recipients), {"title": round_.title})
        )
        return round_.to_dict()

    async def mark_completed(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        """Mark a played round as completed and trigger feedback reminders."""
        async with self.allocator.serialize(round_id), self.store.unit_of_work():
            round_ = await self._lock_round_or_raise(round_id)
            ensure_mutable(round_)
            self._check_host(round_, acting_uid, "complete the round")

            recipients = await self._member_uids(round_id, MemberStatus.ACCEPTED)
            transition_round(round_, RoundStatus.COMPLETED)
            round_.completed_at = utcnow()
            await self._commit(round_)

        logger.info("round_completed", round_id=round_id, host_uid=acting_uid)
        self._publish(
            RoundEvent(
                "round.completed",
                round_id,
                acting_uid,
                (round_.host_uid, *recipients),
                {"title": round_.title},
            )
        )
        return round_.to_dict()

    # ==========================================
    # MEMBERSHIP
    # ==========================================

    async def request_to_join(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        """Ask the host of an approval-policy round for a seat."""
        return await self._apply(round_id, acting_uid, acting_uid, MemberOperation.REQUEST_TO_JOIN)

    async def join_instant(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        """Take a seat on an instant-policy round."""
        return await self._apply(round_id, acting_uid, acting_uid, MemberOperation.JOIN_INSTANT)

    async def cancel_request(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        """Withdraw a pending join request. The record is deleted."""
        return await self._apply(round_id, acting_uid, acting_uid, MemberOperation.CANCEL_REQUEST)

    async def accept_member(self, round_id: str, acting_uid: str, target_uid: str) -> dict[str, Any]:
        """Host accepts a pending request. Fails with RoundFullError when no seat is left."""
        return await self._apply(round_id, acting_uid, target_uid, MemberOperation.ACCEPT_MEMBER)

    async def decline_member(self, round_id: str, acting_uid: str, target_uid: str) -> dict[str, Any]:
        return await self._apply(round_id, acting_uid, target_uid, MemberOperation.DECLINE_MEMBER)

    async def remove_member(self, round_id: str, acting_uid: str, target_uid: str) -> dict[str, Any]:
        """Host removes an accepted member, freeing their seat."""
        return await self._apply(round_id, acting_uid, target_uid, MemberOperation.REMOVE_MEMBER)

    async def invite_member(self, round_id: str, acting_uid: str, target_uid: str) -> dict[str, Any]:
        return await self._apply(round_id, acting_uid, target_uid, MemberOperation.INVITE_MEMBER)

    async def accept_invite(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        return await self._apply(round_id, acting_uid, acting_uid, MemberOperation.ACCEPT_INVITE)

    async def decline_invite(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        return await self._apply(round_id, acting_uid, acting_uid, MemberOperation.DECLINE_INVITE)

    async def leave_round(self, round_id: str, acting_uid: str) -> dict[str, Any]:
        """Give up an accepted seat."""
        return await self._apply(round_id, acting_uid, acting_uid, MemberOperation.LEAVE_ROUND)

    # ==========================================
    # QUERIES
    # ==========================================

    async def status_of(self, round_id: str, uid: str) -> MemberStatus | None:
        """Current status of ``uid`` in the round; the host is always accepted."""
        round_ = await self._get_round_or_raise(round_id)
        if round_.is_host(uid):
            return MemberStatus.ACCEPTED
        membership = await self.store.get_membership(round_id, uid)
        return membership.status if membership else None

    async def list_members(
        self, round_id: str, status: MemberStatus | str | None = None
    ) -> list[dict[str, Any]]:
        """Roster of the round, host first."""
        round_ = await self._get_round_or_raise(round_id)
        if status is not None:
            status = coerce_enum(MemberStatus, status, "status")
        members = await self.store.list_memberships(round_id, status)
        result = [m.to_dict() for m in members]
        if status in (None, MemberStatus.ACCEPTED):
            result.insert(0, host_member_dict(round_))
        return result

    async def accepted_members(self, round_id: str) -> list[str]:
        """Accepted non-host members."""
        await self._get_round_or_raise(round_id)
        return await self._member_uids(round_id, MemberStatus.ACCEPTED)

    async def pending_requests(self, round_id: str) -> list[str]:
        await self._get_round_or_raise(round_id)
        return await self._member_uids(round_id, MemberStatus.REQUESTED)

    async def invited_users(self, round_id: str) -> list[str]:
        await self._get_round_or_raise(round_id)
        return await self._member_uids(round_id, MemberStatus.INVITED)

    async def invited_rounds(self, uid: str) -> list[dict[str, Any]]:
        """Rounds with an open invitation for ``uid``, soonest tee time first."""
        rounds = await self.store.list_rounds_for_member(uid, MemberStatus.INVITED)
        live = [r for r in rounds if not r.is_terminal]
        live.sort(key=lambda r: (r.tee_time is None, r.tee_time or r.created_at))
        return [r.to_dict() for r in live]

    async def reconcile_round(self, round_id: str) -> dict[str, Any]:
        """Recompute the round's counters from stored memberships."""
        async with self.allocator.serialize(round_id), self.store.unit_of_work():
            round_ = await self._lock_round_or_raise(round_id)
            accepted = await self.store.count_memberships(round_id, MemberStatus.ACCEPTED)
            requested = await self.store.count_memberships(round_id, MemberStatus.REQUESTED)
            drifted = self.allocator.reconcile(round_, accepted)
            if round_.request_count != requested:
                round_.request_count = requested
                drifted = True
            if drifted:
                await self._commit(round_)
        return round_.to_dict()

    # ==========================================
    # HELPERS
    # ==========================================

    async def _apply(
        self,
        round_id: str,
        acting_uid: str,
        target_uid: str,
        operation: MemberOperation,
    ) -> dict[str, Any]:
        """Run one membership transition as a single critical section."""
        transition = MEMBER_TRANSITIONS[operation]

        async with self.allocator.serialize(round_id), self.store.unit_of_work():
            round_ = await self._lock_round_or_raise(round_id)
            ensure_mutable(round_)
            if transition.actor is Actor.HOST:
                self._check_host(round_, acting_uid, operation.value.replace("_", " "))
            if round_.is_host(target_uid):
                raise AlreadyHostError(target_uid)
            if operation in _FRIEND_GATED and round_.visibility is Visibility.FRIENDS_ONLY:
                await self._check_friend(round_, target_uid)
            if operation in _PROFILE_GATED:
                await self._check_profile(target_uid)

            current = await self.store.get_membership(round_id, target_uid)
            previous = current.status if current else None
            validate_member_transition(previous, operation, round_.join_policy)

            grant = None
            if transition.consumes_seat:
                grant = self.allocator.try_reserve_seat(round_)
            if transition.releases_seat:
                self.allocator.release_seat(round_)

            if previous is MemberStatus.REQUESTED:
                round_.request_count = max(0, round_.request_count - 1)
            if transition.target is MemberStatus.REQUESTED:
                round_.request_count += 1

            membership = None
            if transition.target is not None:
                keep_history = current is not None and previous not in REENTRY_STATUSES
                membership = Membership(
                    round_id=round_id,
                    uid=target_uid,
                    status=transition.target,
                    invited_by=acting_uid if transition.target is MemberStatus.INVITED else None,
                )
                if keep_history:
                    membership.created_at = current.created_at

            try:
                await self._commit(
                    round_,
                    membership,
                    delete_uid=target_uid if transition.target is None else None,
                )
            except TransientFailureError:
                if grant is not None:
                    self.allocator.release_seat(round_)
                raise

        if grant is not None:
            logger.info(
                "seat_committed",
                round_id=grant.round_id,
                uid=target_uid,
                accepted_count=grant.accepted_count,
                spots_remaining=grant.spots_remaining,
            )

        logger.info(
            "membership_changed",
            round_id=round_id,
            operation=operation.value,
            acting_uid=acting_uid,
            uid=target_uid,
            from_status=previous.value if previous else None,
            to_status=transition.target.value if transition.target else None,
            accepted_count=round_.accepted_count,
        )

        event_type, audience = _MEMBER_EVENTS[operation]
        recipient = round_.host_uid if audience == "host" else target_uid
        self._publish(
            RoundEvent(
                event_type,
                round_id,
                acting_uid,
                (recipient,),
                {"title": round_.title, "uid": target_uid},
            )
        )

        return {
            "round_id": round_id,
            "uid": target_uid,
            "status": transition.target.value if transition.target else None,
            "round": round_.to_dict(),
        }

    async def _commit(
        self,
        round_: Round,
        membership: Membership | None = None,
        delete_uid: str | None = None,
    ) -> None:
        try:
            await self.store.save(round_, membership, delete_uid=delete_uid)
        except Exception as exc:
            logger.error("round_commit_failed", round_id=round_.id, error=str(exc))
            raise TransientFailureError() from exc

    async def _get_round_or_raise(self, round_id: str) -> Round:
        round_ = await self.store.get_round(round_id)
        if not round_:
            raise RoundNotFoundError(round_id)
        return round_

    async def _lock_round_or_raise(self, round_id: str) -> Round:
        round_ = await self.store.lock_round(round_id)
        if not round_:
            raise RoundNotFoundError(round_id)
        return round_

    async def _member_uids(self, round_id: str, status: MemberStatus) -> list[str]:
        return [m.uid for m in await self.store.list_memberships(round_id, status)]

    def _check_host(self, round_: Round, acting_uid: str, action: str) -> None:
        if not round_.is_host(acting_uid):
            raise NotHostError(acting_uid, action)

    async def _check_friend(self, round_: Round, uid: str) -> None:
        if self.social_graph is None or not await self.social_graph.is_friend_of(round_.host_uid, uid):
            raise NotAllowedError(uid, round_.id)

    async def _check_profile(self, uid: str) -> None:
        if self.profile_gate is not None and not await self.profile_gate.has_minimum_profile(uid):
            raise ProfileIncompleteError(uid)

    def _publish(self, event: RoundEvent) -> None:
        """Publish a round event via the configured publisher."""
        try:
            self.publisher.publish(event)
        except Exception as e:
            logger.error("failed_to_publish_round_event", error=str(e), event_type=event.event_type)

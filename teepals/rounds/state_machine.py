"""State machines for round status and round membership.

Membership transitions are keyed by operation: each operation names the
statuses it may start from (``None`` meaning no record), the status it
produces (``None`` meaning the record is deleted), who may perform it, and
whether it consumes or releases a seat.

Round status:  open ⇄ closed → completed
               open | closed → canceled
``closed`` only marks a full round; both are mutable, the others terminal.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from teepals.rounds.exceptions import InvalidTransitionError, RoundTerminalError
from teepals.rounds.models import (
    REENTRY_STATUSES,
    JoinPolicy,
    MemberStatus,
    Round,
    RoundStatus,
)


class MemberOperation(str, Enum):
    """Every operation that changes a membership record."""

    REQUEST_TO_JOIN = "request_to_join"
    JOIN_INSTANT = "join_instant"
    INVITE_MEMBER = "invite_member"
    ACCEPT_MEMBER = "accept_member"
    DECLINE_MEMBER = "decline_member"
    CANCEL_REQUEST = "cancel_request"
    ACCEPT_INVITE = "accept_invite"
    DECLINE_INVITE = "decline_invite"
    LEAVE_ROUND = "leave_round"
    REMOVE_MEMBER = "remove_member"


class Actor(str, Enum):
    """Who may perform an operation."""

    HOST = "host"
    SELF = "self"


@dataclass(frozen=True)
class MemberTransition:
    operation: MemberOperation
    actor: Actor
    sources: frozenset[MemberStatus | None]
    target: MemberStatus | None
    consumes_seat: bool = False
    releases_seat: bool = False
    required_policy: JoinPolicy | None = None


_FRESH = frozenset({None, *REENTRY_STATUSES})

MEMBER_TRANSITIONS: dict[MemberOperation, MemberTransition] = {
    MemberOperation.REQUEST_TO_JOIN: MemberTransition(
        MemberOperation.REQUEST_TO_JOIN,
        Actor.SELF,
        _FRESH,
        MemberStatus.REQUESTED,
        required_policy=JoinPolicy.APPROVAL,
    ),
    MemberOperation.JOIN_INSTANT: MemberTransition(
        MemberOperation.JOIN_INSTANT,
        Actor.SELF,
        _FRESH,
        MemberStatus.ACCEPTED,
        consumes_seat=True,
        required_policy=JoinPolicy.INSTANT,
    ),
    MemberOperation.INVITE_MEMBER: MemberTransition(
        MemberOperation.INVITE_MEMBER,
        Actor.HOST,
        _FRESH,
        MemberStatus.INVITED,
    ),
    MemberOperation.ACCEPT_MEMBER: MemberTransition(
        MemberOperation.ACCEPT_MEMBER,
        Actor.HOST,
        frozenset({MemberStatus.REQUESTED}),
        MemberStatus.ACCEPTED,
        consumes_seat=True,
    ),
    MemberOperation.DECLINE_MEMBER: MemberTransition(
        MemberOperation.DECLINE_MEMBER,
        Actor.HOST,
        frozenset({MemberStatus.REQUESTED}),
        MemberStatus.DECLINED,
    ),
    MemberOperation.CANCEL_REQUEST: MemberTransition(
        MemberOperation.CANCEL_REQUEST,
        Actor.SELF,
        frozenset({MemberStatus.REQUESTED}),
        None,
    ),
    MemberOperation.ACCEPT_INVITE: MemberTransition(
        MemberOperation.ACCEPT_INVITE,
        Actor.SELF,
        frozenset({MemberStatus.INVITED}),
        MemberStatus.ACCEPTED,
        consumes_seat=True,
    ),
    MemberOperation.DECLINE_INVITE: MemberTransition(
        MemberOperation.DECLINE_INVITE,
        Actor.SELF,
        frozenset({MemberStatus.INVITED}),
        MemberStatus.DECLINED,
    ),
    MemberOperation.LEAVE_ROUND: MemberTransition(
        MemberOperation.LEAVE_ROUND,
        Actor.SELF,
        frozenset({MemberStatus.ACCEPTED}),
        MemberStatus.LEFT,
        releases_seat=True,
    ),
    MemberOperation.REMOVE_MEMBER: MemberTransition(
        MemberOperation.REMOVE_MEMBER,
        Actor.HOST,
        frozenset({MemberStatus.ACCEPTED}),
        MemberStatus.REMOVED,
        releases_seat=True,
    ),
}


def can_apply(current: MemberStatus | None, operation: MemberOperation) -> bool:
    """Check whether an operation is legal from the current membership status."""
    transition = MEMBER_TRANSITIONS.get(operation)
    return transition is not None and current in transition.sources


def validate_member_transition(
    current: MemberStatus | None,
    operation: MemberOperation,
    join_policy: JoinPolicy | None = None,
) -> MemberTransition:
    """Return the transition for ``operation`` or raise InvalidTransitionError."""
    transition = MEMBER_TRANSITIONS[operation]
    current_value = current.value if current is not None else None
    if current not in transition.sources:
        raise InvalidTransitionError(current_value, operation.value)
    if transition.required_policy is not None and join_policy != transition.required_policy:
        raise InvalidTransitionError(
            current_value,
            operation.value,
            f"round join policy is '{join_policy.value if join_policy else None}'",
        )
    return transition


# ===========================================
# ROUND STATUS LIFECYCLE
# ===========================================

ROUND_TRANSITIONS: dict[RoundStatus, list[RoundStatus]] = {
    RoundStatus.OPEN: [RoundStatus.CLOSED, RoundStatus.CANCELED, RoundStatus.COMPLETED],
    RoundStatus.CLOSED: [RoundStatus.OPEN, RoundStatus.CANCELED, RoundStatus.COMPLETED],
    RoundStatus.CANCELED: [],   # terminal
    RoundStatus.COMPLETED: [],  # terminal
}


def can_transition_round(current: RoundStatus, target: RoundStatus) -> bool:
    """Check if a round status transition is valid."""
    return target in ROUND_TRANSITIONS.get(current, [])


def ensure_mutable(round_: Round) -> None:
    """Raise RoundTerminalError if the round no longer accepts changes."""
    if round_.is_terminal:
        raise RoundTerminalError(round_.id, round_.status.value)


def transition_round(round_: Round, target: RoundStatus) -> Round:
    """Move a round to ``target``, raising if the move is not allowed."""
    ensure_mutable(round_)
    if not can_transition_round(round_.status, target):
        raise RoundTerminalError(round_.id, round_.status.value)
    round_.status = target
    return round_


def sync_capacity_status(round_: Round) -> Round:
    """Flip a mutable round between open and closed to match its seat count."""
    if round_.is_terminal:
        return round_
    target = RoundStatus.CLOSED if round_.is_full else RoundStatus.OPEN
    if round_.status != target:
        round_.status = target
    return round_

"""Capacity allocator: per-round serialization and seat accounting.

Every mutation of a round runs inside ``serialize(round_id)``. Within that
critical section ``try_reserve_seat`` and ``release_seat`` are the only code
paths allowed to change ``Round.accepted_count``.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from teepals.rounds.exceptions import RoundFullError, TransientFailureError
from teepals.rounds.models import Round
from teepals.rounds.state_machine import sync_capacity_status
from teepals.shared.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class SeatGrant:
    """Proof that a seat was reserved on a round's working copy."""

    round_id: str
    accepted_count: int
    spots_remaining: int


class CapacityAllocator:
    """Serializes operations per round and hands out seats.

    Locks are created on first use and discarded once nobody holds or waits
    for them, so idle rounds cost nothing. Operations on different rounds
    never contend.
    """

    def __init__(self, lock_timeout: float | None = 5.0) -> None:
        self.lock_timeout = lock_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def serialize(self, round_id: str) -> AsyncIterator[None]:
        """Hold the round's lock for the duration of the block."""
        lock = self._locks.get(round_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[round_id] = lock
        self._users[round_id] = self._users.get(round_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.lock_timeout)
            except asyncio.TimeoutError as exc:
                logger.warning("round_lock_timeout", round_id=round_id, timeout=self.lock_timeout)
                raise TransientFailureError(
                    f"Round '{round_id}' is busy, please retry"
                ) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[round_id] -= 1
            if self._users[round_id] == 0:
                del self._users[round_id]
                self._locks.pop(round_id, None)

    def is_serialized(self, round_id: str) -> bool:
        lock = self._locks.get(round_id)
        return lock is not None and lock.locked()

    def active_rounds(self) -> int:
        """Number of rounds with a live lock (held or awaited)."""
        return len(self._locks)

    def try_reserve_seat(self, round_: Round) -> SeatGrant:
        """Reserve one seat on ``round_`` or raise RoundFullError.

        The caller must hold ``serialize(round_.id)``.
        """
        if not self.is_serialized(round_.id):
            raise RuntimeError(f"Seat reservation on round '{round_.id}' outside its lock")
        if round_.accepted_count >= round_.max_players:
            logger.info(
                "seat_reservation_rejected",
                round_id=round_.id,
                accepted_count=round_.accepted_count,
                max_players=round_.max_players,
            )
            raise RoundFullError(round_.id, round_.max_players)

        round_.accepted_count += 1
        sync_capacity_status(round_)
        logger.debug(
            "seat_reserved",
            round_id=round_.id,
            accepted_count=round_.accepted_count,
            spots_remaining=round_.spots_remaining,
        )
        return SeatGrant(round_.id, round_.accepted_count, round_.spots_remaining)

    def release_seat(self, round_: Round) -> None:
        """Return one seat to the pool. The host's seat is never released."""
        if round_.accepted_count <= 1:
            logger.warning("seat_release_underflow", round_id=round_.id)
            return
        round_.accepted_count -= 1
        sync_capacity_status(round_)
        logger.debug(
            "seat_released",
            round_id=round_.id,
            accepted_count=round_.accepted_count,
            spots_remaining=round_.spots_remaining,
        )

    def reconcile(self, round_: Round, accepted_members: int) -> bool:
        """Recompute ``accepted_count`` from stored memberships.

        Returns True if the stored counter had drifted and was corrected.
        """
        expected = 1 + accepted_members
        if round_.accepted_count == expected:
            return False
        logger.warning(
            "seat_count_drift",
            round_id=round_.id,
            stored=round_.accepted_count,
            expected=expected,
        )
        round_.accepted_count = expected
        sync_capacity_status(round_)
        return True

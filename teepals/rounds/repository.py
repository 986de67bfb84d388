"""Storage layer for rounds and round memberships.

Stores are a plain read/write surface. They never decide whether a change is
legal; the coordinator does that before calling ``save``.
"""

from __future__ import annotations

import abc
import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import and_, delete, func, select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from teepals.infrastructure.database.models import RoundMembershipRecord, RoundRecord
from teepals.rounds.models import (
    JoinPolicy,
    Membership,
    MemberStatus,
    Round,
    RoundStatus,
    Visibility,
)
from teepals.shared.utils.datetime_utils import utcnow
from teepals.shared.utils.logging import get_logger

logger = get_logger(__name__)


class RoundStore(abc.ABC):
    """Persistence interface consumed by the round coordinator."""

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        """Scope of one coordinator operation. Uncommitted work is discarded."""
        yield

    @abc.abstractmethod
    async def create_round(self, round_: Round) -> Round: ...

    @abc.abstractmethod
    async def get_round(self, round_id: str) -> Round | None: ...

    @abc.abstractmethod
    async def lock_round(self, round_id: str) -> Round | None:
        """Read a round for mutation, holding whatever lock the backend offers."""

    @abc.abstractmethod
    async def save(
        self,
        round_: Round,
        membership: Membership | None = None,
        delete_uid: str | None = None,
    ) -> None:
        """Atomically persist the round row plus one membership change."""

    @abc.abstractmethod
    async def get_membership(self, round_id: str, uid: str) -> Membership | None: ...

    @abc.abstractmethod
    async def list_memberships(
        self, round_id: str, status: MemberStatus | None = None
    ) -> list[Membership]: ...

    @abc.abstractmethod
    async def count_memberships(self, round_id: str, status: MemberStatus) -> int: ...

    @abc.abstractmethod
    async def list_rounds(
        self,
        status: RoundStatus | None = None,
        visibility: Visibility | None = None,
        host_uid: str | None = None,
        exclude_full: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Round], int]: ...

    @abc.abstractmethod
    async def list_rounds_for_member(self, uid: str, status: MemberStatus) -> list[Round]: ...


# ===========================================
# IN-MEMORY STORE
# ===========================================


class MemoryRoundStore(RoundStore):
    """Process-local store. Hands out copies so callers never alias stored state."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self.rounds: dict[str, Round] = {}
        self.members: dict[str, dict[str, Membership]] = {}

    async def create_round(self, round_: Round) -> Round:
        async with self._lock:
            self.rounds[round_.id] = round_.copy()
            self.members.setdefault(round_.id, {})
            return round_.copy()

    async def get_round(self, round_id: str) -> Round | None:
        async with self._lock:
            round_ = self.rounds.get(round_id)
            return round_.copy() if round_ else None

    async def lock_round(self, round_id: str) -> Round | None:
        return await self.get_round(round_id)

    async def save(
        self,
        round_: Round,
        membership: Membership | None = None,
        delete_uid: str | None = None,
    ) -> None:
        async with self._lock:
            now = utcnow()
            round_.updated_at = now
            self.rounds[round_.id] = round_.copy()
            members = self.members.setdefault(round_.id, {})
            if membership is not None:
                membership.updated_at = now
                members[membership.uid] = membership.copy()
            if delete_uid is not None:
                members.pop(delete_uid, None)

    async def get_membership(self, round_id: str, uid: str) -> Membership | None:
        async with self._lock:
            membership = self.members.get(round_id, {}).get(uid)
            return membership.copy() if membership else None

    async def list_memberships(
        self, round_id: str, status: MemberStatus | None = None
    ) -> list[Membership]:
        async with self._lock:
            members = self.members.get(round_id, {}).values()
            result = [m.copy() for m in members if status is None or m.status == status]
        return sorted(result, key=lambda m: m.created_at)

    async def count_memberships(self, round_id: str, status: MemberStatus) -> int:
        async with self._lock:
            return sum(1 for m in self.members.get(round_id, {}).values() if m.status == status)

    async def list_rounds(
        self,
        status: RoundStatus | None = None,
        visibility: Visibility | None = None,
        host_uid: str | None = None,
        exclude_full: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Round], int]:
        async with self._lock:
            matches = [
                r.copy()
                for r in self.rounds.values()
                if (status is None or r.status == status)
                and (visibility is None or r.visibility == visibility)
                and (host_uid is None or r.host_uid == host_uid)
                and not (exclude_full and r.is_full)
            ]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return matches[offset : offset + limit], len(matches)

    async def list_rounds_for_member(self, uid: str, status: MemberStatus) -> list[Round]:
        async with self._lock:
            return [
                self.rounds[round_id].copy()
                for round_id, members in self.members.items()
                if uid in members and members[uid].status == status and round_id in self.rounds
            ]


# ===========================================
# POSTGRES STORE
# ===========================================


def _round_from_record(record: RoundRecord) -> Round:
    return Round(
        id=record.id,
        host_uid=record.host_uid,
        title=record.title,
        description=record.description,
        course=record.course,
        tee_time=record.tee_time,
        status=RoundStatus(record.status),
        join_policy=JoinPolicy(record.join_policy),
        visibility=Visibility(record.visibility),
        max_players=record.max_players,
        accepted_count=record.accepted_count,
        request_count=record.request_count,
        created_at=record.created_at,
        updated_at=record.updated_at,
        canceled_at=record.canceled_at,
        completed_at=record.completed_at,
    )


def _round_values(round_: Round) -> dict[str, Any]:
    return {
        "host_uid": round_.host_uid,
        "title": round_.title,
        "description": round_.description,
        "course": round_.course,
        "tee_time": round_.tee_time,
        "status": round_.status.value,
        "join_policy": round_.join_policy.value,
        "visibility": round_.visibility.value,
        "max_players": round_.max_players,
        "accepted_count": round_.accepted_count,
        "request_count": round_.request_count,
        "updated_at": round_.updated_at,
        "canceled_at": round_.canceled_at,
        "completed_at": round_.completed_at,
    }


def _membership_from_record(record: RoundMembershipRecord) -> Membership:
    return Membership(
        round_id=record.round_id,
        uid=record.uid,
        status=MemberStatus(record.status),
        invited_by=record.invited_by,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class SqlRoundStore(RoundStore):
    """PostgreSQL-backed store.

    ``lock_round`` takes a row lock (``SELECT ... FOR UPDATE``) that is held
    until ``save`` commits or the unit of work rolls back, which serializes
    writers to the same round across processes.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if self.session.in_transaction():
                await self.session.rollback()

    async def create_round(self, round_: Round) -> Round:
        record = RoundRecord(id=round_.id, created_at=round_.created_at, **_round_values(round_))
        self.session.add(record)
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise
        return round_

    async def get_round(self, round_id: str) -> Round | None:
        result = await self.session.execute(select(RoundRecord).where(RoundRecord.id == round_id))
        record = result.scalar_one_or_none()
        return _round_from_record(record) if record else None

    async def lock_round(self, round_id: str) -> Round | None:
        result = await self.session.execute(
            select(RoundRecord).where(RoundRecord.id == round_id).with_for_update()
        )
        record = result.scalar_one_or_none()
        return _round_from_record(record) if record else None

    async def save(
        self,
        round_: Round,
        membership: Membership | None = None,
        delete_uid: str | None = None,
    ) -> None:
        now = utcnow()
        round_.updated_at = now
        try:
            await self.session.execute(
                update(RoundRecord).where(RoundRecord.id == round_.id).values(**_round_values(round_))
            )
            if membership is not None:
                membership.updated_at = now
                values = {
                    "round_id": membership.round_id,
                    "uid": membership.uid,
                    "status": membership.status.value,
                    "invited_by": membership.invited_by,
                    "created_at": membership.created_at,
                    "updated_at": now,
                }
                stmt = insert(RoundMembershipRecord).values(**values)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[RoundMembershipRecord.round_id, RoundMembershipRecord.uid],
                    set_={
                        "status": stmt.excluded.status,
                        "invited_by": stmt.excluded.invited_by,
                        "created_at": stmt.excluded.created_at,
                        "updated_at": stmt.excluded.updated_at,
                    },
                )
                await self.session.execute(stmt)
            if delete_uid is not None:
                await self.session.execute(
                    delete(RoundMembershipRecord).where(
                        and_(
                            RoundMembershipRecord.round_id == round_.id,
                            RoundMembershipRecord.uid == delete_uid,
                        )
                    )
                )
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            raise

    async def get_membership(self, round_id: str, uid: str) -> Membership | None:
        result = await self.session.execute(
            select(RoundMembershipRecord).where(
                and_(
                    RoundMembershipRecord.round_id == round_id,
                    RoundMembershipRecord.uid == uid,
                )
            )
        )
        record = result.scalar_one_or_none()
        return _membership_from_record(record) if record else None

    async def list_memberships(
        self, round_id: str, status: MemberStatus | None = None
    ) -> list[Membership]:
        conditions = [RoundMembershipRecord.round_id == round_id]
        if status is not None:
            conditions.append(RoundMembershipRecord.status == status.value)
        result = await self.session.execute(
            select(RoundMembershipRecord)
            .where(and_(*conditions))
            .order_by(RoundMembershipRecord.created_at.asc())
        )
        return [_membership_from_record(r) for r in result.scalars().all()]

    async def count_memberships(self, round_id: str, status: MemberStatus) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(RoundMembershipRecord)
            .where(
                and_(
                    RoundMembershipRecord.round_id == round_id,
                    RoundMembershipRecord.status == status.value,
                )
            )
        )
        return result.scalar() or 0

    async def list_rounds(
        self,
        status: RoundStatus | None = None,
        visibility: Visibility | None = None,
        host_uid: str | None = None,
        exclude_full: bool = False,
        offset: int = 0,
        limit: int = 50,
    ) -> tuple[list[Round], int]:
        conditions = []
        if status is not None:
            conditions.append(RoundRecord.status == status.value)
        if visibility is not None:
            conditions.append(RoundRecord.visibility == visibility.value)
        if host_uid:
            conditions.append(RoundRecord.host_uid == host_uid)
        if exclude_full:
            conditions.append(RoundRecord.accepted_count < RoundRecord.max_players)

        base_query = select(RoundRecord)
        if conditions:
            base_query = base_query.where(and_(*conditions))

        count_query = select(func.count()).select_from(base_query.subquery())
        count_result = await self.session.execute(count_query)
        total = count_result.scalar() or 0

        base_query = base_query.order_by(RoundRecord.created_at.desc()).offset(offset).limit(limit)
        result = await self.session.execute(base_query)
        return [_round_from_record(r) for r in result.scalars().all()], total

    async def list_rounds_for_member(self, uid: str, status: MemberStatus) -> list[Round]:
        result = await self.session.execute(
            select(RoundRecord)
            .join(RoundMembershipRecord, RoundMembershipRecord.round_id == RoundRecord.id)
            .where(
                and_(
                    RoundMembershipRecord.uid == uid,
                    RoundMembershipRecord.status == status.value,
                )
            )
        )
        return [_round_from_record(r) for r in result.scalars().all()]

"""Pydantic schemas for round request/response models."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from teepals.rounds.models import JoinPolicy, MemberStatus, RoundStatus, Visibility
from teepals.shared.schemas.base import BaseSchema


# ===========================================
# ROUND SCHEMAS
# ===========================================


class CreateRoundRequest(BaseModel):
    """Request to create a new round."""

    title: str = Field(default="Golf Round", min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    course: str | None = Field(default=None, max_length=200)
    tee_time: datetime | None = None
    max_players: int | None = Field(default=None, ge=1)
    join_policy: JoinPolicy | None = None
    visibility: Visibility = Visibility.PUBLIC

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title cannot be blank")
        return v.strip()


class EditRoundRequest(BaseModel):
    """Request to edit a round. Only the fields sent are changed."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    course: str | None = Field(default=None, max_length=200)
    tee_time: datetime | None = None
    max_players: int | None = Field(default=None, ge=1)
    join_policy: JoinPolicy | None = None
    visibility: Visibility | None = None


class RoundResponse(BaseSchema):
    """Round response model."""

    id: str
    host_uid: str
    title: str
    description: str | None = None
    course: str | None = None
    tee_time: datetime | None = None
    status: RoundStatus
    join_policy: JoinPolicy
    visibility: Visibility
    max_players: int
    accepted_count: int
    request_count: int
    spots_remaining: int
    is_full: bool
    created_at: datetime
    updated_at: datetime
    canceled_at: datetime | None = None
    completed_at: datetime | None = None


# ===========================================
# MEMBERSHIP SCHEMAS
# ===========================================


class MemberTargetRequest(BaseModel):
    """Host action aimed at another user."""

    uid: str = Field(..., min_length=1, max_length=128)


class MemberResponse(BaseSchema):
    """One roster entry."""

    round_id: str
    uid: str
    status: MemberStatus
    role: str = "member"
    invited_by: str | None = None
    created_at: datetime
    updated_at: datetime


class MembershipChangeResponse(BaseSchema):
    """Outcome of a membership operation. ``status`` is None when the record was deleted."""

    round_id: str
    uid: str
    status: MemberStatus | None = None
    round: RoundResponse


class MemberStatusResponse(BaseSchema):
    round_id: str
    uid: str
    status: MemberStatus | None = None

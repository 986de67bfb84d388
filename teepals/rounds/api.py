"""API endpoints for rounds."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from teepals.infrastructure.database.session import get_db_session
from teepals.rounds.collaborators import PlatformEventPublisher
from teepals.rounds.config import get_round_settings
from teepals.rounds.exceptions import RoundServiceError, raise_http_exception
from teepals.rounds.repository import SqlRoundStore
from teepals.rounds.schemas import (
    CreateRoundRequest,
    EditRoundRequest,
    MemberResponse,
    MembershipChangeResponse,
    MemberStatusResponse,
    MemberTargetRequest,
    RoundResponse,
)
from teepals.rounds.service import RoundService
from teepals.shared.schemas.base import ErrorDetail, PaginatedResponse
from teepals.shared.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/rounds",
    tags=["rounds"],
    responses={
        403: {"model": ErrorDetail},
        404: {"model": ErrorDetail},
        409: {"model": ErrorDetail},
    },
)


def _get_acting_uid(request: Request) -> str:
    """Extract the acting user from request state or the X-User-Id header."""
    uid = getattr(request.state, "user_id", None) or request.headers.get("X-User-Id")
    if not uid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return uid


async def get_round_service(request: Request) -> AsyncIterator[RoundService]:
    """Build a coordinator over the app's shared allocator and collaborators."""
    state = request.app.state
    settings = get_round_settings()
    kwargs = {
        "allocator": state.allocator,
        "social_graph": state.social_graph,
        "profile_gate": state.profile_gate,
        "publisher": getattr(state, "publisher", None) or PlatformEventPublisher(),
        "settings": settings,
    }
    if settings.store_backend == "postgres":
        async with get_db_session() as session:
            yield RoundService(SqlRoundStore(session), **kwargs)
    else:
        yield RoundService(state.round_store, **kwargs)


# ===========================================
# ROUND CRUD
# ===========================================


@router.post("", response_model=RoundResponse, status_code=status.HTTP_201_CREATED)
async def create_round(
    body: CreateRoundRequest,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Create a new round hosted by the caller."""
    try:
        return await service.create_round(
            host_uid=acting_uid,
            title=body.title,
            max_players=body.max_players,
            join_policy=body.join_policy,
            visibility=body.visibility,
            description=body.description,
            course=body.course,
            tee_time=body.tee_time,
        )
    except RoundServiceError as e:
        raise_http_exception(e)


@router.get("", response_model=PaginatedResponse[RoundResponse])
async def list_rounds(
    round_status: str | None = Query(default=None, alias="status"),
    visibility: str | None = Query(default=None),
    host_uid: str | None = Query(default=None),
    exclude_full: bool = Query(default=False),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=100),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """List rounds with filters, newest first."""
    try:
        result = await service.list_rounds(
            status=round_status,
            visibility=visibility,
            host_uid=host_uid,
            exclude_full=exclude_full,
            offset=offset,
            limit=limit,
        )
    except RoundServiceError as e:
        raise_http_exception(e)
    result["items"] = result.pop("rounds")
    return result


@router.get("/invited", response_model=list[RoundResponse])
async def list_invited_rounds(
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> list[dict[str, Any]]:
    """Rounds the caller has a pending invitation to."""
    return await service.invited_rounds(acting_uid)


@router.get("/{round_id}", response_model=RoundResponse)
async def get_round(
    round_id: str,
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    try:
        return await service.get_round(round_id)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.patch("/{round_id}", response_model=RoundResponse)
async def edit_round(
    round_id: str,
    body: EditRoundRequest,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Edit round details. Host only."""
    try:
        return await service.edit_round(round_id, acting_uid, **body.model_dump(exclude_unset=True))
    except RoundServiceError as e:
        raise_http_exception(e)


# ===========================================
# ROUND LIFECYCLE
# ===========================================


@router.post("/{round_id}/cancel", response_model=RoundResponse)
async def cancel_round(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Cancel a round. Host only."""
    try:
        return await service.cancel_round(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/complete", response_model=RoundResponse)
async def complete_round(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Mark a round as played. Host only."""
    try:
        return await service.mark_completed(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


# ===========================================
# MEMBERSHIP (SELF)
# ===========================================


@router.post("/{round_id}/requests", response_model=MembershipChangeResponse)
async def request_to_join(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Request a seat on an approval round."""
    try:
        return await service.request_to_join(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.delete("/{round_id}/requests", response_model=MembershipChangeResponse)
async def cancel_request(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    try:
        return await service.cancel_request(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/join", response_model=MembershipChangeResponse)
async def join_instant(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Take a seat on an instant-join round."""
    try:
        return await service.join_instant(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/leave", response_model=MembershipChangeResponse)
async def leave_round(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    try:
        return await service.leave_round(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/invite/accept", response_model=MembershipChangeResponse)
async def accept_invite(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    try:
        return await service.accept_invite(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/invite/decline", response_model=MembershipChangeResponse)
async def decline_invite(
    round_id: str,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    try:
        return await service.decline_invite(round_id, acting_uid)
    except RoundServiceError as e:
        raise_http_exception(e)


# ===========================================
# MEMBERSHIP (HOST)
# ===========================================


@router.post("/{round_id}/invites", response_model=MembershipChangeResponse)
async def invite_member(
    round_id: str,
    body: MemberTargetRequest,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Invite a user to the round. Host only."""
    try:
        return await service.invite_member(round_id, acting_uid, body.uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/members/accept", response_model=MembershipChangeResponse)
async def accept_member(
    round_id: str,
    body: MemberTargetRequest,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Accept a pending join request. Host only."""
    try:
        return await service.accept_member(round_id, acting_uid, body.uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/members/decline", response_model=MembershipChangeResponse)
async def decline_member(
    round_id: str,
    body: MemberTargetRequest,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    try:
        return await service.decline_member(round_id, acting_uid, body.uid)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.post("/{round_id}/members/remove", response_model=MembershipChangeResponse)
async def remove_member(
    round_id: str,
    body: MemberTargetRequest,
    acting_uid: str = Depends(_get_acting_uid),
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    """Remove an accepted member. Host only."""
    try:
        return await service.remove_member(round_id, acting_uid, body.uid)
    except RoundServiceError as e:
        raise_http_exception(e)


# ===========================================
# ROSTER
# ===========================================


@router.get("/{round_id}/members", response_model=list[MemberResponse])
async def list_members(
    round_id: str,
    member_status: str | None = Query(default=None, alias="status"),
    service: RoundService = Depends(get_round_service),
) -> list[dict[str, Any]]:
    """Round roster, host first."""
    try:
        return await service.list_members(round_id, member_status)
    except RoundServiceError as e:
        raise_http_exception(e)


@router.get("/{round_id}/members/{uid}", response_model=MemberStatusResponse)
async def get_member_status(
    round_id: str,
    uid: str,
    service: RoundService = Depends(get_round_service),
) -> dict[str, Any]:
    try:
        member_status = await service.status_of(round_id, uid)
    except RoundServiceError as e:
        raise_http_exception(e)
    return {"round_id": round_id, "uid": uid, "status": member_status}

"""
API routes for the TrustPact HTTP gateway.

Provides REST endpoints that wrap the request repository. The acting
user is passed explicitly in the X-User-ID header on every call.

Invariants:
    - Only the receiver accepts or declines, only the sender revokes
    - Only the two parties of a request can read it by id
"""

import logging
from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, Field

from ..config import Settings
from ..errors import AccessDeniedError, UnauthenticatedError, ValidationError
from ..models import RequestStatus, TrustRequest, utc_now
from ..repository import RequestRepository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Trust Requests"])

ACTIONS = {
    RequestStatus.ACCEPTED: "accept",
    RequestStatus.DECLINED: "decline",
    RequestStatus.REVOKED: "revoke",
}


# --- Request/Response Models ---


class CreateTrustRequest(BaseModel):
    """Request to send a trust request."""

    receiver_id: str = Field(..., min_length=1, description="User the request is addressed to")
    expires_in_days: int | None = Field(
        None, ge=1, description="Validity window in days (server default when omitted)"
    )


class TrustRequestResponse(BaseModel):
    """Trust request with derived state."""

    request_id: str
    sender_id: str
    receiver_id: str
    status: str
    label: str
    timestamp: datetime
    expiration: datetime
    is_valid: bool
    can_be_accepted: bool

    @classmethod
    def from_request(cls, request: TrustRequest, now: datetime | None = None) -> "TrustRequestResponse":
        now = now or utc_now()
        return cls(
            request_id=request.request_id,
            sender_id=request.sender_id,
            receiver_id=request.receiver_id,
            status=request.status.value,
            label=request.status.label,
            timestamp=request.timestamp,
            expiration=request.expiration,
            is_valid=request.is_valid(now),
            can_be_accepted=request.can_be_accepted(now),
        )


class TrustRequestList(BaseModel):
    """List of trust requests."""

    items: list[TrustRequestResponse]
    total: int


# --- Dependencies ---


def get_repository(request: Request) -> RequestRepository:
    """Get repository from app state."""
    return request.app.state.repository


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_actor(x_user_id: str | None = Header(None, alias="X-User-ID")) -> str:
    """Get the acting user from the X-User-ID header."""
    if not x_user_id:
        raise UnauthenticatedError()
    return x_user_id


def _to_list(requests: list[TrustRequest]) -> TrustRequestList:
    now = utc_now()
    return TrustRequestList(
        items=[TrustRequestResponse.from_request(r, now) for r in requests],
        total=len(requests),
    )


# --- Routes ---


@router.post("/requests", response_model=TrustRequestResponse, status_code=201)
async def create_request(
    body: CreateTrustRequest,
    actor: str = Depends(get_actor),
    repo: RequestRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
):
    """Send a trust request from the calling user."""
    expiration = None
    if body.expires_in_days is not None:
        if body.expires_in_days > settings.max_expiration_days:
            raise ValidationError(
                f"Expiration must be at most {settings.max_expiration_days} days",
                field_name="expires_in_days",
            )
        expiration = utc_now() + timedelta(days=body.expires_in_days)

    created = await repo.create(actor, body.receiver_id, expiration)
    logger.info(
        "Trust request sent",
        extra={"request_id": created.request_id, "sender_id": actor},
    )
    return TrustRequestResponse.from_request(created)


@router.get("/requests/sent", response_model=TrustRequestList)
async def list_sent(
    actor: str = Depends(get_actor),
    repo: RequestRepository = Depends(get_repository),
):
    """Requests sent by the calling user."""
    return _to_list(await repo.list_by_sender(actor))


@router.get("/requests/received", response_model=TrustRequestList)
async def list_received(
    actor: str = Depends(get_actor),
    repo: RequestRepository = Depends(get_repository),
):
    """Requests addressed to the calling user."""
    return _to_list(await repo.list_by_receiver(actor))


@router.get("/requests/{request_id}", response_model=TrustRequestResponse)
async def get_request(
    request_id: str,
    actor: str = Depends(get_actor),
    repo: RequestRepository = Depends(get_repository),
):
    """Fetch one trust request the caller is a party to."""
    request = await repo.get_by_id(request_id)
    if actor not in (request.sender_id, request.receiver_id):
        raise AccessDeniedError(
            "Only the sender or receiver can view this request",
            actor=actor,
            resource_id=request_id,
        )
    return TrustRequestResponse.from_request(request)


async def _answer(
    repo: RequestRepository,
    request_id: str,
    actor: str,
    status: RequestStatus,
) -> TrustRequestResponse:
    # Receivers accept or decline, senders revoke
    request = await repo.get_by_id(request_id)
    if status is RequestStatus.REVOKED:
        role, party = "sender", request.sender_id
    else:
        role, party = "receiver", request.receiver_id
    if actor != party:
        raise AccessDeniedError(
            f"Only the {role} can {ACTIONS[status]} this request",
            actor=actor,
            resource_id=request_id,
            required_role=role,
        )

    await repo.set_status(request_id, status)
    logger.info(
        f"Trust request {status.value}",
        extra={"request_id": request_id, "actor": actor},
    )
    return TrustRequestResponse.from_request(await repo.get_by_id(request_id))


@router.post("/requests/{request_id}/accept", response_model=TrustRequestResponse)
async def accept_request(
    request_id: str,
    actor: str = Depends(get_actor),
    repo: RequestRepository = Depends(get_repository),
):
    """Accept a trust request addressed to the caller."""
    return await _answer(repo, request_id, actor, RequestStatus.ACCEPTED)


@router.post("/requests/{request_id}/decline", response_model=TrustRequestResponse)
async def decline_request(
    request_id: str,
    actor: str = Depends(get_actor),
    repo: RequestRepository = Depends(get_repository),
):
    """Decline a trust request addressed to the caller."""
    return await _answer(repo, request_id, actor, RequestStatus.DECLINED)


@router.post("/requests/{request_id}/revoke", response_model=TrustRequestResponse)
async def revoke_request(
    request_id: str,
    actor: str = Depends(get_actor),
    repo: RequestRepository = Depends(get_repository),
):
    """Revoke a trust request the caller sent."""
    return await _answer(repo, request_id, actor, RequestStatus.REVOKED)

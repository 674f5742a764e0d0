"""
Session Endpoints

Scheduling, joining and booking of live sessions, and leader commissions.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from linguamarket.database.db import CurrentSession
from linguamarket.src.billing.commissions import session_commission_service
from linguamarket.src.billing.sessions import live_session_service
from linguamarket.src.billing.shared.config import LeaderRole, SessionType, UserRole
from linguamarket.src.billing.shared.exceptions import ForbiddenError, ValidationError

from .dependencies import AdminUser, AuthUser, CurrentUser, verify_billing_enabled
from .serializers import attendance_to_dict, booking_to_dict, commission_to_dict, session_to_dict

router = APIRouter(tags=["billing-sessions"], dependencies=[Depends(verify_billing_enabled)])

_SESSION_TYPE_PATHS = {
    'video': SessionType.VIDEO_SESSION,
    'conversations': SessionType.LIVE_CONVERSATION,
}


# ============================================================================
# Request Models
# ============================================================================

class SessionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=256)
    start_time: datetime
    end_time: datetime
    price: Decimal = Decimal('0.00')
    is_credit_based: bool = False
    credit_price: Optional[Decimal] = None
    commission_rate: Optional[Decimal] = Field(None, description="Leader share in percent")


class VideoSessionRequest(SessionRequest):
    max_participants: int = 10
    institution_id: Optional[int] = None


class ConversationRequest(SessionRequest):
    max_participants: int = 8


# ============================================================================
# Sessions
# ============================================================================

@router.post("/sessions/video")
async def create_video_session(request: VideoSessionRequest, db: CurrentSession, user: AuthUser) -> Dict:
    """Schedule a video session led by the caller."""
    _ensure_leader(user)
    session = await live_session_service.create_video_session(
        db,
        instructor_id=user.id,
        title=request.title,
        start_time=request.start_time,
        end_time=request.end_time,
        price=request.price,
        is_credit_based=request.is_credit_based,
        credit_price=request.credit_price,
        max_participants=request.max_participants,
        institution_id=request.institution_id,
        instructor_commission_rate=request.commission_rate,
    )
    return {'session': session_to_dict(session)}


@router.post("/sessions/conversations")
async def create_conversation(request: ConversationRequest, db: CurrentSession, user: AuthUser) -> Dict:
    """Schedule a live conversation hosted by the caller."""
    conversation = await live_session_service.create_conversation(
        db,
        host_id=user.id,
        title=request.title,
        start_time=request.start_time,
        end_time=request.end_time,
        price=request.price,
        is_credit_based=request.is_credit_based,
        credit_price=request.credit_price,
        max_participants=request.max_participants,
        host_commission_rate=request.commission_rate,
    )
    return {'session': session_to_dict(conversation)}


@router.post("/sessions/video/{session_id}/join")
async def join_video_session(session_id: int, db: CurrentSession, user: AuthUser) -> Dict:
    attendance = await live_session_service.join_video_session(db, session_id, user.id)
    return {'attendance': attendance_to_dict(attendance)}


@router.post("/sessions/conversations/{conversation_id}/book")
async def book_conversation(conversation_id: int, db: CurrentSession, user: AuthUser) -> Dict:
    booking = await live_session_service.book_conversation(db, conversation_id, user.id)
    return {'booking': booking_to_dict(booking)}


@router.post("/sessions/{session_type}/{session_id}/commission")
async def create_session_commission(session_type: str, session_id: int, db: CurrentSession, admin: AdminUser) -> Dict:
    """Record the leader's commission for a finished session; repeated calls return the same row."""
    resolved = _SESSION_TYPE_PATHS.get(session_type.lower(), session_type.upper())
    commission = await session_commission_service.create_session_commission(db, resolved, session_id)
    return {'commission': commission_to_dict(commission)}


# ============================================================================
# Commissions
# ============================================================================

@router.get("/commissions/stats")
async def get_commission_stats(
    db: CurrentSession,
    user: AuthUser,
    leader_role: Optional[str] = Query(None, description="INSTRUCTOR or HOST"),
    leader_id: Optional[int] = Query(None, description="Admins may ask for any leader"),
) -> Dict:
    """Commission totals for the caller, or platform-wide for admins."""
    if not user.is_admin:
        leader_id = user.id
        leader_role = _leader_role_of(user, leader_role)
    elif leader_id is not None:
        leader_role = _validate_leader_role(leader_role)
    return await session_commission_service.get_commission_stats(db, leader_id=leader_id, leader_role=leader_role)


@router.get("/commissions/payout")
async def calculate_payout(
    db: CurrentSession,
    user: AuthUser,
    leader_role: Optional[str] = Query(None, description="INSTRUCTOR or HOST"),
    leader_id: Optional[int] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
) -> Dict:
    """Payout owed for pending commissions in a period; nothing is written."""
    if start and end and start > end:
        raise ValidationError("start must not be after end", code="INVALID_TIME_RANGE", field='start')
    if user.is_admin and leader_id is not None:
        role = _validate_leader_role(leader_role)
    else:
        leader_id, role = user.id, _leader_role_of(user, leader_role)
    return await session_commission_service.calculate_payout(db, leader_id, role, start=start, end=end)


def _ensure_leader(user: CurrentUser) -> None:
    if user.role not in (UserRole.INSTRUCTOR, UserRole.INSTITUTION, UserRole.ADMIN):
        raise ForbiddenError("Only instructors can schedule video sessions", code="ROLE_NOT_ALLOWED")


def _validate_leader_role(leader_role: Optional[str]) -> str:
    role = (leader_role or '').upper()
    if role not in (LeaderRole.INSTRUCTOR, LeaderRole.HOST):
        raise ValidationError("leader_role must be INSTRUCTOR or HOST", code="INVALID_LEADER_ROLE", field='leader_role')
    return role


def _leader_role_of(user: CurrentUser, requested: Optional[str]) -> str:
    if requested:
        return _validate_leader_role(requested)
    return LeaderRole.INSTRUCTOR if user.role == UserRole.INSTRUCTOR else LeaderRole.HOST

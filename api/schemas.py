"""API Schemas - Request and Response DTOs"""
from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from uuid import UUID
from typing import List, Optional

from domain.enums import ReservationStatus, RoomPhysicalStatus, SessionMemberRole, PlayerMode, UserRole


# ============================================================================
# ROOM SCHEMAS
# ============================================================================

class CreateRoomRequest(BaseModel):
    """Create room request DTO"""
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    hourly_rate: Decimal = Field(gt=0)
    multi_rate: Optional[Decimal] = Field(default=None, gt=0)


class UpdateRoomRequest(CreateRoomRequest):
    """Update room request DTO"""


class RoomStatusRequest(BaseModel):
    """Room status change request DTO (OCCUPIED is driven by sessions only)"""
    status: RoomPhysicalStatus


class RoomResponse(BaseModel):
    """Room response DTO"""
    room_id: UUID
    name: str
    description: Optional[str] = None
    hourly_rate: Decimal
    multi_rate: Optional[Decimal] = None
    physical_status: RoomPhysicalStatus
    created_at: datetime
    version: int


# ============================================================================
# RESERVATION SCHEMAS
# ============================================================================

class CreateReservationRequest(BaseModel):
    """Create reservation request DTO

    Customers always book for themselves; admins must name the customer.
    """
    room_id: UUID
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class WalkInRequest(BaseModel):
    """Walk-in session request DTO"""
    room_id: UUID
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    player_mode: PlayerMode = PlayerMode.SINGLE


class StartSessionRequest(BaseModel):
    """Start session request DTO"""
    player_mode: PlayerMode = PlayerMode.SINGLE


class ChangePlayerModeRequest(BaseModel):
    """Change player mode request DTO"""
    player_mode: PlayerMode


class JoinSessionRequest(BaseModel):
    """Join session request DTO"""
    access_code: str = Field(min_length=4, max_length=4)


class AssignCustomerRequest(BaseModel):
    """Assign owner to walk-in request DTO"""
    customer_id: str = Field(min_length=1)
    customer_name: Optional[str] = None


class SessionMemberResponse(BaseModel):
    """Session member response DTO"""
    member_id: UUID
    customer_id: str
    customer_name: Optional[str] = None
    role: SessionMemberRole
    joined_at: datetime


class SessionSegmentResponse(BaseModel):
    """Billing segment response DTO"""
    segment_id: UUID
    player_mode: PlayerMode
    hourly_rate: Decimal
    start_time: datetime
    end_time: Optional[datetime] = None


class ReservationResponse(BaseModel):
    """Reservation response DTO"""
    reservation_id: UUID
    room_id: UUID
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    status: ReservationStatus
    access_code: Optional[str] = None
    hourly_rate: Decimal
    total_cost: Optional[Decimal] = None
    rounded_hours: Decimal
    formatted_duration: str
    notes: Optional[str] = None
    created_at: datetime
    expires_at: Optional[datetime] = None
    seconds_until_expiration: Optional[int] = None
    actual_start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    members: List[SessionMemberResponse] = []
    segments: List[SessionSegmentResponse] = []
    version: int


class JoinSessionResponse(BaseModel):
    """Join session response DTO"""
    reservation_id: UUID
    room_id: UUID
    room_name: str
    is_owner: bool
    started_at: Optional[datetime] = None


class ExpirationSweepResponse(BaseModel):
    """Expiration sweep response DTO"""
    cancelled: int


# ============================================================================
# AUTH SCHEMAS
# ============================================================================

class Token(BaseModel):
    """Token response DTO"""
    access_token: str
    token_type: str

class TokenData(BaseModel):
    """Token payload DTO"""
    username: Optional[str] = None

class UserResponse(BaseModel):
    """User response DTO"""
    user_id: UUID
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: UserRole
    disabled: bool

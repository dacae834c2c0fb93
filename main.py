import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import FastAPI, HTTPException, Depends, Request, Query
from fastapi.responses import JSONResponse
from fastapi.security import OAuth2PasswordRequestForm

from api.schemas import (
    # Rooms
    CreateRoomRequest, UpdateRoomRequest, RoomStatusRequest, RoomResponse,
    # Reservations
    CreateReservationRequest, WalkInRequest, StartSessionRequest, ChangePlayerModeRequest,
    JoinSessionRequest, AssignCustomerRequest, ReservationResponse, SessionMemberResponse,
    SessionSegmentResponse, JoinSessionResponse, ExpirationSweepResponse,
    # Auth
    Token, UserResponse
)

from api.dependencies import get_current_active_user, get_current_admin_user, fake_users_db, get_user
from infrastructure.config import settings
from infrastructure.event_bus import InMemoryEventBus
from infrastructure.logging_config import configure_logging
from infrastructure.security import verify_password, create_user_token
from infrastructure.repositories.in_memory_repositories import InMemoryStore, in_memory_uow_factory
from domain.auth import User
from domain.entities import Reservation, Room
from domain.enums import ReservationStatus, RoomPhysicalStatus, PlayerMode
from domain.exceptions import RoomsDomainError, NotFoundError, ConcurrencyConflictError

from application.services import ReservationService, RoomService
from application.expiration import start_expiration_scheduler

logger = logging.getLogger(__name__)

# Initialize storage and event bus
store = InMemoryStore()
event_bus = InMemoryEventBus()
uow_factory = in_memory_uow_factory(store, event_bus)

reservation_service = ReservationService(
    uow_factory,
    expiration_minutes=settings.RESERVATION_EXPIRATION_MINUTES,
    access_code_max_attempts=settings.ACCESS_CODE_MAX_ATTEMPTS
)
room_service = RoomService(uow_factory)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and run the expiration sweep while the app is up"""
    configure_logging()
    scheduler = None
    if settings.ENABLE_EXPIRATION_SWEEP:
        scheduler = start_expiration_scheduler(
            reservation_service, settings.EXPIRATION_SWEEP_INTERVAL_SECONDS
        )
    logger.info(f"{settings.APP_NAME} started")

    yield

    if scheduler is not None:
        scheduler.shutdown(wait=False)
    logger.info(f"{settings.APP_NAME} stopped")


app = FastAPI(
    title=settings.APP_NAME,
    description="PlayStation room reservations and live sessions, Domain-Driven Design",
    version="1.0.0",
    debug=settings.DEBUG,
    lifespan=lifespan
)

# Dependency injection
def get_reservation_service() -> ReservationService:
    return reservation_service

def get_room_service() -> RoomService:
    return room_service


@app.exception_handler(RoomsDomainError)
async def domain_error_handler(request: Request, exc: RoomsDomainError):
    """Translate domain errors into HTTP responses"""
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, ConcurrencyConflictError):
        status_code = 409
    else:
        status_code = 400
    return JSONResponse(status_code=status_code, content={"detail": exc.message, "code": exc.code.value})

# ============================================================================
# HEALTH & ENUM REFERENCE ENDPOINTS
# ============================================================================

@app.get("/api/health", tags=["Health"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "message": "API is running"}

@app.get("/api/enums/reservation-status", tags=["Enum Reference"])
async def get_reservation_statuses():
    """Get all ReservationStatus enum values"""
    return {
        "values": [item.name for item in ReservationStatus],
        "description": "Reservation status values: RESERVED, ACTIVE, COMPLETED, CANCELLED"
    }

@app.get("/api/enums/room-status", tags=["Enum Reference"])
async def get_room_statuses():
    """Get all RoomPhysicalStatus enum values"""
    return {
        "values": [item.name for item in RoomPhysicalStatus],
        "description": "Room status values: AVAILABLE, OCCUPIED, MAINTENANCE"
    }

@app.get("/api/enums/player-mode", tags=["Enum Reference"])
async def get_player_modes():
    """Get all PlayerMode enum values"""
    return {
        "values": [item.name for item in PlayerMode],
        "description": "Player mode values: SINGLE, MULTI"
    }

# ============================================================================
# AUTH ENDPOINTS
# ============================================================================

@app.post("/token", response_model=Token, tags=["Auth"])
async def login_for_access_token(form_data: OAuth2PasswordRequestForm = Depends()):
    user = get_user(fake_users_db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(
            status_code=401,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )
    access_token = create_user_token(user.username, user.role.value)
    return {"access_token": access_token, "token_type": "bearer"}

@app.get("/users/me", response_model=UserResponse, tags=["Auth"])
async def read_users_me(current_user: User = Depends(get_current_active_user)):
    return current_user

# ============================================================================
# ROOM ENDPOINTS
# ============================================================================

@app.get("/api/rooms", response_model=List[RoomResponse], tags=["Rooms"])
async def list_rooms(
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get all rooms"""
    return [_room_to_response(r) for r in await service.list_rooms()]

@app.get("/api/rooms/available", response_model=List[RoomResponse], tags=["Rooms"])
async def list_available_rooms(
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get rooms free to book right now"""
    return [_room_to_response(r) for r in await service.list_available_rooms()]

@app.get("/api/rooms/{room_id}", response_model=RoomResponse, tags=["Rooms"])
async def get_room(
    room_id: UUID,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get room by ID"""
    return _room_to_response(await service.get_room(room_id))

@app.post("/api/rooms", response_model=RoomResponse, status_code=201, tags=["Rooms"])
async def create_room(
    request: CreateRoomRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Create new room"""
    room = await service.create_room(
        name=request.name,
        hourly_rate=request.hourly_rate,
        description=request.description,
        multi_rate=request.multi_rate
    )
    return _room_to_response(room)

@app.put("/api/rooms/{room_id}", response_model=RoomResponse, tags=["Rooms"])
async def update_room(
    room_id: UUID,
    request: UpdateRoomRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Update room details"""
    room = await service.update_room(
        room_id,
        name=request.name,
        hourly_rate=request.hourly_rate,
        description=request.description,
        multi_rate=request.multi_rate
    )
    return _room_to_response(room)

@app.post("/api/rooms/{room_id}/status", response_model=RoomResponse, tags=["Rooms"])
async def change_room_status(
    room_id: UUID,
    request: RoomStatusRequest,
    service: RoomService = Depends(get_room_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Put room under maintenance or back in service"""
    if request.status == RoomPhysicalStatus.MAINTENANCE:
        room = await service.set_maintenance(room_id)
    elif request.status == RoomPhysicalStatus.AVAILABLE:
        room = await service.set_available(room_id)
    else:
        raise HTTPException(status_code=400, detail="Rooms become OCCUPIED only by starting a session")
    return _room_to_response(room)

@app.get("/api/rooms/{room_id}/reservations/today", response_model=List[ReservationResponse], tags=["Rooms"])
async def get_today_reservations_for_room(
    room_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Get today's reservations for a room"""
    reservations = await service.get_today_reservations_for_room(room_id)
    return [_reservation_to_response(r, service.clock()) for r in reservations]

# ============================================================================
# RESERVATION ENDPOINTS
# ============================================================================

@app.post("/api/reservations", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def create_reservation(
    request: CreateReservationRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Book a room; customers book for themselves, admins on behalf of a customer"""
    if current_user.is_admin:
        if not request.customer_id:
            raise HTTPException(status_code=400, detail="customer_id is required when booking as admin")
        customer_id, customer_name = request.customer_id, request.customer_name
    else:
        customer_id = current_user.customer_id
        customer_name = request.customer_name or current_user.full_name

    reservation = await service.create_reservation(
        room_id=request.room_id,
        customer_id=customer_id,
        customer_name=customer_name,
        notes=request.notes,
        created_by_admin=current_user.is_admin
    )
    return _reservation_to_response(reservation, service.clock())

@app.post("/api/reservations/walk-in", response_model=ReservationResponse, status_code=201, tags=["Reservations"])
async def start_walk_in_session(
    request: WalkInRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Open a session immediately for someone at the desk"""
    reservation = await service.start_walk_in_session(
        room_id=request.room_id,
        customer_id=request.customer_id,
        customer_name=request.customer_name,
        notes=request.notes,
        player_mode=request.player_mode
    )
    return _reservation_to_response(reservation, service.clock())

@app.get("/api/reservations/active", response_model=List[ReservationResponse], tags=["Reservations"])
async def get_active_sessions(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Get all running sessions"""
    now = service.clock()
    return [_reservation_to_response(r, now) for r in await service.get_active_sessions()]

@app.get("/api/reservations/my", response_model=Optional[ReservationResponse], tags=["Reservations"])
async def get_my_active_reservation(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get the caller's current booking or session, if any"""
    reservation = await service.get_active_reservation_for_customer(current_user.customer_id)
    if reservation is None:
        return None
    return _reservation_to_response(reservation, service.clock())

@app.get("/api/reservations/customer/{customer_id}", response_model=List[ReservationResponse], tags=["Reservations"])
async def get_customer_reservations(
    customer_id: str,
    limit: int = Query(default=10, ge=1, le=100),
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get a customer's reservation history"""
    if not current_user.is_admin and customer_id != current_user.customer_id:
        raise HTTPException(status_code=403, detail="Not allowed to read another customer's history")
    now = service.clock()
    return [_reservation_to_response(r, now) for r in await service.get_customer_reservations(customer_id, limit)]

@app.post("/api/reservations/expire", response_model=ExpirationSweepResponse, tags=["Reservations"])
async def expire_reservations(
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Run the expiration sweep now"""
    return ExpirationSweepResponse(cancelled=await service.cancel_expired_reservations())

@app.post("/api/sessions/join", response_model=JoinSessionResponse, tags=["Sessions"])
async def join_session(
    request: JoinSessionRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Join a running session with its access code"""
    result = await service.join_session(
        access_code=request.access_code,
        customer_id=current_user.customer_id,
        customer_name=current_user.full_name
    )
    return JoinSessionResponse(**result.model_dump())

@app.get("/api/reservations/{reservation_id}", response_model=ReservationResponse, tags=["Reservations"])
async def get_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Get reservation by ID"""
    reservation = await service.get_reservation(reservation_id)
    _ensure_admin_or_member(current_user, reservation)
    return _reservation_to_response(reservation, service.clock())

@app.post("/api/reservations/{reservation_id}/start", response_model=ReservationResponse, tags=["Reservations"])
async def start_session(
    reservation_id: UUID,
    request: StartSessionRequest = StartSessionRequest(),
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Customer arrived; start the session"""
    reservation = await service.start_session(reservation_id, request.player_mode)
    return _reservation_to_response(reservation, service.clock())

@app.post("/api/reservations/{reservation_id}/end", response_model=ReservationResponse, tags=["Reservations"])
async def end_session(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """End the session and bill it"""
    reservation = await service.end_session(reservation_id)
    return _reservation_to_response(reservation, service.clock())

@app.post("/api/reservations/{reservation_id}/cancel", response_model=ReservationResponse, tags=["Reservations"])
async def cancel_reservation(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Cancel a booking or session; customers may only cancel their own"""
    if not current_user.is_admin:
        reservation = await service.get_reservation(reservation_id)
        if reservation.customer_id != current_user.customer_id:
            raise HTTPException(status_code=403, detail="Only the session owner can cancel it")
    reservation = await service.cancel_reservation(reservation_id)
    return _reservation_to_response(reservation, service.clock())

@app.post("/api/reservations/{reservation_id}/leave", response_model=ReservationResponse, tags=["Sessions"])
async def leave_session(
    reservation_id: UUID,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_active_user)
):
    """Leave a session the caller joined"""
    reservation = await service.leave_session(reservation_id, current_user.customer_id)
    return _reservation_to_response(reservation, service.clock())

@app.post("/api/reservations/{reservation_id}/assign", response_model=ReservationResponse, tags=["Sessions"])
async def assign_customer(
    reservation_id: UUID,
    request: AssignCustomerRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Bind an owner to an ownerless walk-in"""
    reservation = await service.assign_customer(reservation_id, request.customer_id, request.customer_name)
    return _reservation_to_response(reservation, service.clock())

@app.post("/api/reservations/{reservation_id}/player-mode", response_model=ReservationResponse, tags=["Sessions"])
async def change_player_mode(
    reservation_id: UUID,
    request: ChangePlayerModeRequest,
    service: ReservationService = Depends(get_reservation_service),
    current_user: User = Depends(get_current_admin_user)
):
    """Switch a running session between single and multiplayer billing"""
    reservation = await service.change_player_mode(reservation_id, request.player_mode)
    return _reservation_to_response(reservation, service.clock())

# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def _ensure_admin_or_member(user: User, reservation: Reservation) -> None:
    if not user.is_admin and not reservation.has_member(user.customer_id):
        raise HTTPException(status_code=403, detail="Not a member of this session")

def _room_to_response(room: Room) -> RoomResponse:
    """Convert Room entity to RoomResponse"""
    return RoomResponse(
        room_id=room.room_id,
        name=room.name,
        description=room.description,
        hourly_rate=room.hourly_rate,
        multi_rate=room.multi_rate,
        physical_status=room.physical_status,
        created_at=room.created_at,
        version=room.version
    )

def _reservation_to_response(reservation: Reservation, now: datetime) -> ReservationResponse:
    """Convert Reservation entity to ReservationResponse"""
    remaining = reservation.get_time_until_expiration(now)
    return ReservationResponse(
        reservation_id=reservation.reservation_id,
        room_id=reservation.room_id,
        customer_id=reservation.customer_id,
        customer_name=reservation.customer_name,
        status=reservation.status,
        access_code=reservation.access_code,
        hourly_rate=reservation.hourly_rate,
        total_cost=reservation.total_cost,
        rounded_hours=reservation.get_rounded_hours(now),
        formatted_duration=reservation.get_formatted_duration(now),
        notes=reservation.notes,
        created_at=reservation.created_at,
        expires_at=reservation.expires_at,
        seconds_until_expiration=int(remaining.total_seconds()) if remaining is not None else None,
        actual_start_time=reservation.actual_start_time,
        end_time=reservation.end_time,
        members=[
            SessionMemberResponse(
                member_id=m.member_id,
                customer_id=m.customer_id,
                customer_name=m.customer_name,
                role=m.role,
                joined_at=m.joined_at
            )
            for m in reservation.session_members
        ],
        segments=[
            SessionSegmentResponse(
                segment_id=s.segment_id,
                player_mode=s.player_mode,
                hourly_rate=s.hourly_rate,
                start_time=s.start_time,
                end_time=s.end_time
            )
            for s in reservation.segments
        ],
        version=reservation.version
    )

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

"""Domain Entities - Aggregates"""
import random
from pydantic import BaseModel, Field, PrivateAttr
from uuid import UUID, uuid4
from datetime import datetime, timedelta, timezone
from typing import Optional, List
from decimal import Decimal, ROUND_HALF_UP

from domain.enums import ReservationStatus, RoomPhysicalStatus, SessionMemberRole, PlayerMode
from domain.events import DomainEvent, RoomReserved, SessionStarted, SessionEnded, ReservationCancelled
from domain.exceptions import InvalidTransitionError, DomainValidationError, MembershipConflictError

from domain.value_objects import AccessCode, BillableTime, Money, CENT, QUARTER_HOUR

RESERVATION_EXPIRATION_MINUTES = 15


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Room(BaseModel):
    """Room Aggregate Root Entity - the physical PlayStation room"""

    # Identity
    room_id: UUID = Field(default_factory=uuid4)
    name: str
    description: Optional[str] = None

    # Pricing
    hourly_rate: Decimal = Field(gt=0)
    multi_rate: Optional[Decimal] = Field(default=None, gt=0)

    physical_status: RoomPhysicalStatus = RoomPhysicalStatus.AVAILABLE

    # Metadata
    created_at: datetime = Field(default_factory=utcnow)
    version: int = 1

    class Config:
        from_attributes = True

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        name: str,
        hourly_rate: Decimal,
        description: Optional[str] = None,
        multi_rate: Optional[Decimal] = None
    ) -> "Room":
        """Create new room with validation"""
        Room._validate_details(name, hourly_rate, multi_rate)
        return Room(
            name=name,
            description=description,
            hourly_rate=hourly_rate,
            multi_rate=multi_rate
        )

    def update_details(
        self,
        name: str,
        description: Optional[str],
        hourly_rate: Decimal,
        multi_rate: Optional[Decimal] = None
    ) -> None:
        """Update room details; running reservations keep their own rate"""
        Room._validate_details(name, hourly_rate, multi_rate)
        self.name = name
        self.description = description
        self.hourly_rate = hourly_rate
        self.multi_rate = multi_rate
        self.version += 1

    # ==================== STATUS TRANSITIONS ====================
    def set_occupied(self) -> None:
        """Mark room as occupied (session started)"""
        if self.physical_status == RoomPhysicalStatus.MAINTENANCE:
            raise InvalidTransitionError("occupy room", self.physical_status)
        self.physical_status = RoomPhysicalStatus.OCCUPIED
        self.version += 1

    def set_available(self) -> None:
        """Mark room as available (session ended or cancelled)"""
        self.physical_status = RoomPhysicalStatus.AVAILABLE
        self.version += 1

    def set_maintenance(self) -> None:
        """Take room out of service"""
        if self.physical_status == RoomPhysicalStatus.OCCUPIED:
            raise InvalidTransitionError("put room under maintenance", self.physical_status)
        self.physical_status = RoomPhysicalStatus.MAINTENANCE
        self.version += 1

    # ==================== QUERY METHODS ====================
    def is_physically_available(self) -> bool:
        """Physical status only; reservations are checked by the service"""
        return self.physical_status == RoomPhysicalStatus.AVAILABLE

    def rate_for(self, player_mode: PlayerMode) -> Decimal:
        if player_mode == PlayerMode.MULTI and self.multi_rate is not None:
            return self.multi_rate
        return self.hourly_rate

    @staticmethod
    def _validate_details(name: str, hourly_rate: Decimal, multi_rate: Optional[Decimal]) -> None:
        if not name or not name.strip():
            raise DomainValidationError("Room name is required")
        if hourly_rate is None or hourly_rate <= 0:
            raise DomainValidationError("Hourly rate must be greater than zero")
        if multi_rate is not None and multi_rate <= 0:
            raise DomainValidationError("Multiplayer rate must be greater than zero")


class SessionMember(BaseModel):
    """Child Entity - a customer attached to a session"""
    member_id: UUID = Field(default_factory=uuid4)
    reservation_id: UUID
    customer_id: str
    customer_name: Optional[str] = None
    joined_at: datetime = Field(default_factory=utcnow)
    role: SessionMemberRole = SessionMemberRole.MEMBER

    class Config:
        from_attributes = True

    @property
    def is_owner(self) -> bool:
        return self.role == SessionMemberRole.OWNER


class SessionSegment(BaseModel):
    """Child Entity - billing sub-interval played in one player mode"""
    segment_id: UUID = Field(default_factory=uuid4)
    reservation_id: UUID
    player_mode: PlayerMode
    hourly_rate: Decimal = Field(gt=0)
    start_time: datetime
    end_time: Optional[datetime] = None

    class Config:
        from_attributes = True

    @property
    def is_open(self) -> bool:
        return self.end_time is None

    def end(self, end_time: datetime) -> None:
        if not self.is_open:
            raise InvalidTransitionError("end segment", "ENDED")
        if end_time < self.start_time:
            raise DomainValidationError("Segment cannot end before it starts")
        self.end_time = end_time

    def duration(self, now: datetime) -> timedelta:
        return (self.end_time or now) - self.start_time

    def price(self, quarter_units: int) -> Decimal:
        """Unrounded price of the quarters billed to this segment"""
        return quarter_units * QUARTER_HOUR * self.hourly_rate


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity

    Covers both a booking that has not started yet and a live session.
    The session members list is the only record of who owns the session:
    ``customer_id`` and ``customer_name`` are read from the OWNER member.
    """

    # Identity
    reservation_id: UUID = Field(default_factory=uuid4)

    # Reference to Room aggregate (by identity)
    room_id: UUID

    # Collections (child entities)
    session_members: List[SessionMember] = []
    segments: List[SessionSegment] = []

    # Access code
    access_code: Optional[str] = None
    access_code_generated_at: Optional[datetime] = None

    # Billing (rates are snapshots taken when the reservation is created)
    hourly_rate: Decimal = Field(gt=0)
    multi_rate: Optional[Decimal] = Field(default=None, gt=0)
    total_cost: Optional[Decimal] = None

    status: ReservationStatus = ReservationStatus.RESERVED
    notes: Optional[str] = None

    # Timeline
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: Optional[datetime] = None
    actual_start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    version: int = 1

    _domain_events: List[DomainEvent] = PrivateAttr(default_factory=list)

    class Config:
        from_attributes = True

    # ==================== FACTORY METHODS ====================
    @staticmethod
    def create_reservation(
        room_id: UUID,
        customer_id: str,
        customer_name: Optional[str],
        hourly_rate: Decimal,
        notes: Optional[str] = None,
        expires: bool = True,
        expiration_minutes: int = RESERVATION_EXPIRATION_MINUTES,
        multi_rate: Optional[Decimal] = None,
        now: Optional[datetime] = None
    ) -> "Reservation":
        """Book a room for a customer who will show up shortly"""
        Reservation._validate_customer_id(customer_id)
        Reservation._validate_rates(hourly_rate, multi_rate)
        now = now or utcnow()

        reservation = Reservation(
            room_id=room_id,
            hourly_rate=hourly_rate,
            multi_rate=multi_rate,
            notes=notes,
            created_at=now,
            expires_at=now + timedelta(minutes=expiration_minutes) if expires else None,
            status=ReservationStatus.RESERVED
        )
        reservation._append_member(customer_id, customer_name, SessionMemberRole.OWNER, now)
        reservation._record(RoomReserved(reservation.snapshot()))
        return reservation

    @staticmethod
    def create_walk_in(
        room_id: UUID,
        customer_id: str,
        customer_name: Optional[str],
        hourly_rate: Decimal,
        rng: random.Random,
        notes: Optional[str] = None,
        player_mode: PlayerMode = PlayerMode.SINGLE,
        multi_rate: Optional[Decimal] = None,
        now: Optional[datetime] = None
    ) -> "Reservation":
        """Start a session right away for a known customer"""
        Reservation._validate_customer_id(customer_id)
        return Reservation._start_walk_in(
            room_id, hourly_rate, rng, notes, player_mode, multi_rate, now,
            owner=(customer_id, customer_name)
        )

    @staticmethod
    def create_walk_in_without_owner(
        room_id: UUID,
        hourly_rate: Decimal,
        rng: random.Random,
        notes: Optional[str] = None,
        player_mode: PlayerMode = PlayerMode.SINGLE,
        multi_rate: Optional[Decimal] = None,
        now: Optional[datetime] = None
    ) -> "Reservation":
        """Start a session right away; the first customer to join owns it"""
        return Reservation._start_walk_in(
            room_id, hourly_rate, rng, notes, player_mode, multi_rate, now, owner=None
        )

    @staticmethod
    def _start_walk_in(room_id, hourly_rate, rng, notes, player_mode, multi_rate, now, owner) -> "Reservation":
        Reservation._validate_rates(hourly_rate, multi_rate)
        now = now or utcnow()

        reservation = Reservation(
            room_id=room_id,
            hourly_rate=hourly_rate,
            multi_rate=multi_rate,
            notes=notes,
            created_at=now,
            actual_start_time=now,
            status=ReservationStatus.ACTIVE
        )
        if owner is not None:
            reservation._append_member(owner[0], owner[1], SessionMemberRole.OWNER, now)
        reservation._assign_access_code(rng, now)
        reservation._open_segment(player_mode, reservation.rate_for(player_mode), now)
        reservation._record(SessionStarted(reservation.snapshot()))
        return reservation

    # ==================== STATE TRANSITION METHODS ====================
    def start_session(
        self,
        rng: random.Random,
        player_mode: PlayerMode = PlayerMode.SINGLE,
        now: Optional[datetime] = None
    ) -> None:
        """Customer showed up; the room becomes occupied at the booked rate"""
        if self.status != ReservationStatus.RESERVED:
            raise InvalidTransitionError("start session", self.status)
        now = now or utcnow()

        self.actual_start_time = now
        self.expires_at = None
        self.status = ReservationStatus.ACTIVE
        self._assign_access_code(rng, now)
        self._open_segment(player_mode, self.rate_for(player_mode), now)
        self._touch()
        self._record(SessionStarted(self.snapshot()))

    def end_session(self, now: Optional[datetime] = None) -> Money:
        """Close the session and compute the bill"""
        if self.status != ReservationStatus.ACTIVE:
            raise InvalidTransitionError("end session", self.status)
        if self.actual_start_time is None:
            raise InvalidTransitionError("end a session that was never started", self.status)
        now = now or utcnow()
        if now < self.actual_start_time:
            raise DomainValidationError("Session cannot end before it started")
        current = self.current_segment
        if current is not None and now < current.start_time:
            raise DomainValidationError("Session cannot end before the current segment started")

        cost = self._calculate_cost(now)

        self.end_time = now
        if current is not None:
            current.end(now)
        self.total_cost = cost
        self.status = ReservationStatus.COMPLETED
        self._touch()
        self._record(SessionEnded(self.snapshot()))

        return Money(amount=cost)

    def cancel(self, now: Optional[datetime] = None) -> None:
        """Cancel a booking or a running session"""
        if self.status in (ReservationStatus.COMPLETED, ReservationStatus.CANCELLED):
            raise InvalidTransitionError("cancel reservation", self.status)
        now = now or utcnow()

        previous_status = self.status
        current = self.current_segment
        if current is not None:
            current.end(max(now, current.start_time))
        self.status = ReservationStatus.CANCELLED
        self._touch()
        self._record(ReservationCancelled(self.snapshot(), previous_status=previous_status))

    def cancel_due_to_expiration(self, now: Optional[datetime] = None) -> None:
        """No-show: the booking was never started in time"""
        if self.status != ReservationStatus.RESERVED:
            raise InvalidTransitionError("expire reservation", self.status)
        now = now or utcnow()

        self.end_time = now
        self.status = ReservationStatus.CANCELLED
        self._touch()
        self._record(ReservationCancelled(
            self.snapshot(),
            previous_status=ReservationStatus.RESERVED,
            expired=True
        ))

    def change_player_mode(
        self,
        player_mode: PlayerMode,
        hourly_rate: Optional[Decimal] = None,
        now: Optional[datetime] = None
    ) -> SessionSegment:
        """Switch between single and multiplayer billing mid-session.

        The new segment is priced from the rates booked with the reservation
        unless an explicit hourly rate is given.
        """
        if self.status != ReservationStatus.ACTIVE:
            raise InvalidTransitionError("change player mode", self.status)
        if hourly_rate is None:
            hourly_rate = self.rate_for(player_mode)
        Reservation._validate_rate(hourly_rate)
        current = self.current_segment
        if current is not None and current.player_mode == player_mode:
            raise DomainValidationError(f"Session is already in {player_mode.value} mode")
        now = now or utcnow()
        if current is not None and now < current.start_time:
            raise DomainValidationError("Player mode cannot change before the current segment started")

        if current is not None:
            current.end(now)
        segment = self._open_segment(player_mode, hourly_rate, now)
        self._touch()
        return segment

    def generate_access_code(self, rng: random.Random, now: Optional[datetime] = None) -> str:
        """Draw a fresh access code for a running session"""
        if self.status != ReservationStatus.ACTIVE:
            raise InvalidTransitionError("generate access code", self.status)
        self._assign_access_code(rng, now or utcnow())
        self._touch()
        return self.access_code

    # ==================== MEMBERSHIP METHODS ====================
    def add_member(
        self,
        customer_id: str,
        customer_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SessionMember:
        """Attach a customer; the first one into an ownerless session owns it"""
        if self.status != ReservationStatus.ACTIVE:
            raise InvalidTransitionError("join session", self.status)
        Reservation._validate_customer_id(customer_id)
        if self.has_member(customer_id):
            raise MembershipConflictError(f"Customer {customer_id} is already a member of this session")

        role = SessionMemberRole.OWNER if self.owner is None else SessionMemberRole.MEMBER
        member = self._append_member(customer_id, customer_name, role, now or utcnow())
        self._touch()
        return member

    def remove_member(self, customer_id: str) -> None:
        """Detach a non-owner member"""
        if self.status != ReservationStatus.ACTIVE:
            raise InvalidTransitionError("leave session", self.status)
        member = self._find_member(customer_id)
        if member is None:
            raise MembershipConflictError(f"Customer {customer_id} is not a member of this session")
        if member.is_owner:
            raise MembershipConflictError("The session owner cannot leave the session")

        self.session_members = [m for m in self.session_members if m.customer_id != customer_id]
        self._touch()

    def assign_customer(
        self,
        customer_id: str,
        customer_name: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> SessionMember:
        """Operator binds an owner to an ownerless walk-in"""
        if self.status != ReservationStatus.ACTIVE:
            raise InvalidTransitionError("assign customer", self.status)
        Reservation._validate_customer_id(customer_id)
        if self.owner is not None:
            raise MembershipConflictError("Session already has an owner")
        if self.has_member(customer_id):
            raise MembershipConflictError(f"Customer {customer_id} is already a member of this session")

        member = self._append_member(customer_id, customer_name, SessionMemberRole.OWNER, now or utcnow())
        self._touch()
        return member

    def rate_for(self, player_mode: PlayerMode) -> Decimal:
        if player_mode == PlayerMode.MULTI and self.multi_rate is not None:
            return self.multi_rate
        return self.hourly_rate

    def has_member(self, customer_id: str) -> bool:
        return self._find_member(customer_id) is not None

    def get_member_role(self, customer_id: str) -> Optional[SessionMemberRole]:
        member = self._find_member(customer_id)
        return member.role if member else None

    # ==================== QUERY METHODS ====================
    @property
    def owner(self) -> Optional[SessionMember]:
        return next((m for m in self.session_members if m.is_owner), None)

    @property
    def customer_id(self) -> Optional[str]:
        owner = self.owner
        return owner.customer_id if owner else None

    @property
    def customer_name(self) -> Optional[str]:
        owner = self.owner
        return owner.customer_name if owner else None

    @property
    def current_segment(self) -> Optional[SessionSegment]:
        return next((s for s in reversed(self.segments) if s.is_open), None)

    @property
    def domain_events(self) -> List[DomainEvent]:
        return list(self._domain_events)

    def pull_domain_events(self) -> List[DomainEvent]:
        """Return queued events and clear the queue"""
        events = self._domain_events
        self._domain_events = []
        return events

    def is_active_or_reserved(self) -> bool:
        return self.status in (ReservationStatus.ACTIVE, ReservationStatus.RESERVED)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """A booking nobody started within the expiration window"""
        if self.status != ReservationStatus.RESERVED or self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def get_time_until_expiration(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.status != ReservationStatus.RESERVED or self.expires_at is None:
            return None
        remaining = self.expires_at - (now or utcnow())
        return max(remaining, timedelta(0))

    def get_current_duration(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.actual_start_time is None:
            return None
        if self.status == ReservationStatus.ACTIVE:
            return (now or utcnow()) - self.actual_start_time
        if self.status == ReservationStatus.COMPLETED and self.end_time is not None:
            return self.end_time - self.actual_start_time
        return None

    def get_formatted_duration(self, now: Optional[datetime] = None) -> str:
        """Duration as HH:MM:SS for the point-of-sale screen"""
        duration = self.get_current_duration(now)
        if duration is None:
            return "00:00:00"
        total_seconds = int(duration.total_seconds())
        hours, remainder = divmod(total_seconds, 3600)
        minutes, seconds = divmod(remainder, 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def get_rounded_hours(self, now: Optional[datetime] = None) -> Decimal:
        """Billable hours, rounded to the nearest quarter hour"""
        duration = self.get_current_duration(now)
        if duration is None:
            return Decimal("0")
        return BillableTime.from_duration(duration).hours

    def snapshot(self) -> "Reservation":
        """Detached deep copy without queued events"""
        copy = self.model_copy(deep=True)
        copy._domain_events = []
        return copy

    # ==================== PRIVATE METHODS ====================
    def _calculate_cost(self, end_time: datetime) -> Decimal:
        billable = BillableTime.from_duration(end_time - self.actual_start_time)
        if len(self.segments) <= 1:
            rate = self.segments[0].hourly_rate if self.segments else self.hourly_rate
            return billable.cost(rate)

        # The session is rounded once; its quarters are spread over the segments
        quarters = billable.allocate([segment.duration(end_time) for segment in self.segments])
        total = sum(
            (segment.price(units) for segment, units in zip(self.segments, quarters)),
            Decimal("0")
        )
        return total.quantize(CENT, rounding=ROUND_HALF_UP)

    def _assign_access_code(self, rng: random.Random, now: datetime) -> None:
        self.access_code = AccessCode.generate(rng).value
        self.access_code_generated_at = now

    def _open_segment(self, player_mode: PlayerMode, hourly_rate: Decimal, now: datetime) -> SessionSegment:
        segment = SessionSegment(
            reservation_id=self.reservation_id,
            player_mode=player_mode,
            hourly_rate=hourly_rate,
            start_time=now
        )
        self.segments.append(segment)
        return segment

    def _append_member(self, customer_id, customer_name, role, now) -> SessionMember:
        member = SessionMember(
            reservation_id=self.reservation_id,
            customer_id=customer_id,
            customer_name=customer_name,
            joined_at=now,
            role=role
        )
        self.session_members.append(member)
        return member

    def _find_member(self, customer_id: str) -> Optional[SessionMember]:
        return next((m for m in self.session_members if m.customer_id == customer_id), None)

    def _record(self, event: DomainEvent) -> None:
        self._domain_events.append(event)

    def _touch(self) -> None:
        self.version += 1

    @staticmethod
    def _validate_customer_id(customer_id: Optional[str]) -> None:
        if not customer_id or not customer_id.strip():
            raise DomainValidationError("Customer ID is required")

    @staticmethod
    def _validate_rate(hourly_rate: Optional[Decimal]) -> None:
        if hourly_rate is None or hourly_rate <= 0:
            raise DomainValidationError("Hourly rate must be greater than zero")

    @staticmethod
    def _validate_rates(hourly_rate: Optional[Decimal], multi_rate: Optional[Decimal]) -> None:
        Reservation._validate_rate(hourly_rate)
        if multi_rate is not None and multi_rate <= 0:
            raise DomainValidationError("Multiplayer rate must be greater than zero")

"""Application Services - Business use cases"""
import logging
import random
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from pydantic import BaseModel

from domain.repositories import UnitOfWork
from domain.entities import Reservation, Room, RESERVATION_EXPIRATION_MINUTES, utcnow
from domain.enums import PlayerMode, ReservationStatus, RoomPhysicalStatus
from domain.exceptions import (
    NotFoundError, BusinessRuleViolationError, AccessCodeUnavailableError,
    ConcurrencyConflictError, DomainValidationError
)
from domain.value_objects import ACCESS_CODE_PATTERN

logger = logging.getLogger(__name__)

ACCESS_CODE_MAX_ATTEMPTS = 10


class JoinSessionResult(BaseModel):
    """What a customer needs to know after joining a running session"""
    reservation_id: UUID
    room_id: UUID
    room_name: str
    is_owner: bool
    started_at: Optional[datetime] = None


class RoomService:
    """Service for Room management use cases"""

    def __init__(self, uow_factory: Callable[[], UnitOfWork]):
        self.uow_factory = uow_factory

    async def create_room(
        self,
        name: str,
        hourly_rate: Decimal,
        description: Optional[str] = None,
        multi_rate: Optional[Decimal] = None
    ) -> Room:
        """Create new room"""
        room = Room.create(name=name, hourly_rate=hourly_rate, description=description, multi_rate=multi_rate)
        async with self.uow_factory() as uow:
            await uow.rooms.add(room)
            await uow.commit()
        logger.info(f"Room {room.room_id} created: {room.name} at {room.hourly_rate}/h")
        return room

    async def get_room(self, room_id: UUID) -> Room:
        """Get room by ID"""
        async with self.uow_factory() as uow:
            return await self._load_room(uow, room_id)

    async def list_rooms(self) -> List[Room]:
        """Get all rooms"""
        async with self.uow_factory() as uow:
            return await uow.rooms.get_all()

    async def list_available_rooms(self) -> List[Room]:
        """Rooms free to book right now"""
        async with self.uow_factory() as uow:
            rooms = await uow.rooms.get_by_status(RoomPhysicalStatus.AVAILABLE)
            return [
                room for room in rooms
                if not await uow.reservations.has_active_reservation(room.room_id)
            ]

    async def update_room(
        self,
        room_id: UUID,
        name: str,
        hourly_rate: Decimal,
        description: Optional[str] = None,
        multi_rate: Optional[Decimal] = None
    ) -> Room:
        """Update room details"""
        async with self.uow_factory() as uow:
            room = await self._load_room(uow, room_id)
            room.update_details(name, description, hourly_rate, multi_rate)
            await uow.rooms.update(room)
            await uow.commit()
        logger.info(f"Room {room_id} updated")
        return room

    async def set_maintenance(self, room_id: UUID) -> Room:
        """Take room out of service"""
        async with self.uow_factory() as uow:
            room = await self._load_room(uow, room_id)
            room.set_maintenance()
            await uow.rooms.update(room)
            await uow.commit()
        logger.info(f"Room {room_id} put under maintenance")
        return room

    async def set_available(self, room_id: UUID) -> Room:
        """Put room back in service"""
        async with self.uow_factory() as uow:
            room = await self._load_room(uow, room_id)
            if room.physical_status == RoomPhysicalStatus.OCCUPIED and \
                    await uow.reservations.has_active_reservation(room_id):
                raise BusinessRuleViolationError("Room has a running session; end or cancel it first")
            room.set_available()
            await uow.rooms.update(room)
            await uow.commit()
        logger.info(f"Room {room_id} set available")
        return room

    @staticmethod
    async def _load_room(uow: UnitOfWork, room_id: UUID) -> Room:
        room = await uow.rooms.get(room_id)
        if room is None:
            raise NotFoundError("Room", room_id)
        return room


class ReservationService:
    """Service for Reservation and session use cases"""

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        rng: Optional[random.Random] = None,
        clock: Callable[[], datetime] = utcnow,
        expiration_minutes: int = RESERVATION_EXPIRATION_MINUTES,
        access_code_max_attempts: int = ACCESS_CODE_MAX_ATTEMPTS
    ):
        self.uow_factory = uow_factory
        self.rng = rng or random.Random()
        self.clock = clock
        self.expiration_minutes = expiration_minutes
        self.access_code_max_attempts = access_code_max_attempts

    # ==================== COMMANDS ====================
    async def create_reservation(
        self,
        room_id: UUID,
        customer_id: str,
        customer_name: Optional[str] = None,
        notes: Optional[str] = None,
        created_by_admin: bool = False
    ) -> Reservation:
        """Book a room; the customer has a few minutes to show up"""
        now = self.clock()
        async with self.uow_factory() as uow:
            if not created_by_admin:
                await self._ensure_customer_is_free(uow, customer_id)

            room = await self._load_room(uow, room_id)
            if not room.is_physically_available():
                raise BusinessRuleViolationError(f"Room {room.name} is not available")
            if await uow.reservations.has_active_reservation(room_id):
                raise BusinessRuleViolationError(f"Room {room.name} already has an active reservation")

            reservation = Reservation.create_reservation(
                room_id=room_id,
                customer_id=customer_id,
                customer_name=customer_name,
                hourly_rate=room.hourly_rate,
                notes=notes,
                expires=not created_by_admin,
                expiration_minutes=self.expiration_minutes,
                multi_rate=room.multi_rate,
                now=now
            )
            await uow.reservations.add(reservation)
            await uow.commit()

        logger.info(
            f"Reservation {reservation.reservation_id} created for room {room_id} "
            f"by customer {customer_id} (admin={created_by_admin})"
        )
        return reservation

    async def start_walk_in_session(
        self,
        room_id: UUID,
        customer_id: Optional[str] = None,
        customer_name: Optional[str] = None,
        notes: Optional[str] = None,
        player_mode: PlayerMode = PlayerMode.SINGLE
    ) -> Reservation:
        """Open a session immediately, with or without a known customer"""
        now = self.clock()
        async with self.uow_factory() as uow:
            room = await self._load_room(uow, room_id)
            if not room.is_physically_available():
                raise BusinessRuleViolationError(f"Room {room.name} is not available")
            if await uow.reservations.has_active_reservation(room_id):
                raise BusinessRuleViolationError(f"Room {room.name} already has an active reservation")
            if customer_id:
                await self._ensure_customer_is_free(uow, customer_id)

            if customer_id:
                reservation = Reservation.create_walk_in(
                    room_id=room_id,
                    customer_id=customer_id,
                    customer_name=customer_name,
                    hourly_rate=room.hourly_rate,
                    rng=self.rng,
                    notes=notes,
                    player_mode=player_mode,
                    multi_rate=room.multi_rate,
                    now=now
                )
            else:
                reservation = Reservation.create_walk_in_without_owner(
                    room_id=room_id,
                    hourly_rate=room.hourly_rate,
                    rng=self.rng,
                    notes=notes,
                    player_mode=player_mode,
                    multi_rate=room.multi_rate,
                    now=now
                )
            await self._ensure_unique_access_code(uow, reservation, now)

            room.set_occupied()
            await uow.reservations.add(reservation)
            await uow.rooms.update(room)
            await uow.commit()

        logger.info(
            f"Walk-in session {reservation.reservation_id} started in room {room_id} "
            f"for customer {customer_id or '-'} with code {reservation.access_code}"
        )
        return reservation

    async def start_session(self, reservation_id: UUID, player_mode: PlayerMode = PlayerMode.SINGLE) -> Reservation:
        """Customer arrived; start the booked session"""
        now = self.clock()
        async with self.uow_factory() as uow:
            reservation, room = await self._load_with_room(uow, reservation_id)

            reservation.start_session(self.rng, player_mode, now=now)
            await self._ensure_unique_access_code(uow, reservation, now)
            room.set_occupied()

            await uow.reservations.update(reservation)
            await uow.rooms.update(room)
            await uow.commit()

        logger.info(
            f"Session {reservation_id} started in room {room.room_id} "
            f"with code {reservation.access_code}"
        )
        return reservation

    async def end_session(self, reservation_id: UUID) -> Reservation:
        """Close the session, bill it and free the room"""
        now = self.clock()
        async with self.uow_factory() as uow:
            reservation, room = await self._load_with_room(uow, reservation_id)

            cost = reservation.end_session(now=now)
            room.set_available()

            await uow.reservations.update(reservation)
            await uow.rooms.update(room)
            await uow.commit()

        logger.info(
            f"Session {reservation_id} ended in room {room.room_id}: "
            f"{reservation.get_rounded_hours()}h, cost {cost}"
        )
        return reservation

    async def cancel_reservation(self, reservation_id: UUID) -> Reservation:
        """Cancel a booking or a running session"""
        now = self.clock()
        async with self.uow_factory() as uow:
            reservation, room = await self._load_with_room(uow, reservation_id)

            was_active = reservation.status == ReservationStatus.ACTIVE
            reservation.cancel(now=now)
            await uow.reservations.update(reservation)
            if was_active:
                room.set_available()
                await uow.rooms.update(room)
            await uow.commit()

        logger.info(f"Reservation {reservation_id} cancelled (room freed: {was_active})")
        return reservation

    async def join_session(
        self,
        access_code: str,
        customer_id: str,
        customer_name: Optional[str] = None
    ) -> JoinSessionResult:
        """Join a friend's running session with its access code"""
        if not access_code or not ACCESS_CODE_PATTERN.match(access_code):
            raise DomainValidationError("Access code must be four digits like 1133")

        now = self.clock()
        async with self.uow_factory() as uow:
            reservation = await uow.reservations.get_by_access_code(access_code)
            if reservation is None:
                raise NotFoundError("Session with access code", access_code)

            current = await uow.reservations.get_active_reservation_for_customer(customer_id)
            if current is not None and current.reservation_id != reservation.reservation_id:
                raise BusinessRuleViolationError("You already have an active session in another room")

            room = await self._load_room(uow, reservation.room_id)
            member = reservation.add_member(customer_id, customer_name, now=now)
            await uow.reservations.update(reservation)
            await uow.commit()

        logger.info(
            f"Customer {customer_id} joined session {reservation.reservation_id} as {member.role.value}"
        )
        return JoinSessionResult(
            reservation_id=reservation.reservation_id,
            room_id=room.room_id,
            room_name=room.name,
            is_owner=member.is_owner,
            started_at=reservation.actual_start_time
        )

    async def leave_session(self, reservation_id: UUID, customer_id: str) -> Reservation:
        """Member leaves a running session"""
        async with self.uow_factory() as uow:
            reservation = await self._load_reservation(uow, reservation_id)
            reservation.remove_member(customer_id)
            await uow.reservations.update(reservation)
            await uow.commit()

        logger.info(f"Customer {customer_id} left session {reservation_id}")
        return reservation

    async def assign_customer(
        self,
        reservation_id: UUID,
        customer_id: str,
        customer_name: Optional[str] = None
    ) -> Reservation:
        """Bind an owner to an ownerless walk-in"""
        now = self.clock()
        async with self.uow_factory() as uow:
            reservation = await self._load_reservation(uow, reservation_id)

            current = await uow.reservations.get_active_reservation_for_customer(customer_id)
            if current is not None and current.reservation_id != reservation_id:
                raise BusinessRuleViolationError(f"Customer {customer_id} already has an active reservation")

            reservation.assign_customer(customer_id, customer_name, now=now)
            await uow.reservations.update(reservation)
            await uow.commit()

        logger.info(f"Customer {customer_id} assigned as owner of session {reservation_id}")
        return reservation

    async def change_player_mode(self, reservation_id: UUID, player_mode: PlayerMode) -> Reservation:
        """Switch billing mode of a running session"""
        now = self.clock()
        async with self.uow_factory() as uow:
            reservation = await self._load_reservation(uow, reservation_id)
            reservation.change_player_mode(player_mode, now=now)
            await uow.reservations.update(reservation)
            await uow.commit()

        logger.info(f"Session {reservation_id} switched to {player_mode.value} mode")
        return reservation

    async def cancel_expired_reservations(self) -> int:
        """Cancel bookings nobody started in time; returns how many"""
        now = self.clock()
        async with self.uow_factory() as uow:
            expired_ids = [r.reservation_id for r in await uow.reservations.get_expired_reservations(now)]

        cancelled = 0
        for reservation_id in expired_ids:
            try:
                async with self.uow_factory() as uow:
                    reservation = await uow.reservations.get(reservation_id)
                    if reservation is None or not reservation.is_expired(now):
                        continue
                    reservation.cancel_due_to_expiration(now=now)
                    await uow.reservations.update(reservation)
                    await uow.commit()
            except ConcurrencyConflictError:
                logger.warning(f"Reservation {reservation_id} changed during expiration sweep, skipped")
                continue
            cancelled += 1
            logger.info(f"Reservation {reservation_id} expired and was cancelled")

        return cancelled

    # ==================== QUERIES ====================
    async def get_reservation(self, reservation_id: UUID) -> Reservation:
        """Get reservation by ID"""
        async with self.uow_factory() as uow:
            return await self._load_reservation(uow, reservation_id)

    async def get_active_sessions(self) -> List[Reservation]:
        """Get all running sessions"""
        async with self.uow_factory() as uow:
            return await uow.reservations.get_active_sessions()

    async def get_customer_reservations(self, customer_id: str, limit: int = 10) -> List[Reservation]:
        """Get customer's history, newest first"""
        async with self.uow_factory() as uow:
            return await uow.reservations.get_customer_reservations(customer_id, limit)

    async def get_active_reservation_for_customer(self, customer_id: str) -> Optional[Reservation]:
        async with self.uow_factory() as uow:
            return await uow.reservations.get_active_reservation_for_customer(customer_id)

    async def get_today_reservations_for_room(self, room_id: UUID) -> List[Reservation]:
        async with self.uow_factory() as uow:
            await self._load_room(uow, room_id)
            return await uow.reservations.get_today_reservations_for_room(room_id, self.clock().date())

    async def get_by_access_code(self, access_code: str) -> Reservation:
        async with self.uow_factory() as uow:
            reservation = await uow.reservations.get_by_access_code(access_code)
            if reservation is None:
                raise NotFoundError("Session with access code", access_code)
            return reservation

    # ==================== HELPERS ====================
    async def _ensure_customer_is_free(self, uow: UnitOfWork, customer_id: str) -> None:
        if await uow.reservations.get_active_reservation_for_customer(customer_id) is not None:
            raise BusinessRuleViolationError(f"Customer {customer_id} already has an active reservation")

    async def _ensure_unique_access_code(self, uow: UnitOfWork, reservation: Reservation, now: datetime) -> None:
        """Redraw the code while another running session holds it"""
        attempts = 1
        while await uow.reservations.is_access_code_in_use(reservation.access_code, reservation.reservation_id):
            if attempts >= self.access_code_max_attempts:
                raise AccessCodeUnavailableError(
                    f"No free access code after {attempts} attempts, try again later"
                )
            reservation.generate_access_code(self.rng, now=now)
            attempts += 1

    @staticmethod
    async def _load_reservation(uow: UnitOfWork, reservation_id: UUID) -> Reservation:
        reservation = await uow.reservations.get_with_members(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation

    @staticmethod
    async def _load_room(uow: UnitOfWork, room_id: UUID) -> Room:
        room = await uow.rooms.get(room_id)
        if room is None:
            raise NotFoundError("Room", room_id)
        return room

    @staticmethod
    async def _load_with_room(uow: UnitOfWork, reservation_id: UUID):
        reservation, room = await uow.reservations.get_with_room(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        if room is None:
            raise NotFoundError("Room", reservation.room_id)
        return reservation, room

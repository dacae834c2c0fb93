"""Domain Repository Interfaces"""
import abc
from abc import ABC, abstractmethod
from typing import Optional, List, Tuple
from uuid import UUID
from datetime import date, datetime

from domain.entities import Reservation, Room
from domain.enums import RoomPhysicalStatus


class ReservationRepository(ABC):
    """Repository interface for Reservation Aggregate"""

    @abstractmethod
    async def get(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        pass

    @abstractmethod
    async def get_with_room(self, reservation_id: UUID) -> Tuple[Optional[Reservation], Optional[Room]]:
        """Find reservation together with the room it points at"""
        pass

    @abstractmethod
    async def get_with_members(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation with its session members loaded"""
        pass

    @abstractmethod
    async def add(self, reservation: Reservation) -> None:
        """Stage a new reservation"""
        pass

    @abstractmethod
    async def update(self, reservation: Reservation) -> None:
        """Stage changes to a loaded reservation"""
        pass

    @abstractmethod
    async def get_active_reservation_for_customer(self, customer_id: str) -> Optional[Reservation]:
        """Find the customer's RESERVED or ACTIVE engagement, if any"""
        pass

    @abstractmethod
    async def get_today_reservations_for_room(self, room_id: UUID, today: date) -> List[Reservation]:
        """Find reservations created for a room on the given day"""
        pass

    @abstractmethod
    async def get_active_sessions(self) -> List[Reservation]:
        """Find all ACTIVE sessions"""
        pass

    @abstractmethod
    async def get_customer_reservations(self, customer_id: str, limit: int = 10) -> List[Reservation]:
        """Find reservations the customer belongs to, newest first"""
        pass

    @abstractmethod
    async def has_active_reservation(self, room_id: UUID) -> bool:
        """Check whether the room has a RESERVED or ACTIVE reservation"""
        pass

    @abstractmethod
    async def get_by_access_code(self, access_code: str) -> Optional[Reservation]:
        """Find the ACTIVE session holding an access code"""
        pass

    @abstractmethod
    async def is_access_code_in_use(self, access_code: str, exclude_reservation_id: Optional[UUID] = None) -> bool:
        """Check access code against other ACTIVE sessions"""
        pass

    @abstractmethod
    async def get_expired_reservations(self, now: datetime) -> List[Reservation]:
        """Find RESERVED reservations whose expiration time has passed"""
        pass


class RoomRepository(ABC):
    """Repository interface for Room Aggregate"""

    @abstractmethod
    async def get(self, room_id: UUID) -> Optional[Room]:
        """Find room by ID"""
        pass

    @abstractmethod
    async def get_all(self) -> List[Room]:
        """Find all rooms"""
        pass

    @abstractmethod
    async def get_by_status(self, physical_status: RoomPhysicalStatus) -> List[Room]:
        """Find rooms in a physical status"""
        pass

    @abstractmethod
    async def add(self, room: Room) -> None:
        """Stage a new room"""
        pass

    @abstractmethod
    async def update(self, room: Room) -> None:
        """Stage changes to a loaded room"""
        pass

    @abstractmethod
    async def exists(self, room_id: UUID) -> bool:
        """Check room exists"""
        pass


class UnitOfWork(abc.ABC):
    """
    Unit of Work for the rooms context

    Usage:
        async with uow:
            reservation = await uow.reservations.get(reservation_id)
            reservation.end_session()
            await uow.reservations.update(reservation)
            await uow.commit()

    Leaving the block without commit discards staged changes.
    """

    reservations: ReservationRepository
    rooms: RoomRepository

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(self, *args):
        await self.rollback()

    async def commit(self):
        """Commit the transaction"""
        await self._commit()

    @abc.abstractmethod
    async def _commit(self) -> None:
        raise NotImplementedError

    @abc.abstractmethod
    async def rollback(self) -> None:
        raise NotImplementedError

"""In-Memory Repository Implementations"""
import logging
from typing import Optional, List, Dict, Tuple, Callable
from uuid import UUID
from datetime import date, datetime

from domain.repositories import ReservationRepository, RoomRepository, UnitOfWork
from domain.entities import Reservation, Room
from domain.enums import ReservationStatus, RoomPhysicalStatus
from domain.events import EventPublisher
from domain.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Committed state shared by every unit of work"""

    def __init__(self):
        self.reservations: Dict[UUID, Reservation] = {}
        self.rooms: Dict[UUID, Room] = {}


class _Tracker:
    """Versions seen and aggregates staged by one unit of work"""

    def __init__(self):
        self.loaded_versions: Dict[UUID, int] = {}
        self.staged: Dict[UUID, object] = {}
        self.new_ids: set = set()

    def clear(self) -> None:
        self.loaded_versions.clear()
        self.staged.clear()
        self.new_ids.clear()


class InMemoryReservationRepository(ReservationRepository):
    """In-memory implementation of ReservationRepository"""

    def __init__(self, store: InMemoryStore, tracker: _Tracker):
        self._storage = store.reservations
        self._rooms = store.rooms
        self._tracker = tracker

    def _load(self, reservation: Optional[Reservation]) -> Optional[Reservation]:
        """Hand out a private copy and remember the version it was read at"""
        if reservation is None:
            return None
        self._tracker.loaded_versions.setdefault(reservation.reservation_id, reservation.version)
        return reservation.snapshot()

    def _load_all(self, reservations) -> List[Reservation]:
        return [self._load(r) for r in reservations]

    async def get(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation by ID"""
        return self._load(self._storage.get(reservation_id))

    async def get_with_room(self, reservation_id: UUID) -> Tuple[Optional[Reservation], Optional[Room]]:
        """Find reservation and its room"""
        reservation = self._storage.get(reservation_id)
        if reservation is None:
            return None, None
        room = self._rooms.get(reservation.room_id)
        if room is not None:
            self._tracker.loaded_versions.setdefault(room.room_id, room.version)
            room = room.model_copy(deep=True)
        return self._load(reservation), room

    async def get_with_members(self, reservation_id: UUID) -> Optional[Reservation]:
        """Find reservation; members live inside the aggregate"""
        return await self.get(reservation_id)

    async def add(self, reservation: Reservation) -> None:
        """Stage new reservation"""
        self._tracker.staged[reservation.reservation_id] = reservation
        self._tracker.new_ids.add(reservation.reservation_id)

    async def update(self, reservation: Reservation) -> None:
        """Stage reservation changes"""
        self._tracker.staged[reservation.reservation_id] = reservation

    async def get_active_reservation_for_customer(self, customer_id: str) -> Optional[Reservation]:
        for reservation in self._storage.values():
            if reservation.is_active_or_reserved() and reservation.has_member(customer_id):
                return self._load(reservation)
        return None

    async def get_today_reservations_for_room(self, room_id: UUID, today: date) -> List[Reservation]:
        matches = [
            r for r in self._storage.values()
            if r.room_id == room_id and r.created_at.date() == today
        ]
        return self._load_all(sorted(matches, key=lambda r: r.created_at))

    async def get_active_sessions(self) -> List[Reservation]:
        return self._load_all(r for r in self._storage.values() if r.status == ReservationStatus.ACTIVE)

    async def get_customer_reservations(self, customer_id: str, limit: int = 10) -> List[Reservation]:
        matches = [r for r in self._storage.values() if r.has_member(customer_id)]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return self._load_all(matches[:limit])

    async def has_active_reservation(self, room_id: UUID) -> bool:
        return any(
            r.room_id == room_id and r.is_active_or_reserved()
            for r in self._storage.values()
        )

    async def get_by_access_code(self, access_code: str) -> Optional[Reservation]:
        for reservation in self._storage.values():
            if reservation.status == ReservationStatus.ACTIVE and reservation.access_code == access_code:
                return self._load(reservation)
        return None

    async def is_access_code_in_use(self, access_code: str, exclude_reservation_id: Optional[UUID] = None) -> bool:
        return any(
            r.status == ReservationStatus.ACTIVE
            and r.access_code == access_code
            and r.reservation_id != exclude_reservation_id
            for r in self._storage.values()
        )

    async def get_expired_reservations(self, now: datetime) -> List[Reservation]:
        return self._load_all(r for r in self._storage.values() if r.is_expired(now))


class InMemoryRoomRepository(RoomRepository):
    """In-memory implementation of RoomRepository"""

    def __init__(self, store: InMemoryStore, tracker: _Tracker):
        self._storage = store.rooms
        self._tracker = tracker

    def _load(self, room: Optional[Room]) -> Optional[Room]:
        if room is None:
            return None
        self._tracker.loaded_versions.setdefault(room.room_id, room.version)
        return room.model_copy(deep=True)

    async def get(self, room_id: UUID) -> Optional[Room]:
        """Find room by ID"""
        return self._load(self._storage.get(room_id))

    async def get_all(self) -> List[Room]:
        """Find all rooms ordered by name"""
        return [self._load(r) for r in sorted(self._storage.values(), key=lambda r: r.name)]

    async def get_by_status(self, physical_status: RoomPhysicalStatus) -> List[Room]:
        rooms = [r for r in self._storage.values() if r.physical_status == physical_status]
        return [self._load(r) for r in sorted(rooms, key=lambda r: r.name)]

    async def add(self, room: Room) -> None:
        self._tracker.staged[room.room_id] = room
        self._tracker.new_ids.add(room.room_id)

    async def update(self, room: Room) -> None:
        self._tracker.staged[room.room_id] = room

    async def exists(self, room_id: UUID) -> bool:
        return room_id in self._storage


class InMemoryUnitOfWork(UnitOfWork):
    """
    In-memory Unit of Work with optimistic concurrency

    Repositories hand out copies. On commit every staged aggregate is
    checked against the version it was loaded at; any mismatch aborts the
    whole commit. Domain events are published only after the write.
    """

    def __init__(self, store: InMemoryStore, event_publisher: Optional[EventPublisher] = None):
        self._store = store
        self._event_publisher = event_publisher
        self._tracker = _Tracker()
        self.reservations = InMemoryReservationRepository(store, self._tracker)
        self.rooms = InMemoryRoomRepository(store, self._tracker)

    async def _commit(self) -> None:
        staged = list(self._tracker.staged.values())

        for aggregate in staged:
            self._check_version(aggregate)

        events = []
        for aggregate in staged:
            target = self._target_for(aggregate)
            aggregate_id = self._id_of(aggregate)
            if isinstance(aggregate, Reservation):
                events.extend(aggregate.pull_domain_events())
                target[aggregate_id] = aggregate.snapshot()
            else:
                target[aggregate_id] = aggregate.model_copy(deep=True)

        self._tracker.clear()

        if self._event_publisher is not None and events:
            self._event_publisher.publish_many(events)

    async def rollback(self) -> None:
        self._tracker.clear()

    def _check_version(self, aggregate) -> None:
        aggregate_id = self._id_of(aggregate)
        stored = self._target_for(aggregate).get(aggregate_id)

        if aggregate_id in self._tracker.new_ids:
            if stored is not None:
                raise ConcurrencyConflictError(f"{type(aggregate).__name__} {aggregate_id} already exists")
            return

        loaded_version = self._tracker.loaded_versions.get(aggregate_id)
        if stored is None or loaded_version is None or stored.version != loaded_version:
            logger.warning(
                f"Concurrency conflict on {type(aggregate).__name__} {aggregate_id}: "
                f"loaded version {loaded_version}, stored version {getattr(stored, 'version', None)}"
            )
            raise ConcurrencyConflictError(
                f"{type(aggregate).__name__} {aggregate_id} was modified by another operation, reload and retry"
            )

    def _target_for(self, aggregate) -> Dict:
        if isinstance(aggregate, Reservation):
            return self._store.reservations
        return self._store.rooms

    @staticmethod
    def _id_of(aggregate) -> UUID:
        if isinstance(aggregate, Reservation):
            return aggregate.reservation_id
        return aggregate.room_id


def in_memory_uow_factory(
    store: InMemoryStore,
    event_publisher: Optional[EventPublisher] = None
) -> Callable[[], InMemoryUnitOfWork]:
    """Build a callable that opens a fresh unit of work per use case"""
    def factory() -> InMemoryUnitOfWork:
        return InMemoryUnitOfWork(store, event_publisher)
    return factory

"""Domain Events raised by the Reservation aggregate.

Events are immutable notices. Each one carries a snapshot of the
reservation taken at the moment the transition happened, so later
mutations of the live aggregate do not leak into queued events.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from domain.enums import ReservationStatus

if TYPE_CHECKING:
    from domain.entities import Reservation


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class DomainEvent:
    """Base class for reservation lifecycle events"""

    reservation: "Reservation"
    event_id: UUID = field(default_factory=uuid4, kw_only=True)
    occurred_at: datetime = field(default_factory=_utcnow, kw_only=True)

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    def reservation_id(self) -> UUID:
        return self.reservation.reservation_id


@dataclass(frozen=True)
class RoomReserved(DomainEvent):
    """A customer booked a room that has not been started yet"""


@dataclass(frozen=True)
class SessionStarted(DomainEvent):
    """A room became occupied, either from a booking or as a walk-in"""


@dataclass(frozen=True)
class SessionEnded(DomainEvent):
    """A session was closed and billed"""


@dataclass(frozen=True)
class ReservationCancelled(DomainEvent):
    """A booking or a running session was cancelled"""

    previous_status: ReservationStatus = ReservationStatus.RESERVED
    expired: bool = False


class EventPublisher(ABC):
    """Outbound sink for domain events (fire-and-forget)"""

    @abstractmethod
    def publish(self, event: DomainEvent) -> None:
        """Publish a single event"""
        pass

    def publish_many(self, events: list) -> None:
        for event in events:
            self.publish(event)

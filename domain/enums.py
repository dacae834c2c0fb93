"""Domain Enums"""
from enum import Enum


class ReservationStatus(str, Enum):
    RESERVED = "RESERVED"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class RoomPhysicalStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    MAINTENANCE = "MAINTENANCE"


class SessionMemberRole(str, Enum):
    OWNER = "OWNER"
    MEMBER = "MEMBER"


class PlayerMode(str, Enum):
    SINGLE = "SINGLE"
    MULTI = "MULTI"


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    CUSTOMER = "CUSTOMER"

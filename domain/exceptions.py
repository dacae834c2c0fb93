"""Domain error codes and exceptions for the rooms context."""
from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    INVALID_TRANSITION = "INVALID_TRANSITION"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    MEMBERSHIP_CONFLICT = "MEMBERSHIP_CONFLICT"
    BUSINESS_RULE_VIOLATION = "BUSINESS_RULE_VIOLATION"
    NOT_FOUND = "NOT_FOUND"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"
    ACCESS_CODE_UNAVAILABLE = "ACCESS_CODE_UNAVAILABLE"


class RoomsDomainError(ValueError):
    """Base domain error with code and user-safe message."""

    code: ErrorCode = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class InvalidTransitionError(RoomsDomainError):
    """Raised when an operation is not allowed from the current status."""

    code = ErrorCode.INVALID_TRANSITION

    def __init__(self, operation: str, current_status) -> None:
        status = getattr(current_status, "value", current_status)
        super().__init__(f"Cannot {operation} from status {status}")
        self.operation = operation
        self.current_status = current_status


class DomainValidationError(RoomsDomainError):
    """Raised when input violates a construction rule (empty id, bad rate)."""

    code = ErrorCode.VALIDATION_FAILED


class MembershipConflictError(RoomsDomainError):
    """Raised on duplicate joins, owner removal and similar roster conflicts."""

    code = ErrorCode.MEMBERSHIP_CONFLICT


class BusinessRuleViolationError(RoomsDomainError):
    """Raised when a cross-aggregate rule rejects a use case."""

    code = ErrorCode.BUSINESS_RULE_VIOLATION


class NotFoundError(RoomsDomainError):
    """Raised when a referenced reservation or room does not exist."""

    code = ErrorCode.NOT_FOUND

    def __init__(self, entity: str, entity_id) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class ConcurrencyConflictError(RoomsDomainError):
    """Raised when a commit finds that another writer got there first.

    The caller may reload the aggregate and retry the use case.
    """

    code = ErrorCode.CONCURRENCY_CONFLICT


class AccessCodeUnavailableError(RoomsDomainError):
    """Raised when no unused access code could be drawn."""

    code = ErrorCode.ACCESS_CODE_UNAVAILABLE

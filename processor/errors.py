"""Error taxonomy for event and booking persistence."""
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorCode(Enum):
    """Domain error codes."""

    CONFIG_ERROR = "CONFIG_ERROR"
    CONNECT_ERROR = "CONNECT_ERROR"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    REFERENCE_NOT_FOUND = "REFERENCE_NOT_FOUND"
    UNIQUE_CONSTRAINT = "UNIQUE_CONSTRAINT"


@dataclass(eq=False)
class DomainError(Exception):
    """Base error with code, user-safe message and optional field name."""

    code: ErrorCode
    message: str
    field: Optional[str] = None

    def __str__(self) -> str:
        if self.field:
            return f"{self.code.value} ({self.field}): {self.message}"
        return f"{self.code.value}: {self.message}"


class ConfigError(DomainError):
    """Raised when the connection configuration is missing or malformed."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.CONFIG_ERROR, message=message)


class ConnectError(DomainError):
    """Raised when the store is unreachable or rejects the credentials."""

    def __init__(self, message: str) -> None:
        super().__init__(code=ErrorCode.CONNECT_ERROR, message=message)


class ValidationError(DomainError):
    """Raised when a record field is malformed."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(
            code=ErrorCode.VALIDATION_FAILED, message=message, field=field
        )


class MissingReferenceError(DomainError):
    """Raised when a record references a record that does not exist."""

    def __init__(self, field: str, reference_id: str) -> None:
        super().__init__(
            code=ErrorCode.REFERENCE_NOT_FOUND,
            message="Referenced record does not exist",
            field=field,
        )
        self.reference_id = reference_id


class UniqueConstraintError(DomainError):
    """Raised when the store rejects a duplicate value for a unique field."""

    def __init__(self, field: str, value: str) -> None:
        super().__init__(
            code=ErrorCode.UNIQUE_CONSTRAINT,
            message=f"Value for '{field}' is already taken",
            field=field,
        )
        self.value = value

"""Exception classes for the WAF replay engine."""

from enum import Enum
from typing import Optional


class ReplayError(Exception):
    """Base exception for all replay errors."""

    def __init__(self, message: str, destination=None, stage_id: Optional[str] = None):
        super().__init__(message)
        self.destination = destination
        self.stage_id = stage_id

    def __str__(self) -> str:
        message = super().__str__()
        context = []
        if self.destination is not None:
            context.append(f"destination={self.destination}")
        if self.stage_id:
            context.append(f"stage={self.stage_id}")
        if context:
            return f"{message} ({', '.join(context)})"
        return message


class DefinitionError(ReplayError):
    """Raised when a test definition or stage input is ambiguous or malformed."""
    pass


class ConfigurationError(ReplayError):
    """Raised when the run configuration cannot be used."""
    pass


class TransportErrorKind(Enum):
    TIMEOUT = "timeout"
    CONNECT_FAILED = "connect_failed"
    SEND_FAILED = "send_failed"
    RECEIVE_FAILED = "receive_failed"


class TransportError(ReplayError):
    """Raised when the network exchange with the destination fails."""

    def __init__(self, kind: TransportErrorKind, message: str, destination=None, stage_id: Optional[str] = None):
        super().__init__(f"{kind.value}: {message}", destination=destination, stage_id=stage_id)
        self.kind = kind


class MarkerNotFoundError(ReplayError):
    """Raised when a stage marker never shows up in the WAF log."""

    def __init__(self, message: str, attempts: int = 0, destination=None, stage_id: Optional[str] = None):
        super().__init__(message, destination=destination, stage_id=stage_id)
        self.attempts = attempts

"""
Battle Engine - Custom Error Types
Structured exceptions for battle errors with recovery hints.

Only the fatal kinds are raised. Bounds violations and unresolved chaos are
handled where they occur and only show up as codes on log records and judge
precedents.
"""
from typing import Dict, Any, Optional
from enum import Enum


class ErrorCode(str, Enum):
    """Standard error codes for the battle engine."""
    # General errors
    UNKNOWN = "UNKNOWN"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"

    # Round pipeline errors
    PRECONDITION_VIOLATION = "PRECONDITION_VIOLATION"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # Recoverable conditions (logged, never raised)
    BOUNDS_VIOLATION = "BOUNDS_VIOLATION"
    UNRESOLVED_CHAOS = "UNRESOLVED_CHAOS"

    # Battle lifecycle errors
    BATTLE_NOT_FOUND = "BATTLE_NOT_FOUND"
    BATTLE_INVALID_PHASE = "BATTLE_INVALID_PHASE"
    BATTLE_ALREADY_OVER = "BATTLE_ALREADY_OVER"

    # Coaching errors
    TIMEOUT_UNAVAILABLE = "TIMEOUT_UNAVAILABLE"
    INTERVENTION_INVALID = "INTERVENTION_INVALID"


class GameError(Exception):
    """
    Base exception for all battle-related errors.

    Provides structured error information with:
    - Error code for programmatic handling
    - Human-readable message
    - Additional context details
    - Recovery hints for the host
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.UNKNOWN,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        recovery_hint: Optional[str] = None,
        http_status: int = 500
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable
        self.recovery_hint = recovery_hint
        self.http_status = http_status

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for JSON response."""
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
                "recoverable": self.recoverable,
                "recovery_hint": self.recovery_hint
            }
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"


# =============================================================================
# Round Pipeline Errors
# =============================================================================

class PreconditionViolation(GameError):
    """
    Raised when the pipeline is handed a missing character, target or action.

    This is a caller bug. The current round is aborted and not committed.
    """

    def __init__(self, message: str = "Missing character, target or action", **details: Any):
        super().__init__(
            code=ErrorCode.PRECONDITION_VIOLATION,
            message=message,
            details=details,
            recoverable=False,
            recovery_hint="Validate battle inputs before submitting the round",
            http_status=400
        )


class ConcurrencyConflict(GameError):
    """Raised when a second writer tries to mutate a battle that is busy."""

    def __init__(self, battle_id: Optional[str] = None):
        details = {}
        if battle_id:
            details["battle_id"] = battle_id
        super().__init__(
            code=ErrorCode.CONCURRENCY_CONFLICT,
            message="Battle state is being modified by another request",
            details=details,
            recovery_hint="Retry once the in-flight operation has finished",
            http_status=409
        )


# =============================================================================
# Battle Lifecycle Errors
# =============================================================================

class BattleError(GameError):
    """Battle lifecycle errors."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.BATTLE_INVALID_PHASE,
        message: str = "Battle error",
        **kwargs
    ):
        kwargs.setdefault("http_status", 409)
        super().__init__(code=code, message=message, **kwargs)


class BattleNotFoundError(BattleError):
    """Raised when a battle id is not registered."""

    def __init__(self, battle_id: Optional[str] = None):
        details = {}
        if battle_id:
            details["battle_id"] = battle_id
        super().__init__(
            code=ErrorCode.BATTLE_NOT_FOUND,
            message="Battle not found",
            details=details,
            http_status=404,
            recovery_hint="Create a new battle"
        )


class InvalidPhaseError(BattleError):
    """Raised when an operation is attempted in the wrong battle phase."""

    def __init__(self, current: str, attempted: str):
        super().__init__(
            code=ErrorCode.BATTLE_INVALID_PHASE,
            message=f"Cannot {attempted} during {current}",
            details={"phase": current, "attempted": attempted},
            recovery_hint="Check the battle phase before issuing commands"
        )


class BattleOverError(BattleError):
    """Raised when a round is submitted after the battle has ended."""

    def __init__(self, battle_id: Optional[str] = None, reason: Optional[str] = None):
        details = {}
        if battle_id:
            details["battle_id"] = battle_id
        if reason:
            details["end_reason"] = reason
        super().__init__(
            code=ErrorCode.BATTLE_ALREADY_OVER,
            message="Battle has already ended",
            details=details,
            recovery_hint="Fetch the post-battle analysis instead"
        )


# =============================================================================
# Coaching Errors
# =============================================================================

class CoachingError(GameError):
    """Coaching timeout and intervention errors."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.TIMEOUT_UNAVAILABLE,
        message: str = "Coaching error",
        **kwargs
    ):
        super().__init__(code=code, message=message, http_status=400, **kwargs)


class TimeoutUnavailableError(CoachingError):
    """Raised when no coaching timeout can be called."""

    def __init__(self, reason: str = "No coaching timeouts remaining"):
        super().__init__(
            code=ErrorCode.TIMEOUT_UNAVAILABLE,
            message=reason,
            recovery_hint="Continue the round without a timeout"
        )


class InvalidInterventionError(CoachingError):
    """Raised when an intervention is unknown or not offered right now."""

    def __init__(self, intervention: str):
        super().__init__(
            code=ErrorCode.INTERVENTION_INVALID,
            message=f"Intervention '{intervention}' is not available",
            details={"intervention": intervention},
            recovery_hint="Pick one of the offered interventions"
        )


# =============================================================================
# Validation Error
# =============================================================================

class ValidationError(GameError):
    """Input validation errors."""

    def __init__(self, field: str, message: str, value: Any = None):
        details = {"field": field}
        if value is not None:
            details["value"] = str(value)
        super().__init__(
            code=ErrorCode.VALIDATION_ERROR,
            message=message,
            details=details,
            http_status=400,
            recovery_hint=f"Check the value for '{field}'"
        )

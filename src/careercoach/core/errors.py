from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from careercoach.core.clock import _iso_utc


class OrchestratorErrorCode(str, Enum):
    # Input
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_STATE = "MISSING_STATE"
    MISSING_ANALYSIS = "MISSING_ANALYSIS"
    INVALID_CONFIG = "INVALID_CONFIG"

    # State
    STATE_VALIDATION_FAILED = "STATE_VALIDATION_FAILED"
    STALE_STATE = "STALE_STATE"

    # Planning
    WEEKLY_PLAN_FAILED = "WEEKLY_PLAN_FAILED"
    DAILY_PLAN_FAILED = "DAILY_PLAN_FAILED"
    EMPTY_PLAN = "EMPTY_PLAN"

    # Execution
    EXECUTION_FAILED = "EXECUTION_FAILED"
    MAX_RETRIES_EXCEEDED = "MAX_RETRIES_EXCEEDED"
    EXECUTION_TIMEOUT = "EXECUTION_TIMEOUT"
    EXECUTION_CANCELLED = "EXECUTION_CANCELLED"
    COLLABORATOR_UNAVAILABLE = "COLLABORATOR_UNAVAILABLE"

    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_MESSAGES: Dict[OrchestratorErrorCode, str] = {
    OrchestratorErrorCode.INVALID_INPUT: "The provided input is invalid.",
    OrchestratorErrorCode.MISSING_STATE: "User state is required but was not provided.",
    OrchestratorErrorCode.MISSING_ANALYSIS: "Strategy analysis is required but was not provided.",
    OrchestratorErrorCode.INVALID_CONFIG: "Configuration is invalid or corrupted.",
    OrchestratorErrorCode.STATE_VALIDATION_FAILED: "Your state data has validation issues.",
    OrchestratorErrorCode.STALE_STATE: "Your data is outdated. Please update your information first.",
    OrchestratorErrorCode.WEEKLY_PLAN_FAILED: "Failed to generate your weekly plan.",
    OrchestratorErrorCode.DAILY_PLAN_FAILED: "Failed to generate your daily plan.",
    OrchestratorErrorCode.EMPTY_PLAN: "Unable to create any tasks. Please update your profile.",
    OrchestratorErrorCode.EXECUTION_FAILED: "Failed to execute the action.",
    OrchestratorErrorCode.MAX_RETRIES_EXCEEDED: "Action failed after multiple attempts.",
    OrchestratorErrorCode.EXECUTION_TIMEOUT: "Action timed out. Please try again.",
    OrchestratorErrorCode.EXECUTION_CANCELLED: "Action was cancelled before it could finish.",
    OrchestratorErrorCode.COLLABORATOR_UNAVAILABLE: "A required service is unavailable.",
    OrchestratorErrorCode.INTERNAL_ERROR: "An unexpected error occurred. Please try again.",
}


# Codes that a retry or a later call can plausibly fix.
_RECOVERABLE = {
    OrchestratorErrorCode.STALE_STATE,
    OrchestratorErrorCode.EXECUTION_FAILED,
    OrchestratorErrorCode.EXECUTION_TIMEOUT,
    OrchestratorErrorCode.EXECUTION_CANCELLED,
    OrchestratorErrorCode.COLLABORATOR_UNAVAILABLE,
}


class ErrorInfo(BaseModel):
    """
    Description: Serializable error object crossing the engine boundary.
    Layer: L0
    Input: OrchestratorError
    Output: JSON-safe record with machine code, message, recoverability
    """

    model_config = ConfigDict(extra="forbid")

    code: OrchestratorErrorCode
    message: str
    recoverable: bool = False
    severity: Literal["warning", "critical"] = "critical"
    details: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: Optional[str] = None


class OrchestratorError(Exception):
    """
    Description: Typed error raised inside the engine.
    Layer: L0
    Input: error code + optional message/details
    Output: exception convertible to ErrorInfo
    """

    def __init__(
        self,
        code: OrchestratorErrorCode,
        message: Optional[str] = None,
        *,
        recoverable: Optional[bool] = None,
        severity: Literal["warning", "critical"] = "critical",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.code = code
        self.message = message or ERROR_MESSAGES.get(code, "An error occurred.")
        self.recoverable = code in _RECOVERABLE if recoverable is None else recoverable
        self.severity = severity
        self.details = dict(details or {})
        super().__init__(self.message)

    def to_info(self, at: Optional[datetime] = None) -> ErrorInfo:
        """``at`` stamps occurred_at; callers pass their injected clock reading."""
        return ErrorInfo(
            code=self.code,
            message=self.message,
            recoverable=self.recoverable,
            severity=self.severity,
            details=self.details,
            occurred_at=_iso_utc(at) if at is not None else None,
        )


def as_error_info(
    exc: BaseException,
    *,
    fallback: OrchestratorErrorCode = OrchestratorErrorCode.INTERNAL_ERROR,
    at: Optional[datetime] = None,
) -> ErrorInfo:
    """Classify any exception into an ErrorInfo; unknown exceptions keep their text in details."""
    if isinstance(exc, OrchestratorError):
        return exc.to_info(at)
    return OrchestratorError(
        fallback,
        details={"exception_type": type(exc).__name__, "exception": str(exc)},
    ).to_info(at)


# Factories

def state_validation_error(issues: list, *, critical: bool) -> OrchestratorError:
    return OrchestratorError(
        OrchestratorErrorCode.STATE_VALIDATION_FAILED,
        severity="critical" if critical else "warning",
        recoverable=not critical,
        details={"issues": issues},
    )


def stale_state_error(reason: str, severity: Literal["warning", "critical"]) -> OrchestratorError:
    return OrchestratorError(
        OrchestratorErrorCode.STALE_STATE,
        f"State is stale: {reason}",
        severity=severity,
        details={"reason": reason},
    )


def plan_generation_error(plan_type: Literal["weekly", "daily"], cause: BaseException) -> OrchestratorError:
    code = OrchestratorErrorCode.WEEKLY_PLAN_FAILED if plan_type == "weekly" else OrchestratorErrorCode.DAILY_PLAN_FAILED
    return OrchestratorError(
        code,
        details={"plan_type": plan_type, "exception_type": type(cause).__name__, "exception": str(cause)},
    )


def empty_plan_error() -> OrchestratorError:
    return OrchestratorError(OrchestratorErrorCode.EMPTY_PLAN)


def execution_failed_error(task_id: str, reason: str) -> OrchestratorError:
    return OrchestratorError(
        OrchestratorErrorCode.EXECUTION_FAILED,
        reason,
        details={"task_id": task_id},
    )


def max_retries_error(task_id: str, attempts: int, last_error: Optional[str]) -> OrchestratorError:
    return OrchestratorError(
        OrchestratorErrorCode.MAX_RETRIES_EXCEEDED,
        recoverable=False,
        details={"task_id": task_id, "attempts": attempts, "last_error": last_error},
    )


def collaborator_unavailable_error(service: str, cause: Optional[BaseException] = None) -> OrchestratorError:
    details: Dict[str, Any] = {"service": service}
    if cause is not None:
        details["exception"] = str(cause)
    return OrchestratorError(
        OrchestratorErrorCode.COLLABORATOR_UNAVAILABLE,
        f"{service} is unavailable.",
        details=details,
    )

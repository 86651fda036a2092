from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from careercoach.execution.execution_schema import (
    ApplicationRecord,
    FollowUpRecord,
    JobPosting,
    RewriteRequest,
    RewriteResult,
    ScoringResult,
)

log = logging.getLogger("collaborators")


@runtime_checkable
class RewriteService(Protocol):
    def rewrite(self, request: RewriteRequest) -> RewriteResult: ...


@runtime_checkable
class ScoringService(Protocol):
    def apply_rewrite_with_scoring(self, user_id: Optional[str], rewrite: RewriteResult) -> ScoringResult: ...


@runtime_checkable
class ApplicationService(Protocol):
    def get_job_posting(self, job_id: str) -> Optional[JobPosting]: ...

    def create_application(
        self,
        *,
        user_id: Optional[str],
        job_id: str,
        resume_version_id: Optional[str],
        status: str,
        strategy_mode_at_apply: str,
    ) -> ApplicationRecord: ...

    def get_application(self, application_id: str) -> Optional[ApplicationRecord]: ...

    def record_follow_up(self, application_id: str, message: Optional[str] = None) -> FollowUpRecord: ...


@runtime_checkable
class EventLogService(Protocol):
    def log_event(self, *, user_id: Optional[str], event_type: str, context: Dict[str, Any]) -> None: ...


class LoggingEventLogService:
    """Event sink that only writes to the ``careercoach.events`` logger."""

    def __init__(self) -> None:
        self._log = logging.getLogger("careercoach.events")

    def log_event(self, *, user_id: Optional[str], event_type: str, context: Dict[str, Any]) -> None:
        self._log.info("event=%s user=%s context=%s", event_type, user_id or "-", context)


@dataclass(frozen=True)
class Collaborators:
    """
    Description: Bundle of external services the action handlers call.
    Layer: L5
    Input: host-provided implementations (any may be missing)
    Output: injected into ActionExecutorService
    """

    rewrite: Optional[RewriteService] = None
    scoring: Optional[ScoringService] = None
    applications: Optional[ApplicationService] = None
    events: EventLogService = field(default_factory=LoggingEventLogService)


def log_event_safely(
    events: Optional[EventLogService],
    *,
    user_id: Optional[str],
    event_type: str,
    context: Dict[str, Any],
) -> bool:
    """Fire-and-forget: a failing event log never aborts execution."""
    if events is None:
        return False
    try:
        events.log_event(user_id=user_id, event_type=event_type, context=context)
        return True
    except Exception as e:
        log.warning("Event log failed for %s: %s", event_type, e)
        return False

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from careercoach.core.errors import ErrorInfo
from careercoach.core.state import ActionType, TaskStatus

Fallback = Literal["manual", "manual_edit"]


# ---------------------------------------------------------------------------
# Collaborator request/response shapes
# ---------------------------------------------------------------------------


class RewriteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    rewrite_type: Literal["bullet", "summary", "section"]
    text: str = ""
    bullets: List[str] = Field(default_factory=list)
    section: Optional[str] = None
    target_role: Optional[str] = None
    evidence_scope: Literal["bullet", "section", "resume"] = "section"


class RewriteResult(BaseModel):
    """
    Description: Output of the rewrite collaborator.
    Layer: L3
    Input: RewriteRequest
    Output: improved text + evidence map + validation verdict + estimated gain
    """

    model_config = ConfigDict(extra="forbid")

    success: bool = True
    improved_text: str = ""
    evidence_map: Dict[str, Any] = Field(default_factory=dict)
    validation_passed: bool = True
    validation_items: List[Dict[str, str]] = Field(default_factory=list)
    estimated_score_gain: float = 0.0


class ScoringResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    success: bool = True
    old_score: Optional[float] = None
    new_score: Optional[float] = None
    actual_gain: Optional[float] = None


class JobPosting(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    title: str
    company: str
    url: Optional[str] = None


class ApplicationRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    job_title: str = ""
    company: str = ""
    applied_at: Optional[datetime] = None
    follow_up_count: int = 0
    status: str = "draft"


class FollowUpRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    success: bool = True
    follow_up_count: int = 0


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------


class HandlerOutcome(BaseModel):
    """One handler attempt. ``retryable`` decides whether the executor tries again."""

    model_config = ConfigDict(extra="forbid")

    success: bool
    error: Optional[str] = None
    error_code: Optional[str] = None
    retryable: bool = True
    fallback: Optional[Fallback] = None
    suggestion: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def ok(cls, *, suggestion: Optional[str] = None, **data: Any) -> "HandlerOutcome":
        return cls(success=True, suggestion=suggestion, data=data)

    @classmethod
    def fail(
        cls,
        error: str,
        *,
        retryable: bool = False,
        fallback: Optional[Fallback] = None,
        suggestion: Optional[str] = None,
        **data: Any,
    ) -> "HandlerOutcome":
        return cls(success=False, error=error, retryable=retryable, fallback=fallback, suggestion=suggestion, data=data)


class ActionResult(BaseModel):
    """
    Description: Final result of executing one task, returned (never raised) to the caller.
    Layer: L5
    Input: executor state machine
    Output: success flag, resulting task status, attempts, typed error, fallback suggestion
    """

    model_config = ConfigDict(extra="forbid")

    task_id: str
    action_type: ActionType
    success: bool
    status: TaskStatus
    attempts: int = 0
    retry_count: int = 0
    error: Optional[ErrorInfo] = None
    fallback: Optional[Fallback] = None
    suggestion: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    completed_at: datetime


class BatchResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    results: List[ActionResult] = Field(default_factory=list)
    halted: bool = False
    halted_by: Optional[str] = None
    cancelled_task_ids: List[str] = Field(default_factory=list)


class ExecutionSummary(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    total: int = 0
    successful: int = 0
    failed: int = 0
    cancelled: int = 0
    total_retries: int = 0

from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from careercoach.core.state import (
    DONE_STATUSES,
    ActionType,
    ExecutionMode,
    StalenessSeverity,
    TaskStatus,
)


# ---------------------------------------------------------------------------
# Payloads: one strongly typed shape per action kind, tagged by ``kind``.
# ---------------------------------------------------------------------------


class ImproveResumePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["improve_resume"] = "improve_resume"
    rewrite_type: Literal["bullet", "summary", "section"] = "bullet"
    bullet_index: Optional[int] = None
    bullet_text: Optional[str] = None
    section: Optional[str] = None
    target_role: Optional[str] = None
    issues: List[str] = Field(default_factory=list)
    weak_bullets: List[str] = Field(default_factory=list)
    estimated_score_gain: Optional[float] = None


class ApplyToJobPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["apply_to_job"] = "apply_to_job"
    job_id: Optional[str] = None
    job_title: str = ""
    company: str = ""
    match_score: Optional[float] = None
    platform: Optional[str] = None


class FollowUpPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["follow_up"] = "follow_up"
    application_id: Optional[str] = None
    job_title: str = ""
    company: str = ""
    days_since_application: int = 0
    follow_up_count: int = 0


class UpdateTargetsPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["update_targets"] = "update_targets"
    objective: str = ""
    current_targets: List[str] = Field(default_factory=list)


class CollectMissingInfoPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["collect_missing_info"] = "collect_missing_info"
    objective: str = ""
    missing_fields: List[str] = Field(default_factory=list)


class RefreshStatePayload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    kind: Literal["refresh_state"] = "refresh_state"
    reason: Optional[str] = None
    severity: StalenessSeverity = "warning"


TaskPayload = Annotated[
    Union[
        ImproveResumePayload,
        ApplyToJobPayload,
        FollowUpPayload,
        UpdateTargetsPayload,
        CollectMissingInfoPayload,
        RefreshStatePayload,
    ],
    Field(discriminator="kind"),
]


class Task(BaseModel):
    """
    Description: A single unit of recommended work with priority, cost and justification.
    Layer: L5
    Input: built by the task generator
    Output: immutable record; status changes produce a copy via with_status()
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    task_id: str
    action_type: ActionType
    title: str
    description: str
    execution: ExecutionMode
    payload: TaskPayload
    priority: int = Field(ge=0, le=100)
    estimated_minutes: int = Field(ge=1, le=480)
    due_at: Optional[datetime] = None
    dependencies: List[str] = Field(default_factory=list)
    why_now: str
    evidence_refs: List[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    incomplete_data: bool = False
    created_at: datetime

    @field_validator("why_now")
    @classmethod
    def _why_now_required(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("why_now must be a non-empty justification")
        return v

    @model_validator(mode="after")
    def _kind_matches_payload(self) -> "Task":
        if self.action_type.value != self.payload.kind:
            raise ValueError(f"action_type {self.action_type.value} does not match payload kind {self.payload.kind}")
        return self

    @property
    def is_done(self) -> bool:
        return self.status in DONE_STATUSES

    def with_status(self, status: TaskStatus) -> "Task":
        return self.model_copy(update={"status": status})

    def with_priority(self, priority: int) -> "Task":
        return self.model_copy(update={"priority": max(0, min(100, int(priority)))})


class PriorityScoreBreakdown(BaseModel):
    """Five sub-scores (each 0-100) plus accumulated penalty points."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    impact: float = Field(ge=0, le=100)
    urgency: float = Field(ge=0, le=100)
    alignment: float = Field(ge=0, le=100)
    confidence: float = Field(ge=0, le=100)
    time_cost: float = Field(ge=0, le=100)
    penalties: float = Field(default=0.0, ge=0)


class PriorityScore(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    task_id: str
    score: int = Field(ge=0, le=100)
    breakdown: PriorityScoreBreakdown
    notes: List[str] = Field(default_factory=list)


class ValidationIssue(BaseModel):
    """Description: Non-fatal finding attached to a plan or a state check.
    Layer: L5
    Input: validator
    Output: machine code + severity + human message
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    code: str
    severity: Literal["warning", "critical"]
    message: str
    field: Optional[str] = None
    task_ids: List[str] = Field(default_factory=list)

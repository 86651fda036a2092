from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

ReplanTriggerType = Literal[
    "strategy_mode_changed",
    "major_milestone",
    "severe_deviation",
    "user_requested",
    "new_day",
    "major_task_completed",
    "task_failed",
    "plan_expired",
]
Urgency = Literal["low", "medium", "high"]


class Blocker(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    type: Literal["dependency", "stale_state", "missing_data", "failed_task"]
    description: str
    affected_tasks: List[str] = Field(default_factory=list)
    resolution: Optional[str] = None


class ApplicationsProgress(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    submitted: int = 0
    target: int = 0


class ProgressSnapshot(BaseModel):
    """
    Description: Point-in-time progress of one plan.
    Layer: L5
    Input: weekly or daily plan + live state
    Output: counts by status, completion %, time spent/remaining, blockers
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    plan_id: str
    plan_type: Literal["weekly", "daily"]
    completion_percentage: int = Field(ge=0, le=100)
    total_tasks: int = 0
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    skipped_tasks: int = 0
    time_spent_minutes: int = 0
    time_remaining_minutes: int = 0
    blockers: List[Blocker] = Field(default_factory=list)
    applications_progress: Optional[ApplicationsProgress] = None
    snapshot_at: datetime


class ReplanTrigger(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    should_replan: bool
    trigger_type: Optional[ReplanTriggerType] = None
    reason: str
    plan_type: Optional[Literal["weekly", "daily", "both"]] = None
    urgency: Urgency = "low"


class DeviationCheck(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    deviation: bool
    type: Literal["under", "over", "none"] = "none"
    expected_percentage: float = 0.0
    details: str = ""


class OnTrackCheck(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    on_track: bool
    reason: str


class CompletionVerification(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    verified: bool
    reason: str

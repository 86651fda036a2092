from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from careercoach.core.errors import ErrorInfo
from careercoach.core.state import StrategyMode
from careercoach.execution.execution_schema import BatchResult, ExecutionSummary
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.planning.task_schema import ValidationIssue
from careercoach.state.state_schema import StateValidationResult
from careercoach.tracking.tracking_schema import CompletionVerification, OnTrackCheck, ProgressSnapshot, ReplanTrigger


class WeeklyPlanResult(BaseModel):
    """
    Description: Weekly planning outcome returned across the engine boundary.
    Layer: L5
    Input: Orchestrator.plan_week
    Output: plan (None only when configuration itself is broken) + issues + typed errors
    """

    model_config = ConfigDict(extra="forbid")

    plan: Optional[WeeklyPlan] = None
    validation: Optional[StateValidationResult] = None
    issues: List[ValidationIssue] = Field(default_factory=list)
    errors: List[ErrorInfo] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.plan is not None and not self.errors


class DailyPlanResult(BaseModel):
    model_config = ConfigDict(extra="forbid")

    plan: Optional[DailyPlan] = None
    issues: List[ValidationIssue] = Field(default_factory=list)
    errors: List[ErrorInfo] = Field(default_factory=list)


class StrategyContext(BaseModel):
    model_config = ConfigDict(extra="forbid")

    current_mode: StrategyMode
    mode_reasoning: str = ""
    weekly_target: int = 0
    target_rationale: str = ""


class RecentActivity(BaseModel):
    model_config = ConfigDict(extra="forbid")

    completed_tasks_this_week: int = 0
    progress_percentage: int = 0
    deviations: List[str] = Field(default_factory=list)


class PlanningContext(BaseModel):
    """What a coaching surface needs to explain the current plans."""

    model_config = ConfigDict(extra="forbid")

    weekly_plan: WeeklyPlan
    today_plan: Optional[DailyPlan] = None
    strategy_context: StrategyContext
    recent_activity: RecentActivity


class ProgressReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    snapshot: Optional[ProgressSnapshot] = None
    on_track: Optional[OnTrackCheck] = None
    completion_checks: Dict[str, CompletionVerification] = Field(default_factory=dict)
    unverified_task_ids: List[str] = Field(default_factory=list)
    errors: List[ErrorInfo] = Field(default_factory=list)


class ReplanCheck(BaseModel):
    model_config = ConfigDict(extra="forbid")

    trigger: ReplanTrigger
    errors: List[ErrorInfo] = Field(default_factory=list)


class ExecutionReport(BaseModel):
    model_config = ConfigDict(extra="forbid")

    batch: BatchResult = Field(default_factory=BatchResult)
    summary: ExecutionSummary = Field(default_factory=ExecutionSummary)
    errors: List[ErrorInfo] = Field(default_factory=list)


class OrchestrationResult(BaseModel):
    """
    Description: One full planning cycle.
    Layer: L5
    Input: Orchestrator.orchestrate
    Output: current weekly + daily plans, coach context, forward-looking replan signal
    """

    model_config = ConfigDict(extra="forbid")

    weekly_plan: Optional[WeeklyPlan] = None
    daily_plan: Optional[DailyPlan] = None
    context: Optional[PlanningContext] = None
    replan_needed: Optional[ReplanTrigger] = None
    weekly_regenerated: bool = False
    daily_regenerated: bool = False
    issues: List[ValidationIssue] = Field(default_factory=list)
    errors: List[ErrorInfo] = Field(default_factory=list)

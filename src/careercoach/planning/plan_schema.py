from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from careercoach.core.state import FocusArea, StrategyMode, TaskStatus
from careercoach.planning.task_schema import Task


class WeeklyPlan(BaseModel):
    """
    Description: Version-stamped weekly snapshot: target, focus mix, task pool, day hints.
    Layer: L5
    Input: weekly planner
    Output: immutable plan; replanning produces a new plan with plan_version + 1
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    plan_id: str
    plan_version: int = Field(default=1, ge=1)
    week_start: date_type
    week_end: date_type
    strategy_mode: StrategyMode
    target_applications: int = Field(ge=0, le=50)
    focus_mix: Dict[FocusArea, float]
    task_pool: List[Task] = Field(default_factory=list, max_length=50)
    daily_plan_hints: Dict[str, List[str]] = Field(default_factory=dict)
    input_state_version: int = 0
    strategy_analysis_version: str = ""
    generated_at: datetime
    is_safe_plan: bool = False

    def task_by_id(self, task_id: str) -> Optional[Task]:
        for t in self.task_pool:
            if t.task_id == task_id:
                return t
        return None

    def hints_for(self, day: date_type) -> List[str]:
        return list(self.daily_plan_hints.get(day.isoformat(), []))

    def with_task_status(self, task_id: str, status: TaskStatus) -> "WeeklyPlan":
        """Status is the only mutable part of a weekly plan; version stays the same."""
        pool = [t.with_status(status) if t.task_id == task_id else t for t in self.task_pool]
        return self.model_copy(update={"task_pool": pool})


class DailyPlan(BaseModel):
    """
    Description: One day's slice of the weekly pool under a time budget.
    Layer: L5
    Input: weekly plan + live state
    Output: <= 5 tasks, pinned to the weekly plan id and version it was sliced from
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    plan_id: str
    date: date_type
    focus_area: FocusArea
    tasks: List[Task] = Field(default_factory=list, max_length=5)
    total_estimated_minutes: int = Field(default=0, ge=0)
    generated_from_weekly_plan_id: str
    weekly_plan_version: int = Field(default=1, ge=1)
    input_state_version: int = 0
    generated_at: datetime
    is_safe_plan: bool = False

    def with_task_status(self, task_id: str, status: TaskStatus) -> "DailyPlan":
        tasks = [t.with_status(status) if t.task_id == task_id else t for t in self.tasks]
        return self.model_copy(update={"tasks": tasks})

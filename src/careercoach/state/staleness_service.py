from __future__ import annotations

import logging
import math
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from careercoach.config import OrchestratorConfig
from careercoach.core.clock import as_utc
from careercoach.core.state import ActionType, FocusArea, TaskStatus, UserState
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.planning.task_generator_service import create_refresh_task, make_plan_id
from careercoach.planning.task_schema import Task
from careercoach.planning.weekly_planner_service import generate_minimal_safe_plan
from careercoach.state.state_schema import StalenessAssessment

log = logging.getLogger("staleness")

STALE_DAILY_MAX_TASKS = 2

_SEVERITY_ORDER = {"none": 0, "warning": 1, "critical": 2}


def assess_staleness(state: UserState, config: OrchestratorConfig, *, now: datetime) -> StalenessAssessment:
    """
    Description: Decide how far the snapshot can be trusted.
    Layer: L5
    Input: state snapshot, freshness config, reference time
    Output: StalenessAssessment; the explicit flag wins over snapshot age
    """
    fr = state.freshness
    if fr.is_stale:
        severity = fr.staleness_severity if fr.staleness_severity != "none" else "warning"
        return StalenessAssessment(
            severity=severity,
            reason=fr.staleness_reason or "State marked as stale",
            source="flag",
        )

    if state.computed_at is not None:
        age_days = (as_utc(now) - as_utc(state.computed_at)).total_seconds() / 86400.0
        whole_days = math.floor(age_days)
        max_days = config.state_freshness.max_stale_days
        if whole_days > max_days:
            return StalenessAssessment(
                severity="critical" if whole_days > max_days * 2 else "warning",
                reason=f"State is {whole_days} days old",
                age_days=age_days,
                source="age",
            )
        return StalenessAssessment(severity="none", reason="State is fresh", age_days=age_days, source="age")

    return StalenessAssessment(severity="none", reason="Unable to determine staleness")


def generate_stale_weekly_plan(
    state: UserState,
    config: OrchestratorConfig,
    *,
    now: datetime,
    reason: Optional[str] = None,
    previous_plan: Optional[WeeklyPlan] = None,
) -> WeeklyPlan:
    if reason is None:
        reason = assess_staleness(state, config, now=now).reason
    return generate_minimal_safe_plan(
        state,
        reason or "critical_staleness",
        config,
        now=now,
        previous_plan=previous_plan,
    )


def generate_stale_daily_plan(
    state: UserState,
    config: OrchestratorConfig,
    *,
    now: datetime,
    weekly_plan: Optional[WeeklyPlan] = None,
    date: Optional[date] = None,
    reason: Optional[str] = None,
) -> DailyPlan:
    """
    Description: Minimal daily slice under critical staleness.
    Layer: L5
    Input: state, config, reference time, optional weekly plan, target date
    Output: DailyPlan with at most 2 tasks, a refresh task first, focus=strategy
    """
    day = date or as_utc(now).date()
    pool: List[Task] = [t for t in (weekly_plan.task_pool if weekly_plan else []) if t.status != TaskStatus.COMPLETED]

    refresh = next((t for t in pool if t.action_type == ActionType.REFRESH_STATE), None)
    if refresh is None:
        why = reason or assess_staleness(state, config, now=now).reason or "critical_staleness"
        refresh = create_refresh_task(why, config, now=now, priority=100, severity="critical")
    others = [t for t in pool if t.task_id != refresh.task_id]
    tasks = ([refresh] + others)[:STALE_DAILY_MAX_TASKS]

    weekly_id = weekly_plan.plan_id if weekly_plan else "unplanned"
    weekly_version = weekly_plan.plan_version if weekly_plan else 1
    return DailyPlan(
        plan_id=make_plan_id("daily", "stale", weekly_id, weekly_version, day, state.state_version),
        date=day,
        focus_area=FocusArea.STRATEGY,
        tasks=tasks,
        total_estimated_minutes=sum(t.estimated_minutes for t in tasks),
        generated_from_weekly_plan_id=weekly_id,
        weekly_plan_version=weekly_version,
        input_state_version=state.state_version,
        generated_at=now,
        is_safe_plan=True,
    )


class RecoveryGuidance(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    title: str
    steps: List[str] = Field(default_factory=list)
    estimated_minutes: int = 0


def recovery_guidance(state: UserState, config: OrchestratorConfig, *, now: datetime) -> RecoveryGuidance:
    """Concrete steps that bring a stale snapshot back to usable."""
    steps: List[str] = []
    minutes = 0
    if state.resume.last_resume_update is None:
        steps.append("Upload or update your resume")
        minutes += 10
    if not state.resume.resume_score:
        steps.append("Get your resume scored")
        minutes += 5
    if not state.user_profile.target_roles:
        steps.append("Set your target roles")
        minutes += 5
    assessment = assess_staleness(state, config, now=now)
    if (assessment.age_days or 0) > config.state_freshness.max_stale_days:
        steps.append("Review and update your recent applications")
        minutes += 10
    if not steps:
        steps.append("Review your profile information")
        minutes += 5
    return RecoveryGuidance(
        title="Update your information to get personalized recommendations",
        steps=steps,
        estimated_minutes=minutes,
    )


def has_recovered_from_staleness(
    old_state: UserState,
    new_state: UserState,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> bool:
    old = assess_staleness(old_state, config, now=now)
    new = assess_staleness(new_state, config, now=now)
    return _SEVERITY_ORDER[new.severity] < _SEVERITY_ORDER[old.severity]

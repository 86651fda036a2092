from __future__ import annotations

import logging
from datetime import date as date_type
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set

from careercoach.config import OrchestratorConfig
from careercoach.core.clock import as_utc
from careercoach.core.state import TaskStatus, UserState
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.planning.priority_scorer_service import (
    HIGH_PRIORITY_THRESHOLD,
    MEDIUM_PRIORITY_THRESHOLD,
    prioritize_tasks,
)
from careercoach.planning.task_generator_service import determine_focus_area, make_plan_id
from careercoach.planning.task_schema import Task, ValidationIssue
from careercoach.state.staleness_service import generate_stale_daily_plan

log = logging.getLogger("daily_planner")

DAILY_TASK_CAP = 5
MAX_REASONABLE_MINUTES = 480


def fit_tasks_to_time_budget(tasks: Iterable[Task], budget_minutes: int) -> List[Task]:
    """
    Description: Greedy fit in the given (priority) order.
    Layer: L5
    Input: ordered tasks, minute budget
    Output: accepted tasks; if the first task alone exceeds the budget it is returned alone
    """
    selected: List[Task] = []
    total = 0
    for t in tasks:
        if total + t.estimated_minutes <= budget_minutes:
            selected.append(t)
            total += t.estimated_minutes
        elif not selected:
            selected.append(t)
            break
    return selected


def ensure_high_priority_task(
    selected: List[Task],
    candidates: Iterable[Task],
    threshold: int = HIGH_PRIORITY_THRESHOLD,
) -> List[Task]:
    """Swap the lowest selected task for the best unselected candidate scoring >= threshold."""
    if any(t.priority >= threshold for t in selected):
        return selected

    chosen = {t.task_id for t in selected}
    best = next((c for c in candidates if c.priority >= threshold and c.task_id not in chosen), None)
    if best is None:
        return selected

    result = list(selected)
    if result:
        lowest = min(range(len(result)), key=lambda i: (result[i].priority, -i))
        log.info("Swapping %s (priority %d) for high-priority %s", result[lowest].task_id, result[lowest].priority, best.task_id)
        result[lowest] = best
    else:
        result.append(best)
    result.sort(key=lambda t: -t.priority)
    return result


def validate_daily_plan(
    plan: DailyPlan,
    config: OrchestratorConfig,
    *,
    completed_ids: Optional[Set[str]] = None,
) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    done = completed_ids or set()

    if not plan.tasks:
        issues.append(ValidationIssue(code="EMPTY_DAY", severity="warning", message="Daily plan has no tasks"))

    cap = min(config.daily_planning.max_tasks_per_day, DAILY_TASK_CAP)
    if len(plan.tasks) > cap:
        issues.append(
            ValidationIssue(
                code="TOO_MANY_TASKS",
                severity="warning",
                message=f"Daily plan has {len(plan.tasks)} tasks, max is {cap}",
            )
        )

    if plan.total_estimated_minutes > MAX_REASONABLE_MINUTES:
        issues.append(
            ValidationIssue(
                code="EXCESSIVE_TIME",
                severity="warning",
                message=f"Plan requires {plan.total_estimated_minutes} min, unrealistic for one day",
            )
        )
    elif plan.total_estimated_minutes > config.daily_planning.time_budget_minutes:
        issues.append(
            ValidationIssue(
                code="OVER_BUDGET",
                severity="warning",
                message=(
                    f"Plan requires {plan.total_estimated_minutes} min, "
                    f"budget is {config.daily_planning.time_budget_minutes}"
                ),
            )
        )

    in_plan = {t.task_id for t in plan.tasks}
    for t in plan.tasks:
        for dep in t.dependencies:
            if dep not in in_plan and dep not in done:
                issues.append(
                    ValidationIssue(
                        code="MISSING_DEPENDENCY",
                        severity="warning",
                        message=f"Task {t.task_id} depends on {dep} not in plan",
                        task_ids=[t.task_id, dep],
                    )
                )
    return issues


def generate_daily_plan(
    weekly_plan: WeeklyPlan,
    state: UserState,
    config: OrchestratorConfig,
    *,
    now: datetime,
    date: Optional[date_type] = None,
) -> DailyPlan:
    """
    Description: Slice one day out of the weekly pool.
    Layer: L5
    Input: weekly plan (treated as immutable), live state, config, reference time, target date
    Output: DailyPlan (always produced; <= 5 tasks; pinned to weekly plan id + version)
    """
    day = date or as_utc(now).date()

    if state.is_critically_stale:
        return generate_stale_daily_plan(state, config, now=now, weekly_plan=weekly_plan, date=day)

    daily_cfg = config.daily_planning
    max_tasks = max(1, min(daily_cfg.max_tasks_per_day, DAILY_TASK_CAP))
    mode = weekly_plan.strategy_mode

    candidates = [t for t in weekly_plan.task_pool if t.status != TaskStatus.COMPLETED]
    by_id: Dict[str, Task] = {t.task_id: t for t in candidates}

    hinted_ids = weekly_plan.hints_for(day)
    today: List[Task] = []
    for tid in hinted_ids:
        t = by_id.get(tid)
        if t is not None and len(today) < max_tasks:
            today.append(t)

    hinted = set(hinted_ids)
    remaining = [t for t in candidates if t.task_id not in hinted]
    for t in prioritize_tasks(remaining, state, mode, config, now=now):
        if len(today) >= max_tasks:
            break
        today.append(t)

    ordered = prioritize_tasks(today, state, mode, config, now=now)
    final = fit_tasks_to_time_budget(ordered, daily_cfg.time_budget_minutes)

    if daily_cfg.require_one_high_priority:
        rescored = prioritize_tasks(candidates, state, mode, config, now=now)
        final = ensure_high_priority_task(final, rescored, daily_cfg.high_priority_threshold)

    plan = DailyPlan(
        plan_id=make_plan_id("daily", weekly_plan.plan_id, weekly_plan.plan_version, day, state.state_version),
        date=day,
        focus_area=determine_focus_area(final),
        tasks=final,
        total_estimated_minutes=sum(t.estimated_minutes for t in final),
        generated_from_weekly_plan_id=weekly_plan.plan_id,
        weekly_plan_version=weekly_plan.plan_version,
        input_state_version=state.state_version,
        generated_at=now,
        is_safe_plan=weekly_plan.is_safe_plan,
    )

    completed = {t.task_id for t in weekly_plan.task_pool if t.status == TaskStatus.COMPLETED}
    for issue in validate_daily_plan(plan, config, completed_ids=completed):
        log.warning("Daily plan issue [%s/%s]: %s", issue.severity, issue.code, issue.message)
    return plan


def daily_plan_summary(plan: DailyPlan) -> Dict[str, Any]:
    return {
        "date": plan.date.isoformat(),
        "day_name": plan.date.strftime("%A"),
        "task_count": len(plan.tasks),
        "total_minutes": plan.total_estimated_minutes,
        "focus_area": plan.focus_area.value,
        "priorities": {
            "high": sum(1 for t in plan.tasks if t.priority >= HIGH_PRIORITY_THRESHOLD),
            "medium": sum(1 for t in plan.tasks if MEDIUM_PRIORITY_THRESHOLD <= t.priority < HIGH_PRIORITY_THRESHOLD),
            "low": sum(1 for t in plan.tasks if t.priority < MEDIUM_PRIORITY_THRESHOLD),
        },
    }

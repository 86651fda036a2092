from __future__ import annotations

from datetime import date, datetime, timezone

from careercoach.core.state import ActionType, FocusArea, TaskStatus
from careercoach.planning.daily_planner_service import (
    daily_plan_summary,
    ensure_high_priority_task,
    fit_tasks_to_time_budget,
    generate_daily_plan,
    validate_daily_plan,
)
from careercoach.planning.plan_schema import DailyPlan
from careercoach.planning.weekly_planner_service import generate_weekly_plan

NOW = datetime(2025, 1, 8, 10, 0, tzinfo=timezone.utc)


def _daily(tasks, minutes=None) -> DailyPlan:
    return DailyPlan(
        plan_id="plan_daily_test",
        date=date(2025, 1, 8),
        focus_area=FocusArea.RESUME_IMPROVEMENT,
        tasks=tasks,
        total_estimated_minutes=minutes if minutes is not None else sum(t.estimated_minutes for t in tasks),
        generated_from_weekly_plan_id="plan_weekly_test",
        generated_at=NOW,
    )


def test_oversized_first_task_is_returned_alone(make_task) -> None:
    big = make_task(name="big", minutes=200)
    assert fit_tasks_to_time_budget([big], 100) == [big]


def test_fit_is_greedy_in_given_order(make_task) -> None:
    a = make_task(name="a", minutes=60)
    b = make_task(name="b", minutes=50)
    c = make_task(name="c", minutes=30)
    assert fit_tasks_to_time_budget([a, b, c], 100) == [a, c]
    assert fit_tasks_to_time_budget([], 100) == []


def test_high_priority_task_is_swapped_in(make_task) -> None:
    a = make_task(name="a", priority=50)
    b = make_task(name="b", priority=40)
    c = make_task(name="c", priority=80)

    result = ensure_high_priority_task([a, b], [c, a, b])
    assert [t.task_id for t in result] == [c.task_id, a.task_id]

    already = ensure_high_priority_task([c, a], [c, a, b])
    assert already == [c, a]

    nothing = ensure_high_priority_task([a, b], [a, b])
    assert nothing == [a, b]


def test_daily_plan_respects_cap_budget_and_pinning(apply_state, apply_analysis, config, now) -> None:
    weekly = generate_weekly_plan(apply_state, apply_analysis, config, now=now)
    daily = generate_daily_plan(weekly, apply_state, config, now=now)

    assert 1 <= len(daily.tasks) <= 5
    assert daily.total_estimated_minutes <= config.daily_planning.time_budget_minutes
    assert daily.total_estimated_minutes == sum(t.estimated_minutes for t in daily.tasks)
    assert any(t.priority >= 70 for t in daily.tasks)
    assert daily.generated_from_weekly_plan_id == weekly.plan_id
    assert daily.weekly_plan_version == weekly.plan_version
    assert daily.date == date(2025, 1, 8)
    pool_ids = {t.task_id for t in weekly.task_pool}
    assert all(t.task_id in pool_ids for t in daily.tasks)


def test_daily_plan_is_deterministic(apply_state, apply_analysis, config, now) -> None:
    weekly = generate_weekly_plan(apply_state, apply_analysis, config, now=now)
    a = generate_daily_plan(weekly, apply_state, config, now=now)
    b = generate_daily_plan(weekly, apply_state, config, now=now)
    assert a.model_dump_json() == b.model_dump_json()


def test_completed_tasks_are_not_rescheduled(apply_state, apply_analysis, config, now) -> None:
    weekly = generate_weekly_plan(apply_state, apply_analysis, config, now=now)
    done_id = weekly.task_pool[0].task_id
    updated = weekly.with_task_status(done_id, TaskStatus.COMPLETED)

    assert updated.plan_version == weekly.plan_version
    daily = generate_daily_plan(updated, apply_state, config, now=now)
    assert done_id not in {t.task_id for t in daily.tasks}


def test_critical_state_gets_stale_daily_plan(apply_state, critical_state, apply_analysis, config, now) -> None:
    weekly = generate_weekly_plan(apply_state, apply_analysis, config, now=now)
    daily = generate_daily_plan(weekly, critical_state, config, now=now)

    assert daily.is_safe_plan
    assert len(daily.tasks) <= 2
    assert daily.tasks[0].action_type == ActionType.REFRESH_STATE
    assert daily.focus_area == FocusArea.STRATEGY
    assert daily.generated_from_weekly_plan_id == weekly.plan_id


def test_validation_reports_budget_and_dependency_issues(make_task, config) -> None:
    long_task = make_task(name="long", minutes=200)
    assert "OVER_BUDGET" in {i.code for i in validate_daily_plan(_daily([long_task]), config)}

    waiting = make_task(name="waiting", dependencies=["task_missing"])
    codes = {i.code for i in validate_daily_plan(_daily([waiting]), config)}
    assert "MISSING_DEPENDENCY" in codes
    resolved = validate_daily_plan(_daily([waiting]), config, completed_ids={"task_missing"})
    assert "MISSING_DEPENDENCY" not in {i.code for i in resolved}

    assert "EMPTY_DAY" in {i.code for i in validate_daily_plan(_daily([]), config)}


def test_summary_counts_priorities(make_task) -> None:
    plan = _daily([make_task(name="h", priority=90), make_task(name="m", priority=50), make_task(name="l", priority=10)])
    summary = daily_plan_summary(plan)
    assert summary["day_name"] == "Wednesday"
    assert summary["priorities"] == {"high": 1, "medium": 1, "low": 1}

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from careercoach.core.state import ActionType, FocusArea, PlanningEvent, StrategyMode, TaskStatus
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.planning.task_schema import FollowUpPayload
from careercoach.tracking.completion_checker_service import (
    check_plan_completion,
    is_plan_complete,
    remaining_tasks,
    unverified_completions,
    verify_task_completion,
    weekly_targets_met,
)
from careercoach.tracking.progress_tracker_service import (
    completion_percentage,
    detect_blockers,
    is_plan_on_track,
    track_daily_progress,
    track_weekly_progress,
)
from careercoach.tracking.replan_trigger_service import (
    can_replan_weekly,
    has_severe_deviation,
    is_mid_week,
    is_plan_expired,
    should_replan,
    should_replan_daily,
    should_replan_weekly,
)

NOW = datetime(2025, 1, 8, 10, 0, tzinfo=timezone.utc)
MONDAY = datetime(2025, 1, 6, 10, 0, tzinfo=timezone.utc)


def _weekly(tasks, mode=StrategyMode.APPLY_MODE) -> WeeklyPlan:
    return WeeklyPlan(
        plan_id="plan_weekly_test",
        week_start=date(2025, 1, 6),
        week_end=date(2025, 1, 12),
        strategy_mode=mode,
        target_applications=10,
        focus_mix={area: 0.25 for area in FocusArea},
        task_pool=tasks,
        generated_at=MONDAY,
    )


def _daily(tasks, day=date(2025, 1, 8)) -> DailyPlan:
    return DailyPlan(
        plan_id="plan_daily_test",
        date=day,
        focus_area=FocusArea.APPLICATIONS,
        tasks=tasks,
        total_estimated_minutes=sum(t.estimated_minutes for t in tasks),
        generated_from_weekly_plan_id="plan_weekly_test",
        generated_at=NOW,
    )


def _tasks(make_task, *statuses):
    return [make_task(name=str(i), status=s) for i, s in enumerate(statuses)]


# ---------------------------------------------------------------------------
# Progress
# ---------------------------------------------------------------------------


def test_failed_and_skipped_count_as_addressed(make_task) -> None:
    tasks = _tasks(make_task, TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED, TaskStatus.PENDING)
    assert completion_percentage(tasks) == 75
    assert completion_percentage([]) == 100


def test_weekly_snapshot_counts_and_minutes(make_task, apply_state) -> None:
    tasks = _tasks(make_task, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS, TaskStatus.PENDING)
    snap = track_weekly_progress(_weekly(tasks), apply_state, now=NOW)

    assert snap.plan_type == "weekly"
    assert (snap.completed_tasks, snap.in_progress_tasks, snap.pending_tasks) == (1, 1, 1)
    assert snap.completion_percentage == 33
    assert snap.time_spent_minutes == 20
    assert snap.time_remaining_minutes == 40
    assert snap.applications_progress.submitted == 5
    assert snap.applications_progress.target == 10


def test_blockers(make_task, apply_state, critical_state) -> None:
    first = make_task(name="first", status=TaskStatus.FAILED)
    second = make_task(name="second", dependencies=[first.task_id])
    vague = make_task(ActionType.APPLY_TO_JOB, name="vague", incomplete_data=True)

    types = [b.type for b in detect_blockers([first, second, vague], apply_state)]
    assert types == ["dependency", "failed_task", "missing_data"]

    stale = detect_blockers([vague], critical_state)
    assert stale[0].type == "stale_state"


def test_on_track_is_prorated_by_weekday(make_task, apply_state) -> None:
    done = _tasks(make_task, TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.PENDING, TaskStatus.PENDING)
    snap = track_weekly_progress(_weekly(done), apply_state, now=NOW)
    assert is_plan_on_track(snap, now=NOW).on_track

    idle = _tasks(make_task, TaskStatus.PENDING, TaskStatus.PENDING)
    snap = track_weekly_progress(_weekly(idle), apply_state, now=NOW)
    assert not is_plan_on_track(snap, now=NOW).on_track


# ---------------------------------------------------------------------------
# Re-plan triggers
# ---------------------------------------------------------------------------


def test_mode_mismatch_triggers_weekly_replan(make_task, apply_state) -> None:
    plan = _weekly(_tasks(make_task, TaskStatus.PENDING))
    trigger = should_replan_weekly(plan, apply_state, now=NOW, recommended_mode=StrategyMode.RETHINK_TARGETS)
    assert trigger.should_replan
    assert trigger.trigger_type == "strategy_mode_changed"
    assert trigger.urgency == "medium"


def test_expired_plan_wins_over_everything(make_task, apply_state) -> None:
    plan = _weekly(_tasks(make_task, TaskStatus.PENDING))
    later = datetime(2025, 1, 13, 9, 0, tzinfo=timezone.utc)
    trigger = should_replan_weekly(plan, apply_state, now=later, recommended_mode=StrategyMode.RETHINK_TARGETS, user_requested=True)
    assert trigger.trigger_type == "plan_expired"
    assert trigger.urgency == "high"


def test_user_request_and_milestones(make_task, apply_state) -> None:
    plan = _weekly(_tasks(make_task, TaskStatus.PENDING))
    assert should_replan_weekly(plan, apply_state, now=MONDAY, user_requested=True).trigger_type == "user_requested"

    offer = should_replan_weekly(plan, apply_state, now=MONDAY, recent_events=[PlanningEvent.FIRST_OFFER])
    assert offer.trigger_type == "major_milestone"
    assert offer.urgency == "high"

    interview = should_replan_weekly(plan, apply_state, now=MONDAY, recent_events=[PlanningEvent.FIRST_INTERVIEW])
    assert interview.urgency == "medium"

    unrelated = should_replan_weekly(plan, apply_state, now=MONDAY, recent_events=[PlanningEvent.RESUME_EDITED])
    assert not unrelated.should_replan


def test_weekly_trigger_precedence(make_task, apply_state) -> None:
    plan = _weekly(_tasks(make_task, TaskStatus.PENDING, TaskStatus.PENDING))
    changed = StrategyMode.RETHINK_TARGETS

    requested = should_replan_weekly(
        plan, apply_state, now=NOW, recommended_mode=changed, recent_events=[PlanningEvent.FIRST_OFFER], user_requested=True
    )
    assert requested.trigger_type == "user_requested"

    milestone = should_replan_weekly(plan, apply_state, now=NOW, recommended_mode=changed, recent_events=[PlanningEvent.FIRST_OFFER])
    assert milestone.trigger_type == "major_milestone"

    mismatch = should_replan_weekly(plan, apply_state, now=NOW, recommended_mode=changed)
    assert mismatch.trigger_type == "strategy_mode_changed"
    assert should_replan_weekly(plan, apply_state, now=NOW).trigger_type == "severe_deviation"


def test_mid_week_deviation(make_task, apply_state) -> None:
    behind = _weekly(_tasks(make_task, TaskStatus.PENDING, TaskStatus.PENDING))
    trigger = should_replan_weekly(behind, apply_state, now=NOW)
    assert trigger.trigger_type == "severe_deviation"
    assert trigger.urgency == "medium"

    ahead = _weekly(_tasks(make_task, TaskStatus.COMPLETED, TaskStatus.COMPLETED))
    trigger = should_replan_weekly(ahead, apply_state, now=NOW)
    assert trigger.trigger_type == "severe_deviation"
    assert trigger.urgency == "low"


def test_deviation_ignored_outside_mid_week_and_during_cooldown(make_task, apply_state) -> None:
    behind = _weekly(_tasks(make_task, TaskStatus.PENDING, TaskStatus.PENDING))
    assert not is_mid_week(MONDAY)
    assert not should_replan_weekly(behind, apply_state, now=MONDAY).should_replan

    recent = NOW - timedelta(days=1)
    assert not can_replan_weekly(recent, now=NOW)
    assert not should_replan_weekly(behind, apply_state, now=NOW, last_replan_at=recent).should_replan


def test_deviation_thresholds(make_task, apply_state) -> None:
    snap = track_weekly_progress(_weekly(_tasks(make_task, TaskStatus.PENDING)), apply_state, now=NOW)
    check = has_severe_deviation(snap, now=NOW)
    assert check.deviation and check.type == "under"
    assert round(check.expected_percentage, 1) == 42.9


def test_daily_triggers(make_task, apply_state) -> None:
    yesterday = _daily(_tasks(make_task, TaskStatus.PENDING), day=date(2025, 1, 7))
    assert should_replan_daily(yesterday, apply_state, now=NOW).trigger_type == "new_day"

    today = _daily(_tasks(make_task, TaskStatus.FAILED, TaskStatus.PENDING))
    failed = should_replan_daily(today, apply_state, now=NOW, recent_events=[PlanningEvent.TASK_FAILED])
    assert failed.trigger_type == "task_failed"
    assert failed.urgency == "medium"

    mostly_done = _daily(
        _tasks(make_task, TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.COMPLETED, TaskStatus.PENDING)
    )
    trigger = should_replan_daily(mostly_done, apply_state, now=NOW, recent_events=[PlanningEvent.TASK_COMPLETED])
    assert trigger.trigger_type == "major_task_completed"
    assert trigger.urgency == "low"

    half_done = _daily(_tasks(make_task, TaskStatus.COMPLETED, TaskStatus.PENDING))
    assert not should_replan_daily(half_done, apply_state, now=NOW, recent_events=[PlanningEvent.TASK_COMPLETED]).should_replan


def test_combined_check_prefers_weekly(make_task, apply_state) -> None:
    weekly = _weekly(_tasks(make_task, TaskStatus.PENDING))
    daily = _daily(weekly.task_pool)

    both = should_replan(weekly, daily, apply_state, now=NOW, recommended_mode=StrategyMode.IMPROVE_RESUME_FIRST)
    assert both.plan_type == "both"
    assert both.trigger_type == "strategy_mode_changed"

    missing_daily = should_replan(weekly, None, apply_state, now=MONDAY)
    assert missing_daily.trigger_type == "new_day"
    assert missing_daily.plan_type == "daily"


# ---------------------------------------------------------------------------
# Completion checks
# ---------------------------------------------------------------------------


def test_application_completion_is_verified_against_counts(make_task, make_state) -> None:
    task = make_task(ActionType.APPLY_TO_JOB, status=TaskStatus.COMPLETED)
    before = make_state()
    after = make_state(pipeline_state={"total_applications": 26})

    assert verify_task_completion(task, after, before).verified
    assert not verify_task_completion(task, before, before).verified
    assert verify_task_completion(task, before).verified


def test_resume_and_refresh_verification(make_task, make_state, critical_state, apply_state) -> None:
    resume_task = make_task(ActionType.IMPROVE_RESUME)
    improved = make_state(resume={"resume_score": 90})
    assert verify_task_completion(resume_task, improved, apply_state).verified
    assert not verify_task_completion(resume_task, apply_state, apply_state).verified

    refresh_task = make_task(ActionType.REFRESH_STATE)
    assert verify_task_completion(refresh_task, apply_state, critical_state).verified
    assert not verify_task_completion(refresh_task, critical_state, critical_state).verified


def test_follow_up_verification(make_task, make_state, apply_state) -> None:
    task = make_task(ActionType.FOLLOW_UP, payload=FollowUpPayload(application_id="app_1", days_since_application=8))
    handled = make_state(followups={"applications_needing_followup": []})
    assert verify_task_completion(task, handled, apply_state).verified
    assert not verify_task_completion(task, apply_state, apply_state).verified


def test_plan_completion_helpers(make_task, make_state, apply_state) -> None:
    tasks = [
        make_task(ActionType.APPLY_TO_JOB, name="a", status=TaskStatus.COMPLETED),
        make_task(ActionType.UPDATE_TARGETS, name="b", status=TaskStatus.COMPLETED),
        make_task(name="c", status=TaskStatus.IN_PROGRESS),
    ]
    plan = _weekly(tasks)

    results = check_plan_completion(plan.task_pool, apply_state, apply_state)
    assert set(results) == {tasks[0].task_id, tasks[1].task_id}
    assert unverified_completions(results) == [tasks[0].task_id]
    assert not is_plan_complete(plan)
    assert [t.task_id for t in remaining_tasks(plan)] == [tasks[2].task_id]

    progress = weekly_targets_met(plan, make_state(pipeline_state={"applications_last_7_days": 10}))
    assert progress.submitted >= progress.target


def test_plan_expiry_and_daily_snapshot(make_task, apply_state) -> None:
    weekly = _weekly(_tasks(make_task, TaskStatus.PENDING))
    assert not is_plan_expired(weekly, now=datetime(2025, 1, 12, 23, 0, tzinfo=timezone.utc))
    assert is_plan_expired(weekly, now=datetime(2025, 1, 13, 0, 30, tzinfo=timezone.utc))

    daily = _daily(_tasks(make_task, TaskStatus.COMPLETED, TaskStatus.PENDING))
    assert not is_plan_expired(daily, now=NOW)
    snap = track_daily_progress(daily, apply_state, now=NOW)
    assert snap.plan_type == "daily"
    assert snap.completion_percentage == 50

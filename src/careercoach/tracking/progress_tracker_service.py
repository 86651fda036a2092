from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Sequence

from careercoach.core.clock import as_utc
from careercoach.core.state import TaskStatus, UserState
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.planning.priority_scorer_service import round_half_up
from careercoach.planning.task_schema import Task
from careercoach.tracking.tracking_schema import ApplicationsProgress, Blocker, OnTrackCheck, ProgressSnapshot

log = logging.getLogger("progress_tracker")


def completion_percentage(tasks: Sequence[Task]) -> int:
    """Completed, failed and skipped all count as addressed. An empty plan is complete."""
    if not tasks:
        return 100
    done = sum(1 for t in tasks if t.is_done)
    return round_half_up(done / len(tasks) * 100)


def _status_counts(tasks: Sequence[Task]) -> Dict[TaskStatus, int]:
    counts = {s: 0 for s in TaskStatus}
    for t in tasks:
        counts[t.status] += 1
    return counts


def detect_blockers(tasks: Sequence[Task], state: UserState) -> List[Blocker]:
    """
    Description: Find what stands between the plan and completion.
    Layer: L5
    Input: plan tasks, live state
    Output: blockers (stale_state, dependency, failed_task, missing_data)
    """
    blockers: List[Blocker] = []
    by_id = {t.task_id: t for t in tasks}

    if state.is_critically_stale:
        blockers.append(
            Blocker(
                type="stale_state",
                description=f"State is critically stale: {state.freshness.staleness_reason or 'unknown reason'}",
                affected_tasks=[t.task_id for t in tasks],
                resolution="Update your resume and application status",
            )
        )

    for t in tasks:
        if t.status != TaskStatus.PENDING:
            continue
        for dep_id in t.dependencies:
            dep = by_id.get(dep_id)
            if dep is not None and dep.status != TaskStatus.COMPLETED:
                blockers.append(
                    Blocker(
                        type="dependency",
                        description=f'Task "{t.title}" is waiting for "{dep.title}"',
                        affected_tasks=[t.task_id],
                        resolution=f"Complete task: {dep.title}",
                    )
                )

    for failed in (t for t in tasks if t.status == TaskStatus.FAILED):
        dependents = [t.task_id for t in tasks if t.status == TaskStatus.PENDING and failed.task_id in t.dependencies]
        if dependents:
            blockers.append(
                Blocker(
                    type="failed_task",
                    description=f'Failed task "{failed.title}" is blocking other tasks',
                    affected_tasks=dependents,
                    resolution="Retry the failed task or skip dependent tasks",
                )
            )

    for t in tasks:
        if t.incomplete_data and t.status == TaskStatus.PENDING:
            blockers.append(
                Blocker(
                    type="missing_data",
                    description=f'Task "{t.title}" has incomplete data',
                    affected_tasks=[t.task_id],
                    resolution="Complete your profile with missing information",
                )
            )

    return blockers


def _snapshot(plan_id: str, plan_type: str, tasks: Sequence[Task], state: UserState, *, now: datetime, apps=None) -> ProgressSnapshot:
    counts = _status_counts(tasks)
    spent = sum(t.estimated_minutes for t in tasks if t.is_done)
    remaining = sum(t.estimated_minutes for t in tasks if not t.is_done)
    return ProgressSnapshot(
        plan_id=plan_id,
        plan_type=plan_type,
        completion_percentage=completion_percentage(tasks),
        total_tasks=len(tasks),
        pending_tasks=counts[TaskStatus.PENDING],
        in_progress_tasks=counts[TaskStatus.IN_PROGRESS],
        completed_tasks=counts[TaskStatus.COMPLETED],
        failed_tasks=counts[TaskStatus.FAILED],
        skipped_tasks=counts[TaskStatus.SKIPPED],
        time_spent_minutes=spent,
        time_remaining_minutes=remaining,
        blockers=detect_blockers(tasks, state),
        applications_progress=apps,
        snapshot_at=now,
    )


def track_weekly_progress(plan: WeeklyPlan, state: UserState, *, now: datetime) -> ProgressSnapshot:
    apps = ApplicationsProgress(
        submitted=state.pipeline_state.applications_last_7_days,
        target=plan.target_applications,
    )
    return _snapshot(plan.plan_id, "weekly", plan.task_pool, state, now=now, apps=apps)


def track_daily_progress(plan: DailyPlan, state: UserState, *, now: datetime) -> ProgressSnapshot:
    return _snapshot(plan.plan_id, "daily", plan.tasks, state, now=now)


def expected_weekly_progress(now: datetime) -> float:
    """Linear expectation through the week: Monday ~14%, Sunday 100%."""
    return as_utc(now).isoweekday() / 7 * 100


def is_plan_on_track(progress: ProgressSnapshot, *, now: datetime) -> OnTrackCheck:
    expected = expected_weekly_progress(now)
    actual = progress.completion_percentage
    if actual >= expected - 10:
        return OnTrackCheck(on_track=True, reason="Progress is on track")
    if actual >= expected - 25:
        return OnTrackCheck(
            on_track=False,
            reason="Slightly behind schedule. Consider prioritizing remaining tasks.",
        )
    return OnTrackCheck(
        on_track=False,
        reason="Significantly behind schedule. May need to re-plan or adjust targets.",
    )

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Union

from careercoach.core.state import ActionType, TaskStatus, UserState
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.planning.task_schema import FollowUpPayload, Task
from careercoach.tracking.tracking_schema import ApplicationsProgress, CompletionVerification

_SEVERITY_ORDER = {"none": 0, "warning": 1, "critical": 2}


def verify_task_completion(
    task: Task,
    state: UserState,
    previous_state: Optional[UserState] = None,
) -> CompletionVerification:
    """
    Description: Check that a task marked complete left a trace in the state.
    Layer: L5
    Input: task, current state, state before the task ran
    Output: verified flag + reason (user-only strategy tasks are trusted)
    """
    if previous_state is None:
        return CompletionVerification(verified=True, reason="No previous state to compare")

    if task.action_type == ActionType.IMPROVE_RESUME:
        old_score = previous_state.resume.resume_score or 0
        new_score = state.resume.resume_score or 0
        if new_score > old_score:
            return CompletionVerification(verified=True, reason=f"Resume score improved from {old_score:g} to {new_score:g}")
        new_update = state.resume.last_resume_update
        if new_update is not None and new_update != previous_state.resume.last_resume_update:
            return CompletionVerification(verified=True, reason="Resume was updated")
        return CompletionVerification(verified=False, reason="No detectable resume changes")

    if task.action_type == ActionType.APPLY_TO_JOB:
        old_apps = previous_state.pipeline_state.total_applications
        new_apps = state.pipeline_state.total_applications
        if new_apps > old_apps:
            return CompletionVerification(verified=True, reason=f"Applications increased from {old_apps} to {new_apps}")
        return CompletionVerification(verified=False, reason="No new applications detected")

    if task.action_type == ActionType.FOLLOW_UP:
        app_id = task.payload.application_id if isinstance(task.payload, FollowUpPayload) else None
        if not app_id:
            return CompletionVerification(verified=False, reason="No application ID to verify")
        old = next((f for f in previous_state.followups.applications_needing_followup if f.application_id == app_id), None)
        new = next((f for f in state.followups.applications_needing_followup if f.application_id == app_id), None)
        if new is None and old is not None:
            return CompletionVerification(verified=True, reason="Application no longer needs follow-up")
        if new is not None and old is not None and new.follow_up_count > old.follow_up_count:
            return CompletionVerification(verified=True, reason="Follow-up count increased")
        return CompletionVerification(verified=False, reason="No follow-up detected")

    if task.action_type == ActionType.UPDATE_TARGETS:
        if state.user_profile.target_roles != previous_state.user_profile.target_roles:
            return CompletionVerification(verified=True, reason="Target roles were updated")
        return CompletionVerification(verified=True, reason="User-only task (trusted)")

    if task.action_type == ActionType.REFRESH_STATE:
        if previous_state.freshness.is_stale and not state.freshness.is_stale:
            return CompletionVerification(verified=True, reason="State is no longer stale")
        old_sev = _SEVERITY_ORDER[previous_state.freshness.staleness_severity]
        new_sev = _SEVERITY_ORDER[state.freshness.staleness_severity]
        if new_sev < old_sev:
            return CompletionVerification(verified=True, reason="Staleness severity decreased")
        return CompletionVerification(verified=False, reason="State still appears stale")

    return CompletionVerification(verified=True, reason="User-only task (trusted)")


def check_plan_completion(
    tasks: Iterable[Task],
    state: UserState,
    previous_state: Optional[UserState] = None,
) -> Dict[str, CompletionVerification]:
    return {
        t.task_id: verify_task_completion(t, state, previous_state)
        for t in tasks
        if t.status == TaskStatus.COMPLETED
    }


def unverified_completions(results: Dict[str, CompletionVerification]) -> List[str]:
    return [task_id for task_id, r in results.items() if not r.verified]


def _tasks_of(plan: Union[WeeklyPlan, DailyPlan]) -> List[Task]:
    return list(plan.task_pool) if isinstance(plan, WeeklyPlan) else list(plan.tasks)


def is_plan_complete(plan: Union[WeeklyPlan, DailyPlan]) -> bool:
    return all(t.is_done for t in _tasks_of(plan))


def remaining_tasks(plan: Union[WeeklyPlan, DailyPlan]) -> List[Task]:
    return [t for t in _tasks_of(plan) if t.status in (TaskStatus.PENDING, TaskStatus.IN_PROGRESS)]


def weekly_targets_met(plan: WeeklyPlan, state: UserState) -> ApplicationsProgress:
    """Submitted vs. target; ``submitted >= target`` means the week's target is met."""
    return ApplicationsProgress(submitted=state.pipeline_state.applications_last_7_days, target=plan.target_applications)

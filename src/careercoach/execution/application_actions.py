from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from careercoach.config import OrchestratorConfig
from careercoach.core.errors import collaborator_unavailable_error
from careercoach.core.state import StrategyMode, UserState
from careercoach.execution.collaborators import Collaborators, log_event_safely
from careercoach.execution.execution_schema import HandlerOutcome
from careercoach.execution.resume_actions import is_resume_ready_for_applications
from careercoach.planning.task_schema import ApplyToJobPayload, FollowUpPayload, Task

log = logging.getLogger("application_actions")

ApplicationStatus = Literal["submitted", "interview_scheduled", "rejected", "offer"]


def execute_apply_to_job(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> HandlerOutcome:
    """
    Description: Prepare a draft application the user confirms after actually applying.
    Layer: L5
    Input: apply_to_job task, state (resume readiness), ApplicationService
    Output: HandlerOutcome with application_id and job details
    """
    payload = task.payload
    if not isinstance(payload, ApplyToJobPayload):
        return HandlerOutcome.fail(f"Expected ApplyToJobPayload, got {type(payload).__name__}")

    readiness = is_resume_ready_for_applications(state, config)
    if not readiness.ready:
        return HandlerOutcome.fail(
            readiness.reason or "Resume not ready",
            suggestion="Improve your resume score before applying to jobs.",
        )

    if not payload.job_id:
        return HandlerOutcome.fail("No job ID provided")

    apps = collaborators.applications
    if apps is None:
        raise collaborator_unavailable_error("ApplicationService")

    job = apps.get_job_posting(payload.job_id)
    if job is None:
        return HandlerOutcome.fail("Job not found")

    mode = state.current_strategy_mode or StrategyMode.APPLY_MODE
    application = apps.create_application(
        user_id=state.user_id,
        job_id=job.id,
        resume_version_id=state.resume.master_resume_id,
        status="draft",
        strategy_mode_at_apply=mode.value,
    )

    log_event_safely(
        collaborators.events,
        user_id=state.user_id,
        event_type="application_created",
        context={
            "task_id": task.task_id,
            "application_id": application.id,
            "job_id": job.id,
            "job_title": job.title,
            "company": job.company,
        },
    )
    return HandlerOutcome.ok(
        suggestion=f'Ready to apply! Click "Mark as Applied" after submitting your application to {job.company}.',
        application_id=application.id,
        job_title=job.title,
        company=job.company,
        url=job.url,
    )


def track_application_status(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    new_status: ApplicationStatus,
    *,
    application_id: Optional[str] = None,
) -> HandlerOutcome:
    """Record a user-reported status change (e.g. marked as applied) for the task's application."""
    application_id = application_id or _application_id(task)
    if not application_id:
        return HandlerOutcome.fail("No application ID provided")

    log_event_safely(
        collaborators.events,
        user_id=state.user_id,
        event_type="application_status_changed",
        context={
            "application_id": application_id,
            "old_status": "draft",
            "new_status": new_status,
            "task_id": task.task_id,
        },
    )
    return HandlerOutcome.ok(application_id=application_id, new_status=new_status)


def application_status_summary(state: UserState, config: OrchestratorConfig) -> Dict[str, Any]:
    target = state.user_profile.weekly_app_target
    if target is None:
        target = config.weekly_planning.default_app_target
    this_week = state.pipeline_state.applications_last_7_days
    return {
        "total": state.pipeline_state.total_applications,
        "this_week": this_week,
        "target": target,
        "progress": this_week / target * 100 if target > 0 else 0.0,
        "interview_rate": state.pipeline_state.interview_rate,
    }


def _application_id(task: Task) -> str:
    payload = task.payload
    if isinstance(payload, FollowUpPayload):
        return payload.application_id or ""
    return ""

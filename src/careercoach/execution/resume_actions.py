from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from careercoach.config import OrchestratorConfig
from careercoach.core.errors import collaborator_unavailable_error
from careercoach.core.state import UserState
from careercoach.execution.collaborators import Collaborators, log_event_safely
from careercoach.execution.execution_schema import HandlerOutcome, RewriteRequest, RewriteResult
from careercoach.planning.task_schema import ImproveResumePayload, Task

log = logging.getLogger("resume_actions")


class ResumeReadiness(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    ready: bool
    reason: Optional[str] = None


def is_resume_ready_for_applications(state: UserState, config: OrchestratorConfig) -> ResumeReadiness:
    """No master resume, or a score below the configured floor, blocks applying."""
    cfg = config.state_freshness
    if not state.resume.master_resume_id:
        return ResumeReadiness(ready=False, reason="No resume uploaded")
    score = state.resume.resume_score or 0
    if cfg.require_resume_for_apply and score < cfg.min_resume_score_for_apply:
        return ResumeReadiness(
            ready=False,
            reason=f"Resume score ({score:g}) is below minimum ({cfg.min_resume_score_for_apply})",
        )
    return ResumeReadiness(ready=True)


def _target_role(payload: ImproveResumePayload, state: UserState) -> Optional[str]:
    if payload.target_role:
        return payload.target_role
    return state.user_profile.target_roles[0] if state.user_profile.target_roles else None


def _apply_and_report(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    rewrite: RewriteResult,
) -> HandlerOutcome:
    """Hand the accepted rewrite to the scoring service and log the event."""
    if collaborators.scoring is None:
        raise collaborator_unavailable_error("ScoringService")

    applied = collaborators.scoring.apply_rewrite_with_scoring(state.user_id, rewrite)
    if not applied.success:
        return HandlerOutcome.fail("Failed to apply rewrite", retryable=True, fallback="manual_edit")

    log_event_safely(
        collaborators.events,
        user_id=state.user_id,
        event_type="resume_rewrite_applied",
        context={
            "task_id": task.task_id,
            "old_score": applied.old_score,
            "new_score": applied.new_score,
            "actual_gain": applied.actual_gain,
        },
    )
    return HandlerOutcome.ok(
        improved_text=rewrite.improved_text,
        evidence_map=rewrite.evidence_map,
        estimated_score_gain=rewrite.estimated_score_gain,
        actual_score_gain=applied.actual_gain,
        old_score=applied.old_score,
        new_score=applied.new_score,
    )


def _rewrite(collaborators: Collaborators, request: RewriteRequest) -> RewriteResult:
    if collaborators.rewrite is None:
        raise collaborator_unavailable_error("RewriteService")
    return collaborators.rewrite.rewrite(request)


def execute_improve_bullet(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> HandlerOutcome:
    """
    Description: Rewrite one bullet, check validation and gain, then apply with re-scoring.
    Layer: L5
    Input: improve_resume task (rewrite_type=bullet), state, collaborators
    Output: HandlerOutcome with evidence map and score delta
    """
    payload = task.payload
    if not isinstance(payload, ImproveResumePayload):
        return HandlerOutcome.fail(f"Expected ImproveResumePayload, got {type(payload).__name__}")
    if not payload.bullet_text:
        return HandlerOutcome.fail("No bullet provided for improvement")

    result = _rewrite(
        collaborators,
        RewriteRequest(rewrite_type="bullet", text=payload.bullet_text, target_role=_target_role(payload, state)),
    )
    if not result.success:
        return HandlerOutcome.fail(
            "Rewrite failed",
            retryable=True,
            fallback="manual_edit",
            suggestion="Try editing the bullet manually in the editor",
        )
    if not result.validation_passed:
        return HandlerOutcome.fail("Validation failed", retryable=True, validation=result.validation_items)

    min_gain = config.action_execution.min_score_gain
    if result.estimated_score_gain < min_gain:
        return HandlerOutcome.fail(
            "Insufficient score gain",
            fallback="manual_edit",
            suggestion="The improvement was not significant enough. Consider manual editing.",
            gain=result.estimated_score_gain,
        )
    return _apply_and_report(task, state, collaborators, result)


def execute_improve_summary(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> HandlerOutcome:
    payload = task.payload
    if not isinstance(payload, ImproveResumePayload):
        return HandlerOutcome.fail(f"Expected ImproveResumePayload, got {type(payload).__name__}")
    result = _rewrite(
        collaborators,
        RewriteRequest(
            rewrite_type="summary",
            text=payload.bullet_text or "",
            bullets=list(payload.weak_bullets),
            target_role=_target_role(payload, state),
            evidence_scope="resume",
        ),
    )
    if not result.success or not result.validation_passed:
        return HandlerOutcome.fail("Summary rewrite failed", retryable=True, fallback="manual_edit")
    return _apply_and_report(task, state, collaborators, result)


def execute_improve_section(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> HandlerOutcome:
    payload = task.payload
    if not isinstance(payload, ImproveResumePayload):
        return HandlerOutcome.fail(f"Expected ImproveResumePayload, got {type(payload).__name__}")
    if not payload.section:
        return HandlerOutcome.fail("No section specified for improvement")

    result = _rewrite(
        collaborators,
        RewriteRequest(
            rewrite_type="section",
            section=payload.section,
            bullets=list(payload.weak_bullets),
            target_role=_target_role(payload, state),
        ),
    )
    if not result.success or not result.validation_passed:
        return HandlerOutcome.fail("Section rewrite failed", retryable=True, fallback="manual_edit")
    return _apply_and_report(task, state, collaborators, result)


def execute_improve_resume(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> HandlerOutcome:
    payload = task.payload
    if not isinstance(payload, ImproveResumePayload):
        return HandlerOutcome.fail(f"Expected ImproveResumePayload, got {type(payload).__name__}")
    if payload.rewrite_type == "summary":
        return execute_improve_summary(task, state, collaborators, config, now=now)
    if payload.rewrite_type == "section":
        return execute_improve_section(task, state, collaborators, config, now=now)
    return execute_improve_bullet(task, state, collaborators, config, now=now)

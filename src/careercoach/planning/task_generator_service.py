from __future__ import annotations

import hashlib
import json
import logging
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from careercoach.config import OrchestratorConfig
from careercoach.core.state import (
    ActionBlueprint,
    ActionType,
    ExecutionMode,
    FocusArea,
    FollowUpApplication,
    StalenessSeverity,
    StrategyMode,
    UserState,
)
from careercoach.planning.task_schema import (
    ApplyToJobPayload,
    CollectMissingInfoPayload,
    FollowUpPayload,
    ImproveResumePayload,
    RefreshStatePayload,
    Task,
    UpdateTargetsPayload,
)

log = logging.getLogger("task_generator")

DEFAULT_ACTION_TYPE = ActionType.IMPROVE_RESUME
MAX_TASK_MINUTES = 120
MAX_MINIMAL_TASKS = 5

_PLACEHOLDER = re.compile(r"\{[^}]+\}")

_FOCUS_BY_ACTION: Dict[ActionType, FocusArea] = {
    ActionType.IMPROVE_RESUME: FocusArea.RESUME_IMPROVEMENT,
    ActionType.APPLY_TO_JOB: FocusArea.APPLICATIONS,
    ActionType.FOLLOW_UP: FocusArea.FOLLOW_UPS,
    ActionType.UPDATE_TARGETS: FocusArea.STRATEGY,
    ActionType.COLLECT_MISSING_INFO: FocusArea.STRATEGY,
    ActionType.REFRESH_STATE: FocusArea.STRATEGY,
}


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def _digest(*parts: Any) -> str:
    raw = json.dumps([str(p) for p in parts], ensure_ascii=False)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]


def make_task_id(*parts: Any) -> str:
    """Deterministic task id derived from the inputs that produced the task."""
    return f"task_{_digest(*parts)}"


def make_plan_id(plan_type: str, *parts: Any) -> str:
    return f"plan_{plan_type}_{_digest(plan_type, *parts)}"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def render_template(template: str, variables: Mapping[str, Any]) -> str:
    """Substitute {name} placeholders; placeholders without a value are dropped."""
    out = template
    for key, value in variables.items():
        if value is not None and value != "":
            out = out.replace("{" + key + "}", str(value))
    out = _PLACEHOLDER.sub("", out)
    return re.sub(r"\s{2,}", " ", out).strip()


def _bullet_preview(bullet: Optional[str], max_length: int = 40) -> Optional[str]:
    if not bullet:
        return None
    if len(bullet) <= max_length:
        return bullet
    return bullet[: max_length - 3] + "..."


def _render(config: OrchestratorConfig, key: str, variables: Mapping[str, Any], fallback: Tuple[str, str]) -> Tuple[str, str]:
    tpl = config.task_templates.get(key)
    if tpl is None:
        return fallback
    title = render_template(tpl.title, variables) or fallback[0]
    description = render_template(tpl.description, variables) or fallback[1]
    return title, description


def _template_key(action_type: ActionType, payload: Any) -> str:
    if isinstance(payload, ImproveResumePayload):
        if payload.rewrite_type == "summary":
            return "improve_summary"
        if payload.rewrite_type == "section":
            return "improve_section"
        return "improve_bullet"
    return {
        ActionType.APPLY_TO_JOB: "apply_to_job",
        ActionType.FOLLOW_UP: "followup_application",
        ActionType.UPDATE_TARGETS: "update_targets",
        ActionType.COLLECT_MISSING_INFO: "collect_missing_info",
        ActionType.REFRESH_STATE: "refresh_state",
    }.get(action_type, "improve_bullet")


# ---------------------------------------------------------------------------
# Estimates & focus
# ---------------------------------------------------------------------------


def estimate_task_time(action_type: ActionType, payload: Any, config: OrchestratorConfig) -> int:
    """
    Description: Per-kind base estimate scaled by payload size.
    Layer: L5
    Input: action kind, payload, config
    Output: minutes, capped at 120
    """
    base = config.base_minutes(action_type)
    if isinstance(payload, ImproveResumePayload):
        items = len(payload.weak_bullets) or 1
        return max(1, min(base * items, MAX_TASK_MINUTES))
    return min(max(base, 5), MAX_TASK_MINUTES)


def focus_area_for(action_type: ActionType) -> FocusArea:
    return _FOCUS_BY_ACTION.get(action_type, FocusArea.STRATEGY)


def determine_focus_area(tasks: Iterable[Task]) -> FocusArea:
    """Plurality focus area; ties keep the first area in FocusArea order. Empty -> strategy."""
    counts: Dict[FocusArea, int] = {area: 0 for area in FocusArea}
    for t in tasks:
        counts[focus_area_for(t.action_type)] += 1

    best = FocusArea.STRATEGY
    best_count = 0
    for area, count in counts.items():
        if count > best_count:
            best, best_count = area, count
    return best


def _execution_for(action_type: ActionType, config: OrchestratorConfig) -> ExecutionMode:
    return config.execution_modes.get(action_type, ExecutionMode.USER_ONLY)


def _state_evidence(state: UserState) -> List[str]:
    refs: List[str] = []
    if state.resume.resume_score is not None:
        refs.append(f"state.resume.score={state.resume.resume_score:g}")
    if state.current_strategy_mode is not None:
        refs.append(f"state.strategy_mode={state.current_strategy_mode.value}")
    return refs


# ---------------------------------------------------------------------------
# Blueprint -> Task
# ---------------------------------------------------------------------------


def map_blueprint_type(blueprint_type: str) -> ActionType:
    """Unknown blueprint types degrade to the default action kind."""
    try:
        return ActionType((blueprint_type or "").strip().lower())
    except ValueError:
        log.info("Unknown blueprint type %r, using %s", blueprint_type, DEFAULT_ACTION_TYPE.value)
        return DEFAULT_ACTION_TYPE


def _payload_from_blueprint(action_type: ActionType, bp: ActionBlueprint, state: UserState) -> Tuple[Any, bool]:
    """Returns (payload, incomplete_data)."""
    e = bp.entities
    if action_type == ActionType.IMPROVE_RESUME:
        rewrite_type = bp.rewrite_type
        if rewrite_type is None:
            rewrite_type = "section" if (e.section and e.bullet_index is None and not e.bullet) else "bullet"
        payload = ImproveResumePayload(
            rewrite_type=rewrite_type,
            bullet_index=e.bullet_index,
            bullet_text=e.bullet,
            section=e.section,
            target_role=state.user_profile.target_roles[0] if state.user_profile.target_roles else None,
            issues=list(bp.issues),
            weak_bullets=list(bp.weak_bullets),
            estimated_score_gain=bp.estimated_score_gain if bp.estimated_score_gain is not None else bp.constraints.min_score_gain,
        )
        incomplete = rewrite_type == "bullet" and not (e.bullet or bp.weak_bullets)
        return payload, incomplete
    if action_type == ActionType.APPLY_TO_JOB:
        payload = ApplyToJobPayload(
            job_id=e.job_id,
            job_title=e.job_title or "",
            company=e.company or "",
            match_score=e.match_score,
            platform=e.platform,
        )
        return payload, e.job_id is None
    if action_type == ActionType.FOLLOW_UP:
        payload = FollowUpPayload(
            application_id=e.application_id,
            job_title=e.job_title or "",
            company=e.company or "",
        )
        return payload, e.application_id is None
    if action_type == ActionType.UPDATE_TARGETS:
        return UpdateTargetsPayload(objective=bp.objective, current_targets=list(state.user_profile.target_roles)), False
    if action_type == ActionType.COLLECT_MISSING_INFO:
        return CollectMissingInfoPayload(objective=bp.objective), False
    return RefreshStatePayload(reason=bp.objective or None), False


def create_task_from_blueprint(
    blueprint: ActionBlueprint,
    state: UserState,
    config: OrchestratorConfig,
    *,
    now: datetime,
    index: int = 0,
    base_priority: Optional[int] = None,
) -> Task:
    """
    Description: Convert one strategy blueprint into a concrete, evidence-anchored Task.
    Layer: L5
    Input: blueprint, state snapshot, config, reference time, position in the blueprint list
    Output: Task (priority = blueprint priority x 10 unless base_priority is given)
    """
    action_type = map_blueprint_type(blueprint.type)
    payload, incomplete = _payload_from_blueprint(action_type, blueprint, state)
    e = blueprint.entities

    variables = {
        "bullet_preview": _bullet_preview(e.bullet),
        "bullet_index": e.bullet_index,
        "section": e.section,
        "target_role": getattr(payload, "target_role", None),
        "job_title": e.job_title,
        "company": e.company,
        "platform": e.platform or "company website",
        "objective": blueprint.objective,
        "missing_field": "required information",
    }
    title, description = _render(
        config,
        _template_key(action_type, payload),
        variables,
        (blueprint.objective or action_type.value.replace("_", " ").capitalize(), blueprint.why or blueprint.objective),
    )

    evidence: List[str] = []
    if e.bullet_index is not None:
        evidence.append(f"resume.bullet[{e.bullet_index}]")
    if e.section:
        evidence.append(f"resume.section.{e.section}")
    if e.job_id:
        evidence.append(f"job.{e.job_id}")
    if e.application_id:
        evidence.append(f"application.{e.application_id}")
    evidence.extend(_state_evidence(state))

    why_now = blueprint.why.strip()
    if not why_now:
        mode = state.current_strategy_mode.value if state.current_strategy_mode else "current strategy"
        why_now = f"Recommended for {mode}: {blueprint.objective or action_type.value.replace('_', ' ')}"

    priority = base_priority if base_priority is not None else blueprint.priority * 10

    return Task(
        task_id=make_task_id(
            "blueprint", index, action_type.value, blueprint.objective,
            blueprint.entities.model_dump_json(), state.state_version,
        ),
        action_type=action_type,
        title=title or action_type.value,
        description=description or why_now,
        execution=_execution_for(action_type, config),
        payload=payload,
        priority=max(0, min(100, priority)),
        estimated_minutes=estimate_task_time(action_type, payload, config),
        why_now=why_now,
        evidence_refs=evidence,
        incomplete_data=incomplete,
        created_at=now,
    )


# ---------------------------------------------------------------------------
# Derived tasks
# ---------------------------------------------------------------------------


def follow_up_why_now(days: int) -> str:
    if 7 <= days <= 10:
        return f"Optimal follow-up window: {days} days since application."
    if days > 10:
        return f"Application aging: {days} days without response. Follow-up recommended."
    return f"Application submitted {days} days ago. Consider following up."


def create_follow_up_task(
    follow_up: FollowUpApplication,
    config: OrchestratorConfig,
    *,
    now: datetime,
    base_priority: int = 70,
) -> Task:
    payload = FollowUpPayload(
        application_id=follow_up.application_id,
        job_title=follow_up.job_title,
        company=follow_up.company,
        days_since_application=follow_up.days_since_application,
        follow_up_count=follow_up.follow_up_count,
    )
    title, description = _render(
        config,
        "followup_application",
        {"job_title": follow_up.job_title, "company": follow_up.company, "days": follow_up.days_since_application},
        (
            f"Follow up on {follow_up.company} application",
            f"Check status and send follow-up for your {follow_up.job_title} application at {follow_up.company}.",
        ),
    )
    return Task(
        task_id=make_task_id("follow_up", follow_up.application_id, follow_up.days_since_application, follow_up.follow_up_count),
        action_type=ActionType.FOLLOW_UP,
        title=title,
        description=description,
        execution=_execution_for(ActionType.FOLLOW_UP, config),
        payload=payload,
        priority=base_priority,
        estimated_minutes=estimate_task_time(ActionType.FOLLOW_UP, payload, config),
        why_now=follow_up_why_now(follow_up.days_since_application),
        evidence_refs=[
            f"application.{follow_up.application_id}",
            f"application.days_since={follow_up.days_since_application}",
            f"application.follow_up_count={follow_up.follow_up_count}",
        ],
        created_at=now,
    )


def create_refresh_task(
    reason: str,
    config: OrchestratorConfig,
    *,
    now: datetime,
    priority: int = 90,
    severity: StalenessSeverity = "warning",
) -> Task:
    reason = reason or "state_needs_refresh"
    payload = RefreshStatePayload(reason=reason, severity=severity)
    title, description = _render(
        config,
        "refresh_state",
        {"reason": reason},
        (
            "Update Your Information",
            f"Your data is outdated: {reason}. Please update your resume and application status.",
        ),
    )
    return Task(
        task_id=make_task_id("refresh", reason, severity),
        action_type=ActionType.REFRESH_STATE,
        title=title,
        description=description,
        execution=_execution_for(ActionType.REFRESH_STATE, config),
        payload=payload,
        priority=priority,
        estimated_minutes=estimate_task_time(ActionType.REFRESH_STATE, payload, config),
        why_now="Your information needs updating before we can make good recommendations.",
        evidence_refs=[f"state.freshness.staleness_reason={reason}"],
        created_at=now,
    )


def create_strategy_review_task(
    reason: str,
    config: OrchestratorConfig,
    *,
    now: datetime,
    priority: int = 75,
    mode: Optional[StrategyMode] = None,
) -> Task:
    reason = reason.strip() or "Your plan has no concrete actions yet."
    payload = UpdateTargetsPayload(objective=reason)
    title, description = _render(config, "review_strategy", {}, ("Review your job search strategy", reason))
    evidence = ["analysis.mode_reasoning"]
    if mode is not None:
        evidence.append(f"state.strategy_mode={mode.value}")
    return Task(
        task_id=make_task_id("strategy_review", reason),
        action_type=ActionType.UPDATE_TARGETS,
        title=title,
        description=description,
        execution=_execution_for(ActionType.UPDATE_TARGETS, config),
        payload=payload,
        priority=priority,
        estimated_minutes=estimate_task_time(ActionType.UPDATE_TARGETS, payload, config),
        why_now=reason,
        evidence_refs=evidence,
        created_at=now,
    )


def _infer_action(text: str) -> Tuple[ActionType, ExecutionMode]:
    lowered = text.lower()
    if "resume" in lowered or "bullet" in lowered:
        return ActionType.IMPROVE_RESUME, ExecutionMode.USER_CONFIRMED
    if "apply" in lowered:
        return ActionType.APPLY_TO_JOB, ExecutionMode.USER_CONFIRMED
    if "follow" in lowered:
        return ActionType.FOLLOW_UP, ExecutionMode.USER_ONLY
    return ActionType.UPDATE_TARGETS, ExecutionMode.USER_ONLY


def generate_minimal_tasks_from_actions(
    priority_actions: Iterable[str],
    state: UserState,
    *,
    now: datetime,
) -> List[Task]:
    """
    Description: Fallback when the analysis carries no blueprints.
    Layer: L5
    Input: plain-text priority actions
    Output: up to 5 generic tasks, kind inferred by keyword
    """
    mode_ref = (
        f"state.strategy_mode={state.current_strategy_mode.value}"
        if state.current_strategy_mode
        else "state.strategy_mode=default"
    )
    tasks: List[Task] = []
    actions = [a for a in priority_actions if a and a.strip()]
    for i, action in enumerate(actions[:MAX_MINIMAL_TASKS]):
        action_type, execution = _infer_action(action)
        payload: Any
        if action_type == ActionType.IMPROVE_RESUME:
            payload = ImproveResumePayload()
        elif action_type == ActionType.APPLY_TO_JOB:
            payload = ApplyToJobPayload()
        elif action_type == ActionType.FOLLOW_UP:
            payload = FollowUpPayload()
        else:
            payload = UpdateTargetsPayload(objective=action)
        tasks.append(
            Task(
                task_id=make_task_id("action", i, action, state.state_version),
                action_type=action_type,
                title=action[:100],
                description=action,
                execution=execution,
                payload=payload,
                priority=50,
                estimated_minutes=15,
                why_now=f"Recommended by strategy analysis: {action}",
                evidence_refs=["analysis.priority_actions", mode_ref],
                incomplete_data=action_type in (ActionType.APPLY_TO_JOB, ActionType.FOLLOW_UP),
                created_at=now,
            )
        )
    return tasks

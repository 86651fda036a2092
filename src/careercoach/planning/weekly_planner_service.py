from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

from careercoach.config import OrchestratorConfig, TargetRange
from careercoach.core.clock import as_utc
from careercoach.core.state import FocusArea, StrategyAnalysis, StrategyMode, UserState
from careercoach.planning.plan_schema import WeeklyPlan
from careercoach.planning.priority_scorer_service import prioritize_tasks
from careercoach.planning.task_generator_service import (
    create_follow_up_task,
    create_refresh_task,
    create_strategy_review_task,
    create_task_from_blueprint,
    focus_area_for,
    generate_minimal_tasks_from_actions,
    make_plan_id,
)
from careercoach.planning.task_schema import Task, ValidationIssue
from careercoach.state.state_schema import StalenessAssessment

log = logging.getLogger("weekly_planner")

SAFE_PLAN_MAX_FOLLOW_UPS = 3
FOCUS_BLEND_ACTUAL = 0.7
_FALLBACK_RANGE = TargetRange(min=5, max=8)


# ---------------------------------------------------------------------------
# Week arithmetic
# ---------------------------------------------------------------------------


def current_monday(now: datetime) -> date:
    d = as_utc(now).date()
    return d - timedelta(days=d.weekday())


def week_end_for(week_start: date) -> date:
    return week_start + timedelta(days=6)


def week_dates(week_start: date) -> List[date]:
    return [week_start + timedelta(days=i) for i in range(7)]


# ---------------------------------------------------------------------------
# Target & focus
# ---------------------------------------------------------------------------


def calculate_weekly_target(state: UserState, analysis: StrategyAnalysis, config: OrchestratorConfig) -> int:
    """
    Description: Weekly application target.
    Layer: L5
    Input: state, analysis, config
    Output: int in [0, 50]; 0 under critical staleness, else a valid user override,
            else the mode range (minimum unless APPLY_MODE with a ready resume)
    """
    if state.is_critically_stale:
        return 0

    mode = analysis.recommended_mode
    override = state.user_profile.weekly_app_target
    if override is not None and 0 <= override <= config.weekly_planning.max_app_target:
        if not (mode == StrategyMode.APPLY_MODE and override < 1):
            return override
        log.info("Ignoring weekly target override %d: APPLY_MODE needs at least 1", override)

    rng = config.mode_base_targets.get(mode, _FALLBACK_RANGE)
    if mode in (StrategyMode.IMPROVE_RESUME_FIRST, StrategyMode.RETHINK_TARGETS):
        return rng.min

    resume_score = state.resume.resume_score or 0
    if resume_score < config.state_freshness.min_resume_score_for_apply:
        return rng.min
    return (rng.min + rng.max) // 2


def _preset_for(mode: StrategyMode, config: OrchestratorConfig) -> Dict[FocusArea, float]:
    preset = config.mode_focus_presets.get(mode) or config.mode_focus_presets.get(StrategyMode.APPLY_MODE) or {}
    return {area: float(preset.get(area, 0.0)) for area in FocusArea}


def calculate_focus_mix(task_pool: List[Task], mode: StrategyMode, config: OrchestratorConfig) -> Dict[FocusArea, float]:
    """Blend the observed task-kind distribution (70%) with the mode preset (30%)."""
    preset = _preset_for(mode, config)
    counts: Dict[FocusArea, int] = {area: 0 for area in FocusArea}
    for t in task_pool:
        counts[focus_area_for(t.action_type)] += 1

    total = sum(counts.values())
    if total == 0:
        return preset

    return {
        area: round(FOCUS_BLEND_ACTUAL * (counts[area] / total) + (1 - FOCUS_BLEND_ACTUAL) * preset[area], 4)
        for area in FocusArea
    }


def distribute_tasks_across_week(task_pool: List[Task], week_start: date, config: OrchestratorConfig) -> Dict[str, List[str]]:
    """
    Description: Assign pool tasks to days in pool order.
    Layer: L5
    Input: prioritized pool, Monday, config
    Output: ISO date -> task ids; a day takes max_tasks_per_day before moving on (wraps after Sunday)
    """
    per_day = max(1, config.daily_planning.max_tasks_per_day)
    dates = [d.isoformat() for d in week_dates(week_start)]
    hints: Dict[str, List[str]] = {}
    day = 0
    for t in task_pool:
        bucket = hints.setdefault(dates[day], [])
        bucket.append(t.task_id)
        if len(bucket) >= per_day:
            day = (day + 1) % 7
    return hints


# ---------------------------------------------------------------------------
# Safe plan
# ---------------------------------------------------------------------------


def generate_minimal_safe_plan(
    state: UserState,
    reason: str,
    config: OrchestratorConfig,
    *,
    now: datetime,
    previous_plan: Optional[WeeklyPlan] = None,
) -> WeeklyPlan:
    """
    Description: Minimal plan used when the state cannot be trusted.
    Layer: L5
    Input: state, staleness reason, config, reference time
    Output: WeeklyPlan with a refresh task (priority 100) + up to 3 follow-ups, target 0
    """
    reason = reason or "critical_staleness"
    week_start = current_monday(now)

    tasks: List[Task] = [create_refresh_task(reason, config, now=now, priority=100, severity="critical")]
    eligible = [fu for fu in state.followups.applications_needing_followup if fu.suggested_action == "FOLLOW_UP"]
    for fu in eligible[:SAFE_PLAN_MAX_FOLLOW_UPS]:
        tasks.append(create_follow_up_task(fu, config, now=now, base_priority=70))

    has_follow_ups = len(tasks) > 1
    focus_mix = {area: 0.0 for area in FocusArea}
    if has_follow_ups:
        focus_mix[FocusArea.FOLLOW_UPS] = 0.3
        focus_mix[FocusArea.STRATEGY] = 0.7
    else:
        focus_mix[FocusArea.STRATEGY] = 1.0

    mode = state.current_strategy_mode or StrategyMode.IMPROVE_RESUME_FIRST
    version = previous_plan.plan_version + 1 if previous_plan else 1

    log.warning("Generating minimal safe weekly plan: %s", reason)
    return WeeklyPlan(
        plan_id=make_plan_id("weekly", "safe", week_start, state.state_version, reason, version),
        plan_version=version,
        week_start=week_start,
        week_end=week_end_for(week_start),
        strategy_mode=mode,
        target_applications=0,
        focus_mix=focus_mix,
        task_pool=tasks,
        daily_plan_hints=distribute_tasks_across_week(tasks, week_start, config),
        input_state_version=state.state_version,
        strategy_analysis_version="",
        generated_at=now,
        is_safe_plan=True,
    )


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def validate_weekly_plan(plan: WeeklyPlan, config: OrchestratorConfig) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []

    if not plan.task_pool:
        issues.append(ValidationIssue(code="EMPTY_PLAN", severity="critical", message="Weekly plan has no tasks"))

    if plan.target_applications > config.weekly_planning.max_app_target:
        issues.append(
            ValidationIssue(
                code="INVALID_TARGET",
                severity="critical",
                message=f"Target {plan.target_applications} out of range (0-{config.weekly_planning.max_app_target})",
                field="target_applications",
            )
        )

    focus_sum = sum(plan.focus_mix.values())
    if focus_sum < 0.9 or focus_sum > 1.1:
        issues.append(
            ValidationIssue(
                code="INVALID_FOCUS_MIX",
                severity="warning",
                message=f"Focus mix sums to {focus_sum:.2f}, expected ~1.0",
                field="focus_mix",
            )
        )
    missing_areas = [a.value for a in FocusArea if a not in plan.focus_mix]
    if missing_areas:
        issues.append(
            ValidationIssue(
                code="INVALID_FOCUS_MIX",
                severity="warning",
                message=f"Focus mix is missing areas: {', '.join(missing_areas)}",
                field="focus_mix",
            )
        )

    for t in plan.task_pool:
        if not 0 <= t.priority <= 100:
            issues.append(
                ValidationIssue(
                    code="PRIORITY_OUT_OF_BOUNDS",
                    severity="warning",
                    message=f"Task {t.task_id} priority {t.priority} not in [0,100]",
                    task_ids=[t.task_id],
                )
            )
        if not t.why_now.strip():
            issues.append(
                ValidationIssue(
                    code="MISSING_WHY_NOW",
                    severity="warning",
                    message=f"Task {t.task_id} missing why_now",
                    task_ids=[t.task_id],
                )
            )

    pool_ids = {t.task_id for t in plan.task_pool}
    unknown = sorted({tid for ids in plan.daily_plan_hints.values() for tid in ids if tid not in pool_ids})
    if unknown:
        issues.append(
            ValidationIssue(
                code="UNKNOWN_HINTED_TASK",
                severity="warning",
                message=f"Day hints reference {len(unknown)} task(s) not in the pool",
                field="daily_plan_hints",
                task_ids=unknown,
            )
        )

    return issues


def plan_passed(issues: List[ValidationIssue]) -> bool:
    return not any(i.severity == "critical" for i in issues)


def _log_issues(kind: str, issues: List[ValidationIssue]) -> None:
    for i in issues:
        log.warning("%s plan issue [%s/%s]: %s", kind, i.severity, i.code, i.message)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------


def generate_weekly_plan(
    state: UserState,
    analysis: StrategyAnalysis,
    config: OrchestratorConfig,
    *,
    now: datetime,
    previous_plan: Optional[WeeklyPlan] = None,
    staleness: Optional[StalenessAssessment] = None,
) -> WeeklyPlan:
    """
    Description: Build the weekly plan (critical-stale, normal or fallback path).
    Layer: L5
    Input: state snapshot, strategy analysis, config, reference time,
           previous plan (for version bump), optional staleness verdict
    Output: WeeklyPlan; same inputs produce the same plan
    """
    if state.is_critically_stale or (staleness is not None and staleness.is_critical):
        reason = (staleness.reason if staleness is not None else None) or state.freshness.staleness_reason
        return generate_minimal_safe_plan(state, reason or "critical_staleness", config, now=now, previous_plan=previous_plan)

    mode = analysis.recommended_mode
    week_start = current_monday(now)
    target = calculate_weekly_target(state, analysis, config)

    tasks: List[Task] = [
        create_task_from_blueprint(bp, state, config, now=now, index=i)
        for i, bp in enumerate(analysis.action_blueprints)
    ]
    if not tasks:
        log.warning("No action blueprints in analysis, using priority_actions fallback")
        tasks = generate_minimal_tasks_from_actions(analysis.priority_actions, state, now=now)

    for fu in state.followups.applications_needing_followup:
        if fu.suggested_action == "FOLLOW_UP":
            tasks.append(create_follow_up_task(fu, config, now=now))

    warning_stale = (state.freshness.is_stale and state.freshness.staleness_severity == "warning") or (
        staleness is not None and staleness.severity == "warning"
    )
    if warning_stale:
        reason = state.freshness.staleness_reason or (staleness.reason if staleness is not None else None)
        tasks.append(create_refresh_task(reason or "state_needs_refresh", config, now=now, priority=90))

    if not tasks:
        reason = analysis.mode_reasoning.primary_reason or "No concrete actions were recommended this week."
        tasks.append(create_strategy_review_task(reason, config, now=now, mode=mode))

    pool = prioritize_tasks(tasks, state, mode, config, now=now)[: config.weekly_planning.task_pool_max]
    version = previous_plan.plan_version + 1 if previous_plan else 1

    plan = WeeklyPlan(
        plan_id=make_plan_id(
            "weekly", week_start, mode.value, state.state_version, analysis.analysis_version, [t.task_id for t in pool], version,
        ),
        plan_version=version,
        week_start=week_start,
        week_end=week_end_for(week_start),
        strategy_mode=mode,
        target_applications=target,
        focus_mix=calculate_focus_mix(pool, mode, config),
        task_pool=pool,
        daily_plan_hints=distribute_tasks_across_week(pool, week_start, config),
        input_state_version=state.state_version,
        strategy_analysis_version=analysis.analysis_version,
        generated_at=now,
    )

    _log_issues("Weekly", validate_weekly_plan(plan, config))
    log.info("Weekly plan %s v%d: %d tasks, target %d (%s)", plan.plan_id, version, len(pool), target, mode.value)
    return plan

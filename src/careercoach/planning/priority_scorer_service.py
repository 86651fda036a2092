from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from careercoach.config import OrchestratorConfig
from careercoach.core.clock import as_utc
from careercoach.core.state import ActionType, StrategyMode, TaskStatus, UserState
from careercoach.planning.task_schema import (
    ApplyToJobPayload,
    FollowUpPayload,
    ImproveResumePayload,
    PriorityScore,
    PriorityScoreBreakdown,
    Task,
)

log = logging.getLogger("priority_scorer")

HIGH_PRIORITY_THRESHOLD = 70
MEDIUM_PRIORITY_THRESHOLD = 40

_LOW_ALIGNMENT = 40
_LOW_ALIGNMENT_PENALTY = 20.0
_CRITICAL_STALE_PENALTY = 30.0
_UNMET_DEPENDENCY_PENALTY = 15.0


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return max(lo, min(hi, x))


def round_half_up(x: float) -> int:
    """Round .5 away from zero for positive values (2.5 -> 3), unlike round()."""
    return int(math.floor(x + 0.5))


# ---------------------------------------------------------------------------
# Sub-scores
# ---------------------------------------------------------------------------


def follow_up_impact(days: int) -> float:
    if 7 <= days <= 10:
        return 80.0
    if 5 <= days <= 6:
        return 50.0
    if 11 <= days <= 14:
        return 60.0
    return 20.0


def follow_up_urgency(days: int) -> float:
    """Day-since-application curve; peaks in the 7-14 day window."""
    if 7 <= days <= 10:
        return 80.0
    if 11 <= days <= 14:
        return 90.0
    if days > 14:
        return 70.0
    if 5 <= days <= 6:
        return 40.0
    return 20.0


def calculate_impact(task: Task, state: UserState, mode: StrategyMode, config: OrchestratorConfig) -> float:
    """
    Description: Action-kind specific impact heuristic.
    Layer: L5
    Input: task, state, active mode, config
    Output: impact in [0, 100]
    """
    scoring = config.priority_scoring
    factors = scoring.impact_factors
    p = task.payload

    if isinstance(p, ImproveResumePayload):
        gain = p.estimated_score_gain if p.estimated_score_gain is not None else 5.0
        severity = sum(scoring.issue_severity.get(i, scoring.default_issue_severity) for i in p.issues)
        base = gain * 5 + severity
        if mode == StrategyMode.IMPROVE_RESUME_FIRST:
            base *= 1.5
        return _clamp(base * factors.resume_improvement)

    if isinstance(p, ApplyToJobPayload):
        match = p.match_score if p.match_score is not None else 50.0
        target = state.user_profile.weekly_app_target or config.weekly_planning.default_app_target
        submitted = state.pipeline_state.applications_last_7_days
        scarcity = max(0.0, 100.0 * (1 - submitted / max(target, 1)))
        base = 0.7 * match + 0.3 * scarcity
        if mode == StrategyMode.APPLY_MODE:
            base *= 1.3
        return _clamp(base * factors.application_submit)

    if isinstance(p, FollowUpPayload):
        return _clamp(follow_up_impact(p.days_since_application) * factors.followup)

    if task.action_type in (ActionType.UPDATE_TARGETS, ActionType.COLLECT_MISSING_INFO):
        base = 70.0 if mode == StrategyMode.RETHINK_TARGETS else 40.0
        return _clamp(base * factors.strategy_review)

    # refresh_state
    return 85.0 if state.freshness.is_stale else 30.0


def calculate_urgency(task: Task, config: OrchestratorConfig, *, now: datetime) -> float:
    """
    Description: Urgency from due time, or the follow-up day curve.
    Layer: L5
    Input: task, config, reference time
    Output: urgency in [0, 100]
    """
    if isinstance(task.payload, FollowUpPayload):
        return follow_up_urgency(task.payload.days_since_application)

    if task.due_at is None:
        return 30.0

    thresholds = config.priority_scoring.urgency_thresholds
    hours = (as_utc(task.due_at) - as_utc(now)).total_seconds() / 3600.0
    if hours < 0:
        return 100.0
    if hours < thresholds.due_today_hours:
        return 100.0
    if hours < thresholds.due_tomorrow_hours:
        return 80.0
    if hours < thresholds.weekly_deadline_days * 24:
        return 50.0
    return 20.0


def calculate_alignment(task: Task, mode: StrategyMode, config: OrchestratorConfig) -> float:
    return _clamp(float(config.alignment_for(mode, task.action_type)))


def calculate_confidence(task: Task, state: UserState) -> float:
    score = 70.0
    if state.freshness.is_stale:
        severity = state.freshness.staleness_severity
        if severity == "critical":
            score -= 40.0
        elif severity == "warning":
            score -= 20.0
    if task.incomplete_data:
        score -= 30.0
    refs = len(task.evidence_refs)
    if refs > 2:
        score += 20.0
    elif refs >= 1:
        score += 10.0
    return _clamp(score)


def calculate_time_cost(task: Task, config: OrchestratorConfig) -> float:
    return _clamp(task.estimated_minutes / config.priority_scoring.time_cost_reference_minutes * 100.0)


# ---------------------------------------------------------------------------
# Score
# ---------------------------------------------------------------------------


def score_priority(
    task: Task,
    state: UserState,
    mode: StrategyMode,
    config: OrchestratorConfig,
    *,
    now: datetime,
    pending_tasks: Optional[Sequence[Task]] = None,
) -> PriorityScore:
    """
    Description: Weighted, clamped, integer priority score with a transparent breakdown.
    Layer: L5
    Input: task, state snapshot, active mode, config, reference time, sibling tasks
    Output: PriorityScore (same inputs always give the same score)
    """
    weights = config.priority_scoring.weights
    notes: List[str] = []

    impact = calculate_impact(task, state, mode, config)
    urgency = calculate_urgency(task, config, now=now)
    alignment = calculate_alignment(task, mode, config)
    confidence = calculate_confidence(task, state)
    time_cost = calculate_time_cost(task, config)

    penalties = 0.0
    if alignment < _LOW_ALIGNMENT:
        penalties += _LOW_ALIGNMENT_PENALTY
        notes.append(f"penalty +{_LOW_ALIGNMENT_PENALTY:g}: {task.action_type.value} conflicts with {mode.value}")
    if state.is_critically_stale:
        penalties += _CRITICAL_STALE_PENALTY
        notes.append(f"penalty +{_CRITICAL_STALE_PENALTY:g}: state is critically stale")
    if task.dependencies and pending_tasks:
        by_id: Dict[str, Task] = {t.task_id: t for t in pending_tasks}
        for dep in task.dependencies:
            other = by_id.get(dep)
            if other is not None and other.status != TaskStatus.COMPLETED:
                penalties += _UNMET_DEPENDENCY_PENALTY
                notes.append(f"penalty +{_UNMET_DEPENDENCY_PENALTY:g}: waiting on {dep}")

    weighted = (
        weights.impact * impact
        + weights.urgency * urgency
        + weights.alignment * alignment
        + weights.confidence * confidence
        - weights.time_cost * time_cost
        - penalties
    )
    score = int(_clamp(round_half_up(weighted)))
    notes.insert(
        0,
        f"impact={impact:.1f} urgency={urgency:.1f} alignment={alignment:.1f} "
        f"confidence={confidence:.1f} time_cost={time_cost:.1f}",
    )

    return PriorityScore(
        task_id=task.task_id,
        score=score,
        breakdown=PriorityScoreBreakdown(
            impact=impact,
            urgency=urgency,
            alignment=alignment,
            confidence=confidence,
            time_cost=time_cost,
            penalties=penalties,
        ),
        notes=notes,
    )


def _sort_key(task: Task, score: PriorityScore) -> Tuple:
    due = task.due_at
    return (
        -score.score,
        due is None,
        as_utc(due).timestamp() if due is not None else 0.0,
        -score.breakdown.impact,
        task.estimated_minutes,
        task.task_id,
    )


def rank_tasks(
    tasks: Iterable[Task],
    state: UserState,
    mode: StrategyMode,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> List[Tuple[Task, PriorityScore]]:
    """Score every task against its siblings and sort with the full tie-break chain."""
    items = list(tasks)
    scored = []
    for t in items:
        ps = score_priority(t, state, mode, config, now=now, pending_tasks=items)
        scored.append((t.with_priority(ps.score), ps))
    scored.sort(key=lambda pair: _sort_key(pair[0], pair[1]))
    return scored


def prioritize_tasks(
    tasks: Iterable[Task],
    state: UserState,
    mode: StrategyMode,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> List[Task]:
    """
    Description: Re-score and order tasks.
    Layer: L5
    Input: tasks, state, mode, config, reference time
    Output: tasks with priority=score, ordered by score desc, then due date (none last),
            impact desc, estimated minutes asc, task_id
    """
    return [t for t, _ in rank_tasks(tasks, state, mode, config, now=now)]


def priority_level(score: int) -> Literal["high", "medium", "low"]:
    if score >= HIGH_PRIORITY_THRESHOLD:
        return "high"
    if score >= MEDIUM_PRIORITY_THRESHOLD:
        return "medium"
    return "low"


def is_high_priority(task: Task, threshold: int = HIGH_PRIORITY_THRESHOLD) -> bool:
    return task.priority >= threshold

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Iterable, Optional, Union

from careercoach.core.clock import as_utc
from careercoach.core.state import PlanningEvent, StrategyMode, UserState
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.tracking.progress_tracker_service import (
    expected_weekly_progress,
    track_daily_progress,
    track_weekly_progress,
)
from careercoach.tracking.tracking_schema import DeviationCheck, ProgressSnapshot, ReplanTrigger

log = logging.getLogger("replan_trigger")

MIN_DAYS_BETWEEN_REPLANS = 2
SEVERE_DEVIATION_THRESHOLD = 0.25
OVER_PERFORMANCE_THRESHOLD = 1.2
EARLY_COMPLETION_PERCENTAGE = 80

WEEKLY_REPLAN_EVENTS = frozenset(
    {PlanningEvent.STRATEGY_MODE_CHANGED, PlanningEvent.FIRST_INTERVIEW, PlanningEvent.FIRST_OFFER}
)

NO_REPLAN = "No re-plan needed"


def is_weekly_replan_event(event: PlanningEvent) -> bool:
    return event in WEEKLY_REPLAN_EVENTS


def is_mid_week(now: datetime) -> bool:
    return as_utc(now).isoweekday() in (3, 4)


def is_plan_expired(plan: Union[WeeklyPlan, DailyPlan], *, now: datetime) -> bool:
    """A weekly plan expires after its week_end, a daily plan after its date."""
    today = as_utc(now).date()
    if isinstance(plan, WeeklyPlan):
        return today > plan.week_end
    return today > plan.date


def can_replan_weekly(last_replan_at: Optional[datetime], *, now: datetime) -> bool:
    if last_replan_at is None:
        return True
    days = math.floor((as_utc(now) - as_utc(last_replan_at)).total_seconds() / 86400)
    return days >= MIN_DAYS_BETWEEN_REPLANS


def has_severe_deviation(progress: ProgressSnapshot, *, now: datetime) -> DeviationCheck:
    """
    Description: Compare completion with the day-of-week prorated expectation.
    Layer: L5
    Input: progress snapshot, reference time
    Output: under (< 25% of expected), over (> 120% of expected) or none
    """
    expected = expected_weekly_progress(now)
    actual = progress.completion_percentage
    if actual < expected * SEVERE_DEVIATION_THRESHOLD:
        return DeviationCheck(
            deviation=True,
            type="under",
            expected_percentage=expected,
            details=f"Progress ({actual}%) is severely behind expected ({expected:.0f}%)",
        )
    if actual > expected * OVER_PERFORMANCE_THRESHOLD:
        return DeviationCheck(
            deviation=True,
            type="over",
            expected_percentage=expected,
            details=f"Progress ({actual}%) exceeds expected ({expected:.0f}%)",
        )
    return DeviationCheck(deviation=False, expected_percentage=expected, details="Progress on track")


def should_replan_weekly(
    plan: WeeklyPlan,
    state: UserState,
    *,
    now: datetime,
    recommended_mode: Optional[StrategyMode] = None,
    recent_events: Iterable[PlanningEvent] = (),
    last_replan_at: Optional[datetime] = None,
    user_requested: bool = False,
) -> ReplanTrigger:
    """
    Description: Decide whether the weekly plan must be regenerated.
    Layer: L5
    Input: stored weekly plan, live state, reference time, latest recommended mode,
           recent events, time of the last weekly replan
    Output: ReplanTrigger (first matching rule wins: expired, user request, events,
            mode mismatch, mid-week deviation)
    """
    if is_plan_expired(plan, now=now):
        return ReplanTrigger(
            should_replan=True, trigger_type="plan_expired", reason="Weekly plan has expired",
            plan_type="weekly", urgency="high",
        )

    if user_requested:
        return ReplanTrigger(
            should_replan=True, trigger_type="user_requested", reason="Re-plan requested by user",
            plan_type="weekly", urgency="high",
        )

    for event in recent_events:
        if is_weekly_replan_event(event):
            mode_event = event == PlanningEvent.STRATEGY_MODE_CHANGED
            return ReplanTrigger(
                should_replan=True,
                trigger_type="strategy_mode_changed" if mode_event else "major_milestone",
                reason=f"Triggered by event: {event.value}",
                plan_type="weekly",
                urgency="high" if event == PlanningEvent.FIRST_OFFER else "medium",
            )

    if recommended_mode is not None and recommended_mode != plan.strategy_mode:
        return ReplanTrigger(
            should_replan=True,
            trigger_type="strategy_mode_changed",
            reason=f"Mode changed from {plan.strategy_mode.value} to {recommended_mode.value}",
            plan_type="weekly",
            urgency="medium",
        )

    if is_mid_week(now) and can_replan_weekly(last_replan_at, now=now):
        deviation = has_severe_deviation(track_weekly_progress(plan, state, now=now), now=now)
        if deviation.deviation:
            return ReplanTrigger(
                should_replan=True,
                trigger_type="severe_deviation",
                reason=deviation.details,
                plan_type="weekly",
                urgency="medium" if deviation.type == "under" else "low",
            )

    return ReplanTrigger(should_replan=False, reason=NO_REPLAN)


def should_replan_daily(
    plan: DailyPlan,
    state: UserState,
    *,
    now: datetime,
    recent_events: Iterable[PlanningEvent] = (),
) -> ReplanTrigger:
    if is_plan_expired(plan, now=now):
        return ReplanTrigger(
            should_replan=True, trigger_type="new_day", reason="It's a new day - need fresh daily plan",
            plan_type="daily", urgency="high",
        )

    events = set(recent_events)
    if PlanningEvent.TASK_FAILED in events:
        return ReplanTrigger(
            should_replan=True, trigger_type="task_failed", reason="A task failed - may need to adjust daily plan",
            plan_type="daily", urgency="medium",
        )

    if PlanningEvent.TASK_COMPLETED in events:
        progress = track_daily_progress(plan, state, now=now)
        if progress.completion_percentage >= EARLY_COMPLETION_PERCENTAGE:
            return ReplanTrigger(
                should_replan=True, trigger_type="major_task_completed",
                reason="Daily plan mostly complete - can add more tasks",
                plan_type="daily", urgency="low",
            )

    return ReplanTrigger(should_replan=False, reason=NO_REPLAN)


def should_replan(
    weekly_plan: WeeklyPlan,
    daily_plan: Optional[DailyPlan],
    state: UserState,
    *,
    now: datetime,
    recommended_mode: Optional[StrategyMode] = None,
    recent_events: Iterable[PlanningEvent] = (),
    last_weekly_replan_at: Optional[datetime] = None,
    user_requested: bool = False,
) -> ReplanTrigger:
    """Weekly rules first; a weekly replan always refreshes the daily plan too."""
    events = list(recent_events)
    weekly = should_replan_weekly(
        weekly_plan,
        state,
        now=now,
        recommended_mode=recommended_mode,
        recent_events=events,
        last_replan_at=last_weekly_replan_at,
        user_requested=user_requested,
    )
    if weekly.should_replan:
        log.info("Weekly replan triggered: %s (%s)", weekly.trigger_type, weekly.reason)
        return weekly.model_copy(update={"plan_type": "both"})

    if daily_plan is None:
        return ReplanTrigger(
            should_replan=True, trigger_type="new_day", reason="No daily plan for today yet",
            plan_type="daily", urgency="high",
        )
    return should_replan_daily(daily_plan, state, now=now, recent_events=events)

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar, Union

from pydantic import ValidationError

from careercoach.config import ConfigStore, OrchestratorConfig
from careercoach.core.clock import Clock, SystemClock
from careercoach.core.errors import (
    ErrorInfo,
    OrchestratorError,
    OrchestratorErrorCode,
    as_error_info,
    empty_plan_error,
    plan_generation_error,
    stale_state_error,
    state_validation_error,
)
from careercoach.core.state import PlanningEvent, StrategyAnalysis, TaskStatus, UserState
from careercoach.execution.action_executor_service import ActionExecutorService, CancellationToken, execution_summary
from careercoach.execution.collaborators import Collaborators
from careercoach.execution.execution_schema import ActionResult
from careercoach.orchestration.orchestration_schema import (
    DailyPlanResult,
    ExecutionReport,
    OrchestrationResult,
    PlanningContext,
    ProgressReport,
    RecentActivity,
    ReplanCheck,
    StrategyContext,
    WeeklyPlanResult,
)
from careercoach.planning.daily_planner_service import generate_daily_plan, validate_daily_plan
from careercoach.planning.plan_schema import DailyPlan, WeeklyPlan
from careercoach.planning.task_schema import Task
from careercoach.planning.weekly_planner_service import (
    generate_minimal_safe_plan,
    generate_weekly_plan,
    validate_weekly_plan,
)
from careercoach.state.staleness_service import generate_stale_daily_plan, generate_stale_weekly_plan
from careercoach.state.state_schema import StateValidationResult
from careercoach.state.state_validator_service import validate_raw_state
from careercoach.tracking.completion_checker_service import check_plan_completion, unverified_completions
from careercoach.tracking.progress_tracker_service import is_plan_on_track, track_daily_progress, track_weekly_progress
from careercoach.tracking.replan_trigger_service import should_replan, should_replan_daily, should_replan_weekly
from careercoach.tracking.tracking_schema import ReplanTrigger

log = logging.getLogger("orchestrator")

Plan = TypeVar("Plan", WeeklyPlan, DailyPlan)
AnalysisInput = Union[StrategyAnalysis, dict, str, None]


class Orchestrator:
    """
    Description: In-process facade over planning, tracking and execution.
    Layer: L5
    Input: ConfigStore, Clock, Collaborators, optional sleep callable
    Output: result objects carrying plans, issues and typed errors; no raw exception escapes

    The clock is read once per call and the same instant is passed to every
    planning function, so a call is deterministic for a fixed clock.
    """

    def __init__(
        self,
        config_store: Optional[ConfigStore] = None,
        clock: Optional[Clock] = None,
        collaborators: Optional[Collaborators] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        self._store = config_store or ConfigStore()
        self._clock = clock or SystemClock()
        self._collaborators = collaborators or Collaborators()
        self._sleep = sleep

    @property
    def config_store(self) -> ConfigStore:
        return self._store

    def executor(self, config: Optional[OrchestratorConfig] = None) -> ActionExecutorService:
        return ActionExecutorService(
            config or self._store.get(),
            self._collaborators,
            clock=self._clock,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Input resolution
    # ------------------------------------------------------------------

    def _resolve_state(
        self, raw_state: Any, config: OrchestratorConfig, now: datetime
    ) -> Tuple[UserState, StateValidationResult, List[ErrorInfo]]:
        state, validation = validate_raw_state(raw_state, config, now=now)
        errors: List[ErrorInfo] = []
        if state is None:
            version = raw_state.get("state_version", 0) if isinstance(raw_state, dict) else 0
            state = UserState.placeholder(state_version=version if isinstance(version, int) else 0, reason="invalid_state")
        if validation.critical_issues:
            errors.append(
                state_validation_error([i.model_dump() for i in validation.critical_issues], critical=True).to_info(now)
            )
        if validation.staleness.is_critical:
            errors.append(stale_state_error(validation.staleness.reason or "critical_staleness", "critical").to_info(now))
        return state, validation, errors

    @staticmethod
    def _resolve_analysis(analysis: AnalysisInput) -> StrategyAnalysis:
        if analysis is None:
            raise OrchestratorError(OrchestratorErrorCode.MISSING_ANALYSIS)
        if isinstance(analysis, StrategyAnalysis):
            return analysis
        try:
            if isinstance(analysis, str):
                return StrategyAnalysis.model_validate_json(analysis)
            return StrategyAnalysis.model_validate(analysis)
        except ValidationError as e:
            raise OrchestratorError(
                OrchestratorErrorCode.INVALID_INPUT,
                "Strategy analysis is invalid.",
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def plan_week(
        self,
        raw_state: Any,
        analysis: AnalysisInput,
        *,
        previous_plan: Optional[WeeklyPlan] = None,
    ) -> WeeklyPlanResult:
        """
        Description: Validate inputs then build the weekly plan.
        Layer: L5
        Input: raw or parsed state, strategy analysis, optional previous plan (version bump)
        Output: WeeklyPlanResult; critical validation or a missing analysis yields the safe plan
        """
        now = self._clock.now()
        try:
            config = self._store.get()
        except OrchestratorError as e:
            return WeeklyPlanResult(errors=[e.to_info(now)])

        state, validation, errors = self._resolve_state(raw_state, config, now)
        plan = self._build_weekly(state, validation, analysis, config, now, previous_plan, errors)
        issues = list(validation.issues)
        if plan is not None:
            issues += validate_weekly_plan(plan, config)
            if not plan.task_pool:
                errors.append(empty_plan_error().to_info(now))
        return WeeklyPlanResult(plan=plan, validation=validation, issues=issues, errors=errors)

    def _build_weekly(
        self,
        state: UserState,
        validation: StateValidationResult,
        analysis: AnalysisInput,
        config: OrchestratorConfig,
        now: datetime,
        previous_plan: Optional[WeeklyPlan],
        errors: List[ErrorInfo],
    ) -> Optional[WeeklyPlan]:
        try:
            if validation.requires_safe_plan:
                reason = validation.staleness.reason if validation.staleness.is_critical else "state_validation_failed"
                log.warning("Weekly plan falling back to safe plan: %s", reason)
                return generate_stale_weekly_plan(state, config, now=now, reason=reason, previous_plan=previous_plan)
            parsed = self._resolve_analysis(analysis)
            return generate_weekly_plan(
                state, parsed, config, now=now, previous_plan=previous_plan, staleness=validation.staleness
            )
        except OrchestratorError as e:
            errors.append(e.to_info(now))
            reason = "missing_analysis" if e.code == OrchestratorErrorCode.MISSING_ANALYSIS else "invalid_analysis"
        except Exception as e:
            log.exception("Weekly plan generation failed")
            errors.append(plan_generation_error("weekly", e).to_info(now))
            reason = "plan_generation_failed"

        try:
            return generate_minimal_safe_plan(state, reason, config, now=now, previous_plan=previous_plan)
        except Exception as e:
            log.exception("Safe weekly plan generation failed")
            errors.append(as_error_info(e, at=now))
            return None

    def plan_day(
        self,
        weekly_plan: WeeklyPlan,
        raw_state: Any,
        *,
        day: Optional[date] = None,
    ) -> DailyPlanResult:
        """Slice today's plan from a finished weekly plan."""
        now = self._clock.now()
        try:
            config = self._store.get()
        except OrchestratorError as e:
            return DailyPlanResult(errors=[e.to_info(now)])

        state, validation, errors = self._resolve_state(raw_state, config, now)
        plan = self._build_daily(weekly_plan, state, validation, config, now, day, errors)
        issues = list(validation.issues)
        if plan is not None:
            completed = {t.task_id for t in weekly_plan.task_pool if t.status == TaskStatus.COMPLETED}
            issues += validate_daily_plan(plan, config, completed_ids=completed)
        return DailyPlanResult(plan=plan, issues=issues, errors=errors)

    def _build_daily(
        self,
        weekly_plan: WeeklyPlan,
        state: UserState,
        validation: StateValidationResult,
        config: OrchestratorConfig,
        now: datetime,
        day: Optional[date],
        errors: List[ErrorInfo],
    ) -> Optional[DailyPlan]:
        try:
            if validation.requires_safe_plan:
                return generate_stale_daily_plan(
                    state, config, now=now, weekly_plan=weekly_plan, date=day, reason=validation.staleness.reason
                )
            return generate_daily_plan(weekly_plan, state, config, now=now, date=day)
        except Exception as e:
            log.exception("Daily plan generation failed")
            errors.append(plan_generation_error("daily", e).to_info(now))
        try:
            return generate_stale_daily_plan(state, config, now=now, weekly_plan=weekly_plan, date=day, reason="plan_generation_failed")
        except Exception as e:
            log.exception("Safe daily plan generation failed")
            errors.append(as_error_info(e, at=now))
            return None

    def orchestrate(
        self,
        raw_state: Any,
        analysis: AnalysisInput,
        *,
        weekly_plan: Optional[WeeklyPlan] = None,
        daily_plan: Optional[DailyPlan] = None,
        recent_events: Iterable[PlanningEvent] = (),
        last_weekly_replan_at: Optional[datetime] = None,
        user_requested: bool = False,
    ) -> OrchestrationResult:
        """
        Description: Full planning cycle: reuse stored plans or regenerate them.
        Layer: L5
        Input: state, analysis, stored weekly/daily plans, recent events
        Output: OrchestrationResult; the weekly plan is finished before the daily slice is cut
        """
        now = self._clock.now()
        events = list(recent_events)
        result = OrchestrationResult()
        try:
            config = self._store.get()
        except OrchestratorError as e:
            result.errors.append(e.to_info(now))
            return result

        state, validation, errors = self._resolve_state(raw_state, config, now)
        result.errors.extend(errors)
        result.issues.extend(validation.issues)

        try:
            parsed: Optional[StrategyAnalysis] = self._resolve_analysis(analysis)
        except OrchestratorError:
            parsed = None

        weekly = weekly_plan
        if weekly is not None and not validation.requires_safe_plan:
            trigger = should_replan_weekly(
                weekly,
                state,
                now=now,
                recommended_mode=parsed.recommended_mode if parsed else None,
                recent_events=events,
                last_replan_at=last_weekly_replan_at,
                user_requested=user_requested,
            )
            if trigger.should_replan:
                log.info("Regenerating weekly plan: %s", trigger.reason)
                weekly = None
        elif weekly is not None and not weekly.is_safe_plan:
            weekly = None

        if weekly is None:
            weekly = self._build_weekly(state, validation, analysis, config, now, weekly_plan, result.errors)
            result.weekly_regenerated = True
            if weekly is not None:
                result.issues.extend(validate_weekly_plan(weekly, config))
        if weekly is None:
            return result
        result.weekly_plan = weekly

        daily = daily_plan
        stale_slice = daily is not None and (
            daily.generated_from_weekly_plan_id != weekly.plan_id or daily.weekly_plan_version != weekly.plan_version
        )
        if daily is None or stale_slice or should_replan_daily(daily, state, now=now, recent_events=events).should_replan:
            daily = self._build_daily(weekly, state, validation, config, now, None, result.errors)
            result.daily_regenerated = True
            if daily is not None:
                completed = {t.task_id for t in weekly.task_pool if t.status == TaskStatus.COMPLETED}
                result.issues.extend(validate_daily_plan(daily, config, completed_ids=completed))
        result.daily_plan = daily

        result.context = self.build_planning_context(weekly, daily, state, parsed, now=now)
        result.replan_needed = should_replan(
            weekly,
            daily,
            state,
            now=now,
            recommended_mode=parsed.recommended_mode if parsed else None,
            last_weekly_replan_at=now if result.weekly_regenerated else last_weekly_replan_at,
        )
        return result

    def build_planning_context(
        self,
        weekly_plan: WeeklyPlan,
        daily_plan: Optional[DailyPlan],
        state: UserState,
        analysis: Optional[StrategyAnalysis] = None,
        *,
        now: Optional[datetime] = None,
    ) -> PlanningContext:
        progress = track_weekly_progress(weekly_plan, state, now=now or self._clock.now())
        return PlanningContext(
            weekly_plan=weekly_plan,
            today_plan=daily_plan,
            strategy_context=StrategyContext(
                current_mode=weekly_plan.strategy_mode,
                mode_reasoning=analysis.mode_reasoning.primary_reason if analysis else "",
                weekly_target=weekly_plan.target_applications,
                target_rationale=f"Based on {weekly_plan.strategy_mode.value} mode and your current state",
            ),
            recent_activity=RecentActivity(
                completed_tasks_this_week=progress.completed_tasks,
                progress_percentage=progress.completion_percentage,
            ),
        )

    # ------------------------------------------------------------------
    # Tracking
    # ------------------------------------------------------------------

    def track_progress(
        self,
        plan: Union[WeeklyPlan, DailyPlan],
        raw_state: Any,
        *,
        previous_state: Optional[UserState] = None,
    ) -> ProgressReport:
        now = self._clock.now()
        try:
            config = self._store.get()
            state, _, errors = self._resolve_state(raw_state, config, now)
            if isinstance(plan, WeeklyPlan):
                snapshot = track_weekly_progress(plan, state, now=now)
                on_track = is_plan_on_track(snapshot, now=now)
                tasks: List[Task] = list(plan.task_pool)
            else:
                snapshot = track_daily_progress(plan, state, now=now)
                on_track = None
                tasks = list(plan.tasks)
            checks = check_plan_completion(tasks, state, previous_state)
            return ProgressReport(
                snapshot=snapshot,
                on_track=on_track,
                completion_checks=checks,
                unverified_task_ids=unverified_completions(checks),
                errors=errors,
            )
        except Exception as e:
            log.exception("Progress tracking failed")
            return ProgressReport(errors=[as_error_info(e, at=now)])

    def check_replan(
        self,
        weekly_plan: WeeklyPlan,
        daily_plan: Optional[DailyPlan],
        raw_state: Any,
        *,
        analysis: AnalysisInput = None,
        recent_events: Iterable[PlanningEvent] = (),
        last_weekly_replan_at: Optional[datetime] = None,
        user_requested: bool = False,
    ) -> ReplanCheck:
        now = self._clock.now()
        errors: List[ErrorInfo] = []
        try:
            config = self._store.get()
            state, _, errors = self._resolve_state(raw_state, config, now)
            mode = None
            if analysis is not None:
                mode = self._resolve_analysis(analysis).recommended_mode
            trigger = should_replan(
                weekly_plan,
                daily_plan,
                state,
                now=now,
                recommended_mode=mode,
                recent_events=recent_events,
                last_weekly_replan_at=last_weekly_replan_at,
                user_requested=user_requested,
            )
            return ReplanCheck(trigger=trigger, errors=errors)
        except Exception as e:
            log.exception("Replan check failed")
            errors.append(as_error_info(e, at=now))
            return ReplanCheck(trigger=ReplanTrigger(should_replan=False, reason="Replan check failed"), errors=errors)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_task(self, task: Task, raw_state: Any, *, token: Optional[CancellationToken] = None) -> ActionResult:
        now = self._clock.now()
        try:
            config = self._store.get()
            state, _, _ = self._resolve_state(raw_state, config, now)
            return self.executor(config).execute(task, state, token=token)
        except Exception as e:
            log.exception("Task %s execution crashed", task.task_id)
            return ActionResult(
                task_id=task.task_id,
                action_type=task.action_type,
                success=False,
                status=TaskStatus.FAILED,
                error=as_error_info(e, fallback=OrchestratorErrorCode.EXECUTION_FAILED, at=now),
                fallback="manual",
                suggestion="The automatic execution failed. Please try manually.",
                started_at=now,
                completed_at=self._clock.now(),
            )

    def execute_tasks(
        self,
        tasks: Iterable[Task],
        raw_state: Any,
        *,
        token: Optional[CancellationToken] = None,
    ) -> ExecutionReport:
        now = self._clock.now()
        try:
            config = self._store.get()
            state, _, errors = self._resolve_state(raw_state, config, now)
            batch = self.executor(config).execute_batch(tasks, state, token=token)
            return ExecutionReport(batch=batch, summary=execution_summary(batch), errors=errors)
        except Exception as e:
            log.exception("Batch execution crashed")
            return ExecutionReport(errors=[as_error_info(e, fallback=OrchestratorErrorCode.EXECUTION_FAILED, at=now)])

    # ------------------------------------------------------------------
    # Task status
    # ------------------------------------------------------------------

    @staticmethod
    def update_task_status(plan: Plan, task_id: str, status: TaskStatus) -> Plan:
        """Return a copy of ``plan`` with one task's status changed; unknown ids leave it unchanged."""
        tasks = plan.task_pool if isinstance(plan, WeeklyPlan) else plan.tasks
        if not any(t.task_id == task_id for t in tasks):
            log.warning("Task %s not found in plan %s", task_id, plan.plan_id)
            return plan
        return plan.with_task_status(task_id, status)

    def mark_task_completed(self, plan: Plan, task_id: str) -> Plan:
        return self.update_task_status(plan, task_id, TaskStatus.COMPLETED)

    def mark_task_skipped(self, plan: Plan, task_id: str) -> Plan:
        return self.update_task_status(plan, task_id, TaskStatus.SKIPPED)

    def apply_results(self, plan: Plan, results: Iterable[ActionResult]) -> Plan:
        """Fold execution results back into a plan's task statuses."""
        for r in results:
            plan = self.update_task_status(plan, r.task_id, r.status)
        return plan

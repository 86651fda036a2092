from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, TypedDict

from langchain_core.runnables import RunnableLambda
from langgraph.graph import END, StateGraph

from careercoach.config import OrchestratorConfig
from careercoach.core.clock import Clock, SystemClock
from careercoach.core.errors import (
    OrchestratorError,
    OrchestratorErrorCode,
    execution_failed_error,
    max_retries_error,
)
from careercoach.core.state import ActionType, ExecutionMode, TaskStatus, UserState
from careercoach.execution.application_actions import execute_apply_to_job
from careercoach.execution.collaborators import Collaborators
from careercoach.execution.execution_schema import ActionResult, BatchResult, ExecutionSummary, HandlerOutcome
from careercoach.execution.followup_actions import execute_follow_up
from careercoach.execution.resume_actions import execute_improve_resume
from careercoach.planning.task_schema import Task

log = logging.getLogger("action_executor")

Handler = Callable[..., HandlerOutcome]

MANUAL_SUGGESTION = "The automatic execution failed. Please try manually."

# Guidance for user-only kinds when a profile runs them through the executor anyway.
_GUIDANCE: Dict[ActionType, str] = {
    ActionType.UPDATE_TARGETS: "Please review and update your target roles in your profile.",
    ActionType.COLLECT_MISSING_INFO: "Please complete your profile with the missing information.",
    ActionType.REFRESH_STATE: "Please update your resume and application status.",
}


class CancellationToken:
    """Cooperative cancellation checked before every dispatch and around every wait."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


class _RetryGraphState(TypedDict, total=False):
    """
    Description: LangGraph state for one task's retry loop.
    Layer: L5
    Input: task + user state
    Output: last HandlerOutcome, attempt count, stop reason
    """

    task: Task
    user_state: UserState
    token: Optional[CancellationToken]
    started_at: datetime
    attempt: int
    outcome: Optional[HandlerOutcome]
    stop: Optional[str]


def _guidance_handler(task: Task, state: UserState, collaborators: Collaborators, config: OrchestratorConfig, *, now: datetime) -> HandlerOutcome:
    return HandlerOutcome.ok(suggestion=_GUIDANCE.get(task.action_type, task.description))


DEFAULT_HANDLERS: Dict[ActionType, Handler] = {
    ActionType.IMPROVE_RESUME: execute_improve_resume,
    ActionType.APPLY_TO_JOB: execute_apply_to_job,
    ActionType.FOLLOW_UP: execute_follow_up,
    ActionType.UPDATE_TARGETS: _guidance_handler,
    ActionType.COLLECT_MISSING_INFO: _guidance_handler,
    ActionType.REFRESH_STATE: _guidance_handler,
}


class ActionExecutorService:
    """
    Description: Executes tasks through collaborator handlers with bounded retries.
    Layer: L5
    Input: OrchestratorConfig, Collaborators, Clock, optional sleep callable
    Output: ActionResult per task (failures returned, not raised) and BatchResult per batch

    The retry loop is a compiled LangGraph: dispatch -> (wait -> dispatch)* -> END.
    ``sleep`` defaults to the clock's own sleep so a ManualClock simulates elapsed time.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        collaborators: Optional[Collaborators] = None,
        *,
        clock: Optional[Clock] = None,
        sleep: Optional[Callable[[float], None]] = None,
        handlers: Optional[Dict[ActionType, Handler]] = None,
    ) -> None:
        self._config = config
        self._collaborators = collaborators or Collaborators()
        self._clock = clock or SystemClock()
        self._sleep = sleep or getattr(self._clock, "sleep", None) or time.sleep
        self._handlers = dict(DEFAULT_HANDLERS)
        self._handlers.update(handlers or {})
        self._graph = self.build_langgraph()

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    def as_runnable(self) -> RunnableLambda:
        """
        Description: Expose the executor as a LangChain runnable.
        Layer: L5
        Input: dict(task, state, optional token)
        Output: ActionResult
        """
        def _run(payload: Dict[str, Any]) -> ActionResult:
            return self.execute(payload["task"], payload["state"], token=payload.get("token"))
        return RunnableLambda(_run)

    # ------------------------------------------------------------------
    # Graph
    # ------------------------------------------------------------------

    def build_langgraph(self) -> Any:
        g = StateGraph(_RetryGraphState)
        g.add_node("dispatch", self._dispatch_node)
        g.add_node("wait", self._wait_node)
        g.set_entry_point("dispatch")
        g.add_conditional_edges("dispatch", self._route_after_dispatch, {"wait": "wait", "END": END})
        g.add_conditional_edges("wait", self._route_after_wait, {"dispatch": "dispatch", "END": END})
        return g.compile()

    def _dispatch_node(self, state: _RetryGraphState) -> Dict[str, Any]:
        token = state.get("token")
        if token is not None and token.is_cancelled:
            return {"stop": "cancelled"}

        task = state["task"]
        attempt = state.get("attempt", 0) + 1
        handler = self._handlers.get(task.action_type)
        if handler is None:
            outcome = HandlerOutcome.fail(f"Unknown action type: {task.action_type.value}")
            return {"attempt": attempt, "outcome": outcome}

        try:
            outcome = handler(task, state["user_state"], self._collaborators, self._config, now=self._clock.now())
        except OrchestratorError as e:
            log.warning("Task %s attempt %d failed: %s", task.task_id, attempt, e.message)
            outcome = HandlerOutcome(
                success=False,
                error=e.message,
                error_code=e.code.value,
                retryable=e.code != OrchestratorErrorCode.COLLABORATOR_UNAVAILABLE,
            )
        except Exception as e:
            log.warning(
                "Task %s attempt %d/%d raised %s: %s",
                task.task_id, attempt, self._config.action_execution.max_retries + 1, type(e).__name__, e,
            )
            outcome = HandlerOutcome(success=False, error=str(e) or type(e).__name__, retryable=True)
        return {"attempt": attempt, "outcome": outcome}

    def _route_after_dispatch(self, state: _RetryGraphState) -> str:
        outcome = state.get("outcome")
        if state.get("stop") or outcome is None or outcome.success or not outcome.retryable:
            return "END"
        if state["attempt"] > self._config.action_execution.max_retries:
            return "END"
        return "wait"

    def _wait_node(self, state: _RetryGraphState) -> Dict[str, Any]:
        cfg = self._config.action_execution
        token = state.get("token")
        if token is not None and token.is_cancelled:
            return {"stop": "cancelled"}

        elapsed = (self._clock.now() - state["started_at"]).total_seconds()
        if elapsed + cfg.retry_delay_seconds > cfg.timeout_seconds:
            return {"stop": "timeout"}

        log.info("Retrying task %s in %.1fs", state["task"].task_id, cfg.retry_delay_seconds)
        self._sleep(cfg.retry_delay_seconds)
        if token is not None and token.is_cancelled:
            return {"stop": "cancelled"}
        return {}

    def _route_after_wait(self, state: _RetryGraphState) -> str:
        return "END" if state.get("stop") else "dispatch"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def execute(self, task: Task, state: UserState, *, token: Optional[CancellationToken] = None) -> ActionResult:
        """
        Description: Execute one task.
        Layer: L5
        Input: task, live state, optional cancellation token
        Output: ActionResult (user-only tasks succeed immediately without any collaborator call)
        """
        started = self._clock.now()

        if task.execution == ExecutionMode.USER_ONLY:
            return ActionResult(
                task_id=task.task_id,
                action_type=task.action_type,
                success=True,
                status=TaskStatus.PENDING,
                suggestion=f"This is a user-only task. {task.description}",
                started_at=started,
                completed_at=started,
            )

        max_retries = self._config.action_execution.max_retries
        final = self._graph.invoke(
            {"task": task, "user_state": state, "token": token, "started_at": started, "attempt": 0, "outcome": None, "stop": None},
            config={"recursion_limit": max(25, 2 * max_retries + 5)},
        )
        return self._to_result(task, final, started)

    def _to_result(self, task: Task, final: Dict[str, Any], started: datetime) -> ActionResult:
        attempts = final.get("attempt", 0)
        outcome: Optional[HandlerOutcome] = final.get("outcome")
        stop = final.get("stop")
        completed = self._clock.now()
        common = dict(
            task_id=task.task_id,
            action_type=task.action_type,
            attempts=attempts,
            retry_count=max(0, attempts - 1),
            started_at=started,
            completed_at=completed,
        )

        if outcome is not None and outcome.success:
            # A user-confirmed action is only prepared here; the user finishes it.
            status = TaskStatus.COMPLETED if task.execution == ExecutionMode.AUTO else TaskStatus.IN_PROGRESS
            return ActionResult(success=True, status=status, suggestion=outcome.suggestion, data=outcome.data, **common)

        last_error = outcome.error if outcome is not None else None
        if stop == "cancelled":
            error = OrchestratorError(OrchestratorErrorCode.EXECUTION_CANCELLED, details={"task_id": task.task_id})
            return ActionResult(success=False, status=TaskStatus.PENDING, error=error.to_info(completed), **common)

        if stop == "timeout":
            error = OrchestratorError(
                OrchestratorErrorCode.EXECUTION_TIMEOUT,
                details={"task_id": task.task_id, "attempts": attempts, "last_error": last_error},
            )
        elif outcome is not None and outcome.retryable and attempts > self._config.action_execution.max_retries:
            error = max_retries_error(task.task_id, attempts, last_error)
        elif outcome is not None and outcome.error_code:
            error = OrchestratorError(OrchestratorErrorCode(outcome.error_code), outcome.error, details={"task_id": task.task_id})
        else:
            error = execution_failed_error(task.task_id, last_error or "Unknown error")

        log.warning("Task %s failed after %d attempt(s): %s", task.task_id, attempts, error.message)
        return ActionResult(
            success=False,
            status=TaskStatus.FAILED,
            error=error.to_info(completed),
            fallback=(outcome.fallback if outcome is not None and outcome.fallback else "manual"),
            suggestion=(outcome.suggestion if outcome is not None and outcome.suggestion else MANUAL_SUGGESTION),
            data=outcome.data if outcome is not None else {},
            **common,
        )

    def execute_batch(
        self,
        tasks: Iterable[Task],
        state: UserState,
        *,
        token: Optional[CancellationToken] = None,
    ) -> BatchResult:
        """Run tasks in order; a failed task at or above the halt priority cancels the rest."""
        token = token or CancellationToken()
        halt_priority = self._config.action_execution.batch_halt_priority
        ordered = list(tasks)
        batch = BatchResult()

        for i, task in enumerate(ordered):
            if token.is_cancelled:
                batch.cancelled_task_ids = [t.task_id for t in ordered[i:]]
                break
            result = self.execute(task, state, token=token)
            batch.results.append(result)
            if not result.success and task.priority >= halt_priority:
                log.warning("Stopping batch: high-priority task %s failed", task.task_id)
                token.cancel(f"high-priority task {task.task_id} failed")
                batch.halted = True
                batch.halted_by = task.task_id
                batch.cancelled_task_ids = [t.task_id for t in ordered[i + 1:]]
                break
        return batch


def execution_summary(batch: BatchResult) -> ExecutionSummary:
    cancelled_in_flight = sum(
        1 for r in batch.results if r.error is not None and r.error.code == OrchestratorErrorCode.EXECUTION_CANCELLED
    )
    return ExecutionSummary(
        total=len(batch.results) + len(batch.cancelled_task_ids),
        successful=sum(1 for r in batch.results if r.success),
        failed=sum(1 for r in batch.results if not r.success) - cancelled_in_flight,
        cancelled=len(batch.cancelled_task_ids) + cancelled_in_flight,
        total_retries=sum(r.retry_count for r in batch.results),
    )

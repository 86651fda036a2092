from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, List, Optional

from careercoach.config import OrchestratorConfig
from careercoach.core.errors import OrchestratorErrorCode
from careercoach.core.state import ActionType, ExecutionMode, TaskStatus
from careercoach.execution.action_executor_service import (
    MANUAL_SUGGESTION,
    ActionExecutorService,
    CancellationToken,
    execution_summary,
)
from careercoach.execution.application_actions import application_status_summary, execute_apply_to_job, track_application_status
from careercoach.execution.collaborators import Collaborators, log_event_safely
from careercoach.execution.execution_schema import (
    ApplicationRecord,
    FollowUpRecord,
    JobPosting,
    RewriteRequest,
    RewriteResult,
    ScoringResult,
)
from careercoach.execution.followup_actions import execute_follow_up, follow_up_guidance, follow_up_summary, record_follow_up_sent
from careercoach.execution.resume_actions import (
    execute_improve_bullet,
    execute_improve_resume,
    execute_improve_section,
    execute_improve_summary,
    is_resume_ready_for_applications,
)
from careercoach.planning.task_schema import FollowUpPayload, ImproveResumePayload

GOOD_REWRITE = RewriteResult(
    improved_text="Cut payment API latency 40% by introducing request batching",
    evidence_map={"latency": "bullet[2]"},
    estimated_score_gain=5.0,
)


class FakeRewrite:
    def __init__(self, *responses: Any) -> None:
        self.responses = list(responses) or [GOOD_REWRITE]
        self.requests: List[RewriteRequest] = []

    def rewrite(self, request: RewriteRequest) -> RewriteResult:
        self.requests.append(request)
        r = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(r, Exception):
            raise r
        return r


class FakeScoring:
    def __init__(self) -> None:
        self.calls = 0

    def apply_rewrite_with_scoring(self, user_id: Optional[str], rewrite: RewriteResult) -> ScoringResult:
        self.calls += 1
        return ScoringResult(old_score=70, new_score=75, actual_gain=5)


class FakeApplications:
    def __init__(self, jobs: Optional[Dict[str, JobPosting]] = None, applications: Optional[Dict[str, ApplicationRecord]] = None) -> None:
        self.jobs = jobs if jobs is not None else {"job_9": JobPosting(id="job_9", title="SWE", company="Hooli", url="https://jobs.example/9")}
        self.applications = applications or {}
        self.created: List[Dict[str, Any]] = []
        self.follow_ups: List[str] = []

    def get_job_posting(self, job_id: str) -> Optional[JobPosting]:
        return self.jobs.get(job_id)

    def create_application(self, **kwargs: Any) -> ApplicationRecord:
        self.created.append(kwargs)
        return ApplicationRecord(id="app_new", job_title="SWE", company="Hooli")

    def get_application(self, application_id: str) -> Optional[ApplicationRecord]:
        return self.applications.get(application_id)

    def record_follow_up(self, application_id: str, message: Optional[str] = None) -> FollowUpRecord:
        self.follow_ups.append(application_id)
        return FollowUpRecord(follow_up_count=1)


class RecordingEvents:
    def __init__(self) -> None:
        self.events: List[Dict[str, Any]] = []

    def log_event(self, *, user_id: Optional[str], event_type: str, context: Dict[str, Any]) -> None:
        self.events.append({"user_id": user_id, "event_type": event_type, **context})


class BrokenEvents:
    def log_event(self, *, user_id: Optional[str], event_type: str, context: Dict[str, Any]) -> None:
        raise RuntimeError("event store offline")


def _executor(config, clock, **collab: Any) -> ActionExecutorService:
    collab.setdefault("events", RecordingEvents())
    return ActionExecutorService(config, Collaborators(**collab), clock=clock)


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------


def test_user_only_task_needs_no_collaborator(make_task, apply_state, config, clock) -> None:
    task = make_task(ActionType.FOLLOW_UP, execution=ExecutionMode.USER_ONLY)
    result = ActionExecutorService(config, clock=clock).execute(task, apply_state)

    assert result.success
    assert result.status == TaskStatus.PENDING
    assert result.attempts == 0
    assert result.suggestion == f"This is a user-only task. {task.description}"


def test_bullet_rewrite_applied_first_try(make_task, apply_state, config, clock) -> None:
    rewrite, scoring, events = FakeRewrite(), FakeScoring(), RecordingEvents()
    executor = _executor(config, clock, rewrite=rewrite, scoring=scoring, events=events)

    result = executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state)

    assert result.success
    assert result.status == TaskStatus.COMPLETED
    assert result.attempts == 1 and result.retry_count == 0
    assert result.data["new_score"] == 75
    assert rewrite.requests[0].text == "Led migration"
    assert rewrite.requests[0].target_role == "Software Engineer"
    assert scoring.calls == 1
    assert events.events[0]["event_type"] == "resume_rewrite_applied"
    assert events.events[0]["user_id"] == "user_1"
    assert clock.sleeps == []


def test_transient_errors_are_retried_with_delay(make_task, apply_state, config, clock) -> None:
    rewrite = FakeRewrite(RuntimeError("rate limited"), RuntimeError("rate limited"), GOOD_REWRITE)
    executor = _executor(config, clock, rewrite=rewrite, scoring=FakeScoring())

    result = executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state)

    assert result.success
    assert result.attempts == 3
    assert result.retry_count == 2
    assert clock.sleeps == [5.0, 5.0]


def test_retries_are_bounded(make_task, apply_state, config, clock) -> None:
    rewrite = FakeRewrite(RuntimeError("model down"))
    executor = _executor(config, clock, rewrite=rewrite, scoring=FakeScoring())

    result = executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state)

    assert not result.success
    assert result.status == TaskStatus.FAILED
    assert result.attempts == config.action_execution.max_retries + 1
    assert len(rewrite.requests) == 3
    assert result.error.code == OrchestratorErrorCode.MAX_RETRIES_EXCEEDED
    assert result.error.details["last_error"] == "model down"
    assert result.fallback == "manual"
    assert result.suggestion == MANUAL_SUGGESTION


def test_failed_rewrite_falls_back_to_manual_edit(make_task, apply_state, config, clock) -> None:
    executor = _executor(config, clock, rewrite=FakeRewrite(RewriteResult(success=False)), scoring=FakeScoring())
    result = executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state)
    assert result.attempts == 3
    assert result.fallback == "manual_edit"


def test_precondition_failures_are_not_retried(make_task, apply_state, config, clock) -> None:
    rewrite = FakeRewrite()
    executor = _executor(config, clock, rewrite=rewrite, scoring=FakeScoring())

    task = make_task(ActionType.IMPROVE_RESUME, payload=ImproveResumePayload())
    result = executor.execute(task, apply_state)

    assert not result.success
    assert result.attempts == 1
    assert result.error.code == OrchestratorErrorCode.EXECUTION_FAILED
    assert result.error.message == "No bullet provided for improvement"
    assert rewrite.requests == []
    assert clock.sleeps == []


def test_insufficient_gain_is_rejected(make_task, apply_state, config, clock) -> None:
    weak = RewriteResult(improved_text="Worked on APIs", estimated_score_gain=1.0)
    scoring = FakeScoring()
    executor = _executor(config, clock, rewrite=FakeRewrite(weak), scoring=scoring)

    result = executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state)

    assert not result.success
    assert result.attempts == 1
    assert result.fallback == "manual_edit"
    assert result.data["gain"] == 1.0
    assert scoring.calls == 0


def test_missing_collaborator_is_reported(make_task, apply_state, config, clock) -> None:
    result = ActionExecutorService(config, Collaborators(), clock=clock).execute(make_task(ActionType.IMPROVE_RESUME), apply_state)
    assert not result.success
    assert result.attempts == 1
    assert result.error.code == OrchestratorErrorCode.COLLABORATOR_UNAVAILABLE
    assert result.error.message == "RewriteService is unavailable."
    assert result.error.occurred_at == "2025-01-08T10:00:00Z"


def test_event_log_failure_does_not_fail_action(make_task, apply_state, config, clock) -> None:
    executor = _executor(config, clock, rewrite=FakeRewrite(), scoring=FakeScoring(), events=BrokenEvents())
    assert executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state).success
    assert not log_event_safely(BrokenEvents(), user_id=None, event_type="x", context={})


def test_timeout_stops_retrying(make_task, apply_state, clock) -> None:
    config = OrchestratorConfig.model_validate({"action_execution": {"timeout_seconds": 8}})
    executor = _executor(config, clock, rewrite=FakeRewrite(RuntimeError("slow")), scoring=FakeScoring())

    result = executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state)

    assert result.error.code == OrchestratorErrorCode.EXECUTION_TIMEOUT
    assert result.attempts == 2
    assert clock.sleeps == [5.0]
    assert result.error.occurred_at == "2025-01-08T10:00:05Z"


def test_cancelled_token_skips_dispatch(make_task, apply_state, config, clock) -> None:
    rewrite = FakeRewrite()
    token = CancellationToken()
    token.cancel("user left")

    result = _executor(config, clock, rewrite=rewrite, scoring=FakeScoring()).execute(
        make_task(ActionType.IMPROVE_RESUME), apply_state, token=token
    )

    assert not result.success
    assert result.status == TaskStatus.PENDING
    assert result.attempts == 0
    assert result.error.code == OrchestratorErrorCode.EXECUTION_CANCELLED
    assert rewrite.requests == []


def test_cancellation_during_backoff(make_task, apply_state, config, clock) -> None:
    token = CancellationToken()
    executor = ActionExecutorService(
        config,
        Collaborators(rewrite=FakeRewrite(RuntimeError("flaky")), scoring=FakeScoring()),
        clock=clock,
        sleep=lambda seconds: token.cancel("shutdown"),
    )

    result = executor.execute(make_task(ActionType.IMPROVE_RESUME), apply_state, token=token)

    assert result.attempts == 1
    assert result.error.code == OrchestratorErrorCode.EXECUTION_CANCELLED


def test_handlers_reject_mismatched_payloads(make_task, apply_state, config, now) -> None:
    collab = Collaborators(rewrite=FakeRewrite(), scoring=FakeScoring(), applications=FakeApplications())
    follow_up = FollowUpPayload(application_id="app_9", days_since_application=8)
    resume = ImproveResumePayload(bullet_text="Led migration")
    cases = [
        (execute_improve_resume, make_task(ActionType.IMPROVE_RESUME).model_copy(update={"payload": follow_up}), "ImproveResumePayload"),
        (execute_improve_bullet, make_task(ActionType.IMPROVE_RESUME).model_copy(update={"payload": follow_up}), "ImproveResumePayload"),
        (execute_improve_summary, make_task(ActionType.IMPROVE_RESUME).model_copy(update={"payload": follow_up}), "ImproveResumePayload"),
        (execute_improve_section, make_task(ActionType.IMPROVE_RESUME).model_copy(update={"payload": follow_up}), "ImproveResumePayload"),
        (execute_apply_to_job, make_task(ActionType.APPLY_TO_JOB).model_copy(update={"payload": resume}), "ApplyToJobPayload"),
        (execute_follow_up, make_task(ActionType.FOLLOW_UP).model_copy(update={"payload": resume}), "FollowUpPayload"),
    ]
    for handler, task, expected in cases:
        outcome = handler(task, apply_state, collab, config, now=now)
        assert not outcome.success
        assert not outcome.retryable
        assert outcome.error.startswith(f"Expected {expected}, got ")


# ---------------------------------------------------------------------------
# Applications & follow-ups
# ---------------------------------------------------------------------------


def test_apply_prepares_draft_application(make_task, apply_state, config, clock) -> None:
    apps, events = FakeApplications(), RecordingEvents()
    executor = _executor(config, clock, applications=apps, events=events)
    task = make_task(ActionType.APPLY_TO_JOB, execution=ExecutionMode.USER_CONFIRMED)

    result = executor.execute(task, apply_state)

    assert result.success
    assert result.status == TaskStatus.IN_PROGRESS
    assert result.data["application_id"] == "app_new"
    assert result.suggestion.startswith("Ready to apply!")
    assert apps.created[0]["status"] == "draft"
    assert apps.created[0]["strategy_mode_at_apply"] == "APPLY_MODE"
    assert apps.created[0]["resume_version_id"] == "resume_1"
    assert events.events[0]["event_type"] == "application_created"


def test_apply_blocked_by_weak_resume(make_task, make_state, config, clock) -> None:
    apps = FakeApplications()
    task = make_task(ActionType.APPLY_TO_JOB, execution=ExecutionMode.USER_CONFIRMED)

    result = _executor(config, clock, applications=apps).execute(task, make_state(resume={"resume_score": 40}))

    assert not result.success
    assert result.attempts == 1
    assert result.error.message == "Resume score (40) is below minimum (60)"
    assert result.suggestion == "Improve your resume score before applying to jobs."
    assert apps.created == []


def test_apply_unknown_job(make_task, apply_state, config, clock) -> None:
    task = make_task(ActionType.APPLY_TO_JOB, execution=ExecutionMode.USER_CONFIRMED)
    result = _executor(config, clock, applications=FakeApplications(jobs={})).execute(task, apply_state)
    assert result.error.message == "Job not found"


def test_resume_readiness(make_state, config) -> None:
    assert is_resume_ready_for_applications(make_state(), config).ready
    no_resume = is_resume_ready_for_applications(make_state(resume={"master_resume_id": None}), config)
    assert no_resume.reason == "No resume uploaded"


def _follow_up_task(make_task, days: int = 8):
    return make_task(
        ActionType.FOLLOW_UP,
        execution=ExecutionMode.USER_CONFIRMED,
        payload=FollowUpPayload(application_id="app_1", company="Acme", days_since_application=days),
    )


def test_follow_up_guidance_in_window(make_task, apply_state, config, clock) -> None:
    apps = FakeApplications(applications={"app_1": ApplicationRecord(id="app_1", job_title="Backend Engineer", company="Acme")})
    result = _executor(config, clock, applications=apps).execute(_follow_up_task(make_task), apply_state)

    assert result.success
    assert "Acme" in result.data["template"]
    assert result.data["tips"][0] == "This is the optimal time for a first follow-up"


def test_follow_up_days_derived_from_application_date(make_task, apply_state, config, clock) -> None:
    applied = clock.now() - timedelta(days=12)
    apps = FakeApplications(applications={"app_1": ApplicationRecord(id="app_1", company="Acme", applied_at=applied)})
    result = _executor(config, clock, applications=apps).execute(_follow_up_task(make_task, days=0), apply_state)

    assert result.data["days_since_application"] == 12
    assert "about 12 days ago" in result.data["template"]


def test_follow_up_limit(make_task, apply_state, config, clock) -> None:
    apps = FakeApplications(applications={"app_1": ApplicationRecord(id="app_1", company="Acme", follow_up_count=2)})
    result = _executor(config, clock, applications=apps).execute(_follow_up_task(make_task), apply_state)

    assert not result.success
    assert result.attempts == 1
    assert result.error.message == "Maximum follow-ups reached (2)"


def test_follow_up_guidance_tiers() -> None:
    _, early = follow_up_guidance(3, 0, "Acme")
    assert early[0] == "Typically, wait 7-10 days before first follow-up"
    second, tips = follow_up_guidance(15, 1, "Acme")
    assert "once more" in second
    assert tips[-1] == "Consider moving on after this follow-up"


def test_recording_user_reported_actions(make_task, apply_state) -> None:
    apps, events = FakeApplications(), RecordingEvents()
    collaborators = Collaborators(applications=apps, events=events)
    task = _follow_up_task(make_task)

    sent = record_follow_up_sent(task, apply_state, collaborators, "Checking in")
    assert sent.success and sent.data["follow_up_count"] == 1
    assert apps.follow_ups == ["app_1"]

    status = track_application_status(task, apply_state, collaborators, "submitted")
    assert status.data == {"application_id": "app_1", "new_status": "submitted"}
    assert [e["event_type"] for e in events.events] == ["follow_up_sent", "application_status_changed"]


def test_summaries(apply_state, config) -> None:
    assert follow_up_summary(apply_state, config) == {"total": 1, "ready": 1, "upcoming": 0, "maxed_out": 0}
    apps = application_status_summary(apply_state, config)
    assert apps["progress"] == 50.0
    assert apps["target"] == 10


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


def test_high_priority_failure_halts_batch(make_task, apply_state, config, clock) -> None:
    executor = _executor(config, clock, rewrite=FakeRewrite(), scoring=FakeScoring())
    broken = make_task(name="broken", priority=95, payload=ImproveResumePayload())
    later = make_task(name="later", priority=40)
    last = make_task(name="last", priority=30)

    batch = executor.execute_batch([broken, later, last], apply_state)

    assert batch.halted
    assert batch.halted_by == broken.task_id
    assert [r.task_id for r in batch.results] == [broken.task_id]
    assert batch.cancelled_task_ids == [later.task_id, last.task_id]

    summary = execution_summary(batch)
    assert (summary.total, summary.successful, summary.failed, summary.cancelled) == (3, 0, 1, 2)


def test_low_priority_failure_does_not_halt(make_task, apply_state, config, clock) -> None:
    executor = _executor(config, clock, rewrite=FakeRewrite(), scoring=FakeScoring())
    broken = make_task(name="broken", priority=50, payload=ImproveResumePayload())
    fine = make_task(name="fine", priority=40)

    batch = executor.execute_batch([broken, fine], apply_state)

    assert not batch.halted
    assert [r.success for r in batch.results] == [False, True]
    assert execution_summary(batch).successful == 1


def test_executor_as_runnable(make_task, apply_state, config, clock) -> None:
    runnable = _executor(config, clock, rewrite=FakeRewrite(), scoring=FakeScoring()).as_runnable()
    result = runnable.invoke({"task": make_task(ActionType.IMPROVE_RESUME), "state": apply_state})
    assert result.success
    assert result.status == TaskStatus.COMPLETED

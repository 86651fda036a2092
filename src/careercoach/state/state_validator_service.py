from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError

from careercoach.config import OrchestratorConfig
from careercoach.core.state import UserState
from careercoach.planning.task_schema import ValidationIssue
from careercoach.state.staleness_service import assess_staleness
from careercoach.state.state_schema import StalenessAssessment, StateValidationResult

log = logging.getLogger("state_validator")

ACTION_RESOLVE_CRITICAL = "Critical issues must be resolved before planning"
ACTION_REFRESH = "Update your information for better recommendations"
ACTION_REVIEW_WARNINGS = "Consider addressing warnings for optimal planning"

_REQUIRED_SECTIONS = ("pipeline_state", "user_profile")


def _issue_from_error(err: dict) -> ValidationIssue:
    loc = ".".join(str(p) for p in err.get("loc", ()))
    if err.get("type") == "missing" and loc in _REQUIRED_SECTIONS:
        return ValidationIssue(
            code=f"MISSING_{loc.upper()}",
            severity="critical",
            message=f"{loc.replace('_', ' ').capitalize()} is missing",
            field=loc,
        )
    return ValidationIssue(
        code="INVALID_FIELD",
        severity="critical",
        message=f"{loc or 'state'}: {err.get('msg', 'invalid value')}",
        field=loc or None,
    )


def parse_state(raw: Any) -> Tuple[Optional[UserState], List[ValidationIssue]]:
    """
    Description: Structural validation of a raw snapshot.
    Layer: L5
    Input: UserState, dict or JSON string
    Output: (UserState or None, critical issues)
    """
    if raw is None:
        return None, [ValidationIssue(code="MISSING_STATE", severity="critical", message="User state was not provided")]
    if isinstance(raw, UserState):
        return raw, []
    try:
        if isinstance(raw, (str, bytes)):
            return UserState.model_validate_json(raw), []
        return UserState.model_validate(raw), []
    except ValidationError as e:
        issues = [_issue_from_error(err) for err in e.errors(include_url=False)]
        log.warning("User state failed structural validation: %d issue(s)", len(issues))
        return None, issues


def _required_field_issues(state: UserState) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    provided = state.model_fields_set

    if not state.user_profile.target_roles:
        issues.append(
            ValidationIssue(
                code="NO_TARGET_ROLES",
                severity="warning",
                message="No target roles defined - recommendations will be generic",
                field="user_profile.target_roles",
            )
        )
    if "resume" not in provided:
        issues.append(
            ValidationIssue(code="MISSING_RESUME_STATE", severity="warning", message="Resume state is missing", field="resume")
        )
    if "freshness" not in provided:
        issues.append(
            ValidationIssue(code="MISSING_FRESHNESS", severity="warning", message="Freshness state is missing", field="freshness")
        )
    if "state_version" not in provided or state.state_version < 0:
        issues.append(
            ValidationIssue(
                code="INVALID_STATE_VERSION",
                severity="warning",
                message="State version is invalid or missing",
                field="state_version",
            )
        )
    return issues


def _consistency_issues(state: UserState) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []
    ps = state.pipeline_state

    if ps.applications_last_7_days > ps.applications_last_30_days:
        issues.append(
            ValidationIssue(
                code="INCONSISTENT_APP_COUNTS",
                severity="warning",
                message="Weekly applications exceed monthly (inconsistent)",
                field="pipeline_state.applications_last_7_days",
            )
        )
    if ps.applications_last_30_days > ps.total_applications:
        issues.append(
            ValidationIssue(
                code="INCONSISTENT_APP_COUNTS",
                severity="warning",
                message="Monthly applications exceed total (inconsistent)",
                field="pipeline_state.applications_last_30_days",
            )
        )
    if not 0 <= ps.interview_rate <= 1:
        issues.append(
            ValidationIssue(
                code="INVALID_INTERVIEW_RATE",
                severity="warning",
                message="Interview rate should be between 0 and 1",
                field="pipeline_state.interview_rate",
            )
        )

    score = state.resume.resume_score
    if score is not None and not 0 <= score <= 100:
        issues.append(
            ValidationIssue(
                code="INVALID_RESUME_SCORE",
                severity="warning",
                message="Resume score should be between 0 and 100",
                field="resume.resume_score",
            )
        )

    target = state.user_profile.weekly_app_target
    if target is not None and not 0 <= target <= 50:
        issues.append(
            ValidationIssue(
                code="INVALID_WEEKLY_TARGET",
                severity="warning",
                message="Weekly target should be between 0 and 50",
                field="user_profile.weekly_app_target",
            )
        )
    return issues


def _freshness_issues(state: UserState, assessment: StalenessAssessment, config: OrchestratorConfig) -> List[ValidationIssue]:
    if not assessment.is_stale:
        return []
    if assessment.source == "flag":
        return [
            ValidationIssue(
                code="STATE_IS_STALE",
                severity="critical" if assessment.is_critical else "warning",
                message=assessment.reason or "State is marked as stale",
                field="freshness.is_stale",
            )
        ]
    return [
        ValidationIssue(
            code="STATE_TOO_OLD",
            severity="warning",
            message=f"{assessment.reason} (max: {config.state_freshness.max_stale_days})",
            field="computed_at",
        )
    ]


def validate_state(state: UserState, config: OrchestratorConfig, *, now: datetime) -> StateValidationResult:
    """
    Description: Completeness, consistency and freshness checks for a parsed snapshot.
    Layer: L5
    Input: state snapshot, config, reference time
    Output: StateValidationResult (passed = no critical issue)
    """
    staleness = assess_staleness(state, config, now=now)
    issues = _required_field_issues(state) + _consistency_issues(state) + _freshness_issues(state, staleness, config)
    return _result(issues, staleness)


def _result(issues: List[ValidationIssue], staleness: StalenessAssessment) -> StateValidationResult:
    has_critical = any(i.severity == "critical" for i in issues)
    if has_critical:
        action: Optional[str] = ACTION_RESOLVE_CRITICAL
    elif staleness.is_stale:
        action = ACTION_REFRESH
    elif issues:
        action = ACTION_REVIEW_WARNINGS
    else:
        action = None

    for i in issues:
        log.debug("State issue [%s/%s]: %s", i.severity, i.code, i.message)
    return StateValidationResult(passed=not has_critical, issues=issues, staleness=staleness, recommended_action=action)


def validate_raw_state(raw: Any, config: OrchestratorConfig, *, now: datetime) -> Tuple[Optional[UserState], StateValidationResult]:
    """Parse then validate; a structurally broken snapshot yields (None, failed result)."""
    state, issues = parse_state(raw)
    if state is None:
        return None, _result(issues, StalenessAssessment(severity="critical", reason="invalid_state", source="structure"))
    return state, validate_state(state, config, now=now)


def is_state_valid_for_planning(state: UserState, config: OrchestratorConfig, *, now: datetime) -> bool:
    return validate_state(state, config, now=now).passed

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from careercoach.core.errors import OrchestratorError, OrchestratorErrorCode
from careercoach.core.state import ActionType, ExecutionMode, FocusArea, StrategyMode

log = logging.getLogger("config_store")


class WeeklyPlanningConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    default_app_target: int = Field(default=10, ge=0, le=50)
    min_app_target: int = Field(default=3, ge=0, le=50)
    max_app_target: int = Field(default=30, ge=0, le=50)
    task_pool_max: int = Field(default=50, ge=1, le=50)


class DailyPlanningConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_tasks_per_day: int = Field(default=5, ge=1)
    time_budget_minutes: int = Field(default=120, ge=1)
    require_one_high_priority: bool = True
    high_priority_threshold: int = Field(default=70, ge=0, le=100)


class ScoringWeights(BaseModel):
    """Description: Linear weights for the five priority sub-scores.
    Layer: L0
    Input: config profile
    Output: weights (time_cost is subtracted, the other four are summed)
    """

    model_config = ConfigDict(extra="forbid")

    impact: float = Field(default=0.40, ge=0)
    urgency: float = Field(default=0.35, ge=0)
    alignment: float = Field(default=0.25, ge=0)
    confidence: float = Field(default=0.10, ge=0)
    time_cost: float = Field(default=0.10, ge=0)

    @property
    def positive_total(self) -> float:
        return self.impact + self.urgency + self.alignment + self.confidence


class ImpactFactors(BaseModel):
    model_config = ConfigDict(extra="forbid")

    resume_improvement: float = 0.8
    application_submit: float = 0.9
    followup: float = 0.6
    strategy_review: float = 0.7


class UrgencyThresholds(BaseModel):
    model_config = ConfigDict(extra="forbid")

    due_today_hours: int = 24
    due_tomorrow_hours: int = 48
    weekly_deadline_days: int = 7


def _default_alignment_matrix() -> Dict[StrategyMode, Dict[ActionType, int]]:
    return {
        StrategyMode.IMPROVE_RESUME_FIRST: {
            ActionType.IMPROVE_RESUME: 100,
            ActionType.APPLY_TO_JOB: 30,
            ActionType.FOLLOW_UP: 70,
            ActionType.UPDATE_TARGETS: 40,
            ActionType.COLLECT_MISSING_INFO: 60,
            ActionType.REFRESH_STATE: 80,
        },
        StrategyMode.APPLY_MODE: {
            ActionType.IMPROVE_RESUME: 50,
            ActionType.APPLY_TO_JOB: 100,
            ActionType.FOLLOW_UP: 80,
            ActionType.UPDATE_TARGETS: 30,
            ActionType.COLLECT_MISSING_INFO: 40,
            ActionType.REFRESH_STATE: 60,
        },
        StrategyMode.RETHINK_TARGETS: {
            ActionType.IMPROVE_RESUME: 40,
            ActionType.APPLY_TO_JOB: 60,
            ActionType.FOLLOW_UP: 50,
            ActionType.UPDATE_TARGETS: 100,
            ActionType.COLLECT_MISSING_INFO: 80,
            ActionType.REFRESH_STATE: 70,
        },
    }


def _default_issue_severity() -> Dict[str, int]:
    return {
        "no_metrics": 15,
        "weak_verbs": 12,
        "generic_descriptions": 10,
        "vague_experience": 10,
        "poor_formatting": 8,
        "spelling_errors": 6,
        "too_short": 5,
    }


class PriorityScoringConfig(BaseModel):
    """Description: Scoring profile (weights, factors, lookup tables).
    Layer: L0
    Input: config profile
    Output: validated scoring profile; weights must match the profile total
    """

    model_config = ConfigDict(extra="forbid")

    weights: ScoringWeights = Field(default_factory=ScoringWeights)
    expected_weight_total: float = 1.10
    weight_tolerance: float = 0.01
    impact_factors: ImpactFactors = Field(default_factory=ImpactFactors)
    urgency_thresholds: UrgencyThresholds = Field(default_factory=UrgencyThresholds)
    alignment_matrix: Dict[StrategyMode, Dict[ActionType, int]] = Field(default_factory=_default_alignment_matrix)
    default_alignment: int = 50
    issue_severity: Dict[str, int] = Field(default_factory=_default_issue_severity)
    default_issue_severity: int = 10
    time_cost_reference_minutes: int = Field(default=120, ge=1)

    @model_validator(mode="after")
    def _check_weight_total(self) -> "PriorityScoringConfig":
        total = self.weights.positive_total
        if abs(total - self.expected_weight_total) > self.weight_tolerance:
            raise ValueError(
                f"positive scoring weights sum to {total:.3f}, expected {self.expected_weight_total:.2f}"
            )
        return self


class ActionExecutionConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_retries: int = Field(default=2, ge=0)
    retry_delay_seconds: float = Field(default=5.0, ge=0)
    timeout_seconds: float = Field(default=30.0, gt=0)
    max_follow_ups: int = Field(default=2, ge=0)
    batch_halt_priority: int = Field(default=90, ge=0, le=100)
    min_score_gain: float = Field(default=3.0, ge=0)


class StateFreshnessConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_stale_days: int = Field(default=7, ge=1)
    require_resume_for_apply: bool = True
    min_resume_score_for_apply: int = Field(default=60, ge=0, le=100)


class TargetRange(BaseModel):
    model_config = ConfigDict(extra="forbid")

    min: int = Field(ge=0, le=50)
    max: int = Field(ge=0, le=50)

    @model_validator(mode="after")
    def _ordered(self) -> "TargetRange":
        if self.min > self.max:
            raise ValueError("target range min must not exceed max")
        return self


class TaskTemplate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str
    description: str


def _default_mode_base_targets() -> Dict[StrategyMode, TargetRange]:
    return {
        StrategyMode.IMPROVE_RESUME_FIRST: TargetRange(min=2, max=3),
        StrategyMode.APPLY_MODE: TargetRange(min=8, max=12),
        StrategyMode.RETHINK_TARGETS: TargetRange(min=3, max=5),
    }


def _default_mode_focus_presets() -> Dict[StrategyMode, Dict[FocusArea, float]]:
    return {
        StrategyMode.IMPROVE_RESUME_FIRST: {
            FocusArea.RESUME_IMPROVEMENT: 0.7,
            FocusArea.APPLICATIONS: 0.1,
            FocusArea.FOLLOW_UPS: 0.1,
            FocusArea.STRATEGY: 0.1,
        },
        StrategyMode.APPLY_MODE: {
            FocusArea.RESUME_IMPROVEMENT: 0.2,
            FocusArea.APPLICATIONS: 0.5,
            FocusArea.FOLLOW_UPS: 0.2,
            FocusArea.STRATEGY: 0.1,
        },
        StrategyMode.RETHINK_TARGETS: {
            FocusArea.RESUME_IMPROVEMENT: 0.3,
            FocusArea.APPLICATIONS: 0.2,
            FocusArea.FOLLOW_UPS: 0.1,
            FocusArea.STRATEGY: 0.4,
        },
    }


def _default_base_time_estimates() -> Dict[ActionType, int]:
    return {
        ActionType.IMPROVE_RESUME: 20,
        ActionType.APPLY_TO_JOB: 30,
        ActionType.FOLLOW_UP: 10,
        ActionType.UPDATE_TARGETS: 15,
        ActionType.COLLECT_MISSING_INFO: 10,
        ActionType.REFRESH_STATE: 15,
    }


def _default_execution_modes() -> Dict[ActionType, ExecutionMode]:
    return {
        ActionType.IMPROVE_RESUME: ExecutionMode.AUTO,
        ActionType.APPLY_TO_JOB: ExecutionMode.USER_CONFIRMED,
        ActionType.FOLLOW_UP: ExecutionMode.USER_ONLY,
        ActionType.UPDATE_TARGETS: ExecutionMode.USER_ONLY,
        ActionType.COLLECT_MISSING_INFO: ExecutionMode.USER_ONLY,
        ActionType.REFRESH_STATE: ExecutionMode.USER_ONLY,
    }


def _default_task_templates() -> Dict[str, TaskTemplate]:
    return {
        "improve_bullet": TaskTemplate(
            title="Strengthen bullet: {bullet_preview}",
            description="Rewrite this bullet with measurable outcomes and stronger verbs: {bullet_preview}",
        ),
        "improve_summary": TaskTemplate(
            title="Sharpen your resume summary",
            description="Rewrite the summary so it leads with your strongest results for {target_role}.",
        ),
        "improve_section": TaskTemplate(
            title="Improve the {section} section",
            description="Tighten the {section} section of your resume: {objective}",
        ),
        "apply_to_job": TaskTemplate(
            title="Apply: {job_title} at {company}",
            description="Prepare and submit your application for {job_title} at {company} via {platform}.",
        ),
        "followup_application": TaskTemplate(
            title="Follow up: {job_title} at {company}",
            description="Send a short follow-up about your {job_title} application at {company} ({days} days ago).",
        ),
        "update_targets": TaskTemplate(
            title="Review your target roles",
            description="Revisit your target roles and search criteria: {objective}",
        ),
        "collect_missing_info": TaskTemplate(
            title="Complete your profile",
            description="Add {missing_field} so recommendations can be more specific. {objective}",
        ),
        "refresh_state": TaskTemplate(
            title="Update your job search information",
            description="Your information is out of date ({reason}). Refresh your resume and application status.",
        ),
        "review_strategy": TaskTemplate(
            title="Review your job search strategy",
            description="Take a few minutes to review what is and is not working in your search.",
        ),
    }


class OrchestratorConfig(BaseSettings):
    """
    Description: Planning engine configuration (defaults + CAREERCOACH_* env + .env).
    Layer: L0
    Input: environment, e.g. CAREERCOACH_DAILY_PLANNING__TIME_BUDGET_MINUTES=90
    Output: validated, read-only configuration
    """

    model_config = SettingsConfigDict(
        env_prefix="CAREERCOACH_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    weekly_planning: WeeklyPlanningConfig = Field(default_factory=WeeklyPlanningConfig)
    daily_planning: DailyPlanningConfig = Field(default_factory=DailyPlanningConfig)
    priority_scoring: PriorityScoringConfig = Field(default_factory=PriorityScoringConfig)
    action_execution: ActionExecutionConfig = Field(default_factory=ActionExecutionConfig)
    state_freshness: StateFreshnessConfig = Field(default_factory=StateFreshnessConfig)

    mode_base_targets: Dict[StrategyMode, TargetRange] = Field(default_factory=_default_mode_base_targets)
    mode_focus_presets: Dict[StrategyMode, Dict[FocusArea, float]] = Field(default_factory=_default_mode_focus_presets)
    base_time_estimates: Dict[ActionType, int] = Field(default_factory=_default_base_time_estimates)
    execution_modes: Dict[ActionType, ExecutionMode] = Field(default_factory=_default_execution_modes)
    task_templates: Dict[str, TaskTemplate] = Field(default_factory=_default_task_templates)

    @model_validator(mode="after")
    def _check_target_bounds(self) -> "OrchestratorConfig":
        wp = self.weekly_planning
        if not (wp.min_app_target <= wp.default_app_target <= wp.max_app_target):
            raise ValueError("weekly_planning targets must satisfy min <= default <= max")
        return self

    def base_minutes(self, action_type: ActionType) -> int:
        return int(self.base_time_estimates.get(action_type, 15))

    def alignment_for(self, mode: StrategyMode, action_type: ActionType) -> int:
        row = self.priority_scoring.alignment_matrix.get(mode) or {}
        return int(row.get(action_type, self.priority_scoring.default_alignment))


def _deep_merge(base: Dict[str, Any], patch: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for k, v in patch.items():
        if isinstance(v, BaseModel):
            v = v.model_dump()
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


class ConfigStore:
    """
    Description: Explicit, invalidatable cache around one OrchestratorConfig.
    Layer: L0
    Input: loader callable (defaults to reading env/.env)
    Output: get() / invalidate() / override()
    """

    def __init__(self, loader: Optional[Callable[[], OrchestratorConfig]] = None) -> None:
        self._loader = loader or OrchestratorConfig
        self._cached: Optional[OrchestratorConfig] = None

    @classmethod
    def from_config(cls, config: OrchestratorConfig) -> "ConfigStore":
        return cls(loader=lambda: config)

    def get(self) -> OrchestratorConfig:
        if self._cached is None:
            try:
                self._cached = self._loader()
            except ValidationError as e:
                raise OrchestratorError(
                    OrchestratorErrorCode.INVALID_CONFIG,
                    details={"errors": e.errors(include_url=False, include_context=False)},
                ) from e
            log.debug("Configuration loaded")
        return self._cached

    def invalidate(self) -> None:
        self._cached = None

    def override(self, **sections: Any) -> OrchestratorConfig:
        """Replace the cached config with a copy whose sections are deep-merged with ``sections``."""
        base = self.get().model_dump()
        try:
            updated = OrchestratorConfig.model_validate(_deep_merge(base, sections))
        except ValidationError as e:
            raise OrchestratorError(
                OrchestratorErrorCode.INVALID_CONFIG,
                details={"errors": e.errors(include_url=False, include_context=False)},
            ) from e
        self._cached = updated
        return updated

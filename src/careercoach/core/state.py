from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class StrategyMode(str, Enum):
    IMPROVE_RESUME_FIRST = "IMPROVE_RESUME_FIRST"
    APPLY_MODE = "APPLY_MODE"
    RETHINK_TARGETS = "RETHINK_TARGETS"


class ActionType(str, Enum):
    IMPROVE_RESUME = "improve_resume"
    APPLY_TO_JOB = "apply_to_job"
    FOLLOW_UP = "follow_up"
    UPDATE_TARGETS = "update_targets"
    COLLECT_MISSING_INFO = "collect_missing_info"
    REFRESH_STATE = "refresh_state"


class FocusArea(str, Enum):
    APPLICATIONS = "applications"
    RESUME_IMPROVEMENT = "resume_improvement"
    FOLLOW_UPS = "follow_ups"
    STRATEGY = "strategy"


class PlanningEvent(str, Enum):
    """Description: Events reported by the state engine that may force a replan.
    Layer: L4
    Input: event log
    Output: typed event tag
    """

    RESUME_UPLOADED = "resume_uploaded"
    RESUME_EDITED = "resume_edited"
    RESUME_SCORED = "resume_scored"
    RESUME_REWRITE_APPLIED = "resume_rewrite_applied"

    APPLICATION_CREATED = "application_created"
    APPLICATION_SUBMITTED = "application_submitted"
    APPLICATION_STATUS_CHANGED = "application_status_changed"
    APPLICATION_OUTCOME_REPORTED = "application_outcome_reported"
    FOLLOW_UP_SENT = "follow_up_sent"

    STRATEGY_MODE_CHANGED = "strategy_mode_changed"
    WEEKLY_TARGET_MET = "weekly_target_met"
    WEEKLY_TARGET_MISSED = "weekly_target_missed"

    STATE_WENT_STALE = "state_went_stale"
    STATE_REFRESHED = "state_refreshed"

    WEEKLY_PLAN_GENERATED = "weekly_plan_generated"
    DAILY_PLAN_GENERATED = "daily_plan_generated"
    TASK_COMPLETED = "task_completed"
    TASK_FAILED = "task_failed"
    TASK_SKIPPED = "task_skipped"
    PLAN_DEVIATION = "plan_deviation"

    FIRST_APPLICATION = "first_application"
    FIRST_INTERVIEW = "first_interview"
    FIRST_OFFER = "first_offer"


class ExecutionMode(str, Enum):
    AUTO = "auto"
    USER_CONFIRMED = "user_confirmed"
    USER_ONLY = "user_only"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


DONE_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED})


StalenessSeverity = Literal["none", "warning", "critical"]
ConfidenceLevel = Literal["low", "medium", "high"]


# ---------------------------------------------------------------------------
# UserState: snapshot owned by the state engine. Ranges are deliberately not
# enforced here; the state validator reports them as consistency issues.
# ---------------------------------------------------------------------------


class PipelineState(BaseModel):
    """Description: Application pipeline counters.
    Layer: L4
    Input: application records
    Output: aggregate counters
    """

    model_config = ConfigDict(extra="ignore")

    total_applications: int = 0
    applications_last_7_days: int = 0
    applications_last_30_days: int = 0
    interview_requests: int = 0
    interview_rate: float = 0.0
    offers: int = 0
    rejections: int = 0


class UserPreferences(BaseModel):
    model_config = ConfigDict(extra="ignore")

    work_arrangement: List[str] = Field(default_factory=list)
    locations: List[str] = Field(default_factory=list)
    salary_minimum: Optional[float] = None
    excluded_industries: List[str] = Field(default_factory=list)


class UserProfile(BaseModel):
    """Description: Career targets and the optional weekly application override.
    Layer: L4
    Input: profile record
    Output: normalized profile
    """

    model_config = ConfigDict(extra="ignore")

    target_roles: List[str] = Field(default_factory=list)
    target_seniority: Optional[str] = None
    years_experience: Optional[float] = None
    weekly_app_target: Optional[int] = None
    preferences: UserPreferences = Field(default_factory=UserPreferences)


class ResumeState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    master_resume_id: Optional[str] = None
    resume_score: Optional[float] = None
    last_resume_update: Optional[datetime] = None
    improvement_areas: List[str] = Field(default_factory=list)


class FreshnessState(BaseModel):
    """Description: Freshness flags computed by the state engine.
    Layer: L4
    Input: activity timestamps
    Output: explicit staleness flag + severity
    """

    model_config = ConfigDict(extra="ignore")

    last_resume_update: Optional[datetime] = None
    last_application: Optional[datetime] = None
    last_user_interaction: Optional[datetime] = None
    is_stale: bool = False
    staleness_reason: Optional[str] = None
    staleness_severity: StalenessSeverity = "none"


class FollowUpApplication(BaseModel):
    model_config = ConfigDict(extra="ignore")

    application_id: str
    job_title: str
    company: str
    applied_at: Optional[datetime] = None
    days_since_application: int = 0
    follow_up_count: int = 0
    last_follow_up: Optional[datetime] = None
    suggested_action: Literal["FOLLOW_UP", "DO_NOT_FOLLOW_UP"] = "FOLLOW_UP"
    reason: str = ""


class FollowUpsState(BaseModel):
    model_config = ConfigDict(extra="ignore")

    applications_needing_followup: List[FollowUpApplication] = Field(default_factory=list)


class StrategyHistoryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    from_mode: StrategyMode = Field(alias="from")
    to_mode: StrategyMode = Field(alias="to")
    changed_at: datetime
    reason: str = ""


class UserState(BaseModel):
    """Description: Point-in-time snapshot of a user's job search consumed by planning.
    Layer: L4
    Input: state engine output
    Output: immutable planning input (caller must not mutate during a call)

    pipeline_state and user_profile are required; a snapshot without them is
    structurally invalid. Other sections default to empty values; whether they
    were actually supplied is visible through ``model_fields_set``.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    user_id: Optional[str] = None
    pipeline_state: PipelineState
    user_profile: UserProfile
    current_strategy_mode: Optional[StrategyMode] = None
    strategy_history: List[StrategyHistoryEntry] = Field(default_factory=list)
    resume: ResumeState = Field(default_factory=ResumeState)
    freshness: FreshnessState = Field(default_factory=FreshnessState)
    followups: FollowUpsState = Field(default_factory=FollowUpsState)
    state_version: int = 0
    computed_at: Optional[datetime] = None

    @classmethod
    def placeholder(cls, *, state_version: int = 0, reason: str = "state_unavailable") -> "UserState":
        """Minimal snapshot used when the real one cannot be parsed."""
        return cls(
            pipeline_state=PipelineState(),
            user_profile=UserProfile(),
            freshness=FreshnessState(is_stale=True, staleness_reason=reason, staleness_severity="critical"),
            state_version=max(0, state_version),
        )

    @property
    def is_critically_stale(self) -> bool:
        return self.freshness.is_stale and self.freshness.staleness_severity == "critical"


# ---------------------------------------------------------------------------
# StrategyAnalysis: output of the strategy engine.
# ---------------------------------------------------------------------------


class ActionEntities(BaseModel):
    model_config = ConfigDict(extra="ignore")

    bullet_index: Optional[int] = None
    bullet: Optional[str] = None
    section: Optional[str] = None
    application_id: Optional[str] = None
    job_id: Optional[str] = None
    job_title: Optional[str] = None
    company: Optional[str] = None
    match_score: Optional[float] = None
    platform: Optional[str] = None


class ActionConstraints(BaseModel):
    model_config = ConfigDict(extra="ignore")

    max_items: Optional[int] = None
    min_score_gain: Optional[float] = None


class ActionBlueprint(BaseModel):
    """Description: Abstract recommendation that the task generator turns into a Task.
    Layer: L2
    Input: strategy analysis
    Output: blueprint (type is free text; unknown types degrade to the default kind)
    """

    model_config = ConfigDict(extra="ignore")

    type: str
    objective: str = ""
    entities: ActionEntities = Field(default_factory=ActionEntities)
    constraints: ActionConstraints = Field(default_factory=ActionConstraints)
    why: str = ""
    confidence: ConfidenceLevel = "medium"
    priority: int = Field(default=5, ge=1, le=10)
    rewrite_type: Optional[Literal["bullet", "summary", "section"]] = None
    issues: List[str] = Field(default_factory=list)
    weak_bullets: List[str] = Field(default_factory=list)
    estimated_score_gain: Optional[float] = None


class SkillsGap(BaseModel):
    matched: List[str] = Field(default_factory=list)
    critical_missing: List[str] = Field(default_factory=list)
    match_percentage: float = 0.0


class ExperienceGap(BaseModel):
    missing_types: List[str] = Field(default_factory=list)
    coverage_score: float = 0.0


class SeniorityGap(BaseModel):
    user_level: Optional[str] = None
    role_expected: Optional[str] = None
    alignment: Literal["underqualified", "aligned", "overqualified"] = "aligned"


class GapAnalysis(BaseModel):
    skills: SkillsGap = Field(default_factory=SkillsGap)
    tools: SkillsGap = Field(default_factory=SkillsGap)
    experience: ExperienceGap = Field(default_factory=ExperienceGap)
    seniority: SeniorityGap = Field(default_factory=SeniorityGap)


class ModeReasoning(BaseModel):
    primary_reason: str = ""
    supporting_factors: List[str] = Field(default_factory=list)
    confidence: ConfidenceLevel = "medium"


class StrategyAnalysis(BaseModel):
    """Description: Strategy recommendation consumed by the weekly planner.
    Layer: L2
    Input: strategy engine output
    Output: recommended mode + blueprints
    """

    model_config = ConfigDict(extra="ignore")

    overall_fit_score: float = 0.0
    confidence_level: ConfidenceLevel = "medium"
    gaps: GapAnalysis = Field(default_factory=GapAnalysis)
    recommended_mode: StrategyMode
    mode_reasoning: ModeReasoning = Field(default_factory=ModeReasoning)
    priority_actions: List[str] = Field(default_factory=list)
    action_blueprints: List[ActionBlueprint] = Field(default_factory=list)
    key_insights: List[str] = Field(default_factory=list)
    analysis_version: str = "2.1"


FocusMix = Dict[FocusArea, float]

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest

from careercoach.config import ConfigStore, OrchestratorConfig
from careercoach.core.clock import ManualClock
from careercoach.core.state import (
    ActionBlueprint,
    ActionEntities,
    ActionType,
    ExecutionMode,
    StrategyAnalysis,
    StrategyMode,
    UserState,
)
from careercoach.planning.task_generator_service import make_task_id
from careercoach.planning.task_schema import (
    ApplyToJobPayload,
    FollowUpPayload,
    ImproveResumePayload,
    RefreshStatePayload,
    Task,
    UpdateTargetsPayload,
)

# Wednesday, so mid-week replan rules are live.
NOW = datetime(2025, 1, 8, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config() -> OrchestratorConfig:
    # model_validate skips env/.env so tests see the shipped defaults
    return OrchestratorConfig.model_validate({})


@pytest.fixture
def config_store(config: OrchestratorConfig) -> ConfigStore:
    return ConfigStore.from_config(config)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(NOW)


def _state_dict(**overrides: Any) -> Dict[str, Any]:
    base: Dict[str, Any] = {
        "user_id": "user_1",
        "pipeline_state": {
            "total_applications": 25,
            "applications_last_7_days": 5,
            "applications_last_30_days": 15,
            "interview_requests": 3,
            "interview_rate": 0.13,
            "offers": 0,
            "rejections": 4,
        },
        "user_profile": {
            "target_roles": ["Software Engineer"],
            "weekly_app_target": 10,
        },
        "current_strategy_mode": "APPLY_MODE",
        "resume": {"master_resume_id": "resume_1", "resume_score": 85},
        "freshness": {"is_stale": False, "staleness_severity": "none"},
        "followups": {
            "applications_needing_followup": [
                {
                    "application_id": "app_1",
                    "job_title": "Backend Engineer",
                    "company": "Acme",
                    "days_since_application": 8,
                    "follow_up_count": 0,
                    "suggested_action": "FOLLOW_UP",
                }
            ]
        },
        "state_version": 3,
        "computed_at": (NOW - timedelta(hours=2)).isoformat(),
    }
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = {**base[key], **value}
        else:
            base[key] = value
    return base


@pytest.fixture
def state_dict() -> Callable[..., Dict[str, Any]]:
    return _state_dict


@pytest.fixture
def make_state() -> Callable[..., UserState]:
    def _make(**overrides: Any) -> UserState:
        return UserState.model_validate(_state_dict(**overrides))
    return _make


@pytest.fixture
def apply_state(make_state: Callable[..., UserState]) -> UserState:
    return make_state()


@pytest.fixture
def critical_state(make_state: Callable[..., UserState]) -> UserState:
    return make_state(
        freshness={"is_stale": True, "staleness_severity": "critical", "staleness_reason": "No activity for 30 days"}
    )


def _blueprints() -> List[ActionBlueprint]:
    return [
        ActionBlueprint(
            type="apply_to_job",
            objective="Apply to matched backend roles",
            entities=ActionEntities(job_id="job_1", job_title="Backend Engineer", company="Globex", match_score=82),
            why="Strong match and you are behind your weekly target.",
            priority=8,
        ),
        ActionBlueprint(
            type="apply_to_job",
            objective="Apply to platform roles",
            entities=ActionEntities(job_id="job_2", job_title="Platform Engineer", company="Initech", match_score=74),
            why="Good match posted this week.",
            priority=7,
        ),
        ActionBlueprint(
            type="improve_resume",
            objective="Quantify impact",
            entities=ActionEntities(bullet_index=2, bullet="Worked on payment APIs", section="experience"),
            why="Bullet lacks measurable outcomes.",
            priority=5,
            issues=["no_metrics"],
            estimated_score_gain=4,
        ),
    ]


@pytest.fixture
def make_analysis() -> Callable[..., StrategyAnalysis]:
    def _make(mode: StrategyMode = StrategyMode.APPLY_MODE, blueprints: Optional[List[ActionBlueprint]] = None, **kw: Any) -> StrategyAnalysis:
        return StrategyAnalysis(
            recommended_mode=mode,
            action_blueprints=_blueprints() if blueprints is None else blueprints,
            **kw,
        )
    return _make


@pytest.fixture
def apply_analysis(make_analysis: Callable[..., StrategyAnalysis]) -> StrategyAnalysis:
    return make_analysis()


_PAYLOADS = {
    ActionType.IMPROVE_RESUME: lambda: ImproveResumePayload(bullet_text="Led migration", estimated_score_gain=5),
    ActionType.APPLY_TO_JOB: lambda: ApplyToJobPayload(job_id="job_9", job_title="SWE", company="Hooli", match_score=70),
    ActionType.FOLLOW_UP: lambda: FollowUpPayload(application_id="app_9", company="Hooli", days_since_application=8),
    ActionType.UPDATE_TARGETS: lambda: UpdateTargetsPayload(objective="Revisit targets"),
    ActionType.REFRESH_STATE: lambda: RefreshStatePayload(reason="old data"),
}


@pytest.fixture
def make_task() -> Callable[..., Task]:
    def _make(
        action_type: ActionType = ActionType.IMPROVE_RESUME,
        *,
        name: str = "t",
        execution: ExecutionMode = ExecutionMode.AUTO,
        priority: int = 50,
        minutes: int = 20,
        payload: Any = None,
        **kw: Any,
    ) -> Task:
        return Task(
            task_id=make_task_id("test", name),
            action_type=action_type,
            title=f"Task {name}",
            description=f"Do {name}",
            execution=execution,
            payload=payload if payload is not None else _PAYLOADS[action_type](),
            priority=priority,
            estimated_minutes=minutes,
            why_now=f"Because {name}",
            created_at=NOW,
            **kw,
        )
    return _make

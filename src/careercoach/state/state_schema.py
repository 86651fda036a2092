from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from careercoach.core.state import StalenessSeverity
from careercoach.planning.task_schema import ValidationIssue


class StalenessAssessment(BaseModel):
    """
    Description: Freshness verdict for one state snapshot.
    Layer: L5
    Input: explicit stale flag or snapshot age vs. max_stale_days
    Output: none | warning | critical, with the reason that produced it
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    severity: StalenessSeverity = "none"
    reason: Optional[str] = None
    age_days: Optional[float] = None
    source: str = "none"

    @property
    def is_stale(self) -> bool:
        return self.severity != "none"

    @property
    def is_critical(self) -> bool:
        return self.severity == "critical"


class StateValidationResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    passed: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    staleness: StalenessAssessment = Field(default_factory=StalenessAssessment)
    recommended_action: Optional[str] = None

    @property
    def critical_issues(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "critical"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == "warning"]

    @property
    def requires_safe_plan(self) -> bool:
        return (not self.passed) or self.staleness.is_critical

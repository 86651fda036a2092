from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from careercoach.config import OrchestratorConfig
from careercoach.core.clock import as_utc
from careercoach.core.errors import collaborator_unavailable_error
from careercoach.core.state import UserState
from careercoach.execution.collaborators import Collaborators, log_event_safely
from careercoach.execution.execution_schema import HandlerOutcome
from careercoach.planning.task_schema import FollowUpPayload, Task

log = logging.getLogger("followup_actions")

FIRST_FOLLOW_UP_WINDOW = (7, 10)

_FIRST_ON_TIME = """Hi [Recruiter/Hiring Manager],

I hope this message finds you well. I wanted to follow up on my application for the [Position] role at {company} that I submitted about a week ago.

I remain very interested in this opportunity and would welcome the chance to discuss how my experience in [relevant skill/area] could contribute to your team.

Is there any additional information I can provide to support my application?

Best regards,
[Your Name]"""

_FIRST_LATE = """Hi [Recruiter/Hiring Manager],

I'm following up on my application for the [Position] role at {company}. I submitted my application about {days} days ago and wanted to express my continued interest.

I would be grateful for any update on the status of my application or timeline for next steps.

Thank you for your time and consideration.

Best regards,
[Your Name]"""

_SECOND = """Hi [Recruiter/Hiring Manager],

I wanted to briefly follow up once more on my application for the [Position] role at {company}.

I understand you're likely reviewing many candidates. If the position has been filled or you've moved forward with other candidates, I would appreciate knowing so I can update my records.

If there's still an opportunity to be considered, I remain very interested and happy to provide any additional information.

Thank you for your time.

Best regards,
[Your Name]"""


def follow_up_guidance(days_since_application: int, follow_up_count: int, company: str) -> Tuple[str, List[str]]:
    """
    Description: Pick a message template and tips for the follow-up timing.
    Layer: L5
    Input: days since applying, follow-ups already sent, company name
    Output: (template, tips)
    """
    if follow_up_count > 0:
        return _SECOND.format(company=company), [
            "This is likely your final follow-up for this application",
            "Give them an easy out while expressing continued interest",
            "Consider moving on after this follow-up",
        ]

    lo, hi = FIRST_FOLLOW_UP_WINDOW
    if lo <= days_since_application <= hi:
        return _FIRST_ON_TIME.format(company=company), [
            "This is the optimal time for a first follow-up",
            "Keep it brief and professional",
            "Mention a specific skill or achievement relevant to the role",
        ]
    if days_since_application > hi:
        return _FIRST_LATE.format(company=company, days=days_since_application), [
            "It's been a while - be polite but direct",
            "Ask specifically about timeline",
        ]
    return "Note: It may be too early for a follow-up. Consider waiting until 7-10 days after applying.", [
        "Typically, wait 7-10 days before first follow-up",
        "Following up too early can seem overeager",
    ]


def execute_follow_up(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    config: OrchestratorConfig,
    *,
    now: datetime,
) -> HandlerOutcome:
    """Guidance only; the user sends the follow-up and then records it."""
    payload = task.payload
    if not isinstance(payload, FollowUpPayload):
        return HandlerOutcome.fail(f"Expected FollowUpPayload, got {type(payload).__name__}")
    if not payload.application_id:
        return HandlerOutcome.fail("No application ID provided")

    apps = collaborators.applications
    if apps is None:
        raise collaborator_unavailable_error("ApplicationService")

    app = apps.get_application(payload.application_id)
    if app is None:
        return HandlerOutcome.fail("Application not found")

    max_follow_ups = config.action_execution.max_follow_ups
    if app.follow_up_count >= max_follow_ups:
        return HandlerOutcome.fail(
            f"Maximum follow-ups reached ({max_follow_ups})",
            suggestion="Consider focusing on other applications. Too many follow-ups can be counterproductive.",
        )

    days = payload.days_since_application
    if days <= 0 and app.applied_at is not None:
        days = max(0, int((as_utc(now) - as_utc(app.applied_at)).total_seconds() // 86400))

    template, tips = follow_up_guidance(days, app.follow_up_count, app.company)
    return HandlerOutcome.ok(
        suggestion="Here's a follow-up template you can customize and send:",
        company=app.company,
        job_title=app.job_title,
        days_since_application=days,
        follow_up_count=app.follow_up_count,
        template=template,
        tips=tips,
    )


def record_follow_up_sent(
    task: Task,
    state: UserState,
    collaborators: Collaborators,
    message: Optional[str] = None,
) -> HandlerOutcome:
    payload = task.payload
    application_id = payload.application_id if isinstance(payload, FollowUpPayload) else None
    if not application_id:
        return HandlerOutcome.fail("No application ID provided")

    apps = collaborators.applications
    if apps is None:
        raise collaborator_unavailable_error("ApplicationService")

    result = apps.record_follow_up(application_id, message)
    if not result.success:
        return HandlerOutcome.fail("Failed to record follow-up", retryable=True)

    log_event_safely(
        collaborators.events,
        user_id=state.user_id,
        event_type="follow_up_sent",
        context={
            "task_id": task.task_id,
            "application_id": application_id,
            "follow_up_count": result.follow_up_count,
        },
    )
    return HandlerOutcome.ok(application_id=application_id, follow_up_count=result.follow_up_count)


def follow_up_summary(state: UserState, config: OrchestratorConfig) -> Dict[str, int]:
    followups = state.followups.applications_needing_followup
    max_follow_ups = config.action_execution.max_follow_ups
    ready_after = FIRST_FOLLOW_UP_WINDOW[0]
    return {
        "total": len(followups),
        "ready": sum(1 for f in followups if f.suggested_action == "FOLLOW_UP" and f.days_since_application >= ready_after),
        "upcoming": sum(1 for f in followups if f.suggested_action == "FOLLOW_UP" and f.days_since_application < ready_after),
        "maxed_out": sum(1 for f in followups if f.follow_up_count >= max_follow_ups),
    }

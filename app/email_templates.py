"""Counseling notification drafts for each scheduling urgency."""

import os
from datetime import datetime
from typing import Dict, Optional

from app.models import RiskAssessment, SchedulingDecision, Urgency
from app.risk import get_risk_level_display


def get_advisor_info() -> Dict[str, str]:
    """Get mentor/advisor name and email from environment or defaults."""
    return {
        'name': os.getenv('ADVISOR_NAME', 'Academic Mentor'),
        'email': os.getenv('ADVISOR_EMAIL', 'mentor@example.com')
    }


def _bullets(items) -> str:
    return "\n".join(f"  - {item}" for item in items)


def _slot_text(slot: Optional[datetime]) -> str:
    if slot is None:
        return "Your mentor will contact you with a time shortly."
    return f"Session booked for {slot.strftime('%A, %d %B %Y at %H:%M')}."


def generate_counseling_notice(
    student_name: str,
    assessment: RiskAssessment,
    decision: SchedulingDecision,
    slot: Optional[datetime] = None
) -> Dict[str, str]:
    """Generate a notification draft tailored to the scheduling urgency."""
    advisor = get_advisor_info()
    if decision.urgency == Urgency.IMMEDIATE:
        return _immediate_notice(student_name, assessment, decision, slot, advisor)
    if decision.urgency == Urgency.SOON:
        return _soon_notice(student_name, assessment, decision, slot, advisor)
    return _no_action_notice(student_name, assessment, advisor)


def _immediate_notice(student_name: str, assessment: RiskAssessment, decision: SchedulingDecision,
                      slot: Optional[datetime], advisor: Dict[str, str]) -> Dict[str, str]:
    subject = f"Urgent: Counseling Session Within {decision.within_hours} Hours, {student_name}"
    body = f"""Hi {student_name},

Your latest academic review shows a {get_risk_level_display(assessment.risk_level)} profile (score {assessment.risk_score:.2f}) that needs attention right away.

What we noticed:
{_bullets(assessment.risk_factors)}

{_slot_text(slot)} Please attend; your guardian and mentor have been informed.

Next steps:
{_bullets(assessment.recommendations)}

{advisor['name']}
{advisor['email']}"""
    return {'subject': subject, 'body': body}


def _soon_notice(student_name: str, assessment: RiskAssessment, decision: SchedulingDecision,
                 slot: Optional[datetime], advisor: Dict[str, str]) -> Dict[str, str]:
    days = max(decision.within_hours // 24, 1)
    subject = f"Let's Meet This Week, {student_name}"
    body = f"""Hi {student_name},

I'd like to catch up with you in the next {days} days about how the semester is going.

A few things worth talking about:
{_bullets(assessment.risk_factors)}

{_slot_text(slot)} If the time doesn't suit you, pick another available slot.

In the meantime:
{_bullets(assessment.recommendations)}

{advisor['name']}
{advisor['email']}"""
    return {'subject': subject, 'body': body}


def _no_action_notice(student_name: str, assessment: RiskAssessment,
                      advisor: Dict[str, str]) -> Dict[str, str]:
    subject = f"Keep It Up, {student_name}!"
    body = f"""Hi {student_name},

Your current review is {get_risk_level_display(assessment.risk_level)}. No counseling session is needed right now.

{_bullets(assessment.recommendations)}

{advisor['name']}
{advisor['email']}"""
    return {'subject': subject, 'body': body}

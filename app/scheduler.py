"""Auto-scheduling of counseling sessions from a risk assessment.

The scheduling policy in app.risk only says *whether* and *how soon* a
session is needed. This module enforces the deadline: it resolves a
mentor's available slots, keeps the ones that fall inside the
``within_hours`` window and drafts the schedule record to persist.

Slots come in two shapes:

* absolute: ``"2025-03-14 10:30"``
* weekly recurring: ``"Mon 10:00 AM"`` or ``"Tue 14:00"``, resolved to the
  next occurrence at or after ``now``.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from app.models import RiskAssessment, ScheduleCreate, SchedulingDecision, Urgency
from app.risk import (
    DEFAULT_SCHEDULING_CONFIG,
    SchedulingPolicyConfig,
    should_auto_schedule_counseling,
)

logger = logging.getLogger(__name__)

WEEKDAYS = ['mon', 'tue', 'wed', 'thu', 'fri', 'sat', 'sun']
MEETING_MODES = ('online', 'offline')


@dataclass
class MentorAvailability:
    mentor_id: int
    slots: List[str] = field(default_factory=list)


@dataclass
class CounselingPlan:
    decision: SchedulingDecision
    scheduled_slot: Optional[datetime] = None
    suggested_slots: List[datetime] = field(default_factory=list)
    schedule: Optional[ScheduleCreate] = None


def _parse_time(text: str):
    for fmt in ('%I:%M %p', '%H:%M'):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized slot time: {text!r}")


def parse_slot(slot: str, now: datetime) -> datetime:
    """
    Resolve a slot string to a concrete datetime.

    Args:
        slot: Absolute ('YYYY-MM-DD HH:MM') or weekly ('Mon 10:00 AM') slot
        now: Reference time for weekly slots

    Returns:
        Naive datetime of the slot

    Raises:
        ValueError: if the slot matches neither shape
    """
    text = slot.strip()
    try:
        return datetime.strptime(text, '%Y-%m-%d %H:%M')
    except ValueError:
        pass

    parts = text.split(None, 1)
    if len(parts) == 2 and parts[0][:3].lower() in WEEKDAYS:
        slot_time = _parse_time(parts[1].strip().upper())
        days_ahead = (WEEKDAYS.index(parts[0][:3].lower()) - now.weekday()) % 7
        candidate = datetime.combine(now.date() + timedelta(days=days_ahead), slot_time)
        if candidate < now:
            candidate += timedelta(days=7)
        return candidate

    raise ValueError(f"Unrecognized slot format: {slot!r}")


def slots_within_window(slots: Sequence[str], within_hours: int, now: datetime) -> List[datetime]:
    """Parseable slots in [now, now + within_hours], earliest first."""
    deadline = now + timedelta(hours=within_hours)
    resolved = []
    for slot in slots:
        try:
            when = parse_slot(slot, now)
        except ValueError as e:
            logger.warning("Skipping mentor slot: %s", e)
            continue
        if now <= when <= deadline:
            resolved.append(when)
    return sorted(resolved)


def pick_earliest_slot(
    availability: MentorAvailability,
    decision: SchedulingDecision,
    now: datetime
) -> Optional[datetime]:
    if not decision.should_schedule:
        return None
    candidates = slots_within_window(availability.slots, decision.within_hours, now)
    return candidates[0] if candidates else None


def suggest_slots(
    availability: MentorAvailability,
    decision: SchedulingDecision,
    now: datetime,
    limit: int = 2
) -> List[datetime]:
    if not decision.should_schedule:
        return []
    return slots_within_window(availability.slots, decision.within_hours, now)[:limit]


def build_schedule(
    student_id: int,
    mentor_id: int,
    when: datetime,
    assessment: RiskAssessment,
    decision: SchedulingDecision,
    mode: str = 'offline'
) -> ScheduleCreate:
    """Draft the counseling schedule record for a chosen slot."""
    immediate = decision.urgency == Urgency.IMMEDIATE
    title = "Urgent counseling session" if immediate else "Counseling session"
    notes = f"Auto-scheduled ({decision.urgency.value}, risk {assessment.risk_score:.2f}): " \
        + "; ".join(assessment.risk_factors)
    return ScheduleCreate(
        student_id=student_id,
        mentor_id=mentor_id,
        title=title,
        description=f"{assessment.risk_level.value.capitalize()} risk follow-up",
        scheduled_date=when.strftime('%Y-%m-%d'),
        scheduled_time=when.strftime('%H:%M'),
        meeting_mode=mode,
        status='confirmed' if immediate else 'pending',
        notes=notes,
    )


def plan_counseling(
    student_id: int,
    availability: MentorAvailability,
    assessment: RiskAssessment,
    now: Optional[datetime] = None,
    mode: str = 'offline',
    policy: SchedulingPolicyConfig = DEFAULT_SCHEDULING_CONFIG
) -> CounselingPlan:
    """
    Decide whether to book a session and, if so, pick the slot.

    Immediate urgency books the earliest in-window slot as 'confirmed'.
    Soon urgency books it as 'pending' and also returns up to two
    suggestions the student can choose from instead.

    Raises:
        ValueError: if mode is not 'online' or 'offline'
    """
    if mode not in MEETING_MODES:
        raise ValueError(f"Meeting mode must be 'online' or 'offline', got {mode!r}")
    now = now or datetime.now()

    decision = should_auto_schedule_counseling(assessment, policy)
    plan = CounselingPlan(decision=decision)
    if not decision.should_schedule:
        return plan

    if decision.urgency == Urgency.SOON:
        plan.suggested_slots = suggest_slots(availability, decision, now)

    slot = pick_earliest_slot(availability, decision, now)
    if slot is None:
        logger.warning(
            "No slot for mentor %s within %s hours for student %s (urgency=%s)",
            availability.mentor_id, decision.within_hours, student_id, decision.urgency.value
        )
        return plan

    plan.scheduled_slot = slot
    plan.schedule = build_schedule(student_id, availability.mentor_id, slot, assessment, decision, mode)
    logger.info(
        "Planned %s counseling for student %s with mentor %s at %s",
        decision.urgency.value, student_id, availability.mentor_id, slot.isoformat()
    )
    return plan

"""Risk scoring logic: weighted rule engine and counseling scheduling policy."""

import operator
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import numpy as np
import pandas as pd

from app.models import (
    RiskAssessment,
    RiskLevel,
    SchedulingDecision,
    StudentRiskInput,
    Urgency,
)
from app.parsers import rows_to_inputs


_OPERATORS: Dict[str, Callable[[float, float], bool]] = {
    '<': operator.lt,
    '<=': operator.le,
    '>': operator.gt,
    '>=': operator.ge,
}

HEALTHY_FACTOR = "All parameters are healthy"
HEALTHY_RECOMMENDATIONS = (
    "Excellent work! Keep maintaining your good performance.",
    "Continue attending classes regularly and stay focused on studies.",
)


@dataclass(frozen=True)
class RiskTier:
    """One bucket of a rule. `factor` and `recommendation` may use {value}."""
    op: str
    threshold: float
    weight: float
    factor: str
    recommendation: str

    def matches(self, value: float) -> bool:
        return _OPERATORS[self.op](value, self.threshold)


@dataclass(frozen=True)
class RiskRule:
    """A metric with mutually exclusive tiers, checked in order."""
    metric: str
    tiers: Tuple[RiskTier, ...]

    def evaluate(self, value: float) -> Optional[RiskTier]:
        for tier in self.tiers:
            if tier.matches(value):
                return tier
        return None


@dataclass(frozen=True)
class DeclineRule:
    margin: float = 10.0
    weight: float = 0.10
    factor: str = "Significant performance decline: {previous} → {current}"
    recommendation: str = "Address the reasons for declining performance. Seek counseling."


@dataclass(frozen=True)
class EscalationRule:
    """Raw-input conditions that force immediate intervention regardless of score."""
    attendance_below: float = 50.0
    attempts_at_least: int = 2
    marks_below: float = 40.0
    backlogs_above: int = 0


DEFAULT_RULES: Tuple[RiskRule, ...] = (
    RiskRule('attendance_30d', (
        RiskTier('<', 50, 0.35,
                 "Critical: Attendance is {value}% (Below 50%)",
                 "Immediate attendance improvement required. Meet with mentor urgently."),
        RiskTier('<', 65, 0.25,
                 "Low attendance: {value}% (Below 65%)",
                 "Improve attendance to at least 75%. Schedule counseling session."),
        RiskTier('<', 75, 0.15,
                 "Attendance slightly below requirement: {value}%",
                 "Aim for 75%+ attendance to stay on track."),
    )),
    RiskRule('current_semester_marks', (
        RiskTier('<', 40, 0.30,
                 "Critical: Very low marks ({value})",
                 "Academic emergency. Arrange immediate tutoring and extra classes."),
        RiskTier('<', 50, 0.20,
                 "Low marks: {value}",
                 "Focus on studies. Join peer study groups and attend doubt-clearing sessions."),
        RiskTier('<', 60, 0.15,
                 "Below average marks: {value}",
                 "Improve study habits. Seek help from teachers for difficult subjects."),
    )),
    RiskRule('backlogs', (
        RiskTier('>', 2, 0.25,
                 "Multiple backlogs: {value} subjects",
                 "Clear backlogs urgently. Create a study plan for backlog subjects."),
        RiskTier('>', 0, 0.15,
                 "Backlogs: {value} subject(s)",
                 "Focus on clearing backlogs in the next attempt."),
    )),
    RiskRule('attempts_exhausted', (
        RiskTier('>=', 2, 0.20,
                 "Multiple exam attempts exhausted: {value}",
                 "Critical situation. Intensive academic support needed immediately."),
        RiskTier('>=', 1, 0.10,
                 "Exam attempt exhausted: {value}",
                 "No more attempts available. Must pass in next exam."),
    )),
    RiskRule('fee_overdue_days', (
        RiskTier('>', 60, 0.15,
                 "Fees severely overdue: {value} days",
                 "Clear fee dues immediately. Explore scholarship/financial aid options."),
        RiskTier('>', 30, 0.10,
                 "Fees overdue: {value} days",
                 "Pay pending fees soon to avoid academic holds."),
        RiskTier('>', 0, 0.05,
                 "Fees pending: {value} days",
                 "Clear fee payment to avoid future issues."),
    )),
)


@dataclass(frozen=True)
class RiskRuleConfig:
    """Weights, thresholds and cut-offs used by calculate_risk."""
    rules: Tuple[RiskRule, ...] = DEFAULT_RULES
    decline: DeclineRule = field(default_factory=DeclineRule)
    escalation: EscalationRule = field(default_factory=EscalationRule)
    critical_threshold: float = 0.7
    moderate_threshold: float = 0.4
    max_score: float = 1.0


@dataclass(frozen=True)
class SchedulingPolicyConfig:
    immediate_within_hours: int = 48
    soon_within_hours: int = 168


DEFAULT_RISK_CONFIG = RiskRuleConfig()
DEFAULT_SCHEDULING_CONFIG = SchedulingPolicyConfig()


def format_metric(value) -> str:
    """Render a number for a factor string: 45.0 -> '45', 72.5 -> '72.5'."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def get_risk_level(risk_score: float, config: RiskRuleConfig = DEFAULT_RISK_CONFIG) -> RiskLevel:
    """
    Categorize a risk score into Low/Moderate/Critical.

    Args:
        risk_score: Risk score (0-1)
        config: Rule configuration holding the level cut-offs

    Returns:
        RiskLevel
    """
    if risk_score >= config.critical_threshold:
        return RiskLevel.CRITICAL
    elif risk_score >= config.moderate_threshold:
        return RiskLevel.MODERATE
    else:
        return RiskLevel.LOW


def requires_immediate_intervention(
    data: StudentRiskInput,
    risk_level: RiskLevel,
    escalation: EscalationRule = EscalationRule()
) -> bool:
    """Critical level, or any escalation condition on the raw metrics."""
    return (
        risk_level == RiskLevel.CRITICAL
        or data.attendance_30d < escalation.attendance_below
        or data.attempts_exhausted >= escalation.attempts_at_least
        or (data.current_semester_marks < escalation.marks_below
            and data.backlogs > escalation.backlogs_above)
    )


def calculate_risk(
    data: StudentRiskInput,
    config: RiskRuleConfig = DEFAULT_RISK_CONFIG
) -> RiskAssessment:
    """
    Calculate dropout risk for one student from the weighted rule table.

    Rules are evaluated in table order (attendance, marks, backlogs,
    attempts, fees) followed by the performance-decline bonus. Each rule
    contributes at most one tier. The summed score is capped at
    config.max_score and rounded to two decimals; the level is taken from
    the rounded score.

    Args:
        data: Metrics snapshot for the student
        config: Rule configuration (defaults to the institutional weights)

    Returns:
        RiskAssessment
    """
    risk_score = 0.0
    risk_factors: List[str] = []
    recommendations: List[str] = []

    for rule in config.rules:
        value = getattr(data, rule.metric)
        tier = rule.evaluate(value)
        if tier is None:
            continue
        risk_score += tier.weight
        risk_factors.append(tier.factor.format(value=format_metric(value)))
        recommendations.append(tier.recommendation.format(value=format_metric(value)))

    previous = data.previous_semester_marks
    decline = config.decline
    if previous is not None and data.current_semester_marks < previous - decline.margin:
        risk_score += decline.weight
        risk_factors.append(decline.factor.format(
            previous=format_metric(previous),
            current=format_metric(data.current_semester_marks),
        ))
        recommendations.append(decline.recommendation)

    risk_score = round(min(risk_score, config.max_score), 2)
    risk_level = get_risk_level(risk_score, config)

    if risk_level == RiskLevel.LOW and not risk_factors:
        risk_factors.append(HEALTHY_FACTOR)
        recommendations.extend(HEALTHY_RECOMMENDATIONS)

    return RiskAssessment(
        risk_score=risk_score,
        risk_level=risk_level,
        risk_factors=risk_factors,
        recommendations=recommendations,
        requires_immediate_intervention=requires_immediate_intervention(
            data, risk_level, config.escalation
        ),
    )


def should_auto_schedule_counseling(
    assessment: RiskAssessment,
    config: SchedulingPolicyConfig = DEFAULT_SCHEDULING_CONFIG
) -> SchedulingDecision:
    """
    Map an assessment to a scheduling urgency and deadline.

    Only requires_immediate_intervention and risk_level are consulted.
    Urgency.NORMAL is never returned.
    """
    if assessment.requires_immediate_intervention:
        return SchedulingDecision(
            should_schedule=True,
            urgency=Urgency.IMMEDIATE,
            within_hours=config.immediate_within_hours,
        )

    if assessment.risk_level == RiskLevel.MODERATE:
        return SchedulingDecision(
            should_schedule=True,
            urgency=Urgency.SOON,
            within_hours=config.soon_within_hours,
        )

    return SchedulingDecision(should_schedule=False, urgency=Urgency.NONE, within_hours=0)


def get_risk_color(level) -> str:
    """Badge colour for a risk level."""
    level = getattr(level, 'value', level)
    if level == 'critical':
        return '#ef4444'
    if level == 'moderate':
        return '#eab308'
    if level == 'low':
        return '#22c55e'
    return '#6b7280'


def get_risk_level_display(level) -> str:
    level = getattr(level, 'value', level)
    return {
        'critical': 'Critical Risk',
        'moderate': 'Moderate Risk',
        'low': 'Low Risk',
    }.get(level, 'Unknown')


SCORE_COLUMNS = [
    'risk_score',
    'risk_level',
    'requires_immediate_intervention',
    'urgency',
    'risk_factors',
    'recommendations',
]


def score_students(
    df: pd.DataFrame,
    config: RiskRuleConfig = DEFAULT_RISK_CONFIG,
    scheduling: SchedulingPolicyConfig = DEFAULT_SCHEDULING_CONFIG
) -> pd.DataFrame:
    """
    Score every student row of a normalized metrics dataframe.

    Args:
        df: One row per student with canonical metric columns
        config: Rule configuration
        scheduling: Scheduling policy windows

    Returns:
        Copy of df with SCORE_COLUMNS added, highest risk first
    """
    if df.empty:
        return df.reindex(columns=list(df.columns) + SCORE_COLUMNS)

    assessments = [calculate_risk(data, config) for data in rows_to_inputs(df)]
    decisions = [should_auto_schedule_counseling(a, scheduling) for a in assessments]

    scored = df.copy()
    scored['risk_score'] = np.array([a.risk_score for a in assessments], dtype=float)
    scored['risk_level'] = [a.risk_level.value for a in assessments]
    scored['requires_immediate_intervention'] = [a.requires_immediate_intervention for a in assessments]
    scored['urgency'] = [d.urgency.value for d in decisions]
    scored['risk_factors'] = [list(a.risk_factors) for a in assessments]
    scored['recommendations'] = [list(a.recommendations) for a in assessments]

    sort_cols = ['risk_score']
    ascending = [False]
    if 'student_name' in scored.columns:
        sort_cols.append('student_name')
        ascending.append(True)
    return scored.sort_values(sort_cols, ascending=ascending, kind='stable').reset_index(drop=True)


def summarize_risk_levels(assessments: Iterable[RiskAssessment]) -> Dict[str, int]:
    """Counts per risk level plus total and immediate-intervention counters."""
    summary = {level.value: 0 for level in RiskLevel}
    summary['total'] = 0
    summary['immediate'] = 0
    for assessment in assessments:
        summary[RiskLevel(assessment.risk_level).value] += 1
        summary['total'] += 1
        if assessment.requires_immediate_intervention:
            summary['immediate'] += 1
    return summary

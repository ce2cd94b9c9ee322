"""Unit tests for risk scoring module."""

import pytest
import pandas as pd

from app.models import RiskAssessment, RiskLevel, StudentRiskInput, Urgency
from app.parsers import normalize_metrics
from app.risk import (
    HEALTHY_FACTOR,
    RiskRuleConfig,
    SchedulingPolicyConfig,
    calculate_risk,
    format_metric,
    get_risk_color,
    get_risk_level,
    get_risk_level_display,
    score_students,
    should_auto_schedule_counseling,
    summarize_risk_levels,
)


def make_input(**overrides) -> StudentRiskInput:
    values = dict(
        attendance_30d=90.0,
        current_semester_marks=85.0,
        backlogs=0,
        attempts_exhausted=0,
        fee_overdue_days=0,
    )
    values.update(overrides)
    return StudentRiskInput(**values)


def test_everything_bad_is_capped_and_critical():
    """Summed weights above 1.0 are clamped."""
    result = calculate_risk(make_input(
        attendance_30d=45,
        current_semester_marks=42,
        backlogs=2,
        attempts_exhausted=2,
        fee_overdue_days=60,
        previous_semester_marks=55,
    ))

    assert result.risk_score == 1.0
    assert result.risk_level == RiskLevel.CRITICAL
    assert result.requires_immediate_intervention is True
    assert result.risk_factors == [
        "Critical: Attendance is 45% (Below 50%)",
        "Low marks: 42",
        "Backlogs: 2 subject(s)",
        "Multiple exam attempts exhausted: 2",
        # 60 is not > 60, so the middle fee tier applies
        "Fees overdue: 60 days",
        "Significant performance decline: 55 → 42",
    ]
    assert len(result.recommendations) == 6


def test_healthy_student_gets_positive_entries():
    result = calculate_risk(make_input())

    assert result.risk_score == 0.0
    assert result.risk_level == RiskLevel.LOW
    assert result.risk_factors == [HEALTHY_FACTOR]
    assert result.recommendations == [
        "Excellent work! Keep maintaining your good performance.",
        "Continue attending classes regularly and stay focused on studies.",
    ]
    assert result.requires_immediate_intervention is False


def test_low_risk_with_factors_has_no_healthy_entry():
    """Low level alone does not inject the healthy factor."""
    result = calculate_risk(make_input(attendance_30d=70, current_semester_marks=65, fee_overdue_days=5))

    assert result.risk_score == 0.2
    assert result.risk_level == RiskLevel.LOW
    assert result.risk_factors == [
        "Attendance slightly below requirement: 70%",
        "Fees pending: 5 days",
    ]
    assert HEALTHY_FACTOR not in result.risk_factors
    assert result.requires_immediate_intervention is False

    decision = should_auto_schedule_counseling(result)
    assert decision.should_schedule is False
    assert decision.urgency == Urgency.NONE
    assert decision.within_hours == 0


def test_single_day_fee_pending_keeps_factor():
    result = calculate_risk(make_input(fee_overdue_days=1))

    assert result.risk_score == 0.05
    assert result.risk_factors == ["Fees pending: 1 days"]
    assert result.recommendations == ["Clear fee payment to avoid future issues."]


def test_low_attendance_escalates_despite_low_level():
    """Attendance below 50 forces immediate scheduling even at a low score."""
    result = calculate_risk(make_input(attendance_30d=48, current_semester_marks=75))

    assert result.risk_score == 0.35
    assert result.risk_level == RiskLevel.LOW
    assert result.requires_immediate_intervention is True

    decision = should_auto_schedule_counseling(result)
    assert decision.should_schedule is True
    assert decision.urgency == Urgency.IMMEDIATE
    assert decision.within_hours == 48


def test_moderate_level_schedules_within_a_week():
    result = calculate_risk(make_input(attendance_30d=60, current_semester_marks=55))

    assert result.risk_score == 0.4
    assert result.risk_level == RiskLevel.MODERATE
    assert result.requires_immediate_intervention is False

    decision = should_auto_schedule_counseling(result)
    assert decision.should_schedule is True
    assert decision.urgency == Urgency.SOON
    assert decision.within_hours == 168


def test_level_follows_rounded_score():
    """0.35 + 0.05 sums just under 0.4 in floating point; the rounded score decides."""
    result = calculate_risk(make_input(attendance_30d=45, fee_overdue_days=10))

    assert result.risk_score == 0.4
    assert result.risk_level == RiskLevel.MODERATE


def test_escalation_conditions():
    # Exhausted attempts alone
    result = calculate_risk(make_input(attempts_exhausted=2))
    assert result.risk_level == RiskLevel.LOW
    assert result.requires_immediate_intervention is True

    # Very low marks with a backlog
    result = calculate_risk(make_input(current_semester_marks=35, backlogs=1))
    assert result.risk_score == 0.45
    assert result.risk_level == RiskLevel.MODERATE
    assert result.requires_immediate_intervention is True

    # Very low marks without backlogs do not escalate
    result = calculate_risk(make_input(current_semester_marks=35))
    assert result.risk_score == 0.3
    assert result.requires_immediate_intervention is False

    # One exhausted attempt does not escalate
    result = calculate_risk(make_input(attempts_exhausted=1))
    assert result.requires_immediate_intervention is False


def test_attendance_tiers():
    assert calculate_risk(make_input(attendance_30d=49.9)).risk_score == 0.35
    assert calculate_risk(make_input(attendance_30d=50)).risk_score == 0.25
    assert calculate_risk(make_input(attendance_30d=64.9)).risk_score == 0.25
    assert calculate_risk(make_input(attendance_30d=65)).risk_score == 0.15
    assert calculate_risk(make_input(attendance_30d=74.9)).risk_score == 0.15
    assert calculate_risk(make_input(attendance_30d=75)).risk_score == 0.0


def test_marks_tiers():
    assert calculate_risk(make_input(current_semester_marks=39)).risk_factors == ["Critical: Very low marks (39)"]
    assert calculate_risk(make_input(current_semester_marks=40)).risk_factors == ["Low marks: 40"]
    assert calculate_risk(make_input(current_semester_marks=50)).risk_factors == ["Below average marks: 50"]
    assert calculate_risk(make_input(current_semester_marks=60)).risk_factors == [HEALTHY_FACTOR]


def test_backlog_boundary_at_two():
    """Exactly two backlogs falls into the lower tier."""
    two = calculate_risk(make_input(backlogs=2))
    three = calculate_risk(make_input(backlogs=3))

    assert two.risk_score == 0.15
    assert two.risk_factors == ["Backlogs: 2 subject(s)"]
    assert three.risk_score == 0.25
    assert three.risk_factors == ["Multiple backlogs: 3 subjects"]


def test_fee_tiers():
    assert calculate_risk(make_input(fee_overdue_days=30)).risk_score == 0.05
    assert calculate_risk(make_input(fee_overdue_days=31)).risk_score == 0.1
    assert calculate_risk(make_input(fee_overdue_days=61)).risk_factors == ["Fees severely overdue: 61 days"]


def test_performance_decline():
    # 59 < 70 - 10: decline plus below-average marks
    result = calculate_risk(make_input(current_semester_marks=59, previous_semester_marks=70))
    assert result.risk_score == 0.25
    assert result.risk_factors[-1] == "Significant performance decline: 70 → 59"
    assert result.recommendations[-1] == "Address the reasons for declining performance. Seek counseling."

    # Exactly 10 points down is not a decline
    result = calculate_risk(make_input(current_semester_marks=60, previous_semester_marks=70))
    assert result.risk_factors == [HEALTHY_FACTOR]

    # No previous semester
    result = calculate_risk(make_input(current_semester_marks=59))
    assert result.risk_score == 0.15


def test_camel_case_input_accepted():
    data = StudentRiskInput(**{
        'attendance30d': 48,
        'currentSemesterMarks': 75,
        'backlogs': 0,
        'attemptsExhausted': 0,
        'feeOverdueDays': 0,
        'previousSemesterMarks': 80,
    })
    assert data.previous_semester_marks == 80.0
    assert calculate_risk(data).requires_immediate_intervention is True


def test_non_integral_values_render_as_given():
    result = calculate_risk(make_input(attendance_30d=72.5))
    assert result.risk_factors == ["Attendance slightly below requirement: 72.5%"]
    assert format_metric(45.0) == "45"
    assert format_metric(3) == "3"


def test_out_of_range_inputs_do_not_raise():
    result = calculate_risk(make_input(attendance_30d=150, backlogs=-1, fee_overdue_days=-5))
    assert result.risk_score == 0.0

    result = calculate_risk(make_input(attendance_30d=-10, current_semester_marks=-5))
    assert result.risk_score == 0.65
    assert result.requires_immediate_intervention is True


def test_risk_score_bounds():
    """Scores stay in [0, 1] across extreme combinations."""
    for attendance in (-50, 0, 49, 64, 74, 100, 200):
        for marks in (-10, 0, 39, 49, 59, 100):
            for backlogs in (0, 1, 3, 10):
                result = calculate_risk(make_input(
                    attendance_30d=attendance,
                    current_semester_marks=marks,
                    backlogs=backlogs,
                    attempts_exhausted=3,
                    fee_overdue_days=90,
                    previous_semester_marks=100,
                ))
                assert 0.0 <= result.risk_score <= 1.0


@pytest.mark.parametrize("field,values", [
    ('attendance_30d', [100, 80, 74, 70, 64, 55, 49, 10]),
    ('current_semester_marks', [90, 60, 59, 50, 49, 40, 39, 0]),
    ('backlogs', [0, 1, 2, 3, 6]),
    ('attempts_exhausted', [0, 1, 2, 4]),
    ('fee_overdue_days', [0, 1, 30, 31, 60, 61, 365]),
])
def test_score_monotone_in_each_input(field, values):
    """Moving one input toward 'worse' never lowers the score."""
    scores = [calculate_risk(make_input(**{field: v})).risk_score for v in values]
    assert scores == sorted(scores)


def test_repeated_calls_identical():
    data = make_input(attendance_30d=61, current_semester_marks=44, fee_overdue_days=40)
    assert calculate_risk(data) == calculate_risk(data)


def test_get_risk_level():
    assert get_risk_level(0.7) == RiskLevel.CRITICAL
    assert get_risk_level(0.69) == RiskLevel.MODERATE
    assert get_risk_level(0.4) == RiskLevel.MODERATE
    assert get_risk_level(0.39) == RiskLevel.LOW
    assert get_risk_level(0.0) == RiskLevel.LOW


def test_custom_config_changes_cutoffs():
    config = RiskRuleConfig(critical_threshold=0.3, moderate_threshold=0.1)
    result = calculate_risk(make_input(attendance_30d=60), config)
    assert result.risk_level == RiskLevel.MODERATE

    result = calculate_risk(make_input(attendance_30d=45), config)
    assert result.risk_level == RiskLevel.CRITICAL


def test_decision_depends_only_on_level_and_flag():
    """The exact score is ignored by the scheduling policy."""
    flagged = RiskAssessment(
        risk_score=0.1, risk_level=RiskLevel.LOW,
        risk_factors=[], recommendations=[], requires_immediate_intervention=True,
    )
    high_but_low = RiskAssessment(
        risk_score=0.95, risk_level=RiskLevel.LOW,
        risk_factors=[], recommendations=[], requires_immediate_intervention=False,
    )

    assert should_auto_schedule_counseling(flagged).urgency == Urgency.IMMEDIATE
    assert should_auto_schedule_counseling(high_but_low).urgency == Urgency.NONE


def test_scheduling_windows_configurable():
    result = calculate_risk(make_input(attendance_30d=40))
    decision = should_auto_schedule_counseling(result, SchedulingPolicyConfig(immediate_within_hours=24))
    assert decision.within_hours == 24


def test_normal_urgency_is_representable():
    assert Urgency('normal') == Urgency.NORMAL


def test_risk_color_and_display():
    assert get_risk_color(RiskLevel.CRITICAL) == '#ef4444'
    assert get_risk_color('moderate') == '#eab308'
    assert get_risk_color('low') == '#22c55e'
    assert get_risk_color('other') == '#6b7280'

    assert get_risk_level_display(RiskLevel.CRITICAL) == 'Critical Risk'
    assert get_risk_level_display('moderate') == 'Moderate Risk'
    assert get_risk_level_display('low') == 'Low Risk'
    assert get_risk_level_display('unknown') == 'Unknown'


def test_score_students_sorts_by_risk():
    df = pd.DataFrame({
        'student_id': ['1', '2', '3'],
        'student_name': ['Asha', 'Ravi', 'Meera'],
        'attendance_30d': [90.0, 45.0, 60.0],
        'current_semester_marks': [85.0, 42.0, 55.0],
        'previous_semester_marks': [None, 55.0, None],
        'backlogs': [0, 2, 0],
        'attempts_exhausted': [0, 2, 0],
        'fee_overdue_days': [0, 60, 0],
    })

    scored = score_students(df)

    assert scored['student_id'].tolist() == ['2', '3', '1']
    assert scored['risk_level'].tolist() == ['critical', 'moderate', 'low']
    assert scored['urgency'].tolist() == ['immediate', 'soon', 'none']
    assert scored['risk_score'].tolist() == [1.0, 0.4, 0.0]
    assert scored.loc[2, 'risk_factors'] == [HEALTHY_FACTOR]


def test_score_students_empty():
    df = pd.DataFrame(columns=['student_id', 'attendance_30d', 'current_semester_marks'])
    scored = score_students(df)
    assert scored.empty
    assert 'risk_score' in scored.columns
    assert 'recommendations' in scored.columns


def test_summarize_risk_levels():
    assessments = [
        calculate_risk(make_input()),
        calculate_risk(make_input(attendance_30d=48)),
        calculate_risk(make_input(attendance_30d=60, current_semester_marks=55)),
        calculate_risk(make_input(attendance_30d=30, current_semester_marks=30, backlogs=3)),
    ]

    summary = summarize_risk_levels(assessments)

    assert summary == {'low': 2, 'moderate': 1, 'critical': 1, 'total': 4, 'immediate': 2}


def test_score_students_ignores_blank_attendance_rows():
    """A student without an attendance figure is not flagged as 0% attendance."""
    metrics = normalize_metrics(pd.DataFrame({
        'Name': ['Asha', 'Ravi'],
        'Attendance': [None, 90],
        'Marks': [85, 88],
    }))

    scored = score_students(metrics)

    assert scored['student_name'].tolist() == ['Ravi']
    assert scored['urgency'].tolist() == ['none']

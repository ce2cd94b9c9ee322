"""Data models for the ResQEd risk service."""

from enum import Enum
from typing import Optional, Dict, List
from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    LOW = "low"
    MODERATE = "moderate"
    CRITICAL = "critical"


class Urgency(str, Enum):
    """Scheduling urgency tier. NORMAL is representable but never produced by the policy."""
    IMMEDIATE = "immediate"
    SOON = "soon"
    NORMAL = "normal"
    NONE = "none"


class StudentRiskInput(BaseModel):
    """Metrics snapshot for one student. Values are not range-checked."""
    model_config = ConfigDict(populate_by_name=True)

    attendance_30d: float = Field(alias="attendance30d")
    current_semester_marks: float = Field(alias="currentSemesterMarks")
    backlogs: int = 0
    attempts_exhausted: int = Field(default=0, alias="attemptsExhausted")
    fee_overdue_days: int = Field(default=0, alias="feeOverdueDays")
    previous_semester_marks: Optional[float] = Field(default=None, alias="previousSemesterMarks")


class RiskAssessment(BaseModel):
    """Result of a single risk evaluation."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    risk_score: float = Field(alias="riskScore")
    risk_level: RiskLevel = Field(alias="riskLevel")
    risk_factors: List[str] = Field(default_factory=list, alias="riskFactors")
    recommendations: List[str] = Field(default_factory=list)
    requires_immediate_intervention: bool = Field(alias="requiresImmediateIntervention")


class SchedulingDecision(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    should_schedule: bool = Field(alias="shouldSchedule")
    urgency: Urgency
    within_hours: int = Field(alias="withinHours")


class RiskAssessmentResponse(BaseModel):
    """Assessment plus the presentation fields the dashboards render."""
    model_config = ConfigDict(populate_by_name=True)

    assessment: RiskAssessment
    display_name: str = Field(alias="displayName")
    color: str
    progress_pct: float = Field(alias="progressPct")


class ScheduleCreate(BaseModel):
    """Counseling schedule record as accepted by the schedules API."""
    model_config = ConfigDict(populate_by_name=True)

    student_id: int = Field(alias="studentId")
    mentor_id: int = Field(alias="mentorId")
    title: str
    description: Optional[str] = None
    scheduled_date: str = Field(alias="scheduledDate")
    scheduled_time: str = Field(alias="scheduledTime")
    duration_minutes: int = Field(default=30, alias="durationMinutes")
    meeting_mode: str = Field(default="offline", alias="meetingMode")
    status: str = "scheduled"
    meeting_link: Optional[str] = Field(default=None, alias="meetingLink")
    location: Optional[str] = None
    notes: Optional[str] = None


class AutoScheduleRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    student_id: int = Field(alias="studentId")
    mentor_id: int = Field(alias="mentorId")
    metrics: StudentRiskInput
    available_slots: List[str] = Field(default_factory=list, alias="availableSlots")
    meeting_mode: str = Field(default="offline", alias="meetingMode")
    student_name: Optional[str] = Field(default=None, alias="studentName")


class CounselingPlanResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    assessment: RiskAssessment
    decision: SchedulingDecision
    scheduled_slot: Optional[str] = Field(default=None, alias="scheduledSlot")
    suggested_slots: List[str] = Field(alias="suggestedSlots")
    schedule: Optional[Dict] = None
    notification: Optional[Dict[str, str]] = None


class StudentRiskResult(BaseModel):
    """Individual student row from a bulk upload."""
    student_id: str
    student_name: str
    attendance_30d: float
    current_semester_marks: float
    backlogs: int
    attempts_exhausted: int
    fee_overdue_days: int
    risk_score: float
    risk_level: RiskLevel
    risk_color: str
    requires_immediate_intervention: bool
    urgency: Urgency
    risk_factors: List[str]
    recommendations: List[str]


class UploadResponse(BaseModel):
    """Response from file upload endpoint."""
    success: bool
    message: str
    results: List[StudentRiskResult]
    summary: Dict[str, int]


class NotificationDraftRequest(BaseModel):
    """Request for a counseling notification draft."""
    model_config = ConfigDict(populate_by_name=True)

    student_name: str = Field(alias="studentName")
    metrics: StudentRiskInput
    scheduled_slot: Optional[str] = Field(default=None, alias="scheduledSlot")


class NotificationDraftResponse(BaseModel):
    subject: str
    body: str

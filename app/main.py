"""FastAPI main application for the ResQEd risk service."""

import csv
import logging
import traceback
from datetime import datetime
from io import StringIO
from typing import List, Optional

import numpy as np
import pandas as pd
from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.config import Settings, load_settings
from app.crud import ApiError, insert_schedule, router as crud_router
from app.db import Database
from app.email_templates import generate_counseling_notice
from app.models import (
    AutoScheduleRequest,
    CounselingPlanResponse,
    NotificationDraftRequest,
    NotificationDraftResponse,
    RiskAssessment,
    RiskAssessmentResponse,
    SchedulingDecision,
    StudentRiskInput,
    StudentRiskResult,
    UploadResponse,
)
from app.parsers import SUPPORTED_EXTENSIONS, load_metrics_file, normalize_metrics
from app.risk import (
    calculate_risk,
    get_risk_color,
    get_risk_level_display,
    score_students,
    should_auto_schedule_counseling,
    summarize_risk_levels,
)
from app.scheduler import MentorAvailability, plan_counseling

logger = logging.getLogger(__name__)


def clean_numeric_value(value) -> float:
    """
    Clean numeric values to ensure JSON compliance.
    Replaces NaN, Infinity, and -Infinity with 0.0.
    """
    if value is None or pd.isna(value):
        return 0.0
    try:
        val = float(value)
        if np.isnan(val) or np.isinf(val):
            return 0.0
        return val
    except (ValueError, TypeError):
        return 0.0


def _results_to_models(scored: pd.DataFrame) -> List[StudentRiskResult]:
    results = []
    for row in scored.to_dict('records'):
        results.append(StudentRiskResult(
            student_id=str(row['student_id']),
            student_name=str(row['student_name']),
            attendance_30d=clean_numeric_value(row['attendance_30d']),
            current_semester_marks=clean_numeric_value(row['current_semester_marks']),
            backlogs=int(row['backlogs']),
            attempts_exhausted=int(row['attempts_exhausted']),
            fee_overdue_days=int(row['fee_overdue_days']),
            risk_score=clean_numeric_value(row['risk_score']),
            risk_level=row['risk_level'],
            risk_color=get_risk_color(row['risk_level']),
            requires_immediate_intervention=bool(row['requires_immediate_intervention']),
            urgency=row['urgency'],
            risk_factors=list(row['risk_factors']),
            recommendations=list(row['recommendations']),
        ))
    return results


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the application with its own database and results cache."""
    settings = settings or load_settings()
    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(title="ResQEd Risk Service", version="1.0.0")
    app.state.settings = settings
    app.state.db = Database(settings.db_path)
    # In-memory storage for bulk upload results (session-based)
    app.state.results_cache = {}

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler_json(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions and return JSON."""
        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.detail}
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler_json(request: Request, exc: RequestValidationError):
        """Handle validation errors and return JSON."""
        return JSONResponse(
            status_code=422,
            content={"detail": exc.errors(), "body": exc.body},
        )

    # Only reached for exceptions not handled above
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle all unhandled exceptions and return JSON."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        error_detail = str(exc)
        if settings.debug:
            error_detail = f"{str(exc)}\n\n{traceback.format_exc()}"

        return JSONResponse(
            status_code=500,
            content={
                "detail": f"Internal server error: {error_detail}",
                "type": type(exc).__name__
            }
        )

    app.include_router(crud_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint to test server connectivity."""
        return JSONResponse(content={"status": "ok", "message": "Server is running"})

    @app.post("/risk/assess", response_model=RiskAssessmentResponse)
    async def assess_student(data: StudentRiskInput):
        """Score one student's metrics snapshot."""
        assessment = calculate_risk(data, settings.risk)
        return RiskAssessmentResponse(
            assessment=assessment,
            display_name=get_risk_level_display(assessment.risk_level),
            color=get_risk_color(assessment.risk_level),
            progress_pct=round(assessment.risk_score * 100, 2),
        )

    @app.post("/risk/schedule-decision", response_model=SchedulingDecision)
    async def schedule_decision(assessment: RiskAssessment):
        return should_auto_schedule_counseling(assessment, settings.scheduling)

    @app.post("/risk/auto-schedule", response_model=CounselingPlanResponse)
    def auto_schedule(request: AutoScheduleRequest):
        """Score, decide, pick a mentor slot and persist the counseling schedule."""
        assessment = calculate_risk(request.metrics, settings.risk)
        try:
            plan = plan_counseling(
                request.student_id,
                MentorAvailability(request.mentor_id, request.available_slots),
                assessment,
                mode=request.meeting_mode,
                policy=settings.scheduling,
            )
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

        schedule = None
        if plan.schedule is not None:
            schedule = insert_schedule(app.state.db, plan.schedule.model_dump(by_alias=True))

        notification = None
        if plan.decision.should_schedule:
            notification = generate_counseling_notice(
                request.student_name or "Student", assessment, plan.decision, plan.scheduled_slot
            )

        return CounselingPlanResponse(
            assessment=assessment,
            decision=plan.decision,
            scheduled_slot=plan.scheduled_slot.strftime('%Y-%m-%d %H:%M') if plan.scheduled_slot else None,
            suggested_slots=[s.strftime('%Y-%m-%d %H:%M') for s in plan.suggested_slots],
            schedule=schedule,
            notification=notification,
        )

    @app.post("/upload", response_model=UploadResponse)
    async def upload_file(file: UploadFile = File(...)):
        """Upload a spreadsheet of student metrics and score every row."""
        file_bytes = await file.read()
        if len(file_bytes) > settings.max_upload_size:
            raise HTTPException(
                status_code=413,
                detail=f"File too large. Maximum size: {settings.max_upload_size_mb}MB"
            )

        if not (file.filename or "").lower().endswith(SUPPORTED_EXTENSIONS):
            raise HTTPException(
                status_code=400,
                detail=f"Invalid file type. Please upload one of: {', '.join(SUPPORTED_EXTENSIONS)}"
            )

        try:
            metrics = normalize_metrics(load_metrics_file(file_bytes, file.filename))
        except Exception as e:
            logger.warning("Error loading %s: %s", file.filename, e)
            raise HTTPException(status_code=400, detail=f"Error loading file: {str(e)}")

        if metrics.empty:
            raise HTTPException(status_code=400, detail="No student records found in the uploaded file.")

        scored = score_students(metrics, settings.risk, settings.scheduling)
        results = _results_to_models(scored)

        session_id = datetime.now().isoformat()
        app.state.results_cache[session_id] = results

        summary = summarize_risk_levels(results)
        logger.info(
            "Results: %d students (%d critical, %d moderate, %d low, %d need immediate intervention)",
            summary['total'], summary['critical'], summary['moderate'], summary['low'], summary['immediate']
        )

        return UploadResponse(
            success=True,
            message=f"Successfully processed {len(results)} students",
            results=results,
            summary=summary,
        )

    def _latest_results():
        cache = app.state.results_cache
        if not cache:
            raise HTTPException(status_code=404, detail="No results available")
        latest_session = max(cache.keys())
        return latest_session, cache[latest_session]

    @app.get("/results")
    async def get_results():
        """Get the last processed results."""
        latest_session, results = _latest_results()
        return {
            'session_id': latest_session,
            'results': [r.model_dump(mode='json') for r in results],
            'summary': summarize_risk_levels(results),
        }

    @app.get("/download.csv")
    async def download_csv():
        """Download processed results as CSV."""
        latest_session, results = _latest_results()

        output = StringIO()
        writer = csv.writer(output)
        writer.writerow([
            'Student ID',
            'Student Name',
            'Attendance (30d) %',
            'Current Marks',
            'Backlogs',
            'Attempts Exhausted',
            'Fee Overdue Days',
            'Risk Score',
            'Risk Level',
            'Immediate Intervention',
            'Urgency',
            'Risk Factors',
        ])
        for result in results:
            writer.writerow([
                result.student_id,
                result.student_name,
                f"{result.attendance_30d:.2f}",
                f"{result.current_semester_marks:.2f}",
                result.backlogs,
                result.attempts_exhausted,
                result.fee_overdue_days,
                f"{result.risk_score:.2f}",
                result.risk_level.value,
                'Yes' if result.requires_immediate_intervention else 'No',
                result.urgency.value,
                " | ".join(result.risk_factors),
            ])
        output.seek(0)

        return StreamingResponse(
            iter([output.getvalue()]),
            media_type="text/csv",
            headers={
                "Content-Disposition": f"attachment; filename=student_risk_results_{latest_session[:10]}.csv"
            }
        )

    @app.post("/notification-draft", response_model=NotificationDraftResponse)
    async def notification_draft(request: NotificationDraftRequest):
        """Generate a counseling notification draft for a student."""
        assessment = calculate_risk(request.metrics, settings.risk)
        decision = should_auto_schedule_counseling(assessment, settings.scheduling)
        slot = None
        if request.scheduled_slot:
            try:
                slot = datetime.strptime(request.scheduled_slot, '%Y-%m-%d %H:%M')
            except ValueError:
                raise HTTPException(status_code=400, detail="scheduledSlot must be 'YYYY-MM-DD HH:MM'")
        return NotificationDraftResponse(**generate_counseling_notice(
            request.student_name, assessment, decision, slot
        ))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)

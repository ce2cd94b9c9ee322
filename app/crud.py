"""REST endpoints for users, schedules, messages, counseling feedback and mentor assignments."""

import logging
import re
import sqlite3
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Request

from app.db import Database, now_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

VALID_ROLES = ['student', 'mentor', 'hod', 'teacher', 'admin']
VALID_YEARS = ['FE', 'SE', 'TE', 'BE']
MEETING_MODES = ['online', 'offline']
EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')

USER_SORT = {'name': 'name', 'email': 'email', 'role': 'role', 'createdAt': 'created_at'}
SCHEDULE_SORT = {
    'createdAt': 'created_at',
    'updatedAt': 'updated_at',
    'scheduledDate': 'scheduled_date',
    'scheduledTime': 'scheduled_time',
    'title': 'title',
    'status': 'status',
}


class ApiError(Exception):
    """Validation or lookup failure, rendered as {"error": ..., "code": ...}."""

    def __init__(self, status_code: int, error: str, code: Optional[str] = None):
        super().__init__(error)
        self.status_code = status_code
        self.error = error
        self.code = code

    def to_dict(self) -> Dict[str, str]:
        body = {'error': self.error}
        if self.code:
            body['code'] = self.code
        return body


def get_db(request: Request) -> Database:
    return request.app.state.db


def parse_int(value) -> Optional[int]:
    """int(value), or None when value is missing or not an integer."""
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def require_id(value, code: str = "INVALID_ID", error: str = "Valid ID is required") -> int:
    parsed = parse_int(value)
    if parsed is None:
        raise ApiError(400, error, code)
    return parsed


def optional_filter(value, code: str, error: str) -> Optional[int]:
    if value is None or value == "":
        return None
    return require_id(value, code, error)


def page(limit: Optional[str], offset: Optional[str]) -> List[int]:
    size = parse_int(limit)
    size = 10 if size is None else min(size, 100)
    start = parse_int(offset) or 0
    return [size, start]


def _text_or_none(value) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _nonempty(value) -> bool:
    return isinstance(value, str) and bool(value.strip())


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

@router.get("/users")
def list_users(
    request: Request,
    id: Optional[str] = None,
    search: Optional[str] = None,
    role: Optional[str] = None,
    year: Optional[str] = None,
    sort: str = 'createdAt',
    order: str = 'desc',
    limit: Optional[str] = None,
    offset: Optional[str] = None,
):
    db = get_db(request)
    if id is not None:
        return get_user(request, id)

    conditions, params = [], []
    if search:
        conditions.append("(name LIKE ? OR email LIKE ?)")
        params += [f"%{search}%", f"%{search}%"]
    if role:
        if role not in VALID_ROLES:
            raise ApiError(400, f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}", "INVALID_ROLE")
        conditions.append("role = ?")
        params.append(role)
    if year:
        if year not in VALID_YEARS:
            raise ApiError(400, f"Invalid year. Must be one of: {', '.join(VALID_YEARS)}", "INVALID_YEAR")
        conditions.append("year = ?")
        params.append(year)

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    direction = 'ASC' if order == 'asc' else 'DESC'
    column = USER_SORT.get(sort, 'created_at')
    return db.query(
        f"SELECT * FROM users {where} ORDER BY {column} {direction}, id {direction} LIMIT ? OFFSET ?",
        params + page(limit, offset),
    )


@router.get("/users/{user_id}")
def get_user(request: Request, user_id: str):
    user = get_db(request).fetch_one('users', require_id(user_id))
    if user is None:
        raise ApiError(404, "User not found", "USER_NOT_FOUND")
    return user


@router.post("/users", status_code=201)
def create_user(request: Request, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    name, email, role, year = (payload.get(k) for k in ('name', 'email', 'role', 'year'))

    if not _nonempty(name):
        raise ApiError(400, "Name is required", "MISSING_NAME")
    if not _nonempty(email):
        raise ApiError(400, "Email is required", "MISSING_EMAIL")
    if not role:
        raise ApiError(400, "Role is required", "MISSING_ROLE")
    email = email.strip().lower()
    if not EMAIL_RE.match(email):
        raise ApiError(400, "Invalid email format", "INVALID_EMAIL_FORMAT")
    if role not in VALID_ROLES:
        raise ApiError(400, f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}", "INVALID_ROLE")
    if year and year not in VALID_YEARS:
        raise ApiError(400, f"Invalid year. Must be one of: {', '.join(VALID_YEARS)}", "INVALID_YEAR")
    if db.query("SELECT id FROM users WHERE email = ?", [email]):
        raise ApiError(400, "Email already exists", "EMAIL_EXISTS")

    return db.insert('users', {
        'name': name.strip(),
        'email': email,
        'role': role,
        'year': year or None,
        'roll_number': _text_or_none(payload.get('rollNumber')),
        'created_at': now_iso(),
    })


@router.patch("/users/{user_id}")
def update_user(request: Request, user_id: str, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    record_id = require_id(user_id)
    if db.fetch_one('users', record_id) is None:
        raise ApiError(404, "User not found", "USER_NOT_FOUND")

    updates: Dict[str, Any] = {}
    if 'name' in payload:
        if not _nonempty(payload['name']):
            raise ApiError(400, "Name cannot be empty", "INVALID_NAME")
        updates['name'] = payload['name'].strip()
    if 'role' in payload:
        if payload['role'] not in VALID_ROLES:
            raise ApiError(400, f"Invalid role. Must be one of: {', '.join(VALID_ROLES)}", "INVALID_ROLE")
        updates['role'] = payload['role']
    if 'year' in payload:
        if payload['year'] and payload['year'] not in VALID_YEARS:
            raise ApiError(400, f"Invalid year. Must be one of: {', '.join(VALID_YEARS)}", "INVALID_YEAR")
        updates['year'] = payload['year'] or None
    if 'email' in payload:
        if not _nonempty(payload['email']) or not EMAIL_RE.match(payload['email'].strip()):
            raise ApiError(400, "Invalid email format", "INVALID_EMAIL_FORMAT")
        email = payload['email'].strip().lower()
        if db.query("SELECT id FROM users WHERE email = ? AND id != ?", [email, record_id]):
            raise ApiError(400, "Email already exists", "EMAIL_EXISTS")
        updates['email'] = email
    if 'rollNumber' in payload:
        updates['roll_number'] = _text_or_none(payload['rollNumber'])

    return db.update('users', record_id, updates)


@router.delete("/users/{user_id}")
def delete_user(request: Request, user_id: str):
    return _delete(request, 'users', user_id, "User", "USER_NOT_FOUND")


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

@router.get("/schedules")
def list_schedules(
    request: Request,
    userId: Optional[str] = None,
    role: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    sort: str = 'createdAt',
    order: str = 'desc',
    limit: Optional[str] = None,
    offset: Optional[str] = None,
):
    conditions, params = [], []
    user = optional_filter(userId, "INVALID_USER_ID", "Valid userId is required")
    if user is not None:
        if role == 'student':
            conditions.append("student_id = ?")
            params.append(user)
        elif role == 'mentor':
            conditions.append("mentor_id = ?")
            params.append(user)
        else:
            conditions.append("(student_id = ? OR mentor_id = ?)")
            params += [user, user]
    if status:
        conditions.append("status = ?")
        params.append(status)
    if search:
        conditions.append("(title LIKE ? OR description LIKE ? OR notes LIKE ?)")
        params += [f"%{search}%"] * 3

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    direction = 'ASC' if order == 'asc' else 'DESC'
    column = SCHEDULE_SORT.get(sort, 'created_at')
    return get_db(request).query(
        f"SELECT * FROM schedules {where} ORDER BY {column} {direction}, id {direction} LIMIT ? OFFSET ?",
        params + page(limit, offset),
    )


@router.get("/schedules/{schedule_id}")
def get_schedule(request: Request, schedule_id: str):
    schedule = get_db(request).fetch_one('schedules', require_id(schedule_id))
    if schedule is None:
        raise ApiError(404, "Schedule not found", "SCHEDULE_NOT_FOUND")
    return schedule


def insert_schedule(db: Database, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Validate a camelCase schedule payload and store it."""
    student_id = parse_int(payload.get('studentId'))
    if student_id is None:
        raise ApiError(400, "Valid studentId is required", "MISSING_STUDENT_ID")
    mentor_id = parse_int(payload.get('mentorId'))
    if mentor_id is None:
        raise ApiError(400, "Valid mentorId is required", "MISSING_MENTOR_ID")
    if not _nonempty(payload.get('title')):
        raise ApiError(400, "Title is required", "MISSING_TITLE")
    if not _nonempty(payload.get('scheduledDate')):
        raise ApiError(400, "Scheduled date is required", "MISSING_SCHEDULED_DATE")
    if not _nonempty(payload.get('scheduledTime')):
        raise ApiError(400, "Scheduled time is required", "MISSING_SCHEDULED_TIME")
    if payload.get('meetingMode') not in MEETING_MODES:
        raise ApiError(400, "Meeting mode must be 'online' or 'offline'", "INVALID_MEETING_MODE")
    if not db.exists('users', student_id):
        raise ApiError(400, "Student not found", "STUDENT_NOT_FOUND")
    if not db.exists('users', mentor_id):
        raise ApiError(400, "Mentor not found", "MENTOR_NOT_FOUND")

    timestamp = now_iso()
    return db.insert('schedules', {
        'student_id': student_id,
        'mentor_id': mentor_id,
        'title': payload['title'].strip(),
        'description': _text_or_none(payload.get('description')),
        'scheduled_date': payload['scheduledDate'].strip(),
        'scheduled_time': payload['scheduledTime'].strip(),
        'duration_minutes': parse_int(payload.get('durationMinutes')) or 30,
        'meeting_mode': payload['meetingMode'],
        'status': payload.get('status') or 'scheduled',
        'meeting_link': _text_or_none(payload.get('meetingLink')),
        'location': _text_or_none(payload.get('location')),
        'notes': _text_or_none(payload.get('notes')),
        'created_at': timestamp,
        'updated_at': timestamp,
    })


@router.post("/schedules", status_code=201)
def create_schedule(request: Request, payload: Dict[str, Any] = Body(...)):
    return insert_schedule(get_db(request), payload)


@router.patch("/schedules/{schedule_id}")
def update_schedule(request: Request, schedule_id: str, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    record_id = require_id(schedule_id, error="Valid schedule ID is required")

    if payload.get('meetingMode') and payload['meetingMode'] not in MEETING_MODES:
        raise ApiError(400, "Meeting mode must be 'online' or 'offline'", "INVALID_MEETING_MODE")
    duration = None
    if 'durationMinutes' in payload:
        duration = parse_int(payload['durationMinutes'])
        if duration is None or duration <= 0:
            raise ApiError(400, "Duration minutes must be a positive number", "INVALID_DURATION")
    if 'title' in payload and not _nonempty(payload['title']):
        raise ApiError(400, "Title cannot be empty", "INVALID_TITLE")

    participants: Dict[str, int] = {}
    for key, column, label in (('studentId', 'student_id', 'STUDENT'), ('mentorId', 'mentor_id', 'MENTOR')):
        if key not in payload:
            continue
        user_id = require_id(payload[key], f"INVALID_{label}_ID", f"Valid {key} is required")
        if not db.exists('users', user_id):
            raise ApiError(400, f"{label.capitalize()} not found", f"{label}_NOT_FOUND")
        participants[column] = user_id

    if db.fetch_one('schedules', record_id) is None:
        raise ApiError(404, "Schedule not found", "SCHEDULE_NOT_FOUND")

    fields = {
        'status': 'status',
        'scheduledDate': 'scheduled_date',
        'scheduledTime': 'scheduled_time',
        'description': 'description',
        'meetingMode': 'meeting_mode',
        'meetingLink': 'meeting_link',
        'location': 'location',
        'notes': 'notes',
    }
    updates: Dict[str, Any] = {column: payload[key] for key, column in fields.items() if key in payload}
    if 'title' in payload:
        updates['title'] = payload['title'].strip()
    if duration is not None:
        updates['duration_minutes'] = duration
    updates.update(participants)
    updates['updated_at'] = now_iso()
    return db.update('schedules', record_id, updates)


@router.delete("/schedules/{schedule_id}")
def delete_schedule(request: Request, schedule_id: str):
    return _delete(request, 'schedules', schedule_id, "Schedule", "SCHEDULE_NOT_FOUND")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

@router.get("/messages")
def list_messages(
    request: Request,
    userId: Optional[str] = None,
    conversationWith: Optional[str] = None,
    search: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
):
    conditions, params = [], []
    if userId and conversationWith:
        user, other = parse_int(userId), parse_int(conversationWith)
        if user is None or other is None:
            raise ApiError(400, "Valid user IDs are required", "INVALID_USER_IDS")
        conditions.append("((sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?))")
        params += [user, other, other, user]
    elif userId:
        user = require_id(userId, "INVALID_USER_ID", "Valid user ID is required")
        conditions.append("(sender_id = ? OR receiver_id = ?)")
        params += [user, user]
    if search:
        conditions.append("content LIKE ?")
        params.append(f"%{search}%")

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return get_db(request).query(
        f"SELECT * FROM messages {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + page(limit, offset),
    )


@router.post("/messages", status_code=201)
def create_message(request: Request, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    if payload.get('senderId') in (None, ""):
        raise ApiError(400, "Sender ID is required", "MISSING_SENDER_ID")
    if payload.get('receiverId') in (None, ""):
        raise ApiError(400, "Receiver ID is required", "MISSING_RECEIVER_ID")
    if not _nonempty(payload.get('content')):
        raise ApiError(400, "Content is required", "MISSING_CONTENT")

    sender, receiver = parse_int(payload['senderId']), parse_int(payload['receiverId'])
    if sender is None or receiver is None:
        raise ApiError(400, "Valid user IDs are required", "INVALID_USER_IDS")
    if not db.exists('users', sender):
        raise ApiError(400, "Sender not found", "SENDER_NOT_FOUND")
    if not db.exists('users', receiver):
        raise ApiError(400, "Receiver not found", "RECEIVER_NOT_FOUND")
    if sender == receiver:
        raise ApiError(400, "Cannot send message to yourself", "SELF_MESSAGE_NOT_ALLOWED")

    timestamp = now_iso()
    return db.insert('messages', {
        'sender_id': sender,
        'receiver_id': receiver,
        'content': payload['content'].strip(),
        'read': 0,
        'created_at': timestamp,
        'updated_at': timestamp,
    })


@router.patch("/messages/{message_id}")
def update_message(request: Request, message_id: str, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    record_id = require_id(message_id)
    if 'read' not in payload and 'content' not in payload:
        raise ApiError(400, "At least one field (read or content) is required", "NO_UPDATE_FIELDS")
    if 'senderId' in payload or 'receiverId' in payload:
        raise ApiError(400, "Sender and receiver cannot be changed", "IMMUTABLE_FIELDS")
    if 'read' in payload and not isinstance(payload['read'], bool):
        raise ApiError(400, "Read must be a boolean", "INVALID_READ_TYPE")
    if 'content' in payload and not _nonempty(payload['content']):
        raise ApiError(400, "Content cannot be empty", "INVALID_CONTENT")
    if db.fetch_one('messages', record_id) is None:
        raise ApiError(404, "Message not found", "MESSAGE_NOT_FOUND")

    updates: Dict[str, Any] = {'updated_at': now_iso()}
    if 'read' in payload:
        updates['read'] = int(payload['read'])
    if 'content' in payload:
        updates['content'] = payload['content'].strip()
    return db.update('messages', record_id, updates)


@router.delete("/messages/{message_id}")
def delete_message(request: Request, message_id: str):
    return _delete(request, 'messages', message_id, "Message", "MESSAGE_NOT_FOUND")


# ---------------------------------------------------------------------------
# Counseling feedback
# ---------------------------------------------------------------------------

@router.get("/counseling-feedback")
def list_feedback(
    request: Request,
    studentId: Optional[str] = None,
    mentorId: Optional[str] = None,
    scheduleId: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
):
    conditions, params = [], []
    filters = (
        ('student_id', studentId, "INVALID_STUDENT_ID", "Valid student ID is required"),
        ('mentor_id', mentorId, "INVALID_MENTOR_ID", "Valid mentor ID is required"),
        ('schedule_id', scheduleId, "INVALID_SCHEDULE_ID", "Valid schedule ID is required"),
    )
    for column, raw, code, error in filters:
        value = optional_filter(raw, code, error)
        if value is not None:
            conditions.append(f"{column} = ?")
            params.append(value)

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return get_db(request).query(
        f"SELECT * FROM counseling_feedback {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + page(limit, offset),
    )


@router.post("/counseling-feedback", status_code=201)
def create_feedback(request: Request, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    if not _nonempty(payload.get('feedbackText')):
        raise ApiError(400, "Feedback text is required", "MISSING_FEEDBACK_TEXT")

    ids = {}
    for key, label in (('scheduleId', 'SCHEDULE'), ('studentId', 'STUDENT'), ('mentorId', 'MENTOR')):
        if payload.get(key) in (None, ""):
            raise ApiError(400, f"{key} is required", f"MISSING_{label}_ID")
        ids[key] = require_id(payload[key], f"INVALID_{label}_ID", f"Valid {key} is required")

    if not db.exists('schedules', ids['scheduleId']):
        raise ApiError(404, "Schedule not found", "SCHEDULE_NOT_FOUND")
    if not db.exists('users', ids['studentId']):
        raise ApiError(404, "Student not found", "STUDENT_NOT_FOUND")
    if not db.exists('users', ids['mentorId']):
        raise ApiError(404, "Mentor not found", "MENTOR_NOT_FOUND")

    return db.insert('counseling_feedback', {
        'schedule_id': ids['scheduleId'],
        'student_id': ids['studentId'],
        'mentor_id': ids['mentorId'],
        'feedback_text': payload['feedbackText'].strip(),
        'risk_factors': _text_or_none(payload.get('riskFactors')),
        'recommendations': _text_or_none(payload.get('recommendations')),
        'follow_up_required': int(bool(payload.get('followUpRequired', False))),
        'created_at': now_iso(),
    })


@router.patch("/counseling-feedback/{feedback_id}")
def update_feedback(request: Request, feedback_id: str, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    record_id = require_id(feedback_id)
    if db.fetch_one('counseling_feedback', record_id) is None:
        raise ApiError(404, "Feedback not found", "FEEDBACK_NOT_FOUND")
    if 'feedbackText' in payload and not _nonempty(payload['feedbackText']):
        raise ApiError(400, "Feedback text cannot be empty", "EMPTY_FEEDBACK_TEXT")

    updates: Dict[str, Any] = {}
    if 'feedbackText' in payload:
        updates['feedback_text'] = payload['feedbackText'].strip()
    if 'riskFactors' in payload:
        updates['risk_factors'] = _text_or_none(payload['riskFactors'])
    if 'recommendations' in payload:
        updates['recommendations'] = _text_or_none(payload['recommendations'])
    if 'followUpRequired' in payload:
        updates['follow_up_required'] = int(bool(payload['followUpRequired']))
    return db.update('counseling_feedback', record_id, updates)


@router.delete("/counseling-feedback/{feedback_id}")
def delete_feedback(request: Request, feedback_id: str):
    return _delete(request, 'counseling_feedback', feedback_id, "Feedback", "FEEDBACK_NOT_FOUND")


# ---------------------------------------------------------------------------
# Student-mentor relationships
# ---------------------------------------------------------------------------

@router.get("/student-mentor-relationships")
def list_relationships(
    request: Request,
    studentId: Optional[str] = None,
    mentorId: Optional[str] = None,
    limit: Optional[str] = None,
    offset: Optional[str] = None,
):
    conditions, params = [], []
    student = optional_filter(studentId, "INVALID_STUDENT_ID", "Invalid studentId parameter")
    mentor = optional_filter(mentorId, "INVALID_MENTOR_ID", "Invalid mentorId parameter")
    if student is not None:
        conditions.append("student_id = ?")
        params.append(student)
    if mentor is not None:
        conditions.append("mentor_id = ?")
        params.append(mentor)

    where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
    return get_db(request).query(
        f"SELECT * FROM student_mentor_relationships {where} ORDER BY id LIMIT ? OFFSET ?",
        params + page(limit, offset),
    )


@router.post("/student-mentor-relationships", status_code=201)
def create_relationship(request: Request, payload: Dict[str, Any] = Body(...)):
    db = get_db(request)
    if payload.get('studentId') in (None, ""):
        raise ApiError(400, "studentId is required", "MISSING_STUDENT_ID")
    if payload.get('mentorId') in (None, ""):
        raise ApiError(400, "mentorId is required", "MISSING_MENTOR_ID")
    student = require_id(payload['studentId'], "INVALID_STUDENT_ID", "studentId must be a valid integer")
    mentor = require_id(payload['mentorId'], "INVALID_MENTOR_ID", "mentorId must be a valid integer")
    if not db.exists('users', student):
        raise ApiError(400, "Student not found", "STUDENT_NOT_FOUND")
    if not db.exists('users', mentor):
        raise ApiError(400, "Mentor not found", "MENTOR_NOT_FOUND")
    if db.query(
        "SELECT id FROM student_mentor_relationships WHERE student_id = ? AND mentor_id = ?",
        [student, mentor],
    ):
        raise ApiError(
            400, "Relationship already exists between this student and mentor", "RELATIONSHIP_EXISTS"
        )

    return db.insert('student_mentor_relationships', {
        'student_id': student,
        'mentor_id': mentor,
        'assigned_at': now_iso(),
    })


@router.delete("/student-mentor-relationships/{relationship_id}")
def delete_relationship(request: Request, relationship_id: str):
    return _delete(request, 'student_mentor_relationships', relationship_id,
                   "Relationship", "RELATIONSHIP_NOT_FOUND")


def _delete(request: Request, table: str, raw_id: str, label: str, not_found_code: str):
    db = get_db(request)
    record_id = require_id(raw_id)
    try:
        deleted = db.delete(table, record_id)
    except sqlite3.IntegrityError as e:
        logger.warning("Refusing to delete %s %s: %s", table, record_id, e)
        raise ApiError(400, f"{label} is referenced by other records", "RECORD_IN_USE")
    if deleted is None:
        raise ApiError(404, f"{label} not found", not_found_code)
    return {'message': f"{label} deleted successfully", 'deleted': deleted}

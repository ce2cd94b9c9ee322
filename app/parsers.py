"""Spreadsheet parsing and student metrics normalization."""

import logging
import re
from io import BytesIO
from typing import Dict, List, Optional

import numpy as np
import pandas as pd

from app.models import StudentRiskInput

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = ('.xlsx', '.csv')

METRIC_COLUMNS = [
    'attendance_30d',
    'current_semester_marks',
    'previous_semester_marks',
    'backlogs',
    'attempts_exhausted',
    'fee_overdue_days',
]
REQUIRED_COLUMNS = ['attendance_30d', 'current_semester_marks']
COUNT_COLUMNS = ['backlogs', 'attempts_exhausted', 'fee_overdue_days']

# Canonical column -> accepted header spellings (already passed through normalize_col_name)
COLUMN_VARIATIONS: Dict[str, List[str]] = {
    'student_id': ['studentid', 'studentnumber', 'studentnum', 'rollnumber', 'rollno', 'id'],
    'student_name': ['studentname', 'name', 'student'],
    'attendance_30d': [
        'attendance30d', 'attendance30days', '30dayattendance', 'attendance',
        'attendancepercent', 'attendancepct', 'attendance30dpct',
    ],
    'current_semester_marks': [
        'currentsemestermarks', 'currentmarks', 'semestermarks', 'marks',
        'currentsemester', 'currentscore',
    ],
    'previous_semester_marks': [
        'previoussemestermarks', 'previousmarks', 'prevmarks', 'lastsemestermarks',
        'previoussemester',
    ],
    'backlogs': ['backlogs', 'backlog', 'backlogcount', 'activebacklogs'],
    'attempts_exhausted': ['attemptsexhausted', 'examattemptsexhausted', 'attempts', 'exhaustedattempts'],
    'fee_overdue_days': ['feeoverduedays', 'feesoverduedays', 'feeoverdue', 'feesoverdue', 'overduedays'],
}


def normalize_col_name(col_name) -> str:
    """Lowercase a header and strip everything but letters and digits."""
    if col_name is None or (isinstance(col_name, float) and np.isnan(col_name)):
        return ""
    normalized = str(col_name).strip().lower().replace('#', 'number')
    normalized = re.sub(r'[^a-z0-9]', '', normalized)
    return normalized


def match_column(col_name) -> Optional[str]:
    normalized = normalize_col_name(col_name)
    for target, variations in COLUMN_VARIATIONS.items():
        if normalized == target.replace('_', '') or normalized in variations:
            return target
    return None


def rename_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Rename recognized headers to canonical metric names.

    The first header matching a canonical name wins; later duplicates are
    dropped.
    """
    df = df.copy()
    rename = {}
    seen = set()
    drop = []
    for col in df.columns:
        target = match_column(col)
        if target is None:
            continue
        if target in seen:
            drop.append(col)
            continue
        seen.add(target)
        rename[col] = target

    if drop:
        logger.warning("Dropping duplicate metric columns: %s", drop)
    if not rename:
        logger.warning("No columns recognized. Original columns: %s", list(df.columns))
    return df.drop(columns=drop).rename(columns=rename)


def to_number(value) -> float:
    """
    Convert a cell to float. Handles '85%' and blank cells.

    Returns:
        float, or NaN when the cell is empty or not numeric
    """
    if value is None:
        return np.nan
    if isinstance(value, str):
        value = value.strip().replace('%', '').strip()
        if not value:
            return np.nan
    try:
        val = float(value)
    except (ValueError, TypeError):
        return np.nan
    if np.isinf(val):
        return np.nan
    return val


def normalize_percentage(value: float, max_value: float = 1.0) -> float:
    """
    Normalize percentage to 0-100 range.

    If max_value <= 1.0, multiply by 100.
    """
    if pd.isna(value):
        return np.nan

    if max_value <= 1.0:
        return float(value) * 100.0
    return float(value)


def clean_student_id(value) -> str:
    """Render numeric IDs read as floats ('101.0') as '101'."""
    if pd.isna(value):
        return ""
    try:
        as_float = float(value)
        if as_float.is_integer():
            return str(int(as_float))
    except (ValueError, TypeError):
        pass
    return str(value).strip()


def _find_header_row(raw: pd.DataFrame, max_rows: int = 20) -> Optional[int]:
    for idx in range(min(max_rows, len(raw))):
        matches = {match_column(v) for v in raw.iloc[idx].tolist()}
        matches.discard(None)
        if set(REQUIRED_COLUMNS) <= matches:
            return idx
    return None


def load_metrics_file(file_bytes: bytes, filename: str) -> pd.DataFrame:
    """
    Read an uploaded .xlsx or .csv of student metrics.

    The header row may be preceded by title rows; the first of the leading
    20 rows naming both attendance and marks columns is used.

    Raises:
        ValueError: unsupported extension or no recognizable header row
    """
    name = filename.lower()
    if name.endswith('.csv'):
        raw = pd.read_csv(BytesIO(file_bytes), header=None, dtype=object)
    elif name.endswith('.xlsx'):
        raw = pd.read_excel(BytesIO(file_bytes), header=None, engine='openpyxl', dtype=object)
    else:
        raise ValueError(
            f"Unsupported file type. Please upload one of: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    header_idx = _find_header_row(raw)
    if header_idx is None:
        raise ValueError(
            "Could not find a header row with attendance and marks columns"
        )

    df = raw.iloc[header_idx + 1:].copy()
    df.columns = raw.iloc[header_idx].tolist()
    logger.debug("Header found on row %d: %s", header_idx, list(df.columns))
    return df.reset_index(drop=True)


def _row_labels(df: pd.DataFrame) -> List[str]:
    """Student id, else name, else 1-based row number, for log messages."""
    labels = []
    for idx, row in df.iterrows():
        label = clean_student_id(row['student_id']) if 'student_id' in df.columns else ""
        if not label and 'student_name' in df.columns and pd.notna(row['student_name']):
            label = str(row['student_name']).strip()
        labels.append(label or f"row {idx + 1}")
    return labels


def normalize_metrics(df: pd.DataFrame) -> pd.DataFrame:
    """
    Produce one canonical row per student.

    - headers mapped to canonical names
    - attendance given as 0-1 fractions scaled to 0-100, decided per column:
      every value at most 1 and at least one non-integer (so 0 and 1 stay
      percentages)
    - missing counts become 0, missing previous marks stay NaN
    - rows without attendance and marks are dropped (blank/summary rows)
    - rows missing only one of them are skipped with a warning
    - student_id defaults to the row number, student_name to 'Unknown'

    Raises:
        ValueError: if a required column is missing
    """
    df = rename_columns(df)

    missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
    if missing:
        raise ValueError(f"Missing required columns: {', '.join(missing)}")

    for col in METRIC_COLUMNS:
        if col in df.columns:
            df[col] = df[col].map(to_number).astype(float)
        else:
            df[col] = np.nan

    df = df.dropna(subset=REQUIRED_COLUMNS, how='all').reset_index(drop=True)

    incomplete = df[REQUIRED_COLUMNS].isna().any(axis=1)
    if incomplete.any():
        logger.warning(
            "Skipping %d student(s) with missing attendance or marks: %s",
            int(incomplete.sum()), _row_labels(df[incomplete])
        )
        df = df[~incomplete].reset_index(drop=True)

    if df.empty:
        return pd.DataFrame(columns=['student_id', 'student_name'] + METRIC_COLUMNS)

    attendance = df['attendance_30d']
    attendance_max = attendance.max()
    if attendance_max <= 1.0 and not attendance.map(float.is_integer).all():
        logger.info("Attendance looks fractional (max %.3f); scaling to percent", attendance_max)
        df['attendance_30d'] = attendance.map(
            lambda v: normalize_percentage(v, max_value=attendance_max)
        )

    for col in COUNT_COLUMNS:
        df[col] = df[col].fillna(0).round().astype(int)

    if 'student_id' in df.columns:
        df['student_id'] = df['student_id'].map(clean_student_id)
    else:
        df['student_id'] = ""
    blank_ids = df['student_id'] == ""
    if blank_ids.any():
        df.loc[blank_ids, 'student_id'] = [str(i + 1) for i in df.index[blank_ids]]

    if 'student_name' in df.columns:
        df['student_name'] = df['student_name'].map(
            lambda v: "Unknown" if pd.isna(v) or not str(v).strip() else str(v).strip()
        )
    else:
        df['student_name'] = "Unknown"

    return df[['student_id', 'student_name'] + METRIC_COLUMNS]


def rows_to_inputs(df: pd.DataFrame) -> List[StudentRiskInput]:
    """Build scorer inputs from a normalized metrics dataframe."""
    inputs = []
    for row in df.to_dict('records'):
        previous = row.get('previous_semester_marks')
        inputs.append(StudentRiskInput(
            attendance_30d=float(row['attendance_30d']),
            current_semester_marks=float(row['current_semester_marks']),
            previous_semester_marks=None if pd.isna(previous) else float(previous),
            backlogs=int(row.get('backlogs', 0)),
            attempts_exhausted=int(row.get('attempts_exhausted', 0)),
            fee_overdue_days=int(row.get('fee_overdue_days', 0)),
        ))
    return inputs

"""Unit tests for parsers module."""

import math
from io import BytesIO

import pytest
import pandas as pd

from app.parsers import (
    clean_student_id,
    load_metrics_file,
    match_column,
    normalize_col_name,
    normalize_metrics,
    normalize_percentage,
    rows_to_inputs,
    to_number,
)


def test_normalize_col_name():
    assert normalize_col_name("Attendance (30d) %") == "attendance30d"
    assert normalize_col_name("  Student # ") == "studentnumber"
    assert normalize_col_name("Fee_Overdue-Days") == "feeoverduedays"
    assert normalize_col_name(None) == ""


def test_match_column():
    assert match_column("Student#") == 'student_id'
    assert match_column("Roll No.") == 'student_id'
    assert match_column("Student Name") == 'student_name'
    assert match_column("attendance30d") == 'attendance_30d'
    assert match_column("Current Semester Marks") == 'current_semester_marks'
    assert match_column("Previous Marks") == 'previous_semester_marks'
    assert match_column("Backlogs") == 'backlogs'
    assert match_column("Attempts Exhausted") == 'attempts_exhausted'
    assert match_column("Fees Overdue (days)") == 'fee_overdue_days'
    assert match_column("Hostel") is None


def test_to_number():
    assert to_number("85%") == 85.0
    assert to_number(" 72.5 ") == 72.5
    assert to_number(3) == 3.0
    assert math.isnan(to_number(""))
    assert math.isnan(to_number(None))
    assert math.isnan(to_number("n/a"))


def test_normalize_percentage():
    """Fractions are scaled only when the column maximum is at most 1."""
    assert normalize_percentage(0.5, max_value=1.0) == 50.0
    assert normalize_percentage(50.0, max_value=100.0) == 50.0
    assert math.isnan(normalize_percentage(pd.NA, max_value=1.0))


def test_clean_student_id():
    assert clean_student_id(101.0) == "101"
    assert clean_student_id("S-9") == "S-9"
    assert clean_student_id(None) == ""


def test_normalize_metrics():
    df = pd.DataFrame({
        'Student ID': [101.0, None, 103.0],
        'Name': ['Asha', 'Ravi', None],
        'Attendance (30d)': [0.45, 0.9, 0.6],
        'Marks': ['42', '85', '55'],
        'Previous Marks': [55, None, None],
        'Backlogs': [2, None, 0],
        'Fee Overdue Days': [60, 0, None],
    })

    normalized = normalize_metrics(df)

    assert list(normalized.columns) == [
        'student_id', 'student_name', 'attendance_30d', 'current_semester_marks',
        'previous_semester_marks', 'backlogs', 'attempts_exhausted', 'fee_overdue_days',
    ]
    assert normalized['student_id'].tolist() == ['101', '2', '103']
    assert normalized['student_name'].tolist() == ['Asha', 'Ravi', 'Unknown']
    assert normalized['attendance_30d'].tolist() == pytest.approx([45.0, 90.0, 60.0])
    assert normalized['current_semester_marks'].tolist() == [42.0, 85.0, 55.0]
    assert normalized['backlogs'].tolist() == [2, 0, 0]
    # Missing column defaults to zero
    assert normalized['attempts_exhausted'].tolist() == [0, 0, 0]
    assert normalized['fee_overdue_days'].tolist() == [60, 0, 0]
    assert normalized['previous_semester_marks'].iloc[0] == 55.0
    assert pd.isna(normalized['previous_semester_marks'].iloc[1])


def test_normalize_metrics_keeps_percent_attendance():
    df = pd.DataFrame({'Attendance': [45, 90], 'Marks': [42, 85]})
    normalized = normalize_metrics(df)
    assert normalized['attendance_30d'].tolist() == [45.0, 90.0]


def test_normalize_metrics_drops_blank_rows():
    df = pd.DataFrame({'Attendance': [45, None], 'Marks': [42, None], 'Name': ['Asha', 'Total']})
    normalized = normalize_metrics(df)
    assert len(normalized) == 1


def test_normalize_metrics_skips_incomplete_rows(caplog):
    """A blank attendance or marks cell is not read as zero."""
    df = pd.DataFrame({
        'Student ID': ['S1', 'S2', 'S3'],
        'Name': ['Asha', 'Ravi', 'Meera'],
        'Attendance': [None, 80, 70],
        'Marks': [85, None, 65],
    })

    with caplog.at_level('WARNING', logger='app.parsers'):
        normalized = normalize_metrics(df)

    assert normalized['student_id'].tolist() == ['S3']
    assert normalized['attendance_30d'].tolist() == [70.0]
    assert "S1" in caplog.text
    assert "S2" in caplog.text


def test_normalize_metrics_all_rows_incomplete():
    df = pd.DataFrame({'Name': ['Asha'], 'Attendance': [None], 'Marks': [85]})
    normalized = normalize_metrics(df)
    assert normalized.empty
    assert 'attendance_30d' in normalized.columns


def test_normalize_metrics_integer_attendance_not_scaled():
    """0 and 1 are percentages, not fractions."""
    single = normalize_metrics(pd.DataFrame({'Attendance': [1], 'Marks': [85]}))
    assert single['attendance_30d'].tolist() == [1.0]

    pair = normalize_metrics(pd.DataFrame({'Attendance': [0, 1], 'Marks': [85, 90]}))
    assert pair['attendance_30d'].tolist() == [0.0, 1.0]


def test_normalize_metrics_missing_required_column():
    df = pd.DataFrame({'Attendance': [45, 90], 'Backlogs': [1, 0]})
    with pytest.raises(ValueError, match="current_semester_marks"):
        normalize_metrics(df)


def test_load_csv_with_title_row():
    content = (
        "ResQEd export,,,\n"
        "Student ID,Name,Attendance,Marks\n"
        "1,Asha,45,42\n"
        "2,Ravi,90,85\n"
    ).encode()

    raw = load_metrics_file(content, "students.csv")
    normalized = normalize_metrics(raw)

    assert normalized['student_name'].tolist() == ['Asha', 'Ravi']
    assert normalized['attendance_30d'].tolist() == [45.0, 90.0]


def test_load_xlsx():
    df = pd.DataFrame({
        'Roll Number': ['FE-01', 'FE-02'],
        'Student Name': ['Asha', 'Ravi'],
        'Attendance 30d': [48, 80],
        'Current Semester Marks': [75, 38],
        'Backlogs': [0, 1],
    })
    buffer = BytesIO()
    df.to_excel(buffer, index=False, engine='openpyxl')

    normalized = normalize_metrics(load_metrics_file(buffer.getvalue(), "Students.XLSX"))

    assert normalized['student_id'].tolist() == ['FE-01', 'FE-02']
    assert normalized['current_semester_marks'].tolist() == [75.0, 38.0]
    assert normalized['backlogs'].tolist() == [0, 1]


def test_load_rejects_unknown_extension():
    with pytest.raises(ValueError, match="Unsupported file type"):
        load_metrics_file(b"whatever", "students.txt")


def test_load_without_header_row():
    content = b"a,b\n1,2\n"
    with pytest.raises(ValueError, match="header row"):
        load_metrics_file(content, "students.csv")


def test_rows_to_inputs():
    df = normalize_metrics(pd.DataFrame({
        'Attendance': [45, 90],
        'Marks': [42, 85],
        'Previous Marks': [55, None],
        'Attempts Exhausted': [2, 0],
    }))

    inputs = rows_to_inputs(df)

    assert len(inputs) == 2
    assert inputs[0].attendance_30d == 45.0
    assert inputs[0].previous_semester_marks == 55.0
    assert inputs[0].attempts_exhausted == 2
    assert inputs[1].previous_semester_marks is None

"""Export assessment results to an Excel workbook, one row per student."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Any, BinaryIO

from openpyxl import Workbook

from exam_portal.core.models import Assessment, Question, Student, Submission

SHEET_TITLE = "Assessment Results"
PLACEHOLDER = "-"
_QUESTION_TEXT_LIMIT = 50
_COLUMN_WIDTHS = (20, 25, 15, 20, 10, 20)


def results_filename(assessment: Assessment, today: date) -> str:
    return f"{assessment.title} - Results - {today:%Y-%m-%d}.xlsx"


def build_result_rows(
    assessment: Assessment,
    roster: list[tuple[Student, Submission | None]],
) -> list[dict[str, Any]]:
    """Build the flat export rows. Students without a submission get placeholders."""
    return [_result_row(assessment, student, submission) for student, submission in roster]


def save_results(
    target: Path | BinaryIO,
    assessment: Assessment,
    roster: list[tuple[Student, Submission | None]],
) -> None:
    """Persist the results workbook to a path or a binary stream."""
    rows = build_result_rows(assessment, roster)
    headers = _headers(assessment)

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = SHEET_TITLE
    sheet.append(headers)
    for row in rows:
        sheet.append([row.get(header, "") for header in headers])
    for column, width in zip("ABCDEF", _COLUMN_WIDTHS):
        sheet.column_dimensions[column].width = width

    if isinstance(target, Path):
        target = target.resolve()
        target.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(target)


def _headers(assessment: Assessment) -> list[str]:
    headers = [
        "Student Name",
        "Email",
        "Status",
        "Submission Date",
        "Marks",
        "Auto-calculated Score",
        "Tab Switched",
    ]
    for number, question in enumerate(assessment.questions, start=1):
        headers.append(_question_header(number, question))
        if question.is_multiple_choice and question.correct_answer:
            headers.append(f"Q{number} Correct Answer")
            headers.append(f"Q{number} Correct?")
    return headers


def _question_header(number: int, question: Question) -> str:
    text = question.text
    if len(text) > _QUESTION_TEXT_LIMIT:
        text = text[:_QUESTION_TEXT_LIMIT] + "..."
    unit = "mark" if question.marks == 1 else "marks"
    return f"Q{number} ({question.marks} {unit}) - {text}"


def _result_row(
    assessment: Assessment,
    student: Student,
    submission: Submission | None,
) -> dict[str, Any]:
    row: dict[str, Any] = {"Student Name": student.name, "Email": student.email}

    if submission is None:
        row["Status"] = "Not Started"
        row["Submission Date"] = PLACEHOLDER
        row["Marks"] = PLACEHOLDER
        row["Auto-calculated Score"] = PLACEHOLDER
        row["Tab Switched"] = PLACEHOLDER
    else:
        row["Status"] = "Completed" if submission.is_completed else "Incomplete"
        row["Submission Date"] = f"{submission.submitted_at:%Y-%m-%d %H:%M}"
        row["Marks"] = (
            f"{submission.marks_awarded}/{assessment.total_marks}"
            if submission.marks_awarded is not None
            else PLACEHOLDER
        )
        row["Auto-calculated Score"] = (
            f"{submission.auto_graded_marks}/{assessment.mcq_marks} MCQ marks"
            if submission.auto_graded_marks is not None
            else PLACEHOLDER
        )
        row["Tab Switched"] = "Yes" if submission.tab_switched else "No"

    for number, question in enumerate(assessment.questions, start=1):
        header = _question_header(number, question)
        answer = submission.answer_for(question.id) if submission is not None else None
        if submission is None:
            row[header] = PLACEHOLDER
        else:
            row[header] = answer if answer is not None else "Not answered"

        if question.is_multiple_choice and question.correct_answer:
            row[f"Q{number} Correct Answer"] = question.correct_answer
            if submission is None:
                row[f"Q{number} Correct?"] = PLACEHOLDER
            else:
                row[f"Q{number} Correct?"] = "Yes" if answer == question.correct_answer else "No"
    return row

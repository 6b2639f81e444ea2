"""Import assessments from an Excel workbook.

Workbook layout (first worksheet, first row holds the column headers):

    Title | Description | StartDate | StartTime | DueDate | DueTime
    Sample Assessment | ... | 2024-06-01 | 09:00 | 2024-06-30 | 17:00

followed by one row per question, using the columns

    QuestionText | Type | Options | CorrectAnswer | Marks

``Type`` is ``multiple-choice`` or anything else for a free-text question.
``Options`` is a comma or semicolon separated list. ``Marks`` defaults to 1,
``StartTime``/``DueTime`` to 09:00/17:00 and ``CorrectAnswer`` to the first
option. Any malformed row fails the whole import.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time
from io import BytesIO
from pathlib import Path
from typing import Any, BinaryIO
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from exam_portal.constants.portal_constants import (
    DATE_FORMAT,
    DEFAULT_DUE_TIME,
    DEFAULT_START_TIME,
    TIME_FORMAT,
)
from exam_portal.core.errors import InvalidInputError
from exam_portal.core.models import Question, QuestionType
from exam_portal.core.services.assessment_repository import AssessmentDraft


class AssessmentImportError(InvalidInputError):
    """Raised when an assessment workbook cannot be parsed."""


@dataclass(slots=True)
class ImportedAssessment:
    """Container for the parsed workbook contents."""

    source_name: str
    draft: AssessmentDraft


_OPTION_SPLIT = re.compile(r"[;,]")

TEMPLATE_ROWS: list[dict[str, Any]] = [
    {
        "Title": "Sample Assessment",
        "Description": "This is a sample assessment created from Excel",
        "StartDate": "2023-06-01",
        "StartTime": "09:00",
        "DueDate": "2023-06-30",
        "DueTime": "17:00",
    },
    {
        "QuestionText": "What is 2+2?",
        "Type": "multiple-choice",
        "Options": "1, 2, 3, 4",
        "CorrectAnswer": "4",
        "Marks": 1,
    },
    {
        "QuestionText": "Explain the concept of gravity.",
        "Type": "text",
        "Marks": 5,
    },
]


def load_assessment_from_file(file_path: Path) -> ImportedAssessment:
    with file_path.open("rb") as handle:
        return _load(handle, file_path.name)


def load_assessment_from_bytes(data: bytes, source_name: str = "upload.xlsx") -> ImportedAssessment:
    return _load(BytesIO(data), source_name)


def write_template(target: Path | BinaryIO) -> None:
    """Write a sample workbook showing the import layout."""
    headers: list[str] = []
    for row in TEMPLATE_ROWS:
        headers.extend(key for key in row if key not in headers)

    workbook = Workbook()
    sheet = workbook.active
    sheet.title = "Assessment"
    sheet.append(headers)
    for row in TEMPLATE_ROWS:
        sheet.append([row.get(header) for header in headers])
    for column, width in zip("ABCDEF", (40, 40, 15, 10, 15, 10)):
        sheet.column_dimensions[column].width = width
    workbook.save(target)


def _load(stream: BinaryIO, source_name: str) -> ImportedAssessment:
    try:
        workbook = load_workbook(stream, read_only=True, data_only=True)
    except (BadZipFile, InvalidFileException, KeyError, OSError, ValueError) as exc:
        raise AssessmentImportError(f"Could not read workbook '{source_name}'") from exc

    try:
        rows = _sheet_rows(workbook.worksheets[0]) if workbook.worksheets else []
    finally:
        workbook.close()

    if not rows:
        raise AssessmentImportError("No data found in the Excel file")
    return ImportedAssessment(source_name=source_name, draft=_parse_rows(rows))


def _sheet_rows(sheet) -> list[dict[str, Any]]:
    """Turn the sheet into dicts keyed by the header row, skipping blank rows."""
    iterator = sheet.iter_rows(values_only=True)
    header_row = next(iterator, None)
    if header_row is None:
        return []
    headers = [str(cell).strip() if cell is not None else "" for cell in header_row]

    rows: list[dict[str, Any]] = []
    for values in iterator:
        row = {
            header: value
            for header, value in zip(headers, values)
            if header and value is not None and str(value).strip() != ""
        }
        if row:
            rows.append(row)
    return rows


def _parse_rows(rows: list[dict[str, Any]]) -> AssessmentDraft:
    details = rows[0]
    if not details.get("Title") or not details.get("StartDate") or not details.get("DueDate"):
        raise AssessmentImportError("Missing required fields in Excel (Title, StartDate, DueDate)")

    questions = [_parse_question(index, row) for index, row in enumerate(rows[1:], start=1)]
    return AssessmentDraft(
        title=str(details["Title"]).strip(),
        description=str(details.get("Description", "")).strip(),
        start_date=_date_text(details["StartDate"]),
        start_time=_time_text(details.get("StartTime"), DEFAULT_START_TIME),
        due_date=_date_text(details["DueDate"]),
        due_time=_time_text(details.get("DueTime"), DEFAULT_DUE_TIME),
        questions=questions,
    )


def _parse_question(number: int, row: dict[str, Any]) -> Question:
    text = _cell_text(row.get("QuestionText"))
    if not text:
        raise AssessmentImportError(f"Question {number} is missing text")

    marks = _marks(row.get("Marks"))
    is_mcq = _cell_text(row.get("Type")).lower() == QuestionType.MULTIPLE_CHOICE.value
    if not is_mcq:
        return Question(id="", text=text, type=QuestionType.TEXT, marks=marks)

    raw_options = _cell_text(row.get("Options"))
    if not raw_options:
        raise AssessmentImportError(f"Question {number} is missing options")
    options = [option.strip() for option in _OPTION_SPLIT.split(raw_options)]
    correct = _cell_text(row.get("CorrectAnswer")) or options[0]
    return Question(
        id="",
        text=text,
        type=QuestionType.MULTIPLE_CHOICE,
        marks=marks,
        options=options,
        correct_answer=correct,
    )


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _marks(value: Any) -> int:
    try:
        marks = int(float(value))
    except (TypeError, ValueError):
        return 1
    return marks if marks > 0 else 1


def _date_text(value: Any) -> str:
    if isinstance(value, (datetime, date)):
        return value.strftime(DATE_FORMAT)
    return _cell_text(value)


def _time_text(value: Any, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, (datetime, time)):
        return value.strftime(TIME_FORMAT)
    return _cell_text(value) or default

"""Service for deriving score rows and filtering them for reports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum

from exam_portal.core.models import Assessment, Score, Student, Submission, User


class TeacherType(str, Enum):
    ALL = "all"
    SUPER = "super"
    NORMAL = "normal"


class DateMode(str, Enum):
    BEFORE = "before"
    AFTER = "after"
    ON = "on"


@dataclass(slots=True)
class ScoreFilter:
    """Report filters. The teacher type only applies across all assessments."""

    assessment_id: str | None = None
    teacher_type: TeacherType = TeacherType.ALL
    department: str | None = None
    on_date: date | None = None
    date_mode: DateMode = DateMode.ON
    descending: bool = True


class Scoreboard:
    """Joins marked submissions with their assessment, student and teacher."""

    def build_scores(
        self,
        submissions: list[Submission],
        assessments: list[Assessment],
        students: list[Student],
        teachers: list[User],
    ) -> list[Score]:
        """Return one row per completed submission that has a final mark.

        Rows whose assessment, student or owning teacher cannot be found are
        left out.
        """
        assessments_by_id = {a.id: a for a in assessments}
        students_by_id = {s.id: s for s in students}
        teachers_by_id = {t.id: t for t in teachers}

        scores: list[Score] = []
        for submission in submissions:
            if not submission.is_completed or submission.marks_awarded is None:
                continue
            assessment = assessments_by_id.get(submission.assessment_id)
            student = students_by_id.get(submission.student_id)
            if assessment is None or student is None:
                continue
            teacher = teachers_by_id.get(student.created_by)
            if teacher is None:
                continue
            scores.append(
                Score(
                    student_id=student.id,
                    student_name=student.name,
                    assessment_id=assessment.id,
                    assessment_title=assessment.title,
                    marks_awarded=submission.marks_awarded,
                    total_marks=assessment.total_marks,
                    teacher_id=teacher.id,
                    teacher_name=teacher.name,
                    assessment_due_at=assessment.due_at,
                    department=teacher.department,
                    created_by_super_teacher=assessment.created_by_super_teacher,
                )
            )
        return scores

    def filter_scores(self, scores: list[Score], criteria: ScoreFilter) -> list[Score]:
        """Apply the report filters and sort by percentage."""
        filtered = list(scores)

        if criteria.assessment_id:
            filtered = [s for s in filtered if s.assessment_id == criteria.assessment_id]
        elif criteria.teacher_type is TeacherType.SUPER:
            filtered = [s for s in filtered if s.created_by_super_teacher]
        elif criteria.teacher_type is TeacherType.NORMAL:
            filtered = [s for s in filtered if not s.created_by_super_teacher]

        if criteria.department and criteria.department != "all":
            filtered = [s for s in filtered if s.department == criteria.department]

        if criteria.on_date is not None:
            filtered = [s for s in filtered if _matches_date(s.assessment_due_at, criteria)]

        filtered.sort(key=lambda s: s.percentage, reverse=criteria.descending)
        return filtered


def _matches_date(due_at: datetime, criteria: ScoreFilter) -> bool:
    boundary = datetime.combine(criteria.on_date, datetime.min.time())
    if criteria.date_mode is DateMode.BEFORE:
        return due_at < boundary
    if criteria.date_mode is DateMode.AFTER:
        return due_at > boundary
    return due_at.date() == criteria.on_date

"""Domain models for the exam portal.

Every persisted model serializes to the camelCase layout used by the stored
JSON blobs (``createdBy``, ``isSuperTeacher``...). Optional fields that are
unset are left out of the serialized form.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Role(str, Enum):
    TEACHER = "teacher"
    STUDENT = "student"
    ADMIN = "admin"


class QuestionType(str, Enum):
    TEXT = "text"
    MULTIPLE_CHOICE = "multiple-choice"


def combine_date_time(date_text: str, time_text: str) -> datetime:
    """Parse a ``YYYY-MM-DD`` date and ``HH:MM`` time into a naive local datetime."""
    return datetime.fromisoformat(f"{date_text}T{time_text}")


def _parse_timestamp(value: str) -> datetime:
    # Browser ISO strings end in "Z"; stored timestamps are kept naive.
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


@dataclass(slots=True)
class User:
    """A teacher, the admin, or the session projection of a student."""

    id: str
    name: str
    email: str
    role: Role
    created_by: str | None = None
    department: str | None = None
    is_super_teacher: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": self.role.value,
        }
        if self.created_by is not None:
            data["createdBy"] = self.created_by
        if self.department is not None:
            data["department"] = self.department
        if self.role is Role.TEACHER:
            data["isSuperTeacher"] = self.is_super_teacher
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "User":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            email=data["email"],
            role=Role(data["role"]),
            created_by=data.get("createdBy"),
            department=data.get("department"),
            is_super_teacher=bool(data.get("isSuperTeacher", False)),
        )


@dataclass(slots=True)
class Student:
    """Student account owned by exactly one teacher."""

    id: str
    name: str
    email: str
    password: str
    created_by: str

    def as_user(self) -> User:
        """Return the session projection used when the student logs in."""
        return User(
            id=self.id,
            name=self.name,
            email=self.email,
            role=Role.STUDENT,
            created_by=self.created_by,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "password": self.password,
            "createdBy": self.created_by,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Student":
        return cls(
            id=str(data["id"]),
            name=data["name"],
            email=data["email"],
            password=data["password"],
            created_by=str(data["createdBy"]),
        )


@dataclass(slots=True)
class Question:
    """A free-text or multiple-choice question worth a number of marks."""

    id: str
    text: str
    type: QuestionType
    marks: int
    options: list[str] | None = None
    correct_answer: str | None = None

    @property
    def is_multiple_choice(self) -> bool:
        return self.type is QuestionType.MULTIPLE_CHOICE

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "text": self.text,
            "type": self.type.value,
            "marks": self.marks,
        }
        if self.options is not None:
            data["options"] = list(self.options)
        if self.correct_answer is not None:
            data["correctAnswer"] = self.correct_answer
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Question":
        options = data.get("options")
        return cls(
            id=str(data.get("id", "")),
            text=data["text"],
            type=QuestionType(data["type"]),
            marks=int(data["marks"]),
            options=list(options) if options is not None else None,
            correct_answer=data.get("correctAnswer"),
        )


@dataclass(slots=True)
class Assessment:
    """Timed assessment authored by a teacher."""

    id: str
    title: str
    description: str
    created_by: str
    start_date: str
    start_time: str
    due_date: str
    due_time: str
    questions: list[Question]
    created_at: datetime
    created_by_super_teacher: bool = False

    @property
    def start_at(self) -> datetime:
        return combine_date_time(self.start_date, self.start_time)

    @property
    def due_at(self) -> datetime:
        return combine_date_time(self.due_date, self.due_time)

    @property
    def total_marks(self) -> int:
        return sum(question.marks for question in self.questions)

    @property
    def mcq_marks(self) -> int:
        return sum(q.marks for q in self.questions if q.is_multiple_choice)

    @property
    def text_marks(self) -> int:
        return self.total_marks - self.mcq_marks

    @property
    def has_text_questions(self) -> bool:
        return any(not q.is_multiple_choice for q in self.questions)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "createdBy": self.created_by,
            "startDate": self.start_date,
            "startTime": self.start_time,
            "dueDate": self.due_date,
            "dueTime": self.due_time,
            "questions": [question.to_dict() for question in self.questions],
            "createdAt": self.created_at.isoformat(),
            "createdBySuperTeacher": self.created_by_super_teacher,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Assessment":
        return cls(
            id=str(data["id"]),
            title=data["title"],
            description=data.get("description", ""),
            created_by=str(data["createdBy"]),
            start_date=data["startDate"],
            start_time=data["startTime"],
            due_date=data["dueDate"],
            due_time=data["dueTime"],
            questions=[Question.from_dict(item) for item in data.get("questions", [])],
            created_at=_parse_timestamp(data["createdAt"]),
            created_by_super_teacher=bool(data.get("createdBySuperTeacher", False)),
        )


@dataclass(slots=True)
class AnswerEntry:
    """A student's literal answer to one question."""

    question_id: str
    answer: str

    def to_dict(self) -> dict[str, Any]:
        return {"questionId": self.question_id, "answer": self.answer}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AnswerEntry":
        return cls(question_id=str(data["questionId"]), answer=data["answer"])


@dataclass(slots=True)
class Submission:
    """A student's answers to one assessment. Unique per (assessment, student)."""

    id: str
    assessment_id: str
    student_id: str
    answers: list[AnswerEntry]
    submitted_at: datetime
    is_completed: bool
    auto_graded_marks: int | None = None
    marks_awarded: int | None = None
    tab_switched: bool = False
    screen_size_violation: bool = False

    def answer_for(self, question_id: str) -> str | None:
        for entry in self.answers:
            if entry.question_id == question_id:
                return entry.answer
        return None

    @property
    def has_violation(self) -> bool:
        return self.tab_switched or self.screen_size_violation

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "assessmentId": self.assessment_id,
            "studentId": self.student_id,
            "answers": [entry.to_dict() for entry in self.answers],
            "submittedAt": self.submitted_at.isoformat(),
            "isCompleted": self.is_completed,
            "tabSwitched": self.tab_switched,
            "screenSizeViolation": self.screen_size_violation,
        }
        if self.auto_graded_marks is not None:
            data["autoGradedMarks"] = self.auto_graded_marks
        if self.marks_awarded is not None:
            data["marksAwarded"] = self.marks_awarded
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Submission":
        return cls(
            id=str(data["id"]),
            assessment_id=str(data["assessmentId"]),
            student_id=str(data["studentId"]),
            answers=[AnswerEntry.from_dict(item) for item in data.get("answers", [])],
            submitted_at=_parse_timestamp(data["submittedAt"]),
            is_completed=bool(data["isCompleted"]),
            auto_graded_marks=data.get("autoGradedMarks"),
            marks_awarded=data.get("marksAwarded"),
            tab_switched=bool(data.get("tabSwitched", False)),
            screen_size_violation=bool(data.get("screenSizeViolation", False)),
        )


@dataclass(slots=True)
class Score:
    """Flat reporting row joining a marked submission with its assessment and student."""

    student_id: str
    student_name: str
    assessment_id: str
    assessment_title: str
    marks_awarded: int
    total_marks: int
    teacher_id: str
    teacher_name: str
    assessment_due_at: datetime
    department: str | None = None
    created_by_super_teacher: bool = False

    @property
    def percentage(self) -> float:
        if self.total_marks <= 0:
            return 0.0
        return self.marks_awarded / self.total_marks * 100

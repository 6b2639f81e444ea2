"""Service for managing the collection of assessments."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import uuid4

from exam_portal.constants.portal_constants import DATE_FORMAT, MIN_MCQ_OPTIONS, TIME_FORMAT
from exam_portal.core.errors import InvalidInputError, NotFoundError
from exam_portal.core.models import Assessment, Question, QuestionType, combine_date_time


@dataclass(slots=True)
class AssessmentDraft:
    """Author-supplied assessment fields before ids and ownership are attached."""

    title: str
    description: str
    start_date: str
    start_time: str
    due_date: str
    due_time: str
    questions: list[Question]


class AssessmentRepository:
    """Validates and stores assessments."""

    def __init__(self) -> None:
        self._assessments: list[Assessment] = []

    def load(self, assessments: list[Assessment]) -> None:
        self._assessments = list(assessments)

    def get_assessments(self) -> list[Assessment]:
        return list(self._assessments)

    def find(self, assessment_id: str) -> Assessment | None:
        return next((a for a in self._assessments if a.id == assessment_id), None)

    def get(self, assessment_id: str) -> Assessment:
        assessment = self.find(assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment not found")
        return assessment

    def created_by(self, teacher_id: str) -> list[Assessment]:
        return [a for a in self._assessments if a.created_by == teacher_id]

    def super_teacher_assessments(self) -> list[Assessment]:
        return [a for a in self._assessments if a.created_by_super_teacher]

    def add(
        self,
        draft: AssessmentDraft,
        owner_id: str,
        by_super_teacher: bool,
        created_at: datetime,
    ) -> Assessment:
        prepared = self._prepare(draft, keep_ids=False)
        assessment = Assessment(
            id=uuid4().hex,
            title=prepared.title,
            description=prepared.description,
            created_by=owner_id,
            start_date=prepared.start_date,
            start_time=prepared.start_time,
            due_date=prepared.due_date,
            due_time=prepared.due_time,
            questions=prepared.questions,
            created_at=created_at,
            created_by_super_teacher=by_super_teacher,
        )
        self._assessments.append(assessment)
        return assessment

    def update(self, assessment_id: str, draft: AssessmentDraft) -> Assessment:
        existing = self.get(assessment_id)
        prepared = self._prepare(draft, keep_ids=True)
        # Ownership, creation time and the super-teacher snapshot never change.
        updated = Assessment(
            id=existing.id,
            title=prepared.title,
            description=prepared.description,
            created_by=existing.created_by,
            start_date=prepared.start_date,
            start_time=prepared.start_time,
            due_date=prepared.due_date,
            due_time=prepared.due_time,
            questions=prepared.questions,
            created_at=existing.created_at,
            created_by_super_teacher=existing.created_by_super_teacher,
        )
        self._assessments = [updated if a.id == assessment_id else a for a in self._assessments]
        return updated

    def remove(self, assessment_id: str) -> Assessment:
        existing = self.get(assessment_id)
        self._assessments = [a for a in self._assessments if a.id != assessment_id]
        return existing

    # --- Validation ---

    def _prepare(self, draft: AssessmentDraft, keep_ids: bool) -> AssessmentDraft:
        """Validate and normalize a draft before storage."""
        title = draft.title.strip()
        if not title:
            raise InvalidInputError("Title is required")
        if not draft.start_date:
            raise InvalidInputError("Start date is required")
        if not draft.due_date:
            raise InvalidInputError("Due date is required")

        start_date, start_time = self._normalize_date(draft.start_date), self._normalize_time(draft.start_time)
        due_date, due_time = self._normalize_date(draft.due_date), self._normalize_time(draft.due_time)
        if combine_date_time(due_date, due_time) <= combine_date_time(start_date, start_time):
            raise InvalidInputError("Due date must be after start date")

        if not draft.questions:
            raise InvalidInputError("Assessment must have at least one question")
        questions = [
            self._prepare_question(index, question, keep_ids)
            for index, question in enumerate(draft.questions, start=1)
        ]

        return AssessmentDraft(
            title=title,
            description=draft.description.strip(),
            start_date=start_date,
            start_time=start_time,
            due_date=due_date,
            due_time=due_time,
            questions=questions,
        )

    @staticmethod
    def _prepare_question(number: int, question: Question, keep_ids: bool) -> Question:
        text = question.text.strip()
        if not text:
            raise InvalidInputError(f"Question {number} text is required")
        if isinstance(question.marks, bool) or not isinstance(question.marks, int) or question.marks <= 0:
            raise InvalidInputError(f"Question {number} marks must be a positive integer")

        question_id = question.id if keep_ids and question.id else uuid4().hex
        if question.type is not QuestionType.MULTIPLE_CHOICE:
            return Question(id=question_id, text=text, type=QuestionType.TEXT, marks=question.marks)

        options = list(question.options or [])
        if len(options) < MIN_MCQ_OPTIONS:
            raise InvalidInputError(
                f"Question {number} needs at least {MIN_MCQ_OPTIONS} options"
            )
        if any(not option.strip() for option in options):
            raise InvalidInputError(f"Question {number} has empty options")
        if len(set(options)) != len(options):
            raise InvalidInputError(f"Question {number} has duplicate options")
        if not question.correct_answer or question.correct_answer not in options:
            raise InvalidInputError(f"Question {number} doesn't have a valid correct answer")

        return Question(
            id=question_id,
            text=text,
            type=QuestionType.MULTIPLE_CHOICE,
            marks=question.marks,
            options=options,
            correct_answer=question.correct_answer,
        )

    @staticmethod
    def _normalize_date(value: str) -> str:
        try:
            return datetime.strptime(value.strip(), DATE_FORMAT).strftime(DATE_FORMAT)
        except ValueError as exc:
            raise InvalidInputError(f"Invalid date '{value}', expected YYYY-MM-DD") from exc

    @staticmethod
    def _normalize_time(value: str) -> str:
        try:
            return datetime.strptime(value.strip(), TIME_FORMAT).strftime(TIME_FORMAT)
        except ValueError as exc:
            raise InvalidInputError(f"Invalid time '{value}', expected HH:MM") from exc

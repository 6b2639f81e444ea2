"""Service for storing submissions, one per (assessment, student) pair."""

from __future__ import annotations

from datetime import datetime
from uuid import uuid4

from exam_portal.core.errors import NotFoundError
from exam_portal.core.models import AnswerEntry, Assessment, Submission
from exam_portal.core.services.grading import auto_grade, resolve_marks_awarded


class SubmissionLedger:
    """Upserts submissions and applies the grading rules."""

    def __init__(self) -> None:
        self._submissions: list[Submission] = []

    def load(self, submissions: list[Submission]) -> None:
        self._submissions = list(submissions)

    def get_submissions(self) -> list[Submission]:
        return list(self._submissions)

    def find(self, assessment_id: str, student_id: str) -> Submission | None:
        return next(
            (
                s
                for s in self._submissions
                if s.assessment_id == assessment_id and s.student_id == student_id
            ),
            None,
        )

    def get_by_id(self, submission_id: str) -> Submission:
        submission = next((s for s in self._submissions if s.id == submission_id), None)
        if submission is None:
            raise NotFoundError("Submission not found")
        return submission

    def for_assessment(self, assessment_id: str) -> list[Submission]:
        return [s for s in self._submissions if s.assessment_id == assessment_id]

    def record(
        self,
        assessment: Assessment,
        student_id: str,
        answers: list[AnswerEntry],
        tab_switched: bool,
        screen_size_violation: bool,
        submitted_at: datetime,
    ) -> Submission:
        """Save answers for the pair, creating the submission on first save."""
        is_completed = tab_switched or screen_size_violation or bool(answers)
        auto_graded = 0
        if is_completed and not screen_size_violation:
            auto_graded = auto_grade(assessment, answers)

        previous = self.find(assessment.id, student_id)
        marks_awarded = resolve_marks_awarded(
            assessment, auto_graded, is_completed, screen_size_violation, previous
        )

        if previous is not None:
            previous.answers = list(answers)
            previous.submitted_at = submitted_at
            previous.is_completed = is_completed
            previous.auto_graded_marks = auto_graded if is_completed else None
            previous.marks_awarded = marks_awarded
            # Violation flags are sticky.
            previous.tab_switched = previous.tab_switched or tab_switched
            previous.screen_size_violation = previous.screen_size_violation or screen_size_violation
            return previous

        submission = Submission(
            id=uuid4().hex,
            assessment_id=assessment.id,
            student_id=student_id,
            answers=list(answers),
            submitted_at=submitted_at,
            is_completed=is_completed,
            auto_graded_marks=auto_graded if is_completed else None,
            marks_awarded=marks_awarded,
            tab_switched=tab_switched,
            screen_size_violation=screen_size_violation,
        )
        self._submissions.append(submission)
        return submission

    def award(self, submission_id: str, marks: int) -> Submission:
        submission = self.get_by_id(submission_id)
        submission.marks_awarded = marks
        return submission

    def remove_for_student(self, student_id: str) -> int:
        return self._remove(lambda s: s.student_id == student_id)

    def remove_for_assessment(self, assessment_id: str) -> int:
        return self._remove(lambda s: s.assessment_id == assessment_id)

    def _remove(self, predicate) -> int:
        kept = [s for s in self._submissions if not predicate(s)]
        removed = len(self._submissions) - len(kept)
        self._submissions = kept
        return removed

"""Pure grading rules applied when a submission is saved."""

from __future__ import annotations

from exam_portal.core.models import AnswerEntry, Assessment, Submission


def auto_grade(assessment: Assessment, answers: list[AnswerEntry]) -> int:
    """Sum the marks of multiple-choice questions answered with the exact correct option."""
    by_question = {entry.question_id: entry.answer for entry in answers}
    total = 0
    for question in assessment.questions:
        if not question.is_multiple_choice or not question.correct_answer:
            continue
        if by_question.get(question.id) == question.correct_answer:
            total += question.marks
    return total


def resolve_marks_awarded(
    assessment: Assessment,
    auto_graded: int,
    is_completed: bool,
    screen_size_violation: bool,
    previous: Submission | None,
) -> int | None:
    """Final score for a saved submission, ``None`` while manual grading is pending."""
    if screen_size_violation:
        return 0
    if previous is not None and is_completed and previous.marks_awarded is not None:
        # Keep what the teacher added on top of the earlier auto-graded part.
        return auto_graded + manual_component(previous)
    if assessment.has_text_questions:
        return None
    return auto_graded


def manual_component(submission: Submission) -> int:
    if submission.marks_awarded is None:
        return 0
    return submission.marks_awarded - (submission.auto_graded_marks or 0)


def text_marks_awarded(submission: Submission) -> int | None:
    """Marks attributed to free-text answers, as shown back to the student."""
    if submission.marks_awarded is None or submission.auto_graded_marks is None:
        return None
    return max(0, submission.marks_awarded - submission.auto_graded_marks)

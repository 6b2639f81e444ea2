"""
Unit Tests for Assessments
Tests for: validation, ownership, visibility, activity window, cascades
"""
from datetime import datetime

import pytest

from exam_portal.core.errors import AuthorizationError, InvalidInputError, NotFoundError
from exam_portal.core.models import AnswerEntry, Question, QuestionType
from exam_portal.core.portal_context import AssessmentPhase

from conftest import TEACHER_EMAIL, TEACHER_PASSWORD


@pytest.fixture
def as_teacher(context, login, teacher):
    return login(TEACHER_EMAIL, TEACHER_PASSWORD)


@pytest.fixture
def super_teacher(context, login):
    login("admin@example.com", "adminpass")
    created = context.create_teacher("Sue Super", "sue@example.com", "pw", is_super_teacher=True)
    context.logout()
    return created


class TestAssessmentValidation:
    """Test that malformed assessments are rejected before storage"""

    def test_create_assigns_ids_and_owner(self, context, as_teacher, assessment_fields):
        """Test that a valid assessment gets ids, owner and creation time"""
        created = context.create_assessment(**assessment_fields)

        assert created.created_by == as_teacher.id
        assert created.created_by_super_teacher is False
        assert created.created_at == datetime(2024, 6, 10, 10, 0)
        assert all(q.id for q in created.questions)
        assert len({q.id for q in created.questions}) == 2
        assert created.total_marks == 5
        assert (created.mcq_marks, created.text_marks) == (2, 3)
        assert context.last_message == 'Assessment "Quiz 1" created successfully'

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"title": "  "}, "Title is required"),
            ({"start_date": ""}, "Start date is required"),
            ({"due_date": ""}, "Due date is required"),
            ({"due_date": "2024-06-09"}, "Due date must be after start date"),
            ({"due_time": "09:00"}, "Due date must be after start date"),
            ({"questions": []}, "at least one question"),
            ({"start_date": "10/06/2024"}, "Invalid date"),
        ],
    )
    def test_invalid_fields_rejected(self, context, as_teacher, assessment_fields, overrides, message):
        """Test each assessment-level validation rule"""
        with pytest.raises(InvalidInputError, match=message):
            context.create_assessment(**{**assessment_fields, **overrides})
        assert context.get_teacher_assessments(as_teacher.id) == []

    @pytest.mark.parametrize(
        "question, message",
        [
            (Question("", " ", QuestionType.TEXT, 1), "Question 1 text is required"),
            (Question("", "Q", QuestionType.TEXT, 0), "positive integer"),
            (
                Question("", "Q", QuestionType.MULTIPLE_CHOICE, 1, options=["a"], correct_answer="a"),
                "at least 2 options",
            ),
            (
                Question("", "Q", QuestionType.MULTIPLE_CHOICE, 1, options=["a", " "], correct_answer="a"),
                "empty options",
            ),
            (
                Question("", "Q", QuestionType.MULTIPLE_CHOICE, 1, options=["a", "a"], correct_answer="a"),
                "duplicate options",
            ),
            (
                Question("", "Q", QuestionType.MULTIPLE_CHOICE, 1, options=["a", "b"], correct_answer="c"),
                "valid correct answer",
            ),
        ],
    )
    def test_invalid_questions_rejected(self, context, as_teacher, assessment_fields, question, message):
        """Test each question-level validation rule"""
        with pytest.raises(InvalidInputError, match=message):
            context.create_assessment(**{**assessment_fields, "questions": [question]})

    def test_admin_cannot_create_assessment(self, context, teacher, as_admin, assessment_fields):
        """Test that only teachers author assessments"""
        with pytest.raises(AuthorizationError):
            context.create_assessment(**assessment_fields)


class TestAssessmentOwnership:
    """Test update and delete by the creator only"""

    def test_update_keeps_ids_and_snapshot(self, context, login, assessment, assessment_fields):
        """Test that an update keeps question ids, owner and creation time"""
        login(TEACHER_EMAIL, TEACHER_PASSWORD)
        questions = list(assessment.questions)
        questions.append(Question("", "New question", QuestionType.TEXT, 4))

        updated = context.update_assessment(
            assessment.id, **{**assessment_fields, "title": "Quiz 1b", "questions": questions}
        )

        assert updated.title == "Quiz 1b"
        assert [q.id for q in updated.questions[:2]] == [q.id for q in assessment.questions]
        assert updated.questions[2].id
        assert updated.created_at == assessment.created_at
        assert updated.created_by == assessment.created_by
        assert context.get_assessment_by_id(assessment.id).total_marks == 9

    def test_other_teacher_cannot_update(self, context, login, assessment, assessment_fields):
        """Test that only the creator may update"""
        login("admin@example.com", "adminpass")
        context.create_teacher("Other", "other@example.com", "pw")
        context.logout()
        login("other@example.com", "pw")

        with pytest.raises(AuthorizationError):
            context.update_assessment(assessment.id, **assessment_fields)
        with pytest.raises(AuthorizationError):
            context.delete_assessment(assessment.id)

    def test_delete_unknown_assessment(self, context, as_teacher):
        """Test that deleting a missing assessment is a not-found error"""
        with pytest.raises(NotFoundError):
            context.delete_assessment("missing")

    def test_delete_cascades_only_own_submissions(self, context, login, assessment, student, assessment_fields):
        """Test that deleting an assessment removes exactly its submissions"""
        login(TEACHER_EMAIL, TEACHER_PASSWORD)
        other = context.create_assessment(**{**assessment_fields, "title": "Quiz 2"})
        context.submit_assessment(assessment.id, student.id, [AnswerEntry(assessment.questions[0].id, "4")])
        context.submit_assessment(other.id, student.id, [AnswerEntry(other.questions[0].id, "4")])

        context.delete_assessment(assessment.id)

        assert context.get_assessment_by_id(assessment.id) is None
        assert context.get_assessment_submissions(assessment.id) == []
        assert len(context.get_assessment_submissions(other.id)) == 1


class TestVisibility:
    """Test which assessments teachers and students see"""

    def test_student_sees_own_teacher_and_super_assessments(
        self, context, login, assessment, student, super_teacher, assessment_fields
    ):
        """Test the owning-teacher plus super-teacher visibility rule"""
        login("sue@example.com", "pw")
        shared = context.create_assessment(**{**assessment_fields, "title": "Shared"})
        context.logout()

        login("admin@example.com", "adminpass")
        context.create_teacher("Other", "other@example.com", "pw")
        context.logout()
        login("other@example.com", "pw")
        hidden = context.create_assessment(**{**assessment_fields, "title": "Hidden"})

        visible = {a.id for a in context.get_student_assessments(student.id)}

        assert shared.created_by_super_teacher is True
        assert visible == {assessment.id, shared.id}
        assert hidden.id not in visible

    def test_regular_teacher_sees_super_assessments_once(
        self, context, login, assessment, super_teacher, assessment_fields
    ):
        """Test that a regular teacher lists own plus super-teacher assessments"""
        login("sue@example.com", "pw")
        shared = context.create_assessment(**{**assessment_fields, "title": "Shared"})

        listed = context.get_teacher_assessments(assessment.created_by)

        assert [a.id for a in listed] == [assessment.id, shared.id]
        assert context.get_teacher_assessments(super_teacher.id) == [shared]
        assert context.get_super_teacher_assessments() == [shared]

    def test_snapshot_survives_losing_super_flag(self, context, login, super_teacher, assessment_fields):
        """Test that the super-teacher flag is captured at creation time"""
        login("sue@example.com", "pw")
        shared = context.create_assessment(**assessment_fields)
        context.logout()
        login("admin@example.com", "adminpass")

        context.toggle_super_teacher(super_teacher.id)

        assert context.get_assessment_by_id(shared.id).created_by_super_teacher is True

    def test_unknown_student_sees_nothing(self, context, assessment):
        """Test that an unknown student id yields no assessments"""
        assert context.get_student_assessments("missing") == []


class TestActivityWindow:
    """Test the start/due window checks"""

    def test_phases(self, context, assessment):
        """Test upcoming, active and past-due phases"""
        assert context.assessment_phase(assessment, datetime(2024, 6, 10, 8, 59)) is AssessmentPhase.UPCOMING
        assert context.assessment_phase(assessment) is AssessmentPhase.ACTIVE
        assert context.assessment_phase(assessment, datetime(2024, 6, 10, 17, 1)) is AssessmentPhase.PAST_DUE

    def test_window_is_inclusive(self, context, assessment):
        """Test that start and due instants both count as active"""
        assert context.is_assessment_active(assessment, datetime(2024, 6, 10, 9, 0)) is True
        assert context.is_assessment_active(assessment, datetime(2024, 6, 10, 17, 0)) is True
        assert context.is_assessment_active(assessment, datetime(2024, 6, 10, 17, 0, 1)) is False

"""
Exam Portal - Test Configuration and Fixtures
"""
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from exam_portal.constants.portal_constants import ADMIN_EMAIL, ADMIN_PASSWORD
from exam_portal.core.models import Question, QuestionType
from exam_portal.core.monitor import MonitorRegistry
from exam_portal.core.portal_context import PortalContext
from exam_portal.core.storage import MemoryStore
from exam_portal.server.api_server import create_api_app

TEACHER_EMAIL = "tina@example.com"
TEACHER_PASSWORD = "teachpass"
STUDENT_EMAIL = "sam@example.com"
STUDENT_PASSWORD = "studpass"


class FakeClock:
    """Settable clock passed to the context instead of datetime.now"""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    """Clock frozen at 10:00 on the day of the sample assessment"""
    return FakeClock(datetime(2024, 6, 10, 10, 0, 0))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def context(store, clock):
    return PortalContext(store=store, clock=clock)


@pytest.fixture
def login(context):
    """Log in and fail the test if the credentials are rejected"""
    def _login(email, password, role=None):
        assert context.login(email, password, role), context.last_message
        return context.current_user

    return _login


@pytest.fixture
def as_admin(context, login):
    return login(ADMIN_EMAIL, ADMIN_PASSWORD)


@pytest.fixture
def teacher(context, login):
    """A regular teacher created by the admin"""
    login(ADMIN_EMAIL, ADMIN_PASSWORD)
    created = context.create_teacher("Tina Teacher", TEACHER_EMAIL, TEACHER_PASSWORD, department="Math")
    context.logout()
    return created


@pytest.fixture
def student(context, login, teacher):
    """A student owned by the regular teacher"""
    login(TEACHER_EMAIL, TEACHER_PASSWORD)
    created = context.create_student("Sam Student", STUDENT_EMAIL, STUDENT_PASSWORD)
    context.logout()
    return created


def make_questions(with_text=True):
    questions = [
        Question(
            id="",
            text="What is 2+2?",
            type=QuestionType.MULTIPLE_CHOICE,
            marks=2,
            options=["3", "4", "5"],
            correct_answer="4",
        )
    ]
    if with_text:
        questions.append(Question(id="", text="Explain gravity.", type=QuestionType.TEXT, marks=3))
    return questions


@pytest.fixture
def build_questions():
    """Factory for fresh question lists"""
    return make_questions


@pytest.fixture
def assessment_fields():
    """Fields of an assessment open from 09:00 to 17:00 on the clock's day"""
    return {
        "title": "Quiz 1",
        "description": "Warm-up *quiz*",
        "start_date": "2024-06-10",
        "start_time": "09:00",
        "due_date": "2024-06-10",
        "due_time": "17:00",
        "questions": make_questions(),
    }


@pytest.fixture
def assessment(context, login, teacher, student, assessment_fields):
    """Mixed assessment (2 MCQ marks + 3 text marks) owned by the regular teacher"""
    login(TEACHER_EMAIL, TEACHER_PASSWORD)
    created = context.create_assessment(**assessment_fields)
    context.logout()
    return created


@pytest.fixture
def mcq_assessment(context, login, teacher, student, assessment_fields):
    """Assessment with a single multiple-choice question worth 2 marks"""
    login(TEACHER_EMAIL, TEACHER_PASSWORD)
    created = context.create_assessment(**{**assessment_fields, "questions": make_questions(with_text=False)})
    context.logout()
    return created


@pytest.fixture
def registry(context):
    return MonitorRegistry(context)


@pytest.fixture
def client(context, registry):
    """HTTP client bound to the shared portal context"""
    with TestClient(create_api_app(context, registry)) as test_client:
        yield test_client

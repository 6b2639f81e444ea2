"""FastAPI server exposing the exam portal to the browser pages."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date
from io import BytesIO
from typing import Any, Iterator, Literal
from urllib.parse import quote

from fastapi import Depends, FastAPI, File, HTTPException, Response, UploadFile
from pydantic import BaseModel
import uvicorn

from exam_portal.constants.about import APP_ABOUT_TEXT, APP_LICENSE, APP_NAME, APP_VERSION
from exam_portal.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from exam_portal.constants.portal_constants import DEFAULT_DUE_TIME, DEFAULT_START_TIME, TICK_INTERVAL_SECONDS
from exam_portal.core.assessment_importer import load_assessment_from_bytes, write_template
from exam_portal.core.errors import (
    AuthorizationError,
    InvalidInputError,
    MonitorStateError,
    NotFoundError,
)
from exam_portal.core.markdown_math_renderer import MATHJAX_SCRIPT, renderer
from exam_portal.core.models import Assessment, Question, QuestionType, Role, Score, Student, Submission, User
from exam_portal.core.monitor import (
    AssessmentMonitor,
    FullscreenChanged,
    IntegrityEvent,
    MonitorAction,
    MonitorRegistry,
    Tick,
    VisibilityLost,
    WindowBlurred,
    WindowResized,
)
from exam_portal.core.navigation import Denied, LoginRequired, Route, RouteView, resolve_view
from exam_portal.core.portal_context import PortalContext
from exam_portal.core.results_exporter import results_filename, save_results
from exam_portal.core.services.scoreboard import DateMode, ScoreFilter, TeacherType

logger = logging.getLogger(__name__)

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class LoginPayload(BaseModel):
    email: str
    password: str
    role: Role | None = None


class StudentPayload(BaseModel):
    name: str
    email: str
    password: str


class TeacherPayload(BaseModel):
    name: str
    email: str
    password: str
    department: str | None = None
    is_super_teacher: bool = False


class ReassignPayload(BaseModel):
    to_teacher_id: str


class QuestionPayload(BaseModel):
    id: str | None = None
    text: str
    type: QuestionType = QuestionType.TEXT
    marks: int = 1
    options: list[str] | None = None
    correct_answer: str | None = None

    def to_question(self) -> Question:
        return Question(
            id=self.id or "",
            text=self.text,
            type=self.type,
            marks=self.marks,
            options=self.options,
            correct_answer=self.correct_answer,
        )


class AssessmentPayload(BaseModel):
    """Payload schema for creating or replacing an assessment."""

    title: str
    description: str = ""
    start_date: str
    start_time: str = DEFAULT_START_TIME
    due_date: str
    due_time: str = DEFAULT_DUE_TIME
    questions: list[QuestionPayload]


class MarksPayload(BaseModel):
    marks: int


class SessionPayload(BaseModel):
    """Payload schema for entering an assessment-taking session."""

    assessment_id: str
    width: int
    height: int


class AnswerPayload(BaseModel):
    question_id: str
    answer: str


class EventPayload(BaseModel):
    """An integrity event observed by the assessment page."""

    type: Literal["visibility_lost", "window_blurred", "window_resized", "fullscreen_changed", "tick"]
    width: int | None = None
    height: int | None = None
    is_fullscreen: bool | None = None


@contextmanager
def _portal_errors() -> Iterator[None]:
    """Translate domain failures into HTTP errors."""
    try:
        yield
    except InvalidInputError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except AuthorizationError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except MonitorStateError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _require_route(context: PortalContext, route: Route) -> User:
    """Resolve the route for the session user and return them when it is allowed."""
    view = resolve_view(context.current_user, route.value)
    if isinstance(view, LoginRequired):
        raise HTTPException(status_code=401, detail="Login required")
    if isinstance(view, Denied):
        raise HTTPException(status_code=403, detail="You are not allowed to access this page")
    return view.user


def _view_to_dict(view: RouteView) -> dict[str, Any]:
    if isinstance(view, LoginRequired):
        return {"view": "login", "route": view.route.value}
    if isinstance(view, Denied):
        return {"view": "denied", "reason": view.reason, "redirect": view.redirect}
    return {"view": view.user.role.value, "route": view.route.value, "user": view.user.to_dict()}


def _student_to_dict(student: Student) -> dict[str, Any]:
    data = student.to_dict()
    data.pop("password", None)
    return data


def _submission_to_dict(context: PortalContext, submission: Submission | None) -> dict[str, Any] | None:
    if submission is None:
        return None
    data = submission.to_dict()
    data["textMarksAwarded"] = context.text_marks_awarded(submission)
    return data


def _assessment_to_dict(assessment: Assessment) -> dict[str, Any]:
    data = assessment.to_dict()
    data["totalMarks"] = assessment.total_marks
    data["mcqMarks"] = assessment.mcq_marks
    data["textMarks"] = assessment.text_marks
    return data


def _student_question(question: Question) -> dict[str, Any]:
    data = question.to_dict()
    # Students never see the correct option.
    data.pop("correctAnswer", None)
    data["html"] = renderer.render_question(question)
    return data


def _student_assessment(context: PortalContext, assessment: Assessment, student_id: str) -> dict[str, Any]:
    submission = context.get_submission(assessment.id, student_id)
    return {
        "id": assessment.id,
        "title": assessment.title,
        "descriptionHtml": renderer.render_description(assessment),
        "startDate": assessment.start_date,
        "startTime": assessment.start_time,
        "dueDate": assessment.due_date,
        "dueTime": assessment.due_time,
        "totalMarks": assessment.total_marks,
        "questionCount": len(assessment.questions),
        "createdBySuperTeacher": assessment.created_by_super_teacher,
        "phase": context.assessment_phase(assessment).value,
        "canTake": context.can_student_take_assessment(assessment.id, student_id),
        "submission": _submission_to_dict(context, submission),
    }


def _score_to_dict(score: Score) -> dict[str, Any]:
    return {
        "studentId": score.student_id,
        "studentName": score.student_name,
        "assessmentId": score.assessment_id,
        "assessmentTitle": score.assessment_title,
        "marksAwarded": score.marks_awarded,
        "totalMarks": score.total_marks,
        "percentage": round(score.percentage, 2),
        "teacherId": score.teacher_id,
        "teacherName": score.teacher_name,
        "department": score.department,
        "dueAt": score.assessment_due_at.isoformat(),
        "createdBySuperTeacher": score.created_by_super_teacher,
    }


def _to_event(context: PortalContext, payload: EventPayload) -> IntegrityEvent:
    if payload.type == "visibility_lost":
        return VisibilityLost()
    if payload.type == "window_blurred":
        return WindowBlurred()
    if payload.type == "window_resized":
        if payload.width is None or payload.height is None:
            raise HTTPException(status_code=422, detail="Resize events need a width and a height")
        return WindowResized(width=payload.width, height=payload.height)
    if payload.type == "fullscreen_changed":
        if payload.is_fullscreen is None:
            raise HTTPException(status_code=422, detail="Full-screen events need is_fullscreen")
        return FullscreenChanged(is_fullscreen=payload.is_fullscreen)
    return Tick(now=context.now())


def _session_to_dict(
    context: PortalContext,
    monitor: AssessmentMonitor,
    actions: list[MonitorAction],
) -> dict[str, Any]:
    submission = monitor.submission
    return {
        "sessionId": monitor.session_id,
        "assessmentId": monitor.assessment.id,
        "state": monitor.state.value,
        "remainingSeconds": monitor.remaining_seconds,
        "timeRemaining": monitor.time_remaining_display(),
        "violationPending": monitor.violation_pending,
        "answers": monitor.answers,
        "actions": [action.value for action in actions],
        "submission": _submission_to_dict(context, submission),
        "message": context.last_message if MonitorAction.SUBMITTED in actions else None,
    }


def _get_context_dependency(context: PortalContext):
    def dependency() -> PortalContext:
        return context

    return dependency


def _get_registry_dependency(registry: MonitorRegistry):
    def dependency() -> MonitorRegistry:
        return registry

    return dependency


def create_api_app(context: PortalContext, registry: MonitorRegistry | None = None) -> FastAPI:
    """Create a FastAPI application wired to the provided portal context."""
    app = FastAPI(
        title=f"{APP_NAME} API",
        version=APP_VERSION,
        description=APP_ABOUT_TEXT,
        license_info={"name": APP_LICENSE},
    )
    context_dep = _get_context_dependency(context)
    registry_dep = _get_registry_dependency(registry if registry is not None else MonitorRegistry(context))

    def _own_session(portal: PortalContext, monitors: MonitorRegistry, session_id: str) -> AssessmentMonitor:
        user = _require_route(portal, Route.STUDENT_ASSESSMENT)
        with _portal_errors():
            monitor = monitors.get(session_id)
        if monitor.student_id != user.id:
            raise HTTPException(status_code=403, detail="This assessment session belongs to another student")
        return monitor

    def _finish(portal: PortalContext, monitors: MonitorRegistry, monitor: AssessmentMonitor, actions) -> dict[str, Any]:
        payload = _session_to_dict(portal, monitor, actions)
        if monitor.is_terminal:
            monitors.close(monitor.session_id)
        return payload

    # --- Session ---

    @app.post("/login")
    def login(payload: LoginPayload, portal: PortalContext = Depends(context_dep)) -> dict[str, object]:
        if not portal.login(payload.email, payload.password, payload.role):
            raise HTTPException(status_code=401, detail=portal.last_message or "Invalid credentials")
        user = portal.current_user
        return {"user": user.to_dict(), "message": portal.last_message}

    @app.post("/logout")
    def logout(portal: PortalContext = Depends(context_dep)) -> dict[str, object]:
        portal.logout()
        return {"message": portal.last_message}

    @app.get("/session")
    def get_session(portal: PortalContext = Depends(context_dep)) -> dict[str, object]:
        user = portal.current_user
        return {"user": user.to_dict() if user is not None else None}

    @app.get("/views/{route_name}")
    def get_view(route_name: str, portal: PortalContext = Depends(context_dep)) -> dict[str, object]:
        return _view_to_dict(resolve_view(portal.current_user, route_name))

    # --- Students ---

    @app.get("/students")
    def list_students(portal: PortalContext = Depends(context_dep)) -> list[dict[str, Any]]:
        user = _require_route(portal, Route.TEACHER_DASHBOARD)
        students = portal.get_all_students() if user.role is Role.ADMIN else portal.get_teacher_students(user.id)
        return [_student_to_dict(s) for s in students]

    @app.post("/students", status_code=201)
    def create_student(payload: StudentPayload, portal: PortalContext = Depends(context_dep)) -> dict[str, Any]:
        _require_route(portal, Route.TEACHER_DASHBOARD)
        with _portal_errors():
            student = portal.create_student(payload.name, payload.email, payload.password)
        return _student_to_dict(student)

    @app.delete("/students/{student_id}")
    def delete_student(student_id: str, portal: PortalContext = Depends(context_dep)) -> dict[str, object]:
        _require_route(portal, Route.TEACHER_DASHBOARD)
        with _portal_errors():
            portal.delete_student(student_id)
        return {"message": portal.last_message}

    # --- Teachers ---

    @app.get("/teachers")
    def list_teachers(portal: PortalContext = Depends(context_dep)) -> list[dict[str, Any]]:
        _require_route(portal, Route.ADMIN_DASHBOARD)
        return [t.to_dict() for t in portal.get_all_teachers()]

    @app.post("/teachers", status_code=201)
    def create_teacher(payload: TeacherPayload, portal: PortalContext = Depends(context_dep)) -> dict[str, Any]:
        _require_route(portal, Route.CREATE_TEACHER)
        with _portal_errors():
            teacher = portal.create_teacher(
                payload.name,
                payload.email,
                payload.password,
                department=payload.department,
                is_super_teacher=payload.is_super_teacher,
            )
        return teacher.to_dict()

    @app.delete("/teachers/{teacher_id}")
    def delete_teacher(
        teacher_id: str,
        reassign_to: str | None = None,
        portal: PortalContext = Depends(context_dep),
    ) -> dict[str, object]:
        _require_route(portal, Route.ADMIN_DASHBOARD)
        with _portal_errors():
            portal.delete_teacher(teacher_id, reassign_to)
        return {"message": portal.last_message}

    @app.post("/teachers/{teacher_id}/super")
    def toggle_super_teacher(teacher_id: str, portal: PortalContext = Depends(context_dep)) -> dict[str, Any]:
        _require_route(portal, Route.ADMIN_DASHBOARD)
        with _portal_errors():
            teacher = portal.toggle_super_teacher(teacher_id)
        return teacher.to_dict()

    @app.post("/teachers/{teacher_id}/reassign")
    def reassign_students(
        teacher_id: str,
        payload: ReassignPayload,
        portal: PortalContext = Depends(context_dep),
    ) -> dict[str, object]:
        _require_route(portal, Route.ADMIN_DASHBOARD)
        with _portal_errors():
            moved = portal.reassign_students(teacher_id, payload.to_teacher_id)
        return {"moved": moved, "message": portal.last_message}

    # --- Assessments ---

    @app.get("/assessments")
    def list_assessments(portal: PortalContext = Depends(context_dep)) -> list[dict[str, Any]]:
        user = _require_route(portal, Route.TEACHER_ASSESSMENTS)
        if user.role is Role.ADMIN:
            assessments = portal.get_all_assessments()
        else:
            assessments = portal.get_teacher_assessments(user.id)
        return [_assessment_to_dict(a) for a in assessments]

    @app.post("/assessments", status_code=201)
    def create_assessment(payload: AssessmentPayload, portal: PortalContext = Depends(context_dep)) -> dict[str, Any]:
        _require_route(portal, Route.TEACHER_ASSESSMENTS)
        with _portal_errors():
            assessment = portal.create_assessment(
                payload.title,
                payload.description,
                payload.start_date,
                payload.start_time,
                payload.due_date,
                payload.due_time,
                [q.to_question() for q in payload.questions],
            )
        return _assessment_to_dict(assessment)

    @app.post("/assessments/import", status_code=201)
    async def import_assessment(
        file: UploadFile = File(...),
        portal: PortalContext = Depends(context_dep),
    ) -> dict[str, Any]:
        _require_route(portal, Route.TEACHER_ASSESSMENTS)
        content = await file.read()
        with _portal_errors():
            imported = load_assessment_from_bytes(content, file.filename or "upload.xlsx")
            draft = imported.draft
            assessment = portal.create_assessment(
                draft.title,
                draft.description,
                draft.start_date,
                draft.start_time,
                draft.due_date,
                draft.due_time,
                draft.questions,
            )
        logger.info("Imported assessment %s from %s", assessment.id, imported.source_name)
        return _assessment_to_dict(assessment)

    @app.get("/assessments/template")
    def download_template(portal: PortalContext = Depends(context_dep)) -> Response:
        _require_route(portal, Route.TEACHER_ASSESSMENTS)
        buffer = BytesIO()
        write_template(buffer)
        return Response(
            content=buffer.getvalue(),
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": 'attachment; filename="assessment_template.xlsx"'},
        )

    @app.get("/assessments/{assessment_id}")
    def get_assessment(assessment_id: str, portal: PortalContext = Depends(context_dep)) -> dict[str, Any]:
        _require_route(portal, Route.ASSESSMENT_DETAILS)
        assessment = portal.get_assessment_by_id(assessment_id)
        if assessment is None:
            raise HTTPException(status_code=404, detail="Assessment not found")
        return _assessment_to_dict(assessment)

    @app.put("/assessments/{assessment_id}")
    def update_assessment(
        assessment_id: str,
        payload: AssessmentPayload,
        portal: PortalContext = Depends(context_dep),
    ) -> dict[str, Any]:
        _require_route(portal, Route.TEACHER_ASSESSMENTS)
        with _portal_errors():
            assessment = portal.update_assessment(
                assessment_id,
                payload.title,
                payload.description,
                payload.start_date,
                payload.start_time,
                payload.due_date,
                payload.due_time,
                [q.to_question() for q in payload.questions],
            )
        return _assessment_to_dict(assessment)

    @app.delete("/assessments/{assessment_id}")
    def delete_assessment(assessment_id: str, portal: PortalContext = Depends(context_dep)) -> dict[str, object]:
        _require_route(portal, Route.TEACHER_ASSESSMENTS)
        with _portal_errors():
            portal.delete_assessment(assessment_id)
        return {"message": portal.last_message}

    @app.get("/assessments/{assessment_id}/submissions")
    def list_results(assessment_id: str, portal: PortalContext = Depends(context_dep)) -> list[dict[str, Any]]:
        _require_route(portal, Route.ASSESSMENT_DETAILS)
        with _portal_errors():
            roster = portal.get_assessment_roster(assessment_id)
        return [
            {"student": _student_to_dict(student), "submission": _submission_to_dict(portal, submission)}
            for student, submission in roster
        ]

    @app.get("/assessments/{assessment_id}/export")
    def export_results(assessment_id: str, portal: PortalContext = Depends(context_dep)) -> Response:
        _require_route(portal, Route.ASSESSMENT_DETAILS)
        with _portal_errors():
            roster = portal.get_assessment_roster(assessment_id)
        assessment = portal.get_assessment_by_id(assessment_id)
        buffer = BytesIO()
        save_results(buffer, assessment, roster)
        filename = results_filename(assessment, portal.now().date())
        return Response(
            content=buffer.getvalue(),
            media_type=XLSX_MEDIA_TYPE,
            headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(filename)}"},
        )

    @app.post("/submissions/{submission_id}/marks")
    def award_marks(
        submission_id: str,
        payload: MarksPayload,
        portal: PortalContext = Depends(context_dep),
    ) -> dict[str, Any]:
        _require_route(portal, Route.ASSESSMENT_DETAILS)
        with _portal_errors():
            submission = portal.award_marks(submission_id, payload.marks)
        return _submission_to_dict(portal, submission)

    # --- Reports ---

    @app.get("/scores")
    def list_scores(
        assessment_id: str | None = None,
        teacher_type: TeacherType = TeacherType.ALL,
        department: str | None = None,
        on_date: date | None = None,
        date_mode: DateMode = DateMode.ON,
        descending: bool = True,
        portal: PortalContext = Depends(context_dep),
    ) -> list[dict[str, Any]]:
        _require_route(portal, Route.ADMIN_DASHBOARD)
        criteria = ScoreFilter(
            assessment_id=assessment_id,
            teacher_type=teacher_type,
            department=department,
            on_date=on_date,
            date_mode=date_mode,
            descending=descending,
        )
        return [_score_to_dict(s) for s in portal.filter_scores(portal.get_student_scores(), criteria)]

    # --- Student pages ---

    @app.get("/student/assessments")
    def list_student_assessments(portal: PortalContext = Depends(context_dep)) -> list[dict[str, Any]]:
        user = _require_route(portal, Route.STUDENT_DASHBOARD)
        if user.role is not Role.STUDENT:
            raise HTTPException(status_code=403, detail="Only students have assigned assessments")
        return [
            _student_assessment(portal, assessment, user.id)
            for assessment in portal.get_student_assessments(user.id)
        ]

    # --- Assessment-taking sessions ---

    @app.get("/monitor/sessions")
    def list_sessions(
        portal: PortalContext = Depends(context_dep),
        monitors: MonitorRegistry = Depends(registry_dep),
    ) -> list[dict[str, Any]]:
        _require_route(portal, Route.TEACHER_DASHBOARD)
        return [_session_to_dict(portal, m, []) for m in monitors.active_sessions()]

    @app.post("/monitor/sessions", status_code=201)
    def start_session(
        payload: SessionPayload,
        portal: PortalContext = Depends(context_dep),
        monitors: MonitorRegistry = Depends(registry_dep),
    ) -> dict[str, Any]:
        user = _require_route(portal, Route.STUDENT_ASSESSMENT)
        if user.role is not Role.STUDENT:
            raise HTTPException(status_code=403, detail="Only students can take assessments")
        if not any(a.id == payload.assessment_id for a in portal.get_student_assessments(user.id)):
            raise HTTPException(status_code=404, detail="Assessment not found")

        with _portal_errors():
            monitor = monitors.open(payload.assessment_id, user.id)
            try:
                actions = monitor.start(portal.now(), payload.width, payload.height)
            except MonitorStateError:
                monitors.close(monitor.session_id)
                raise

        session = _finish(portal, monitors, monitor, actions)
        session["title"] = monitor.assessment.title
        session["descriptionHtml"] = renderer.render_description(monitor.assessment)
        session["questions"] = [_student_question(q) for q in monitor.assessment.questions]
        session["tickIntervalSeconds"] = TICK_INTERVAL_SECONDS
        session["mathjaxScript"] = MATHJAX_SCRIPT
        return session

    @app.post("/monitor/sessions/{session_id}/answers")
    def record_answer(
        session_id: str,
        payload: AnswerPayload,
        portal: PortalContext = Depends(context_dep),
        monitors: MonitorRegistry = Depends(registry_dep),
    ) -> dict[str, Any]:
        monitor = _own_session(portal, monitors, session_id)
        with _portal_errors():
            monitor.record_answer(payload.question_id, payload.answer)
        return _session_to_dict(portal, monitor, [])

    @app.post("/monitor/sessions/{session_id}/events")
    def handle_event(
        session_id: str,
        payload: EventPayload,
        portal: PortalContext = Depends(context_dep),
        monitors: MonitorRegistry = Depends(registry_dep),
    ) -> dict[str, Any]:
        monitor = _own_session(portal, monitors, session_id)
        actions = monitor.handle(_to_event(portal, payload))
        return _finish(portal, monitors, monitor, actions)

    @app.post("/monitor/sessions/{session_id}/submit")
    def submit_session(
        session_id: str,
        portal: PortalContext = Depends(context_dep),
        monitors: MonitorRegistry = Depends(registry_dep),
    ) -> dict[str, Any]:
        monitor = _own_session(portal, monitors, session_id)
        with _portal_errors():
            actions = monitor.submit()
        return _finish(portal, monitors, monitor, actions)

    @app.post("/monitor/sessions/{session_id}/exit")
    def exit_session(
        session_id: str,
        portal: PortalContext = Depends(context_dep),
        monitors: MonitorRegistry = Depends(registry_dep),
    ) -> dict[str, Any]:
        monitor = _own_session(portal, monitors, session_id)
        actions = monitor.exit()
        return _finish(portal, monitors, monitor, actions)

    return app


def run_api_server(
    context: PortalContext,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
) -> None:
    """Serve the API with uvicorn until interrupted."""
    app = create_api_app(context, MonitorRegistry(context))
    config = uvicorn.Config(app=app, host=host, port=port, log_level="info")
    server = uvicorn.Server(config)
    server.run()

"""Proctoring watchdog for a single assessment-taking session.

The browser page forwards what it observes (visibility changes, window blur,
resizes, full-screen changes and a one-second tick) as integrity events. The
monitor turns them into state transitions and returns the actions the page
should carry out (request full-screen, show a warning...).

States::

    NOT_STARTED -> IN_PROGRESS -> COMPLETED
                               -> AUTO_SUBMITTED_TAB_SWITCH
                               -> AUTO_SUBMITTED_VIOLATION
                               -> EXITED

Terminal states are sticky: later events are ignored and answers can no
longer change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from threading import Lock
from typing import Union
from uuid import uuid4

from exam_portal.constants.portal_constants import (
    FULLSCREEN_RETRY_BUDGET,
    RESIZE_VIOLATION_RATIO,
    VIOLATION_SUBMIT_DELAY_SECONDS,
)
from exam_portal.core.errors import MonitorStateError, NotFoundError
from exam_portal.core.models import AnswerEntry, Assessment, Submission
from exam_portal.core.portal_context import AssessmentPhase, PortalContext

logger = logging.getLogger(__name__)


class MonitorState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    AUTO_SUBMITTED_VIOLATION = "auto_submitted_violation"
    AUTO_SUBMITTED_TAB_SWITCH = "auto_submitted_tab_switch"
    EXITED = "exited"


TERMINAL_STATES = frozenset(
    {
        MonitorState.COMPLETED,
        MonitorState.AUTO_SUBMITTED_VIOLATION,
        MonitorState.AUTO_SUBMITTED_TAB_SWITCH,
        MonitorState.EXITED,
    }
)


class MonitorAction(str, Enum):
    REQUEST_FULLSCREEN = "request_fullscreen"
    EXIT_FULLSCREEN = "exit_fullscreen"
    SHOW_TAB_WARNING = "show_tab_warning"
    SHOW_SCREEN_WARNING = "show_screen_warning"
    SUBMITTED = "submitted"


@dataclass(frozen=True, slots=True)
class VisibilityLost:
    """The document became hidden (tab switch, minimize)."""


@dataclass(frozen=True, slots=True)
class WindowBlurred:
    """The window lost focus."""


@dataclass(frozen=True, slots=True)
class WindowResized:
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class FullscreenChanged:
    is_fullscreen: bool


@dataclass(frozen=True, slots=True)
class Tick:
    now: datetime


IntegrityEvent = Union[VisibilityLost, WindowBlurred, WindowResized, FullscreenChanged, Tick]


class AssessmentMonitor:
    """Enforces single-tab, full-screen completion of one timed assessment."""

    def __init__(
        self,
        context: PortalContext,
        assessment_id: str,
        student_id: str,
        session_id: str | None = None,
    ) -> None:
        assessment = context.get_assessment_by_id(assessment_id)
        if assessment is None:
            raise NotFoundError("Assessment not found")

        self.session_id = session_id or uuid4().hex
        self._context = context
        self._assessment: Assessment = assessment
        self._student_id = student_id

        self._state = MonitorState.NOT_STARTED
        self._answers: dict[str, str] = {}
        self._remaining_seconds: int | None = None
        self._initial_size: tuple[int, int] | None = None
        self._is_fullscreen = False
        self._fullscreen_attempts = 0
        self._violation_deadline: datetime | None = None
        self._observed_at: datetime | None = None
        self._submission: Submission | None = None

    # --- Introspection ---

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def assessment(self) -> Assessment:
        return self._assessment

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def answers(self) -> dict[str, str]:
        return dict(self._answers)

    @property
    def remaining_seconds(self) -> int | None:
        return self._remaining_seconds

    @property
    def violation_pending(self) -> bool:
        return self._violation_deadline is not None

    @property
    def submission(self) -> Submission | None:
        return self._submission

    @property
    def is_terminal(self) -> bool:
        return self._state in TERMINAL_STATES

    def time_remaining_display(self) -> str:
        seconds = self._remaining_seconds or 0
        hours, rest = divmod(seconds, 3600)
        minutes, secs = divmod(rest, 60)
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"

    # --- Lifecycle ---

    def start(self, now: datetime, width: int, height: int) -> list[MonitorAction]:
        """Enter the session: load the saved draft, start the countdown, go full-screen."""
        if self._state is not MonitorState.NOT_STARTED:
            raise MonitorStateError("Assessment session has already started")

        phase = self._context.assessment_phase(self._assessment, now)
        if phase is AssessmentPhase.UPCOMING:
            start_at = self._assessment.start_at
            raise MonitorStateError(
                f"This assessment will start on {start_at:%Y-%m-%d} at {start_at:%H:%M}."
            )
        if phase is AssessmentPhase.PAST_DUE:
            raise MonitorStateError("This assessment is past its due date.")
        if not self._context.can_student_take_assessment(self._assessment.id, self._student_id):
            raise MonitorStateError(
                "You have already completed this assessment or you are not eligible to take it."
            )

        draft = self._context.get_submission(self._assessment.id, self._student_id)
        if draft is not None:
            self._answers = {entry.question_id: entry.answer for entry in draft.answers}

        self._initial_size = (width, height)
        self._observed_at = now
        self._remaining_seconds = self._seconds_until_due(now)
        self._state = MonitorState.IN_PROGRESS
        logger.info(
            "Student %s started assessment %s (%s remaining)",
            self._student_id,
            self._assessment.id,
            self.time_remaining_display(),
        )
        if self._remaining_seconds <= 0:
            return self._finish_on_time()
        return [MonitorAction.REQUEST_FULLSCREEN]

    def record_answer(self, question_id: str, answer: str) -> None:
        self._ensure_accepting("answers")
        if not any(q.id == question_id for q in self._assessment.questions):
            raise NotFoundError("Question not found")
        self._answers[question_id] = answer

    def submit(self) -> list[MonitorAction]:
        """Manual submission by the student."""
        self._ensure_accepting("a submission")
        self._submit(tab_switched=False, screen_size_violation=False)
        self._state = MonitorState.COMPLETED
        return [MonitorAction.EXIT_FULLSCREEN, MonitorAction.SUBMITTED]

    def exit(self) -> list[MonitorAction]:
        """Leave without submitting. Previously saved data stays as it is."""
        if self.is_terminal:
            return []
        if self._violation_deadline is not None:
            # The warning delay only postpones the forced submission.
            return self._submit_violation()
        self._state = MonitorState.EXITED
        logger.info("Student %s left assessment %s without submitting", self._student_id, self._assessment.id)
        return [MonitorAction.EXIT_FULLSCREEN]

    # --- Events ---

    def handle(self, event: IntegrityEvent) -> list[MonitorAction]:
        if self._state is not MonitorState.IN_PROGRESS:
            return []
        if isinstance(event, Tick):
            return self._on_tick(event.now)
        if isinstance(event, (VisibilityLost, WindowBlurred)):
            return self._on_tab_switch()
        if isinstance(event, FullscreenChanged):
            return self._on_fullscreen_changed(event.is_fullscreen)
        if isinstance(event, WindowResized):
            return self._on_resize(event.width, event.height)
        raise TypeError(f"Unsupported integrity event: {event!r}")

    def _on_tick(self, now: datetime) -> list[MonitorAction]:
        self._observed_at = now
        if self._violation_deadline is not None:
            if now >= self._violation_deadline:
                return self._submit_violation()
            return []
        self._remaining_seconds = self._seconds_until_due(now)
        if self._remaining_seconds <= 0:
            return self._finish_on_time()
        return []

    def _on_tab_switch(self) -> list[MonitorAction]:
        if self._violation_deadline is not None:
            return []
        logger.warning("Tab switch detected for student %s on %s", self._student_id, self._assessment.id)
        self._submit(tab_switched=True, screen_size_violation=False)
        self._state = MonitorState.AUTO_SUBMITTED_TAB_SWITCH
        return [MonitorAction.SHOW_TAB_WARNING, MonitorAction.SUBMITTED]

    def _on_fullscreen_changed(self, is_fullscreen: bool) -> list[MonitorAction]:
        self._is_fullscreen = is_fullscreen
        if is_fullscreen or self._violation_deadline is not None:
            return []
        if self._fullscreen_attempts < FULLSCREEN_RETRY_BUDGET:
            self._fullscreen_attempts += 1
            return [MonitorAction.REQUEST_FULLSCREEN]
        return self._arm_violation()

    def _on_resize(self, width: int, height: int) -> list[MonitorAction]:
        if self._violation_deadline is not None or self._initial_size is None:
            return []
        initial_width, initial_height = self._initial_size
        significant = (
            width < initial_width * RESIZE_VIOLATION_RATIO
            or height < initial_height * RESIZE_VIOLATION_RATIO
        )
        if not significant:
            return []
        if not self._is_fullscreen and self._fullscreen_attempts < FULLSCREEN_RETRY_BUDGET:
            self._fullscreen_attempts += 1
            return [MonitorAction.REQUEST_FULLSCREEN]
        return self._arm_violation()

    # --- Transitions ---

    def _arm_violation(self) -> list[MonitorAction]:
        # Measured on the clock that drives the ticks.
        self._violation_deadline = self._observed_at + timedelta(seconds=VIOLATION_SUBMIT_DELAY_SECONDS)
        logger.warning(
            "Screen violation for student %s on %s, submitting in %.0f seconds",
            self._student_id,
            self._assessment.id,
            VIOLATION_SUBMIT_DELAY_SECONDS,
        )
        return [MonitorAction.SHOW_SCREEN_WARNING]

    def _submit_violation(self) -> list[MonitorAction]:
        self._submit(tab_switched=False, screen_size_violation=True)
        self._violation_deadline = None
        self._state = MonitorState.AUTO_SUBMITTED_VIOLATION
        return [MonitorAction.EXIT_FULLSCREEN, MonitorAction.SUBMITTED]

    def _finish_on_time(self) -> list[MonitorAction]:
        self._remaining_seconds = 0
        self._submit(tab_switched=False, screen_size_violation=False)
        self._state = MonitorState.COMPLETED
        return [MonitorAction.EXIT_FULLSCREEN, MonitorAction.SUBMITTED]

    def _submit(self, tab_switched: bool, screen_size_violation: bool) -> None:
        entries = [
            AnswerEntry(question_id=question_id, answer=answer)
            for question_id, answer in self._answers.items()
            if answer.strip()
        ]
        self._submission = self._context.submit_assessment(
            self._assessment.id,
            self._student_id,
            entries,
            tab_switched=tab_switched,
            screen_size_violation=screen_size_violation,
        )

    def _ensure_accepting(self, what: str) -> None:
        if self._state is not MonitorState.IN_PROGRESS:
            raise MonitorStateError(f"Assessment session is {self._state.value}; {what} not accepted")
        if self._violation_deadline is not None:
            raise MonitorStateError(f"Assessment is being auto-submitted; {what} not accepted")

    def _seconds_until_due(self, now: datetime) -> int:
        return max(0, int((self._assessment.due_at - now).total_seconds()))


class MonitorRegistry:
    """Keeps the live monitors by session id.

    A student has at most one live monitor per assessment: opening a new one
    exits the previous session. Monitors that outlive the due time are
    finished on the next registry access even when the page stopped ticking.
    """

    def __init__(self, context: PortalContext) -> None:
        self._context = context
        self._monitors: dict[str, AssessmentMonitor] = {}
        self._lock = Lock()

    def open(self, assessment_id: str, student_id: str) -> AssessmentMonitor:
        with self._lock:
            self._release_finished()
            for stale in [
                m for m in self._monitors.values()
                if m.assessment.id == assessment_id and m.student_id == student_id
            ]:
                logger.info("Replacing abandoned session %s of student %s", stale.session_id, student_id)
                stale.exit()
                self._monitors.pop(stale.session_id, None)
            monitor = AssessmentMonitor(self._context, assessment_id, student_id)
            self._monitors[monitor.session_id] = monitor
            return monitor

    def get(self, session_id: str) -> AssessmentMonitor:
        with self._lock:
            monitor = self._monitors.get(session_id)
        if monitor is None:
            raise NotFoundError("Assessment session not found")
        return monitor

    def close(self, session_id: str) -> None:
        with self._lock:
            self._monitors.pop(session_id, None)

    def active_sessions(self) -> list[AssessmentMonitor]:
        with self._lock:
            self._release_finished()
            return list(self._monitors.values())

    def _release_finished(self) -> None:
        now = self._context.now()
        for monitor in list(self._monitors.values()):
            if self._context.get_assessment_by_id(monitor.assessment.id) is None:
                del self._monitors[monitor.session_id]
                continue
            if monitor.state is MonitorState.IN_PROGRESS and now >= monitor.assessment.due_at:
                monitor.handle(Tick(now))
            if monitor.is_terminal:
                del self._monitors[monitor.session_id]

"""
Unit Tests for the Assessment Monitor
Tests for: session start, integrity events, countdown, manual submit and exit
"""
from datetime import datetime, timedelta

import pytest

from exam_portal.core.errors import MonitorStateError, NotFoundError
from exam_portal.core.monitor import (
    AssessmentMonitor,
    FullscreenChanged,
    MonitorAction,
    MonitorState,
    Tick,
    VisibilityLost,
    WindowBlurred,
    WindowResized,
)

from conftest import TEACHER_EMAIL, TEACHER_PASSWORD


@pytest.fixture
def monitor(context, assessment, student):
    return AssessmentMonitor(context, assessment.id, student.id)


@pytest.fixture
def started(monitor, clock):
    monitor.start(clock(), 1000, 800)
    return monitor


class TestSessionStart:
    """Test entering an assessment-taking session"""

    def test_start_requests_fullscreen(self, monitor, clock):
        """Test that starting enters the countdown and asks for full-screen"""
        actions = monitor.start(clock(), 1000, 800)

        assert actions == [MonitorAction.REQUEST_FULLSCREEN]
        assert monitor.state is MonitorState.IN_PROGRESS
        assert monitor.remaining_seconds == 7 * 3600
        assert monitor.time_remaining_display() == "07:00:00"

    def test_upcoming_assessment_cannot_start(self, monitor):
        """Test that an assessment cannot be taken before its start"""
        with pytest.raises(MonitorStateError, match="will start on 2024-06-10 at 09:00"):
            monitor.start(datetime(2024, 6, 10, 8, 0), 1000, 800)
        assert monitor.state is MonitorState.NOT_STARTED

    def test_past_due_assessment_cannot_start(self, monitor):
        """Test that an assessment cannot be taken after its due time"""
        with pytest.raises(MonitorStateError, match="past its due date"):
            monitor.start(datetime(2024, 6, 10, 18, 0), 1000, 800)

    def test_completed_assessment_cannot_restart(self, context, monitor, assessment, student, clock):
        """Test that a completed submission blocks a new session"""
        context.submit_assessment(assessment.id, student.id, [], tab_switched=True)

        with pytest.raises(MonitorStateError, match="already completed"):
            monitor.start(clock(), 1000, 800)

    def test_draft_allows_start(self, context, monitor, assessment, student, clock):
        """Test that a saved draft does not block the session"""
        context.submit_assessment(assessment.id, student.id, [])

        assert monitor.start(clock(), 1000, 800) == [MonitorAction.REQUEST_FULLSCREEN]

    def test_cannot_start_twice(self, started, clock):
        """Test that a session starts only once"""
        with pytest.raises(MonitorStateError):
            started.start(clock(), 1000, 800)

    def test_unknown_assessment(self, context, student):
        """Test that a monitor needs an existing assessment"""
        with pytest.raises(NotFoundError):
            AssessmentMonitor(context, "missing", student.id)


class TestTabSwitch:
    """Test the tab switch auto-submission"""

    def test_visibility_loss_submits_held_answers(self, context, started, assessment, student):
        """Test that a tab switch submits the current answers with the flag set"""
        started.record_answer(assessment.questions[0].id, "4")

        actions = started.handle(VisibilityLost())

        assert actions == [MonitorAction.SHOW_TAB_WARNING, MonitorAction.SUBMITTED]
        assert started.state is MonitorState.AUTO_SUBMITTED_TAB_SWITCH
        submission = context.get_submission(assessment.id, student.id)
        assert submission.tab_switched is True
        assert submission.is_completed is True
        assert submission.answer_for(assessment.questions[0].id) == "4"

    def test_second_tab_switch_is_ignored(self, context, started, assessment):
        """Test that the tab switch submission fires at most once"""
        started.handle(WindowBlurred())

        assert started.handle(VisibilityLost()) == []
        assert len(context.get_assessment_submissions(assessment.id)) == 1

    def test_no_answers_after_auto_submit(self, started, assessment):
        """Test that terminal sessions reject answer changes"""
        started.handle(WindowBlurred())

        with pytest.raises(MonitorStateError):
            started.record_answer(assessment.questions[0].id, "5")


class TestScreenViolation:
    """Test full-screen and resize enforcement"""

    def test_fullscreen_exit_retries_then_arms(self, started):
        """Test the retry budget before the violation warning"""
        assert started.handle(FullscreenChanged(False)) == [MonitorAction.REQUEST_FULLSCREEN]
        assert started.handle(FullscreenChanged(False)) == [MonitorAction.REQUEST_FULLSCREEN]

        assert started.handle(FullscreenChanged(False)) == [MonitorAction.SHOW_SCREEN_WARNING]
        assert started.violation_pending is True
        assert started.state is MonitorState.IN_PROGRESS

    def test_violation_submits_after_delay(self, context, started, clock, assessment, student):
        """Test that the warning delay ends in a zero-mark submission"""
        started.record_answer(assessment.questions[0].id, "4")
        for _ in range(3):
            started.handle(FullscreenChanged(False))

        assert started.handle(Tick(clock() + timedelta(seconds=2))) == []
        actions = started.handle(Tick(clock() + timedelta(seconds=3)))

        assert actions == [MonitorAction.EXIT_FULLSCREEN, MonitorAction.SUBMITTED]
        assert started.state is MonitorState.AUTO_SUBMITTED_VIOLATION
        submission = context.get_submission(assessment.id, student.id)
        assert submission.screen_size_violation is True
        assert submission.marks_awarded == 0

    def test_pending_violation_blocks_submit_and_answers(self, started, assessment):
        """Test that the student cannot escape a pending violation"""
        for _ in range(3):
            started.handle(FullscreenChanged(False))

        with pytest.raises(MonitorStateError):
            started.submit()
        with pytest.raises(MonitorStateError):
            started.record_answer(assessment.questions[0].id, "4")

    def test_exit_with_pending_violation_submits_it(self, started):
        """Test that leaving during the warning still records the violation"""
        for _ in range(3):
            started.handle(FullscreenChanged(False))

        assert started.exit() == [MonitorAction.EXIT_FULLSCREEN, MonitorAction.SUBMITTED]
        assert started.state is MonitorState.AUTO_SUBMITTED_VIOLATION

    def test_small_resize_is_tolerated(self, started):
        """Test that shrinking by less than 10% is ignored"""
        assert started.handle(WindowResized(950, 780)) == []

    def test_significant_resize(self, started):
        """Test that a large resize retries full-screen, then arms once in full-screen"""
        assert started.handle(WindowResized(800, 800)) == [MonitorAction.REQUEST_FULLSCREEN]
        started.handle(FullscreenChanged(True))

        assert started.handle(WindowResized(800, 800)) == [MonitorAction.SHOW_SCREEN_WARNING]

    def test_violation_delay_follows_tick_clock(self, monitor, clock):
        """Test that the warning delay is measured on the clock feeding the ticks"""
        page_time = clock() + timedelta(minutes=5)
        monitor.start(clock(), 1000, 800)
        monitor.handle(Tick(page_time))
        for _ in range(3):
            monitor.handle(FullscreenChanged(False))

        assert monitor.handle(Tick(page_time + timedelta(seconds=2))) == []
        assert monitor.handle(Tick(page_time + timedelta(seconds=3))) == [
            MonitorAction.EXIT_FULLSCREEN,
            MonitorAction.SUBMITTED,
        ]

    def test_regaining_fullscreen_is_not_a_violation(self, started):
        """Test that entering full-screen produces no action"""
        assert started.handle(FullscreenChanged(True)) == []


class TestCountdownAndSubmit:
    """Test the countdown, manual submission and exit"""

    def test_tick_updates_remaining_time(self, started, clock):
        """Test that ticks recompute the remaining seconds"""
        assert started.handle(Tick(clock() + timedelta(hours=1, seconds=1))) == []

        assert started.time_remaining_display() == "05:59:59"

    def test_countdown_reaching_zero_submits(self, context, started, assessment, student):
        """Test that the due time forces a normal submission"""
        started.record_answer(assessment.questions[0].id, "4")

        actions = started.handle(Tick(datetime(2024, 6, 10, 17, 0)))

        assert actions == [MonitorAction.EXIT_FULLSCREEN, MonitorAction.SUBMITTED]
        assert started.state is MonitorState.COMPLETED
        submission = context.get_submission(assessment.id, student.id)
        assert submission.is_completed is True
        assert submission.has_violation is False

    def test_manual_submit_skips_blank_answers(self, context, started, assessment, student):
        """Test that blank answers are not submitted"""
        mcq, text = assessment.questions
        started.record_answer(mcq.id, "4")
        started.record_answer(text.id, "   ")

        assert started.submit() == [MonitorAction.EXIT_FULLSCREEN, MonitorAction.SUBMITTED]

        submission = started.submission
        assert started.state is MonitorState.COMPLETED
        assert [entry.question_id for entry in submission.answers] == [mcq.id]
        assert submission.auto_graded_marks == 2
        assert context.last_message == "Assessment submitted successfully"

    def test_exit_without_submitting(self, context, started, assessment, student):
        """Test that exiting leaves no submission behind"""
        started.record_answer(assessment.questions[0].id, "4")

        assert started.exit() == [MonitorAction.EXIT_FULLSCREEN]
        assert started.state is MonitorState.EXITED
        assert context.get_submission(assessment.id, student.id) is None

    def test_events_after_terminal_state_are_ignored(self, started, clock):
        """Test that terminal states are sticky"""
        started.submit()

        assert started.handle(VisibilityLost()) == []
        assert started.handle(Tick(clock())) == []
        assert started.exit() == []
        assert started.state is MonitorState.COMPLETED

    def test_unknown_question(self, started):
        """Test that answers must reference a question of the assessment"""
        with pytest.raises(NotFoundError):
            started.record_answer("missing", "x")


class TestMonitorRegistry:
    """Test the live session registry"""

    def test_open_get_close(self, registry, assessment, student, clock):
        """Test the registry lifecycle"""
        opened = registry.open(assessment.id, student.id)
        opened.start(clock(), 1000, 800)

        assert registry.get(opened.session_id) is opened
        assert registry.active_sessions() == [opened]

        opened.submit()
        assert registry.active_sessions() == []

        registry.close(opened.session_id)
        with pytest.raises(NotFoundError):
            registry.get(opened.session_id)

    def test_reopening_replaces_abandoned_session(self, registry, assessment, student, clock):
        """Test that a student keeps a single live session per assessment"""
        opened = []
        for _ in range(5):
            monitor = registry.open(assessment.id, student.id)
            monitor.start(clock(), 1000, 800)
            opened.append(monitor)

        assert registry.active_sessions() == [opened[-1]]
        assert all(m.state is MonitorState.EXITED for m in opened[:-1])
        with pytest.raises(NotFoundError):
            registry.get(opened[0].session_id)

    def test_other_students_keep_their_sessions(self, context, login, registry, assessment, student, clock):
        """Test that replacement is limited to the same student"""
        login(TEACHER_EMAIL, TEACHER_PASSWORD)
        other = context.create_student("Ola", "ola@example.com", "pw")
        first = registry.open(assessment.id, student.id)
        second = registry.open(assessment.id, other.id)

        assert registry.active_sessions() == [first, second]

    def test_overdue_session_is_submitted_and_released(self, context, registry, assessment, student, clock):
        """Test that a session without ticks is finished once the due time passes"""
        monitor = registry.open(assessment.id, student.id)
        monitor.start(clock(), 1000, 800)
        monitor.record_answer(assessment.questions[0].id, "4")
        clock.advance(8 * 3600)

        assert registry.active_sessions() == []
        assert monitor.state is MonitorState.COMPLETED
        assert context.get_submission(assessment.id, student.id).is_completed is True

    def test_session_of_deleted_assessment_is_released(self, context, login, registry, assessment, student):
        """Test that monitors of removed assessments are dropped"""
        registry.open(assessment.id, student.id)
        login(TEACHER_EMAIL, TEACHER_PASSWORD)
        context.delete_assessment(assessment.id)

        assert registry.active_sessions() == []

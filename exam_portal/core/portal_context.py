"""Business logic for the exam portal, shared by the API and the assessment monitor."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from threading import Lock
from typing import Any, Callable

from exam_portal.constants.portal_constants import (
    MSG_DRAFT,
    MSG_SCREEN_VIOLATION,
    MSG_SUBMITTED,
    MSG_TAB_SWITCH,
)
from exam_portal.constants.storage_constants import (
    ASSESSMENTS_KEY,
    CURRENT_USER_KEY,
    STUDENTS_KEY,
    SUBMISSIONS_KEY,
    TEACHER_PASSWORDS_KEY,
    TEACHERS_KEY,
)
from exam_portal.core.errors import AuthorizationError, InvalidInputError, NotFoundError
from exam_portal.core.models import (
    AnswerEntry,
    Assessment,
    Question,
    Role,
    Score,
    Student,
    Submission,
    User,
)
from exam_portal.core.services.account_directory import AccountDirectory
from exam_portal.core.services.assessment_repository import AssessmentDraft, AssessmentRepository
from exam_portal.core.services.grading import text_marks_awarded
from exam_portal.core.services.scoreboard import Scoreboard, ScoreFilter
from exam_portal.core.services.submission_ledger import SubmissionLedger
from exam_portal.core.storage import KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)


class Collection(str, Enum):
    """Independently persisted collections, valued by their storage key."""

    CURRENT_USER = CURRENT_USER_KEY
    STUDENTS = STUDENTS_KEY
    TEACHERS = TEACHERS_KEY
    ASSESSMENTS = ASSESSMENTS_KEY
    SUBMISSIONS = SUBMISSIONS_KEY
    TEACHER_PASSWORDS = TEACHER_PASSWORDS_KEY


class AssessmentPhase(str, Enum):
    UPCOMING = "upcoming"
    ACTIVE = "active"
    PAST_DUE = "past_due"


@dataclass(slots=True)
class MutationResult:
    """Outcome of a mutation: its value, the collections it dirtied and a status message."""

    value: Any = None
    persist: frozenset[Collection] = field(default_factory=frozenset)
    message: str | None = None


class PortalContext:
    """Facade for portal services: accounts, assessments, submissions and scores.

    Mutations never write to the store themselves. Each returns a
    ``MutationResult`` naming the collections it touched; the context queues
    those and writes them on ``flush()``, right away when ``auto_flush`` is on.
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Callable[[], datetime] = datetime.now,
        auto_flush: bool = True,
    ) -> None:
        self._lock = Lock()
        self._store = store if store is not None else MemoryStore()
        self._clock = clock
        self._auto_flush = auto_flush

        # Services
        self._accounts = AccountDirectory()
        self._assessments = AssessmentRepository()
        self._submissions = SubmissionLedger()
        self._scoreboard = Scoreboard()

        self._current_user: User | None = None
        self._pending: set[Collection] = set()
        self.last_message: str | None = None

    # --- Persistence ---

    def restore(self) -> None:
        """Reload every collection from the store, keeping defaults for missing keys."""
        with self._lock:
            teachers = self._load_list(Collection.TEACHERS, User.from_dict)
            students = self._load_list(Collection.STUDENTS, Student.from_dict)
            passwords = self._load_raw(Collection.TEACHER_PASSWORDS)
            self._accounts.load(teachers, students, passwords if isinstance(passwords, dict) else None)

            assessments = self._load_list(Collection.ASSESSMENTS, Assessment.from_dict)
            if assessments is not None:
                self._assessments.load(assessments)
            submissions = self._load_list(Collection.SUBMISSIONS, Submission.from_dict)
            if submissions is not None:
                self._submissions.load(submissions)

            user = self._load_raw(Collection.CURRENT_USER)
            self._current_user = User.from_dict(user) if isinstance(user, dict) else None

    def flush(self) -> list[Collection]:
        """Write every queued collection to the store and return what was written."""
        with self._lock:
            return self._flush_pending()

    @property
    def pending_collections(self) -> frozenset[Collection]:
        with self._lock:
            return frozenset(self._pending)

    def _commit(self, result: MutationResult) -> Any:
        self._pending.update(result.persist)
        if result.message:
            self.last_message = result.message
            logger.info(result.message)
        if self._auto_flush:
            self._flush_pending()
        return result.value

    def _flush_pending(self) -> list[Collection]:
        written = sorted(self._pending, key=lambda c: c.value)
        for collection in written:
            self._write(collection)
        self._pending.clear()
        return written

    def _write(self, collection: Collection) -> None:
        key = collection.value
        if collection is Collection.CURRENT_USER:
            if self._current_user is None:
                self._store.remove_item(key)
            else:
                self._store.save_json(key, self._current_user.to_dict())
        elif collection is Collection.STUDENTS:
            self._store.save_json(key, [s.to_dict() for s in self._accounts.get_students()])
        elif collection is Collection.TEACHERS:
            self._store.save_json(key, [t.to_dict() for t in self._accounts.get_teachers()])
        elif collection is Collection.TEACHER_PASSWORDS:
            self._store.save_json(key, self._accounts.get_passwords())
        elif collection is Collection.ASSESSMENTS:
            self._store.save_json(key, [a.to_dict() for a in self._assessments.get_assessments()])
        elif collection is Collection.SUBMISSIONS:
            self._store.save_json(key, [s.to_dict() for s in self._submissions.get_submissions()])

    def _load_raw(self, collection: Collection) -> Any | None:
        try:
            return self._store.load_json(collection.value)
        except ValueError:
            logger.error("Ignoring unreadable '%s' blob in store", collection.value)
            return None

    def _load_list(self, collection: Collection, parse: Callable[[dict[str, Any]], Any]) -> list | None:
        raw = self._load_raw(collection)
        if not isinstance(raw, list):
            return None
        try:
            return [parse(item) for item in raw]
        except (KeyError, TypeError, ValueError):
            logger.error("Ignoring malformed '%s' blob in store", collection.value)
            return None

    # --- Session ---

    @property
    def current_user(self) -> User | None:
        with self._lock:
            return self._current_user

    def login(self, email: str, password: str, required_role: Role | None = None) -> bool:
        with self._lock:
            return self._commit(self._login(email, password, required_role))

    def _login(self, email: str, password: str, required_role: Role | None) -> MutationResult:
        user = self._accounts.authenticate(email, password, required_role)
        if user is None:
            label = f"{required_role.value} " if required_role is not None else ""
            failure = f"Invalid {label}credentials" if label else "Invalid email or password"
            return MutationResult(value=False, message=failure)

        self._current_user = user
        greeting = f"Welcome, {user.name}" if user.role is Role.STUDENT else f"Welcome back, {user.name}"
        return MutationResult(value=True, persist=frozenset({Collection.CURRENT_USER}), message=greeting)

    def logout(self) -> None:
        with self._lock:
            self._current_user = None
            self._commit(
                MutationResult(
                    persist=frozenset({Collection.CURRENT_USER}),
                    message="You have been logged out",
                )
            )

    def _require(self, roles: tuple[Role, ...], refusal: str) -> User:
        user = self._current_user
        if user is None or user.role not in roles:
            logger.warning("Refused: %s", refusal)
            raise AuthorizationError(refusal)
        return user

    # --- Students ---

    def create_student(self, name: str, email: str, password: str) -> Student:
        with self._lock:
            teacher = self._require((Role.TEACHER,), "Only teachers can create students")
            student = self._accounts.add_student(name, email, password, teacher.id)
            return self._commit(
                MutationResult(
                    value=student,
                    persist=frozenset({Collection.STUDENTS}),
                    message=f"Student {student.name} created successfully",
                )
            )

    def delete_student(self, student_id: str) -> None:
        with self._lock:
            actor = self._require(
                (Role.TEACHER, Role.ADMIN), "Only teachers and admins can delete students"
            )
            student = self._accounts.find_student(student_id)
            if student is None:
                raise NotFoundError("Student not found")
            if actor.role is Role.TEACHER and student.created_by != actor.id:
                raise AuthorizationError("You can only delete students you created")

            self._submissions.remove_for_student(student_id)
            self._accounts.remove_student(student_id)
            self._commit(
                MutationResult(
                    persist=frozenset({Collection.STUDENTS, Collection.SUBMISSIONS}),
                    message=f"Student {student.name} deleted successfully",
                )
            )

    def get_teacher_students(self, teacher_id: str) -> list[Student]:
        with self._lock:
            return self._accounts.students_of(teacher_id)

    def get_student(self, student_id: str) -> Student | None:
        with self._lock:
            return self._accounts.find_student(student_id)

    # --- Teachers ---

    def create_teacher(
        self,
        name: str,
        email: str,
        password: str,
        department: str | None = None,
        is_super_teacher: bool = False,
    ) -> User:
        with self._lock:
            self._require((Role.ADMIN,), "Only admin can create teachers")
            teacher = self._accounts.add_teacher(name, email, password, department, is_super_teacher)
            suffix = " as Super Teacher" if teacher.is_super_teacher else ""
            return self._commit(
                MutationResult(
                    value=teacher,
                    persist=frozenset({Collection.TEACHERS, Collection.TEACHER_PASSWORDS}),
                    message=f"Teacher {teacher.name} created successfully{suffix}",
                )
            )

    def delete_teacher(self, teacher_id: str, new_teacher_id: str | None = None) -> None:
        with self._lock:
            self._require((Role.ADMIN,), "Only admin can delete teachers")
            teacher = self._accounts.find_teacher(teacher_id)
            if teacher is None:
                raise NotFoundError("Teacher not found")
            if teacher.role is Role.ADMIN:
                raise InvalidInputError("Cannot delete admin account")
            if new_teacher_id == teacher_id:
                raise InvalidInputError("Students must be reassigned to a different teacher")
            if not new_teacher_id and self._accounts.students_of(teacher_id):
                raise InvalidInputError("Please select a replacement teacher for the students.")

            persist = {Collection.TEACHERS, Collection.TEACHER_PASSWORDS}
            if new_teacher_id:
                self._accounts.reassign_students(teacher_id, new_teacher_id)
                persist.add(Collection.STUDENTS)
            self._accounts.remove_teacher(teacher_id)
            self._commit(
                MutationResult(
                    persist=frozenset(persist),
                    message=f"Teacher {teacher.name} deleted successfully",
                )
            )

    def reassign_students(self, from_teacher_id: str, to_teacher_id: str) -> int:
        with self._lock:
            self._require((Role.ADMIN,), "Only admin can reassign students")
            moved = self._accounts.reassign_students(from_teacher_id, to_teacher_id)
            persist = frozenset({Collection.STUDENTS}) if moved else frozenset()
            return self._commit(
                MutationResult(value=moved, persist=persist, message=f"{moved} student(s) reassigned")
            )

    def toggle_super_teacher(self, teacher_id: str) -> User:
        with self._lock:
            self._require((Role.ADMIN,), "Only admin can designate Super Teachers")
            teacher = self._accounts.toggle_super_teacher(teacher_id)
            message = (
                f"{teacher.name} is now a Super Teacher"
                if teacher.is_super_teacher
                else f"{teacher.name} is no longer a Super Teacher"
            )
            return self._commit(
                MutationResult(value=teacher, persist=frozenset({Collection.TEACHERS}), message=message)
            )

    def has_super_teacher(self) -> bool:
        with self._lock:
            return self._accounts.super_teacher() is not None

    def get_super_teacher(self) -> User | None:
        with self._lock:
            return self._accounts.super_teacher()

    def get_teacher(self, teacher_id: str) -> User | None:
        with self._lock:
            return self._accounts.find_teacher(teacher_id)

    # --- Assessments ---

    def create_assessment(
        self,
        title: str,
        description: str,
        start_date: str,
        start_time: str,
        due_date: str,
        due_time: str,
        questions: list[Question],
    ) -> Assessment:
        with self._lock:
            teacher = self._require((Role.TEACHER,), "Only teachers can create assessments")
            # The live record decides the snapshot, not the login-time copy.
            live = self._accounts.find_teacher(teacher.id) or teacher
            draft = AssessmentDraft(title, description, start_date, start_time, due_date, due_time, questions)
            assessment = self._assessments.add(
                draft,
                owner_id=teacher.id,
                by_super_teacher=live.is_super_teacher,
                created_at=self._clock(),
            )
            suffix = " as Super Teacher" if assessment.created_by_super_teacher else ""
            return self._commit(
                MutationResult(
                    value=assessment,
                    persist=frozenset({Collection.ASSESSMENTS}),
                    message=f'Assessment "{assessment.title}" created successfully{suffix}',
                )
            )

    def update_assessment(
        self,
        assessment_id: str,
        title: str,
        description: str,
        start_date: str,
        start_time: str,
        due_date: str,
        due_time: str,
        questions: list[Question],
    ) -> Assessment:
        with self._lock:
            teacher = self._require((Role.TEACHER,), "Only teachers can update assessments")
            existing = self._assessments.get(assessment_id)
            if existing.created_by != teacher.id:
                raise AuthorizationError("You can only update assessments you created")
            draft = AssessmentDraft(title, description, start_date, start_time, due_date, due_time, questions)
            updated = self._assessments.update(assessment_id, draft)
            return self._commit(
                MutationResult(
                    value=updated,
                    persist=frozenset({Collection.ASSESSMENTS}),
                    message=f'Assessment "{updated.title}" updated successfully',
                )
            )

    def delete_assessment(self, assessment_id: str) -> None:
        with self._lock:
            teacher = self._require((Role.TEACHER,), "Only teachers can delete assessments")
            existing = self._assessments.get(assessment_id)
            if existing.created_by != teacher.id:
                raise AuthorizationError("You can only delete assessments you created")
            self._submissions.remove_for_assessment(assessment_id)
            self._assessments.remove(assessment_id)
            self._commit(
                MutationResult(
                    persist=frozenset({Collection.ASSESSMENTS, Collection.SUBMISSIONS}),
                    message=f'Assessment "{existing.title}" deleted successfully',
                )
            )

    def get_assessment_by_id(self, assessment_id: str) -> Assessment | None:
        with self._lock:
            return self._assessments.find(assessment_id)

    def get_teacher_assessments(self, teacher_id: str) -> list[Assessment]:
        """Own assessments plus, for a regular teacher, every super-teacher assessment."""
        with self._lock:
            own = self._assessments.created_by(teacher_id)
            teacher = self._accounts.find_teacher(teacher_id)
            if teacher is None or teacher.is_super_teacher:
                return own
            seen = {a.id for a in own}
            shared = [a for a in self._assessments.super_teacher_assessments() if a.id not in seen]
            return own + shared

    def get_super_teacher_assessments(self) -> list[Assessment]:
        with self._lock:
            return self._assessments.super_teacher_assessments()

    def get_student_assessments(self, student_id: str) -> list[Assessment]:
        """Assessments of the owning teacher plus every super-teacher assessment."""
        with self._lock:
            student = self._accounts.find_student(student_id)
            if student is None:
                return []
            return [
                a
                for a in self._assessments.get_assessments()
                if a.created_by == student.created_by or a.created_by_super_teacher
            ]

    def is_assessment_active(self, assessment: Assessment, now: datetime | None = None) -> bool:
        moment = now if now is not None else self._clock()
        return assessment.start_at <= moment <= assessment.due_at

    def assessment_phase(self, assessment: Assessment, now: datetime | None = None) -> AssessmentPhase:
        moment = now if now is not None else self._clock()
        if moment < assessment.start_at:
            return AssessmentPhase.UPCOMING
        if moment > assessment.due_at:
            return AssessmentPhase.PAST_DUE
        return AssessmentPhase.ACTIVE

    def now(self) -> datetime:
        return self._clock()

    # --- Submissions ---

    def can_student_take_assessment(self, assessment_id: str, student_id: str) -> bool:
        with self._lock:
            submission = self._submissions.find(assessment_id, student_id)
            return submission is None or not (submission.is_completed or submission.has_violation)

    def submit_assessment(
        self,
        assessment_id: str,
        student_id: str,
        answers: list[AnswerEntry],
        tab_switched: bool = False,
        screen_size_violation: bool = False,
    ) -> Submission:
        with self._lock:
            assessment = self._assessments.get(assessment_id)
            submission = self._submissions.record(
                assessment,
                student_id,
                answers,
                tab_switched=tab_switched,
                screen_size_violation=screen_size_violation,
                submitted_at=self._clock(),
            )
            if screen_size_violation:
                message = MSG_SCREEN_VIOLATION
            elif tab_switched:
                message = MSG_TAB_SWITCH
            elif submission.is_completed:
                message = MSG_SUBMITTED
            else:
                message = MSG_DRAFT
            if submission.has_violation:
                logger.warning(
                    "Integrity violation recorded for student %s on assessment %s",
                    student_id,
                    assessment_id,
                )
            return self._commit(
                MutationResult(
                    value=submission,
                    persist=frozenset({Collection.SUBMISSIONS}),
                    message=message,
                )
            )

    def get_submission(self, assessment_id: str, student_id: str) -> Submission | None:
        with self._lock:
            return self._submissions.find(assessment_id, student_id)

    def get_assessment_submissions(self, assessment_id: str) -> list[Submission]:
        with self._lock:
            return self._submissions.for_assessment(assessment_id)

    def get_assessment_roster(self, assessment_id: str) -> list[tuple[Student, Submission | None]]:
        """Students the current staff user oversees, each with their submission if any.

        The admin sees every student, a teacher only the students they created.
        """
        with self._lock:
            actor = self._require(
                (Role.TEACHER, Role.ADMIN), "Only teachers and admins can view assessment results"
            )
            self._assessments.get(assessment_id)
            students = (
                self._accounts.get_students()
                if actor.role is Role.ADMIN
                else self._accounts.students_of(actor.id)
            )
            return [(s, self._submissions.find(assessment_id, s.id)) for s in students]

    def award_marks(self, submission_id: str, marks: int) -> Submission:
        with self._lock:
            self._require((Role.TEACHER, Role.ADMIN), "Only teachers and admins can award marks")
            submission = self._submissions.get_by_id(submission_id)
            assessment = self._assessments.get(submission.assessment_id)
            if isinstance(marks, bool) or not isinstance(marks, int):
                raise InvalidInputError("Marks must be a whole number")
            if not 0 <= marks <= assessment.total_marks:
                raise InvalidInputError(f"Marks must be between 0 and {assessment.total_marks}")
            updated = self._submissions.award(submission_id, marks)
            return self._commit(
                MutationResult(
                    value=updated,
                    persist=frozenset({Collection.SUBMISSIONS}),
                    message="Marks awarded successfully",
                )
            )

    @staticmethod
    def text_marks_awarded(submission: Submission) -> int | None:
        return text_marks_awarded(submission)

    # --- Admin aggregates ---

    def _is_admin(self) -> bool:
        return self._current_user is not None and self._current_user.role is Role.ADMIN

    def get_all_assessments(self) -> list[Assessment]:
        with self._lock:
            return self._assessments.get_assessments() if self._is_admin() else []

    def get_all_submissions(self) -> list[Submission]:
        with self._lock:
            return self._submissions.get_submissions() if self._is_admin() else []

    def get_all_students(self) -> list[Student]:
        with self._lock:
            return self._accounts.get_students() if self._is_admin() else []

    def get_all_teachers(self) -> list[User]:
        with self._lock:
            return self._accounts.get_teachers() if self._is_admin() else []

    # --- Scores ---

    def get_student_scores(self) -> list[Score]:
        with self._lock:
            return self._scoreboard.build_scores(
                self._submissions.get_submissions(),
                self._assessments.get_assessments(),
                self._accounts.get_students(),
                self._accounts.get_teachers(),
            )

    def filter_scores(self, scores: list[Score], criteria: ScoreFilter) -> list[Score]:
        return self._scoreboard.filter_scores(scores, criteria)

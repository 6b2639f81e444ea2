"""Service holding teacher, admin and student accounts."""

from __future__ import annotations

from uuid import uuid4

from exam_portal.constants.portal_constants import (
    ADMIN_EMAIL,
    ADMIN_ID,
    ADMIN_NAME,
    ADMIN_PASSWORD,
)
from exam_portal.core.errors import InvalidInputError, NotFoundError
from exam_portal.core.models import Role, Student, User


def default_admin() -> User:
    return User(id=ADMIN_ID, name=ADMIN_NAME, email=ADMIN_EMAIL, role=Role.ADMIN)


class AccountDirectory:
    """Owns the teacher list (admin included), the student list and the password map.

    The directory enforces data invariants only (unique emails, a single super
    teacher, the admin record). Role checks belong to the caller.
    """

    def __init__(self) -> None:
        self._teachers: list[User] = [default_admin()]
        self._students: list[Student] = []
        self._passwords: dict[str, str] = {ADMIN_EMAIL: ADMIN_PASSWORD}

    # --- Loading ---

    def load(
        self,
        teachers: list[User] | None,
        students: list[Student] | None,
        passwords: dict[str, str] | None,
    ) -> None:
        """Replace the collections with persisted state, keeping the admin record."""
        if teachers is not None:
            loaded = list(teachers)
            if not any(t.email == ADMIN_EMAIL for t in loaded):
                loaded.append(default_admin())
            self._teachers = loaded
        if students is not None:
            self._students = list(students)
        if passwords is not None:
            self._passwords.update(passwords)

    # --- Queries ---

    def get_teachers(self) -> list[User]:
        return list(self._teachers)

    def get_students(self) -> list[Student]:
        return list(self._students)

    def get_passwords(self) -> dict[str, str]:
        return dict(self._passwords)

    def find_teacher(self, teacher_id: str) -> User | None:
        return next((t for t in self._teachers if t.id == teacher_id), None)

    def find_student(self, student_id: str) -> Student | None:
        return next((s for s in self._students if s.id == student_id), None)

    def students_of(self, teacher_id: str) -> list[Student]:
        return [s for s in self._students if s.created_by == teacher_id]

    def super_teacher(self) -> User | None:
        return next((t for t in self._teachers if t.is_super_teacher), None)

    def authenticate(self, email: str, password: str, role: Role | None = None) -> User | None:
        """Return the matching identity or ``None``.

        Emails match case-insensitively, passwords exactly. Without a role the
        teacher list (admin included) is tried before the student list.
        """
        lowered = email.strip().lower()
        if role in (Role.ADMIN, Role.TEACHER):
            return self._authenticate_staff(lowered, password, role)
        if role is Role.STUDENT:
            return self._authenticate_student(lowered, password)
        return self._authenticate_staff(lowered, password, None) or self._authenticate_student(
            lowered, password
        )

    def _authenticate_staff(self, email: str, password: str, role: Role | None) -> User | None:
        user = next(
            (
                t
                for t in self._teachers
                if t.email.lower() == email and (role is None or t.role is role)
            ),
            None,
        )
        if user is not None and self._passwords.get(user.email) == password:
            return user
        return None

    def _authenticate_student(self, email: str, password: str) -> User | None:
        student = next(
            (s for s in self._students if s.email.lower() == email and s.password == password),
            None,
        )
        return student.as_user() if student is not None else None

    # --- Mutations ---

    def add_student(self, name: str, email: str, password: str, owner_id: str) -> Student:
        cleaned_name = name.strip()
        lowered = email.strip().lower()
        if not cleaned_name:
            raise InvalidInputError("Student name must not be empty.")
        if not lowered:
            raise InvalidInputError("Student email must not be empty.")
        if not password:
            raise InvalidInputError("Student password must not be empty.")
        if any(s.email.lower() == lowered for s in self._students):
            raise InvalidInputError("A student with this email already exists")

        student = Student(
            id=uuid4().hex,
            name=cleaned_name,
            email=lowered,
            password=password,
            created_by=owner_id,
        )
        self._students.append(student)
        return student

    def remove_student(self, student_id: str) -> Student:
        student = self.find_student(student_id)
        if student is None:
            raise NotFoundError("Student not found")
        self._students = [s for s in self._students if s.id != student_id]
        return student

    def add_teacher(
        self,
        name: str,
        email: str,
        password: str,
        department: str | None = None,
        is_super_teacher: bool = False,
    ) -> User:
        cleaned_name = name.strip()
        lowered = email.strip().lower()
        if not cleaned_name:
            raise InvalidInputError("Teacher name must not be empty.")
        if not lowered:
            raise InvalidInputError("Teacher email must not be empty.")
        if not password:
            raise InvalidInputError("Teacher password must not be empty.")
        if any(t.email.lower() == lowered for t in self._teachers):
            raise InvalidInputError("A teacher with this email already exists")
        if is_super_teacher and self.super_teacher() is not None:
            raise InvalidInputError(
                "There can only be one Super Teacher. "
                "Please remove the existing Super Teacher role first."
            )

        teacher = User(
            id=uuid4().hex,
            name=cleaned_name,
            email=lowered,
            role=Role.TEACHER,
            department=department or None,
            is_super_teacher=is_super_teacher,
        )
        self._passwords[lowered] = password
        self._teachers.append(teacher)
        return teacher

    def remove_teacher(self, teacher_id: str) -> User:
        teacher = self.find_teacher(teacher_id)
        if teacher is None:
            raise NotFoundError("Teacher not found")
        if teacher.role is Role.ADMIN:
            raise InvalidInputError("Cannot delete admin account")
        self._passwords.pop(teacher.email, None)
        self._teachers = [t for t in self._teachers if t.id != teacher_id]
        return teacher

    def reassign_students(self, from_teacher_id: str, to_teacher_id: str) -> int:
        if self.find_teacher(from_teacher_id) is None:
            raise NotFoundError("Original teacher not found")
        target = self.find_teacher(to_teacher_id)
        if target is None:
            raise NotFoundError("New teacher not found")
        if target.role is not Role.TEACHER:
            raise InvalidInputError("Students can only be assigned to a teacher")

        moved = 0
        for student in self._students:
            if student.created_by == from_teacher_id:
                student.created_by = to_teacher_id
                moved += 1
        return moved

    def toggle_super_teacher(self, teacher_id: str) -> User:
        teacher = self.find_teacher(teacher_id)
        if teacher is None:
            raise NotFoundError("Teacher not found")
        if teacher.role is not Role.TEACHER:
            raise InvalidInputError("Only teachers can be designated as Super Teachers")
        if not teacher.is_super_teacher:
            existing = self.super_teacher()
            if existing is not None:
                raise InvalidInputError(
                    f"There can only be one Super Teacher. {existing.name} is already a Super Teacher."
                )
        teacher.is_super_teacher = not teacher.is_super_teacher
        return teacher

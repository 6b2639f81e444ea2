"""Role-based route resolution.

A navigation resolves once to one of the view variants below instead of
handing the current user to a rendering callback. The admin may open every
route; other users only the routes listed for their role.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from exam_portal.core.models import Role, User


class Route(str, Enum):
    LOGIN = "login"
    ADMIN_DASHBOARD = "admin-dashboard"
    CREATE_TEACHER = "create-teacher"
    TEACHER_DASHBOARD = "teacher-dashboard"
    TEACHER_ASSESSMENTS = "teacher-assessments"
    ASSESSMENT_DETAILS = "assessment-details"
    STUDENT_DASHBOARD = "student-dashboard"
    STUDENT_ASSESSMENT = "student-assessment"


ROUTE_ROLES: dict[Route, frozenset[Role]] = {
    Route.ADMIN_DASHBOARD: frozenset({Role.ADMIN}),
    Route.CREATE_TEACHER: frozenset({Role.ADMIN}),
    Route.TEACHER_DASHBOARD: frozenset({Role.TEACHER, Role.ADMIN}),
    Route.TEACHER_ASSESSMENTS: frozenset({Role.TEACHER, Role.ADMIN}),
    Route.ASSESSMENT_DETAILS: frozenset({Role.TEACHER, Role.ADMIN}),
    Route.STUDENT_DASHBOARD: frozenset({Role.STUDENT, Role.ADMIN}),
    Route.STUDENT_ASSESSMENT: frozenset({Role.STUDENT, Role.ADMIN}),
}

HOME_ROUTES: dict[Role, Route] = {
    Role.ADMIN: Route.ADMIN_DASHBOARD,
    Role.TEACHER: Route.TEACHER_DASHBOARD,
    Role.STUDENT: Route.STUDENT_DASHBOARD,
}


@dataclass(frozen=True, slots=True)
class AdminView:
    user: User
    route: Route


@dataclass(frozen=True, slots=True)
class TeacherView:
    user: User
    route: Route


@dataclass(frozen=True, slots=True)
class StudentView:
    user: User
    route: Route


@dataclass(frozen=True, slots=True)
class LoginRequired:
    route: Route


@dataclass(frozen=True, slots=True)
class Denied:
    reason: str
    redirect: str = "unauthorized"


RouteView = Union[AdminView, TeacherView, StudentView, LoginRequired, Denied]


def resolve_view(user: User | None, route_name: str) -> RouteView:
    try:
        route = Route(route_name)
    except ValueError:
        return Denied(reason="not-found", redirect="not-found")

    if route is Route.LOGIN:
        if user is None:
            return LoginRequired(route=route)
        # Already signed in: send the user to their dashboard.
        return _view_for(user, HOME_ROUTES[user.role])

    if user is None:
        return LoginRequired(route=route)
    if user.role is not Role.ADMIN and user.role not in ROUTE_ROLES[route]:
        return Denied(reason="unauthorized")
    return _view_for(user, route)


def _view_for(user: User, route: Route) -> RouteView:
    if user.role is Role.ADMIN:
        return AdminView(user=user, route=route)
    if user.role is Role.TEACHER:
        return TeacherView(user=user, route=route)
    return StudentView(user=user, route=route)

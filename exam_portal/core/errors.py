"""Exception types raised by the domain context and the assessment monitor."""

from __future__ import annotations


class PortalError(Exception):
    """Base class for failures of a single portal operation."""


class AuthorizationError(PortalError):
    """Raised when the current user lacks the role or ownership an operation needs."""


class InvalidInputError(PortalError):
    """Raised when operation input is malformed. Nothing has been mutated."""


class NotFoundError(PortalError):
    """Raised when a referenced id is absent from its collection."""


class MonitorStateError(PortalError):
    """Raised when an assessment-taking session cannot accept the request."""

"""Network configuration constants for the exam portal."""

DEFAULT_HOST: str = "0.0.0.0"
DEFAULT_PORT: int = 8000
HOST_ENV_VAR: str = "EXAM_PORTAL_HOST"
PORT_ENV_VAR: str = "EXAM_PORTAL_PORT"

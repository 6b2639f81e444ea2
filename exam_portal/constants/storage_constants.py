"""Keys and locations used by the persistent store."""

from pathlib import Path

DEFAULT_DATA_DIR: Path = Path.home() / ".exam_portal"
DATA_DIR_ENV_VAR: str = "EXAM_PORTAL_DATA_DIR"

CURRENT_USER_KEY: str = "currentUser"
STUDENTS_KEY: str = "students"
TEACHERS_KEY: str = "teachers"
ASSESSMENTS_KEY: str = "assessments"
SUBMISSIONS_KEY: str = "submissions"
TEACHER_PASSWORDS_KEY: str = "teacherPasswords"

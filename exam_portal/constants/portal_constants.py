"""Domain constants shared across the context, monitor and API layers."""

ADMIN_ID: str = "admin1"
ADMIN_NAME: str = "Admin User"
ADMIN_EMAIL: str = "admin@example.com"
ADMIN_PASSWORD: str = "adminpass"

DEFAULT_START_TIME: str = "09:00"
DEFAULT_DUE_TIME: str = "17:00"
DATE_FORMAT: str = "%Y-%m-%d"
TIME_FORMAT: str = "%H:%M"
MIN_MCQ_OPTIONS: int = 2

# Proctoring
FULLSCREEN_RETRY_BUDGET: int = 2
RESIZE_VIOLATION_RATIO: float = 0.9
VIOLATION_SUBMIT_DELAY_SECONDS: float = 3.0
TICK_INTERVAL_SECONDS: float = 1.0

# Status messages
MSG_SCREEN_VIOLATION: str = "Assessment auto-submitted due to screen size violation. Score: 0"
MSG_TAB_SWITCH: str = "Assessment auto-submitted due to tab switching"
MSG_SUBMITTED: str = "Assessment submitted successfully"
MSG_DRAFT: str = "Assessment saved as draft"

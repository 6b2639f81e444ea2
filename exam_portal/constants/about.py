"""Static metadata describing the exam portal."""

APP_NAME = "Exam Portal"
APP_VERSION = "0.1"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "Exam Portal lets teachers create students and timed assessments, lets students "
    "take them in a proctored full-screen session, and gives the admin an overview "
    "of every teacher, student and score."
)

"""Static metadata describing PaceQuiz."""

APP_NAME = "PaceQuiz"
APP_VERSION = "0.2"
APP_LICENSE = "MIT License"
APP_ABOUT_TEXT = (
    "PaceQuiz is a live classroom response server. A controller curates questions, "
    "presenters show aggregate progress, and participants work through the questions "
    "at their own pace once the controller admits them."
)

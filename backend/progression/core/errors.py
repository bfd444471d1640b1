from __future__ import annotations

LESSON_LOCKED_REASON = "Complete previous content to unlock."
MODULE_LOCKED_REASON = "Complete previous modules to unlock this module."


class ProgressionError(Exception):
    error_code = "progression_error"

    def __init__(self, error_message: str = "", *, error_code: str | None = None):
        super().__init__(error_message)
        if error_code:
            self.error_code = error_code
        self.error_message = error_message or self.error_code


class FetchFailure(ProgressionError):
    """A read from the remote document API failed or timed out."""

    error_code = "fetch_failed"

    def __init__(self, operation: str, error_message: str = ""):
        super().__init__(error_message or f"{operation} failed")
        self.operation = operation


class WriteFailure(ProgressionError):
    """A progress write was not acknowledged by the remote document API."""

    error_code = "write_failed"

    def __init__(self, operation: str, error_message: str = ""):
        super().__init__(error_message or f"{operation} failed")
        self.operation = operation


class InconsistentData(ProgressionError):
    """Fetched data references a lesson or chapter missing from the current tree."""

    error_code = "inconsistent_data"


class AccessDenied(ProgressionError):
    error_code = "locked"

    def __init__(self, reason: str = LESSON_LOCKED_REASON):
        super().__init__(reason)
        self.reason = reason


class CompletionRefused(ProgressionError):
    error_code = "completion_refused"

    def __init__(self, incomplete_titles: list[str]):
        titles = ", ".join(incomplete_titles)
        super().__init__(f"complete all quizzes and question answers first: {titles}")
        self.incomplete_titles = list(incomplete_titles)

"""
Error taxonomy for the contest scoreboard.

Validation errors are raised before any ledger mutation and their message is
meant to be shown verbatim to the submitter.
"""

from typing import Optional


class ScoreboardError(Exception):
    """Base class for every error raised by the scoreboard core."""


class ValidationError(ScoreboardError):
    """Input rejected before any state was touched."""


class ContestNotLive(ValidationError):
    def __init__(self, status: str) -> None:
        self.status = status
        super().__init__(f"Submissions are closed. Contest status: {status}")


class KeyNotSet(ValidationError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"No answer key found for task {task_id}.")


class EmptyFile(ValidationError):
    pass


class SubmissionTooLarge(ValidationError):
    pass


class MalformedInput(ValidationError):
    """CSV text could not be parsed (unterminated quoted field)."""


class MalformedKey(ValidationError):
    pass


class RowCountMismatch(ValidationError):
    def __init__(
        self,
        submission_rows: int,
        key_rows: int,
    ) -> None:
        self.submission_rows = submission_rows
        self.key_rows = key_rows
        super().__init__(
            f"Submission has {submission_rows} data rows, but answer key has "
            f"{key_rows}. Row counts must match."
        )


class NotFoundError(ScoreboardError):
    pass


class TeamNotFound(NotFoundError):
    def __init__(self, team_id: int) -> None:
        self.team_id = team_id
        super().__init__(f"Team {team_id} not found")


class TaskNotFound(NotFoundError):
    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class PermissionDenied(ScoreboardError):
    def __init__(self, action: Optional[str] = None) -> None:
        message = "Admin privileges required"
        if action:
            message = f"{message} to {action}"
        super().__init__(message)


class ConcurrencyConflict(ScoreboardError):
    """
    A ledger entry was replaced while a writer waited for its lock.

    Never user-facing: the service retries the write against the fresh entry.
    """

"""
Data model for the contest scoreboard.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class ContestStatus(str, Enum):
    NOT_STARTED = "Not Started"
    LIVE = "Live"
    FINISHED = "Finished"

    @classmethod
    def parse(cls, value: str) -> "ContestStatus":
        """
        Resolve a status from its display value or enum name.

        @param value: "Live", "LIVE", "not_started", ...
        @return: Matching ContestStatus
        """
        for status in cls:
            if value == status.value:
                return status
        normalized = value.strip().upper().replace(" ", "_")
        try:
            return cls[normalized]
        except KeyError:
            raise ValueError(f"Unknown contest status: {value}") from None


class KeyVisibility(str, Enum):
    PRIVATE = "private"
    PUBLIC = "public"


@dataclass
class Task:
    id: str
    name: str
    key_uploaded: bool = False
    key_visibility: KeyVisibility = KeyVisibility.PRIVATE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "key_uploaded": self.key_uploaded,
            "key_visibility": self.key_visibility.value,
        }


@dataclass(frozen=True)
class SubmissionAttempt:
    score: float
    timestamp: int  # epoch millis

    def to_dict(self) -> Dict[str, Any]:
        return {"score": self.score, "timestamp": self.timestamp}


@dataclass
class TeamTaskSubmission:
    """
    One team's submission history for one task.

    `score` and `attempts` are derived from `history`, which only ever grows.
    `is_best_score` is filled in by the ranking pass.
    """

    task_id: str
    history: List[SubmissionAttempt] = field(default_factory=list)
    is_best_score: bool = False

    @property
    def score(self) -> Optional[float]:
        if not self.history:
            return None
        return max(attempt.score for attempt in self.history)

    @property
    def attempts(self) -> int:
        return len(self.history)

    def copy(self) -> "TeamTaskSubmission":
        return TeamTaskSubmission(
            task_id=self.task_id,
            history=list(self.history),
            is_best_score=self.is_best_score,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "score": self.score,
            "attempts": self.attempts,
            "is_best_score": self.is_best_score,
            "history": [attempt.to_dict() for attempt in self.history],
        }


@dataclass
class Team:
    id: int
    name: str
    rank: int = 0
    solved: int = 0
    total_score: float = 0.0
    submissions: Dict[str, TeamTaskSubmission] = field(default_factory=dict)
    last_solve_timestamp: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "rank": self.rank,
            "solved": self.solved,
            "total_score": self.total_score,
            "last_solve_timestamp": self.last_solve_timestamp,
            "submissions": [
                submission.to_dict() for submission in self.submissions.values()
            ],
        }


@dataclass(frozen=True)
class SubmissionResult:
    """What a submitter gets back after a successful attempt."""

    team_id: int
    task_id: str
    score: float
    best_score: float
    attempts: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "task_id": self.task_id,
            "score": self.score,
            "best_score": self.best_score,
            "attempts": self.attempts,
            "timestamp": self.timestamp,
        }

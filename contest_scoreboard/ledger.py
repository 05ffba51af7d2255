"""
Submission ledger: the team x task grid of attempt histories.

The ledger is the only owner of TeamTaskSubmission state. Everything it hands
out is a copy; callers never mutate ledger entries directly.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .errors import ConcurrencyConflict, ContestNotLive, KeyNotSet, TaskNotFound, TeamNotFound
from .models import ContestStatus, SubmissionAttempt, TeamTaskSubmission

logger = logging.getLogger(__name__)

EntryKey = Tuple[int, str]


def now_millis() -> int:
    return int(time.time() * 1000)


class SubmissionLedger:
    """
    Per-team, per-task attempt histories with per-entry write exclusion.

    Writes to the same (team, task) entry are serialized by an asyncio.Lock
    owned by that entry; writes to different entries never wait on each other.
    """

    def __init__(
        self,
        status_source: Callable[[], ContestStatus],
        key_available: Callable[[str], bool],
        clock: Callable[[], int] = now_millis,
    ) -> None:
        self._status_source = status_source
        self._key_available = key_available
        self._clock = clock
        self._entries: Dict[EntryKey, TeamTaskSubmission] = {}
        self._locks: Dict[EntryKey, asyncio.Lock] = {}
        self._last_solve: Dict[int, Optional[int]] = {}
        self._task_ids: List[str] = []

    # Grid structure

    def add_task(self, task_id: str) -> None:
        """Add a task column with an empty entry for every team."""
        if task_id in self._task_ids:
            return
        self._task_ids.append(task_id)
        for team_id in self._last_solve:
            self._entries[(team_id, task_id)] = TeamTaskSubmission(task_id)

    def remove_task(self, task_id: str) -> int:
        """
        Drop a task column from every team.

        @return: Number of recorded attempts discarded
        """
        if task_id not in self._task_ids:
            return 0
        self._task_ids.remove(task_id)
        dropped = 0
        for key in [k for k in self._entries if k[1] == task_id]:
            dropped += self._entries.pop(key).attempts
            self._locks.pop(key, None)
        return dropped

    def add_team(
        self,
        team_id: int,
        last_solve_timestamp: Optional[int] = None,
    ) -> None:
        """Add a team row with an empty entry for every existing task."""
        if team_id in self._last_solve:
            return
        self._last_solve[team_id] = last_solve_timestamp
        for task_id in self._task_ids:
            self._entries[(team_id, task_id)] = TeamTaskSubmission(task_id)

    def remove_team(self, team_id: int) -> None:
        self._last_solve.pop(team_id, None)
        for key in [k for k in self._entries if k[0] == team_id]:
            del self._entries[key]
            self._locks.pop(key, None)

    def restore(
        self,
        team_id: int,
        task_id: str,
        history: Iterable[SubmissionAttempt],
    ) -> None:
        """
        Load a persisted history into an existing entry.

        @raises TeamNotFound, TaskNotFound: If the grid has no such entry
        """
        entry = self._get_entry(team_id, task_id)
        entry.history[:] = list(history)

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()
        self._last_solve.clear()
        self._task_ids.clear()

    # Reads

    def has_team(self, team_id: int) -> bool:
        return team_id in self._last_solve

    def team_ids(self) -> List[int]:
        return list(self._last_solve)

    def entry(
        self,
        team_id: int,
        task_id: str,
    ) -> TeamTaskSubmission:
        return self._get_entry(team_id, task_id).copy()

    def entries_for_team(self, team_id: int) -> Dict[str, TeamTaskSubmission]:
        """
        Copies of a team's entries, in task order.

        @raises TeamNotFound: If the team is not in the ledger
        """
        if team_id not in self._last_solve:
            raise TeamNotFound(team_id)
        return {
            task_id: self._entries[(team_id, task_id)].copy()
            for task_id in self._task_ids
        }

    def last_solve_timestamp(self, team_id: int) -> Optional[int]:
        return self._last_solve.get(team_id)

    def total_attempts(self) -> int:
        return sum(entry.attempts for entry in self._entries.values())

    # Writes

    async def record_attempt(
        self,
        team_id: int,
        task_id: str,
        score: float,
    ) -> TeamTaskSubmission:
        """
        Append a scored attempt to a (team, task) entry.

        The read-modify-write runs under the entry's lock, so concurrent
        attempts on the same entry are applied one at a time and none is lost.

        @param team_id: Submitting team
        @param task_id: Task submitted to
        @param score: Accuracy score of the attempt
        @return: Copy of the updated entry
        @raises ContestNotLive: If the contest is not accepting submissions
        @raises KeyNotSet: If the task has no answer key
        @raises ConcurrencyConflict: If the entry was replaced while waiting
        """
        key = (team_id, task_id)
        entry = self._get_entry(team_id, task_id)
        lock = self._locks.setdefault(key, asyncio.Lock())

        async with lock:
            if self._entries.get(key) is not entry:
                raise ConcurrencyConflict(f"Ledger entry {key} was replaced")

            status = self._status_source()
            if status is not ContestStatus.LIVE:
                raise ContestNotLive(status.value)
            if not self._key_available(task_id):
                raise KeyNotSet(task_id)

            timestamp = self._clock()
            entry.history.append(SubmissionAttempt(score=score, timestamp=timestamp))
            self._last_solve[team_id] = timestamp
            updated = entry.copy()

        logger.debug(
            "Recorded attempt %d for team %s on %s: %.2f (best %.2f)",
            updated.attempts,
            team_id,
            task_id,
            score,
            updated.score,
        )
        return updated

    def _get_entry(
        self,
        team_id: int,
        task_id: str,
    ) -> TeamTaskSubmission:
        if team_id not in self._last_solve:
            raise TeamNotFound(team_id)
        entry = self._entries.get((team_id, task_id))
        if entry is None:
            raise TaskNotFound(task_id)
        return entry

"""
ContestService: the single owner of contest state.

Holds the tasks, answer keys, submission ledger and ranked scoreboard. Every
mutation follows the same path: validate, mutate, persist, re-rank, publish.
"""

import hmac
import logging
import re
from typing import Any, Dict, Iterable, List, Optional

import aiosqlite

from . import ranking, scoring
from .answer_keys import AnswerKey, AnswerKeyStore, parse_master_key
from .config import ContestConfig
from .database import DatabaseManager
from .errors import (
    ConcurrencyConflict,
    ContestNotLive,
    EmptyFile,
    KeyNotSet,
    MalformedKey,
    PermissionDenied,
    SubmissionTooLarge,
    TaskNotFound,
    TeamNotFound,
    ValidationError,
)
from .ledger import SubmissionLedger, now_millis
from .models import ContestStatus, KeyVisibility, SubmissionResult, Task, Team, TeamTaskSubmission
from .publisher import ScoreboardPublisher

logger = logging.getLogger(__name__)

TASK_ID_PATTERN = re.compile(r"^T(\d+)$")
MAX_NAME_LENGTH = 60


class ContestService:
    """Scoring, ledger and ranking behind one object."""

    def __init__(
        self,
        config: ContestConfig,
        db: Optional[DatabaseManager] = None,
        publisher: Optional[ScoreboardPublisher] = None,
        clock=now_millis,
    ) -> None:
        self.config = config
        self.db = db
        self.publisher = publisher or ScoreboardPublisher()
        self.status = config.initial_status
        self.tasks: Dict[str, Task] = {}
        self.team_names: Dict[int, str] = {}
        # Highest id ever handed out; ids are never reused, even after reset
        self.sequences: Dict[str, int] = {"task": 0, "team": 0}
        self.keys = AnswerKeyStore(
            columns=config.get("scoring", "key_min_columns"),
            header_tokens=config.header_tokens,
        )
        self.ledger = SubmissionLedger(
            status_source=lambda: self.status,
            key_available=self.keys.has_key,
            clock=clock,
        )

    # Startup

    async def load(self) -> None:
        """Restore persisted state, or persist the initial status on a fresh database."""
        if self.db is None:
            self._rerank()
            return

        state = await self.db.load_state()
        if state["status"] is None:
            await self.db.save_status(self.status)
        else:
            self.status = state["status"]

        for task in state["tasks"]:
            self.tasks[task.id] = task
            self.ledger.add_task(task.id)
        for key in state["keys"]:
            if key.task_id in self.tasks:
                self.keys.put(key)
        for team in state["teams"]:
            self.team_names[team["id"]] = team["name"]
            self.ledger.add_team(team["id"], team["last_solve_ts"])
        for row in state["submissions"]:
            if self.ledger.has_team(row["team_id"]) and row["task_id"] in self.tasks:
                self.ledger.restore(row["team_id"], row["task_id"], row["history"])
        for name, value in state["sequences"].items():
            if name in self.sequences:
                self.sequences[name] = value
        self.sequences["task"] = max(self.sequences["task"], max(_task_numbers(self.tasks)))
        self.sequences["team"] = max(self.sequences["team"], max(self.team_names, default=0))

        logger.info(
            "Loaded contest: status=%s, %d tasks, %d teams, %d attempts",
            self.status.value,
            len(self.tasks),
            len(self.team_names),
            self.ledger.total_attempts(),
        )
        self._rerank()

    # Queries

    def check_admin(self, token: Optional[str]) -> None:
        """
        Verify an admin token.

        @raises PermissionDenied: If no admin token is configured or it does not match
        """
        expected = self.config.get("contest", "admin_token") or ""
        if not expected or not token or not hmac.compare_digest(expected, token):
            raise PermissionDenied()

    def scoreboard(self, limit: Optional[int] = None) -> List[Team]:
        teams = self.publisher.current()
        return teams[:limit] if limit is not None else teams

    def list_tasks(self) -> List[Task]:
        return list(self.tasks.values())

    def get_task(self, task_id: str) -> Task:
        task = self.tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)
        return task

    def get_key(
        self,
        task_id: str,
        is_admin: bool = False,
    ) -> AnswerKey:
        """
        Fetch a task's answer key for download.

        Non-admins may only read keys marked public, and only when the
        public_key_download feature is on.
        """
        task = self.get_task(task_id)
        if not is_admin:
            if (
                task.key_visibility is not KeyVisibility.PUBLIC
                or not self.config.is_feature_enabled("public_key_download")
            ):
                raise PermissionDenied(f"download the key of {task_id}")
        key = self.keys.get_key(task_id)
        if key is None:
            raise KeyNotSet(task_id)
        return key

    def stats(self) -> Dict[str, Any]:
        """Headline figures: status, total submissions, highest score, average attempts per team."""
        teams = self.publisher.current()
        total = self.ledger.total_attempts()
        scores = [
            submission.score
            for team in teams
            for submission in team.submissions.values()
            if submission.score is not None
        ]
        return {
            "status": self.status.value,
            "teams": len(teams),
            "tasks": len(self.tasks),
            "total_submissions": total,
            "highest_score": max(scores) if scores else 0.0,
            "avg_attempts": total / len(teams) if teams else 0.0,
        }

    # Submissions

    async def submit(
        self,
        team_id: int,
        task_id: str,
        raw_text: str,
    ) -> SubmissionResult:
        """
        Score a submission file and record it as an attempt.

        All validation and scoring happen before the ledger is touched; a
        rejected submission leaves no trace.

        @param team_id: Submitting team
        @param task_id: Task submitted to
        @param raw_text: Uploaded CSV content
        @return: Score of this attempt plus the team's updated best for the task
        @raises ValidationError: Contest not live, no key, empty/malformed file, row mismatch
        @raises NotFoundError: Unknown team or task
        """
        max_bytes = self.config.get("submission", "max_submission_bytes")
        if len(raw_text.encode("utf-8")) > max_bytes:
            raise SubmissionTooLarge(f"Submission exceeds the {max_bytes} byte limit.")
        if not self.ledger.has_team(team_id):
            raise TeamNotFound(team_id)
        self.get_task(task_id)
        if self.status is not ContestStatus.LIVE:
            raise ContestNotLive(self.status.value)
        key = self.keys.get_key(task_id)
        if key is None:
            raise KeyNotSet(task_id)
        if not raw_text.strip():
            raise EmptyFile("Submission file is empty or invalid.")

        try:
            score = scoring.score(raw_text, key, self.config.header_tokens)
        except ValidationError as e:
            logger.warning("Rejected submission from team %s for %s: %s", team_id, task_id, e)
            raise

        entry = await self._record_with_retry(team_id, task_id, score)
        timestamp = entry.history[-1].timestamp
        logger.info(
            "Team %s scored %.2f on %s (attempt %d, best %.2f)",
            team_id,
            score,
            task_id,
            entry.attempts,
            entry.score,
        )

        if self.db is not None:
            try:
                await self.db.save_submission(
                    team_id, entry, self.ledger.last_solve_timestamp(team_id)
                )
            except (aiosqlite.Error, OSError):
                # Next snapshot of this entry carries the full history again
                logger.exception("Failed to persist attempt for team %s on %s", team_id, task_id)

        await self._commit()
        return SubmissionResult(
            team_id=team_id,
            task_id=task_id,
            score=score,
            best_score=entry.score,
            attempts=entry.attempts,
            timestamp=timestamp,
        )

    async def _record_with_retry(
        self,
        team_id: int,
        task_id: str,
        score: float,
    ) -> TeamTaskSubmission:
        retries = self.config.get("scoring", "max_conflict_retries")
        for attempt in range(1, retries + 1):
            try:
                return await self.ledger.record_attempt(team_id, task_id, score)
            except ConcurrencyConflict as e:
                logger.warning("Retrying ledger write (%d/%d): %s", attempt, retries, e)
        logger.error("Ledger write for team %s on %s kept conflicting", team_id, task_id)
        raise ConcurrencyConflict(f"Ledger entry ({team_id}, {task_id}) kept changing")

    # Contest status

    async def set_status(self, status: ContestStatus) -> None:
        """Change the contest status and push it to subscribers."""
        if await self._apply_status(status):
            await self._commit()

    async def _apply_status(self, status: ContestStatus) -> bool:
        if status is self.status:
            return False
        previous, self.status = self.status, status
        if self.db is not None:
            await self.db.save_status(status)
        logger.info("Contest status changed: %s -> %s", previous.value, status.value)
        return True

    # Id allocation

    def _allocate(self, name: str) -> int:
        self.sequences[name] += 1
        return self.sequences[name]

    async def _save_sequence(self, name: str) -> None:
        if self.db is not None:
            await self.db.save_sequence(name, self.sequences[name])

    # Tasks and keys

    def _next_task_id(self) -> str:
        return f"T{self._allocate('task')}"

    async def add_task(
        self,
        name: str,
        key_visibility: KeyVisibility = KeyVisibility.PRIVATE,
    ) -> Task:
        name = _clean_name(name, "Task")
        task = Task(self._next_task_id(), name, False, key_visibility)
        self.tasks[task.id] = task
        self.ledger.add_task(task.id)
        await self._save_sequence("task")
        if self.db is not None:
            await self.db.save_task(task, len(self.tasks))
        logger.info("Added task %s (%s)", task.id, task.name)
        await self._commit()
        return task

    async def update_task(
        self,
        task_id: str,
        name: Optional[str] = None,
        key_visibility: Optional[KeyVisibility] = None,
    ) -> Task:
        task = self.get_task(task_id)
        if name is not None:
            task.name = _clean_name(name, "Task")
        if key_visibility is not None:
            task.key_visibility = key_visibility
        if self.db is not None:
            await self.db.save_task(task, list(self.tasks).index(task_id) + 1)
        await self._commit()
        return task

    async def delete_task(self, task_id: str) -> None:
        """Delete a task, its answer key and every team's submissions to it."""
        self.get_task(task_id)
        del self.tasks[task_id]
        self.keys.delete_key(task_id)
        dropped = self.ledger.remove_task(task_id)
        if self.db is not None:
            await self.db.delete_task(task_id)
        logger.info("Deleted task %s (%d attempts discarded)", task_id, dropped)
        await self._commit()

    async def set_key(
        self,
        task_id: str,
        raw_text: str,
    ) -> AnswerKey:
        """
        Upload (or fully replace) a task's answer key.

        @raises MalformedKey: If the key file does not match the key schema
        """
        task = self.get_task(task_id)
        key = self.keys.set_key(task_id, raw_text)
        task.key_uploaded = True
        if self.db is not None:
            await self.db.save_key(key)
        return key

    async def set_master_key(self, raw_text: str) -> List[str]:
        """
        Upload keys for several tasks from one `task_id,id,prediction` file.

        Each task receives a two-column key. Nothing is stored if the file
        names an unknown task.

        @return: Task ids whose keys were replaced
        """
        per_task = parse_master_key(raw_text, self.config.header_tokens)
        unknown = sorted(set(per_task) - set(self.tasks))
        if unknown:
            raise MalformedKey(f"Master answer key references unknown tasks: {', '.join(unknown)}")

        for task_id, rows in per_task.items():
            key = AnswerKey(task_id, rows, 2)
            self.keys.put(key)
            self.tasks[task_id].key_uploaded = True
            if self.db is not None:
                await self.db.save_key(key)
        logger.info("Master answer key uploaded for %d tasks", len(per_task))
        return list(per_task)

    # Teams

    async def add_team(self, name: str) -> Team:
        name = _clean_name(name, "Team")
        if name in self.team_names.values():
            raise ValidationError(f"Team name {name!r} is already taken.")
        team_id = self._allocate("team")
        self.team_names[team_id] = name
        self.ledger.add_team(team_id)
        await self._save_sequence("team")
        if self.db is not None:
            await self.db.save_team(team_id, name)
        logger.info("Registered team %s (%s)", team_id, name)
        await self._commit()
        return self._find_ranked(team_id)

    async def update_team(
        self,
        team_id: int,
        name: str,
    ) -> Team:
        if team_id not in self.team_names:
            raise TeamNotFound(team_id)
        name = _clean_name(name, "Team")
        if any(other == name for tid, other in self.team_names.items() if tid != team_id):
            raise ValidationError(f"Team name {name!r} is already taken.")
        self.team_names[team_id] = name
        if self.db is not None:
            await self.db.save_team(team_id, name)
        await self._commit()
        return self._find_ranked(team_id)

    async def delete_team(self, team_id: int) -> None:
        if team_id not in self.team_names:
            raise TeamNotFound(team_id)
        del self.team_names[team_id]
        self.ledger.remove_team(team_id)
        if self.db is not None:
            await self.db.delete_team(team_id)
        logger.info("Deleted team %s", team_id)
        await self._commit()

    async def reset(self) -> None:
        """Drop all teams, submissions and keys; tasks stay and status returns to its initial value."""
        task_ids = list(self.tasks)
        self.team_names.clear()
        self.keys.clear()
        self.ledger.clear()
        for task_id in task_ids:
            self.tasks[task_id].key_uploaded = False
            self.ledger.add_task(task_id)
        if self.db is not None:
            await self.db.reset()
        await self._apply_status(self.config.initial_status)
        logger.info("Contest reset")
        await self._commit()

    # Ranking and publication

    def _team_views(self) -> List[Team]:
        return [
            Team(
                id=team_id,
                name=name,
                submissions=self.ledger.entries_for_team(team_id),
                last_solve_timestamp=self.ledger.last_solve_timestamp(team_id),
            )
            for team_id, name in self.team_names.items()
        ]

    def _rerank(self) -> List[Team]:
        ranked = ranking.recompute(self._team_views(), self.tasks.values())
        self.publisher.update(ranked)
        return ranked

    async def _commit(self) -> None:
        # Snapshot and rank without yielding, so no write interleaves
        ranked = ranking.recompute(self._team_views(), self.tasks.values())
        if self.config.is_feature_enabled("live_updates"):
            await self.publisher.publish(ranked)
        else:
            self.publisher.update(ranked)

    def _find_ranked(self, team_id: int) -> Team:
        for team in self.publisher.current():
            if team.id == team_id:
                return team
        raise TeamNotFound(team_id)


def _task_numbers(task_ids: Iterable[str]) -> List[int]:
    numbers = [0]
    for task_id in task_ids:
        match = TASK_ID_PATTERN.match(task_id)
        if match:
            numbers.append(int(match.group(1)))
    return numbers


def _clean_name(name: Any, kind: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"{kind} name cannot be empty")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"{kind} name too long (max {MAX_NAME_LENGTH} characters)")
    return name
